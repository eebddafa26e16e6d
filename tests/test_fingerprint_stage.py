"""
tests/test_fingerprint_stage.py

Tests for visibility metrics and the FingerprintStage.

Coverage
--------
- compute_visibility_metrics: all mentioned, none mentioned, failures
- Successful run persists one Fingerprint with observations and leaderboard
- A single failing model lowers the score but the run succeeds
- All models failing raises ScoringFailedError and fails the job
- Missing crawl data is rejected
- Configuration validation
"""

from __future__ import annotations

import pytest

from app.providers.base import ProviderRequestError
from app.providers.scoring import MockScoringProvider
from cfp.errors import InputValidationError, RetryableIOError, ScoringFailedError
from cfp.fingerprint_stage import FingerprintStage, compute_visibility_metrics
from cfp.prompts import PromptType
from cfp.response_analyzer import ModelObservation, Sentiment
from db.models.business import BusinessStatus
from db.models.crawl_job import CrawlJobStatus, CrawlJobType
from db.repositories.crawl_job_repository import CrawlJobRepository
from db.repositories.fingerprint_repository import FingerprintRepository

MODELS = ("model-a", "model-b", "model-c")
CRAWL_DATA = {
    "name": "Harbor Bistro",
    "location": {"city": "Seattle", "state": "WA"},
    "categories": ["restaurant"],
}


def _stage(provider: MockScoringProvider, **kwargs) -> FingerprintStage:
    return FingerprintStage(provider, models=MODELS, timeout_seconds=None, sleep=lambda _: None, **kwargs)


def _observation(**values) -> ModelObservation:
    return ModelObservation(observation_id="obs", model="model-a", prompt_type=PromptType.RECOMMENDATION, **values)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class TestVisibilityMetrics:
    def test_all_mentioned_at_top(self) -> None:
        observations = [
            _observation(mentioned=True, sentiment=Sentiment.POSITIVE, confidence=0.95, rank_position=1)
            for _ in range(3)
        ]

        metrics = compute_visibility_metrics(observations)

        assert metrics.visibility_score == 99
        assert metrics.mention_rate == 100.0
        assert metrics.sentiment_score == 1.0
        assert metrics.avg_rank_position == 1.0
        assert metrics.success_rate == 1.0

    def test_never_mentioned(self) -> None:
        metrics = compute_visibility_metrics([_observation(), _observation()])

        assert metrics.mention_rate == 0.0
        assert metrics.sentiment_score == 0.5
        assert metrics.avg_rank_position is None
        assert metrics.visibility_score == 12

    def test_failures_lower_the_score(self) -> None:
        ok = _observation(mentioned=True, sentiment=Sentiment.POSITIVE, confidence=0.95, rank_position=1)
        failed = _observation(error="RetryExhaustedError: timeout")

        metrics = compute_visibility_metrics([ok, ok, failed])

        assert metrics.success_rate == pytest.approx(0.6667, abs=1e-4)
        assert metrics.mention_rate == 100.0
        assert metrics.visibility_score == 96

    def test_no_successful_observation(self) -> None:
        metrics = compute_visibility_metrics([_observation(error="boom")])
        assert metrics.visibility_score == 0
        assert metrics.success_rate == 0.0


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


class TestFingerprintStage:
    def test_persists_fingerprint(self, db, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING, crawl_data=CRAWL_DATA)
        provider = MockScoringProvider()

        outcome = _stage(provider).execute(db, business)

        fingerprint = FingerprintRepository(db).get_latest(business.id)
        assert fingerprint is not None
        assert fingerprint.id == outcome.fingerprint_id
        assert fingerprint.visibility_score == 99
        assert len(fingerprint.llm_results) == len(MODELS)
        leaderboard = fingerprint.competitive_leaderboard
        assert leaderboard["total_recommendation_queries"] == 3
        assert leaderboard["target_business"]["rank"] == 1
        assert {entry["name"] for entry in leaderboard["competitors"]} == {
            "Pike Street Kitchen",
            "The Copper Pot LLC",
        }
        assert len(provider.calls) == len(MODELS)
        assert "best restaurants in Seattle, WA" in provider.calls[0][1]

        job = CrawlJobRepository(db).get_job(outcome.job_id)
        assert job.job_type == CrawlJobType.FINGERPRINT
        assert job.status == CrawlJobStatus.COMPLETED

    def test_partial_failure_still_succeeds(self, db, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING, crawl_data=CRAWL_DATA)
        provider = MockScoringProvider(failures={"model-b": RetryableIOError("rate limited")})

        outcome = _stage(provider).execute(db, business)

        failed = [observation for observation in outcome.observations if not observation.succeeded]
        assert [observation.model for observation in failed] == ["model-b"]
        assert outcome.metrics.visibility_score == 96
        assert outcome.leaderboard.total_recommendation_queries == 2

    def test_all_failures_raise(self, db, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING, crawl_data=CRAWL_DATA)
        provider = MockScoringProvider(failures={model: RetryableIOError("rate limited") for model in MODELS})

        with pytest.raises(ScoringFailedError) as exc_info:
            _stage(provider).execute(db, business)

        assert exc_info.value.retryable
        assert FingerprintRepository(db).get_latest(business.id) is None
        jobs = CrawlJobRepository(db).list_jobs(business_id=business.id, job_type=CrawlJobType.FINGERPRINT)
        assert jobs[0].status == CrawlJobStatus.FAILED

    def test_all_permanent_failures_are_not_retryable(self, db, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING, crawl_data=CRAWL_DATA)
        provider = MockScoringProvider(failures={model: ProviderRequestError("invalid api key") for model in MODELS})

        with pytest.raises(ScoringFailedError) as exc_info:
            _stage(provider).execute(db, business)

        assert not exc_info.value.retryable
        assert len(provider.calls) == len(MODELS)

    def test_requires_crawl_data(self, db, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING)

        with pytest.raises(InputValidationError):
            _stage(MockScoringProvider()).execute(db, business)

    def test_multiple_prompt_types(self, db, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING, crawl_data=CRAWL_DATA)
        provider = MockScoringProvider()

        outcome = _stage(
            provider,
            prompt_types=(PromptType.FACTUAL, PromptType.RECOMMENDATION),
        ).execute(db, business)

        assert len(outcome.observations) == 2 * len(MODELS)
        assert outcome.leaderboard.total_recommendation_queries == len(MODELS)


class TestConfiguration:
    def test_requires_models(self) -> None:
        with pytest.raises(ValueError):
            FingerprintStage(MockScoringProvider(), models=())

    def test_rejects_unknown_prompt_type(self) -> None:
        with pytest.raises(ValueError):
            FingerprintStage(MockScoringProvider(), models=MODELS, prompt_types=("comparison",))
