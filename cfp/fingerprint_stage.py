"""
cfp/fingerprint_stage.py

Fingerprint stage: query each configured model, read the responses, score
visibility and persist one immutable Fingerprint with its leaderboard.

A single model failing is recorded as an error observation and lowers the
success rate. The stage fails only when no call succeeds.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.providers.base import ScoringProvider
from cfp.errors import InputValidationError, PipelineError, ScoringFailedError, describe_error
from cfp.leaderboard import CompetitiveLeaderboard, CompetitiveLeaderboardBuilder
from cfp.prompts import PROMPT_TYPES, PromptContext, PromptType, build_prompt
from cfp.response_analyzer import ModelObservation, Sentiment, analyze_response
from cfp.retry import SCORING_RETRY_POLICY, RetryPolicy, call_with_retry, call_with_timeout
from db.models.business import Business
from db.models.crawl_job import CrawlJobType
from db.repositories.crawl_job_repository import CrawlJobRepository
from db.repositories.fingerprint_repository import FingerprintRepository

logger = logging.getLogger(__name__)

_SENTIMENT_VALUES = {
    Sentiment.POSITIVE: 1.0,
    Sentiment.NEUTRAL: 0.5,
    Sentiment.NEGATIVE: 0.0,
}


@dataclass(frozen=True)
class VisibilityMetrics:
    visibility_score: int
    mention_rate: float
    sentiment_score: float
    accuracy_score: float
    avg_rank_position: float | None
    success_rate: float


def compute_visibility_metrics(observations: Sequence[ModelObservation]) -> VisibilityMetrics:
    """Aggregate observations into the fingerprint's scalar metrics.

    mention_rate is a percentage of successful observations. sentiment_score
    averages mentioned observations (0.5 when there are none). accuracy_score
    is the mean mention confidence. The visibility score weights mention rate
    40, sentiment 25, accuracy 20 and rank up to 15 points, minus up to 10
    points for failed calls, clamped to 0-100.
    """
    successful = [observation for observation in observations if observation.succeeded]
    if not successful:
        return VisibilityMetrics(0, 0.0, 0.5, 0.0, None, 0.0)

    mentioned = [observation for observation in successful if observation.mentioned]
    mention_fraction = len(mentioned) / len(successful)
    sentiment = (
        sum(_SENTIMENT_VALUES.get(observation.sentiment, 0.5) for observation in mentioned) / len(mentioned)
        if mentioned
        else 0.5
    )
    accuracy = sum(observation.confidence for observation in successful) / len(successful)
    ranks = [observation.rank_position for observation in mentioned if observation.rank_position is not None]
    avg_rank = sum(ranks) / len(ranks) if ranks else None
    success_rate = len(successful) / len(observations)

    rank_bonus = max(0.0, 15 - (avg_rank - 1) * 3) if avg_rank is not None else 0.0
    raw_score = (
        mention_fraction * 40
        + sentiment * 25
        + accuracy * 20
        + rank_bonus
        - (1 - success_rate) * 10
    )
    return VisibilityMetrics(
        visibility_score=int(min(100, max(0, round(raw_score)))),
        mention_rate=round(mention_fraction * 100, 2),
        sentiment_score=round(sentiment, 4),
        accuracy_score=round(accuracy, 4),
        avg_rank_position=round(avg_rank, 2) if avg_rank is not None else None,
        success_rate=round(success_rate, 4),
    )


@dataclass(frozen=True)
class FingerprintOutcome:
    job_id: uuid.UUID
    fingerprint_id: uuid.UUID
    metrics: VisibilityMetrics
    leaderboard: CompetitiveLeaderboard
    observations: list[ModelObservation]


class FingerprintStage:
    """
    Runs one fingerprint for a crawled business.
    """

    def __init__(
        self,
        provider: ScoringProvider,
        *,
        models: Sequence[str],
        prompt_types: Sequence[str] = (PromptType.RECOMMENDATION,),
        retry_policy: RetryPolicy = SCORING_RETRY_POLICY,
        timeout_seconds: float | None = 30.0,
        leaderboard_builder: CompetitiveLeaderboardBuilder | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not models:
            raise ValueError("At least one scoring model must be configured.")
        unknown = set(prompt_types) - PROMPT_TYPES
        if unknown:
            raise ValueError(f"Unknown prompt types: {sorted(unknown)}")
        self._provider = provider
        self._models = tuple(models)
        self._prompt_types = tuple(prompt_types) or (PromptType.RECOMMENDATION,)
        self._retry_policy = retry_policy
        self._timeout_seconds = timeout_seconds
        self._builder = leaderboard_builder or CompetitiveLeaderboardBuilder()
        self._sleep = sleep

    def execute(self, db: Session, business: Business) -> FingerprintOutcome:
        jobs = CrawlJobRepository(db)
        job = jobs.create_job(business_id=business.id, job_type=CrawlJobType.FINGERPRINT)
        job_id = job.id
        business_id = business.id
        db.commit()

        try:
            jobs.mark_running(job_id=job_id)
            db.commit()

            if not business.crawl_data:
                raise InputValidationError("Fingerprinting requires crawl data.")

            context = PromptContext.from_crawl_data(business.name, business.crawl_data, business.category)
            logger.info(
                "Fingerprint started business_id=%s job_id=%s models=%d prompt_types=%s",
                business_id,
                job_id,
                len(self._models),
                ",".join(self._prompt_types),
            )
            observations, retryable_flags = self._collect(context)
            if not any(observation.succeeded for observation in observations):
                raise ScoringFailedError(
                    f"All {len(observations)} scoring call(s) failed; last error: {observations[-1].error}",
                    retryable=all(retryable_flags),
                )

            metrics = compute_visibility_metrics(observations)
            leaderboard = self._builder.build(business.name, observations)
            fingerprint = FingerprintRepository(db).create_fingerprint(
                business_id=business_id,
                visibility_score=metrics.visibility_score,
                mention_rate=metrics.mention_rate,
                sentiment_score=metrics.sentiment_score,
                accuracy_score=metrics.accuracy_score,
                avg_rank_position=metrics.avg_rank_position,
                llm_results=[observation.to_dict() for observation in observations],
                competitive_leaderboard=leaderboard.to_dict(),
            )
            fingerprint_id = fingerprint.id
            jobs.mark_completed(
                job_id=job_id,
                result={
                    "fingerprint_id": str(fingerprint_id),
                    "visibility_score": metrics.visibility_score,
                    "observations": len(observations),
                    "failed_observations": sum(1 for observation in observations if not observation.succeeded),
                },
            )
            db.commit()
        except Exception as exc:
            self._mark_job_failed(db=db, job_id=job_id, exc=exc)
            raise

        logger.info(
            "Fingerprint completed business_id=%s fingerprint_id=%s visibility_score=%s",
            business_id,
            fingerprint_id,
            metrics.visibility_score,
        )
        return FingerprintOutcome(
            job_id=job_id,
            fingerprint_id=fingerprint_id,
            metrics=metrics,
            leaderboard=leaderboard,
            observations=observations,
        )

    def _collect(self, context: PromptContext) -> tuple[list[ModelObservation], list[bool]]:
        observations: list[ModelObservation] = []
        retryable_flags: list[bool] = []
        for prompt_type in self._prompt_types:
            prompt = build_prompt(prompt_type, context)
            for model in self._models:
                observation_id = f"{prompt_type}:{model}:{len(observations)}"
                observation, retryable = self._observe(observation_id, model, prompt_type, prompt, context)
                observations.append(observation)
                if retryable is not None:
                    retryable_flags.append(retryable)
        return observations, retryable_flags

    def _observe(
        self,
        observation_id: str,
        model: str,
        prompt_type: str,
        prompt: str,
        context: PromptContext,
    ) -> tuple[ModelObservation, bool | None]:
        started = time.monotonic()
        try:
            response = call_with_retry(
                lambda: call_with_timeout(
                    lambda: self._provider.query(model, prompt),
                    timeout_seconds=self._timeout_seconds,
                    operation=f"score {model}",
                    pool="scoring",
                ),
                policy=self._retry_policy,
                operation=f"score {model}",
                sleep=self._sleep,
            )
        except PipelineError as exc:
            logger.warning("Scoring call failed model=%s prompt_type=%s error=%s", model, prompt_type, exc)
            return (
                ModelObservation(
                    observation_id=observation_id,
                    model=model,
                    prompt_type=prompt_type,
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                    error=describe_error(exc, limit=500),
                ),
                exc.retryable,
            )

        analysis = analyze_response(response.content, context.business_name)
        return (
            ModelObservation(
                observation_id=observation_id,
                model=model,
                prompt_type=prompt_type,
                mentioned=analysis.mentioned,
                sentiment=analysis.sentiment,
                confidence=analysis.confidence,
                rank_position=analysis.rank_position,
                competitor_mentions=analysis.competitors,
                tokens_used=response.tokens_used,
                processing_time_ms=int((time.monotonic() - started) * 1000),
            ),
            None,
        )

    def _mark_job_failed(self, *, db: Session, job_id: uuid.UUID, exc: Exception) -> None:
        error_message = describe_error(exc)
        logger.error("Fingerprint job failed id=%s error=%s", job_id, error_message)
        try:
            db.rollback()
            CrawlJobRepository(db).mark_failed(job_id=job_id, error_message=error_message)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed fingerprint job state id=%s", job_id)
