"""
tests/test_crawl_stage.py

Tests for crawl payload normalization and the CrawlStage.

Coverage
--------
- CrawlData: camelCase input, blank stripping, coercions, identity rule
- URL validation
- Successful crawl persists snapshot, timestamps and a completed job
- Crawler-derived name replaces a URL-derived fallback only
- Transient failures retried then exhausted; job marked failed
- Permanent failures are not retried; previous crawl_data is kept
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.providers.base import CrawlResult
from app.providers.crawler import MockCrawler
from app.schemas.crawl_data import MAX_DESCRIPTION_LENGTH, CrawlData
from cfp.crawl_stage import CrawlStage, normalize_crawl_payload, validate_business_url
from cfp.errors import InputValidationError, RetryExhaustedError
from cfp.retry import RetryPolicy
from db.models.crawl_job import CrawlJobStatus, CrawlJobType
from db.repositories.business_repository import BusinessRepository
from db.repositories.crawl_job_repository import CrawlJobRepository

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
FAST_RETRY = RetryPolicy(max_attempts=3, initial_delay_seconds=0.0, jitter=0.0)


class _ScriptedCrawler:
    """Returns queued CrawlResults in order."""

    def __init__(self, results: list[CrawlResult]) -> None:
        self._results = list(results)
        self.calls = 0

    def crawl(self, url: str) -> CrawlResult:
        self.calls += 1
        return self._results.pop(0)


def _stage(crawler) -> CrawlStage:
    return CrawlStage(crawler, retry_policy=FAST_RETRY, timeout_seconds=None, sleep=lambda _: None)


# ---------------------------------------------------------------------------
# CrawlData
# ---------------------------------------------------------------------------


class TestCrawlData:
    def test_camel_case_payload(self) -> None:
        data = CrawlData.model_validate(
            {
                "name": "  Harbor Bistro ",
                "location": {"city": "Seattle", "postalCode": 98101},
                "socialLinks": {"facebook": "https://facebook.com/harborbistro"},
                "llmEnhanced": {"businessCategory": "restaurant", "confidence": 1.7},
            }
        )

        assert data.name == "Harbor Bistro"
        assert data.location is not None and data.location.postal_code == "98101"
        assert data.social_links is not None and data.social_links.facebook.endswith("harborbistro")
        assert data.llm_enhanced is not None and data.llm_enhanced.confidence == 1.0
        assert data.primary_category == "restaurant"

    def test_snapshot_is_snake_case_without_blanks(self) -> None:
        snapshot = CrawlData.model_validate(
            {"name": "Harbor Bistro", "phone": "   ", "socialLinks": {"twitter": "@harbor"}}
        ).to_snapshot()

        assert "phone" not in snapshot
        assert snapshot["social_links"] == {"twitter": "@harbor"}

    def test_lists_are_deduplicated(self) -> None:
        data = CrawlData.model_validate({"name": "Harbor Bistro", "categories": "Restaurant, restaurant, Bar"})
        assert data.categories == ["Restaurant", "Bar"]

    def test_long_description_truncated(self) -> None:
        data = CrawlData.model_validate({"description": "x" * (MAX_DESCRIPTION_LENGTH + 50)})
        assert len(data.description) == MAX_DESCRIPTION_LENGTH
        assert data.description.endswith("...")

    def test_requires_name_or_description(self) -> None:
        with pytest.raises(InputValidationError, match="name or a description"):
            normalize_crawl_payload({"phone": "+1-555-0100"})

    def test_non_dict_payload(self) -> None:
        with pytest.raises(InputValidationError):
            normalize_crawl_payload(None)

    def test_invalid_coordinates(self) -> None:
        with pytest.raises(InputValidationError, match="location.lat"):
            normalize_crawl_payload({"name": "Harbor Bistro", "location": {"lat": 123.0}})


class TestValidateUrl:
    def test_accepts_https(self) -> None:
        assert validate_business_url(" https://harbor-bistro.com ") == "https://harbor-bistro.com"

    @pytest.mark.parametrize("url", [None, "", "harbor-bistro.com", "ftp://harbor-bistro.com"])
    def test_rejects(self, url) -> None:
        with pytest.raises(InputValidationError):
            validate_business_url(url)


# ---------------------------------------------------------------------------
# CrawlStage
# ---------------------------------------------------------------------------


class TestCrawlStage:
    def test_success_persists_snapshot(self, db, make_business) -> None:
        business = make_business()
        next_crawl = NOW + timedelta(days=7)

        outcome = _stage(MockCrawler()).execute(db, business, crawled_at=NOW, next_crawl_at=next_crawl)

        stored = BusinessRepository(db).require_business(business.id)
        assert stored.crawl_data["name"] == "Harbor Bistro"
        assert stored.crawl_data["location"]["city"] == "Seattle"
        assert stored.last_crawled_at is not None
        assert stored.next_crawl_at is not None

        job = CrawlJobRepository(db).get_job(outcome.job_id)
        assert job.job_type == CrawlJobType.CRAWL
        assert job.status == CrawlJobStatus.COMPLETED
        assert job.result["category"] == "restaurant"

    def test_crawled_name_replaces_url_fallback(self, db, make_business) -> None:
        business = make_business(url="https://harbor-bistro.com")
        crawler = MockCrawler(overrides={"name": "Harbor Bistro & Oyster Bar"})

        _stage(crawler).execute(db, business, crawled_at=NOW, next_crawl_at=None)

        assert BusinessRepository(db).require_business(business.id).name == "Harbor Bistro & Oyster Bar"

    def test_user_supplied_name_is_kept(self, db, make_business) -> None:
        business = make_business(name="Harbor Bistro Seattle")
        crawler = MockCrawler(overrides={"name": "Harbor Bistro & Oyster Bar"})

        _stage(crawler).execute(db, business, crawled_at=NOW, next_crawl_at=None)

        assert BusinessRepository(db).require_business(business.id).name == "Harbor Bistro Seattle"

    def test_transient_failure_recovers(self, db, make_business) -> None:
        business = make_business()
        crawler = _ScriptedCrawler(
            [
                CrawlResult(success=False, error="connection reset", retryable=True),
                CrawlResult(success=True, data={"name": "Harbor Bistro"}),
            ]
        )

        _stage(crawler).execute(db, business, crawled_at=NOW, next_crawl_at=None)

        assert crawler.calls == 2

    def test_exhausted_retries_mark_job_failed(self, db, make_business) -> None:
        business = make_business(crawl_data={"name": "Previous Snapshot"})
        crawler = _ScriptedCrawler([CrawlResult(success=False, error="timeout", retryable=True)] * 3)

        with pytest.raises(RetryExhaustedError):
            _stage(crawler).execute(db, business, crawled_at=NOW, next_crawl_at=None)

        assert crawler.calls == 3
        jobs = CrawlJobRepository(db).list_jobs(business_id=business.id, job_type=CrawlJobType.CRAWL)
        assert jobs[0].status == CrawlJobStatus.FAILED
        assert "timeout" in jobs[0].error_message
        assert BusinessRepository(db).require_business(business.id).crawl_data == {"name": "Previous Snapshot"}

    def test_permanent_failure_not_retried(self, db, make_business) -> None:
        business = make_business()
        crawler = _ScriptedCrawler([CrawlResult(success=False, error="404 Not Found", retryable=False)])

        with pytest.raises(InputValidationError):
            _stage(crawler).execute(db, business, crawled_at=NOW, next_crawl_at=None)

        assert crawler.calls == 1

    def test_invalid_url_fails_before_crawling(self, db, make_business) -> None:
        business = make_business(url="not a url")
        crawler = _ScriptedCrawler([])

        with pytest.raises(InputValidationError):
            _stage(crawler).execute(db, business, crawled_at=NOW, next_crawl_at=None)

        assert crawler.calls == 0
