"""
tests/test_orchestrator.py

End-to-end tests for CFPOrchestrator over SQLite with deterministic
providers.

Coverage
--------
- Pro tier: crawl, fingerprint and automatic publish in one run
- Free tier: crawled, nothing sent, entity stored for review
- Explicit publish flag and user-initiated publishing
- Scoring failure on every model: error status, crawl data kept
- Crawl failure: error status, job failed, previous snapshot kept
- Publisher rejection: reverts to crawled, never error
- Single-flight: concurrent run rejected, active status rejected
- Deleted business is abandoned
- Reset and publish-only runs
- submit() claims the slot and releases it after the task
- Stale crawling/generating rows are released; recent or held ones are not
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from app.providers.base import CrawlResult
from app.providers.publisher import InMemoryPublisher
from app.providers.scoring import MockScoringProvider
from app.storage.manual_publish import ManualPublishStorage
from cfp.entity_builder import EntityBuilder
from cfp.errors import ConcurrencyConflict, InputValidationError, RetryableIOError
from db.base import utcnow
from db.models.business import BusinessStatus
from db.models.crawl_job import CrawlJobStatus, CrawlJobType
from db.models.team import PlanTier
from db.repositories.business_repository import BusinessRepository
from db.repositories.crawl_job_repository import CrawlJobRepository
from db.repositories.errors import StatusConflictError
from db.repositories.fingerprint_repository import FingerprintRepository

TEST_MODELS = ("model-a", "model-b", "model-c")


class _FailingCrawler:
    def crawl(self, url: str) -> CrawlResult:
        return CrawlResult(success=False, error="connection refused", retryable=True)


class _DeletingCrawler:
    """Deletes the business mid-crawl, as a user removing it would."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory
        self.business_id: uuid.UUID | None = None

    def crawl(self, url: str) -> CrawlResult:
        with self._session_factory() as session:
            BusinessRepository(session).delete_business(self.business_id)
            session.commit()
        return CrawlResult(success=True, data={"name": "Harbor Bistro"})


class _RecordingExecutor:
    def __init__(self) -> None:
        self.tasks: list[tuple] = []

    def submit(self, task, *args, **kwargs) -> None:
        self.tasks.append((task, args, kwargs))

    def run_all(self) -> None:
        for task, args, kwargs in self.tasks:
            task(*args, **kwargs)


class _BrokenExecutor:
    def submit(self, task, *args, **kwargs) -> None:
        raise RuntimeError("queue full")


def _status(db, business_id: uuid.UUID) -> str | None:
    return BusinessRepository(db).get_status(business_id)


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


class TestFullRun:
    def test_pro_tier_publishes(self, db, make_business, orchestrator, publisher, storage) -> None:
        business = make_business(plan_name=PlanTier.PRO)

        result = orchestrator.run(business.id)

        assert result.success
        assert result.crawl_succeeded and result.fingerprint_succeeded
        assert result.published
        assert result.qid == "Q100000"
        assert result.final_status == BusinessStatus.PUBLISHED
        stored = BusinessRepository(db).require_business(business.id)
        assert stored.status == BusinessStatus.PUBLISHED
        assert stored.wikidata_qid == "Q100000"
        assert stored.next_crawl_at is not None
        assert stored.last_auto_published_at is not None
        assert list(publisher.entities) == ["Q100000"]

        entries = storage.list_stored_entities()
        assert len(entries) == 1
        assert entries[0].can_publish == result.can_publish
        assert entries[0].published_qid == "Q100000"

    def test_free_tier_stops_at_crawled(self, db, make_business, orchestrator, publisher, storage) -> None:
        business = make_business(plan_name=PlanTier.FREE)

        result = orchestrator.run(business.id)

        assert result.success
        assert not result.publish_attempted
        assert result.final_status == BusinessStatus.CRAWLED
        assert _status(db, business.id) == BusinessStatus.CRAWLED
        assert publisher.calls == []
        assert BusinessRepository(db).require_business(business.id).next_crawl_at is None

    def test_user_initiated_run_publishes_on_free_tier(self, db, make_business, orchestrator) -> None:
        business = make_business(plan_name=PlanTier.FREE)

        result = orchestrator.run(business.id, user_initiated=True)

        assert result.published
        assert _status(db, business.id) == BusinessStatus.PUBLISHED
        assert BusinessRepository(db).require_business(business.id).last_auto_published_at is None

    def test_explicit_publish_false_skips_gate(self, db, make_business, orchestrator, storage) -> None:
        business = make_business(plan_name=PlanTier.PRO)

        result = orchestrator.run(business.id, publish=False)

        assert result.final_status == BusinessStatus.CRAWLED
        assert not result.publish_attempted
        assert storage.list_stored_entities() == []

    def test_refresh_run_updates_existing_entity(self, db, make_business, orchestrator, publisher) -> None:
        business = make_business(plan_name=PlanTier.PRO)
        orchestrator.run(business.id)

        result = orchestrator.run(business.id)

        assert result.published
        assert result.qid == "Q100000"
        assert [call[0] for call in publisher.calls] == ["create", "update"]
        assert len(FingerprintRepository(db).list_history(business.id)) == 2

    def test_error_status_is_runnable(self, db, make_business, orchestrator) -> None:
        business = make_business(status=BusinessStatus.ERROR, error_message="previous failure")

        result = orchestrator.run(business.id)

        assert result.success
        assert BusinessRepository(db).require_business(business.id).error_message is None


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_scoring_failure_keeps_crawl_data(self, db, make_business, build_orchestrator) -> None:
        scoring = MockScoringProvider(failures={model: RetryableIOError("rate limited") for model in TEST_MODELS})
        orchestrator = build_orchestrator(scoring_provider=scoring)
        business = make_business()

        result = orchestrator.run(business.id)

        assert not result.success
        assert result.crawl_succeeded
        assert not result.fingerprint_succeeded
        assert result.retryable
        assert result.final_status == BusinessStatus.ERROR
        stored = BusinessRepository(db).require_business(business.id)
        assert stored.status == BusinessStatus.ERROR
        assert stored.crawl_data["name"] == "Harbor Bistro"
        assert "ScoringFailedError" in stored.error_message
        assert FingerprintRepository(db).get_latest(business.id) is None

    def test_crawl_failure(self, db, make_business, build_orchestrator) -> None:
        orchestrator = build_orchestrator(crawler=_FailingCrawler())
        business = make_business(crawl_data={"name": "Old Snapshot"})

        result = orchestrator.run(business.id)

        assert not result.success
        assert not result.crawl_succeeded
        assert result.final_status == BusinessStatus.ERROR
        stored = BusinessRepository(db).require_business(business.id)
        assert stored.crawl_data == {"name": "Old Snapshot"}
        assert "connection refused" in stored.error_message
        jobs = CrawlJobRepository(db).list_jobs(business_id=business.id, job_type=CrawlJobType.CRAWL)
        assert [job.status for job in jobs] == [CrawlJobStatus.FAILED]

    def test_publisher_rejection_reverts_to_crawled(self, db, make_business, build_orchestrator, storage) -> None:
        orchestrator = build_orchestrator(publisher=InMemoryPublisher(reject_properties={"P31"}))
        business = make_business(plan_name=PlanTier.PRO)

        result = orchestrator.run(business.id)

        assert result.publish_attempted
        assert not result.published
        assert not result.success
        assert "PublisherRejection" in result.error
        assert result.final_status == BusinessStatus.CRAWLED
        stored = BusinessRepository(db).require_business(business.id)
        assert stored.status == BusinessStatus.CRAWLED
        assert stored.error_message is None
        assert storage.load_stored_entity(business.id).can_publish

    def test_publisher_failure_message(self, db, make_business, build_orchestrator) -> None:
        orchestrator = build_orchestrator(publisher=InMemoryPublisher(fail_with="maxlag exceeded"))
        business = make_business(plan_name=PlanTier.PRO)

        result = orchestrator.run(business.id)

        assert result.error == "maxlag exceeded"
        assert _status(db, business.id) == BusinessStatus.CRAWLED


# ---------------------------------------------------------------------------
# Concurrency and lifecycle
# ---------------------------------------------------------------------------


class TestSingleFlight:
    def test_second_run_rejected_while_held(self, make_business, orchestrator) -> None:
        business = make_business()
        orchestrator.registry.acquire(business.id)
        try:
            with pytest.raises(ConcurrencyConflict):
                orchestrator.run(business.id)
        finally:
            orchestrator.registry.release(business.id)

    def test_active_status_rejected(self, db, make_business, orchestrator) -> None:
        business = make_business(status=BusinessStatus.CRAWLING)

        with pytest.raises(ConcurrencyConflict):
            orchestrator.run(business.id)
        assert _status(db, business.id) == BusinessStatus.CRAWLING
        assert not orchestrator.registry.is_active(business.id)

    def test_submit_claims_and_releases(self, db, make_business, orchestrator) -> None:
        business = make_business()
        executor = _RecordingExecutor()

        orchestrator.submit(executor, business.id)
        assert orchestrator.registry.is_active(business.id)
        with pytest.raises(ConcurrencyConflict):
            orchestrator.submit(executor, business.id)

        executor.run_all()

        assert not orchestrator.registry.is_active(business.id)
        assert _status(db, business.id) == BusinessStatus.PUBLISHED

    def test_submit_failure_releases_slot(self, make_business, orchestrator) -> None:
        business = make_business()

        with pytest.raises(RuntimeError):
            orchestrator.submit(_BrokenExecutor(), business.id)
        assert not orchestrator.registry.is_active(business.id)


class TestLifecycle:
    def test_missing_business_is_abandoned(self, orchestrator) -> None:
        result = orchestrator.run(uuid.uuid4())

        assert result.abandoned
        assert not result.success
        assert result.final_status is None

    def test_business_deleted_mid_run(self, make_business, build_orchestrator, session_factory) -> None:
        crawler = _DeletingCrawler(session_factory)
        orchestrator = build_orchestrator(crawler=crawler)
        business = make_business()
        crawler.business_id = business.id

        result = orchestrator.run(business.id)

        assert result.abandoned
        assert result.final_status is None

    def test_reset_from_error(self, db, make_business, orchestrator) -> None:
        business = make_business(status=BusinessStatus.ERROR, error_message="boom")

        assert orchestrator.reset(business.id) == BusinessStatus.PENDING

        stored = BusinessRepository(db).require_business(business.id)
        assert stored.status == BusinessStatus.PENDING
        assert stored.error_message is None

    def test_reset_requires_error(self, make_business, orchestrator) -> None:
        business = make_business(status=BusinessStatus.CRAWLED)

        with pytest.raises(StatusConflictError):
            orchestrator.reset(business.id)

    def test_publish_only(self, db, make_business, orchestrator) -> None:
        business = make_business(
            plan_name=PlanTier.FREE,
            status=BusinessStatus.CRAWLED,
            crawl_data={"name": "Harbor Bistro", "location": {"city": "Seattle", "state": "WA"}},
        )

        result = orchestrator.publish(business.id)

        assert result.published
        assert _status(db, business.id) == BusinessStatus.PUBLISHED

    def test_publish_only_from_pending_is_refused(self, db, make_business, orchestrator) -> None:
        business = make_business()

        result = orchestrator.publish(business.id)

        assert not result.success
        assert not result.publish_attempted
        assert _status(db, business.id) == BusinessStatus.PENDING


class TestPublishStored:
    def test_unpermitted_entry_is_refused(self, db, make_business, orchestrator, storage) -> None:
        business = make_business(plan_name=PlanTier.FREE)
        orchestrator.run(business.id, publish=True)
        assert storage.load_stored_entity(business.id).can_publish is False

        with pytest.raises(InputValidationError):
            orchestrator.publish_stored(business.id)
        assert _status(db, business.id) == BusinessStatus.CRAWLED

    def test_reviewed_entry_is_published(
        self,
        db,
        make_business,
        orchestrator,
        publisher,
        storage: ManualPublishStorage,
    ) -> None:
        business = make_business(plan_name=PlanTier.FREE)
        orchestrator.run(business.id)
        draft = EntityBuilder().build(
            business_name=business.name,
            business_url=business.url,
            crawl_data={"name": "Harbor Bistro"},
        )
        storage.store_entity_for_manual_publish(
            business_id=business.id,
            business_name=business.name,
            entity=draft.to_document(),
            can_publish=True,
            notability={"is_notable": False, "confidence": 0.6, "recommendation": "review"},
        )

        outcome = orchestrator.publish_stored(business.id)

        assert outcome.published
        assert outcome.qid in publisher.entities
        assert _status(db, business.id) == BusinessStatus.PUBLISHED
        assert storage.load_stored_entity(business.id).published_qid == outcome.qid


class TestStaleRecovery:
    def _stuck(self, make_business, status: str, *, age: timedelta, **values):
        return make_business(status=status, updated_at=utcnow() - age, **values)

    def test_stuck_runs_are_released(self, db, make_business, orchestrator) -> None:
        crawling = self._stuck(make_business, BusinessStatus.CRAWLING, age=timedelta(hours=2))
        generating = self._stuck(make_business, BusinessStatus.GENERATING, age=timedelta(hours=2))
        republishing = self._stuck(
            make_business, BusinessStatus.GENERATING, age=timedelta(hours=2), wikidata_qid="Q555"
        )
        jobs = CrawlJobRepository(db)
        job = jobs.create_job(business_id=crawling.id, job_type=CrawlJobType.CRAWL)
        jobs.mark_running(job_id=job.id)
        db.commit()

        recovered = orchestrator.recover_stale_runs(older_than=utcnow() - timedelta(hours=1))

        assert set(recovered) == {crawling.id, generating.id, republishing.id}
        stored = BusinessRepository(db).require_business(crawling.id)
        assert stored.status == BusinessStatus.ERROR
        assert "interrupted" in stored.error_message
        assert _status(db, generating.id) == BusinessStatus.CRAWLED
        assert _status(db, republishing.id) == BusinessStatus.PUBLISHED
        db.expire_all()
        assert CrawlJobRepository(db).get_job(job.id).status == CrawlJobStatus.FAILED

    def test_recent_and_held_runs_are_untouched(self, db, make_business, orchestrator) -> None:
        recent = self._stuck(make_business, BusinessStatus.CRAWLING, age=timedelta(minutes=5))
        held = self._stuck(make_business, BusinessStatus.GENERATING, age=timedelta(hours=2))
        orchestrator.registry.acquire(held.id)

        try:
            recovered = orchestrator.recover_stale_runs(older_than=utcnow() - timedelta(hours=1))
        finally:
            orchestrator.registry.release(held.id)

        assert recovered == []
        assert _status(db, recent.id) == BusinessStatus.CRAWLING
        assert _status(db, held.id) == BusinessStatus.GENERATING

    def test_recovered_business_can_run_again(self, db, make_business, orchestrator) -> None:
        business = self._stuck(make_business, BusinessStatus.CRAWLING, age=timedelta(hours=2))
        orchestrator.recover_stale_runs(older_than=utcnow() - timedelta(hours=1))

        result = orchestrator.run(business.id)

        assert result.success
        assert result.crawl_succeeded
