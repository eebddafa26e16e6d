"""
tests/test_scheduler.py

Tests for the APScheduler automation sweep.

Coverage
--------
- Due businesses get a full run; crawled ones get a publish-only run
- Free tier, disabled automation, errored and fresh businesses are left alone
- Businesses already in flight are counted as skipped
- Rows stuck in generating are released first and then evaluated
- Submitted tasks run to completion through the orchestrator
- build_scheduler registers a single coalescing job
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.scheduler.jobs import build_scheduler, run_automation_sweep
from db.models.business import BusinessStatus
from db.models.team import PlanTier
from db.repositories.business_repository import BusinessRepository

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


class _RecordingExecutor:
    def __init__(self) -> None:
        self.tasks: list[tuple] = []

    def submit(self, task, *args, **kwargs) -> None:
        self.tasks.append((task, args, kwargs))

    def run_all(self) -> None:
        for task, args, kwargs in self.tasks:
            task(*args, **kwargs)


class TestAutomationSweep:
    def test_submits_due_work(self, make_business, orchestrator, session_factory) -> None:
        never_crawled = make_business(plan_name=PlanTier.PRO)
        stale = make_business(
            plan_name=PlanTier.PRO,
            status=BusinessStatus.CRAWLED,
            last_crawled_at=NOW - timedelta(days=8),
        )
        awaiting_publish = make_business(
            plan_name=PlanTier.PRO,
            status=BusinessStatus.CRAWLED,
            last_crawled_at=NOW - timedelta(days=1),
            crawl_data={"name": "Harbor Bistro"},
        )
        executor = _RecordingExecutor()

        summary = run_automation_sweep(
            orchestrator=orchestrator,
            executor=executor,
            session_factory=session_factory,
            now=NOW,
        )

        assert summary.evaluated == 3
        assert summary.crawl_submitted == 2
        assert summary.publish_submitted == 1
        submitted = {args[0] for _, args, _ in executor.tasks}
        assert submitted == {never_crawled.id, stale.id, awaiting_publish.id}
        for business_id in submitted:
            assert orchestrator.registry.is_active(business_id)

    def test_leaves_ineligible_businesses_alone(self, make_business, orchestrator, session_factory) -> None:
        make_business(plan_name=PlanTier.FREE)
        make_business(plan_name=PlanTier.PRO, automation_enabled=False)
        make_business(
            plan_name=PlanTier.PRO,
            status=BusinessStatus.PUBLISHED,
            last_crawled_at=NOW - timedelta(days=1),
            last_auto_published_at=NOW - timedelta(hours=20),
        )
        make_business(plan_name=PlanTier.PRO, status=BusinessStatus.ERROR)
        executor = _RecordingExecutor()

        summary = run_automation_sweep(
            orchestrator=orchestrator,
            executor=executor,
            session_factory=session_factory,
            now=NOW,
        )

        assert summary.evaluated == 3
        assert summary.crawl_submitted == 0
        assert summary.publish_submitted == 0
        assert executor.tasks == []

    def test_active_business_is_skipped(self, make_business, orchestrator, session_factory) -> None:
        business = make_business(plan_name=PlanTier.PRO)
        orchestrator.registry.acquire(business.id)
        executor = _RecordingExecutor()

        summary = run_automation_sweep(
            orchestrator=orchestrator,
            executor=executor,
            session_factory=session_factory,
            now=NOW,
        )

        assert summary.skipped_active == 1
        assert executor.tasks == []
        orchestrator.registry.release(business.id)

    def test_stale_run_is_released_then_evaluated(self, db, make_business, orchestrator, session_factory) -> None:
        stuck = make_business(
            plan_name=PlanTier.PRO,
            status=BusinessStatus.GENERATING,
            updated_at=NOW - timedelta(hours=2),
            last_crawled_at=NOW - timedelta(days=1),
            crawl_data={"name": "Harbor Bistro"},
        )
        executor = _RecordingExecutor()

        summary = run_automation_sweep(
            orchestrator=orchestrator,
            executor=executor,
            session_factory=session_factory,
            now=NOW,
            stale_after=timedelta(minutes=30),
        )

        assert summary.recovered == 1
        assert summary.publish_submitted == 1
        assert BusinessRepository(db).get_status(stuck.id) == BusinessStatus.CRAWLED

    def test_submitted_runs_complete(self, db, make_business, orchestrator, session_factory) -> None:
        business = make_business(plan_name=PlanTier.PRO)
        executor = _RecordingExecutor()
        run_automation_sweep(orchestrator=orchestrator, executor=executor, session_factory=session_factory, now=NOW)

        executor.run_all()

        stored = BusinessRepository(db).require_business(business.id)
        assert stored.status == BusinessStatus.PUBLISHED
        assert stored.last_auto_published_at is not None
        assert not orchestrator.registry.is_active(business.id)


class TestBuildScheduler:
    def test_registers_sweep_job(self) -> None:
        scheduler = build_scheduler()

        jobs = scheduler.get_jobs()

        assert [job.id for job in jobs] == ["cfp_automation_sweep"]
        assert jobs[0].max_instances == 1
        assert jobs[0].coalesce
