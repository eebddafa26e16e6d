"""
app/scheduler/jobs.py

APScheduler-based periodic driver for unattended CFP runs.

Sweep
-----
Every ``CFP_SWEEP_INTERVAL_MINUTES`` (default 15) the ``cfp_automation_sweep``
job loads automation-enabled businesses with their teams, evaluates the
tier policy in ``cfp.automation`` and submits runs to the shared worker pool:

  should_auto_crawl    -> full CFP run (publish decided by the tier config)
  should_auto_publish  -> publish-only run

Businesses already running (single-flight) are logged and skipped. Before
evaluating, rows stuck in crawling or generating for longer than
``CFP_STALE_RUN_MINUTES`` (default 60) by a run that no longer exists are
released through ``CFPOrchestrator.recover_stale_runs``.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.config import get_scheduler_settings
from cfp.automation import should_auto_crawl, should_auto_publish
from cfp.errors import ConcurrencyConflict
from cfp.orchestrator import CFPOrchestrator, TaskExecutor
from db.base import utcnow
from db.repositories.business_repository import BusinessRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepSummary:
    evaluated: int = 0
    crawl_submitted: int = 0
    publish_submitted: int = 0
    skipped_active: int = 0
    recovered: int = 0


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------


@contextmanager
def _session_scope(session_factory: Callable[[], Session]) -> Iterator[Session]:
    """Yield a fresh session and ensure it is closed on exit."""
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Job: CFP automation sweep
# ---------------------------------------------------------------------------


def run_automation_sweep(
    *,
    orchestrator: CFPOrchestrator,
    executor: TaskExecutor,
    session_factory: Callable[[], Session],
    now: datetime | None = None,
    batch_limit: int = 500,
    stale_after: timedelta = timedelta(minutes=60),
) -> SweepSummary:
    """
    Release stale active runs, then evaluate automation policy for every
    enabled business and submit runs.
    """
    now = now or utcnow()
    logger.info("Scheduler: cfp_automation_sweep starting")

    recovered = orchestrator.recover_stale_runs(older_than=now - stale_after)
    if recovered:
        logger.warning("Scheduler: cfp_automation_sweep recovered stale runs count=%d", len(recovered))

    with _session_scope(session_factory) as db:
        candidates = BusinessRepository(db).list_automation_candidates(limit=batch_limit)
        decisions = [
            (business.id, should_auto_crawl(business, team, now), should_auto_publish(business, team))
            for business, team in candidates
        ]

    crawl_submitted = publish_submitted = skipped_active = 0
    for business_id, crawl_due, publish_due in decisions:
        if not crawl_due and not publish_due:
            continue
        try:
            if crawl_due:
                orchestrator.submit(executor, business_id)
                crawl_submitted += 1
            else:
                orchestrator.submit(executor, business_id, publish_only=True, user_initiated=False)
                publish_submitted += 1
        except ConcurrencyConflict:
            skipped_active += 1
            logger.info("Scheduler: cfp_automation_sweep skipped active business_id=%s", business_id)
        except Exception:  # noqa: BLE001
            logger.exception("Scheduler: cfp_automation_sweep submit failed business_id=%s", business_id)

    summary = SweepSummary(
        evaluated=len(decisions),
        crawl_submitted=crawl_submitted,
        publish_submitted=publish_submitted,
        skipped_active=skipped_active,
        recovered=len(recovered),
    )
    logger.info(
        "Scheduler: cfp_automation_sweep complete evaluated=%d crawl=%d publish=%d skipped_active=%d recovered=%d",
        summary.evaluated,
        summary.crawl_submitted,
        summary.publish_submitted,
        summary.skipped_active,
        summary.recovered,
    )
    return summary


def _run_configured_sweep() -> None:
    from app.services.cfp_service import get_cfp_orchestrator, get_worker_pool
    from db.session import SessionLocal

    settings = get_scheduler_settings()
    try:
        run_automation_sweep(
            orchestrator=get_cfp_orchestrator(),
            executor=get_worker_pool(),
            session_factory=SessionLocal,
            batch_limit=settings.batch_limit,
            stale_after=timedelta(minutes=settings.stale_run_minutes),
        )
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler: cfp_automation_sweep failed")


# ---------------------------------------------------------------------------
# Scheduler factory
# ---------------------------------------------------------------------------


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register the periodic automation job.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    The caller must call ``.start()`` and ``.shutdown(wait=True)`` at the
    appropriate lifecycle points.
    """
    settings = get_scheduler_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        _run_configured_sweep,
        trigger="interval",
        minutes=settings.sweep_interval_minutes,
        id="cfp_automation_sweep",
        name="CFP automation sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=settings.sweep_interval_minutes * 60,
    )

    return scheduler
