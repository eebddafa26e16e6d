"""
cfp/orchestrator.py

CFP orchestrator: one Crawl -> Fingerprint -> Publish run per business.

Status ownership
----------------
The orchestrator is the only writer of ``Business.status``. Every write is a
compare-and-set through ``BusinessRepository.transition_status``:

    start          <runnable> -> crawling      (before any external I/O)
    crawl + fp ok  crawling   -> crawled
    stage failure  crawling   -> error          (crawl_data is kept)
    publish gate   crawled/published -> generating -> published | crawled
    stale recovery crawling -> error; generating -> published | crawled

Single-flight is enforced in-process by ``SingleFlightRegistry`` and across
processes by the compare-and-set into ``crawling``.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from cfp.automation import (
    AutomationConfig,
    calculate_next_crawl_date,
    get_automation_config_for_team,
)
from cfp.crawl_stage import CrawlStage
from cfp.errors import (
    ConcurrencyConflict,
    InvalidStatusTransition,
    PipelineError,
    describe_error,
    is_retryable,
)
from cfp.fingerprint_stage import FingerprintStage
from cfp.publish_gate import PublishGate, PublishOutcome
from cfp.single_flight import SingleFlightRegistry
from cfp.status import ACTIVE_STATUSES, RUNNABLE_STATUSES, publish_reversion_target
from db.base import utcnow
from db.models.business import BusinessStatus
from db.repositories.business_repository import BusinessRepository
from db.repositories.crawl_job_repository import CrawlJobRepository
from db.repositories.errors import BusinessNotFoundError, RepositoryError, StatusConflictError

logger = logging.getLogger(__name__)


class TaskExecutor(Protocol):
    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        ...


@dataclass(frozen=True)
class CFPRunResult:
    business_id: uuid.UUID
    success: bool
    final_status: str | None
    crawl_succeeded: bool = False
    fingerprint_succeeded: bool = False
    publish_attempted: bool = False
    published: bool = False
    qid: str | None = None
    fingerprint_id: uuid.UUID | None = None
    can_publish: bool | None = None
    error: str | None = None
    retryable: bool = False
    abandoned: bool = False
    duration_ms: int = 0


class _RunState:
    """Mutable accumulator for a single run."""

    def __init__(self, business_id: uuid.UUID) -> None:
        self.business_id = business_id
        self.started = time.monotonic()
        self.final_status: str | None = None
        self.crawl_succeeded = False
        self.fingerprint_succeeded = False
        self.fingerprint_id: uuid.UUID | None = None
        self.publish: PublishOutcome | None = None
        self.error: str | None = None
        self.retryable = False
        self.abandoned = False

    def result(self) -> CFPRunResult:
        publish = self.publish
        return CFPRunResult(
            business_id=self.business_id,
            success=self.error is None and not self.abandoned,
            final_status=self.final_status,
            crawl_succeeded=self.crawl_succeeded,
            fingerprint_succeeded=self.fingerprint_succeeded,
            publish_attempted=bool(publish and publish.attempted),
            published=bool(publish and publish.published),
            qid=publish.qid if publish else None,
            fingerprint_id=self.fingerprint_id,
            can_publish=publish.can_publish if publish else None,
            error=self.error,
            retryable=self.retryable,
            abandoned=self.abandoned,
            duration_ms=int((time.monotonic() - self.started) * 1000),
        )


class CFPOrchestrator:
    """
    Composes the stages into one pipeline run per business.

    Args:
        session_factory: Opens a Session per run.
        registry: In-process single-flight registry shared by every caller.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        crawl_stage: CrawlStage,
        fingerprint_stage: FingerprintStage,
        publish_gate: PublishGate,
        registry: SingleFlightRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._crawl_stage = crawl_stage
        self._fingerprint_stage = fingerprint_stage
        self._publish_gate = publish_gate
        self._registry = registry or SingleFlightRegistry()
        self._clock = clock

    @property
    def registry(self) -> SingleFlightRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(
        self,
        business_id: uuid.UUID,
        *,
        publish: bool | None = None,
        user_initiated: bool = False,
        now: datetime | None = None,
    ) -> CFPRunResult:
        """
        Run the full pipeline synchronously.

        ``publish=None`` defers to the team's automation config. Raises
        ConcurrencyConflict when a run is already active for the business.
        """

        with self._registry.hold(business_id):
            return self._run_pipeline(business_id, publish, user_initiated, now)

    def publish(self, business_id: uuid.UUID, *, user_initiated: bool = True) -> CFPRunResult:
        """Run only the publish gate for a crawled or published business."""

        with self._registry.hold(business_id):
            return self._run_publish_only(business_id, user_initiated)

    def publish_stored(self, business_id: uuid.UUID) -> PublishOutcome:
        """Publish a reviewed entity from manual storage."""

        with self._registry.hold(business_id):
            with self._session_factory() as db:
                return self._publish_gate.publish_stored(db, business_id)

    def reset(self, business_id: uuid.UUID) -> str:
        """Move a business out of ``error`` back to ``pending``."""

        with self._registry.hold(business_id):
            with self._session_factory() as db:
                BusinessRepository(db).transition_status(
                    business_id=business_id,
                    expected=BusinessStatus.ERROR,
                    target=BusinessStatus.PENDING,
                    values={"error_message": None},
                )
                db.commit()
        logger.info("Business reset business_id=%s", business_id)
        return BusinessStatus.PENDING

    def recover_stale_runs(self, *, older_than: datetime) -> list[uuid.UUID]:
        """
        Release businesses left in ``crawling`` or ``generating`` by a run that
        died (process restart, killed worker) without reaching a terminal status.

        Only rows untouched since ``older_than`` and not held by a live run in
        this process are recovered: ``crawling -> error`` with its unfinished
        jobs failed, and ``generating -> published | crawled``.
        """

        with self._session_factory() as db:
            stale = [
                (business.id, business.status, business.wikidata_qid)
                for business in BusinessRepository(db).list_stale(statuses=ACTIVE_STATUSES, updated_before=older_than)
            ]

        recovered: list[uuid.UUID] = []
        for business_id, status, qid in stale:
            if not self._registry.try_acquire(business_id):
                continue
            try:
                with self._session_factory() as db:
                    if self._recover_one(db, business_id, status, qid, older_than):
                        recovered.append(business_id)
            except RepositoryError:
                logger.exception("Stale run recovery failed business_id=%s", business_id)
            finally:
                self._registry.release(business_id)
        return recovered

    def submit(
        self,
        executor: TaskExecutor,
        business_id: uuid.UUID,
        *,
        publish: bool | None = None,
        user_initiated: bool = False,
        publish_only: bool = False,
    ) -> None:
        """
        Claim the single-flight slot now and hand the run to ``executor``.
        Conflicts surface to the caller immediately instead of in the worker.
        """

        self._registry.acquire(business_id)
        try:
            if publish_only:
                executor.submit(self._publish_and_release, business_id, user_initiated)
            else:
                executor.submit(self._run_and_release, business_id, publish, user_initiated)
        except Exception:
            self._registry.release(business_id)
            raise

    def get_status(self, db: Session, business_id: uuid.UUID) -> str | None:
        return BusinessRepository(db).get_status(business_id)

    # ------------------------------------------------------------------
    # Background task bodies
    # ------------------------------------------------------------------

    def _run_and_release(self, business_id: uuid.UUID, publish: bool | None, user_initiated: bool) -> None:
        try:
            self._log_result(self._run_pipeline(business_id, publish, user_initiated, None))
        except Exception:
            logger.exception("CFP run crashed business_id=%s", business_id)
        finally:
            self._registry.release(business_id)

    def _publish_and_release(self, business_id: uuid.UUID, user_initiated: bool) -> None:
        try:
            self._log_result(self._run_publish_only(business_id, user_initiated))
        except Exception:
            logger.exception("Publish run crashed business_id=%s", business_id)
        finally:
            self._registry.release(business_id)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run_pipeline(
        self,
        business_id: uuid.UUID,
        publish: bool | None,
        user_initiated: bool,
        now: datetime | None,
    ) -> CFPRunResult:
        state = _RunState(business_id)
        now = now or self._clock()

        with self._session_factory() as db:
            repository = BusinessRepository(db)
            business = repository.get_business(business_id)
            if business is None:
                return self._abandon(state, "business not found before start")
            config = get_automation_config_for_team(business.team)

            self._enter_crawling(db, business_id, business.status)
            logger.info("CFP run started business_id=%s user_initiated=%s", business_id, user_initiated)

            try:
                self._crawl_stage.execute(
                    db,
                    repository.require_business(business_id),
                    crawled_at=now,
                    next_crawl_at=calculate_next_crawl_date(config.crawl_frequency, now),
                )
                state.crawl_succeeded = True

                outcome = self._fingerprint_stage.execute(db, repository.require_business(business_id))
                state.fingerprint_succeeded = True
                state.fingerprint_id = outcome.fingerprint_id

                repository.transition_status(
                    business_id=business_id,
                    expected=BusinessStatus.CRAWLING,
                    target=BusinessStatus.CRAWLED,
                    values={"error_message": None},
                )
                db.commit()
                state.final_status = BusinessStatus.CRAWLED
            except BusinessNotFoundError:
                db.rollback()
                return self._abandon(state, "business deleted during crawl/fingerprint")
            except Exception as exc:
                self._mark_business_failed(db=db, business_id=business_id, exc=exc, state=state)
                return state.result()

            if self._should_publish(publish, user_initiated, config):
                self._publish_step(db, state, config, user_initiated)

        return state.result()

    def _run_publish_only(self, business_id: uuid.UUID, user_initiated: bool) -> CFPRunResult:
        state = _RunState(business_id)
        with self._session_factory() as db:
            business = BusinessRepository(db).get_business(business_id)
            if business is None:
                return self._abandon(state, "business not found before publish")
            state.final_status = business.status
            state.crawl_succeeded = business.crawl_data is not None
            config = get_automation_config_for_team(business.team)
            self._publish_step(db, state, config, user_initiated)
        return state.result()

    def _publish_step(
        self,
        db: Session,
        state: _RunState,
        config: AutomationConfig,
        user_initiated: bool,
    ) -> None:
        try:
            state.publish = self._publish_gate.execute(
                db,
                state.business_id,
                permitted=user_initiated or config.auto_publish,
                richness=config.entity_richness,
                automated=not user_initiated,
            )
            state.final_status = state.publish.final_status
            if state.publish.error:
                state.error = state.publish.error
        except BusinessNotFoundError:
            db.rollback()
            self._abandon(state, "business deleted during publish")
        except (StatusConflictError, InvalidStatusTransition) as exc:
            db.rollback()
            state.error = describe_error(exc)
            state.retryable = isinstance(exc, StatusConflictError)
            state.final_status = BusinessRepository(db).get_status(state.business_id)
            logger.warning("Publish skipped business_id=%s error=%s", state.business_id, state.error)
        except (PipelineError, RepositoryError) as exc:
            # Publish failures never move the business to error.
            db.rollback()
            state.error = describe_error(exc)
            state.retryable = is_retryable(exc)
            state.final_status = BusinessRepository(db).get_status(state.business_id)
            logger.error("Publish gate failed business_id=%s error=%s", state.business_id, state.error)

    @staticmethod
    def _should_publish(publish: bool | None, user_initiated: bool, config: AutomationConfig) -> bool:
        if publish is not None:
            return publish
        return user_initiated or config.auto_publish

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def _enter_crawling(self, db: Session, business_id: uuid.UUID, current: str) -> None:
        repository = BusinessRepository(db)
        if current in ACTIVE_STATUSES:
            raise ConcurrencyConflict(business_id, f"Business {business_id} is already {current}.")
        if current not in RUNNABLE_STATUSES:
            raise InvalidStatusTransition(current, BusinessStatus.CRAWLING)
        try:
            repository.transition_status(
                business_id=business_id,
                expected=current,
                target=BusinessStatus.CRAWLING,
                values={"error_message": None},
            )
            db.commit()
        except StatusConflictError as exc:
            db.rollback()
            raise ConcurrencyConflict(business_id) from exc

    def _recover_one(
        self,
        db: Session,
        business_id: uuid.UUID,
        status: str,
        qid: str | None,
        older_than: datetime,
    ) -> bool:
        repository = BusinessRepository(db)
        try:
            if status == BusinessStatus.CRAWLING:
                message = f"Run interrupted: no progress since {older_than.isoformat()}."
                repository.transition_status(
                    business_id=business_id,
                    expected=BusinessStatus.CRAWLING,
                    target=BusinessStatus.ERROR,
                    values={"error_message": message},
                )
                CrawlJobRepository(db).fail_unfinished(business_id=business_id, error_message=message)
                target = BusinessStatus.ERROR
            else:
                target = publish_reversion_target(qid)
                repository.transition_status(
                    business_id=business_id,
                    expected=BusinessStatus.GENERATING,
                    target=target,
                )
            db.commit()
        except (StatusConflictError, BusinessNotFoundError):
            # Moved on since the scan.
            db.rollback()
            return False
        logger.warning("Recovered stale run business_id=%s from=%s to=%s", business_id, status, target)
        return True

    def _mark_business_failed(
        self,
        *,
        db: Session,
        business_id: uuid.UUID,
        exc: Exception,
        state: _RunState,
    ) -> None:
        error_message = describe_error(exc)
        state.error = error_message
        state.retryable = is_retryable(exc)
        logger.error(
            "CFP run failed business_id=%s retryable=%s error=%s",
            business_id,
            state.retryable,
            error_message,
        )
        try:
            db.rollback()
            BusinessRepository(db).transition_status(
                business_id=business_id,
                expected=BusinessStatus.CRAWLING,
                target=BusinessStatus.ERROR,
                values={"error_message": error_message},
            )
            db.commit()
            state.final_status = BusinessStatus.ERROR
        except BusinessNotFoundError:
            db.rollback()
            self._abandon(state, "business deleted while recording failure")
        except Exception:
            db.rollback()
            logger.exception("Failed to persist business error state business_id=%s", business_id)
            state.final_status = BusinessRepository(db).get_status(business_id)

    @staticmethod
    def _abandon(state: _RunState, reason: str) -> CFPRunResult:
        logger.warning("CFP run abandoned business_id=%s reason=%s", state.business_id, reason)
        state.abandoned = True
        state.final_status = None
        return state.result()

    @staticmethod
    def _log_result(result: CFPRunResult) -> None:
        logger.info(
            "CFP run finished business_id=%s success=%s status=%s published=%s qid=%s duration_ms=%d",
            result.business_id,
            result.success,
            result.final_status,
            result.published,
            result.qid,
            result.duration_ms,
        )
