"""
cfp/publish_gate.py

Publish gate: notability -> entity assembly -> eligibility -> publish attempt
-> manual storage.

The gate owns the ``generating`` window. It enters it with a compare-and-set
and always leaves it before returning, either to ``published`` (identifier
assigned) or back to ``crawled`` (``published`` when a live identifier already
exists). Publisher failures are reported on the outcome, never retried, and
never move the business to ``error``.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.providers.base import Publisher, PublishResult
from app.storage.manual_publish import ManualPublishStorage, StoredManualEntity
from cfp.entity_builder import EntityBuilder, EntityDraft, EntityRichness
from cfp.errors import InputValidationError, InvalidStatusTransition, PipelineError, describe_error
from cfp.notability import NotabilityAssessment, NotabilityAssessor
from cfp.retry import call_with_timeout
from cfp.status import PUBLISHABLE_STATUSES, publish_reversion_target
from db.base import utcnow
from db.models.business import Business, BusinessStatus
from db.repositories.business_repository import BusinessRepository
from db.repositories.errors import ManualStorageError
from db.repositories.fingerprint_repository import FingerprintRepository
from db.repositories.wikidata_entity_repository import WikidataEntityRepository

logger = logging.getLogger(__name__)

_PAYLOAD_KEYS = ("labels", "descriptions", "claims")


@dataclass(frozen=True)
class PublishDecision:
    can_publish: bool
    attempt: bool
    reason: str


def decide_publish(
    notability: NotabilityAssessment,
    *,
    permitted: bool,
    publish_threshold: float = 0.7,
    review_threshold: float = 0.5,
    entity_problems: list[str] | None = None,
) -> PublishDecision:
    """
    ``can_publish`` is evaluated for every entity. Only notable entities at or
    above the publish threshold are sent automatically. Anything else at or
    above the review threshold, notable or not, is flagged publishable for a
    human reviewer.
    """

    if not permitted:
        return PublishDecision(False, False, "Publishing is not enabled for this plan.")

    if notability.is_notable:
        if notability.confidence < publish_threshold:
            if notability.confidence >= review_threshold:
                return PublishDecision(
                    True,
                    False,
                    f"Notable but confidence {notability.confidence:.2f} is below {publish_threshold:.2f}; "
                    "queued for manual review.",
                )
            return PublishDecision(
                False,
                False,
                f"Notability confidence {notability.confidence:.2f} is below {review_threshold:.2f}.",
            )
        if entity_problems:
            return PublishDecision(True, False, "Entity is incomplete: " + "; ".join(entity_problems))
        return PublishDecision(True, True, "Notable with sufficient confidence.")

    if notability.confidence >= review_threshold:
        return PublishDecision(True, False, "Borderline notability; queued for manual review.")
    return PublishDecision(False, False, notability.recommendation)


def publisher_payload(document: dict[str, Any]) -> dict[str, Any]:
    """Strip stored-only keys (provenance, enrichment level) from an entity document."""
    return {key: document[key] for key in _PAYLOAD_KEYS if key in document}


def _published_qid(result: PublishResult | None) -> str | None:
    if result is None or not result.success:
        return None
    return result.qid


@dataclass(frozen=True)
class PublishOutcome:
    business_id: uuid.UUID
    final_status: str
    can_publish: bool
    attempted: bool
    published: bool
    qid: str | None = None
    error: str | None = None
    reason: str = ""
    notability: dict[str, Any] = field(default_factory=dict)
    stored: StoredManualEntity | None = None


class PublishGate:
    """
    Args:
        assessor: Notability assessor (search + scoring).
        publisher: Knowledge-graph publisher adapter.
        storage: Manual-publish fallback store.
        published_to: Target identifier recorded on WikidataEntity rows.
    """

    def __init__(
        self,
        *,
        assessor: NotabilityAssessor,
        publisher: Publisher,
        storage: ManualPublishStorage,
        entity_builder: EntityBuilder | None = None,
        is_production: bool = False,
        published_to: str = "test.wikidata",
        publish_threshold: float = 0.7,
        review_threshold: float = 0.5,
        timeout_seconds: float | None = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._assessor = assessor
        self._publisher = publisher
        self._storage = storage
        self._builder = entity_builder or EntityBuilder()
        self._is_production = is_production
        self._published_to = published_to
        self._publish_threshold = publish_threshold
        self._review_threshold = review_threshold
        self._timeout_seconds = timeout_seconds
        self._clock = clock

    def execute(
        self,
        db: Session,
        business_id: uuid.UUID,
        *,
        permitted: bool,
        richness: str = EntityRichness.BASIC,
        automated: bool = False,
    ) -> PublishOutcome:
        business = self._enter_generating(db, business_id)
        existing_qid = business.wikidata_qid
        business_name = business.name
        known_qid = existing_qid or self._stored_qid(business_id)
        draft: EntityDraft | None = None
        notability: NotabilityAssessment | None = None
        decision: PublishDecision | None = None
        result: PublishResult | None = None
        finalized = False
        try:
            fingerprint = FingerprintRepository(db).get_latest(business_id)
            notability = self._assessor.assess(
                business.name,
                business.crawl_data,
                business_url=business.url,
            )
            draft = self._builder.build(
                business_name=business.name,
                business_url=business.url,
                crawl_data=business.crawl_data,
                notability=notability,
                richness=richness,
                fingerprint_id=fingerprint.id if fingerprint else None,
                visibility_score=fingerprint.visibility_score if fingerprint else None,
            )
            decision = decide_publish(
                notability,
                permitted=permitted,
                publish_threshold=self._publish_threshold,
                review_threshold=self._review_threshold,
                entity_problems=draft.missing_requirements(),
            )
            logger.info(
                "Publish decision business_id=%s notable=%s confidence=%.2f can_publish=%s attempt=%s",
                business_id,
                notability.is_notable,
                notability.confidence,
                decision.can_publish,
                decision.attempt,
            )

            if decision.attempt:
                result = self._attempt(draft.to_payload(), known_qid)
            final_status = self._finish(
                db,
                business_id=business_id,
                existing_qid=existing_qid,
                result=result,
                document=draft.to_document(),
                enrichment_level=draft.enrichment_level,
                automated=automated,
            )
            finalized = True
        except Exception:
            if draft is not None and notability is not None:
                self._store_after_failure(
                    business_id,
                    business_name,
                    draft,
                    decision.can_publish if decision is not None else False,
                    notability,
                    _published_qid(result) or known_qid,
                )
            raise
        finally:
            if not finalized:
                # The knowledge graph may already hold the entity; keep its QID on the row.
                self._revert(db, business_id, existing_qid, new_qid=_published_qid(result))

        published = result is not None and result.success
        qid = result.qid if published else known_qid
        stored = self._store(business_id, business_name, draft, decision.can_publish, notability, qid)
        return PublishOutcome(
            business_id=business_id,
            final_status=final_status,
            can_publish=decision.can_publish,
            attempted=result is not None,
            published=published,
            qid=qid,
            error=result.error if result is not None and not result.success else None,
            reason=decision.reason,
            notability=notability.to_dict(),
            stored=stored,
        )

    def publish_stored(self, db: Session, business_id: uuid.UUID) -> PublishOutcome:
        """
        Publish an entity previously written to manual storage. Used by the
        operator CLI after human review.
        """

        stored = self._storage.load_stored_entity(business_id)
        if stored is None:
            raise InputValidationError(f"No stored entity for business {business_id}.")
        if not stored.can_publish:
            raise InputValidationError(f"Stored entity for business {business_id} is not marked publishable.")

        business = self._enter_generating(db, business_id)
        existing_qid = business.wikidata_qid
        result: PublishResult | None = None
        finalized = False
        try:
            result = self._attempt(publisher_payload(stored.entity), existing_qid or stored.published_qid)
            final_status = self._finish(
                db,
                business_id=business_id,
                existing_qid=existing_qid,
                result=result,
                document=stored.entity,
                enrichment_level=int(stored.entity.get("enrichment_level") or 1),
                automated=False,
            )
            finalized = True
        except Exception:
            new_qid = _published_qid(result)
            if new_qid:
                try:
                    self._storage.store_entity_for_manual_publish(
                        business_id=business_id,
                        business_name=stored.business_name,
                        entity=stored.entity,
                        can_publish=stored.can_publish,
                        notability=stored.notability,
                        published_qid=new_qid,
                    )
                except ManualStorageError:
                    logger.exception("Failed to record published QID business_id=%s qid=%s", business_id, new_qid)
            raise
        finally:
            if not finalized:
                self._revert(db, business_id, existing_qid, new_qid=_published_qid(result))

        qid = result.qid if result.success else existing_qid
        if result.success:
            stored = self._storage.store_entity_for_manual_publish(
                business_id=business_id,
                business_name=stored.business_name,
                entity=stored.entity,
                can_publish=stored.can_publish,
                notability=stored.notability,
                published_qid=qid,
            )
        return PublishOutcome(
            business_id=business_id,
            final_status=final_status,
            can_publish=stored.can_publish,
            attempted=True,
            published=result.success,
            qid=qid,
            error=None if result.success else result.error,
            reason="Published from manual storage." if result.success else "Manual publish failed.",
            notability=stored.notability or {},
            stored=stored,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enter_generating(self, db: Session, business_id: uuid.UUID) -> Business:
        repository = BusinessRepository(db)
        business = repository.require_business(business_id)
        if business.status not in PUBLISHABLE_STATUSES:
            raise InvalidStatusTransition(
                business.status,
                BusinessStatus.GENERATING,
                reason="publishing requires a crawled or published business",
            )
        repository.transition_status(
            business_id=business_id,
            expected=business.status,
            target=BusinessStatus.GENERATING,
        )
        db.commit()
        return repository.require_business(business_id)

    def _attempt(self, payload: dict[str, Any], existing_qid: str | None) -> PublishResult:
        try:
            if existing_qid:
                return call_with_timeout(
                    lambda: self._publisher.update_entity(existing_qid, payload, self._is_production),
                    timeout_seconds=self._timeout_seconds,
                    operation="publish update",
                    pool="publish",
                )
            return call_with_timeout(
                lambda: self._publisher.publish_entity(payload, self._is_production),
                timeout_seconds=self._timeout_seconds,
                operation="publish",
                pool="publish",
            )
        except PipelineError as exc:
            logger.warning("Publish attempt failed qid=%s error=%s", existing_qid, exc)
            return PublishResult(success=False, error=describe_error(exc))

    def _finish(
        self,
        db: Session,
        *,
        business_id: uuid.UUID,
        existing_qid: str | None,
        result: PublishResult | None,
        document: dict[str, Any],
        enrichment_level: int,
        automated: bool,
    ) -> str:
        repository = BusinessRepository(db)
        if result is not None and result.success and result.qid:
            published_at = self._clock()
            WikidataEntityRepository(db).create_version(
                business_id=business_id,
                qid=result.qid,
                entity_data=document,
                published_to=self._published_to,
                enrichment_level=enrichment_level,
                published_at=published_at,
            )
            values: dict[str, Any] = {
                "wikidata_qid": result.qid,
                "wikidata_published_at": published_at,
                "error_message": None,
            }
            if automated:
                values["last_auto_published_at"] = published_at
            repository.transition_status(
                business_id=business_id,
                expected=BusinessStatus.GENERATING,
                target=BusinessStatus.PUBLISHED,
                values=values,
            )
            db.commit()
            logger.info("Business published business_id=%s qid=%s target=%s", business_id, result.qid, self._published_to)
            return BusinessStatus.PUBLISHED

        target = publish_reversion_target(existing_qid)
        repository.transition_status(
            business_id=business_id,
            expected=BusinessStatus.GENERATING,
            target=target,
        )
        db.commit()
        if result is not None:
            logger.warning("Publish not completed business_id=%s reverted_to=%s error=%s", business_id, target, result.error)
        return target

    def _revert(
        self,
        db: Session,
        business_id: uuid.UUID,
        existing_qid: str | None,
        *,
        new_qid: str | None = None,
    ) -> None:
        """Leave ``generating`` after a failure. ``new_qid`` is set when the publisher already accepted the entity."""

        db.rollback()
        repository = BusinessRepository(db)
        try:
            if repository.get_status(business_id) != BusinessStatus.GENERATING:
                return
            if new_qid:
                repository.transition_status(
                    business_id=business_id,
                    expected=BusinessStatus.GENERATING,
                    target=BusinessStatus.PUBLISHED,
                    values={"wikidata_qid": new_qid, "wikidata_published_at": self._clock()},
                )
                logger.warning("Recorded QID after failed finalize business_id=%s qid=%s", business_id, new_qid)
            else:
                repository.transition_status(
                    business_id=business_id,
                    expected=BusinessStatus.GENERATING,
                    target=publish_reversion_target(existing_qid),
                )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to revert generating status business_id=%s qid=%s", business_id, new_qid)

    def _stored_qid(self, business_id: uuid.UUID) -> str | None:
        try:
            stored = self._storage.load_stored_entity(business_id)
        except ManualStorageError:
            logger.exception("Failed to read stored entity business_id=%s", business_id)
            return None
        return stored.published_qid if stored is not None else None

    def _store_after_failure(
        self,
        business_id: uuid.UUID,
        business_name: str,
        draft: EntityDraft,
        can_publish: bool,
        notability: NotabilityAssessment,
        qid: str | None,
    ) -> None:
        try:
            self._store(business_id, business_name, draft, can_publish, notability, qid)
        except ManualStorageError:
            logger.exception("Failed to store entity after gate failure business_id=%s", business_id)

    def _store(
        self,
        business_id: uuid.UUID,
        business_name: str,
        draft: EntityDraft,
        can_publish: bool,
        notability: NotabilityAssessment,
        qid: str | None,
    ) -> StoredManualEntity:
        return self._storage.store_entity_for_manual_publish(
            business_id=business_id,
            business_name=business_name,
            entity=draft.to_document(),
            can_publish=can_publish,
            notability=notability.summary(),
            published_qid=qid,
        )
