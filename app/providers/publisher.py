"""
app/providers/publisher.py

Knowledge-graph publisher adapters.

Only an in-memory publisher ships here; a production publisher implements the
same two methods against the destination's write API.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from app.providers.base import PublishResult
from cfp.errors import PublisherRejection

logger = logging.getLogger(__name__)


class InMemoryPublisher:
    """
    Assigns sequential identifiers and keeps every published payload.

    Args:
        first_qid: Numeric part of the first identifier handed out.
        reject_properties: Property ids the "destination schema" refuses;
            an entity carrying any of them is rejected.
        fail_with: Optional error message returned as a failed result.
    """

    def __init__(
        self,
        *,
        first_qid: int = 100000,
        reject_properties: set[str] | None = None,
        fail_with: str | None = None,
    ) -> None:
        self._next_qid = first_qid
        self._reject_properties = reject_properties or set()
        self._fail_with = fail_with
        self._lock = threading.Lock()
        self.entities: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None, bool]] = []

    def publish_entity(self, entity: dict[str, Any], is_production: bool) -> PublishResult:
        with self._lock:
            self.calls.append(("create", None, is_production))
            self._check(entity)
            if self._fail_with:
                return PublishResult(success=False, error=self._fail_with)
            qid = f"Q{self._next_qid}"
            self._next_qid += 1
            self.entities[qid] = copy.deepcopy(entity)
        logger.info("Entity published qid=%s production=%s", qid, is_production)
        return PublishResult(success=True, qid=qid)

    def update_entity(self, qid: str, entity: dict[str, Any], is_production: bool) -> PublishResult:
        with self._lock:
            self.calls.append(("update", qid, is_production))
            self._check(entity)
            if self._fail_with:
                return PublishResult(success=False, error=self._fail_with)
            if qid not in self.entities:
                return PublishResult(success=False, error=f"Unknown entity {qid}")
            self.entities[qid] = copy.deepcopy(entity)
        logger.info("Entity updated qid=%s production=%s", qid, is_production)
        return PublishResult(success=True, qid=qid)

    def _check(self, entity: dict[str, Any]) -> None:
        rejected = sorted(set(entity.get("claims", {})) & self._reject_properties)
        if rejected:
            raise PublisherRejection(
                f"Destination schema rejected properties: {', '.join(rejected)}",
                details={"properties": rejected},
            )
