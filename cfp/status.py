"""
cfp/status.py

Business lifecycle states and the legal transition table.

    pending -> crawling -> crawled -> generating -> published
                  \\           \\          \\            \\
                   +-----------+----------+------------+--> error

``crawled`` and ``published`` may re-enter ``crawling`` for refresh runs,
``generating`` reverts to ``crawled`` (or stays ``published``) when a
publish attempt does not produce an identifier, and ``error`` leaves only
through an explicit reset or a user-triggered retry.
"""

from __future__ import annotations

from cfp.errors import InvalidStatusTransition
from db.models.business import BusinessStatus

ALL_STATUSES: frozenset[str] = frozenset(
    {
        BusinessStatus.PENDING,
        BusinessStatus.CRAWLING,
        BusinessStatus.CRAWLED,
        BusinessStatus.GENERATING,
        BusinessStatus.PUBLISHED,
        BusinessStatus.ERROR,
    }
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    BusinessStatus.PENDING: frozenset({BusinessStatus.CRAWLING, BusinessStatus.ERROR}),
    BusinessStatus.CRAWLING: frozenset({BusinessStatus.CRAWLED, BusinessStatus.ERROR}),
    BusinessStatus.CRAWLED: frozenset(
        {BusinessStatus.GENERATING, BusinessStatus.CRAWLING, BusinessStatus.ERROR}
    ),
    BusinessStatus.GENERATING: frozenset(
        {BusinessStatus.PUBLISHED, BusinessStatus.CRAWLED, BusinessStatus.ERROR}
    ),
    BusinessStatus.PUBLISHED: frozenset(
        {BusinessStatus.CRAWLING, BusinessStatus.GENERATING, BusinessStatus.ERROR}
    ),
    BusinessStatus.ERROR: frozenset({BusinessStatus.PENDING, BusinessStatus.CRAWLING}),
}

# A business in one of these states has a run in flight.
ACTIVE_STATUSES: frozenset[str] = frozenset({BusinessStatus.CRAWLING, BusinessStatus.GENERATING})

# States a new CFP run may start from.
RUNNABLE_STATUSES: frozenset[str] = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if BusinessStatus.CRAWLING in targets
)

# States a publish-only run may start from.
PUBLISHABLE_STATUSES: frozenset[str] = frozenset({BusinessStatus.CRAWLED, BusinessStatus.PUBLISHED})


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    """Raise InvalidStatusTransition unless ``current -> target`` is legal."""

    if current not in ALL_STATUSES:
        raise InvalidStatusTransition(current, target, reason="unknown current status")
    if target not in ALL_STATUSES:
        raise InvalidStatusTransition(current, target, reason="unknown target status")
    if not can_transition(current, target):
        raise InvalidStatusTransition(current, target)


def is_active(status: str | None) -> bool:
    return status in ACTIVE_STATUSES


def is_cfp_complete(status: str | None, wikidata_qid: str | None) -> bool:
    """
    A business is CFP-complete only when it is published and holds an
    identifier. A fingerprint alone never counts.
    """

    return status == BusinessStatus.PUBLISHED and bool(wikidata_qid)


def publish_reversion_target(wikidata_qid: str | None) -> str:
    """Status to fall back to when a publish attempt does not succeed."""

    return BusinessStatus.PUBLISHED if wikidata_qid else BusinessStatus.CRAWLED
