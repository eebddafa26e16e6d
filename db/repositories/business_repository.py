"""
Repository for teams and businesses, including atomic status transitions.

Status is never written with a plain attribute assignment. Every change
goes through ``transition_status``, a compare-and-set UPDATE guarded by the
expected current status and validated against the transition table.

Bulk UPDATEs do not refresh loaded objects; re-read through ``get_business``.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from cfp.status import ensure_transition
from db.base import as_utc, utcnow
from db.models.business import Business, BusinessStatus
from db.models.team import PlanTier, Team
from db.repositories.errors import BusinessNotFoundError, StatusConflictError


def derive_business_name(url: str) -> str:
    """
    Build a readable fallback name from a URL host, e.g.
    ``https://www.joes-pizza.com`` -> ``Joes Pizza``.
    """

    host = (urlparse(url).hostname or url).lower()
    if host.startswith("www."):
        host = host[4:]
    label = host.split(".")[0] if host else ""
    words = [word for word in label.replace("_", "-").split("-") if word]
    if not words:
        return "Unnamed Business"
    return " ".join(word.capitalize() for word in words)


class BusinessRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # -- teams --------------------------------------------------------------

    def create_team(
        self,
        *,
        name: str,
        plan_name: str = PlanTier.FREE,
        subscription_status: str | None = None,
    ) -> Team:
        team = Team(name=name, plan_name=plan_name, subscription_status=subscription_status)
        self._session.add(team)
        self._session.flush()
        return team

    def get_team(self, team_id: uuid.UUID) -> Team | None:
        return self._session.get(Team, team_id)

    # -- businesses ---------------------------------------------------------

    def create_business(
        self,
        *,
        team_id: uuid.UUID,
        url: str,
        name: str | None = None,
        category: str | None = None,
        location: dict[str, Any] | None = None,
        automation_enabled: bool = False,
    ) -> Business:
        business = Business(
            team_id=team_id,
            url=url.strip(),
            name=(name or "").strip() or derive_business_name(url),
            category=category,
            location=location,
            status=BusinessStatus.PENDING,
            automation_enabled=automation_enabled,
        )
        self._session.add(business)
        self._session.flush()
        return business

    def get_business(self, business_id: uuid.UUID) -> Business | None:
        return self._session.get(Business, business_id, populate_existing=True)

    def require_business(self, business_id: uuid.UUID) -> Business:
        business = self.get_business(business_id)
        if business is None:
            raise BusinessNotFoundError(f"Business not found: {business_id}")
        return business

    def get_status(self, business_id: uuid.UUID) -> str | None:
        """
        Read the persisted status directly, bypassing any identity-map copy.
        """

        stmt = select(Business.status).where(Business.id == business_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def list_automation_candidates(self, *, limit: int = 500) -> list[tuple[Business, Team]]:
        stmt: Select[tuple[Business, Team]] = (
            select(Business, Team)
            .join(Team, Team.id == Business.team_id)
            .where(Business.automation_enabled.is_(True))
            .order_by(Business.last_crawled_at.asc().nulls_first(), Business.created_at.asc())
            .limit(max(1, limit))
        )
        return [(row[0], row[1]) for row in self._session.execute(stmt).all()]

    def list_stale(self, *, statuses: Iterable[str], updated_before: datetime) -> list[Business]:
        """Businesses in ``statuses`` whose row has not changed since ``updated_before``."""

        stmt = select(Business).where(Business.status.in_(tuple(statuses))).order_by(Business.updated_at.asc())
        cutoff = as_utc(updated_before)
        return [
            business
            for business in self._session.scalars(stmt).all()
            if business.updated_at is None or as_utc(business.updated_at) < cutoff
        ]

    def transition_status(
        self,
        *,
        business_id: uuid.UUID,
        expected: str | Iterable[str],
        target: str,
        values: dict[str, Any] | None = None,
    ) -> None:
        """
        Atomically move a business from one of ``expected`` to ``target``.

        Raises InvalidStatusTransition when no expected state may legally move
        to ``target``, BusinessNotFoundError when the row is gone and
        StatusConflictError when the row exists but its status changed.
        """

        expected_states = (expected,) if isinstance(expected, str) else tuple(expected)
        for state in expected_states:
            ensure_transition(state, target)

        stmt = (
            update(Business)
            .where(Business.id == business_id, Business.status.in_(expected_states))
            .values(status=target, updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount == 1:
            return

        if self.get_status(business_id) is None:
            raise BusinessNotFoundError(f"Business not found: {business_id}")
        raise StatusConflictError(business_id, expected_states, target)

    def save_crawl_snapshot(
        self,
        *,
        business_id: uuid.UUID,
        crawl_data: dict[str, Any],
        crawled_at: datetime,
        next_crawl_at: datetime | None,
        name: str | None = None,
    ) -> None:
        values: dict[str, Any] = {
            "crawl_data": crawl_data,
            "last_crawled_at": crawled_at,
            "next_crawl_at": next_crawl_at,
            "updated_at": utcnow(),
        }
        if name:
            values["name"] = name
        stmt = (
            update(Business)
            .where(Business.id == business_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if self._session.execute(stmt).rowcount != 1:
            raise BusinessNotFoundError(f"Business not found: {business_id}")

    def delete_business(self, business_id: uuid.UUID) -> bool:
        business = self._session.get(Business, business_id)
        if business is None:
            return False
        self._session.delete(business)
        self._session.flush()
        return True
