"""
db/models/team.py

Team (subscription owner) model. The plan tier drives automation policy.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin


class PlanTier:
    FREE = "free"
    PRO = "pro"
    AGENCY = "agency"


class SubscriptionStatus:
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class Team(Base, TimestampMixin):
    __tablename__ = "teams"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan_name: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=PlanTier.FREE,
        comment="free, pro, agency",
    )
    subscription_status: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    businesses = relationship("Business", back_populates="team")

    __table_args__ = (
        Index("ix_teams_plan_name", "plan_name"),
    )
