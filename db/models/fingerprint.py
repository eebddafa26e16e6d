"""
db/models/fingerprint.py

Immutable visibility snapshot produced by the fingerprint stage.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, utcnow


class Fingerprint(Base):
    __tablename__ = "fingerprints"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )
    visibility_score: Mapped[int] = mapped_column(Integer, nullable=False)
    mention_rate: Mapped[float] = mapped_column(Float, nullable=False)
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_score: Mapped[float] = mapped_column(Float, nullable=False)
    avg_rank_position: Mapped[float | None] = mapped_column(Float, nullable=True)
    llm_results: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="Ordered per-model observations",
    )
    competitive_leaderboard: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_fingerprints_business_id_created_at", "business_id", "created_at"),
    )
