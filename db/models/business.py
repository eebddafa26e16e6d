"""
db/models/business.py

Business aggregate root. Only the CFP orchestrator mutates ``status``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, JSONDocument, TimestampMixin


class BusinessStatus:
    PENDING = "pending"
    CRAWLING = "crawling"
    CRAWLED = "crawled"
    GENERATING = "generating"
    PUBLISHED = "published"
    ERROR = "error"


class Business(Base, TimestampMixin):
    __tablename__ = "businesses"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(120), nullable=True)
    location: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="city, state, country, lat, lng",
    )
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=BusinessStatus.PENDING,
        comment="pending, crawling, crawled, generating, published, error",
    )
    crawl_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONDocument,
        nullable=True,
        comment="Normalized crawl snapshot",
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    wikidata_qid: Mapped[str | None] = mapped_column(String(32), nullable=True)
    wikidata_published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    automation_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    last_crawled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    next_crawl_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_auto_published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    team = relationship("Team", back_populates="businesses")

    __table_args__ = (
        Index("ix_businesses_team_id", "team_id"),
        Index("ix_businesses_status", "status"),
        Index("ix_businesses_automation_enabled", "automation_enabled"),
        Index("ix_businesses_wikidata_qid", "wikidata_qid"),
    )
