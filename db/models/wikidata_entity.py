"""
db/models/wikidata_entity.py

Published knowledge-graph entity versions. The highest version per business
is the currently published state.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONDocument, TimestampMixin


class WikidataEntity(Base, TimestampMixin):
    __tablename__ = "wikidata_entities"

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
    qid: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_data: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument,
        nullable=False,
        comment="labels, descriptions, claims",
    )
    published_to: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Target instance identifier, e.g. test.wikidata",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    enrichment_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("business_id", "version", name="uq_wikidata_entities_business_version"),
        Index("ix_wikidata_entities_qid", "qid"),
    )
