"""
Repository for versioned knowledge-graph entity rows.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.wikidata_entity import WikidataEntity


class WikidataEntityRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_version(
        self,
        *,
        business_id: uuid.UUID,
        qid: str,
        entity_data: dict[str, Any],
        published_to: str,
        enrichment_level: int,
        published_at: datetime,
    ) -> WikidataEntity:
        """
        Append a new version. Existing rows are never mutated.
        """

        current_max = self._session.execute(
            select(func.max(WikidataEntity.version)).where(WikidataEntity.business_id == business_id)
        ).scalar_one_or_none()
        entity = WikidataEntity(
            business_id=business_id,
            qid=qid,
            entity_data=entity_data,
            published_to=published_to,
            version=(current_max or 0) + 1,
            enrichment_level=enrichment_level,
            published_at=published_at,
        )
        self._session.add(entity)
        self._session.flush()
        return entity

    def get_current(self, business_id: uuid.UUID) -> WikidataEntity | None:
        stmt = (
            select(WikidataEntity)
            .where(WikidataEntity.business_id == business_id)
            .order_by(WikidataEntity.version.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_versions(self, business_id: uuid.UUID) -> list[WikidataEntity]:
        stmt = (
            select(WikidataEntity)
            .where(WikidataEntity.business_id == business_id)
            .order_by(WikidataEntity.version.asc())
        )
        return list(self._session.scalars(stmt).all())
