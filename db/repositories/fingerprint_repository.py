"""
Repository for immutable fingerprint snapshots.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.fingerprint import Fingerprint


class FingerprintRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_fingerprint(
        self,
        *,
        business_id: uuid.UUID,
        visibility_score: int,
        mention_rate: float,
        sentiment_score: float,
        accuracy_score: float,
        avg_rank_position: float | None,
        llm_results: list[dict[str, Any]],
        competitive_leaderboard: dict[str, Any],
    ) -> Fingerprint:
        fingerprint = Fingerprint(
            business_id=business_id,
            visibility_score=visibility_score,
            mention_rate=mention_rate,
            sentiment_score=sentiment_score,
            accuracy_score=accuracy_score,
            avg_rank_position=avg_rank_position,
            llm_results=llm_results,
            competitive_leaderboard=competitive_leaderboard,
        )
        self._session.add(fingerprint)
        self._session.flush()
        return fingerprint

    def get_latest(self, business_id: uuid.UUID) -> Fingerprint | None:
        stmt = (
            select(Fingerprint)
            .where(Fingerprint.business_id == business_id)
            .order_by(Fingerprint.created_at.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def list_history(self, business_id: uuid.UUID, *, limit: int = 20) -> list[Fingerprint]:
        stmt = (
            select(Fingerprint)
            .where(Fingerprint.business_id == business_id)
            .order_by(Fingerprint.created_at.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())
