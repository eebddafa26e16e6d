"""
Schemas for CFP trigger, status and manual-storage endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class CFPRunAcceptedResponse(BaseModel):
    business_id: UUID
    run_type: str
    status: str


class FingerprintSummaryResponse(BaseModel):
    fingerprint_id: UUID
    visibility_score: int
    mention_rate: float
    sentiment_score: float
    accuracy_score: float
    avg_rank_position: float | None = None
    created_at: datetime
    competitive_leaderboard: dict[str, Any] | None = None


class BusinessStatusResponse(BaseModel):
    business_id: UUID
    name: str
    status: str
    is_cfp_complete: bool
    wikidata_qid: str | None = None
    wikidata_published_at: datetime | None = None
    error_message: str | None = None
    last_crawled_at: datetime | None = None
    next_crawl_at: datetime | None = None
    latest_fingerprint: FingerprintSummaryResponse | None = None


class NotabilitySummaryResponse(BaseModel):
    is_notable: bool
    confidence: float
    recommendation: str


class StoredManualEntityResponse(BaseModel):
    business_id: UUID
    business_name: str
    entity_file_name: str
    metadata_file_name: str
    can_publish: bool
    notability: NotabilitySummaryResponse | None = None
    stored_at: datetime
    published_qid: str | None = None


class StoredManualEntityListResponse(BaseModel):
    entities: list[StoredManualEntityResponse] = Field(default_factory=list)
