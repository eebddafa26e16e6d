"""
CFP trigger, status and manual-storage endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.dependencies import get_business_or_404, get_orchestrator, get_storage
from app.schemas.cfp import (
    BusinessStatusResponse,
    CFPRunAcceptedResponse,
    FingerprintSummaryResponse,
    NotabilitySummaryResponse,
    StoredManualEntityListResponse,
    StoredManualEntityResponse,
)
from app.services.cfp_service import FastAPIBackgroundTaskExecutor
from app.storage.manual_publish import ManualPublishStorage, StoredManualEntity
from cfp.errors import ConcurrencyConflict, InvalidStatusTransition
from cfp.orchestrator import CFPOrchestrator
from cfp.status import PUBLISHABLE_STATUSES, is_active, is_cfp_complete
from db.models.business import Business
from db.repositories.errors import StatusConflictError
from db.repositories.fingerprint_repository import FingerprintRepository
from db.session import get_db

router = APIRouter(tags=["cfp"])


@router.post(
    "/businesses/{business_id}/cfp",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CFPRunAcceptedResponse,
)
def trigger_cfp_run(
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_business_or_404),
    orchestrator: CFPOrchestrator = Depends(get_orchestrator),
) -> CFPRunAcceptedResponse:
    if is_active(business.status):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A CFP run is already active for business {business.id}.",
        )
    try:
        orchestrator.submit(
            FastAPIBackgroundTaskExecutor(background_tasks),
            business.id,
            user_initiated=True,
        )
    except ConcurrencyConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return CFPRunAcceptedResponse(business_id=business.id, run_type="cfp", status=business.status)


@router.post(
    "/businesses/{business_id}/publish",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=CFPRunAcceptedResponse,
)
def trigger_publish(
    background_tasks: BackgroundTasks,
    business: Business = Depends(get_business_or_404),
    orchestrator: CFPOrchestrator = Depends(get_orchestrator),
) -> CFPRunAcceptedResponse:
    if business.status not in PUBLISHABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Business {business.id} is '{business.status}'; publishing requires crawled or published.",
        )
    try:
        orchestrator.submit(
            FastAPIBackgroundTaskExecutor(background_tasks),
            business.id,
            user_initiated=True,
            publish_only=True,
        )
    except ConcurrencyConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return CFPRunAcceptedResponse(business_id=business.id, run_type="publish", status=business.status)


@router.post("/businesses/{business_id}/reset", response_model=BusinessStatusResponse)
def reset_business(
    business: Business = Depends(get_business_or_404),
    db: Session = Depends(get_db),
    orchestrator: CFPOrchestrator = Depends(get_orchestrator),
) -> BusinessStatusResponse:
    try:
        orchestrator.reset(business.id)
    except (ConcurrencyConflict, InvalidStatusTransition, StatusConflictError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return get_business_status(business=get_business_or_404(business.id, db), db=db)


@router.get("/businesses/{business_id}/status", response_model=BusinessStatusResponse)
def get_business_status(
    business: Business = Depends(get_business_or_404),
    db: Session = Depends(get_db),
) -> BusinessStatusResponse:
    fingerprint = FingerprintRepository(db).get_latest(business.id)
    latest = None
    if fingerprint is not None:
        latest = FingerprintSummaryResponse(
            fingerprint_id=fingerprint.id,
            visibility_score=fingerprint.visibility_score,
            mention_rate=fingerprint.mention_rate,
            sentiment_score=fingerprint.sentiment_score,
            accuracy_score=fingerprint.accuracy_score,
            avg_rank_position=fingerprint.avg_rank_position,
            created_at=fingerprint.created_at,
            competitive_leaderboard=fingerprint.competitive_leaderboard,
        )
    return BusinessStatusResponse(
        business_id=business.id,
        name=business.name,
        status=business.status,
        is_cfp_complete=is_cfp_complete(business.status, business.wikidata_qid),
        wikidata_qid=business.wikidata_qid,
        wikidata_published_at=business.wikidata_published_at,
        error_message=business.error_message,
        last_crawled_at=business.last_crawled_at,
        next_crawl_at=business.next_crawl_at,
        latest_fingerprint=latest,
    )


@router.get("/manual-entities", response_model=StoredManualEntityListResponse)
def list_manual_entities(
    storage: ManualPublishStorage = Depends(get_storage),
) -> StoredManualEntityListResponse:
    return StoredManualEntityListResponse(
        entities=[_to_stored_response(entry) for entry in storage.list_stored_entities()]
    )


def _to_stored_response(entry: StoredManualEntity) -> StoredManualEntityResponse:
    notability = None
    if entry.notability:
        notability = NotabilitySummaryResponse(
            is_notable=bool(entry.notability.get("is_notable", False)),
            confidence=float(entry.notability.get("confidence", 0.0)),
            recommendation=str(entry.notability.get("recommendation", "")),
        )
    return StoredManualEntityResponse(
        business_id=entry.business_id,
        business_name=entry.business_name,
        entity_file_name=entry.entity_file_name,
        metadata_file_name=entry.metadata_file_name,
        can_publish=entry.can_publish,
        notability=notability,
        stored_at=entry.stored_at,
        published_qid=entry.published_qid,
    )
