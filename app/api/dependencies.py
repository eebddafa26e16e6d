"""
app/api/dependencies.py

Shared FastAPI dependencies for CFP endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.services.cfp_service import get_cfp_orchestrator, get_manual_publish_storage
from app.storage.manual_publish import ManualPublishStorage
from cfp.orchestrator import CFPOrchestrator
from db.models.business import Business
from db.repositories.business_repository import BusinessRepository
from db.session import get_db


def get_orchestrator() -> CFPOrchestrator:
    return get_cfp_orchestrator()


def get_storage() -> ManualPublishStorage:
    return get_manual_publish_storage()


def get_business_or_404(business_id: UUID, db: Session = Depends(get_db)) -> Business:
    """
    Resolve the path business id or fail with 404.
    """

    business = BusinessRepository(db).get_business(business_id)
    if business is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Business not found: {business_id}",
        )
    return business
