"""
tests/test_api.py

HTTP tests for the CFP router using FastAPI's TestClient.

Coverage
--------
- Unknown business returns 404
- Triggered run is accepted (202) and its background task completes
- Trigger is refused (409) while a run is active or held
- Publish trigger requires a crawled or published business
- Reset succeeds from error and is refused otherwise
- Manual-storage listing
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.api.dependencies import get_orchestrator, get_storage
from app.api.routers.cfp import router as cfp_router
from db.models.business import BusinessStatus
from db.models.team import PlanTier
from db.session import get_db


@pytest.fixture()
def client(session_factory, orchestrator, storage) -> Iterator[TestClient]:
    app = FastAPI()
    app.include_router(cfp_router)

    def _get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(app) as test_client:
        yield test_client


class TestTrigger:
    def test_unknown_business(self, client: TestClient) -> None:
        response = client.post(f"/businesses/{uuid.uuid4()}/cfp")
        assert response.status_code == 404

    def test_run_is_accepted_and_completes(self, client: TestClient, make_business, orchestrator) -> None:
        business = make_business(plan_name=PlanTier.FREE)

        response = client.post(f"/businesses/{business.id}/cfp")

        assert response.status_code == 202
        body = response.json()
        assert body["business_id"] == str(business.id)
        assert body["run_type"] == "cfp"
        assert body["status"] == BusinessStatus.PENDING
        assert not orchestrator.registry.is_active(business.id)

        status_response = client.get(f"/businesses/{business.id}/status")
        assert status_response.status_code == 200
        status_body = status_response.json()
        assert status_body["status"] == BusinessStatus.PUBLISHED
        assert status_body["is_cfp_complete"] is True
        assert status_body["wikidata_qid"] == "Q100000"
        assert status_body["latest_fingerprint"]["visibility_score"] >= 0

    def test_active_status_conflicts(self, client: TestClient, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLING)

        response = client.post(f"/businesses/{business.id}/cfp")

        assert response.status_code == 409

    def test_held_business_conflicts(self, client: TestClient, make_business, orchestrator) -> None:
        business = make_business()
        orchestrator.registry.acquire(business.id)

        response = client.post(f"/businesses/{business.id}/cfp")

        assert response.status_code == 409
        orchestrator.registry.release(business.id)


class TestPublishTrigger:
    def test_pending_business_is_refused(self, client: TestClient, make_business) -> None:
        business = make_business()

        response = client.post(f"/businesses/{business.id}/publish")

        assert response.status_code == 409

    def test_crawled_business_is_published(self, client: TestClient, make_business) -> None:
        business = make_business(
            status=BusinessStatus.CRAWLED,
            crawl_data={"name": "Harbor Bistro", "location": {"city": "Seattle", "state": "WA"}},
        )

        response = client.post(f"/businesses/{business.id}/publish")

        assert response.status_code == 202
        assert response.json()["run_type"] == "publish"
        status_body = client.get(f"/businesses/{business.id}/status").json()
        assert status_body["status"] == BusinessStatus.PUBLISHED
        assert status_body["latest_fingerprint"] is None


class TestReset:
    def test_reset_from_error(self, client: TestClient, make_business) -> None:
        business = make_business(status=BusinessStatus.ERROR, error_message="crawler timed out")

        response = client.post(f"/businesses/{business.id}/reset")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == BusinessStatus.PENDING
        assert body["error_message"] is None

    def test_reset_outside_error_conflicts(self, client: TestClient, make_business) -> None:
        business = make_business(status=BusinessStatus.CRAWLED)

        response = client.post(f"/businesses/{business.id}/reset")

        assert response.status_code == 409


class TestManualEntities:
    def test_empty(self, client: TestClient) -> None:
        response = client.get("/manual-entities")
        assert response.status_code == 200
        assert response.json() == {"entities": []}

    def test_lists_stored_entries(self, client: TestClient, storage) -> None:
        business_id = uuid.uuid4()
        storage.store_entity_for_manual_publish(
            business_id=business_id,
            business_name="Harbor Bistro",
            entity={"labels": {}, "claims": {}},
            can_publish=False,
            notability={"is_notable": False, "confidence": 0.3, "recommendation": "Needs more references."},
        )

        entities = client.get("/manual-entities").json()["entities"]

        assert len(entities) == 1
        assert entities[0]["business_id"] == str(business_id)
        assert entities[0]["can_publish"] is False
        assert entities[0]["notability"]["confidence"] == 0.3
