"""
tests/conftest.py

Shared fixtures: an in-memory SQLite database, team/business factories and
a fully wired CFPOrchestrator backed by deterministic providers.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import db.models  # noqa: F401  registers every model on Base.metadata
from app.providers.crawler import MockCrawler
from app.providers.publisher import InMemoryPublisher
from app.providers.scoring import MockScoringProvider
from app.providers.search import MockSearchProvider
from app.storage.manual_publish import ManualPublishStorage
from cfp.crawl_stage import CrawlStage
from cfp.fingerprint_stage import FingerprintStage
from cfp.notability import NotabilityAssessor
from cfp.orchestrator import CFPOrchestrator
from cfp.prompts import PromptType
from cfp.publish_gate import PublishGate
from db.base import Base
from db.models.business import Business
from db.models.team import PlanTier
from db.repositories.business_repository import BusinessRepository

TEST_MODELS = ("model-a", "model-b", "model-c")


def _no_sleep(_: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_business(session_factory: sessionmaker[Session]) -> Callable[..., Business]:
    """Create a team and one business, committed, and return the business."""

    def _make(
        *,
        plan_name: str = PlanTier.PRO,
        subscription_status: str | None = "active",
        url: str = "https://harbor-bistro.com",
        name: str | None = None,
        automation_enabled: bool = True,
        **values: Any,
    ) -> Business:
        with session_factory() as session:
            repository = BusinessRepository(session)
            team = repository.create_team(
                name="Harbor Group",
                plan_name=plan_name,
                subscription_status=subscription_status,
            )
            business = repository.create_business(
                team_id=team.id,
                url=url,
                name=name,
                automation_enabled=automation_enabled,
            )
            for key, value in values.items():
                setattr(business, key, value)
            session.commit()
            return business

    return _make


# ---------------------------------------------------------------------------
# Providers and pipeline
# ---------------------------------------------------------------------------


@pytest.fixture()
def crawler() -> MockCrawler:
    return MockCrawler()


@pytest.fixture()
def scoring_provider() -> MockScoringProvider:
    return MockScoringProvider()


@pytest.fixture()
def search_provider() -> MockSearchProvider:
    return MockSearchProvider()


@pytest.fixture()
def publisher() -> InMemoryPublisher:
    return InMemoryPublisher()


@pytest.fixture()
def storage(tmp_path) -> ManualPublishStorage:
    return ManualPublishStorage(tmp_path / "manual-publish")


@pytest.fixture()
def build_orchestrator(
    session_factory: sessionmaker[Session],
    storage: ManualPublishStorage,
) -> Callable[..., CFPOrchestrator]:
    """Build an orchestrator; any provider may be swapped per test."""

    def _build(
        *,
        crawler: Any = None,
        scoring_provider: Any = None,
        search_provider: Any = None,
        publisher: Any = None,
    ) -> CFPOrchestrator:
        scoring = scoring_provider or MockScoringProvider()
        assessor = NotabilityAssessor(
            search_provider or MockSearchProvider(),
            scoring,
            assessment_model="model-a",
            search_timeout_seconds=None,
            scoring_timeout_seconds=None,
        )
        return CFPOrchestrator(
            session_factory=session_factory,
            crawl_stage=CrawlStage(crawler or MockCrawler(), timeout_seconds=None, sleep=_no_sleep),
            fingerprint_stage=FingerprintStage(
                scoring,
                models=TEST_MODELS,
                prompt_types=(PromptType.RECOMMENDATION,),
                timeout_seconds=None,
                sleep=_no_sleep,
            ),
            publish_gate=PublishGate(
                assessor=assessor,
                publisher=publisher or InMemoryPublisher(),
                storage=storage,
                timeout_seconds=None,
            ),
        )

    return _build


@pytest.fixture()
def orchestrator(
    build_orchestrator: Callable[..., CFPOrchestrator],
    crawler: MockCrawler,
    scoring_provider: MockScoringProvider,
    search_provider: MockSearchProvider,
    publisher: InMemoryPublisher,
) -> CFPOrchestrator:
    return build_orchestrator(
        crawler=crawler,
        scoring_provider=scoring_provider,
        search_provider=search_provider,
        publisher=publisher,
    )
