"""
Service wiring for CFP runs: task executors and the process-wide orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Any

from fastapi import BackgroundTasks

from app.config import (
    get_crawler_settings,
    get_manual_storage_settings,
    get_publish_settings,
    get_retry_settings,
    get_scheduler_settings,
    get_scoring_settings,
    get_search_settings,
)
from app.providers.base import Crawler, Publisher, ScoringProvider, SearchProvider
from app.providers.crawler import HTTPCrawler, MockCrawler
from app.providers.publisher import InMemoryPublisher
from app.providers.scoring import MockScoringProvider, OpenAIScoringProvider
from app.providers.search import GoogleSearchProvider, MockSearchProvider
from app.storage.manual_publish import ManualPublishStorage
from cfp.crawl_stage import CrawlStage
from cfp.fingerprint_stage import FingerprintStage
from cfp.notability import NotabilityAssessor
from cfp.orchestrator import CFPOrchestrator, TaskExecutor
from cfp.publish_gate import PublishGate

logger = logging.getLogger(__name__)


class FastAPIBackgroundTaskExecutor:
    def __init__(self, background_tasks: BackgroundTasks) -> None:
        self._background_tasks = background_tasks

    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._background_tasks.add_task(task, *args, **kwargs)


class ThreadPoolTaskExecutor:
    """
    Bounded worker pool used by the periodic automation driver.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cfp-worker")

    def submit(self, task: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        self._pool.submit(task, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def build_crawler() -> Crawler:
    settings = get_crawler_settings()
    if settings.provider == "mock":
        return MockCrawler()
    if settings.provider == "http":
        return HTTPCrawler(settings)
    raise ValueError(f"Unsupported CRAWLER_PROVIDER '{settings.provider}'.")


def build_scoring_provider() -> ScoringProvider:
    settings = get_scoring_settings()
    if settings.provider == "mock":
        return MockScoringProvider()
    if settings.provider == "openai":
        return OpenAIScoringProvider(settings)
    raise ValueError(f"Unsupported SCORING_PROVIDER '{settings.provider}'.")


def build_search_provider() -> SearchProvider:
    settings = get_search_settings()
    if settings.provider == "mock":
        return MockSearchProvider()
    if settings.provider == "google":
        return GoogleSearchProvider(settings)
    raise ValueError(f"Unsupported SEARCH_PROVIDER '{settings.provider}'.")


def build_publisher() -> Publisher:
    settings = get_publish_settings()
    if settings.provider == "mock":
        return InMemoryPublisher()
    raise ValueError(f"Unsupported PUBLISHER_PROVIDER '{settings.provider}'.")


def build_cfp_orchestrator(
    *,
    session_factory: Callable[..., Any] | None = None,
    crawler: Crawler | None = None,
    scoring_provider: ScoringProvider | None = None,
    search_provider: SearchProvider | None = None,
    publisher: Publisher | None = None,
    storage: ManualPublishStorage | None = None,
) -> CFPOrchestrator:
    """
    Assemble an orchestrator from settings. Any collaborator can be passed in
    to replace the configured one.
    """

    if session_factory is None:
        from db.session import SessionLocal

        session_factory = SessionLocal

    retry = get_retry_settings()
    crawler_settings = get_crawler_settings()
    scoring_settings = get_scoring_settings()
    search_settings = get_search_settings()
    publish_settings = get_publish_settings()

    scoring = scoring_provider or build_scoring_provider()
    crawl_stage = CrawlStage(
        crawler or build_crawler(),
        retry_policy=retry.crawl,
        timeout_seconds=crawler_settings.timeout_seconds,
    )
    fingerprint_stage = FingerprintStage(
        scoring,
        models=scoring_settings.models,
        prompt_types=scoring_settings.prompt_types,
        retry_policy=retry.scoring,
        timeout_seconds=scoring_settings.timeout_seconds,
    )
    assessor = NotabilityAssessor(
        search_provider or build_search_provider(),
        scoring,
        assessment_model=scoring_settings.assessment_model,
        min_serious_references=publish_settings.min_serious_references,
        max_references=search_settings.max_results,
        search_timeout_seconds=search_settings.timeout_seconds,
        scoring_timeout_seconds=scoring_settings.timeout_seconds,
    )
    publish_gate = PublishGate(
        assessor=assessor,
        publisher=publisher or build_publisher(),
        storage=storage or ManualPublishStorage(get_manual_storage_settings().root_dir),
        is_production=publish_settings.is_production,
        published_to=publish_settings.target,
        publish_threshold=publish_settings.publish_confidence_threshold,
        review_threshold=publish_settings.review_confidence_threshold,
        timeout_seconds=publish_settings.timeout_seconds,
    )
    logger.info(
        "CFP orchestrator configured crawler=%s scoring=%s models=%d search=%s publisher=%s target=%s",
        crawler_settings.provider,
        scoring_settings.provider,
        len(scoring_settings.models),
        search_settings.provider,
        publish_settings.provider,
        publish_settings.target,
    )
    return CFPOrchestrator(
        session_factory=session_factory,
        crawl_stage=crawl_stage,
        fingerprint_stage=fingerprint_stage,
        publish_gate=publish_gate,
    )


@lru_cache(maxsize=1)
def get_cfp_orchestrator() -> CFPOrchestrator:
    return build_cfp_orchestrator()


@lru_cache(maxsize=1)
def get_worker_pool() -> ThreadPoolTaskExecutor:
    return ThreadPoolTaskExecutor(max_workers=get_scheduler_settings().max_workers)


@lru_cache(maxsize=1)
def get_manual_publish_storage() -> ManualPublishStorage:
    return ManualPublishStorage(get_manual_storage_settings().root_dir)


__all__ = [
    "FastAPIBackgroundTaskExecutor",
    "TaskExecutor",
    "ThreadPoolTaskExecutor",
    "build_cfp_orchestrator",
    "get_cfp_orchestrator",
    "get_manual_publish_storage",
    "get_worker_pool",
]
