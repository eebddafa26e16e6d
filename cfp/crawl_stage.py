"""
cfp/crawl_stage.py

Crawl stage: one CrawlJob per attempt, external crawl with bounded retry,
normalization into the canonical crawl snapshot.

The stage owns the CrawlJob row and the crawl fields on Business. It never
writes Business.status; the orchestrator does that.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.providers.base import Crawler
from app.schemas.crawl_data import CrawlData
from cfp.errors import InputValidationError, RetryableIOError, describe_error
from cfp.retry import CRAWL_RETRY_POLICY, RetryPolicy, call_with_retry, call_with_timeout
from db.models.business import Business
from db.models.crawl_job import CrawlJobType
from db.repositories.business_repository import BusinessRepository, derive_business_name
from db.repositories.crawl_job_repository import CrawlJobRepository

logger = logging.getLogger(__name__)


def validate_business_url(url: str | None) -> str:
    """Return the trimmed URL or raise InputValidationError."""

    candidate = (url or "").strip()
    if not candidate:
        raise InputValidationError("Business has no URL to crawl.")
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise InputValidationError(f"Invalid URL '{candidate}': expected an http(s) address.")
    return candidate


def normalize_crawl_payload(payload: dict[str, Any] | None) -> CrawlData:
    if not isinstance(payload, dict):
        raise InputValidationError("Crawler returned no structured data.")
    try:
        return CrawlData.model_validate(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}"
            for error in exc.errors()[:5]
        )
        raise InputValidationError(f"Crawl data failed validation: {problems}") from exc


@dataclass(frozen=True)
class CrawlOutcome:
    job_id: uuid.UUID
    crawl_data: CrawlData
    crawled_at: datetime


class CrawlStage:
    """
    Runs one crawl for a business and persists the normalized snapshot.
    """

    def __init__(
        self,
        crawler: Crawler,
        *,
        retry_policy: RetryPolicy = CRAWL_RETRY_POLICY,
        timeout_seconds: float | None = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._crawler = crawler
        self._retry_policy = retry_policy
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep

    def execute(
        self,
        db: Session,
        business: Business,
        *,
        crawled_at: datetime,
        next_crawl_at: datetime | None,
    ) -> CrawlOutcome:
        """
        Crawl ``business.url``. On failure the CrawlJob is marked failed and
        the original error is re-raised; existing crawl data is untouched.
        """

        jobs = CrawlJobRepository(db)
        job = jobs.create_job(business_id=business.id, job_type=CrawlJobType.CRAWL)
        job_id = job.id
        business_id = business.id
        db.commit()

        try:
            jobs.mark_running(job_id=job_id)
            db.commit()

            url = validate_business_url(business.url)
            logger.info("Crawl started business_id=%s job_id=%s url=%s", business_id, job_id, url)
            payload = call_with_retry(
                lambda: self._crawl_once(url),
                policy=self._retry_policy,
                operation=f"crawl {url}",
                sleep=self._sleep,
            )
            crawl_data = normalize_crawl_payload(payload)

            fallback_name = derive_business_name(business.url)
            name = crawl_data.name if crawl_data.name and business.name == fallback_name else None
            BusinessRepository(db).save_crawl_snapshot(
                business_id=business_id,
                crawl_data=crawl_data.to_snapshot(),
                crawled_at=crawled_at,
                next_crawl_at=next_crawl_at,
                name=name,
            )
            jobs.mark_completed(
                job_id=job_id,
                result={
                    "url": url,
                    "name": crawl_data.name,
                    "fields": sorted(crawl_data.to_snapshot().keys()),
                    "category": crawl_data.primary_category,
                },
            )
            db.commit()
        except Exception as exc:
            self._mark_job_failed(db=db, job_id=job_id, exc=exc)
            raise

        logger.info("Crawl completed business_id=%s job_id=%s", business_id, job_id)
        return CrawlOutcome(job_id=job_id, crawl_data=crawl_data, crawled_at=crawled_at)

    def _crawl_once(self, url: str) -> dict[str, Any] | None:
        result = call_with_timeout(
            lambda: self._crawler.crawl(url),
            timeout_seconds=self._timeout_seconds,
            operation=f"crawl {url}",
            pool="crawl",
        )
        if result.success:
            return result.data
        message = result.error or "Crawler reported failure."
        if result.retryable:
            raise RetryableIOError(message)
        raise InputValidationError(message)

    def _mark_job_failed(self, *, db: Session, job_id: uuid.UUID, exc: Exception) -> None:
        error_message = describe_error(exc)
        logger.error("Crawl job failed id=%s error=%s", job_id, error_message)
        try:
            db.rollback()
            CrawlJobRepository(db).mark_failed(job_id=job_id, error_message=error_message)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to persist failed crawl job state id=%s", job_id)
