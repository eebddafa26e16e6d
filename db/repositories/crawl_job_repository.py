"""
Repository for crawl job lifecycle persistence and history lookup.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.base import utcnow
from db.models.crawl_job import CrawlJob, CrawlJobStatus


class CrawlJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(
        self,
        *,
        business_id: uuid.UUID,
        job_type: str,
    ) -> CrawlJob:
        job = CrawlJob(
            business_id=business_id,
            job_type=job_type,
            status=CrawlJobStatus.QUEUED,
            progress=0,
        )
        self._session.add(job)
        self._session.flush()
        return job

    def get_job(self, job_id: uuid.UUID) -> CrawlJob | None:
        return self._session.get(CrawlJob, job_id)

    def list_jobs(
        self,
        *,
        business_id: uuid.UUID,
        limit: int = 50,
        job_type: str | None = None,
    ) -> list[CrawlJob]:
        stmt: Select[tuple[CrawlJob]] = select(CrawlJob).where(CrawlJob.business_id == business_id)
        if job_type:
            stmt = stmt.where(CrawlJob.job_type == job_type)
        stmt = stmt.order_by(CrawlJob.created_at.desc()).limit(max(1, limit))
        return list(self._session.scalars(stmt).all())

    def mark_running(self, *, job_id: uuid.UUID, progress: int = 10) -> CrawlJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = CrawlJobStatus.RUNNING
        job.progress = progress
        job.started_at = utcnow()
        job.completed_at = None
        job.error_message = None
        return job

    def mark_completed(
        self,
        *,
        job_id: uuid.UUID,
        result: dict[str, Any] | None = None,
    ) -> CrawlJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = CrawlJobStatus.COMPLETED
        job.progress = 100
        job.completed_at = utcnow()
        job.result = result
        job.error_message = None
        return job

    def mark_failed(
        self,
        *,
        job_id: uuid.UUID,
        error_message: str,
        result: dict[str, Any] | None = None,
    ) -> CrawlJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = CrawlJobStatus.FAILED
        job.completed_at = utcnow()
        job.error_message = error_message
        if result is not None:
            job.result = result
        return job

    def fail_unfinished(self, *, business_id: uuid.UUID, error_message: str) -> int:
        """Mark queued or running jobs for ``business_id`` failed. Returns the number changed."""

        stmt = select(CrawlJob).where(
            CrawlJob.business_id == business_id,
            CrawlJob.status.in_((CrawlJobStatus.QUEUED, CrawlJobStatus.RUNNING)),
        )
        jobs = list(self._session.scalars(stmt).all())
        for job in jobs:
            self.mark_failed(job_id=job.id, error_message=error_message)
        return len(jobs)
