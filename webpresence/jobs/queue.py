"""Persistent job queue backed by the ``analysis_jobs`` table.

Exclusive ownership of a job comes from a conditional status update: the
``pending -> running`` transition succeeds for exactly one caller, so any
number of processor passes can share the table.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select, update

from webpresence.database import get_session
from webpresence.jobs.payloads import dump_payload, parse_payload
from webpresence.models import ACTIVE_JOB_STATUSES, AnalysisJob, JobStatus, JobType
from webpresence.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


class JobQueue:
    """Enqueue, claim and settle analysis jobs.

    Usage::

        queue = JobQueue()
        job_id = queue.enqueue(website_id, JobType.SERP_ANALYSIS,
                               {"searchQueryId": 3, "query": "crm"}, priority=5)
        for job in queue.fetch_pending(limit=5):
            if queue.claim(job.id):
                ...
                queue.mark_completed(job.id, {"ok": True})
    """

    def enqueue(
        self,
        website_id: int,
        job_type: JobType | str,
        payload: Optional[dict[str, Any]] = None,
        priority: int = 0,
        session=None,
    ) -> int:
        """Validate *payload* and insert a pending job.  Returns the job id.

        When *session* is given the row joins that transaction; otherwise
        it is committed immediately.
        """
        job_type = JobType(job_type).value
        normalized = dump_payload(parse_payload(job_type, payload))
        job = AnalysisJob(
            website_id=website_id,
            type=job_type,
            status=JobStatus.PENDING.value,
            priority=priority,
            payload=normalized,
        )
        if session is not None:
            session.add(job)
            session.flush()
        else:
            with get_session() as own_session:
                own_session.add(job)
                own_session.flush()
        logger.debug("Enqueued job %d (%s, prio=%d) for website %d", job.id, job_type, priority, website_id)
        return job.id

    def has_active_job(self, website_id: int, job_type: JobType | str, session=None) -> bool:
        """True when a pending or running job exists for the (website, type) pair."""
        stmt = (
            select(func.count(AnalysisJob.id))
            .where(
                AnalysisJob.website_id == website_id,
                AnalysisJob.type == JobType(job_type).value,
                AnalysisJob.status.in_(ACTIVE_JOB_STATUSES),
            )
        )
        if session is not None:
            return session.scalar(stmt) > 0
        with get_session() as own_session:
            return own_session.scalar(stmt) > 0

    def last_completed_at(self, website_id: int, job_type: JobType | str, session=None) -> Optional[datetime]:
        stmt = select(func.max(AnalysisJob.completed_at)).where(
            AnalysisJob.website_id == website_id,
            AnalysisJob.type == JobType(job_type).value,
            AnalysisJob.status == JobStatus.COMPLETED.value,
        )
        if session is not None:
            return as_utc(session.scalar(stmt))
        with get_session() as own_session:
            return as_utc(own_session.scalar(stmt))

    def fetch_pending(self, limit: int = 5) -> list[AnalysisJob]:
        """Pending jobs, highest priority first, oldest first within a priority."""
        stmt = (
            select(AnalysisJob)
            .where(AnalysisJob.status == JobStatus.PENDING.value)
            .order_by(
                AnalysisJob.priority.desc(),
                AnalysisJob.created_at.asc(),
                AnalysisJob.id.asc(),
            )
            .limit(limit)
        )
        with get_session() as session:
            return list(session.scalars(stmt))

    def claim(self, job_id: int) -> bool:
        """Atomically move a job from pending to running.

        Returns:
            True only for the caller whose update took the row.
        """
        now = utcnow()
        with get_session() as session:
            result = session.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == job_id, AnalysisJob.status == JobStatus.PENDING.value)
                .values(status=JobStatus.RUNNING.value, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            claimed = result.rowcount == 1
        if not claimed:
            logger.debug("Job %d already claimed elsewhere", job_id)
        return claimed

    def mark_completed(self, job_id: int, result: Optional[dict[str, Any]] = None) -> None:
        self._settle(job_id, JobStatus.COMPLETED, result=result)

    def mark_failed(self, job_id: int, error: str) -> None:
        self._settle(job_id, JobStatus.FAILED, error=error)

    def _settle(self, job_id: int, status: JobStatus, result=None, error=None) -> None:
        now = utcnow()
        with get_session() as session:
            session.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == job_id, AnalysisJob.status == JobStatus.RUNNING.value)
                .values(
                    status=status.value,
                    result=result,
                    error=error,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

    def get(self, job_id: int) -> Optional[AnalysisJob]:
        with get_session() as session:
            return session.get(AnalysisJob, job_id)

    def clear_finished(self, older_than_days: int = 30) -> int:
        """Delete completed and failed jobs older than the cutoff.  Returns the count."""
        cutoff = utcnow() - timedelta(days=older_than_days)
        with get_session() as session:
            result = session.execute(
                delete(AnalysisJob)
                .where(
                    AnalysisJob.status.in_((JobStatus.COMPLETED.value, JobStatus.FAILED.value)),
                    AnalysisJob.created_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount or 0
        logger.info("Cleared %d finished jobs older than %d days", deleted, older_than_days)
        return deleted
