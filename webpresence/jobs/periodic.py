"""Recurring job scheduling: SERP re-checks, competitor re-checks and AI recaps."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select

from webpresence.database import get_session
from webpresence.jobs.queue import JobQueue
from webpresence.models import (
    Competitor,
    JobType,
    Organization,
    ReportType,
    SearchQuery,
    Website,
    WebsiteStatus,
)
from webpresence.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SERP_RECHECK_PRIORITY = 3
COMPETITOR_RECHECK_PRIORITY = 2
AI_REPORT_PRIORITY = 2


@dataclass(frozen=True)
class RecurringFamily:
    job_type: JobType
    frequency: Callable[[Organization], int]
    priority: int


FAMILIES = (
    RecurringFamily(JobType.SERP_ANALYSIS, lambda org: org.serp_frequency_hours, SERP_RECHECK_PRIORITY),
    RecurringFamily(
        JobType.COMPETITOR_SERP_ANALYSIS, lambda org: org.competitor_frequency_hours, COMPETITOR_RECHECK_PRIORITY
    ),
    RecurringFamily(JobType.AI_REPORT, lambda org: org.ai_report_frequency_hours, AI_REPORT_PRIORITY),
)


def is_due(last_completed: Optional[datetime], frequency_hours: int, now: datetime) -> bool:
    """Whether a recurring family's cadence has elapsed."""
    if last_completed is None:
        return True
    return now - last_completed >= timedelta(hours=frequency_hours)


def schedule_periodic_jobs(queue: Optional[JobQueue] = None, now: Optional[datetime] = None) -> int:
    """Create the recurring jobs that are due for every active website.

    A family is scheduled for a website only when no job of that type is
    pending or running for it and the organization's cadence has elapsed
    since the last completed one.  Failures are isolated per website.

    Returns:
        Number of jobs created.
    """
    queue = queue or JobQueue()
    now = now or utcnow()
    with get_session() as session:
        targets = [
            (website.id, organization)
            for website, organization in session.execute(
                select(Website, Organization)
                .join(Organization, Website.organization_id == Organization.id)
                .where(Website.status == WebsiteStatus.ACTIVE.value)
                .order_by(Website.id)
            ).all()
        ]

    created = 0
    for website_id, organization in targets:
        try:
            created += _schedule_website(queue, website_id, organization, now)
        except Exception:
            logger.exception("Scheduling failed for website %d", website_id)
    logger.info("Periodic scheduling created %d jobs across %d websites", created, len(targets))
    return created


def _schedule_website(queue: JobQueue, website_id: int, organization: Organization, now: datetime) -> int:
    created = 0
    with get_session() as session:
        queries = list(session.scalars(
            select(SearchQuery)
            .where(SearchQuery.website_id == website_id, SearchQuery.is_active.is_(True))
            .order_by(SearchQuery.id)
        ))
        competitor_ids = list(session.scalars(
            select(Competitor.id)
            .where(Competitor.website_id == website_id, Competitor.is_active.is_(True))
            .order_by(Competitor.id)
        ))

        for family in FAMILIES:
            if queue.has_active_job(website_id, family.job_type, session=session):
                continue
            last = queue.last_completed_at(website_id, family.job_type, session=session)
            if not is_due(last, family.frequency(organization), now):
                continue

            if family.job_type == JobType.SERP_ANALYSIS:
                payloads = [{"searchQueryId": q.id, "query": q.query} for q in queries]
            elif family.job_type == JobType.COMPETITOR_SERP_ANALYSIS:
                query_texts = [q.query for q in queries]
                payloads = [{"competitorId": cid, "queries": query_texts} for cid in competitor_ids] if query_texts else []
            else:
                payloads = [{"reportType": ReportType.PERIODIC_RECAP.value}]

            for payload in payloads:
                queue.enqueue(website_id, family.job_type, payload, family.priority, session=session)
            if payloads:
                logger.debug("Website %d: %d %s jobs", website_id, len(payloads), family.job_type.value)
            created += len(payloads)
    return created
