"""Sitemap-diff extraction planning.

Given the URLs of the latest sitemap snapshot and the extraction rows that
already exist, every URL lands in exactly one bucket: new, stale or fresh.
New and stale URLs get (re)queued; fresh ones are skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import select

from webpresence.database import get_session
from webpresence.jobs.errors import NotFoundError
from webpresence.jobs.queue import JobQueue
from webpresence.models import (
    Competitor,
    CompetitorPageExtraction,
    CompetitorSitemapSnapshot,
    CompetitorSitemapUrl,
    ExtractionSource,
    ExtractionStatus,
    ExtractionType,
    JobType,
    PageExtraction,
    SitemapSnapshot,
    SitemapUrl,
)
from webpresence.utils.helpers import as_utc, chunked, unique, utcnow

logger = logging.getLogger(__name__)

EXTRACTION_JOB_PRIORITY = 3
DEFAULT_CHUNK_SIZE = 100
DEFAULT_FRESHNESS = timedelta(hours=24)


@dataclass(frozen=True)
class ExtractionState:
    """The parts of an extraction row that decide freshness."""

    status: str
    type: Optional[str]
    extracted_at: Optional[datetime]


@dataclass
class ExtractionPlan:
    new: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    fresh: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.new) + len(self.stale) + len(self.fresh)

    def extend(self, other: "ExtractionPlan") -> None:
        self.new.extend(other.new)
        self.stale.extend(other.stale)
        self.fresh.extend(other.fresh)


def is_stale(
    state: ExtractionState,
    extraction_type: str,
    now: datetime,
    freshness: timedelta = DEFAULT_FRESHNESS,
) -> bool:
    """Whether an existing extraction must be redone."""
    if state.status == ExtractionStatus.FAILED.value:
        return True
    extracted_at = as_utc(state.extracted_at)
    if extracted_at is None or extracted_at < now - freshness:
        return True
    return state.type != extraction_type


def plan_extractions(
    urls: Iterable[str],
    existing: Mapping[str, ExtractionState],
    extraction_type: ExtractionType | str,
    now: Optional[datetime] = None,
    freshness: timedelta = DEFAULT_FRESHNESS,
) -> ExtractionPlan:
    """Partition de-duplicated *urls* into new, stale and fresh."""
    extraction_type = ExtractionType(extraction_type).value
    now = as_utc(now) or utcnow()
    plan = ExtractionPlan()
    for url in unique(urls):
        state = existing.get(url)
        if state is None:
            plan.new.append(url)
        elif is_stale(state, extraction_type, now, freshness):
            plan.stale.append(url)
        else:
            plan.fresh.append(url)
    return plan


def _snapshot_urls(session, snapshot_model, url_model, owner_column, owner_id) -> list[str]:
    snapshot_id = session.scalar(
        select(snapshot_model.id)
        .where(owner_column == owner_id)
        .order_by(snapshot_model.fetched_at.desc(), snapshot_model.id.desc())
        .limit(1)
    )
    if snapshot_id is None:
        return []
    return list(session.scalars(
        select(url_model.url).where(url_model.snapshot_id == snapshot_id).order_by(url_model.id)
    ))


class ExtractionPlanner:
    """Turn the latest sitemap snapshot into queued extraction jobs.

    Usage::

        planner = ExtractionPlanner()
        summary = planner.schedule_from_sitemap(website_id, "full")
    """

    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        freshness_hours: int = 24,
    ):
        self._queue = queue or JobQueue()
        self._chunk_size = chunk_size
        self._freshness = timedelta(hours=freshness_hours)

    def schedule_from_sitemap(
        self, website_id: int, extraction_type: ExtractionType | str
    ) -> dict[str, Any]:
        """Queue ``page_extraction`` jobs for new and stale URLs of the website."""
        extraction_type = ExtractionType(extraction_type).value
        with get_session() as session:
            urls = _snapshot_urls(
                session, SitemapSnapshot, SitemapUrl, SitemapSnapshot.website_id, website_id
            )
        return self._apply(
            urls=urls,
            extraction_type=extraction_type,
            model=PageExtraction,
            owner_filter=lambda: PageExtraction.website_id == website_id,
            new_row=lambda url: PageExtraction(
                website_id=website_id, url=url, source=ExtractionSource.SITEMAP.value,
            ),
            website_id=website_id,
            job_type=JobType.PAGE_EXTRACTION,
        )

    def schedule_from_competitor_sitemap(
        self, competitor_id: int, extraction_type: ExtractionType | str
    ) -> dict[str, Any]:
        """Queue ``competitor_page_extraction`` jobs for the competitor's sitemap."""
        extraction_type = ExtractionType(extraction_type).value
        with get_session() as session:
            competitor = session.get(Competitor, competitor_id)
            if competitor is None:
                raise NotFoundError("Competitor", competitor_id)
            website_id = competitor.website_id
            urls = _snapshot_urls(
                session, CompetitorSitemapSnapshot, CompetitorSitemapUrl,
                CompetitorSitemapSnapshot.competitor_id, competitor_id,
            )
        return self._apply(
            urls=urls,
            extraction_type=extraction_type,
            model=CompetitorPageExtraction,
            owner_filter=lambda: CompetitorPageExtraction.competitor_id == competitor_id,
            new_row=lambda url: CompetitorPageExtraction(
                competitor_id=competitor_id, url=url, source=ExtractionSource.SITEMAP.value,
            ),
            website_id=website_id,
            job_type=JobType.COMPETITOR_PAGE_EXTRACTION,
        )

    def _apply(self, urls, extraction_type, model, owner_filter, new_row, website_id, job_type) -> dict[str, Any]:
        urls = unique(urls)
        now = utcnow()
        totals = ExtractionPlan()
        jobs_created = 0

        for chunk in chunked(urls, self._chunk_size):
            with get_session() as session:
                rows = {
                    row.url: row
                    for row in session.scalars(
                        select(model).where(owner_filter(), model.url.in_(chunk))
                    )
                }
                states = {
                    url: ExtractionState(row.status, row.type, row.extracted_at)
                    for url, row in rows.items()
                }
                plan = plan_extractions(chunk, states, extraction_type, now, self._freshness)

                queued: list[tuple[int, str]] = []
                for url in plan.new:
                    row = new_row(url)
                    session.add(row)
                    session.flush()
                    queued.append((row.id, url))
                for url in plan.stale:
                    row = rows[url]
                    row.type = None
                    row.status = ExtractionStatus.PENDING.value
                    row.error = None
                    queued.append((row.id, url))

                for extraction_id, url in queued:
                    self._queue.enqueue(
                        website_id,
                        job_type,
                        {"extractionId": extraction_id, "url": url, "extractionType": extraction_type},
                        priority=EXTRACTION_JOB_PRIORITY,
                        session=session,
                    )
                jobs_created += len(queued)
            totals.extend(plan)

        summary = {
            "total_urls": len(urls),
            "created": len(totals.new),
            "updated": len(totals.stale),
            "skipped": len(totals.fresh),
            "jobs_created": jobs_created,
        }
        logger.info("Extraction plan for website %d (%s): %s", website_id, job_type.value, summary)
        return summary
