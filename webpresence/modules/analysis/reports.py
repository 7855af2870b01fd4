"""Periodic AI recap reports built from recent SERP history."""

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import select

from webpresence.database import get_session
from webpresence.integrations.llm_client import LLMClient
from webpresence.jobs.errors import NotFoundError
from webpresence.models import AIReport, Competitor, ReportType, SearchQuery, SerpResult, Website
from webpresence.utils.helpers import utcnow

logger = logging.getLogger(__name__)

RECAP_PERIOD_DAYS = 30
RESULTS_PER_SERIES = 10


def _series(session, stmt) -> list[dict[str, Any]]:
    return [
        {"position": row.position, "url": row.url, "date": row.created_at.isoformat()}
        for row in session.scalars(stmt.order_by(SerpResult.created_at.desc()).limit(RESULTS_PER_SERIES))
    ]


class ReportGenerator:
    """Generate AI reports for a website.

    Usage::

        reports = ReportGenerator(llm)
        report_id = await reports.periodic_recap(website_id)
    """

    def __init__(self, llm: LLMClient, period_days: int = RECAP_PERIOD_DAYS):
        self._llm = llm
        self._period_days = period_days

    def collect_history(self, website_id: int) -> tuple[str, list[dict], list[dict]]:
        """Recent own and competitor positions over the recap period."""
        since = utcnow() - timedelta(days=self._period_days)
        with get_session() as session:
            website = session.get(Website, website_id)
            if website is None:
                raise NotFoundError("Website", website_id)

            own = []
            queries = session.scalars(
                select(SearchQuery).where(SearchQuery.website_id == website_id, SearchQuery.is_active.is_(True))
            )
            for query in queries:
                stmt = select(SerpResult).where(
                    SerpResult.search_query_id == query.id, SerpResult.created_at >= since
                )
                own.append({"query": query.query, "results": _series(session, stmt)})

            competitors = []
            rivals = session.scalars(
                select(Competitor).where(Competitor.website_id == website_id, Competitor.is_active.is_(True))
            )
            for competitor in rivals:
                stmt = select(SerpResult).where(
                    SerpResult.competitor_id == competitor.id, SerpResult.created_at >= since
                )
                competitors.append({"competitor": competitor.name, "results": _series(session, stmt)})
            return website.url, own, competitors

    async def periodic_recap(self, website_id: int) -> int:
        """Ask the reasoner for a recap and store it.  Returns the report id."""
        site_url, own, competitors = self.collect_history(website_id)
        recap = await self._llm.generate_periodic_recap(site_url, own, competitors, self._period_days)
        with get_session() as session:
            report = AIReport(
                website_id=website_id,
                type=ReportType.PERIODIC_RECAP.value,
                title=str(recap.get("title") or f"SEO recap for {site_url}"),
                content=str(recap["content"]),
                metadata_json={
                    "highlights": recap.get("highlights") or [],
                    "period_days": self._period_days,
                    "queries": len(own),
                    "competitors": len(competitors),
                },
            )
            session.add(report)
            session.flush()
            report_id = report.id
        logger.info("Periodic recap %d stored for website %d", report_id, website_id)
        return report_id
