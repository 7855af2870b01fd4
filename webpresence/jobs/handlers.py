"""Job handlers: route each validated job to the pipeline that executes it."""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from webpresence.integrations.blob_store import BlobStore
from webpresence.integrations.llm_client import LLMClient
from webpresence.integrations.web_fetcher import WebFetcher
from webpresence.jobs import payloads as p
from webpresence.jobs.errors import PayloadValidationError
from webpresence.jobs.queue import JobQueue
from webpresence.models import AnalysisJob, JobType, ReportType
from webpresence.modules.analysis.initial import InitialAnalyzer
from webpresence.modules.analysis.reports import ReportGenerator
from webpresence.modules.extraction.extractor import PageExtractor
from webpresence.modules.rank_tracker.serp_analysis import SerpAnalyzer
from webpresence.modules.sitemap.collector import SitemapCollector

logger = logging.getLogger(__name__)

Handler = Callable[[AnalysisJob, Any], Awaitable[dict[str, Any]]]


@dataclass
class JobContext:
    """External collaborators and tunables shared by all handlers."""

    fetcher: WebFetcher
    llm: LLMClient
    blobs: BlobStore
    queue: JobQueue = field(default_factory=JobQueue)
    serp: dict[str, Any] = field(default_factory=dict)
    max_key_pages: int = 20


class JobDispatcher:
    """Maps every ``JobType`` to a handler coroutine.

    Usage::

        dispatcher = JobDispatcher(context)
        result = await dispatcher.dispatch(job)
    """

    def __init__(self, context: JobContext):
        self.context = context
        serp_cfg = context.serp
        self._serp = SerpAnalyzer(
            context.fetcher,
            context.blobs,
            country=serp_cfg.get("country", "fr"),
            language=serp_cfg.get("language", "fr"),
            device=serp_cfg.get("device", "desktop"),
            num_results=serp_cfg.get("num_results", 20),
            discovery_limit=serp_cfg.get("discovery_limit", 3),
        )
        self._initial = InitialAnalyzer(
            context.fetcher, context.llm, context.blobs, context.queue, context.max_key_pages,
        )
        self._sitemaps = SitemapCollector(context.fetcher, context.blobs)
        self._extractor = PageExtractor(context.fetcher, context.blobs)
        self._reports = ReportGenerator(context.llm)

        self._handlers: dict[JobType, Handler] = {
            JobType.INITIAL_ANALYSIS: self._initial_analysis,
            JobType.SERP_ANALYSIS: self._serp_analysis,
            JobType.COMPETITOR_SERP_ANALYSIS: self._competitor_serp_analysis,
            JobType.SITEMAP_FETCH: self._sitemap_fetch,
            JobType.COMPETITOR_SITEMAP_FETCH: self._competitor_sitemap_fetch,
            JobType.PAGE_EXTRACTION: self._page_extraction,
            JobType.COMPETITOR_PAGE_EXTRACTION: self._competitor_page_extraction,
            JobType.PAGE_SCRAPE: self._page_scrape,
            JobType.AI_REPORT: self._ai_report,
        }

    @property
    def serp_analyzer(self) -> SerpAnalyzer:
        return self._serp

    def handler_for(self, job_type: str) -> Optional[Handler]:
        try:
            return self._handlers.get(JobType(job_type))
        except ValueError:
            return None

    async def dispatch(self, job: AnalysisJob) -> dict[str, Any]:
        """Validate the job payload and run its handler.

        Raises:
            PayloadValidationError: unknown type or malformed payload.
        """
        payload = p.parse_payload(job.type, job.payload)
        handler = self.handler_for(job.type)
        if handler is None:
            raise PayloadValidationError(f"No handler for job type {job.type!r}")
        logger.info("Dispatching job %d (%s) for website %d", job.id, job.type, job.website_id)
        return await handler(job, payload)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _initial_analysis(self, job: AnalysisJob, payload: p.InitialAnalysisPayload) -> dict[str, Any]:
        return await self._initial.run(job.website_id)

    async def _serp_analysis(self, job: AnalysisJob, payload: p.SerpAnalysisPayload) -> dict[str, Any]:
        return await self._serp.analyze_query(payload.search_query_id, payload.query)

    async def _competitor_serp_analysis(
        self, job: AnalysisJob, payload: p.CompetitorSerpAnalysisPayload
    ) -> dict[str, Any]:
        return await self._serp.analyze_competitor(payload.competitor_id, payload.queries)

    async def _sitemap_fetch(self, job: AnalysisJob, payload: p.SitemapFetchPayload) -> dict[str, Any]:
        return await self._sitemaps.collect_for_website(job.website_id, payload.selected_sitemaps)

    async def _competitor_sitemap_fetch(
        self, job: AnalysisJob, payload: p.CompetitorSitemapFetchPayload
    ) -> dict[str, Any]:
        return await self._sitemaps.collect_for_competitor(payload.competitor_id, payload.selected_sitemaps)

    async def _page_extraction(self, job: AnalysisJob, payload: p.PageExtractionPayload) -> dict[str, Any]:
        return await self._extractor.extract_page(payload.extraction_id, payload.extraction_type.value)

    async def _competitor_page_extraction(
        self, job: AnalysisJob, payload: p.CompetitorPageExtractionPayload
    ) -> dict[str, Any]:
        return await self._extractor.extract_competitor_page(
            payload.extraction_id, payload.extraction_type.value
        )

    async def _page_scrape(self, job: AnalysisJob, payload: p.PageScrapePayload) -> dict[str, Any]:
        return await self._extractor.scrape_competitor_pages(payload.competitor_id, payload.urls)

    async def _ai_report(self, job: AnalysisJob, payload: p.AIReportPayload) -> dict[str, Any]:
        if payload.report_type != ReportType.PERIODIC_RECAP:
            raise PayloadValidationError(f"Unsupported report type {payload.report_type.value!r}")
        report_id = await self._reports.periodic_recap(job.website_id)
        return {"report_id": report_id}
