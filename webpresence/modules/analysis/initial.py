"""Initial website analysis: sitemap, key pages, AI search queries and first SERP jobs."""

import asyncio
import logging
import re
from typing import Any, Optional
from urllib.parse import urlparse

from sqlalchemy import select

from webpresence.database import get_session
from webpresence.integrations.blob_store import BlobStore
from webpresence.integrations.llm_client import LLMClient
from webpresence.integrations.web_fetcher import WebFetchError, WebFetcher
from webpresence.jobs.errors import NotFoundError
from webpresence.jobs.queue import JobQueue
from webpresence.models import (
    AIReport,
    CompetitionLevel,
    JobType,
    PageAnalysis,
    ReportType,
    SearchQuery,
    Website,
    WebsiteStatus,
)
from webpresence.modules.sitemap.collector import merge_entries, save_website_snapshot
from webpresence.utils.domains import normalize_domain
from webpresence.utils.text_processing import extract_keywords, extract_page_metadata

logger = logging.getLogger(__name__)

INITIAL_SERP_PRIORITY = 5

# Path fragments of the pages that best describe a business, most telling first.
KEY_PAGE_PATTERNS = [
    re.compile(p) for p in (
        r"^/?$",
        r"produit|product",
        r"service",
        r"solution",
        r"offre|offer",
        r"about|a-propos|qui-sommes",
        r"contact",
        r"tarif|pricing|prix",
        r"expertise|metier",
    )
]


def select_key_pages(site_url: str, urls: list[str], limit: int = 20) -> list[str]:
    """Pick the most representative same-host pages of a site.

    The homepage is always first.  Other URLs rank by the first matching
    key-page pattern, then by shorter path.
    """
    host = normalize_domain(site_url)
    homepage = site_url.rstrip("/") + "/"

    def rank(url: str) -> tuple[int, int, str]:
        path = urlparse(url).path.lower().rstrip("/")
        for index, pattern in enumerate(KEY_PAGE_PATTERNS):
            if pattern.search(path):
                return index, len(path), url
        return len(KEY_PAGE_PATTERNS), len(path), url

    candidates = [u for u in dict.fromkeys(urls) if normalize_domain(u) == host]
    ordered = sorted(candidates, key=rank)
    selected = [homepage] + [u for u in ordered if u.rstrip("/") != homepage.rstrip("/")]
    return selected[:limit]


def _normalize_competition(level: Any) -> str:
    if str(level or "").upper() == CompetitionLevel.LOW.value:
        return CompetitionLevel.LOW.value
    return CompetitionLevel.HIGH.value


def _confidence(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 0.99)
    except (TypeError, ValueError):
        return 0.5


class InitialAnalyzer:
    """Runs the first full analysis of a newly added website.

    Usage::

        analyzer = InitialAnalyzer(fetcher, llm, blobs)
        summary = await analyzer.run(website_id)
    """

    def __init__(
        self,
        fetcher: WebFetcher,
        llm: LLMClient,
        blobs: BlobStore,
        queue: Optional[JobQueue] = None,
        max_pages: int = 20,
    ):
        self._fetcher = fetcher
        self._llm = llm
        self._blobs = blobs
        self._queue = queue or JobQueue()
        self._max_pages = max_pages

    async def run(self, website_id: int) -> dict[str, Any]:
        """Analyze a website end to end.

        The website is ``analyzing`` while this runs and ends ``active``,
        or ``error`` when any step fails (the exception is re-raised).
        """
        with get_session() as session:
            website = session.get(Website, website_id)
            if website is None:
                raise NotFoundError("Website", website_id)
            website.status = WebsiteStatus.ANALYZING.value
            site_url = website.url

        try:
            summary = await self._analyze(website_id, site_url)
        except (Exception, asyncio.CancelledError):
            with get_session() as session:
                website = session.get(Website, website_id)
                if website is not None:
                    website.status = WebsiteStatus.ERROR.value
            logger.exception("Initial analysis failed for website %d", website_id)
            raise

        with get_session() as session:
            session.get(Website, website_id).status = WebsiteStatus.ACTIVE.value
        logger.info("Initial analysis of %s done: %s", site_url, summary)
        return summary

    async def _analyze(self, website_id: int, site_url: str) -> dict[str, Any]:
        sitemap_urls = await self._load_sitemap(website_id, site_url)
        pages = await self._scrape_pages(website_id, select_key_pages(site_url, sitemap_urls, self._max_pages))
        if not pages:
            raise RuntimeError(f"No page of {site_url} could be scraped")

        proposal = await self._llm.identify_search_queries(site_url, pages)
        created = self._save_queries(website_id, proposal.get("searchQueries", []))
        self._save_report(website_id, site_url, proposal, len(pages))

        for query_id, query in created:
            self._queue.enqueue(
                website_id,
                JobType.SERP_ANALYSIS,
                {"searchQueryId": query_id, "query": query},
                priority=INITIAL_SERP_PRIORITY,
            )
        return {
            "sitemap_urls": len(sitemap_urls),
            "pages_analyzed": len(pages),
            "queries_created": len(created),
            "serp_jobs_created": len(created),
        }

    async def _load_sitemap(self, website_id: int, site_url: str) -> list[str]:
        try:
            listing = await self._fetcher.discover_sitemap(site_url)
            entries = merge_entries([await self._fetcher.expand_listing(listing)])
        except WebFetchError as exc:
            logger.warning("No usable sitemap for %s, analyzing homepage only: %s", site_url, exc)
            return []
        blob_url = await self._blobs.store_sitemap(website_id, entries)
        save_website_snapshot(
            website_id,
            {
                "sitemap_url": listing.sitemap_url,
                "sitemap_type": listing.sitemap_type,
                "entries": entries,
                "metadata": {"sources": [{"url": listing.sitemap_url, "type": listing.sitemap_type}]},
            },
            blob_url,
        )
        return [entry["url"] for entry in entries]

    async def _scrape_pages(self, website_id: int, urls: list[str]) -> list[dict[str, Any]]:
        pages: list[dict[str, Any]] = []
        for url in urls:
            try:
                html = await self._fetcher.scrape_page(url)
            except WebFetchError as exc:
                logger.info("Skipping %s: %s", url, exc)
                continue
            blob_url = await self._blobs.store_html(website_id, url, html)
            meta = extract_page_metadata(html)
            keywords = extract_keywords(html)
            with get_session() as session:
                session.add(PageAnalysis(
                    website_id=website_id,
                    url=url,
                    title=meta["title"],
                    meta_description=meta["meta_description"],
                    headings=meta["headings"],
                    keywords=keywords,
                    word_count=meta["word_count"],
                    html_blob_url=blob_url,
                ))
            pages.append({"url": url, **meta, "keywords": keywords})
        return pages

    def _save_queries(self, website_id: int, proposals: list[dict[str, Any]]) -> list[tuple[int, str]]:
        created: list[tuple[int, str]] = []
        with get_session() as session:
            existing = {
                q.lower() for q in session.scalars(
                    select(SearchQuery.query).where(SearchQuery.website_id == website_id)
                )
            }
            for proposal in proposals:
                query = str(proposal.get("query") or "").strip()
                if not query or query.lower() in existing:
                    continue
                existing.add(query.lower())
                tags = proposal.get("tags")
                row = SearchQuery(
                    website_id=website_id,
                    query=query,
                    description=proposal.get("description"),
                    tags=tags if isinstance(tags, list) else [],
                    competition_level=_normalize_competition(proposal.get("competitionLevel")),
                    confidence=_confidence(proposal.get("confidence")),
                    is_active=True,
                )
                session.add(row)
                session.flush()
                created.append((row.id, query))
        return created

    def _save_report(self, website_id: int, site_url: str, proposal: dict[str, Any], page_count: int) -> None:
        recommendations = proposal.get("recommendations") or []
        lines = [f"# Initial analysis of {site_url}", "", str(proposal.get("summary") or "").strip()]
        if recommendations:
            lines += ["", "## Recommendations", ""] + [f"- {r}" for r in recommendations]
        with get_session() as session:
            session.add(AIReport(
                website_id=website_id,
                type=ReportType.INITIAL_ANALYSIS.value,
                title=f"Initial analysis of {site_url}",
                content="\n".join(lines).strip() + "\n",
                metadata_json={
                    "pages_analyzed": page_count,
                    "queries_proposed": len(proposal.get("searchQueries") or []),
                },
            ))
