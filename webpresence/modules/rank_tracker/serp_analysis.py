"""SERP analysis pipelines: own rankings, competitor rankings and discovery."""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from webpresence.database import get_session
from webpresence.integrations.blob_store import BlobStore
from webpresence.integrations.web_fetcher import SerpItem, WebFetcher
from webpresence.jobs.errors import NotFoundError
from webpresence.models import Competitor, SearchQuery, SerpResult, Website
from webpresence.modules.rank_tracker.serp_matcher import competitor_candidates, find_site_result
from webpresence.utils.domains import normalize_domain

logger = logging.getLogger(__name__)


class SerpAnalyzer:
    """Fetch SERPs, record positions and auto-discover competitors.

    Usage::

        analyzer = SerpAnalyzer(fetcher, blobs)
        await analyzer.analyze_query(search_query_id, "logiciel crm")
        await analyzer.analyze_competitor(competitor_id, ["logiciel crm"])
        analyzer_summary = await analyzer.reanalyze_from_blob(search_query_id)
    """

    def __init__(
        self,
        fetcher: WebFetcher,
        blobs: BlobStore,
        country: str = "fr",
        language: str = "fr",
        device: str = "desktop",
        num_results: int = 20,
        discovery_limit: int = 3,
    ):
        self._fetcher = fetcher
        self._blobs = blobs
        self._country = country
        self._language = language
        self._device = device
        self._num_results = num_results
        self._discovery_limit = discovery_limit

    async def _fetch(self, owner_id: int, query: str) -> tuple[list[dict[str, Any]], str]:
        items: list[SerpItem] = await self._fetcher.search_serp(
            query, country=self._country, language=self._language, num_results=self._num_results,
        )
        results = [item.to_dict() for item in items]
        blob_url = await self._blobs.store_serp_data(owner_id, query, results)
        return results, blob_url

    # ------------------------------------------------------------------
    # Own website
    # ------------------------------------------------------------------

    async def analyze_query(self, search_query_id: int, query: Optional[str] = None) -> dict[str, Any]:
        """Record the website's position for one search query.

        Raises:
            NotFoundError: the search query or its website is gone.
        """
        with get_session() as session:
            search_query = session.get(SearchQuery, search_query_id)
            if search_query is None:
                raise NotFoundError("SearchQuery", search_query_id)
            website = session.get(Website, search_query.website_id)
            if website is None:
                raise NotFoundError("Website", search_query.website_id)
            website_id, site = website.id, website.url
            query = query or search_query.query

        results, blob_url = await self._fetch(website_id, query)
        match = find_site_result(results, site)

        with get_session() as session:
            session.add(SerpResult(
                search_query_id=search_query_id,
                query=query,
                position=match["position"] if match else None,
                url=match["url"] if match else None,
                title=match["title"] if match else None,
                snippet=match["snippet"] if match else None,
                country=self._country,
                device=self._device,
                raw_data_blob_url=blob_url,
            ))

        added = self.discover_competitors(website_id, site, query, results)
        position = match["position"] if match else None
        logger.info("Query %r for %s: position=%s, %d competitors added", query, site, position, len(added))
        return {"query": query, "position": position, "competitors_added": added}

    def discover_competitors(
        self,
        website_id: int,
        site: str,
        query: str,
        results: list[dict[str, Any]],
    ) -> list[str]:
        """Register the top non-self domains of a SERP as unverified competitors.

        A domain is skipped when any existing competitor URL contains it.
        A duplicate from a concurrent insert is logged and ignored.

        Returns:
            The domains that were inserted.
        """
        candidates = competitor_candidates(results, site, limit=self._discovery_limit)
        if not candidates:
            return []

        with get_session() as session:
            known_urls = [
                url.lower() for url in session.scalars(
                    select(Competitor.url).where(Competitor.website_id == website_id)
                )
            ]

        added: list[str] = []
        for domain in candidates:
            if any(domain in url for url in known_urls):
                continue
            try:
                with get_session() as session:
                    session.add(Competitor(
                        website_id=website_id,
                        url=f"https://{domain}",
                        name=domain,
                        description=f'Detected on SERP for "{query}"',
                        is_active=True,
                        is_verified=False,
                    ))
            except IntegrityError:
                logger.info("Competitor %s already registered for website %d", domain, website_id)
                continue
            known_urls.append(f"https://{domain}")
            added.append(domain)
        return added

    async def reanalyze_from_blob(self, search_query_id: int) -> dict[str, Any]:
        """Recompute stored positions of a query from its raw SERP blobs.

        No SERP is fetched; rows without a blob are left untouched.
        """
        with get_session() as session:
            search_query = session.get(SearchQuery, search_query_id)
            if search_query is None:
                raise NotFoundError("SearchQuery", search_query_id)
            website = session.get(Website, search_query.website_id)
            website_id, site = website.id, website.url
            rows = [
                (row.id, row.query, row.raw_data_blob_url)
                for row in session.scalars(
                    select(SerpResult)
                    .where(SerpResult.search_query_id == search_query_id)
                    .order_by(SerpResult.created_at.asc(), SerpResult.id.asc())
                )
            ]

        updated, competitors_added = 0, []
        for row_id, query, blob_url in rows:
            if not blob_url:
                continue
            try:
                payload = await self._blobs.load_json(blob_url)
            except (FileNotFoundError, ValueError) as exc:
                logger.warning("SERP blob for result %d unreadable: %s", row_id, exc)
                continue
            results = payload.get("results", [])
            match = find_site_result(results, site)
            with get_session() as session:
                row = session.get(SerpResult, row_id)
                row.position = match["position"] if match else None
                row.url = match["url"] if match else None
                row.title = match["title"] if match else None
                row.snippet = match["snippet"] if match else None
            updated += 1
            competitors_added.extend(self.discover_competitors(website_id, site, query, results))

        logger.info("Reanalyzed %d SERP results for query %d", updated, search_query_id)
        return {"updated": updated, "competitors_added": competitors_added}

    # ------------------------------------------------------------------
    # Competitors
    # ------------------------------------------------------------------

    async def analyze_competitor(self, competitor_id: int, queries: list[str]) -> dict[str, Any]:
        """Record a competitor's position for each query.

        Per-query failures are logged; the call fails only if every query
        failed.
        """
        with get_session() as session:
            competitor = session.get(Competitor, competitor_id)
            if competitor is None:
                raise NotFoundError("Competitor", competitor_id)
            competitor_site = normalize_domain(competitor.url)
            website_id = competitor.website_id

        positions: dict[str, Optional[int]] = {}
        errors: dict[str, str] = {}
        for query in queries:
            try:
                results, blob_url = await self._fetch(website_id, query)
            except Exception as exc:
                logger.warning("Competitor %d SERP %r failed: %s", competitor_id, query, exc)
                errors[query] = str(exc)
                continue
            match = find_site_result(results, competitor_site)
            with get_session() as session:
                session.add(SerpResult(
                    competitor_id=competitor_id,
                    query=query,
                    position=match["position"] if match else None,
                    url=match["url"] if match else None,
                    title=match["title"] if match else None,
                    snippet=match["snippet"] if match else None,
                    country=self._country,
                    device=self._device,
                    raw_data_blob_url=blob_url,
                ))
            positions[query] = match["position"] if match else None

        if queries and not positions:
            raise RuntimeError(f"All {len(errors)} SERP queries failed for competitor {competitor_id}")
        return {"competitor_id": competitor_id, "positions": positions, "errors": errors}
