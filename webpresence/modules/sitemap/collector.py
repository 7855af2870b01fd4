"""Sitemap collection for websites and competitors.

One collection run fetches each selected sitemap (expanding indexes into
their children), merges the page URLs and stores them as a single
snapshot plus a JSON blob.
"""

import logging
from typing import Any, Optional

from webpresence.database import get_session
from webpresence.integrations.blob_store import BlobStore
from webpresence.integrations.web_fetcher import SitemapListing, WebFetchError, WebFetcher
from webpresence.jobs.errors import NotFoundError
from webpresence.models import (
    Competitor,
    CompetitorSitemapSnapshot,
    CompetitorSitemapUrl,
    SitemapSnapshot,
    SitemapType,
    SitemapUrl,
    Website,
)
from webpresence.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def merge_entries(groups: list[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Concatenate sitemap entries, keeping the first entry per URL.

    Entries may carry the page URL as ``url`` or ``loc``.
    """
    merged: dict[str, dict[str, Any]] = {}
    for entries in groups:
        for entry in entries:
            url = (entry.get("url") or entry.get("loc") or "").strip()
            if url and url not in merged:
                merged[url] = {**{k: v for k, v in entry.items() if k != "loc"}, "url": url}
    return list(merged.values())


class SitemapCollector:
    """Fetch sitemaps and persist append-only snapshots.

    Usage::

        collector = SitemapCollector(fetcher, blobs)
        summary = await collector.collect_for_website(website_id, ["https://site/sitemap.xml"])
    """

    def __init__(self, fetcher: WebFetcher, blobs: BlobStore, max_depth: int = 2):
        self._fetcher = fetcher
        self._blobs = blobs
        self._max_depth = max_depth

    async def _collect(self, site_url: str, selected: list[str]) -> dict[str, Any]:
        """Fetch every selected sitemap; discover one when none is selected."""
        groups: list[list[dict[str, Any]]] = []
        sources: list[dict[str, Any]] = []
        failures: list[dict[str, str]] = []

        if not selected:
            listing: SitemapListing = await self._fetcher.discover_sitemap(site_url)
            entries = await self._fetcher.expand_listing(listing, self._max_depth)
            groups.append(entries)
            sources.append({"url": listing.sitemap_url, "type": listing.sitemap_type, "count": len(entries)})
        else:
            for sitemap_url in dict.fromkeys(selected):
                try:
                    sitemap_type, entries = await self._fetcher.collect_sitemap_urls(
                        sitemap_url, self._max_depth
                    )
                except WebFetchError as exc:
                    logger.warning("Sitemap %s failed: %s", sitemap_url, exc)
                    failures.append({"url": sitemap_url, "error": str(exc)})
                    continue
                groups.append(entries)
                sources.append({"url": sitemap_url, "type": sitemap_type, "count": len(entries)})
            if not sources:
                raise WebFetchError(
                    f"All {len(failures)} selected sitemaps failed; first error: {failures[0]['error']}"
                )

        is_index = len(sources) > 1 or any(s["type"] == SitemapType.INDEX.value for s in sources)
        return {
            "sitemap_url": sources[0]["url"],
            "sitemap_type": SitemapType.INDEX.value if is_index else SitemapType.SINGLE.value,
            "entries": merge_entries(groups),
            "metadata": {"sources": sources, "failures": failures},
        }

    async def collect_for_website(self, website_id: int, selected: Optional[list[str]] = None) -> dict[str, Any]:
        with get_session() as session:
            website = session.get(Website, website_id)
            if website is None:
                raise NotFoundError("Website", website_id)
            site_url = website.url

        collected = await self._collect(site_url, selected or [])
        blob_url = await self._blobs.store_sitemap(website_id, collected["entries"])
        snapshot_id = save_website_snapshot(website_id, collected, blob_url)
        logger.info("Sitemap snapshot %d for website %d: %d URLs", snapshot_id, website_id, len(collected["entries"]))
        return _summary(snapshot_id, collected)

    async def collect_for_competitor(self, competitor_id: int, selected: Optional[list[str]] = None) -> dict[str, Any]:
        with get_session() as session:
            competitor = session.get(Competitor, competitor_id)
            if competitor is None:
                raise NotFoundError("Competitor", competitor_id)
            site_url, website_id = competitor.url, competitor.website_id

        collected = await self._collect(site_url, selected or [])
        blob_url = await self._blobs.store_sitemap(website_id, collected["entries"])
        now = utcnow()
        with get_session() as session:
            snapshot = CompetitorSitemapSnapshot(
                competitor_id=competitor_id,
                sitemap_url=collected["sitemap_url"],
                sitemap_type=collected["sitemap_type"],
                blob_url=blob_url,
                url_count=len(collected["entries"]),
                metadata_json=collected["metadata"],
                fetched_at=now,
                urls=[_url_row(CompetitorSitemapUrl, e) for e in collected["entries"]],
            )
            session.add(snapshot)
            competitor = session.get(Competitor, competitor_id)
            competitor.sitemap_url = collected["sitemap_url"]
            competitor.last_sitemap_fetch = now
            session.flush()
            snapshot_id = snapshot.id
        logger.info("Sitemap snapshot %d for competitor %d: %d URLs", snapshot_id, competitor_id, len(collected["entries"]))
        return _summary(snapshot_id, collected)


def save_website_snapshot(website_id: int, collected: dict[str, Any], blob_url: Optional[str]) -> int:
    """Persist a website snapshot and stamp the website's sitemap fields."""
    now = utcnow()
    with get_session() as session:
        snapshot = SitemapSnapshot(
            website_id=website_id,
            sitemap_url=collected["sitemap_url"],
            sitemap_type=collected["sitemap_type"],
            blob_url=blob_url,
            url_count=len(collected["entries"]),
            metadata_json=collected.get("metadata"),
            fetched_at=now,
            urls=[_url_row(SitemapUrl, e) for e in collected["entries"]],
        )
        session.add(snapshot)
        website = session.get(Website, website_id)
        website.sitemap_url = collected["sitemap_url"]
        website.last_sitemap_fetch = now
        session.flush()
        return snapshot.id


def _url_row(model, entry: dict[str, Any]):
    priority = entry.get("priority")
    return model(
        url=entry["url"],
        lastmod=entry.get("lastmod"),
        changefreq=entry.get("changefreq"),
        priority=float(priority) if priority is not None else None,
    )


def _summary(snapshot_id: int, collected: dict[str, Any]) -> dict[str, Any]:
    return {
        "snapshot_id": snapshot_id,
        "sitemap_url": collected["sitemap_url"],
        "sitemap_type": collected["sitemap_type"],
        "url_count": len(collected["entries"]),
        "failures": collected["metadata"]["failures"],
    }
