"""Tests for sitemap parsing, discovery and snapshot collection."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from webpresence.database import get_session
from webpresence.integrations.web_fetcher import (
    SitemapListing,
    WebFetchError,
    WebFetcher,
    parse_google_results,
    parse_sitemap_xml,
)
from webpresence.jobs.errors import NotFoundError
from webpresence.models import (
    Competitor,
    CompetitorSitemapSnapshot,
    SitemapSnapshot,
    Website,
)
from webpresence.modules.sitemap.collector import SitemapCollector, merge_entries

URLSET = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/</loc><lastmod>2024-05-01</lastmod><priority>1.0</priority></url>
  <url><loc> https://example.com/services </loc><changefreq>weekly</changefreq></url>
  <url><lastmod>2024-05-01</lastmod></url>
</urlset>"""

INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>https://example.com/sitemap-pages.xml</loc></sitemap>
  <sitemap><loc>https://example.com/sitemap-broken.xml</loc></sitemap>
</sitemapindex>"""

PAGES = """<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/a</loc></url>
  <url><loc>https://example.com/b</loc></url>
</urlset>"""


def _fake_web(pages: dict[str, str]):
    """scrape_page double serving a fixed URL -> body map."""
    async def scrape(url, timeout=None):
        if url not in pages:
            raise WebFetchError(f"Scrape failed: 404 Not Found for {url}")
        return pages[url]
    return AsyncMock(side_effect=scrape)


# ===========================================================================
# 1. Parsing
# ===========================================================================
class TestParsing:

    def test_urlset(self):
        listing = parse_sitemap_xml(URLSET, "https://example.com/sitemap.xml")
        assert listing.sitemap_type == "single"
        assert listing.entries == [
            {"url": "https://example.com/", "lastmod": "2024-05-01", "priority": 1.0},
            {"url": "https://example.com/services", "changefreq": "weekly"},
        ]

    def test_index(self):
        listing = parse_sitemap_xml(INDEX)
        assert listing.sitemap_type == "index"
        assert [e["url"] for e in listing.entries] == [
            "https://example.com/sitemap-pages.xml",
            "https://example.com/sitemap-broken.xml",
        ]

    @pytest.mark.parametrize("body", ["<html><body>nope</body></html>", "not xml at all <"])
    def test_rejects_non_sitemaps(self, body):
        with pytest.raises(WebFetchError):
            parse_sitemap_xml(body, "https://example.com/sitemap.xml")

    def test_google_results(self):
        html = """
        <div class="g"><a href="/url?q=https://www.rival.com/crm&sa=U"><h3>Rival CRM</h3></a>
          <div class="VwiC3b">The best CRM.</div></div>
        <div class="g"><a href="https://example.com/"><h3>Example</h3></a></div>
        <div class="g"><a href="https://example.com/"><h3>Duplicate</h3></a></div>
        <div class="g"><a href="/search?q=related">no heading</a></div>
        """
        results = parse_google_results(html)
        assert [(r.position, r.domain, r.title) for r in results] == [
            (1, "rival.com", "Rival CRM"),
            (2, "example.com", "Example"),
        ]
        assert results[0].url == "https://www.rival.com/crm"
        assert results[0].snippet == "The best CRM."

    def test_merge_entries(self):
        merged = merge_entries([
            [{"loc": "https://x.com/a", "lastmod": "1"}, {"url": "https://x.com/b"}],
            [{"url": "https://x.com/a", "lastmod": "2"}, {"url": ""}],
        ])
        assert merged == [{"lastmod": "1", "url": "https://x.com/a"}, {"url": "https://x.com/b"}]


# ===========================================================================
# 2. Fetcher discovery and expansion
# ===========================================================================
class TestFetcherSitemaps:

    @pytest.mark.asyncio
    async def test_discover_common_path(self):
        fetcher = WebFetcher(api_key="")
        fetcher.scrape_page = _fake_web({"https://example.com/sitemap_index.xml": INDEX})

        listing = await fetcher.discover_sitemap("https://example.com")

        assert listing.sitemap_url == "https://example.com/sitemap_index.xml"
        assert listing.sitemap_type == "index"

    @pytest.mark.asyncio
    async def test_discover_via_robots(self):
        fetcher = WebFetcher(api_key="")
        fetcher.scrape_page = _fake_web({
            "https://example.com/robots.txt": "User-agent: *\nSitemap: https://cdn.example.com/map.xml\n",
            "https://cdn.example.com/map.xml": URLSET,
        })

        listing = await fetcher.discover_sitemap("https://example.com")

        assert listing.sitemap_url == "https://cdn.example.com/map.xml"
        assert len(listing.entries) == 2

    @pytest.mark.asyncio
    async def test_discover_nothing(self):
        fetcher = WebFetcher(api_key="")
        fetcher.scrape_page = _fake_web({"https://example.com/robots.txt": "User-agent: *\n"})
        with pytest.raises(WebFetchError, match="No sitemap found"):
            await fetcher.discover_sitemap("https://example.com")

    @pytest.mark.asyncio
    async def test_index_expansion_skips_broken_children(self):
        fetcher = WebFetcher(api_key="")
        fetcher.scrape_page = _fake_web({
            "https://example.com/sitemap.xml": INDEX,
            "https://example.com/sitemap-pages.xml": PAGES,
        })

        sitemap_type, entries = await fetcher.collect_sitemap_urls("https://example.com/sitemap.xml")

        assert sitemap_type == "index"
        assert [e["url"] for e in entries] == ["https://example.com/a", "https://example.com/b"]

    @pytest.mark.asyncio
    async def test_index_depth_exhausted(self):
        fetcher = WebFetcher(api_key="")
        fetcher.scrape_page = _fake_web({"https://example.com/sitemap.xml": INDEX})
        listing = SitemapListing("https://example.com/sitemap.xml", "index", [{"url": "https://example.com/x.xml"}])
        assert await fetcher.expand_listing(listing, max_depth=0) == []

    @pytest.mark.asyncio
    async def test_google_fallback_without_api_key(self):
        fetcher = WebFetcher(api_key="")
        fetcher.scrape_page = AsyncMock(
            return_value='<div class="g"><a href="https://a.com/"><h3>A</h3></a></div>'
        )

        results = await fetcher.search_serp("crm pme", country="fr", language="fr", num_results=10)

        assert [r.domain for r in results] == ["a.com"]
        called_url = fetcher.scrape_page.await_args.args[0]
        assert "q=crm+pme" in called_url
        assert "gl=FR" in called_url


# ===========================================================================
# 3. Collector
# ===========================================================================
class TestSitemapCollector:

    @pytest.mark.asyncio
    async def test_selected_sitemaps_with_one_failure(self, make_website, mock_fetcher, blob_store):
        website_id = make_website("https://example.com")

        async def collect(url, max_depth):
            if url.endswith("broken.xml"):
                raise WebFetchError("Scrape failed: 500")
            return "single", [{"url": "https://example.com/a"}, {"url": "https://example.com/b", "priority": 0.5}]

        mock_fetcher.collect_sitemap_urls.side_effect = collect
        summary = await SitemapCollector(mock_fetcher, blob_store).collect_for_website(
            website_id, ["https://example.com/sitemap.xml", "https://example.com/broken.xml"]
        )

        assert summary["url_count"] == 2
        assert summary["sitemap_type"] == "single"
        assert summary["sitemap_url"] == "https://example.com/sitemap.xml"
        assert [f["url"] for f in summary["failures"]] == ["https://example.com/broken.xml"]
        with get_session() as session:
            snapshot = session.get(SitemapSnapshot, summary["snapshot_id"])
            assert sorted(u.url for u in snapshot.urls) == ["https://example.com/a", "https://example.com/b"]
            assert snapshot.blob_url.startswith("file://")
            assert snapshot.metadata_json["failures"][0]["error"] == "Scrape failed: 500"
            website = session.get(Website, website_id)
            assert website.sitemap_url == "https://example.com/sitemap.xml"
            assert website.last_sitemap_fetch is not None

    @pytest.mark.asyncio
    async def test_several_sources_make_an_index_snapshot(self, make_website, mock_fetcher, blob_store):
        website_id = make_website("https://example.com")
        mock_fetcher.collect_sitemap_urls.side_effect = [
            ("single", [{"url": "https://example.com/a"}]),
            ("single", [{"url": "https://example.com/a"}, {"url": "https://example.com/c"}]),
        ]

        summary = await SitemapCollector(mock_fetcher, blob_store).collect_for_website(
            website_id, ["https://example.com/s1.xml", "https://example.com/s2.xml"]
        )

        assert summary["sitemap_type"] == "index"
        assert summary["url_count"] == 2

    @pytest.mark.asyncio
    async def test_all_selected_fail(self, make_website, mock_fetcher, blob_store):
        website_id = make_website()
        mock_fetcher.collect_sitemap_urls.side_effect = WebFetchError("down")

        with pytest.raises(WebFetchError, match="All 1 selected sitemaps failed"):
            await SitemapCollector(mock_fetcher, blob_store).collect_for_website(
                website_id, ["https://www.example.com/sitemap.xml"]
            )
        with get_session() as session:
            assert session.scalars(select(SitemapSnapshot)).all() == []

    @pytest.mark.asyncio
    async def test_discovers_when_nothing_selected(self, make_website, mock_fetcher, blob_store):
        website_id = make_website("https://example.com")
        listing = SitemapListing("https://example.com/sitemap.xml", "single", [{"url": "https://example.com/"}])
        mock_fetcher.discover_sitemap.return_value = listing
        mock_fetcher.expand_listing.return_value = listing.entries

        summary = await SitemapCollector(mock_fetcher, blob_store).collect_for_website(website_id)

        mock_fetcher.discover_sitemap.assert_awaited_once_with("https://example.com")
        assert summary["url_count"] == 1

    @pytest.mark.asyncio
    async def test_competitor_snapshot(self, make_website, make_competitor, mock_fetcher, blob_store):
        website_id = make_website()
        competitor_id = make_competitor(website_id, "https://rival.com")
        mock_fetcher.collect_sitemap_urls.return_value = ("index", [{"url": "https://rival.com/p"}])

        summary = await SitemapCollector(mock_fetcher, blob_store).collect_for_competitor(
            competitor_id, ["https://rival.com/sitemap_index.xml"]
        )

        assert summary["sitemap_type"] == "index"
        with get_session() as session:
            snapshot = session.get(CompetitorSitemapSnapshot, summary["snapshot_id"])
            assert snapshot.competitor_id == competitor_id
            assert [u.url for u in snapshot.urls] == ["https://rival.com/p"]
            assert session.get(Competitor, competitor_id).sitemap_url == "https://rival.com/sitemap_index.xml"

    @pytest.mark.asyncio
    async def test_unknown_website(self, test_db, mock_fetcher, blob_store):
        with pytest.raises(NotFoundError):
            await SitemapCollector(mock_fetcher, blob_store).collect_for_website(77)
