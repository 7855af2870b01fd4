"""Web fetcher: page scraping, SERP retrieval and sitemap discovery over aiohttp.

SERP results come from the BrightData SERP API when an API key is set, or
from a direct Google fetch parsed with BeautifulSoup otherwise.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import parse_qs, quote_plus, urljoin, urlparse
from xml.etree import ElementTree as ET

import aiohttp
from bs4 import BeautifulSoup

from webpresence.utils.domains import normalize_domain
from webpresence.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

BRIGHTDATA_API_URL = "https://api.brightdata.com/request"
DEFAULT_SERP_ZONE = "serp_api_google_1"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)
SITEMAP_CANDIDATES = ("/sitemap.xml", "/sitemap_index.xml", "/sitemap/sitemap.xml")

_ROBOTS_SITEMAP = re.compile(r"^\s*sitemap:\s*(\S+)", re.IGNORECASE | re.MULTILINE)


class WebFetchError(Exception):
    """A page, SERP or sitemap could not be fetched or parsed."""


@dataclass
class SerpItem:
    position: int
    url: str
    domain: str
    title: str = ""
    snippet: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "url": self.url,
            "domain": self.domain,
            "title": self.title,
            "snippet": self.snippet,
        }


@dataclass
class SitemapListing:
    """Parsed sitemap document.

    ``entries`` holds page URLs for a ``single`` sitemap and child sitemap
    URLs for an ``index``.
    """

    sitemap_url: str
    sitemap_type: str
    entries: list[dict[str, Any]] = field(default_factory=list)


def parse_sitemap_xml(xml_text: str, sitemap_url: str = "") -> SitemapListing:
    """Classify and parse a sitemap XML document.

    Raises:
        WebFetchError: the document is not XML or is neither a
            ``<urlset>`` nor a ``<sitemapindex>``.
    """
    try:
        root = ET.fromstring(xml_text.strip().encode("utf-8"))
    except ET.ParseError as exc:
        raise WebFetchError(f"Invalid sitemap XML at {sitemap_url}: {exc}") from exc

    tag = root.tag.split("}")[-1].lower()
    if tag == "sitemapindex":
        children = []
        for loc in root.iter():
            if loc.tag.split("}")[-1] == "loc" and loc.text and loc.text.strip():
                children.append({"url": loc.text.strip()})
        return SitemapListing(sitemap_url, "index", children)

    if tag != "urlset":
        raise WebFetchError(f"Unrecognised sitemap root <{tag}> at {sitemap_url}")

    entries: list[dict[str, Any]] = []
    for url_el in root:
        if url_el.tag.split("}")[-1] != "url":
            continue
        fields: dict[str, Any] = {}
        for child in url_el:
            name = child.tag.split("}")[-1]
            if name in ("loc", "lastmod", "changefreq", "priority") and child.text:
                fields[name] = child.text.strip()
        if not fields.get("loc"):
            continue
        entry: dict[str, Any] = {"url": fields["loc"]}
        if "lastmod" in fields:
            entry["lastmod"] = fields["lastmod"]
        if "changefreq" in fields:
            entry["changefreq"] = fields["changefreq"]
        if "priority" in fields:
            try:
                entry["priority"] = float(fields["priority"])
            except ValueError:
                pass
        entries.append(entry)
    return SitemapListing(sitemap_url, "single", entries)


def parse_google_results(html: str) -> list[SerpItem]:
    """Parse organic results out of a Google results page."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[SerpItem] = []
    seen: set[str] = set()
    for block in soup.select("div.g, div.MjjYud"):
        link = block.find("a", href=True)
        heading = block.find("h3")
        if not link or not heading:
            continue
        href = link["href"]
        if href.startswith("/url?"):
            href = parse_qs(urlparse(href).query).get("q", [""])[0]
        if not href.startswith("http") or href in seen:
            continue
        seen.add(href)
        snippet_el = block.select_one("div.VwiC3b, span.aCOpRe, div[data-sncf]")
        results.append(SerpItem(
            position=len(results) + 1,
            url=href,
            domain=normalize_domain(href),
            title=heading.get_text(strip=True),
            snippet=snippet_el.get_text(" ", strip=True) if snippet_el else "",
        ))
    return results


class WebFetcher:
    """Async HTTP adapter for pages, SERPs and sitemaps.

    Usage::

        fetcher = WebFetcher()
        html = await fetcher.scrape_page("https://example.com")
        results = await fetcher.search_serp("chaussures running")
        listing = await fetcher.fetch_sitemap("https://example.com/sitemap.xml")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        serp_zone: Optional[str] = None,
        timeout: int = 30,
        requests_per_minute: int = 60,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._api_key = api_key if api_key is not None else os.getenv("BRIGHTDATA_API_KEY", "")
        self._serp_zone = serp_zone or os.getenv("BRIGHTDATA_SERP_ZONE", DEFAULT_SERP_ZONE)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._user_agent = user_agent
        self._limiter = RateLimiter(requests_per_minute, name="web_fetcher")

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def scrape_page(self, url: str, timeout: Optional[int] = None) -> str:
        """Fetch *url* and return its body.

        Raises:
            WebFetchError: on connection failure or a non-2xx status.
        """
        client_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else self._timeout
        await self._limiter.acquire()
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(
                    url, headers={"User-Agent": self._user_agent}, allow_redirects=True
                ) as resp:
                    if resp.status >= 400:
                        raise WebFetchError(f"Scrape failed: {resp.status} {resp.reason} for {url}")
                    return await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise WebFetchError(f"Scrape failed for {url}: {exc}") from exc

    # ------------------------------------------------------------------
    # SERP
    # ------------------------------------------------------------------

    async def search_serp(
        self,
        query: str,
        country: str = "fr",
        language: str = "fr",
        num_results: int = 20,
    ) -> list[SerpItem]:
        """Ranked organic results for *query*, best first."""
        if self._api_key:
            results = await self._search_brightdata(query, country, language)
        else:
            logger.debug("No BRIGHTDATA_API_KEY; using direct Google fetch for %r", query)
            url = (
                f"https://www.google.com/search?q={quote_plus(query)}"
                f"&num={num_results}&hl={language}&gl={country.upper()}"
            )
            results = parse_google_results(await self.scrape_page(url))
        logger.info("SERP %r: %d results", query, len(results))
        return results[:num_results]

    async def _search_brightdata(self, query: str, country: str, language: str) -> list[SerpItem]:
        search_url = (
            f"https://www.google.{country}/search?q={quote_plus(query)}"
            f"&gl={country.upper()}&hl={language}"
        )
        body = {
            "zone": self._serp_zone,
            "url": search_url,
            "format": "raw",
            "data_format": "parsed_light",
        }
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        await self._limiter.acquire()
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(BRIGHTDATA_API_URL, json=body, headers=headers) as resp:
                    if resp.status >= 400:
                        detail = (await resp.text())[:300]
                        raise WebFetchError(f"SERP API error {resp.status}: {detail}")
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise WebFetchError(f"SERP API request failed for {query!r}: {exc}") from exc

        organic = data.get("organic") if isinstance(data, dict) else None
        if not isinstance(organic, list):
            raise WebFetchError("SERP API response has no organic results")

        results: list[SerpItem] = []
        for item in organic:
            url = item.get("link") or item.get("url") or ""
            results.append(SerpItem(
                position=item.get("global_rank") or len(results) + 1,
                url=url,
                domain=normalize_domain(url) or url,
                title=item.get("title") or "",
                snippet=item.get("description") or "",
            ))
        return results

    # ------------------------------------------------------------------
    # Sitemaps
    # ------------------------------------------------------------------

    async def fetch_sitemap(self, sitemap_url: str) -> SitemapListing:
        """Fetch and classify a single sitemap document."""
        xml_text = await self.scrape_page(sitemap_url, timeout=15)
        return parse_sitemap_xml(xml_text, sitemap_url)

    async def discover_sitemap(self, website_url: str) -> SitemapListing:
        """Locate a site's sitemap via common paths, then robots.txt.

        Raises:
            WebFetchError: no sitemap could be found.
        """
        for path in SITEMAP_CANDIDATES:
            candidate = urljoin(website_url, path)
            try:
                return await self.fetch_sitemap(candidate)
            except WebFetchError as exc:
                logger.debug("Sitemap candidate %s rejected: %s", candidate, exc)

        try:
            robots = await self.scrape_page(urljoin(website_url, "/robots.txt"), timeout=10)
        except WebFetchError as exc:
            raise WebFetchError(f"No sitemap found for {website_url}") from exc
        for match in _ROBOTS_SITEMAP.finditer(robots):
            try:
                return await self.fetch_sitemap(match.group(1))
            except WebFetchError as exc:
                logger.debug("robots.txt sitemap %s rejected: %s", match.group(1), exc)
        raise WebFetchError(f"No sitemap found for {website_url}")

    async def collect_sitemap_urls(
        self,
        sitemap_url: str,
        max_depth: int = 2,
    ) -> tuple[str, list[dict[str, Any]]]:
        """Fetch a sitemap and, for an index, its children recursively.

        Returns:
            ``(sitemap_type, page_entries)`` where the type is that of the
            top-level document.  Unreachable child sitemaps are skipped.
        """
        listing = await self.fetch_sitemap(sitemap_url)
        return listing.sitemap_type, await self._expand(listing, max_depth)

    async def expand_listing(self, listing: SitemapListing, max_depth: int = 2) -> list[dict[str, Any]]:
        """Page entries of an already-fetched listing (children fetched for an index)."""
        return await self._expand(listing, max_depth)

    async def _expand(self, listing: SitemapListing, depth: int) -> list[dict[str, Any]]:
        if listing.sitemap_type == "single":
            return list(listing.entries)
        if depth <= 0:
            logger.warning("Sitemap index depth exhausted at %s", listing.sitemap_url)
            return []
        pages: list[dict[str, Any]] = []
        for child in listing.entries:
            try:
                child_listing = await self.fetch_sitemap(child["url"])
            except WebFetchError as exc:
                logger.warning("Child sitemap %s skipped: %s", child["url"], exc)
                continue
            pages.extend(await self._expand(child_listing, depth - 1))
        return pages
