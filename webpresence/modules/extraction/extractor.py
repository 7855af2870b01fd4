"""Page extraction: scrape one URL and persist its metadata and keywords."""

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from webpresence.database import get_session
from webpresence.integrations.blob_store import BlobStore
from webpresence.integrations.web_fetcher import WebFetcher
from webpresence.jobs.errors import NotFoundError
from webpresence.models import (
    Competitor,
    CompetitorPageExtraction,
    ExtractionSource,
    ExtractionStatus,
    ExtractionType,
    PageExtraction,
)
from webpresence.modules.extraction.keywords import weight_keywords
from webpresence.utils.helpers import utcnow
from webpresence.utils.text_processing import extract_keywords, extract_page_metadata

logger = logging.getLogger(__name__)


def build_extraction(html: str, extraction_type: str) -> dict[str, Any]:
    """Column values for an extraction of the given type.

    ``quick`` keeps title, meta description and h1; ``full`` adds h2-h6
    headings and placement-weighted keywords.
    """
    full = extraction_type == ExtractionType.FULL.value
    meta = extract_page_metadata(html, full=full)
    values: dict[str, Any] = {
        "title": meta["title"],
        "meta_description": meta["meta_description"],
        "h1": meta["headings"].get("h1", []),
        "headings": None,
        "keywords": None,
    }
    if full:
        headings = {tag: texts for tag, texts in meta["headings"].items() if tag != "h1"}
        values["headings"] = headings
        values["keywords"] = weight_keywords(
            extract_keywords(html), meta["title"], meta["meta_description"], headings
        )
    return values


class PageExtractor:
    """Runs extractions for own-site and competitor page rows.

    Usage::

        extractor = PageExtractor(fetcher, blobs)
        await extractor.extract_page(extraction_id, "full")
        await extractor.extract_competitor_page(extraction_id, "quick")
    """

    def __init__(self, fetcher: WebFetcher, blobs: BlobStore):
        self._fetcher = fetcher
        self._blobs = blobs

    async def extract_page(self, extraction_id: int, extraction_type: str) -> dict[str, Any]:
        with get_session() as session:
            row = session.get(PageExtraction, extraction_id)
            if row is None:
                raise NotFoundError("PageExtraction", extraction_id)
            owner_id = row.website_id
        return await self._run(PageExtraction, extraction_id, owner_id, extraction_type)

    async def extract_competitor_page(self, extraction_id: int, extraction_type: str) -> dict[str, Any]:
        with get_session() as session:
            row = session.get(CompetitorPageExtraction, extraction_id)
            if row is None:
                raise NotFoundError("CompetitorPageExtraction", extraction_id)
            competitor = session.get(Competitor, row.competitor_id) if row.competitor_id else None
            owner_id = competitor.website_id if competitor else 0
        return await self._run(CompetitorPageExtraction, extraction_id, owner_id, extraction_type)

    async def _run(self, model, extraction_id: int, owner_id: int, extraction_type: str) -> dict[str, Any]:
        extraction_type = ExtractionType(extraction_type).value
        with get_session() as session:
            row = session.get(model, extraction_id)
            row.status = ExtractionStatus.EXTRACTING.value
            row.type = extraction_type
            row.error = None
            url = row.url

        try:
            html = await self._fetcher.scrape_page(url)
            blob_url = await self._blobs.store_html(owner_id, url, html)
            values = build_extraction(html, extraction_type)
        except (Exception, asyncio.CancelledError) as exc:
            with get_session() as session:
                row = session.get(model, extraction_id)
                row.status = ExtractionStatus.FAILED.value
                row.error = (str(exc) or "Extraction cancelled")[:2000]
            logger.warning("Extraction %d failed for %s: %s", extraction_id, url, exc)
            raise

        with get_session() as session:
            row = session.get(model, extraction_id)
            for column, value in values.items():
                setattr(row, column, value)
            row.html_blob_url = blob_url
            row.status = ExtractionStatus.COMPLETED.value
            row.extracted_at = utcnow()

        logger.info("Extracted %s (%s) into %s %d", url, extraction_type, model.__tablename__, extraction_id)
        return {
            "extraction_id": extraction_id,
            "url": url,
            "type": extraction_type,
            "keywords": len(values["keywords"] or []),
        }

    async def scrape_competitor_pages(self, competitor_id: int, urls: list[str]) -> dict[str, Any]:
        """Quick-extract a list of competitor URLs, tolerating per-URL failures.

        Raises:
            ValueError: no URLs were given.
            RuntimeError: every URL failed.
        """
        if not urls:
            raise ValueError("No URLs provided")
        with get_session() as session:
            if session.get(Competitor, competitor_id) is None:
                raise NotFoundError("Competitor", competitor_id)

        succeeded, failed = 0, []
        for url in dict.fromkeys(urls):
            extraction_id = self._get_or_create_competitor_row(competitor_id, url)
            try:
                await self.extract_competitor_page(extraction_id, ExtractionType.QUICK.value)
                succeeded += 1
            except Exception as exc:
                logger.warning("Competitor page %s failed: %s", url, exc)
                failed.append({"url": url, "error": str(exc)})

        if succeeded == 0:
            raise RuntimeError(f"All {len(failed)} competitor pages failed; first error: {failed[0]['error']}")
        return {"competitor_id": competitor_id, "succeeded": succeeded, "failed": failed}

    def _get_or_create_competitor_row(self, competitor_id: int, url: str) -> int:
        stmt = select(CompetitorPageExtraction.id).where(
            CompetitorPageExtraction.competitor_id == competitor_id,
            CompetitorPageExtraction.url == url,
        )
        with get_session() as session:
            existing: Optional[int] = session.scalar(stmt)
            if existing is not None:
                return existing
        try:
            with get_session() as session:
                row = CompetitorPageExtraction(
                    competitor_id=competitor_id, url=url, source=ExtractionSource.SCRAPE.value,
                )
                session.add(row)
                session.flush()
                return row.id
        except IntegrityError:
            logger.debug("Concurrent insert for competitor %d page %s", competitor_id, url)
            with get_session() as session:
                return session.scalar(stmt)
