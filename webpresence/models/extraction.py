"""Page analysis and page extraction SQLAlchemy models."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from webpresence.database import Base
from webpresence.utils.helpers import utcnow


class ExtractionStatus(str, enum.Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    COMPLETED = "completed"
    FAILED = "failed"


class ExtractionType(str, enum.Enum):
    QUICK = "quick"
    FULL = "full"


class ExtractionSource(str, enum.Enum):
    SITEMAP = "sitemap"
    MANUAL = "manual"
    SERP = "serp"
    SCRAPE = "scrape"


class PageAnalysis(Base):
    """A page scraped during a website's initial analysis."""

    __tablename__ = "page_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    headings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    keywords: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    html_blob_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<PageAnalysis id={self.id} url={self.url!r}>"


class _ExtractionColumns:
    """Columns shared by own-site and competitor page extractions."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExtractionStatus.PENDING.value, index=True
    )
    type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    h1: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    headings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    keywords: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    html_blob_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    extracted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class PageExtraction(_ExtractionColumns, Base):
    """Structured content extracted from one of the website's own pages."""

    __tablename__ = "page_extractions"
    __table_args__ = (
        UniqueConstraint("website_id", "url", name="uq_page_extractions_website_url"),
    )

    website_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExtractionSource.SITEMAP.value
    )

    def __repr__(self) -> str:
        return (
            f"<PageExtraction id={self.id} url={self.url!r} "
            f"status={self.status!r} type={self.type!r}>"
        )


class CompetitorPageExtraction(_ExtractionColumns, Base):
    """Structured content extracted from a competitor page (SERP, sitemap or scrape)."""

    __tablename__ = "competitor_page_extractions"
    __table_args__ = (
        UniqueConstraint("competitor_id", "url", name="uq_competitor_page_extractions_url"),
    )

    competitor_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=True, index=True
    )
    search_query_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("search_queries.id", ondelete="SET NULL"), nullable=True, index=True
    )
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExtractionSource.SITEMAP.value
    )

    def __repr__(self) -> str:
        return (
            f"<CompetitorPageExtraction id={self.id} comp={self.competitor_id} "
            f"url={self.url!r} status={self.status!r}>"
        )
