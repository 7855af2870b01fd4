"""Sitemap snapshot models.  Snapshots are append-only; latest = max ``fetched_at``."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webpresence.database import Base
from webpresence.utils.helpers import utcnow


class SitemapType(str, enum.Enum):
    SINGLE = "single"
    INDEX = "index"


class SitemapSnapshot(Base):
    __tablename__ = "sitemap_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sitemap_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    sitemap_type: Mapped[str] = mapped_column(String(10), nullable=False, default=SitemapType.SINGLE.value)
    blob_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    url_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    urls: Mapped[list["SitemapUrl"]] = relationship(
        "SitemapUrl", back_populates="snapshot", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<SitemapSnapshot id={self.id} website={self.website_id} urls={self.url_count}>"


class SitemapUrl(Base):
    __tablename__ = "sitemap_urls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sitemap_snapshots.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    lastmod: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    changefreq: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    priority: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    snapshot: Mapped["SitemapSnapshot"] = relationship("SitemapSnapshot", back_populates="urls")

    def __repr__(self) -> str:
        return f"<SitemapUrl id={self.id} url={self.url!r}>"


class CompetitorSitemapSnapshot(Base):
    __tablename__ = "competitor_sitemap_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competitor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sitemap_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    sitemap_type: Mapped[str] = mapped_column(String(10), nullable=False, default=SitemapType.SINGLE.value)
    blob_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    url_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    urls: Mapped[list["CompetitorSitemapUrl"]] = relationship(
        "CompetitorSitemapUrl", back_populates="snapshot", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<CompetitorSitemapSnapshot id={self.id} comp={self.competitor_id} "
            f"urls={self.url_count}>"
        )


class CompetitorSitemapUrl(Base):
    __tablename__ = "competitor_sitemap_urls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("competitor_sitemap_snapshots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    lastmod: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    changefreq: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    priority: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    snapshot: Mapped["CompetitorSitemapSnapshot"] = relationship(
        "CompetitorSitemapSnapshot", back_populates="urls"
    )

    def __repr__(self) -> str:
        return f"<CompetitorSitemapUrl id={self.id} url={self.url!r}>"
