"""Search query, SERP result and competitor SQLAlchemy models."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from webpresence.database import Base
from webpresence.utils.helpers import utcnow


class CompetitionLevel(str, enum.Enum):
    HIGH = "HIGH"
    LOW = "LOW"


class SearchQuery(Base):
    """A search query tracked for a website.

    AI-proposed queries carry ``confidence < 1``; manually added ones 1.0.
    """

    __tablename__ = "search_queries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    query: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    competition_level: Mapped[str] = mapped_column(
        String(10), nullable=False, default=CompetitionLevel.HIGH.value
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<SearchQuery id={self.id} query={self.query!r} active={self.is_active}>"


class SerpResult(Base):
    """One SERP observation, owned by a search query XOR a competitor.

    ``position`` is ``None`` when the tracked site was not found in the
    fetched window.
    """

    __tablename__ = "serp_results"
    __table_args__ = (
        CheckConstraint(
            "(search_query_id IS NULL) <> (competitor_id IS NULL)",
            name="ck_serp_results_single_owner",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    search_query_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("search_queries.id", ondelete="CASCADE"), nullable=True, index=True
    )
    competitor_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=True, index=True
    )
    query: Mapped[str] = mapped_column(String(500), nullable=False)
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    search_engine: Mapped[str] = mapped_column(String(50), nullable=False, default="google")
    country: Mapped[str] = mapped_column(String(10), nullable=False, default="fr")
    device: Mapped[str] = mapped_column(String(20), nullable=False, default="desktop")
    raw_data_blob_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self) -> str:
        owner = f"sq={self.search_query_id}" if self.search_query_id else f"comp={self.competitor_id}"
        return f"<SerpResult id={self.id} {owner} query={self.query!r} pos={self.position}>"


class Competitor(Base):
    """A competing site for a website, either added manually or auto-discovered."""

    __tablename__ = "competitors"
    __table_args__ = (
        UniqueConstraint("website_id", "url", name="uq_competitors_website_url"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sitemap_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    last_sitemap_fetch: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Competitor id={self.id} url={self.url!r} verified={self.is_verified}>"
