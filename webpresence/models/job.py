"""Background analysis job model.  Rows form the work queue."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webpresence.database import Base
from webpresence.utils.helpers import utcnow


class JobType(str, enum.Enum):
    INITIAL_ANALYSIS = "initial_analysis"
    SERP_ANALYSIS = "serp_analysis"
    COMPETITOR_SERP_ANALYSIS = "competitor_serp_analysis"
    SITEMAP_FETCH = "sitemap_fetch"
    COMPETITOR_SITEMAP_FETCH = "competitor_sitemap_fetch"
    PAGE_EXTRACTION = "page_extraction"
    COMPETITOR_PAGE_EXTRACTION = "competitor_page_extraction"
    PAGE_SCRAPE = "page_scrape"
    AI_REPORT = "ai_report"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


class AnalysisJob(Base):
    """A unit of background work.

    Status only moves pending -> running -> completed|failed, and only the
    job processor moves it.  Rows are never deleted automatically.
    """

    __tablename__ = "analysis_jobs"
    __table_args__ = (
        Index("ix_analysis_jobs_queue", "status", "priority", "created_at"),
        Index("ix_analysis_jobs_website_type", "website_id", "type", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    website_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JobStatus.PENDING.value)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<AnalysisJob id={self.id} type={self.type!r} "
            f"status={self.status!r} prio={self.priority}>"
        )
