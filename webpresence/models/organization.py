"""Organization and website SQLAlchemy models."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from webpresence.database import Base
from webpresence.utils.helpers import utcnow


class WebsiteStatus(str, enum.Enum):
    PENDING = "pending"
    DRAFT = "draft"
    ANALYZING = "analyzing"
    ACTIVE = "active"
    ERROR = "error"


class Organization(Base):
    """Tenant owning websites; carries the periodic analysis cadences."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    serp_frequency_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    competitor_frequency_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=168)
    ai_report_frequency_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=168)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    websites: Mapped[list["Website"]] = relationship(
        "Website", back_populates="organization", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} slug={self.slug!r}>"


class Website(Base):
    """A tracked website.  ``status`` is driven by the analysis pipelines."""

    __tablename__ = "websites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WebsiteStatus.PENDING.value, index=True
    )
    sitemap_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    last_sitemap_fetch: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="websites")

    def __repr__(self) -> str:
        return f"<Website id={self.id} url={self.url!r} status={self.status!r}>"
