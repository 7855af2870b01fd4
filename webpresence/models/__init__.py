"""SQLAlchemy ORM models: import every model so Base.metadata is populated."""

from webpresence.models.organization import (
    Organization,
    Website,
    WebsiteStatus,
)
from webpresence.models.search import (
    CompetitionLevel,
    Competitor,
    SearchQuery,
    SerpResult,
)
from webpresence.models.extraction import (
    CompetitorPageExtraction,
    ExtractionSource,
    ExtractionStatus,
    ExtractionType,
    PageAnalysis,
    PageExtraction,
)
from webpresence.models.sitemap import (
    CompetitorSitemapSnapshot,
    CompetitorSitemapUrl,
    SitemapSnapshot,
    SitemapType,
    SitemapUrl,
)
from webpresence.models.job import (
    ACTIVE_JOB_STATUSES,
    AnalysisJob,
    JobStatus,
    JobType,
)
from webpresence.models.report import (
    AIReport,
    ReportType,
)

__all__ = [
    "Organization",
    "Website",
    "WebsiteStatus",
    "CompetitionLevel",
    "Competitor",
    "SearchQuery",
    "SerpResult",
    "CompetitorPageExtraction",
    "ExtractionSource",
    "ExtractionStatus",
    "ExtractionType",
    "PageAnalysis",
    "PageExtraction",
    "CompetitorSitemapSnapshot",
    "CompetitorSitemapUrl",
    "SitemapSnapshot",
    "SitemapType",
    "SitemapUrl",
    "ACTIVE_JOB_STATUSES",
    "AnalysisJob",
    "JobStatus",
    "JobType",
    "AIReport",
    "ReportType",
]
