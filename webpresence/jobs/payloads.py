"""Typed job payloads: one pydantic model per job type, keyed by ``type``."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from webpresence.jobs.errors import PayloadValidationError
from webpresence.models import ExtractionType, JobType, ReportType


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InitialAnalysisPayload(_Payload):
    type: Literal["initial_analysis"] = "initial_analysis"


class SerpAnalysisPayload(_Payload):
    type: Literal["serp_analysis"] = "serp_analysis"
    search_query_id: int = Field(alias="searchQueryId")
    query: str = Field(min_length=1)


class CompetitorSerpAnalysisPayload(_Payload):
    type: Literal["competitor_serp_analysis"] = "competitor_serp_analysis"
    competitor_id: int = Field(alias="competitorId")
    queries: list[str] = Field(min_length=1)


class SitemapFetchPayload(_Payload):
    type: Literal["sitemap_fetch"] = "sitemap_fetch"
    selected_sitemaps: list[str] = Field(default_factory=list, alias="selectedSitemaps")
    website_url: str = Field(alias="websiteUrl")


class CompetitorSitemapFetchPayload(_Payload):
    type: Literal["competitor_sitemap_fetch"] = "competitor_sitemap_fetch"
    competitor_id: int = Field(alias="competitorId")
    selected_sitemaps: list[str] = Field(default_factory=list, alias="selectedSitemaps")


class PageExtractionPayload(_Payload):
    type: Literal["page_extraction"] = "page_extraction"
    extraction_id: int = Field(alias="extractionId")
    url: str
    extraction_type: ExtractionType = Field(alias="extractionType")


class CompetitorPageExtractionPayload(_Payload):
    type: Literal["competitor_page_extraction"] = "competitor_page_extraction"
    extraction_id: int = Field(alias="extractionId")
    url: str
    extraction_type: ExtractionType = Field(alias="extractionType")


class PageScrapePayload(_Payload):
    type: Literal["page_scrape"] = "page_scrape"
    competitor_id: int = Field(alias="competitorId")
    urls: list[str] = Field(default_factory=list)


class AIReportPayload(_Payload):
    type: Literal["ai_report"] = "ai_report"
    report_type: ReportType = Field(default=ReportType.PERIODIC_RECAP, alias="reportType")


JobPayload = Annotated[
    Union[
        InitialAnalysisPayload,
        SerpAnalysisPayload,
        CompetitorSerpAnalysisPayload,
        SitemapFetchPayload,
        CompetitorSitemapFetchPayload,
        PageExtractionPayload,
        CompetitorPageExtractionPayload,
        PageScrapePayload,
        AIReportPayload,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(job_type: str, payload: dict[str, Any] | None) -> BaseModel:
    """Validate a stored payload against the schema of *job_type*.

    Raises:
        PayloadValidationError: unknown job type or payload mismatch.
    """
    try:
        JobType(job_type)
    except ValueError as exc:
        raise PayloadValidationError(f"Unknown job type: {job_type!r}") from exc
    data = dict(payload or {})
    data["type"] = job_type
    try:
        return _adapter.validate_python(data)
    except ValidationError as exc:
        raise PayloadValidationError(f"Invalid {job_type} payload: {exc}") from exc


def dump_payload(model: BaseModel) -> dict[str, Any]:
    """Serialize a payload model to the JSON shape stored on the job row."""
    data = model.model_dump(mode="json", by_alias=True)
    data.pop("type", None)
    return data
