"""Page extraction module: planning, scraping and keyword weighting."""

from webpresence.modules.extraction.extractor import PageExtractor
from webpresence.modules.extraction.keywords import weight_keywords
from webpresence.modules.extraction.planner import ExtractionPlanner, plan_extractions

__all__ = ["ExtractionPlanner", "PageExtractor", "plan_extractions", "weight_keywords"]
