"""Analysis module: initial website analysis and periodic AI reports."""

from webpresence.modules.analysis.initial import InitialAnalyzer
from webpresence.modules.analysis.reports import ReportGenerator

__all__ = ["InitialAnalyzer", "ReportGenerator"]
