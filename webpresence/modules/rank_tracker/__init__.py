"""Rank tracker module: SERP position tracking, competitor discovery and scoring."""

from webpresence.modules.rank_tracker.competitor_score import ComparisonScore, compare_positions, rank_competitors
from webpresence.modules.rank_tracker.serp_analysis import SerpAnalyzer

__all__ = ["ComparisonScore", "SerpAnalyzer", "compare_positions", "rank_competitors"]
