"""Web Presence Tracker: SERP positions, competitors and page extraction jobs."""

__version__ = "1.0.0"
