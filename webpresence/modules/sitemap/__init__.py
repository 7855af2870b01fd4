"""Sitemap module: discovery, collection and snapshot persistence."""

from webpresence.modules.sitemap.collector import SitemapCollector

__all__ = ["SitemapCollector"]
