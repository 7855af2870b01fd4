"""Shared helpers: timestamps, domains, text processing and rate limiting."""
