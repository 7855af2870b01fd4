"""Locate a site inside a SERP and pick competitor candidates from it."""

from typing import Any, Iterable, Mapping, Optional, Union

from webpresence.integrations.web_fetcher import SerpItem
from webpresence.utils.domains import is_same_domain, normalize_domain

SerpRow = Union[SerpItem, Mapping[str, Any]]


def _field(item: SerpRow, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _domain_of(item: SerpRow) -> str:
    return normalize_domain(_field(item, "domain") or _field(item, "url") or "")


def find_site_result(results: Iterable[SerpRow], site: str) -> Optional[dict[str, Any]]:
    """First (best-positioned) result belonging to *site* or a subdomain of it.

    Returns:
        ``{position, url, title, snippet}`` or ``None`` when the site is
        not in the window.
    """
    ordered = sorted(results, key=lambda r: _field(r, "position") or 10**9)
    for item in ordered:
        if is_same_domain(_domain_of(item), site):
            return {
                "position": _field(item, "position"),
                "url": _field(item, "url"),
                "title": _field(item, "title") or "",
                "snippet": _field(item, "snippet") or "",
            }
    return None


def competitor_candidates(results: Iterable[SerpRow], own_site: str, limit: int = 3) -> list[str]:
    """First *limit* distinct non-self domains, in ascending position order."""
    if limit <= 0:
        return []
    ordered = sorted(results, key=lambda r: _field(r, "position") or 10**9)
    domains: list[str] = []
    for item in ordered:
        domain = _domain_of(item)
        if not domain or is_same_domain(domain, own_site) or domain in domains:
            continue
        domains.append(domain)
        if len(domains) >= limit:
            break
    return domains
