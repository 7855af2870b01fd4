"""Domain normalization and comparison helpers."""

from typing import Optional
from urllib.parse import urlparse


def normalize_domain(value: str) -> str:
    """Reduce a URL or hostname to a comparable domain.

    Lower-cases, drops scheme, path and port, and strips a single leading
    ``www.``.

    >>> normalize_domain("https://WWW.Example.com/page")
    'example.com'
    """
    value = (value or "").strip()
    if not value:
        return ""
    try:
        parsed = urlparse(value if "://" in value else "https://" + value)
        host = parsed.hostname or ""
    except ValueError:
        host = value.split("/")[0].split(":")[0]
    return host.lower().rstrip(".").removeprefix("www.")


def is_same_domain(result_domain: str, base_domain: str) -> bool:
    """True when *result_domain* is *base_domain* or one of its subdomains."""
    result = normalize_domain(result_domain)
    base = normalize_domain(base_domain)
    if not result or not base:
        return False
    return result == base or result.endswith("." + base)


def hostname(url: str) -> Optional[str]:
    """Lower-cased hostname of *url*, or ``None`` if it cannot be parsed."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def canonical_site_url(url: str) -> str:
    """``https://host`` form used for website and competitor URLs."""
    url = (url or "").strip()
    if "://" not in url:
        url = "https://" + url
    parsed = urlparse(url)
    scheme = parsed.scheme or "https"
    path = parsed.path.rstrip("/")
    return f"{scheme}://{(parsed.netloc or '').lower()}{path}"
