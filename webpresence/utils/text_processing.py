"""HTML text processing: page metadata, headings and keyword frequency extraction."""

import re
from collections import Counter
from typing import Any, Optional

from bs4 import BeautifulSoup

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")

# French and English function words that never make useful keywords.
STOP_WORDS = frozenset({
    "le", "la", "les", "de", "du", "des", "un", "une", "et", "en", "à", "au",
    "aux", "ce", "ces", "cette", "qui", "que", "quoi", "dont", "où", "pour",
    "par", "sur", "avec", "dans", "est", "sont", "a", "ont", "être", "avoir",
    "faire", "plus", "pas", "vous", "nous", "votre", "vos", "notre", "nos",
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "are", "was", "were", "be", "been",
    "being", "this", "that", "these", "those", "you", "your", "our", "not",
    "can", "will", "all", "has", "have", "its",
})

_WORD_SPLIT = re.compile(r"[\W_]+", re.UNICODE)
_DIGITS = re.compile(r"^\d+$")


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(separator=" ")


def extract_headings(html: str, tags: tuple[str, ...] = HEADING_TAGS) -> dict[str, list[str]]:
    """Return non-empty heading texts grouped by tag name, in document order."""
    soup = _soup(html)
    headings: dict[str, list[str]] = {tag: [] for tag in tags}
    for element in soup.find_all(list(tags)):
        text = " ".join(element.get_text(separator=" ").split())
        if text:
            headings[element.name].append(text)
    return headings


def extract_page_metadata(html: str, full: bool = False) -> dict[str, Any]:
    """Extract title, meta description, headings and word count from HTML.

    Args:
        html: Raw page HTML.
        full: Include h4-h6 headings as well as h1-h3.

    Returns:
        Dict with ``title``, ``meta_description``, ``headings`` (tag -> texts)
        and ``word_count``.
    """
    soup = _soup(html)

    title: Optional[str] = None
    if soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    meta_description: Optional[str] = None
    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    if meta and meta.get("content"):
        meta_description = meta["content"].strip() or None

    tags = HEADING_TAGS if full else HEADING_TAGS[:3]
    headings = extract_headings(html, tags)

    words = _visible_text(soup).split()
    return {
        "title": title,
        "meta_description": meta_description,
        "headings": headings,
        "word_count": len(words),
    }


def extract_keywords(
    html: str,
    min_frequency: int = 2,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Frequency-ranked keywords from the visible text of *html*.

    Words shorter than 3 characters, stop words and pure numbers are
    dropped.  ``density`` is the share of the kept words, as a percentage
    rounded to 2 decimals.

    Returns:
        Up to *limit* dicts with ``keyword``, ``frequency`` and ``density``,
        most frequent first.
    """
    text = _visible_text(_soup(html)).lower()
    words = [
        word for word in _WORD_SPLIT.split(text)
        if len(word) > 2 and word not in STOP_WORDS and not _DIGITS.match(word)
    ]
    total = len(words)
    if total == 0:
        return []

    counts = Counter(words)
    keywords = [
        {
            "keyword": word,
            "frequency": freq,
            "density": round(freq / total * 100, 2),
        }
        for word, freq in counts.most_common()
        if freq >= min_frequency
    ]
    return keywords[:limit]
