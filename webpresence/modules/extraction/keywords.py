"""Placement-weighted keyword scoring."""

from typing import Any, Iterable, Mapping, Optional, Union

TITLE_WEIGHT = 5.0
DESCRIPTION_WEIGHT = 3.0
HEADING_BONUS = 0.5
WEIGHTED_HEADING_TAGS = ("h2", "h3", "h4", "h5", "h6")

Headings = Union[Mapping[str, Iterable[str]], Iterable[str], None]


def _heading_texts(headings: Headings) -> set[str]:
    """Distinct lower-cased h2-h6 heading texts."""
    if not headings:
        return set()
    if isinstance(headings, Mapping):
        texts = [t for tag in WEIGHTED_HEADING_TAGS for t in headings.get(tag, []) or []]
    else:
        texts = list(headings)
    return {t.lower() for t in texts if t}


def weight_keywords(
    keywords: Iterable[Mapping[str, Any]],
    title: Optional[str] = None,
    meta_description: Optional[str] = None,
    headings: Headings = None,
) -> list[dict[str, Any]]:
    """Score keywords by where they appear on the page.

    Starting from the keyword's frequency, the score is multiplied by 5
    when it appears in the title, by 3 when it appears in the meta
    description and by ``1 + 0.5 * n`` where ``n`` is the number of
    distinct h2-h6 headings containing it.  Matching is a case-insensitive
    substring test.

    Returns:
        Copies of the input dicts with a ``score`` rounded to 2 decimals,
        highest score first (ties keep input order).
    """
    title_l = (title or "").lower()
    description_l = (meta_description or "").lower()
    heading_texts = _heading_texts(headings)

    weighted = []
    for item in keywords:
        keyword = str(item["keyword"]).lower()
        score = float(item.get("frequency", 0))
        if keyword and keyword in title_l:
            score *= TITLE_WEIGHT
        if keyword and keyword in description_l:
            score *= DESCRIPTION_WEIGHT
        matches = sum(1 for text in heading_texts if keyword and keyword in text)
        if matches:
            score *= 1 + HEADING_BONUS * matches
        weighted.append({**item, "score": round(score, 2)})

    weighted.sort(key=lambda k: k["score"], reverse=True)
    return weighted
