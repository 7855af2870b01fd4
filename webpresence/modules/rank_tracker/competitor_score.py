"""Head-to-head ranking comparison between a website and its competitors."""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import select

from webpresence.database import get_session
from webpresence.models import Competitor, SearchQuery, SerpResult

logger = logging.getLogger(__name__)

PositionMap = Mapping[str, Optional[int]]


@dataclass(frozen=True)
class ComparisonScore:
    better: int = 0
    worse: int = 0
    total: int = 0

    @property
    def net_score(self) -> int:
        return self.better - self.worse

    def to_dict(self) -> dict[str, int]:
        return {
            "better": self.better,
            "worse": self.worse,
            "total": self.total,
            "net_score": self.net_score,
        }


def _ranked(position: Optional[int]) -> bool:
    return isinstance(position, int) and not isinstance(position, bool) and position > 0


def compare_positions(own: PositionMap, theirs: PositionMap) -> ComparisonScore:
    """Count the queries where each side outranks the other.

    A side ranks when its position is a positive integer.  Queries where
    neither side ranks are ignored; every other query counts toward
    ``total``.  If only one side ranks, it wins; if both rank, the lower
    position wins and equal positions count for nobody.

    >>> compare_positions({"a": 3, "b": None}, {"a": 7, "c": 2})
    ComparisonScore(better=1, worse=1, total=2)
    """
    own_l = {k.lower(): v for k, v in own.items()}
    theirs_l = {k.lower(): v for k, v in theirs.items()}
    better = worse = total = 0
    for query in own_l.keys() | theirs_l.keys():
        ours, competitor = own_l.get(query), theirs_l.get(query)
        ours_ranked, theirs_ranked = _ranked(ours), _ranked(competitor)
        if not (ours_ranked or theirs_ranked):
            continue
        total += 1
        if ours_ranked and not theirs_ranked:
            better += 1
        elif theirs_ranked and not ours_ranked:
            worse += 1
        elif ours < competitor:
            better += 1
        elif competitor < ours:
            worse += 1
    return ComparisonScore(better=better, worse=worse, total=total)


def latest_positions(rows: Iterable[tuple[str, Optional[int]]]) -> dict[str, Optional[int]]:
    """Collapse ``(query, position)`` rows ordered newest-first to one position per query."""
    positions: dict[str, Optional[int]] = {}
    for query, position in rows:
        key = query.lower()
        if key not in positions:
            positions[key] = position
    return positions


def own_positions(session, website_id: int) -> dict[str, Optional[int]]:
    """Latest position per active search query of the website."""
    stmt = (
        select(SerpResult.query, SerpResult.position)
        .join(SearchQuery, SerpResult.search_query_id == SearchQuery.id)
        .where(SearchQuery.website_id == website_id, SearchQuery.is_active.is_(True))
        .order_by(SerpResult.created_at.desc(), SerpResult.id.desc())
    )
    return latest_positions(session.execute(stmt).all())


def competitor_positions(session, competitor_id: int) -> dict[str, Optional[int]]:
    """Latest position per query observed for the competitor."""
    stmt = (
        select(SerpResult.query, SerpResult.position)
        .where(SerpResult.competitor_id == competitor_id)
        .order_by(SerpResult.created_at.desc(), SerpResult.id.desc())
    )
    return latest_positions(session.execute(stmt).all())


def rank_competitors(website_id: int, active_only: bool = True) -> list[dict[str, Any]]:
    """Score every competitor of a website, strongest threat last.

    Sorted by ``net_score`` descending, then competitor name ascending.
    """
    with get_session() as session:
        own = own_positions(session, website_id)
        stmt = select(Competitor).where(Competitor.website_id == website_id)
        if active_only:
            stmt = stmt.where(Competitor.is_active.is_(True))
        ranking = []
        for competitor in session.scalars(stmt):
            score = compare_positions(own, competitor_positions(session, competitor.id))
            ranking.append({
                "competitor_id": competitor.id,
                "name": competitor.name,
                "url": competitor.url,
                **score.to_dict(),
            })
    ranking.sort(key=lambda row: (-row["net_score"], row["name"]))
    logger.debug("Ranked %d competitors for website %d", len(ranking), website_id)
    return ranking
