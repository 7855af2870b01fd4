"""Tests for SERP matching, position tracking and competitor discovery."""

import json
from pathlib import Path
from urllib.parse import urlparse

import pytest
from sqlalchemy import select

from webpresence.database import get_session
from webpresence.integrations.web_fetcher import SerpItem, WebFetchError
from webpresence.jobs.errors import NotFoundError
from webpresence.models import Competitor, SerpResult
from webpresence.modules.rank_tracker.serp_analysis import SerpAnalyzer
from webpresence.modules.rank_tracker.serp_matcher import competitor_candidates, find_site_result


def _serp(*domains):
    return [
        SerpItem(position=i, url=f"https://{d}/page", domain=d, title=f"Title {i}", snippet=f"Snippet {i}")
        for i, d in enumerate(domains, start=1)
    ]


def _competitors(website_id):
    with get_session() as session:
        return list(session.scalars(
            select(Competitor).where(Competitor.website_id == website_id).order_by(Competitor.id)
        ))


# ===========================================================================
# 1. Matching
# ===========================================================================
class TestSerpMatcher:

    def test_find_site_result_matches_subdomains(self):
        results = [r.to_dict() for r in _serp("rival.com", "blog.example.com", "example.com")]
        match = find_site_result(results, "https://www.example.com")
        assert match == {
            "position": 2,
            "url": "https://blog.example.com/page",
            "title": "Title 2",
            "snippet": "Snippet 2",
        }

    def test_find_site_result_absent(self):
        assert find_site_result(_serp("rival.com"), "example.com") is None
        assert find_site_result([], "example.com") is None

    def test_candidates_skip_self_and_duplicates(self):
        results = _serp("www.example.com", "a.com", "www.a.com", "shop.example.com", "b.com", "c.com", "d.com")
        assert competitor_candidates(results, "example.com") == ["a.com", "b.com", "c.com"]
        assert competitor_candidates(results, "example.com", limit=1) == ["a.com"]

    def test_candidates_follow_position_order(self):
        results = [
            {"position": 3, "url": "https://c.com"},
            {"position": 1, "url": "https://a.com"},
            {"position": 2, "url": "https://b.com"},
        ]
        assert competitor_candidates(results, "example.com", limit=2) == ["a.com", "b.com"]


# ===========================================================================
# 2. Own-site analysis
# ===========================================================================
class TestAnalyzeQuery:

    @pytest.mark.asyncio
    async def test_records_position_and_discovers_competitors(
        self, make_website, make_query, make_competitor, mock_fetcher, blob_store
    ):
        website_id = make_website("https://www.example.com")
        query_id = make_query(website_id, "logiciel crm")
        make_competitor(website_id, "https://www.rival-b.com", name="Rival B")
        mock_fetcher.search_serp.return_value = _serp(
            "rival-a.com", "example.com", "rival-b.com", "rival-c.com", "rival-d.com"
        )

        analyzer = SerpAnalyzer(mock_fetcher, blob_store)
        summary = await analyzer.analyze_query(query_id, "logiciel crm")

        assert summary == {"query": "logiciel crm", "position": 2, "competitors_added": ["rival-a.com", "rival-c.com"]}
        mock_fetcher.search_serp.assert_awaited_once_with(
            "logiciel crm", country="fr", language="fr", num_results=20
        )

        with get_session() as session:
            row = session.scalars(select(SerpResult).where(SerpResult.search_query_id == query_id)).one()
        assert row.position == 2
        assert row.url == "https://example.com/page"
        assert row.competitor_id is None
        blob_path = Path(urlparse(row.raw_data_blob_url).path)
        stored = json.loads(blob_path.read_text(encoding="utf-8"))
        assert stored["query"] == "logiciel crm"
        assert len(stored["results"]) == 5

        added = [c for c in _competitors(website_id) if not c.is_verified]
        assert [c.url for c in added] == ["https://www.rival-b.com", "https://rival-a.com", "https://rival-c.com"]
        new = added[1]
        assert new.name == "rival-a.com"
        assert new.description == 'Detected on SERP for "logiciel crm"'
        assert new.is_active is True

    @pytest.mark.asyncio
    async def test_not_ranked(self, make_website, make_query, mock_fetcher, blob_store):
        website_id = make_website("https://www.example.com")
        query_id = make_query(website_id)
        mock_fetcher.search_serp.return_value = _serp("rival.com")

        summary = await SerpAnalyzer(mock_fetcher, blob_store, discovery_limit=0).analyze_query(query_id)

        assert summary["position"] is None
        assert summary["query"] == "logiciel crm"
        assert summary["competitors_added"] == []
        with get_session() as session:
            row = session.scalars(select(SerpResult)).one()
        assert row.position is None
        assert row.url is None

    @pytest.mark.asyncio
    async def test_discovery_is_idempotent(self, make_website, make_query, mock_fetcher, blob_store):
        website_id = make_website()
        query_id = make_query(website_id)
        mock_fetcher.search_serp.return_value = _serp("a.com", "b.com")
        analyzer = SerpAnalyzer(mock_fetcher, blob_store)

        await analyzer.analyze_query(query_id)
        second = await analyzer.analyze_query(query_id)

        assert second["competitors_added"] == []
        assert len(_competitors(website_id)) == 2

    @pytest.mark.asyncio
    async def test_missing_query(self, test_db, mock_fetcher, blob_store):
        with pytest.raises(NotFoundError):
            await SerpAnalyzer(mock_fetcher, blob_store).analyze_query(404, "crm")
        mock_fetcher.search_serp.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self, make_website, make_query, mock_fetcher, blob_store):
        website_id = make_website()
        query_id = make_query(website_id)
        mock_fetcher.search_serp.side_effect = WebFetchError("SERP API error 503")

        with pytest.raises(WebFetchError):
            await SerpAnalyzer(mock_fetcher, blob_store).analyze_query(query_id)
        with get_session() as session:
            assert session.scalars(select(SerpResult)).all() == []


# ===========================================================================
# 3. Reanalysis from stored SERPs
# ===========================================================================
class TestReanalyzeFromBlob:

    @pytest.mark.asyncio
    async def test_recomputes_without_fetching(self, make_website, make_query, mock_fetcher, blob_store):
        website_id = make_website("https://www.example.com")
        query_id = make_query(website_id, "crm")
        results = [r.to_dict() for r in _serp("a.com", "b.com", "c.com", "example.com")]
        blob_url = await blob_store.store_serp_data(website_id, "crm", results)
        with get_session() as session:
            session.add_all([
                SerpResult(search_query_id=query_id, query="crm", position=None, raw_data_blob_url=blob_url),
                SerpResult(search_query_id=query_id, query="crm", position=7, raw_data_blob_url=None),
            ])

        summary = await SerpAnalyzer(mock_fetcher, blob_store).reanalyze_from_blob(query_id)

        assert summary == {"updated": 1, "competitors_added": ["a.com", "b.com", "c.com"]}
        mock_fetcher.search_serp.assert_not_awaited()
        with get_session() as session:
            rows = list(session.scalars(select(SerpResult).order_by(SerpResult.id)))
        assert rows[0].position == 4
        assert rows[0].url == "https://example.com/page"
        assert rows[1].position == 7

    @pytest.mark.asyncio
    async def test_unreadable_blob_is_skipped(self, make_website, make_query, mock_fetcher, blob_store):
        website_id = make_website()
        query_id = make_query(website_id)
        missing = (blob_store.base_path / "webpresence" / "serp" / "gone.json").as_uri()
        with get_session() as session:
            session.add(SerpResult(search_query_id=query_id, query="crm", raw_data_blob_url=missing))

        summary = await SerpAnalyzer(mock_fetcher, blob_store).reanalyze_from_blob(query_id)

        assert summary == {"updated": 0, "competitors_added": []}


# ===========================================================================
# 4. Competitor analysis
# ===========================================================================
class TestAnalyzeCompetitor:

    @pytest.mark.asyncio
    async def test_partial_failures_tolerated(self, make_website, make_competitor, mock_fetcher, blob_store):
        website_id = make_website()
        competitor_id = make_competitor(website_id, "https://www.rival.com")
        mock_fetcher.search_serp.side_effect = [
            _serp("a.com", "rival.com"),
            WebFetchError("timeout"),
            _serp("a.com"),
        ]

        summary = await SerpAnalyzer(mock_fetcher, blob_store).analyze_competitor(
            competitor_id, ["crm", "erp", "saas"]
        )

        assert summary["positions"] == {"crm": 2, "saas": None}
        assert list(summary["errors"]) == ["erp"]
        with get_session() as session:
            rows = list(session.scalars(select(SerpResult).order_by(SerpResult.id)))
        assert [(r.competitor_id, r.search_query_id, r.query, r.position) for r in rows] == [
            (competitor_id, None, "crm", 2),
            (competitor_id, None, "saas", None),
        ]
        assert len(_competitors(website_id)) == 1

    @pytest.mark.asyncio
    async def test_all_failures_raise(self, make_website, make_competitor, mock_fetcher, blob_store):
        website_id = make_website()
        competitor_id = make_competitor(website_id)
        mock_fetcher.search_serp.side_effect = WebFetchError("down")

        with pytest.raises(RuntimeError, match="All 2 SERP queries failed"):
            await SerpAnalyzer(mock_fetcher, blob_store).analyze_competitor(competitor_id, ["crm", "erp"])

    @pytest.mark.asyncio
    async def test_missing_competitor(self, test_db, mock_fetcher, blob_store):
        with pytest.raises(NotFoundError):
            await SerpAnalyzer(mock_fetcher, blob_store).analyze_competitor(12, ["crm"])
