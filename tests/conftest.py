"""Shared pytest fixtures for the web presence tracker tests."""

import itertools
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure project root is on sys.path so 'webpresence' is importable.
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

_slugs = itertools.count(1)


@pytest.fixture(autouse=True)
def _reset_db_engine():
    """Autouse fixture: reset the global DB engine before and after every test.

    This prevents cross-test pollution when tests create their own in-memory
    databases.
    """
    from webpresence.database import reset_engine
    reset_engine()
    yield
    reset_engine()


@pytest.fixture()
def test_db():
    """Provide an in-memory SQLite database with all tables created.

    Yields a database URL string. The engine is automatically torn down
    after the test by the autouse ``_reset_db_engine`` fixture.
    """
    from webpresence.database import init_db, reset_engine
    reset_engine()
    db_url = "sqlite:///:memory:"
    init_db(database_url=db_url, echo=False)
    yield db_url


@pytest.fixture()
def blob_store(tmp_path):
    """File blob store rooted in the test's temporary directory."""
    from webpresence.integrations.blob_store import FileBlobStore
    return FileBlobStore(str(tmp_path / "blobs"))


@pytest.fixture()
def mock_fetcher():
    """Return a mock WebFetcher; tests set the canned responses they need."""
    fetcher = MagicMock()
    fetcher.scrape_page = AsyncMock(return_value="<html><head><title>Home</title></head><body></body></html>")
    fetcher.search_serp = AsyncMock(return_value=[])
    fetcher.fetch_sitemap = AsyncMock()
    fetcher.discover_sitemap = AsyncMock()
    fetcher.expand_listing = AsyncMock(return_value=[])
    fetcher.collect_sitemap_urls = AsyncMock(return_value=("single", []))
    return fetcher


@pytest.fixture()
def mock_llm_client():
    """Return a mock LLMClient that returns canned responses."""
    client = MagicMock()
    client.generate_text = AsyncMock(return_value="Mock LLM response text.")
    client.generate_json = AsyncMock(return_value={})
    client.identify_search_queries = AsyncMock(return_value={
        "searchQueries": [
            {"query": "logiciel crm", "competitionLevel": "HIGH", "confidence": 0.9, "tags": ["crm"]},
            {"query": "crm pme", "competitionLevel": "LOW", "confidence": 0.8},
        ],
        "summary": "Mock summary.",
        "recommendations": ["Add a pricing page."],
    })
    client.generate_periodic_recap = AsyncMock(return_value={
        "title": "Monthly recap",
        "content": "# Recap\n\nPositions are stable.",
        "highlights": ["Stable rankings"],
    })
    return client


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

@pytest.fixture()
def make_website(test_db):
    """Factory creating an organization plus one website.  Returns the website id."""
    from webpresence.database import get_session
    from webpresence.models import Organization, Website, WebsiteStatus

    def _make(url="https://www.example.com", status=WebsiteStatus.ACTIVE.value, **org_fields) -> int:
        with get_session() as session:
            slug = f"org-{next(_slugs)}"
            organization = Organization(name=slug.title(), slug=slug, **org_fields)
            session.add(organization)
            session.flush()
            website = Website(organization_id=organization.id, url=url, name=url, status=status)
            session.add(website)
            session.flush()
            return website.id

    return _make


@pytest.fixture()
def make_query(test_db):
    """Factory creating a search query.  Returns its id."""
    from webpresence.database import get_session
    from webpresence.models import SearchQuery

    def _make(website_id: int, query: str = "logiciel crm", is_active: bool = True) -> int:
        with get_session() as session:
            row = SearchQuery(website_id=website_id, query=query, is_active=is_active)
            session.add(row)
            session.flush()
            return row.id

    return _make


@pytest.fixture()
def make_competitor(test_db):
    """Factory creating a competitor.  Returns its id."""
    from webpresence.database import get_session
    from webpresence.models import Competitor

    def _make(website_id: int, url: str = "https://rival.com", name=None, is_active: bool = True) -> int:
        with get_session() as session:
            row = Competitor(website_id=website_id, url=url, name=name or url, is_active=is_active)
            session.add(row)
            session.flush()
            return row.id

    return _make
