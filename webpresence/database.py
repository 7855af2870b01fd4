"""SQLAlchemy engine, transactional sessions and schema creation."""

import os
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/webpresence.db"
_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
)


class Base(DeclarativeBase):
    """Declarative base shared by every ORM model."""


_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


def _apply_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    for pragma in _SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def _engine_options(database_url: str, echo: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        return options
    options["connect_args"] = {"check_same_thread": False}
    if database_url in _MEMORY_URLS:
        # one shared connection, otherwise each session sees an empty database
        options["poolclass"] = StaticPool
    else:
        Path(database_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    return options


def get_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """Return the process-wide engine, creating it on first call.

    ``database_url`` defaults to ``$DATABASE_URL`` and then to a SQLite file
    under ``data/``. Later calls ignore their arguments until
    :func:`reset_engine` is called.
    """
    global _engine
    if _engine is None:
        url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        _engine = create_engine(url, **_engine_options(url, echo))
        if url.startswith("sqlite"):
            event.listen(_engine, "connect", _apply_sqlite_pragmas)
        logger.info("Database engine created: %s", url)
    return _engine


def _session_factory() -> sessionmaker:
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionFactory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Transactional session: commit on clean exit, rollback and re-raise on error.

    Usage::

        with get_session() as session:
            session.add(website)
    """
    session = _session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(database_url: str | None = None, echo: bool = False) -> None:
    """Create every missing table."""
    engine = get_engine(database_url=database_url, echo=echo)
    import webpresence.models  # noqa: F401  (registers the models on Base.metadata)
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready.")


def reset_engine() -> None:
    """Dispose of the cached engine and session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None
