"""Database engine and session management.

One engine per process, shared by the crawl driver, the enrichment queue and
the API. ``DATABASE_URL`` selects any SQLAlchemy backend; otherwise listings
live in a SQLite file (``CASA_SCOUT_DB_PATH`` or ``data/casa_scout.db``).
"""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from casa_scout.models.db_models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent.parent.parent / "data" / "casa_scout.db"

# Seconds a writer waits on a locked SQLite file before OperationalError
SQLITE_BUSY_TIMEOUT = 30

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def get_database_url(db_path: Path | None = None) -> str:
    """Resolve the database URL.

    Priority: ``DATABASE_URL``, then ``db_path``, then ``CASA_SCOUT_DB_PATH``,
    then the default SQLite file.
    """
    if url := os.environ.get("DATABASE_URL"):
        return url
    if db_path is None:
        env_path = os.environ.get("CASA_SCOUT_DB_PATH")
        db_path = Path(env_path) if env_path else DEFAULT_DB_PATH
    return f"sqlite:///{db_path}"


def _is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


def _ensure_sqlite_dir(url: str) -> None:
    database = make_url(url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def _engine_options(url: str, echo: bool) -> dict[str, Any]:
    if _is_sqlite(url):
        return {
            "echo": echo,
            "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
        }
    return {"echo": echo, "pool_size": 5, "pool_recycle": 3600, "pool_pre_ping": True}


def _enable_wal(engine: Engine) -> None:
    # WAL lets the API read while a run is writing; the mode persists in the file
    with engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.commit()


def get_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """Get the process-wide engine, creating it and the tables on first use.

    Args:
        db_path: SQLite file to use when ``DATABASE_URL`` is not set.
        echo: Whether to echo SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine

    if _engine is None:
        url = get_database_url(Path(db_path) if db_path else None)
        if _is_sqlite(url):
            _ensure_sqlite_dir(url)

        engine = create_engine(url, **_engine_options(url, echo))
        if _is_sqlite(url):
            _enable_wal(engine)

        Base.metadata.create_all(engine)
        logger.debug("Database engine ready: %s", engine.url.render_as_string(hide_password=True))
        _engine = engine

    return _engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Get the session factory bound to the process-wide engine."""
    global _SessionLocal

    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=engine or get_engine()
        )

    return _SessionLocal


@contextmanager
def get_session(engine: Engine | None = None) -> Generator[Session, None, None]:
    """Yield a session that is closed on exit; callers commit explicitly."""
    session = get_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


def init_db(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """Initialize the database, creating the listings table if needed."""
    return get_engine(db_path, echo)


def reset_engine() -> None:
    """Dispose the process-wide engine and session factory."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
