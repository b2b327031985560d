"""
Database engine and sessions.

One sync engine serves the API, Celery workers, scripts and Alembic. The
batch pipeline writes from a single thread, so sync sessions are enough.
"""

from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import settings


def _is_sqlite(url: URL) -> bool:
    return url.drivername.startswith("sqlite")


def _is_memory(url: URL) -> bool:
    return _is_sqlite(url) and (url.database in (None, "", ":memory:"))


def make_engine(database_url: str):
    url = make_url(database_url)
    if not _is_sqlite(url):
        if url.drivername == "postgresql":
            url = url.set(drivername="postgresql+psycopg")
        return create_engine(url, pool_pre_ping=True)

    timeout_s = max(0.0, float(settings.sqlite_busy_timeout_ms) / 1000.0)
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": timeout_s},
        # In-memory databases only exist on one connection.
        poolclass=StaticPool if _is_memory(url) else NullPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        """WAL for concurrent readers, busy_timeout instead of immediate lock errors."""
        cursor = dbapi_connection.cursor()
        if not _is_memory(url):
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute(f"PRAGMA busy_timeout={int(settings.sqlite_busy_timeout_ms)};")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    return engine


raw_url: URL = make_url(settings.database_url)
sync_engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)


def init_db(engine=None):
    """
    Create tables for SQLite.

    Other databases are managed through Alembic migrations.
    """
    engine = engine or sync_engine
    if not _is_sqlite(engine.url):
        return
    from .models import Base
    Base.metadata.create_all(bind=engine)


def get_sync_db() -> Generator:
    """FastAPI dependency that yields a DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
