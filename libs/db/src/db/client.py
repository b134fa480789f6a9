"""Engine and session helpers for the ledger database.

Usage
-----
from db.client import session_scope

with session_scope() as s:
    s.execute(...)

``resolve_database_url`` picks the URL: explicit argument, then
``CLUB_LEDGER_DATABASE_URL``, then ``DATABASE_URL``. Engines are cached per
URL for the life of the process, so a test can point one store at a
temporary SQLite file while another targets the configured database.
``dispose_engines`` closes every pooled connection and clears the cache.
Set ``CLUB_LEDGER_SQL_ECHO=1`` to log emitted SQL.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_URL_ENV_VARS = ("CLUB_LEDGER_DATABASE_URL", "DATABASE_URL")

_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker[Session]] = {}


def resolve_database_url(database_url: str | None = None) -> str:
    if database_url:
        return database_url
    for name in _URL_ENV_VARS:
        value = os.getenv(name)
        if value:
            return value
    raise RuntimeError(
        "no database configured: pass database_url or set CLUB_LEDGER_DATABASE_URL"
    )


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the cached engine for the resolved URL, creating it on first use."""

    url = resolve_database_url(database_url)
    engine = _engines.get(url)
    if engine is None:
        echo = os.getenv("CLUB_LEDGER_SQL_ECHO", "").strip().lower() in {"1", "true", "yes"}
        engine = create_engine(url, pool_pre_ping=True, echo=echo)
        _engines[url] = engine
        _session_factories[url] = sessionmaker(bind=engine, expire_on_commit=False)
    return engine


def get_session(*, database_url: str | None = None) -> Session:
    url = resolve_database_url(database_url)
    get_engine(database_url=url)
    return _session_factories[url]()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engines() -> None:
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
    _session_factories.clear()


__all__ = [
    "dispose_engines",
    "get_engine",
    "get_session",
    "resolve_database_url",
    "session_scope",
]
