"""DB helpers for tests: bootstrap a temporary SQLite ledger database."""

from __future__ import annotations

from pathlib import Path

from db import Base
from db.client import get_engine
from db.models.ledger import LedgerTransaction
from sqlalchemy import inspect


def bootstrap_sqlite_db(db_file: Path) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    # Ensure parent exists before engine creation attempts any writes
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)

    Base.metadata.create_all(bind=engine)
    _assert_transactions_schema_in_sync(url)

    return url


def _assert_transactions_schema_in_sync(url: str) -> None:
    """Fail fast when the created table drifts from the ORM model."""

    engine = get_engine(database_url=url)
    insp = inspect(engine)
    db_cols = {c["name"] for c in insp.get_columns(LedgerTransaction.__tablename__)}
    orm_cols = {c.name for c in LedgerTransaction.__table__.columns}
    missing = orm_cols - db_cols
    assert not missing, f"cl_transactions is missing columns: {sorted(missing)}"