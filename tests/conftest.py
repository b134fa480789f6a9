"""Pytest configuration for test isolation.

Tests import ``club_ledger``, ``db`` and ``tests.helpers`` straight from the
workspace, so ``packages/``, ``libs/db/src`` and the repo root go on
``sys.path`` first.

Run configuration is read from ``CLUB_LEDGER_*`` environment variables and
the database engine is a process-wide singleton. Either would leak between
tests, so every test starts with those variables cleared, no engine bound
and package logging unconfigured.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_SRC_DIRS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
sys.path[:0] = [str(p) for p in _SRC_DIRS if str(p) not in sys.path]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Clear ``CLUB_LEDGER_*``/``DATABASE_URL`` and reset shared singletons.

    Runs from ``tmp_path`` so default-location backups stay out of the repo.
    """

    from club_ledger.logging_setup import reset_logging
    from db.client import dispose_engines

    for key in list(os.environ):
        if key.startswith("CLUB_LEDGER_") or key == "DATABASE_URL":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    dispose_engines()
    reset_logging()
    yield
    dispose_engines()
    reset_logging()
