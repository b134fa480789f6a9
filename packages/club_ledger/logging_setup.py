"""Logging configuration for the ``club_ledger`` package.

Entrypoints (the CLI, a host job runner) call :func:`configure_logging` once.
Library modules only ever call ``get_logger("club_ledger.<module>")`` and must
not attach handlers of their own; until an entrypoint configures output the
package logger carries a ``NullHandler`` and stays silent.

Each reconciliation stage logs under its own child logger, and the default
format prints that name:

- ``club_ledger.duplicates``: fingerprint groups and planned deletions
- ``club_ledger.ventilation``: splits, orphan children, consistency warnings
- ``club_ledger.ingest``: imported, skipped and rejected statement rows
- ``club_ledger.matching``: inscription and expense-claim links, ambiguous ties
- ``club_ledger.plan``: backup files and batch progress (``x/y committed``)
- ``club_ledger.orchestrator``: run state changes and scan summaries

``-v`` on the CLI lowers the level to ``DEBUG``, which adds per-item detail
such as skipped duplicates in a plan and unmatched inscriptions.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "club_ledger"
_LEVEL_ENV = "CLUB_LEDGER_LOG_LEVEL"
_DEFAULT_FMT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = getattr(logging, name, None)
        if isinstance(numeric, int):
            return numeric
        return logging.INFO
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        return _parse_level(env_val)
    return logging.INFO


def level_for_verbosity(verbose: int) -> int:
    """Map a repeated ``-v`` count to a level (0 → INFO, 1+ → DEBUG)."""

    return logging.DEBUG if verbose > 0 else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach a single stream handler to the ``club_ledger`` logger.

    ``level`` falls back to ``CLUB_LEDGER_LOG_LEVEL`` and then ``INFO``.
    Subsequent calls are no-ops so nested entrypoints cannot double-log.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FMT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def reset_logging() -> None:
    """Drop handlers installed by :func:`configure_logging` (test helper)."""

    global _CONFIGURED
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True
    _CONFIGURED = False


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger, keeping the package silent until configured."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = [
    "configure_logging",
    "get_logger",
    "level_for_verbosity",
    "reset_logging",
]
