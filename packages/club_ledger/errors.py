"""Exception types and non-fatal inconsistency records.

Only hard failures are exceptions. Ledger defects that an operator must
decide on (orphan children, split groups whose amounts or counts disagree)
are returned as :class:`InconsistencyWarning` records and surface in
reports; nothing here is raised for them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal


class LedgerError(Exception):
    """Base class for errors raised by ``club_ledger``."""


class ValidationError(LedgerError, ValueError):
    """A requested mutation is invalid and was not applied (no partial write)."""


class ConfigError(LedgerError):
    """Configuration is missing or invalid."""


class PersistenceError(LedgerError):
    """A write batch failed; later batches were not attempted.

    Batches before ``batch_index`` are committed and stay committed.
    ``processed`` counts the changes in those committed batches.
    """

    def __init__(self, message: str, *, processed: int, total: int, batch_index: int) -> None:
        super().__init__(message)
        self.processed = processed
        self.total = total
        self.batch_index = batch_index


type InconsistencyKind = Literal[
    "orphan_child",
    "amount_mismatch",
    "child_count_mismatch",
    "childless_parent",
    "duplicate",
    "multi_linked_entity",
]


@dataclass(frozen=True, slots=True)
class InconsistencyWarning:
    """A detected ledger defect, reported and left for an explicit repair call."""

    kind: InconsistencyKind
    transaction_id: str
    message: str
    amount: Decimal = Decimal("0.00")


__all__ = [
    "ConfigError",
    "InconsistencyKind",
    "InconsistencyWarning",
    "LedgerError",
    "PersistenceError",
    "ValidationError",
]
