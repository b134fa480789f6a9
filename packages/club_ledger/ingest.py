"""Turn importer rows into ledger transactions.

Rows come from the external bank-statement importer as mappings (or already
validated :class:`~club_ledger.models.RawRecord` instances). Each row is
validated, normalized and fingerprinted; rows whose fingerprint is already in
the ledger, or earlier in the same batch, are skipped. Truncated sequence
numbers (``"2025-"``) are imported but reported so an operator can fix them
against the statement.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Any

import pydantic

from .logging_setup import get_logger
from .models import RawRecord, Transaction
from .normalizers import compute_fingerprint, is_incomplete_sequence, normalize
from .plan import Plan

logger = get_logger("club_ledger.ingest")


@dataclass(frozen=True, slots=True)
class RejectedRow:
    position: int
    reason: str


@dataclass(frozen=True, slots=True)
class ImportResult:
    created: tuple[Transaction, ...]
    skipped_duplicates: tuple[str, ...]
    incomplete_sequences: tuple[str, ...]
    rejected: tuple[RejectedRow, ...] = ()

    def render(self) -> list[str]:
        lines = [
            f"Created: {len(self.created)}",
            f"Skipped duplicates: {len(self.skipped_duplicates)}",
            f"Incomplete sequence numbers: {len(self.incomplete_sequences)}",
            f"Rejected rows: {len(self.rejected)}",
        ]
        lines.extend(f"  row {r.position}: {r.reason}" for r in self.rejected)
        return lines

    def to_plan(self) -> Plan:
        plan = Plan(title="Import")
        for tx in self.created:
            plan.create(tx, "imported from statement")
        return plan


def transaction_id(account_number: str, sequence_number: str, fingerprint: str) -> str:
    """Deterministic id so re-importing the same row yields the same id."""

    digest = hashlib.sha256(
        f"{account_number}|{sequence_number}|{fingerprint}".encode()
    ).hexdigest()
    return f"tx_{digest[:20]}"


def _coerce(row: RawRecord | Mapping[str, Any]) -> RawRecord:
    if isinstance(row, RawRecord):
        return row
    return RawRecord.model_validate(dict(row))


def import_records(
    records: Iterable[RawRecord | Mapping[str, Any]],
    existing: Iterable[Transaction] = (),
    *,
    fiscal_year_id: str | None = None,
) -> ImportResult:
    """Normalize ``records`` into new transactions, skipping known fingerprints.

    Invalid rows are collected in ``rejected`` (with their 0-based position)
    instead of aborting the batch.
    """

    # Split parents keep the statement line's fingerprint and still block re-imports.
    seen = {tx.dedup_fingerprint or compute_fingerprint(tx) for tx in existing}
    created: list[Transaction] = []
    skipped: list[str] = []
    incomplete: list[str] = []
    rejected: list[RejectedRow] = []

    for position, row in enumerate(records):
        try:
            record = normalize(_coerce(row))
        except (pydantic.ValidationError, ValueError) as exc:
            rejected.append(RejectedRow(position, str(exc).splitlines()[0]))
            continue

        fp = compute_fingerprint(record)
        if fp in seen:
            skipped.append(record.sequence_number)
            continue
        seen.add(fp)

        if is_incomplete_sequence(record.sequence_number):
            incomplete.append(record.sequence_number)

        created.append(
            Transaction(
                id=transaction_id(record.account_number, record.sequence_number, fp),
                sequence_number=record.sequence_number,
                account_number=record.account_number,
                execution_date=record.execution_date,
                value_date=record.value_date,
                amount=record.amount,
                counterparty_name=record.counterparty_name,
                communication=record.communication,
                dedup_fingerprint=fp,
                bank_reference=record.bank_reference,
                fiscal_year_id=fiscal_year_id,
            )
        )

    logger.info(
        "import: %d created, %d duplicate(s) skipped, %d incomplete sequence(s), %d rejected",
        len(created),
        len(skipped),
        len(incomplete),
        len(rejected),
    )
    return ImportResult(
        created=tuple(created),
        skipped_duplicates=tuple(skipped),
        incomplete_sequences=tuple(incomplete),
        rejected=tuple(rejected),
    )


def load_raw_records(path: str | PathLike[str]) -> list[dict[str, Any]]:
    """Read importer rows from a JSON array or a JSON-lines file."""

    p = Path(path)
    text = p.read_text(encoding="utf-8")
    stripped = text.lstrip()
    if stripped.startswith("["):
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError(f"{p}: expected a JSON array of rows")
        return [dict(item) for item in data]
    return [json.loads(line) for line in text.splitlines() if line.strip()]


__all__ = [
    "ImportResult",
    "RejectedRow",
    "import_records",
    "load_raw_records",
    "transaction_id",
]
