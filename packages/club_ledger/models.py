"""Ledger records and validated external inputs.

Two kinds of types live here:

- Frozen dataclasses (``Transaction``, ``EntityMatch``, ``ChildSpec``) for the
  in-process ledger. They are immutable; every mutation elsewhere in the
  package produces a new instance with :func:`dataclasses.replace` so a
  before-state is always available for backups and plan rendering.
- Pydantic models (``RawRecord``, ``FiscalPeriod``, ``Inscription``,
  ``ExpenseClaim``) for data arriving from outside the package: the
  bank-statement importer, settings storage and the operations/expenses
  subsystems. They validate and coerce; they carry no ledger logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .errors import ValidationError

type EntityType = Literal["inscription", "expense", "event", "member", "participant"]
type MatchedBy = Literal["manual", "auto"]

CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EntityMatch:
    """A candidate link between a transaction and an external entity."""

    entity_type: EntityType
    entity_id: str
    entity_name: str
    confidence: int
    matched_at: datetime
    matched_by: MatchedBy
    notes: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValidationError(f"confidence must be within [0,100], got {self.confidence}")
        if self.matched_by not in ("manual", "auto"):
            raise ValidationError(f"matched_by must be 'manual' or 'auto', got {self.matched_by!r}")


@dataclass(frozen=True, slots=True)
class Transaction:
    """A bank-statement line, a split parent, or one of its children.

    ``is_parent`` and ``parent_transaction_id`` are mutually exclusive and the
    constructor enforces it. ``parent_transaction_id`` is a back-reference by
    id only; whether it resolves is checked by the ventilation module.
    """

    id: str
    sequence_number: str
    account_number: str
    execution_date: date
    value_date: date | None
    amount: Decimal
    counterparty_name: str = ""
    communication: str = ""
    is_parent: bool = False
    parent_transaction_id: str | None = None
    dedup_fingerprint: str = ""
    matched_entities: tuple[EntityMatch, ...] = ()
    bank_reference: str | None = None
    category: str | None = None
    memo: str | None = None
    child_count: int = 0
    child_index: int | None = None
    fiscal_year_id: str | None = None

    def __post_init__(self) -> None:
        if self.is_parent and self.parent_transaction_id is not None:
            raise ValidationError(
                f"transaction {self.id} cannot be both a parent and a child "
                f"(parent_transaction_id={self.parent_transaction_id!r})"
            )

    @property
    def is_child(self) -> bool:
        return self.parent_transaction_id is not None

    def linked_to(self, entity_type: EntityType) -> bool:
        return any(m.entity_type == entity_type for m in self.matched_entities)


@dataclass(frozen=True, slots=True)
class ChildSpec:
    """One line of a requested split: signed amount plus categorization."""

    amount: Decimal
    category: str | None = None
    memo: str | None = None


# ---------------------------------------------------------------------------
# Serialization (backups, CLI JSON input/output, SQL JSON column)
# ---------------------------------------------------------------------------


def entity_match_to_dict(m: EntityMatch) -> dict[str, Any]:
    return {
        "entity_type": m.entity_type,
        "entity_id": m.entity_id,
        "entity_name": m.entity_name,
        "confidence": m.confidence,
        "matched_at": m.matched_at.isoformat(),
        "matched_by": m.matched_by,
        "notes": m.notes,
    }


def entity_match_from_dict(data: dict[str, Any]) -> EntityMatch:
    matched_at = data.get("matched_at")
    if isinstance(matched_at, str):
        matched_at = datetime.fromisoformat(matched_at)
    elif matched_at is None:
        matched_at = datetime.now(UTC)
    return EntityMatch(
        entity_type=data["entity_type"],
        entity_id=str(data["entity_id"]),
        entity_name=str(data.get("entity_name") or ""),
        confidence=int(data.get("confidence", 0)),
        matched_at=matched_at,
        matched_by=data.get("matched_by", "manual"),
        notes=data.get("notes"),
    )


def transaction_to_dict(tx: Transaction) -> dict[str, Any]:
    """Return a JSON-friendly dict (amount as a 2dp string, dates ISO)."""

    return {
        "id": tx.id,
        "sequence_number": tx.sequence_number,
        "account_number": tx.account_number,
        "execution_date": tx.execution_date.isoformat(),
        "value_date": tx.value_date.isoformat() if tx.value_date else None,
        "amount": f"{tx.amount:.2f}",
        "counterparty_name": tx.counterparty_name,
        "communication": tx.communication,
        "is_parent": tx.is_parent,
        "parent_transaction_id": tx.parent_transaction_id,
        "dedup_fingerprint": tx.dedup_fingerprint,
        "matched_entities": [entity_match_to_dict(m) for m in tx.matched_entities],
        "bank_reference": tx.bank_reference,
        "category": tx.category,
        "memo": tx.memo,
        "child_count": tx.child_count,
        "child_index": tx.child_index,
        "fiscal_year_id": tx.fiscal_year_id,
    }


def transaction_from_dict(data: dict[str, Any]) -> Transaction:
    value_date = data.get("value_date")
    return Transaction(
        id=str(data["id"]),
        sequence_number=str(data.get("sequence_number") or ""),
        account_number=str(data.get("account_number") or ""),
        execution_date=date.fromisoformat(str(data["execution_date"])[:10]),
        value_date=date.fromisoformat(str(value_date)[:10]) if value_date else None,
        amount=Decimal(str(data["amount"])).quantize(CENT),
        counterparty_name=str(data.get("counterparty_name") or ""),
        communication=str(data.get("communication") or ""),
        is_parent=bool(data.get("is_parent", False)),
        parent_transaction_id=data.get("parent_transaction_id") or None,
        dedup_fingerprint=str(data.get("dedup_fingerprint") or ""),
        matched_entities=tuple(
            entity_match_from_dict(m) for m in data.get("matched_entities") or ()
        ),
        bank_reference=data.get("bank_reference"),
        category=data.get("category"),
        memo=data.get("memo"),
        child_count=int(data.get("child_count") or 0),
        child_index=data.get("child_index"),
        fiscal_year_id=data.get("fiscal_year_id"),
    )


# ---------------------------------------------------------------------------
# External inputs
# ---------------------------------------------------------------------------


class RawRecord(BaseModel):
    """A row handed over by the bank-statement importer.

    Formatting is left as-is (account numbers with spaces, ``"1.234,56"``
    amounts, ``dd/mm/yyyy`` dates); :func:`club_ledger.normalizers.normalize`
    canonicalizes it.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    sequence_number: str
    account_number: str
    execution_date: date | datetime | str
    value_date: date | datetime | str | None = None
    amount: Decimal | int | float | str
    counterparty_name: str = ""
    communication: str = ""
    bank_reference: str | None = None

    @field_validator("counterparty_name", "communication", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class FiscalPeriod(BaseModel):
    """Fiscal-year settings read from external storage."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str | None = None
    opening_balance: Decimal
    start_date: date
    end_date: date
    tracked_account_number: str | None = None

    @model_validator(mode="after")
    def _ordered(self) -> FiscalPeriod:
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class Inscription(BaseModel):
    """An event registration awaiting payment."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    member_name: str
    price: Decimal
    paid: bool = False
    registered_on: date | None = None


class ExpenseClaim(BaseModel):
    """An approved expense claim awaiting reimbursement."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str
    amount: Decimal
    requester_name: str = ""
    description: str = ""
    approved_on: date | None = None


@dataclass(frozen=True, slots=True)
class Scope:
    """Optional restriction of a run to a date range and/or fiscal year."""

    start_date: date | None = None
    end_date: date | None = None
    fiscal_year_id: str | None = None

    def contains(self, tx: Transaction) -> bool:
        if self.start_date is not None and tx.execution_date < self.start_date:
            return False
        if self.end_date is not None and tx.execution_date > self.end_date:
            return False
        if self.fiscal_year_id is not None and tx.fiscal_year_id != self.fiscal_year_id:
            return False
        return True


@dataclass(frozen=True, slots=True)
class NormalizedRecord:
    """Canonical form of a :class:`RawRecord` (see ``normalizers.normalize``)."""

    sequence_number: str
    account_number: str
    execution_date: date
    value_date: date | None
    amount: Decimal
    counterparty_name: str
    communication: str
    bank_reference: str | None = None


__all__ = [
    "CENT",
    "ChildSpec",
    "EntityMatch",
    "EntityType",
    "ExpenseClaim",
    "FiscalPeriod",
    "Inscription",
    "MatchedBy",
    "NormalizedRecord",
    "RawRecord",
    "Scope",
    "Transaction",
    "entity_match_from_dict",
    "entity_match_to_dict",
    "transaction_from_dict",
    "transaction_to_dict",
]
