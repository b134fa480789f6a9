"""Ledger store protocol and an in-memory implementation.

The concrete document store is external; the package talks to it through
three calls: ``load`` (query by scope), ``get`` and ``apply_batch``. A batch
is all-or-nothing: an implementation either commits every operation of the
batch or raises and commits none of them.

``InMemoryStore`` backs dry runs over exported JSON snapshots and the tests;
``club_ledger.persistence.SqlLedgerStore`` is the SQLAlchemy implementation.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from .models import Scope, Transaction, transaction_from_dict, transaction_to_dict


@dataclass(frozen=True, slots=True)
class WriteOp:
    """A single write: ``put`` stores ``transaction`` as-is, ``delete`` removes the id."""

    kind: Literal["put", "delete"]
    transaction_id: str
    transaction: Transaction | None = None


class LedgerStore(Protocol):
    def load(self, scope: Scope | None = None) -> list[Transaction]: ...

    def get(self, transaction_id: str) -> Transaction | None: ...

    def apply_batch(self, ops: Sequence[WriteOp]) -> None: ...


def sort_key(tx: Transaction) -> tuple:
    return (tx.execution_date, tx.sequence_number, tx.id)


class InMemoryStore:
    """Dict-backed store; batches are applied to a copy and swapped in."""

    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._rows: dict[str, Transaction] = {tx.id: tx for tx in transactions}
        self.batches_applied = 0

    def load(self, scope: Scope | None = None) -> list[Transaction]:
        rows = self._rows.values()
        if scope is not None:
            rows = [tx for tx in rows if scope.contains(tx)]
        return sorted(rows, key=sort_key)

    def get(self, transaction_id: str) -> Transaction | None:
        return self._rows.get(transaction_id)

    def apply_batch(self, ops: Sequence[WriteOp]) -> None:
        staged = dict(self._rows)
        for op in ops:
            if op.kind == "put":
                if op.transaction is None:
                    raise ValueError(f"put without a transaction for {op.transaction_id}")
                staged[op.transaction_id] = op.transaction
            elif op.kind == "delete":
                # Deleting a missing id is a no-op so repairs can be re-run.
                staged.pop(op.transaction_id, None)
            else:
                raise ValueError(f"unknown write kind: {op.kind!r}")
        self._rows = staged
        self.batches_applied += 1

    def __len__(self) -> int:
        return len(self._rows)

    # ---- JSON snapshots -----------------------------------------------------

    @classmethod
    def from_json(cls, path: str | os.PathLike[str]) -> InMemoryStore:
        """Load a snapshot written by :meth:`to_json` (a JSON array of transactions)."""

        with Path(path).open(encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON array of transactions")
        return cls(transaction_from_dict(item) for item in data)

    def to_json(self, path: str | os.PathLike[str]) -> Path:
        """Write all rows to ``path`` atomically (``.tmp`` then ``os.replace``)."""

        target = Path(path)
        tmp = target.with_name(target.name + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            rows = [transaction_to_dict(tx) for tx in self.load()]
            json.dump(rows, f, indent=2, ensure_ascii=False)
        os.replace(tmp, target)
        return target


__all__ = ["InMemoryStore", "LedgerStore", "WriteOp", "sort_key"]
