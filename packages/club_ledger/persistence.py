# ruff: noqa: I001
"""SQL-backed ledger store.

Transactions live in ``cl_transactions`` (see ``db.models.ledger``). Each
:meth:`SqlLedgerStore.apply_batch` call runs in its own ``session_scope``, so
a batch either commits completely or rolls back completely; earlier batches
are unaffected by a later failure.

Puts are upserts keyed by ``id`` (``INSERT .. ON CONFLICT DO UPDATE``) using
the PostgreSQL or SQLite dialect insert construct.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import LedgerTransaction
from .logging_setup import get_logger
from .models import (
    CENT,
    Scope,
    Transaction,
    entity_match_from_dict,
    entity_match_to_dict,
)
from .store import WriteOp

logger = get_logger("club_ledger.persistence")

_UPSERT_COLUMNS = (
    "sequence_number",
    "account_number",
    "execution_date",
    "value_date",
    "amount",
    "counterparty_name",
    "communication",
    "is_parent",
    "parent_transaction_id",
    "dedup_fingerprint",
    "matched_entities",
    "bank_reference",
    "category",
    "memo",
    "child_count",
    "child_index",
    "fiscal_year_id",
)


def to_row(tx: Transaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "sequence_number": tx.sequence_number,
        "account_number": tx.account_number,
        "execution_date": tx.execution_date,
        "value_date": tx.value_date,
        "amount": tx.amount,
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


def from_row(row: LedgerTransaction) -> Transaction:
    return Transaction(
        id=row.id,
        sequence_number=row.sequence_number,
        account_number=row.account_number,
        execution_date=row.execution_date,
        value_date=row.value_date,
        amount=Decimal(row.amount).quantize(CENT),
        counterparty_name=row.counterparty_name or "",
        communication=row.communication or "",
        is_parent=bool(row.is_parent),
        parent_transaction_id=row.parent_transaction_id,
        dedup_fingerprint=row.dedup_fingerprint,
        matched_entities=tuple(entity_match_from_dict(m) for m in row.matched_entities or ()),
        bank_reference=row.bank_reference,
        category=row.category,
        memo=row.memo,
        child_count=row.child_count or 0,
        child_index=row.child_index,
        fiscal_year_id=row.fiscal_year_id,
    )


def _upsert(session: Session, rows: list[dict[str, Any]]) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(LedgerTransaction).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite_insert(LedgerTransaction).values(rows)
    else:
        for row in rows:
            session.merge(LedgerTransaction(**row))
        return
    update_cols = {c: getattr(stmt.excluded, c) for c in _UPSERT_COLUMNS}
    update_cols["updated_at"] = func.current_timestamp()
    session.execute(stmt.on_conflict_do_update(index_elements=["id"], set_=update_cols))


class SqlLedgerStore:
    """:class:`~club_ledger.store.LedgerStore` over the shared ``db`` library."""

    def __init__(self, *, database_url: str | None = None) -> None:
        self.database_url = database_url

    def load(self, scope: Scope | None = None) -> list[Transaction]:
        stmt = select(LedgerTransaction)
        if scope is not None:
            if scope.start_date is not None:
                stmt = stmt.where(LedgerTransaction.execution_date >= scope.start_date)
            if scope.end_date is not None:
                stmt = stmt.where(LedgerTransaction.execution_date <= scope.end_date)
            if scope.fiscal_year_id is not None:
                stmt = stmt.where(LedgerTransaction.fiscal_year_id == scope.fiscal_year_id)
        stmt = stmt.order_by(
            LedgerTransaction.execution_date,
            LedgerTransaction.sequence_number,
            LedgerTransaction.id,
        )
        with session_scope(database_url=self.database_url) as session:
            rows = session.execute(stmt).scalars().all()
            return [from_row(r) for r in rows]

    def get(self, transaction_id: str) -> Transaction | None:
        with session_scope(database_url=self.database_url) as session:
            row = session.get(LedgerTransaction, transaction_id)
            return from_row(row) if row is not None else None

    def apply_batch(self, ops: Sequence[WriteOp]) -> None:
        puts: list[dict[str, Any]] = []
        deletes: list[str] = []
        for op in ops:
            if op.kind == "put":
                if op.transaction is None:
                    raise ValueError(f"put without a transaction for {op.transaction_id}")
                puts.append(to_row(op.transaction))
            elif op.kind == "delete":
                deletes.append(op.transaction_id)
            else:
                raise ValueError(f"unknown write kind: {op.kind!r}")

        with session_scope(database_url=self.database_url) as session:
            if puts:
                _upsert(session, puts)
            if deletes:
                session.execute(
                    delete(LedgerTransaction).where(LedgerTransaction.id.in_(deletes))
                )
        logger.debug("batch committed: %d put(s), %d delete(s)", len(puts), len(deletes))

    def put_all(self, transactions: Sequence[Transaction]) -> None:
        """Upsert ``transactions`` in a single transaction (imports, fixtures)."""

        if not transactions:
            return
        with session_scope(database_url=self.database_url) as session:
            _upsert(session, [to_row(tx) for tx in transactions])


__all__ = ["SqlLedgerStore", "from_row", "to_row"]
