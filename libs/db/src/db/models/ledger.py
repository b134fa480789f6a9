from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: cl_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "cl_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    sequence_number: Mapped[str] = mapped_column(String, nullable=False)
    # Stored without whitespace; comparisons are whitespace-insensitive.
    account_number: Mapped[str] = mapped_column(String, nullable=False)
    execution_date: Mapped[date] = mapped_column(Date, nullable=False)
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    counterparty_name: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("''")
    )
    communication: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    is_parent: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    # Back-reference only. No foreign key: orphaned children must stay
    # representable so they can be detected and repaired.
    parent_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    dedup_fingerprint: Mapped[str] = mapped_column(String, nullable=False)
    matched_entities: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    bank_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    child_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    child_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fiscal_year_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint(
            "NOT (is_parent AND parent_transaction_id IS NOT NULL)",
            name="ck_cl_tx_role_exclusive",
        ),
        CheckConstraint("child_count >= 0", name="ck_cl_tx_child_count_nonneg"),
        Index("ix_cl_tx_parent", "parent_transaction_id"),
        Index("ix_cl_tx_account_fingerprint", "account_number", "dedup_fingerprint"),
        Index("ix_cl_tx_execution_date", "execution_date"),
        Index("ix_cl_tx_fiscal_year", "fiscal_year_id"),
    )


__all__ = ["Base", "LedgerTransaction"]
