"""Period balance computation.

A transaction contributes to the balance iff it is not a split parent and
its account number (whitespace-insensitive) equals the tracked account.
Children contribute, orphans included; the parent's aggregate amount is
replaced by its itemized children. When no tracked account is configured
only the parent rule applies.

Everything here is pure: inputs are never mutated and no I/O happens.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from .models import NormalizedRecord, RawRecord, Transaction
from .normalizers import normalize, normalize_account, parse_amount

ZERO = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class BalanceResult:
    opening_balance: Decimal
    revenue_total: Decimal
    expense_total: Decimal
    net_balance: Decimal
    final_balance: Decimal
    included_count: int
    excluded_parent_count: int
    excluded_other_account_count: int
    revenue_count: int = 0
    expense_count: int = 0
    included_child_count: int = 0

    def render(self) -> list[str]:
        return [
            f"Opening balance: {self.opening_balance:.2f}",
            f"Revenue: {self.revenue_total:.2f} ({self.revenue_count} transaction(s))",
            f"Expenses: {self.expense_total:.2f} ({self.expense_count} transaction(s))",
            f"Net: {self.net_balance:+.2f}",
            f"Final balance: {self.final_balance:.2f}",
            (
                f"Included {self.included_count} (of which {self.included_child_count} split "
                f"line(s)); excluded {self.excluded_parent_count} parent(s), "
                f"{self.excluded_other_account_count} on other accounts"
            ),
        ]


def compute_balance(
    transactions: Iterable[Transaction],
    tracked_account: str | None,
    opening_balance: Decimal | int | str = ZERO,
) -> BalanceResult:
    """Sum revenue and expenses of the contributing transactions.

    ``expense_total`` is reported as a positive magnitude, so
    ``net_balance = revenue_total - expense_total`` and
    ``final_balance = opening_balance + net_balance``.
    """

    opening = parse_amount(opening_balance)
    tracked = normalize_account(tracked_account) if tracked_account else None

    revenue = expense = ZERO
    included = revenue_count = expense_count = children = 0
    excluded_parents = excluded_other = 0

    for tx in transactions:
        if tx.is_parent:
            excluded_parents += 1
            continue
        if tracked is not None and normalize_account(tx.account_number) != tracked:
            excluded_other += 1
            continue
        included += 1
        if tx.is_child:
            children += 1
        if tx.amount > 0:
            revenue += tx.amount
            revenue_count += 1
        elif tx.amount < 0:
            expense += -tx.amount
            expense_count += 1

    net = revenue - expense
    return BalanceResult(
        opening_balance=opening,
        revenue_total=revenue,
        expense_total=expense,
        net_balance=net,
        final_balance=opening + net,
        included_count=included,
        excluded_parent_count=excluded_parents,
        excluded_other_account_count=excluded_other,
        revenue_count=revenue_count,
        expense_count=expense_count,
        included_child_count=children,
    )


# ---------------------------------------------------------------------------
# Statement comparison
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementComparison:
    """Ledger vs. bank statement, keyed by sequence number.

    Split children are folded back into their parent's statement line.
    """

    statement_count: int
    ledger_count: int
    missing_in_ledger: tuple[str, ...]
    missing_in_statement: tuple[str, ...]
    statement_net: Decimal
    ledger_net: Decimal

    @property
    def delta(self) -> Decimal:
        return self.ledger_net - self.statement_net

    @property
    def matches(self) -> bool:
        return not self.missing_in_ledger and not self.missing_in_statement and not self.delta


def compare_with_statement(
    statement: Iterable[RawRecord | NormalizedRecord],
    transactions: Iterable[Transaction],
    tracked_account: str | None,
) -> StatementComparison:
    tracked = normalize_account(tracked_account) if tracked_account else None
    lines = [normalize(r) if isinstance(r, RawRecord) else r for r in statement]
    lines = [r for r in lines if tracked is None or normalize_account(r.account_number) == tracked]
    txs = [
        t for t in transactions if tracked is None or normalize_account(t.account_number) == tracked
    ]

    statement_seqs = {r.sequence_number for r in lines}
    ledger_seqs = {t.sequence_number for t in txs if not t.is_child}

    return StatementComparison(
        statement_count=len(lines),
        ledger_count=len(ledger_seqs),
        missing_in_ledger=tuple(sorted(statement_seqs - ledger_seqs)),
        missing_in_statement=tuple(sorted(ledger_seqs - statement_seqs)),
        statement_net=sum((r.amount for r in lines), ZERO),
        ledger_net=compute_balance(txs, tracked_account).net_balance,
    )


__all__ = [
    "BalanceResult",
    "StatementComparison",
    "compare_with_statement",
    "compute_balance",
]
