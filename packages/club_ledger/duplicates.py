"""Duplicate detection and resolution for imported bank transactions.

Two transactions are duplicates when they sit on the same (whitespace-
normalized) account and share a dedup fingerprint. Within a duplicate group
the member with the lexicographically smallest ``sequence_number`` is kept
(ties fall back to ``id``); every other member is a deletion candidate.

Split parents are never grouped: they are excluded from balances already
and their fingerprint is shared with nothing else. Split children
carry derived fingerprints (``<parent>_child_<n>``) and so never collide
with statement lines.

Public surface:

- ``DuplicateGroup``: one fingerprint's members with the canonical pick.
- ``find_duplicates``: group a transaction list.
- ``plan_duplicate_deletions``: the deletions as a :class:`~club_ledger.plan.Plan`.
- ``resolve_duplicates``: plan, and in ``execute`` mode back up and apply.
"""

from __future__ import annotations

import os
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from .logging_setup import get_logger
from .models import Transaction
from .normalizers import compute_fingerprint, normalize_account
from .plan import DEFAULT_BATCH_SIZE, Mode, Plan, PlanOutcome, run_plan
from .store import LedgerStore

logger = get_logger("club_ledger.duplicates")


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    """Transactions sharing an account and fingerprint (size > 1)."""

    account_number: str
    fingerprint: str
    members: tuple[Transaction, ...]

    @property
    def canonical(self) -> Transaction:
        return min(self.members, key=lambda tx: (tx.sequence_number, tx.id))

    @property
    def redundant(self) -> tuple[Transaction, ...]:
        keep = self.canonical
        return tuple(tx for tx in self.members if tx.id != keep.id)

    @property
    def amount_impact(self) -> Decimal:
        """Balance change from deleting the redundant members."""

        return -sum((tx.amount for tx in self.redundant), Decimal("0.00"))


def _fingerprint_of(tx: Transaction) -> str:
    return tx.dedup_fingerprint or compute_fingerprint(tx)


def find_duplicates(transactions: Iterable[Transaction]) -> list[DuplicateGroup]:
    """Group same-account transactions sharing a fingerprint.

    Transactions without a stored fingerprint get one computed on the fly.
    Groups are returned ordered by their canonical member's sequence number.
    """

    buckets: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for tx in transactions:
        if tx.is_parent:
            continue
        buckets[(normalize_account(tx.account_number), _fingerprint_of(tx))].append(tx)

    groups = [
        DuplicateGroup(account_number=account, fingerprint=fp, members=tuple(members))
        for (account, fp), members in buckets.items()
        if len(members) > 1
    ]
    groups.sort(key=lambda g: (g.canonical.sequence_number, g.canonical.id))
    if groups:
        logger.info(
            "found %d duplicate group(s) covering %d redundant transaction(s)",
            len(groups),
            sum(len(g.redundant) for g in groups),
        )
    return groups


def plan_duplicate_deletions(groups: Sequence[DuplicateGroup]) -> Plan:
    plan = Plan(title="Duplicate deletions")
    for group in groups:
        keep = group.canonical
        for tx in group.redundant:
            plan.delete(tx, f"duplicate of {keep.sequence_number} ({keep.id})")
    return plan


def resolve_duplicates(
    groups: Sequence[DuplicateGroup],
    mode: Mode = "dry_run",
    *,
    store: LedgerStore | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    backup_dir: str | os.PathLike[str] | None = None,
) -> PlanOutcome:
    """Delete every non-canonical group member.

    ``dry_run`` only computes the plan and its amount impact. ``execute``
    snapshots the full pre-deletion state first, then deletes in batches.
    """

    plan = plan_duplicate_deletions(groups)
    logger.info(
        "duplicate resolution (%s): %d deletion(s), impact %+.2f",
        mode,
        len(plan),
        plan.amount_impact,
    )
    return run_plan(plan, mode=mode, store=store, batch_size=batch_size, backup_dir=backup_dir)


__all__ = [
    "DuplicateGroup",
    "find_duplicates",
    "plan_duplicate_deletions",
    "resolve_duplicates",
]
