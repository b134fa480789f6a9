"""Ventilation: split transactions into categorized children.

A split ("ventilation") turns one bank-statement line into a parent plus one
child per categorized sub-amount. The parent stays in the ledger for audit
purposes but no longer counts toward balances; its children do.

The parent/child relation is a back-reference on the child
(``parent_transaction_id``). Lookups go through an explicit index built once
per run with :func:`build_children_index`; nothing here queries a store.

Defects detected here are reported, never fixed implicitly:

- orphan children whose parent id does not resolve to a parent,
- parents whose children do not add up to the parent amount (±0.01),
- parents whose declared ``child_count`` disagrees with the index,
- parents without any child.

Repairs (:func:`repair_orphans`, :func:`remove_split`, :func:`delete_child`)
are expressed as plans and only touch the store in ``execute`` mode.
"""

from __future__ import annotations

import os
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Literal

from .errors import InconsistencyWarning, ValidationError
from .logging_setup import get_logger
from .models import CENT, ChildSpec, Transaction
from .normalizers import compute_fingerprint, parse_amount
from .plan import DEFAULT_BATCH_SIZE, Mode, Plan, PlanOutcome, run_plan
from .store import LedgerStore

logger = get_logger("club_ledger.ventilation")

AMOUNT_TOLERANCE = Decimal("0.01")

type OrphanStrategy = Literal["delete", "promote_to_normal"]

type ChildrenIndex = dict[str, list[Transaction]]


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


def build_children_index(transactions: Iterable[Transaction]) -> ChildrenIndex:
    """Map each referenced parent id to its children, ordered by ``child_index``.

    Every ``parent_transaction_id`` gets an entry, whether or not it resolves;
    use :func:`find_orphans` to tell the two apart.
    """

    index: ChildrenIndex = defaultdict(list)
    for tx in transactions:
        if tx.parent_transaction_id is not None:
            index[tx.parent_transaction_id].append(tx)
    for children in index.values():
        children.sort(
            key=lambda c: (c.child_index is None, c.child_index or 0, c.sequence_number, c.id)
        )
    return dict(index)


# ---------------------------------------------------------------------------
# Split creation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SplitResult:
    parent: Transaction
    children: tuple[Transaction, ...]


def _child_id(parent: Transaction, i: int) -> str:
    return f"{parent.id}_child_{i}"


def create_split(
    parent: Transaction,
    child_specs: Sequence[ChildSpec],
    *,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> SplitResult:
    """Split ``parent`` into one child per spec.

    Raises :class:`ValidationError` (and builds nothing) when there are no
    specs, when ``parent`` is itself a child, or when the spec amounts miss
    the parent amount by more than ``tolerance``.

    The returned parent is a copy with ``is_parent=True`` and
    ``child_count=len(child_specs)``. Children inherit the parent's account,
    dates, counterparty, bank reference and fiscal year.
    """

    if not child_specs:
        raise ValidationError(f"split of {parent.id} needs at least one child")
    if parent.is_child:
        raise ValidationError(
            f"{parent.id} is a child of {parent.parent_transaction_id} and cannot be split"
        )

    amounts = [parse_amount(spec.amount) for spec in child_specs]
    total = sum(amounts, Decimal("0.00"))
    delta = (total - parent.amount).quantize(CENT)
    if abs(delta) > tolerance:
        raise ValidationError(
            f"split of {parent.id}: children sum to {total:.2f}, "
            f"parent amount is {parent.amount:.2f} (delta {delta:+.2f})"
        )

    n = len(child_specs)
    parent_fp = parent.dedup_fingerprint or compute_fingerprint(parent)
    children = tuple(
        Transaction(
            id=_child_id(parent, i),
            sequence_number=f"{parent.sequence_number}_child_{i}",
            account_number=parent.account_number,
            execution_date=parent.execution_date,
            value_date=parent.value_date,
            amount=amount,
            counterparty_name=parent.counterparty_name,
            communication=f"{parent.communication} - Line {i}/{n}",
            parent_transaction_id=parent.id,
            dedup_fingerprint=f"{parent_fp}_child_{i}",
            bank_reference=parent.bank_reference,
            category=spec.category,
            memo=spec.memo,
            child_index=i,
            fiscal_year_id=parent.fiscal_year_id,
        )
        for i, (spec, amount) in enumerate(zip(child_specs, amounts, strict=True), start=1)
    )
    new_parent = replace(parent, is_parent=True, child_count=n, dedup_fingerprint=parent_fp)
    logger.info("split %s into %d children (delta %+.2f)", parent.id, n, delta)
    return SplitResult(parent=new_parent, children=children)


def plan_split(
    parent: Transaction,
    child_specs: Sequence[ChildSpec],
    *,
    existing_children: Sequence[Transaction] = (),
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> Plan:
    """Plan form of :func:`create_split`.

    ``existing_children`` (a re-split) are deleted unless a new child
    reuses their id, in which case they are updated in place.
    """

    result = create_split(parent, child_specs, tolerance=tolerance)
    plan = Plan(title=f"Split {parent.id}")
    plan.update(parent, result.parent, f"split into {len(result.children)} line(s)")
    previous = {c.id: c for c in existing_children}
    for child in result.children:
        before = previous.pop(child.id, None)
        if before is None:
            plan.create(child, f"line {child.child_index}/{len(result.children)}")
        else:
            plan.update(before, child, f"line {child.child_index}/{len(result.children)}")
    for stale in previous.values():
        plan.delete(stale, "replaced by new split")
    return plan


# ---------------------------------------------------------------------------
# Split removal
# ---------------------------------------------------------------------------


def _restore_parent(parent: Transaction) -> Transaction:
    return replace(parent, is_parent=False, child_count=0)


def remove_split(parent: Transaction, children: Sequence[Transaction]) -> Plan:
    """Delete ``children`` and turn ``parent`` back into a normal transaction."""

    plan = Plan(title=f"Remove split {parent.id}")
    for child in children:
        plan.delete(child, f"split of {parent.id} removed")
    if parent.is_parent or parent.child_count:
        plan.update(parent, _restore_parent(parent), "split removed")
    return plan


def delete_child(
    child: Transaction,
    siblings: Sequence[Transaction],
    parent: Transaction | None,
) -> Plan:
    """Delete one split line.

    Linked children (with matched entities) are refused. ``siblings`` are the
    parent's other children; when fewer than two would remain the split no
    longer makes sense and is collapsed: the remaining lines are deleted too
    and the parent becomes a normal transaction again.
    """

    if child.matched_entities:
        linked = ", ".join(f"{m.entity_type}:{m.entity_id}" for m in child.matched_entities)
        raise ValidationError(f"child {child.id} is linked ({linked}); unlink it first")

    remaining = [s for s in siblings if s.id != child.id]
    if parent is None:
        plan = Plan(title=f"Delete line {child.id}")
        plan.delete(child, "orphan line deleted")
        return plan

    if len(remaining) < 2:
        linked = [s for s in remaining if s.matched_entities]
        if linked:
            raise ValidationError(
                f"deleting {child.id} would collapse split {parent.id}, "
                f"but {linked[0].id} is linked"
            )
        plan = remove_split(parent, [child, *remaining])
        plan.title = f"Delete line {child.id}"
        return plan

    plan = Plan(title=f"Delete line {child.id}")
    plan.delete(child, f"line removed from split {parent.id}")
    plan.update(parent, replace(parent, child_count=len(remaining)), "child count updated")
    return plan


# ---------------------------------------------------------------------------
# Orphans
# ---------------------------------------------------------------------------


def find_orphans(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Children whose ``parent_transaction_id`` does not resolve to a parent.

    A reference to an existing transaction that is not flagged ``is_parent``
    counts as unresolved.
    """

    txs = list(transactions)
    parents = {tx.id for tx in txs if tx.is_parent}
    seen: set[str] = set()
    orphans: list[Transaction] = []
    for tx in txs:
        if tx.parent_transaction_id is None or tx.parent_transaction_id in parents:
            continue
        if tx.id in seen:
            continue
        seen.add(tx.id)
        orphans.append(tx)
    if orphans:
        logger.warning("found %d orphan child transaction(s)", len(orphans))
    return orphans


def plan_orphan_repair(orphans: Iterable[Transaction], strategy: OrphanStrategy) -> Plan:
    plan = Plan(title=f"Orphan repair ({strategy})")
    for tx in orphans:
        if tx.parent_transaction_id is None:
            # Already promoted on an earlier run.
            continue
        if strategy == "delete":
            plan.delete(tx, f"parent {tx.parent_transaction_id} missing")
        elif strategy == "promote_to_normal":
            promoted = replace(tx, parent_transaction_id=None, child_index=None)
            plan.update(tx, promoted, f"parent {tx.parent_transaction_id} missing; promoted")
        else:
            raise ValueError(f"unknown orphan strategy: {strategy!r}")
    return plan


def repair_orphans(
    orphans: Iterable[Transaction],
    strategy: OrphanStrategy = "delete",
    mode: Mode = "dry_run",
    *,
    store: LedgerStore | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    backup_dir: str | os.PathLike[str] | None = None,
) -> PlanOutcome:
    """Delete orphans or promote them to normal transactions.

    Both strategies are idempotent: promoted transactions are skipped and
    deleting an id that is already gone is a no-op in every store.
    """

    plan = plan_orphan_repair(orphans, strategy)
    return run_plan(plan, mode=mode, store=store, batch_size=batch_size, backup_dir=backup_dir)


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class GroupConsistency:
    parent_id: str
    consistent: bool
    declared_count: int
    actual_count: int
    amount_delta: Decimal

    @property
    def count_matches(self) -> bool:
        return self.declared_count == self.actual_count


def validate_group_consistency(
    parent: Transaction,
    children: Sequence[Transaction],
    *,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> GroupConsistency:
    """Compare a parent with its children; never modifies either.

    ``amount_delta`` is ``sum(children) - parent.amount``. The group is
    consistent when the delta is within ``tolerance``; a declared/actual
    count disagreement is reported through ``count_matches`` instead. A
    declared ``child_count`` of zero means "not recorded".
    """

    total = sum((c.amount for c in children), Decimal("0.00"))
    delta = (total - parent.amount).quantize(CENT)
    declared = parent.child_count or len(children)
    consistent = abs(delta) <= tolerance
    return GroupConsistency(
        parent_id=parent.id,
        consistent=consistent,
        declared_count=declared,
        actual_count=len(children),
        amount_delta=delta,
    )


def find_inconsistencies(
    transactions: Sequence[Transaction],
    *,
    index: Mapping[str, list[Transaction]] | None = None,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> list[InconsistencyWarning]:
    """Every ventilation defect in ``transactions`` as a warning list."""

    children_by_parent = index if index is not None else build_children_index(transactions)
    warnings: list[InconsistencyWarning] = []

    for tx in transactions:
        if not tx.is_parent:
            continue
        children = children_by_parent.get(tx.id, [])
        if not children:
            warnings.append(
                InconsistencyWarning(
                    "childless_parent",
                    tx.id,
                    f"parent {tx.sequence_number} has no children and is excluded from balances",
                    tx.amount,
                )
            )
            continue
        check = validate_group_consistency(tx, children, tolerance=tolerance)
        if abs(check.amount_delta) > tolerance:
            warnings.append(
                InconsistencyWarning(
                    "amount_mismatch",
                    tx.id,
                    f"children of {tx.sequence_number} sum to "
                    f"{tx.amount + check.amount_delta:.2f}, parent is {tx.amount:.2f}",
                    check.amount_delta,
                )
            )
        if not check.count_matches:
            warnings.append(
                InconsistencyWarning(
                    "child_count_mismatch",
                    tx.id,
                    f"parent {tx.sequence_number} declares {check.declared_count} "
                    f"children, found {check.actual_count}",
                )
            )

    for orphan in find_orphans(transactions):
        warnings.append(
            InconsistencyWarning(
                "orphan_child",
                orphan.id,
                f"{orphan.sequence_number} references missing parent "
                f"{orphan.parent_transaction_id}",
                orphan.amount,
            )
        )
    return warnings


__all__ = [
    "AMOUNT_TOLERANCE",
    "ChildrenIndex",
    "GroupConsistency",
    "OrphanStrategy",
    "SplitResult",
    "build_children_index",
    "create_split",
    "delete_child",
    "find_inconsistencies",
    "find_orphans",
    "plan_orphan_repair",
    "plan_split",
    "remove_split",
    "repair_orphans",
    "validate_group_consistency",
]
