"""Reconciliation runs: scan the ledger, report, and optionally repair.

A run moves through these states::

    IDLE -> SCANNING -> REPORT_READY -> (dry run ends here)
                                     -> EXECUTING -> COMMITTED | FAILED

``scan`` loads the scoped transactions once, builds the children index, and
runs duplicate detection, orphan detection, split consistency checks and the
balance. The repairs it proposes (duplicate deletions, orphan repair with the
configured strategy) are collected in a single :class:`~club_ledger.plan.Plan`.

``execute`` always writes a backup of every before-state (to
``config.backup_dir``, ``./backups`` by default), then applies the plan in
batches of ``config.batch_size``. A failing batch stops the run; batches that
already committed stay committed and the report says how far the run got.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from .balance import BalanceResult, compute_balance
from .config import ReconciliationConfig
from .duplicates import DuplicateGroup, find_duplicates, plan_duplicate_deletions
from .errors import InconsistencyWarning, LedgerError, PersistenceError
from .logging_setup import get_logger
from .matching import find_multi_linked
from .models import Scope, Transaction
from .plan import ApplyResult, Plan
from .store import LedgerStore, sort_key
from .ventilation import (
    build_children_index,
    find_inconsistencies,
    find_orphans,
    plan_orphan_repair,
)

logger = get_logger("club_ledger.orchestrator")


class RunState(enum.StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    REPORT_READY = "report_ready"
    EXECUTING = "executing"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    state: RunState
    scope: Scope
    transaction_count: int
    balance: BalanceResult
    projected_balance: BalanceResult
    duplicate_groups: tuple[DuplicateGroup, ...]
    orphans: tuple[Transaction, ...]
    warnings: tuple[InconsistencyWarning, ...]
    plan: Plan
    applied: ApplyResult | None = None
    processed: int = 0
    total: int = 0
    failed_batch_index: int | None = None
    error: str | None = None
    backup: dict[str, Any] | None = None
    backup_path: Path | None = None

    @property
    def succeeded(self) -> bool:
        return self.state in (RunState.REPORT_READY, RunState.COMMITTED)

    @property
    def amount_impact(self) -> Decimal:
        return self.plan.amount_impact

    def render(self) -> list[str]:
        """Human-readable report for operator review."""

        lines = [f"Reconciliation report ({self.state})"]
        if self.scope.start_date or self.scope.end_date:
            start = self.scope.start_date or "..."
            end = self.scope.end_date or "..."
            lines.append(f"Period: {start} to {end}")
        if self.scope.fiscal_year_id:
            lines.append(f"Fiscal year: {self.scope.fiscal_year_id}")
        lines.append(f"Transactions scanned: {self.transaction_count}")
        lines.append("")
        lines.append("Balance")
        lines.extend(f"  {line}" for line in self.balance.render())
        if self.projected_balance != self.balance:
            lines.append(f"  After repairs: {self.projected_balance.final_balance:.2f}")
        lines.append("")

        lines.append(f"Duplicate groups: {len(self.duplicate_groups)}")
        for group in self.duplicate_groups:
            keep = group.canonical
            lines.append(
                f"  keep {keep.sequence_number} ({keep.id}); "
                f"remove {', '.join(tx.id for tx in group.redundant)} "
                f"impact {group.amount_impact:+.2f}"
            )
        lines.append(f"Orphan children: {len(self.orphans)}")
        for tx in self.orphans:
            lines.append(
                f"  {tx.id} seq={tx.sequence_number} amount={tx.amount:.2f} "
                f"parent={tx.parent_transaction_id}"
            )
        lines.append(f"Warnings: {len(self.warnings)}")
        lines.extend(f"  [{w.kind}] {w.transaction_id}: {w.message}" for w in self.warnings)
        lines.append("")

        lines.extend(self.plan.render())
        if self.state in (RunState.COMMITTED, RunState.FAILED):
            lines.append(f"Processed {self.processed}/{self.total} change(s)")
        if self.failed_batch_index is not None:
            lines.append(f"Failed at batch index {self.failed_batch_index}: {self.error}")
        if self.backup_path is not None:
            lines.append(f"Backup: {self.backup_path}")
        return lines


def _project(transactions: Iterable[Transaction], plan: Plan) -> list[Transaction]:
    """Ledger contents after ``plan`` would be applied."""

    rows = {tx.id: tx for tx in transactions}
    for change in plan.changes:
        if change.action == "delete":
            rows.pop(change.transaction_id, None)
        elif change.after is not None:
            rows[change.transaction_id] = change.after
    return sorted(rows.values(), key=sort_key)


def _duplicate_warnings(groups: Iterable[DuplicateGroup]) -> list[InconsistencyWarning]:
    return [
        InconsistencyWarning(
            "duplicate",
            tx.id,
            f"{tx.sequence_number} duplicates {group.canonical.sequence_number}",
            tx.amount,
        )
        for group in groups
        for tx in group.redundant
    ]


def _multi_link_warnings(transactions: Iterable[Transaction]) -> list[InconsistencyWarning]:
    warnings = []
    for (entity_type, entity_id), txs in find_multi_linked(transactions).items():
        ids = ", ".join(tx.id for tx in txs)
        for tx in txs:
            warnings.append(
                InconsistencyWarning(
                    "multi_linked_entity",
                    tx.id,
                    f"{entity_type} {entity_id} is linked to {len(txs)} transactions ({ids})",
                )
            )
    return warnings


class ReconciliationRun:
    """One scan/execute cycle against a store."""

    def __init__(self, store: LedgerStore, config: ReconciliationConfig) -> None:
        self.store = store
        self.config = config
        self.state = RunState.IDLE
        self.report: ReconciliationReport | None = None

    def scan(self, scope: Scope | None = None) -> ReconciliationReport:
        if self.state not in (RunState.IDLE, RunState.REPORT_READY):
            raise LedgerError(f"cannot scan from state {self.state}")
        self.state = RunState.SCANNING
        effective_scope = scope if scope is not None else self.config.scope()
        try:
            report = self._scan(effective_scope)
        except Exception:
            self.state = RunState.FAILED
            raise
        self.state = RunState.REPORT_READY
        self.report = report
        return report

    def _scan(self, scope: Scope) -> ReconciliationReport:
        cfg = self.config
        transactions = self.store.load(scope)
        logger.info("scanning %d transaction(s)", len(transactions))

        index = build_children_index(transactions)
        groups = find_duplicates(transactions)
        orphans = find_orphans(transactions)
        warnings = [
            *find_inconsistencies(transactions, index=index, tolerance=cfg.amount_tolerance),
            *_duplicate_warnings(groups),
            *_multi_link_warnings(transactions),
        ]

        plan = Plan(title="Reconciliation")
        plan.extend(plan_duplicate_deletions(groups))
        plan.extend(plan_orphan_repair(orphans, cfg.orphan_strategy))

        balance = compute_balance(transactions, cfg.tracked_account_number, cfg.opening_balance)
        projected = compute_balance(
            _project(transactions, plan), cfg.tracked_account_number, cfg.opening_balance
        )
        logger.info(
            "scan complete: %d duplicate group(s), %d orphan(s), %d warning(s), %d change(s)",
            len(groups),
            len(orphans),
            len(warnings),
            len(plan),
        )
        return ReconciliationReport(
            state=RunState.REPORT_READY,
            scope=scope,
            transaction_count=len(transactions),
            balance=balance,
            projected_balance=projected,
            duplicate_groups=tuple(groups),
            orphans=tuple(orphans),
            warnings=tuple(warnings),
            plan=plan,
            total=len(plan),
        )

    def execute(self) -> ReconciliationReport:
        """Back up, then apply the scanned plan. Returns the final report.

        Batch failures do not raise: the run ends in ``FAILED`` and the report
        carries processed/total and the failing batch index.
        """

        if self.state is not RunState.REPORT_READY or self.report is None:
            raise LedgerError(f"execute requires a ready report (state is {self.state})")
        report = self.report
        plan = report.plan
        self.state = RunState.EXECUTING

        now = datetime.now(UTC)
        backup = plan.backup(now=now)
        try:
            backup_path = plan.write_backup(self.config.backup_dir, now=now)
        except OSError as exc:
            self.state = RunState.FAILED
            self.report = replace(
                report, state=RunState.FAILED, error=f"backup failed: {exc}", backup=backup
            )
            logger.error("backup to %s failed; nothing applied: %s", self.config.backup_dir, exc)
            return self.report

        try:
            applied = plan.apply(self.store, batch_size=self.config.batch_size)
        except PersistenceError as exc:
            self.state = RunState.FAILED
            self.report = replace(
                report,
                state=RunState.FAILED,
                processed=exc.processed,
                total=exc.total,
                failed_batch_index=exc.batch_index,
                error=str(exc),
                backup=backup,
                backup_path=backup_path,
            )
            logger.error(
                "run failed at batch index %d (%d/%d processed)",
                exc.batch_index,
                exc.processed,
                exc.total,
            )
            return self.report

        self.state = RunState.COMMITTED
        self.report = replace(
            report,
            state=RunState.COMMITTED,
            applied=applied,
            processed=applied.processed,
            total=applied.total,
            backup=backup,
            backup_path=backup_path,
        )
        logger.info("run committed: %d/%d change(s)", applied.processed, applied.total)
        return self.report


def run_reconciliation(
    store: LedgerStore,
    config: ReconciliationConfig,
    *,
    dry_run: bool = True,
    scope: Scope | None = None,
) -> ReconciliationReport:
    """Scan, and unless ``dry_run``, execute the proposed repairs."""

    run = ReconciliationRun(store, config)
    report = run.scan(scope)
    if dry_run:
        return report
    return run.execute()


__all__ = [
    "ReconciliationReport",
    "ReconciliationRun",
    "RunState",
    "run_reconciliation",
]
