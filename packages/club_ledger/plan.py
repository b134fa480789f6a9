"""Planned ledger mutations: render, back up, then apply in batches.

Every mutating operation in the package (duplicate deletion, orphan repair,
split creation/removal, entity links) first produces a :class:`Plan`. A plan
is inert: rendering it is the dry run. Applying it is a separate step that

1. snapshots every affected before-state (:meth:`Plan.backup`), and
2. writes the changes through a :class:`~club_ledger.store.LedgerStore` in
   sequential batches, each committed atomically by the store.

A failing batch stops the run. Earlier batches stay committed; the raised
:class:`~club_ledger.errors.PersistenceError` reports how far it got. The
backup is the manual recovery path.

Backup files are written to ``<dir>/<slug>-<timestamp>.json`` via a ``.tmp``
file and ``os.replace`` so a crash never leaves a half-written backup.
"""

from __future__ import annotations

import json
import os
import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal

from .errors import PersistenceError
from .logging_setup import get_logger
from .models import Transaction, transaction_to_dict
from .store import LedgerStore, WriteOp

logger = get_logger("club_ledger.plan")

BACKUP_SCHEMA_VERSION = 1
DEFAULT_BATCH_SIZE = 500
DEFAULT_BACKUP_DIR = Path("backups")

type Action = Literal["create", "update", "delete"]
type Mode = Literal["dry_run", "execute"]


def _contribution(tx: Transaction | None) -> Decimal:
    # Parents never count toward totals; their children do.
    if tx is None or tx.is_parent:
        return Decimal("0.00")
    return tx.amount


@dataclass(frozen=True, slots=True)
class PlannedChange:
    action: Action
    transaction_id: str
    before: Transaction | None
    after: Transaction | None
    reason: str

    @property
    def amount_impact(self) -> Decimal:
        """Change in the summed amount of contributing transactions."""

        return _contribution(self.after) - _contribution(self.before)

    def to_write_op(self) -> WriteOp:
        if self.action == "delete":
            return WriteOp("delete", self.transaction_id)
        return WriteOp("put", self.transaction_id, self.after)

    def describe(self) -> str:
        tx = self.after or self.before
        seq = tx.sequence_number if tx is not None else "?"
        return (
            f"{self.action:<6} {self.transaction_id} seq={seq} "
            f"impact={self.amount_impact:+.2f} ({self.reason})"
        )


@dataclass(slots=True)
class Plan:
    """An ordered list of intended changes, at most one per transaction id."""

    title: str
    changes: list[PlannedChange] = field(default_factory=list)
    _planned_ids: set[str] = field(default_factory=set, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._planned_ids.update(c.transaction_id for c in self.changes)

    def add(self, change: PlannedChange) -> bool:
        if change.transaction_id in self._planned_ids:
            logger.debug(
                "plan %r: %s already planned; skipping %s",
                self.title,
                change.transaction_id,
                change.action,
            )
            return False
        self.changes.append(change)
        self._planned_ids.add(change.transaction_id)
        return True

    def extend(self, other: Plan | Iterable[PlannedChange]) -> int:
        items = other.changes if isinstance(other, Plan) else other
        return sum(1 for c in items if self.add(c))

    def create(self, tx: Transaction, reason: str) -> None:
        self.add(PlannedChange("create", tx.id, None, tx, reason))

    def update(self, before: Transaction, after: Transaction, reason: str) -> None:
        self.add(PlannedChange("update", before.id, before, after, reason))

    def delete(self, tx: Transaction, reason: str) -> None:
        self.add(PlannedChange("delete", tx.id, tx, None, reason))

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def amount_impact(self) -> Decimal:
        return sum((c.amount_impact for c in self.changes), Decimal("0.00"))

    def counts(self) -> dict[str, int]:
        return dict(Counter(c.action for c in self.changes))

    def affected_ids(self) -> list[str]:
        return [c.transaction_id for c in self.changes]

    def render(self) -> list[str]:
        counts = self.counts()
        header = (
            f"{self.title}: {len(self.changes)} change(s) "
            f"[create={counts.get('create', 0)} update={counts.get('update', 0)} "
            f"delete={counts.get('delete', 0)}] impact={self.amount_impact:+.2f}"
        )
        return [header, *(f"  {c.describe()}" for c in self.changes)]

    def batches(self, batch_size: int) -> list[list[PlannedChange]]:
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        return [
            self.changes[i : i + batch_size] for i in range(0, len(self.changes), batch_size)
        ]

    # ---- backups ------------------------------------------------------------

    def backup(self, *, now: datetime | None = None) -> dict[str, Any]:
        """Snapshot of every before-state the plan touches.

        Created transactions have no before-state; they are listed by id so
        a manual rollback knows what to remove.
        """

        return {
            "schema_version": BACKUP_SCHEMA_VERSION,
            "title": self.title,
            "created_at": (now or datetime.now(UTC)).isoformat(),
            "transactions": [
                transaction_to_dict(c.before) for c in self.changes if c.before is not None
            ],
            "created_ids": [c.transaction_id for c in self.changes if c.action == "create"],
        }

    def write_backup(
        self, directory: str | os.PathLike[str], *, now: datetime | None = None
    ) -> Path:
        stamp = now or datetime.now(UTC)
        root = Path(directory)
        root.mkdir(parents=True, exist_ok=True)
        slug = re.sub(r"[^a-z0-9]+", "-", self.title.lower()).strip("-") or "plan"
        path = root / f"{slug}-{stamp.strftime('%Y%m%dT%H%M%S%fZ')}.json"
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(self.backup(now=stamp), f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
        logger.info("backup of %d before-state(s) written to %s", len(self.changes), path)
        return path

    # ---- application --------------------------------------------------------

    def apply(self, store: LedgerStore, *, batch_size: int = DEFAULT_BATCH_SIZE) -> ApplyResult:
        """Write the plan through ``store`` in sequential batches.

        Raises :class:`PersistenceError` on the first failing batch; the
        batches before it remain committed.
        """

        batches = self.batches(batch_size)
        total = len(self.changes)
        processed = 0
        for index, batch in enumerate(batches):
            try:
                store.apply_batch([c.to_write_op() for c in batch])
            except Exception as exc:
                logger.error(
                    "plan %r: batch %d/%d failed after %d/%d change(s): %s",
                    self.title,
                    index + 1,
                    len(batches),
                    processed,
                    total,
                    exc,
                )
                raise PersistenceError(
                    f"batch {index + 1}/{len(batches)} failed: {exc}",
                    processed=processed,
                    total=total,
                    batch_index=index,
                ) from exc
            processed += len(batch)
            logger.info(
                "plan %r: batch %d/%d committed (%d/%d)",
                self.title,
                index + 1,
                len(batches),
                processed,
                total,
            )
        return ApplyResult(processed=processed, total=total, batch_count=len(batches))


@dataclass(frozen=True, slots=True)
class ApplyResult:
    processed: int
    total: int
    batch_count: int


@dataclass(frozen=True, slots=True)
class PlanOutcome:
    """Result of a plan run in a given mode (nothing applied in ``dry_run``)."""

    plan: Plan
    mode: Mode
    applied: ApplyResult | None = None
    backup: dict[str, Any] | None = None
    backup_path: Path | None = None


def run_plan(
    plan: Plan,
    *,
    mode: Mode = "dry_run",
    store: LedgerStore | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    backup_dir: str | os.PathLike[str] = DEFAULT_BACKUP_DIR,
) -> PlanOutcome:
    """Render-only in ``dry_run``; back up then apply in ``execute``.

    The backup file is always written before the first batch, even for an
    empty plan, so every execute leaves a record of what it saw.
    """

    if mode == "dry_run":
        for line in plan.render():
            logger.info("%s", line)
        return PlanOutcome(plan=plan, mode=mode)
    if mode != "execute":
        raise ValueError(f"unknown mode: {mode!r}")
    if store is None:
        raise ValueError("execute mode requires a store")

    now = datetime.now(UTC)
    backup = plan.backup(now=now)
    backup_path = plan.write_backup(backup_dir, now=now)
    if plan.is_empty:
        return PlanOutcome(
            plan=plan,
            mode=mode,
            applied=ApplyResult(0, 0, 0),
            backup=backup,
            backup_path=backup_path,
        )
    applied = plan.apply(store, batch_size=batch_size)
    return PlanOutcome(
        plan=plan, mode=mode, applied=applied, backup=backup, backup_path=backup_path
    )


__all__ = [
    "Action",
    "ApplyResult",
    "BACKUP_SCHEMA_VERSION",
    "DEFAULT_BACKUP_DIR",
    "DEFAULT_BATCH_SIZE",
    "Mode",
    "Plan",
    "PlanOutcome",
    "PlannedChange",
    "run_plan",
]
