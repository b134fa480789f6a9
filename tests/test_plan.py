import json
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from club_ledger import InMemoryStore, PersistenceError, Plan, PlannedChange, run_plan
from club_ledger.store import WriteOp

from tests.helpers.ledger import make_tx


class FlakyStore(InMemoryStore):
    """Fails the ``fail_on``-th batch (0-based)."""

    def __init__(self, transactions, fail_on: int) -> None:
        super().__init__(transactions)
        self.fail_on = fail_on
        self.calls = 0

    def apply_batch(self, ops: list[WriteOp]) -> None:
        call = self.calls
        self.calls += 1
        if call == self.fail_on:
            raise RuntimeError("store unavailable")
        super().apply_batch(ops)


def _deletion_plan(n: int) -> tuple[list, Plan]:
    txs = [make_tx(f"t{i:02d}", "1.00") for i in range(n)]
    plan = Plan(title="Cleanup")
    for tx in txs:
        plan.delete(tx, "test")
    return txs, plan


def test_plan_keeps_one_change_per_transaction():
    tx = make_tx("a")
    plan = Plan(title="x")
    plan.delete(tx, "first")
    plan.update(tx, tx, "second")
    assert len(plan) == 1
    assert plan.changes[0].reason == "first"

    seeded = Plan(title="y", changes=list(plan.changes))
    assert seeded.extend([PlannedChange("delete", "a", tx, None, "again")]) == 0
    assert len(seeded) == 1


def test_render_summarizes_counts_and_impact():
    _, plan = _deletion_plan(2)
    header, *rows = plan.render()
    assert header == "Cleanup: 2 change(s) [create=0 update=0 delete=2] impact=-2.00"
    assert rows[0].strip().startswith("delete t00")


def test_parents_do_not_contribute_to_impact():
    plan = Plan(title="x")
    plan.delete(make_tx("p", "100.00", is_parent=True), "gone")
    assert plan.amount_impact == Decimal("0.00")


def test_dry_run_never_touches_the_store():
    txs, plan = _deletion_plan(3)
    store = InMemoryStore(txs)
    outcome = run_plan(plan, mode="dry_run", store=store)
    assert outcome.applied is None and outcome.backup is None
    assert len(store) == 3


def test_execute_applies_in_batches():
    txs, plan = _deletion_plan(5)
    store = InMemoryStore(txs)
    outcome = run_plan(plan, mode="execute", store=store, batch_size=2)
    assert outcome.applied is not None
    assert (outcome.applied.processed, outcome.applied.total) == (5, 5)
    assert outcome.applied.batch_count == 3
    assert store.batches_applied == 3
    assert len(store) == 0


def test_execute_without_backup_dir_still_writes_backup(tmp_path):
    txs, plan = _deletion_plan(2)
    outcome = run_plan(plan, mode="execute", store=InMemoryStore(txs))

    assert outcome.backup_path is not None
    assert outcome.backup_path.parent.resolve() == (tmp_path / "backups").resolve()
    saved = json.loads(outcome.backup_path.read_text(encoding="utf-8"))
    assert sorted(t["id"] for t in saved["transactions"]) == [tx.id for tx in txs]


def test_failed_batch_keeps_earlier_batches_committed():
    txs, plan = _deletion_plan(5)
    store = FlakyStore(txs, fail_on=1)
    with pytest.raises(PersistenceError) as excinfo:
        plan.apply(store, batch_size=2)

    err = excinfo.value
    assert (err.processed, err.total, err.batch_index) == (2, 5, 1)
    # First batch stands, nothing after the failure was attempted.
    assert [tx.id for tx in store.load()] == ["t02", "t03", "t04"]
    assert store.calls == 2


def test_backup_captures_before_states(tmp_path):
    txs, plan = _deletion_plan(2)
    plan.create(make_tx("new"), "added")
    now = datetime(2025, 5, 1, 12, 0, tzinfo=UTC)

    path = plan.write_backup(tmp_path / "backups", now=now)
    data = json.loads(path.read_text(encoding="utf-8"))

    assert path.name.startswith("cleanup-20250501T120000")
    assert data["schema_version"] == 1
    assert [row["id"] for row in data["transactions"]] == ["t00", "t01"]
    assert data["transactions"][0]["amount"] == "1.00"
    assert data["created_ids"] == ["new"]
    assert not list((tmp_path / "backups").glob("*.tmp"))


def test_execute_requires_store_and_positive_batch_size():
    _, plan = _deletion_plan(1)
    with pytest.raises(ValueError):
        run_plan(plan, mode="execute")
    with pytest.raises(ValueError):
        plan.batches(0)
