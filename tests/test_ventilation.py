from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from club_ledger import (
    ChildSpec,
    EntityMatch,
    InMemoryStore,
    ValidationError,
    build_children_index,
    create_split,
    delete_child,
    find_inconsistencies,
    find_orphans,
    plan_split,
    remove_split,
    repair_orphans,
    run_plan,
    validate_group_consistency,
)

from tests.helpers.ledger import make_tx


def _specs(*amounts: str) -> list[ChildSpec]:
    return [ChildSpec(Decimal(a), category=f"cat{i}") for i, a in enumerate(amounts, start=1)]


def _link(entity_id: str = "i1") -> EntityMatch:
    return EntityMatch(
        "inscription", entity_id, "Jean", 90, datetime(2025, 1, 1, tzinfo=UTC), "auto"
    )


def test_split_that_sums_exactly_succeeds():
    parent = make_tx("p", "100.00", communication="Cotisations")
    result = create_split(parent, _specs("60.00", "40.00"))

    assert result.parent.is_parent
    assert result.parent.child_count == 2
    assert [c.id for c in result.children] == ["p_child_1", "p_child_2"]
    first = result.children[0]
    assert first.parent_transaction_id == "p"
    assert first.sequence_number == "2025-p_child_1"
    assert first.communication == "Cotisations - Line 1/2"
    assert first.dedup_fingerprint == "fp-p_child_1"
    assert first.category == "cat1"
    assert first.account_number == parent.account_number
    assert first.execution_date == parent.execution_date
    # Input is left untouched.
    assert not parent.is_parent


def test_split_within_one_cent_is_accepted():
    result = create_split(make_tx("p", "100.00"), _specs("60.00", "39.99"))
    assert len(result.children) == 2


def test_split_off_by_two_cents_is_rejected():
    with pytest.raises(ValidationError, match="delta"):
        create_split(make_tx("p", "100.00"), _specs("60.00", "39.98"))


def test_split_rejects_empty_specs_and_children():
    with pytest.raises(ValidationError):
        create_split(make_tx("p", "100.00"), [])
    child = make_tx("c", "10.00", parent_transaction_id="p")
    with pytest.raises(ValidationError):
        create_split(child, _specs("10.00"))


def test_parent_and_child_roles_are_exclusive():
    with pytest.raises(ValidationError):
        make_tx("x", is_parent=True, parent_transaction_id="y")


def test_plan_split_applies_parent_and_children():
    parent = make_tx("p", "100.00")
    store = InMemoryStore([parent])
    plan = plan_split(parent, _specs("60.00", "40.00"))

    assert plan.counts() == {"update": 1, "create": 2}
    # Replacing the parent's amount by its lines leaves totals unchanged.
    assert plan.amount_impact == Decimal("0.00")

    run_plan(plan, mode="execute", store=store)
    assert store.get("p").is_parent
    assert build_children_index(store.load())["p"][1].amount == Decimal("40.00")


def test_resplit_updates_reused_children_and_deletes_stale_ones():
    parent = make_tx("p", "100.00")
    first = create_split(parent, _specs("50.00", "30.00", "20.00"))
    plan = plan_split(first.parent, _specs("70.00", "30.00"), existing_children=first.children)
    assert plan.counts() == {"update": 3, "delete": 1}
    assert plan.changes[-1].transaction_id == "p_child_3"


def test_children_index_orders_by_child_index():
    c2 = make_tx("c2", parent_transaction_id="p", child_index=2)
    c1 = make_tx("c1", parent_transaction_id="p", child_index=1)
    index = build_children_index([c2, make_tx("p", is_parent=True), c1])
    assert [c.id for c in index["p"]] == ["c1", "c2"]
    assert "c1" not in index


def test_remove_split_restores_parent():
    result = create_split(make_tx("p", "100.00"), _specs("60.00", "40.00"))
    plan = remove_split(result.parent, result.children)
    assert plan.counts() == {"delete": 2, "update": 1}
    restored = plan.changes[-1].after
    assert restored is not None
    assert not restored.is_parent
    assert restored.child_count == 0


def test_delete_child_keeps_split_with_two_remaining_lines():
    result = create_split(make_tx("p", "90.00"), _specs("30.00", "30.00", "30.00"))
    target, *_ = result.children
    plan = delete_child(target, result.children, result.parent)
    assert plan.counts() == {"delete": 1, "update": 1}
    assert plan.changes[1].after.child_count == 2


def test_delete_child_collapses_split_below_two_lines():
    result = create_split(make_tx("p", "100.00"), _specs("60.00", "40.00"))
    plan = delete_child(result.children[0], result.children, result.parent)
    assert plan.counts() == {"delete": 2, "update": 1}
    assert not plan.changes[-1].after.is_parent


def test_delete_child_refuses_linked_lines():
    result = create_split(make_tx("p", "100.00"), _specs("60.00", "40.00"))
    linked = replace(result.children[0], matched_entities=(_link(),))
    with pytest.raises(ValidationError, match="linked"):
        delete_child(linked, result.children, result.parent)


def test_orphan_with_missing_parent_is_reported_once():
    ghost_child = make_tx("o", "12.00", parent_transaction_id="ghost", child_index=1)
    txs = [make_tx("n"), ghost_child, ghost_child]
    orphans = find_orphans(txs)
    assert [tx.id for tx in orphans] == ["o"]


def test_reference_to_non_parent_counts_as_orphan():
    txs = [make_tx("p"), make_tx("c", parent_transaction_id="p")]
    assert [tx.id for tx in find_orphans(txs)] == ["c"]


def test_orphan_repair_delete_and_promote_are_idempotent():
    orphan = make_tx("o", "12.00", parent_transaction_id="ghost", child_index=1)

    store = InMemoryStore([orphan])
    repair_orphans(find_orphans(store.load()), "delete", "execute", store=store)
    assert len(store) == 0
    second = repair_orphans(find_orphans(store.load()), "delete", "execute", store=store)
    assert second.plan.is_empty

    store = InMemoryStore([orphan])
    repair_orphans(find_orphans(store.load()), "promote_to_normal", "execute", store=store)
    promoted = store.get("o")
    assert promoted.parent_transaction_id is None
    assert promoted.child_index is None
    again = repair_orphans([promoted], "promote_to_normal", "execute", store=store)
    assert again.plan.is_empty


def test_group_consistency_follows_amount_sum():
    result = create_split(make_tx("p", "100.00"), _specs("60.00", "40.00"))
    check = validate_group_consistency(result.parent, result.children)
    assert check.consistent
    assert check.count_matches
    assert check.amount_delta == Decimal("0.00")

    short = validate_group_consistency(result.parent, result.children[:1])
    assert not short.consistent
    assert short.amount_delta == Decimal("-40.00")
    assert not short.count_matches


def test_find_inconsistencies_reports_each_defect_kind():
    mismatch = make_tx("m", "100.00", is_parent=True, child_count=3)
    txs = [
        mismatch,
        make_tx("m1", "50.00", parent_transaction_id="m", child_index=1),
        make_tx("m2", "20.00", parent_transaction_id="m", child_index=2),
        make_tx("lonely", "5.00", is_parent=True, child_count=1),
        make_tx("o", "1.00", parent_transaction_id="ghost"),
    ]
    kinds = sorted((w.kind, w.transaction_id) for w in find_inconsistencies(txs))
    assert kinds == [
        ("amount_mismatch", "m"),
        ("child_count_mismatch", "m"),
        ("childless_parent", "lonely"),
        ("orphan_child", "o"),
    ]
