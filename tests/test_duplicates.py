from decimal import Decimal

from club_ledger import InMemoryStore, find_duplicates, resolve_duplicates
from club_ledger.duplicates import plan_duplicate_deletions

from tests.helpers.ledger import make_tx


def _acme_pair():
    a = make_tx(
        "a",
        "42.50",
        sequence_number="2025-0002",
        counterparty_name="ACME Corp",
        dedup_fingerprint="",
    )
    b = make_tx(
        "b",
        "42.50",
        sequence_number="2025-0001",
        account_number="BE26 2100 1607 0629",
        counterparty_name="acme corp ",
        dedup_fingerprint="",
    )
    return a, b


def test_case_and_whitespace_variants_are_grouped():
    a, b = _acme_pair()
    groups = find_duplicates([a, b, make_tx("c", "42.50", counterparty_name="Other")])

    assert len(groups) == 1
    group = groups[0]
    assert {tx.id for tx in group.members} == {"a", "b"}
    # Smallest sequence number is kept.
    assert group.canonical.id == "b"
    assert [tx.id for tx in group.redundant] == ["a"]
    assert group.amount_impact == Decimal("-42.50")


def test_stored_fingerprints_group_only_on_same_account():
    same = [make_tx("x1", dedup_fingerprint="ref:1"), make_tx("x2", dedup_fingerprint="ref:1")]
    other = make_tx("x3", dedup_fingerprint="ref:1", account_number="BE00000000000000")
    groups = find_duplicates([*same, other])
    assert len(groups) == 1
    assert {tx.id for tx in groups[0].members} == {"x1", "x2"}


def test_split_parents_are_never_grouped():
    parent = make_tx("p", dedup_fingerprint="ref:9", is_parent=True, child_count=2)
    twin = make_tx("t", dedup_fingerprint="ref:9")
    assert find_duplicates([parent, twin]) == []


def test_canonical_tie_breaks_on_id():
    a = make_tx("b-id", sequence_number="S1", dedup_fingerprint="fp")
    b = make_tx("a-id", sequence_number="S1", dedup_fingerprint="fp")
    (group,) = find_duplicates([a, b])
    assert group.canonical.id == "a-id"


def test_dry_run_plans_without_writing():
    a, b = _acme_pair()
    store = InMemoryStore([a, b])
    outcome = resolve_duplicates(find_duplicates(store.load()), "dry_run", store=store)

    assert outcome.applied is None
    assert outcome.plan.affected_ids() == ["a"]
    assert outcome.plan.amount_impact == Decimal("-42.50")
    assert len(store) == 2
    assert store.batches_applied == 0


def test_execute_backs_up_then_deletes(tmp_path):
    a, b = _acme_pair()
    store = InMemoryStore([a, b])
    outcome = resolve_duplicates(
        find_duplicates(store.load()), "execute", store=store, backup_dir=tmp_path
    )

    assert [tx.id for tx in store.load()] == ["b"]
    assert outcome.applied is not None and outcome.applied.processed == 1
    assert outcome.backup is not None
    assert [row["id"] for row in outcome.backup["transactions"]] == ["a"]
    assert outcome.backup_path is not None and outcome.backup_path.exists()


def test_plan_reason_names_the_kept_transaction():
    a, b = _acme_pair()
    plan = plan_duplicate_deletions(find_duplicates([a, b]))
    assert plan.title == "Duplicate deletions"
    assert "2025-0001" in plan.changes[0].reason
