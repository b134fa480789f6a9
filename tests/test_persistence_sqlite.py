from datetime import UTC, datetime
from decimal import Decimal

import pytest
from club_ledger import EntityMatch, ReconciliationConfig, Scope, run_reconciliation
from club_ledger.persistence import SqlLedgerStore
from club_ledger.store import WriteOp
from db.client import session_scope
from db.models.ledger import LedgerTransaction
from sqlalchemy.exc import IntegrityError

from tests.helpers.db import bootstrap_sqlite_db
from tests.helpers.ledger import make_tx


@pytest.fixture
def store(tmp_path) -> SqlLedgerStore:
    url = bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
    return SqlLedgerStore(database_url=url)


def test_put_and_load_round_trip(store):
    link = EntityMatch("inscription", "i1", "Jean", 90, datetime(2025, 1, 1, tzinfo=UTC), "auto")
    tx = make_tx("a", "-12.34", matched_entities=(link,), fiscal_year_id="fy25")
    store.put_all([tx, make_tx("b", fiscal_year_id="fy24")])

    loaded = store.get("a")
    assert loaded is not None
    assert loaded.amount == Decimal("-12.34")
    assert loaded.matched_entities[0].entity_id == "i1"
    assert [t.id for t in store.load(Scope(fiscal_year_id="fy25"))] == ["a"]
    assert store.get("missing") is None


def test_apply_batch_upserts_and_deletes(store):
    store.put_all([make_tx("a", "1.00"), make_tx("b", "2.00")])
    store.apply_batch(
        [WriteOp("put", "a", make_tx("a", "9.99")), WriteOp("delete", "b")]
    )
    assert [(t.id, t.amount) for t in store.load()] == [("a", Decimal("9.99"))]


def test_role_exclusivity_is_enforced_by_the_table(store):
    with pytest.raises(IntegrityError):
        with session_scope(database_url=store.database_url) as session:
            session.add(
                LedgerTransaction(
                    id="bad",
                    sequence_number="S",
                    account_number="A",
                    execution_date=datetime(2025, 1, 1).date(),
                    amount=Decimal("1.00"),
                    is_parent=True,
                    parent_transaction_id="x",
                    dedup_fingerprint="fp",
                    matched_entities=[],
                )
            )


def test_reconciliation_against_sqlite(store):
    store.put_all(
        [
            make_tx("keep", "42.50", sequence_number="S1", dedup_fingerprint="ref:1"),
            make_tx("dup", "42.50", sequence_number="S2", dedup_fingerprint="ref:1"),
        ]
    )
    report = run_reconciliation(store, ReconciliationConfig(), dry_run=False)
    assert report.processed == 1
    assert [t.id for t in store.load()] == ["keep"]
