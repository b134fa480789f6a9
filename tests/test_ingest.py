import json
from decimal import Decimal

from club_ledger import import_records
from club_ledger.ingest import load_raw_records, transaction_id

from tests.helpers.ledger import make_tx


def _row(seq: str, **overrides) -> dict:
    row = {
        "sequence_number": seq,
        "account_number": "BE26 2100 1607 0629",
        "execution_date": "14/03/2025",
        "amount": "42,50",
        "counterparty_name": "ACME Corp",
        "communication": "Facture 12",
    }
    row.update(overrides)
    return row


def test_import_normalizes_and_fingerprints():
    result = import_records([_row("2025-0001")], fiscal_year_id="fy25")
    (tx,) = result.created
    assert tx.account_number == "BE26210016070629"
    assert tx.amount == Decimal("42.50")
    assert tx.fiscal_year_id == "fy25"
    assert tx.dedup_fingerprint
    assert tx.id == transaction_id(tx.account_number, tx.sequence_number, tx.dedup_fingerprint)


def test_import_skips_known_and_in_batch_duplicates():
    first = import_records([_row("2025-0001")]).created[0]
    rows = [
        _row("2025-0001", account_number="BE26210016070629", amount="42.50"),
        _row("2025-0002", counterparty_name="Other"),
        _row("2025-0003", counterparty_name="Other "),
    ]
    result = import_records(rows, existing=[first])
    assert [tx.sequence_number for tx in result.created] == ["2025-0002"]
    assert result.skipped_duplicates == ("2025-0001", "2025-0003")


def test_split_parents_still_block_reimport():
    first = import_records([_row("2025-0001")]).created[0]
    parent = make_tx(
        first.id, first.amount, is_parent=True, dedup_fingerprint=first.dedup_fingerprint
    )
    assert import_records([_row("2025-0001")], existing=[parent]).created == ()


def test_incomplete_sequences_are_imported_and_reported():
    result = import_records([_row("2025-", bank_reference="777")])
    assert len(result.created) == 1
    assert result.incomplete_sequences == ("2025-",)


def test_invalid_rows_are_rejected_not_fatal():
    rows = [_row("2025-0001", amount="abc"), {"amount": "1"}, _row("2025-0002")]
    result = import_records(rows)
    assert [r.position for r in result.rejected] == [0, 1]
    assert len(result.created) == 1
    assert result.to_plan().counts() == {"create": 1}
    assert "Rejected rows: 2" in result.render()


def test_load_raw_records_reads_array_and_jsonl(tmp_path):
    array = tmp_path / "rows.json"
    array.write_text(json.dumps([_row("1"), _row("2")]), encoding="utf-8")
    lines = tmp_path / "rows.jsonl"
    lines.write_text("\n".join(json.dumps(r) for r in [_row("1"), _row("2")]) + "\n")
    assert len(load_raw_records(array)) == 2
    assert [r["sequence_number"] for r in load_raw_records(lines)] == ["1", "2"]
