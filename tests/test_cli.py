import json

import pytest
from club_ledger import InMemoryStore
from club_ledger.cli import app
from typer.testing import CliRunner

from tests.helpers.ledger import make_tx

runner = CliRunner()


@pytest.fixture
def snapshot(tmp_path, monkeypatch):
    # Keep any developer .env out of the run.
    monkeypatch.chdir(tmp_path)
    txs = [
        make_tx("keep", "42.50", account_number="A", sequence_number="S1", dedup_fingerprint="r1"),
        make_tx("dup", "42.50", account_number="A", sequence_number="S2", dedup_fingerprint="r1"),
        make_tx("big", "100.00", account_number="A", sequence_number="S3", communication="Stage"),
        make_tx("o", "5.00", account_number="A", sequence_number="S4", parent_transaction_id="gh"),
    ]
    return InMemoryStore(txs).to_json(tmp_path / "ledger.json")


def _ids(path) -> list[str]:
    return sorted(tx.id for tx in InMemoryStore.from_json(path).load())


def test_reconcile_dry_run_leaves_snapshot_untouched(snapshot):
    result = runner.invoke(app, ["reconcile", "--snapshot", str(snapshot)])
    assert result.exit_code == 0, result.output
    assert "Duplicate groups: 1" in result.output
    assert "Orphan children: 1" in result.output
    assert _ids(snapshot) == ["big", "dup", "keep", "o"]


def test_reconcile_execute_writes_snapshot_and_backup(snapshot, tmp_path):
    backups = tmp_path / "backups"
    result = runner.invoke(
        app,
        ["reconcile", "--snapshot", str(snapshot), "--execute", "--backup-dir", str(backups)],
    )
    assert result.exit_code == 0, result.output
    assert "Processed 2/2 change(s)" in result.output
    assert _ids(snapshot) == ["big", "keep"]
    assert len(list(backups.glob("reconciliation-*.json"))) == 1


def test_balance_command(snapshot):
    result = runner.invoke(
        app,
        ["balance", "--snapshot", str(snapshot), "--tracked-account", "A",
         "--opening-balance", "1000"],
    )
    assert result.exit_code == 0, result.output
    assert "Final balance: 1190.00" in result.output


def test_orphan_commands(snapshot):
    listed = runner.invoke(app, ["find-orphans", "--snapshot", str(snapshot)])
    assert listed.exit_code == 0
    assert "Orphan children: 1" in listed.output

    repaired = runner.invoke(
        app,
        ["repair-orphans", "--snapshot", str(snapshot), "--strategy", "promote_to_normal",
         "--execute"],
    )
    assert repaired.exit_code == 0, repaired.output
    promoted = InMemoryStore.from_json(snapshot).get("o")
    assert promoted.parent_transaction_id is None


def test_dedupe_command(snapshot):
    result = runner.invoke(app, ["dedupe", "--snapshot", str(snapshot), "--execute"])
    assert result.exit_code == 0, result.output
    assert "dup" not in _ids(snapshot)


def test_split_command(snapshot):
    bad = runner.invoke(
        app,
        ["split", "--snapshot", str(snapshot), "--transaction", "big",
         "--line", "60:stage", "--line", "39.98:repas", "--execute"],
    )
    assert bad.exit_code == 1
    assert "delta" in bad.output
    assert "big_child_1" not in _ids(snapshot)

    good = runner.invoke(
        app,
        ["split", "--snapshot", str(snapshot), "--transaction", "big",
         "--line", "60:stage", "--line", "40,00:repas:Repas du samedi", "--execute"],
    )
    assert good.exit_code == 0, good.output
    reloaded = InMemoryStore.from_json(snapshot)
    assert reloaded.get("big").is_parent
    assert reloaded.get("big_child_2").memo == "Repas du samedi"


def test_split_unknown_transaction(snapshot):
    result = runner.invoke(
        app, ["split", "--snapshot", str(snapshot), "--transaction", "nope", "--line", "1"]
    )
    assert result.exit_code == 1
    assert "transaction not found" in result.output


def test_import_command(snapshot, tmp_path):
    rows = tmp_path / "rows.json"
    rows.write_text(
        json.dumps(
            [
                {
                    "sequence_number": "S9",
                    "account_number": "A",
                    "execution_date": "01/04/2025",
                    "amount": "7,50",
                    "counterparty_name": "Nouveau",
                }
            ]
        ),
        encoding="utf-8",
    )
    args = ["import", "--snapshot", str(snapshot), "--rows", str(rows), "--execute"]
    first = runner.invoke(app, args)
    assert first.exit_code == 0, first.output
    assert "Created: 1" in first.output

    second = runner.invoke(app, args)
    assert "Skipped duplicates: 1" in second.output
    assert len(_ids(snapshot)) == 5


def test_auto_match_command(snapshot, tmp_path):
    inscriptions = tmp_path / "inscriptions.json"
    inscriptions.write_text(
        json.dumps([{"id": "i1", "member_name": "Jean Dupont", "price": "42.50"}]),
        encoding="utf-8",
    )
    result = runner.invoke(
        app,
        ["auto-match", "--snapshot", str(snapshot), "--inscriptions", str(inscriptions),
         "--execute"],
    )
    assert result.exit_code == 0, result.output
    assert "Matched 1 inscription(s)" in result.output
    linked = [tx for tx in InMemoryStore.from_json(snapshot).load() if tx.matched_entities]
    assert [tx.matched_entities[0].entity_id for tx in linked] == ["i1"]


def test_invalid_config_is_reported(snapshot, monkeypatch):
    monkeypatch.setenv("CLUB_LEDGER_BATCH_SIZE", "zero")
    result = runner.invoke(app, ["dedupe", "--snapshot", str(snapshot)])
    assert result.exit_code == 1
    assert "invalid configuration" in result.output


def test_missing_ledger_source_is_reported(snapshot):
    result = runner.invoke(app, ["balance"])
    assert result.exit_code == 1
    assert "no ledger source" in result.output
