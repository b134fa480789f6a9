# ruff: noqa: I001
"""CLI for the ``club_ledger`` package.

Every command works against either the shared database (``--database-url`` or
``CLUB_LEDGER_DATABASE_URL``) or a JSON ledger snapshot (``--snapshot``).
Mutating commands default to a dry run that prints the plan; ``--execute``
writes a backup of every before-state (to ``--backup-dir``, ``./backups``
by default) and then applies the plan in batches.

Environment variables are loaded from a local ``.env`` using
``python-dotenv`` before the run configuration is read. Exit status is 0 on
success and 1 on failure; itemized outcomes are printed to stdout.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .config import ReconciliationConfig
from .errors import ConfigError, LedgerError, PersistenceError
from .logging_setup import configure_logging, get_logger, level_for_verbosity
from .models import ChildSpec, Scope
from .normalizers import parse_amount, to_date
from .plan import Plan, run_plan
from .store import InMemoryStore, LedgerStore

logger = get_logger("club_ledger.cli")


# ---- Small module-level helpers used by CLI commands -------------------------


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _open_store(snapshot: Path | None, database_url: str | None) -> LedgerStore:
    if snapshot is not None:
        return InMemoryStore.from_json(snapshot)
    if not (database_url or os.getenv("CLUB_LEDGER_DATABASE_URL") or os.getenv("DATABASE_URL")):
        raise ConfigError("no ledger source: pass --snapshot or set CLUB_LEDGER_DATABASE_URL")
    # Deferred so snapshot-only use does not need a database driver configured.
    from .persistence import SqlLedgerStore

    return SqlLedgerStore(database_url=database_url)


def _save_snapshot(store: LedgerStore, snapshot: Path | None, execute: bool) -> None:
    if execute and snapshot is not None and isinstance(store, InMemoryStore):
        store.to_json(snapshot)


def _scope(start: str | None, end: str | None, fiscal_year: str | None) -> Scope | None:
    if start is None and end is None and fiscal_year is None:
        return None
    return Scope(
        start_date=to_date(start) if start else None,
        end_date=to_date(end) if end else None,
        fiscal_year_id=fiscal_year,
    )


def _config(**overrides: Any) -> ReconciliationConfig:
    return ReconciliationConfig.from_env(**overrides)


def _parse_line(spec: str) -> ChildSpec:
    """Parse ``AMOUNT[:CATEGORY[:MEMO]]`` into a child spec."""

    amount, _, rest = spec.partition(":")
    category, _, memo = rest.partition(":")
    return ChildSpec(amount=parse_amount(amount), category=category or None, memo=memo or None)


def _load_json_list(path: Path) -> list[dict[str, Any]]:
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array")
    return data


def _apply(
    plan: Plan,
    *,
    execute: bool,
    store: LedgerStore,
    cfg: ReconciliationConfig,
    snapshot: Path | None,
) -> int:
    """Print ``plan`` and, when ``execute``, back it up and apply it."""

    for line in plan.render():
        print(line)
    try:
        outcome = run_plan(
            plan,
            mode="execute" if execute else "dry_run",
            store=store,
            batch_size=cfg.batch_size,
            backup_dir=cfg.backup_dir,
        )
    except PersistenceError as e:
        _save_snapshot(store, snapshot, execute)
        return _error(
            f"{e} (processed {e.processed}/{e.total}, failed batch index {e.batch_index})"
        )
    _save_snapshot(store, snapshot, execute)

    if outcome.applied is not None:
        print(
            f"Applied {outcome.applied.processed}/{outcome.applied.total} change(s) "
            f"in {outcome.applied.batch_count} batch(es)"
        )
    else:
        print("Dry run: nothing written. Re-run with --execute to apply.")
    if outcome.backup_path is not None:
        print(f"Backup: {outcome.backup_path}")
    return 0


# ---- Command handlers ---------------------------------------------------------


def cmd_reconcile(
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    """Scan the ledger, print the report and optionally execute the repairs."""

    from .orchestrator import run_reconciliation

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        report = run_reconciliation(store, cfg, dry_run=not execute, scope=scope)
    except (ConfigError, LedgerError, OSError, ValueError) as e:
        return _error(str(e))

    for line in report.render():
        print(line)
    _save_snapshot(store, snapshot, execute)
    return 0 if report.succeeded else 1


def cmd_balance(
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .balance import compute_balance

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        transactions = store.load(scope if scope is not None else cfg.scope())
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))

    result = compute_balance(transactions, cfg.tracked_account_number, cfg.opening_balance)
    for line in result.render():
        print(line)
    return 0


def cmd_find_orphans(
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    scope: Scope | None = None,
) -> int:
    from .ventilation import find_orphans

    try:
        store = _open_store(snapshot, database_url)
        orphans = find_orphans(store.load(scope))
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))

    print(f"Orphan children: {len(orphans)}")
    for tx in orphans:
        print(
            f"{tx.id}\t{tx.sequence_number}\t{tx.amount:.2f}\t"
            f"missing parent {tx.parent_transaction_id}"
        )
    return 0


def cmd_repair_orphans(
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .ventilation import find_orphans, plan_orphan_repair

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        plan = plan_orphan_repair(find_orphans(store.load(scope)), cfg.orphan_strategy)
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))
    return _apply(plan, execute=execute, store=store, cfg=cfg, snapshot=snapshot)


def cmd_dedupe(
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .duplicates import find_duplicates, plan_duplicate_deletions

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        plan = plan_duplicate_deletions(find_duplicates(store.load(scope)))
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))
    return _apply(plan, execute=execute, store=store, cfg=cfg, snapshot=snapshot)


def cmd_import(
    rows_path: Path,
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .ingest import import_records, load_raw_records

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        rows = load_raw_records(rows_path)
        result = import_records(rows, store.load(), fiscal_year_id=cfg.fiscal_year_id)
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))

    for line in result.render():
        print(line)
    for seq in result.incomplete_sequences:
        print(f"Warning: incomplete sequence number {seq!r}", file=sys.stderr)
    return _apply(result.to_plan(), execute=execute, store=store, cfg=cfg, snapshot=snapshot)


def cmd_auto_match(
    inscriptions_path: Path,
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .matching import auto_match, plan_entity_links
    from .models import Inscription

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        inscriptions = [Inscription.model_validate(i) for i in _load_json_list(inscriptions_path)]
        transactions = store.load(scope)
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))

    result = auto_match(inscriptions, transactions, threshold=cfg.match_threshold)
    print(
        f"Matched {result.matched_count} inscription(s), {result.unmatched_count} unmatched "
        f"({result.matched_amount:.2f} of {result.total_amount:.2f})"
    )
    plan = plan_entity_links(result.matched, transactions)
    return _apply(plan, execute=execute, store=store, cfg=cfg, snapshot=snapshot)


def cmd_match_expenses(
    claims_path: Path,
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .matching import match_expense_claims, plan_entity_links
    from .models import ExpenseClaim

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        claims = [ExpenseClaim.model_validate(c) for c in _load_json_list(claims_path)]
        transactions = store.load(scope)
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))

    links = match_expense_claims(claims, transactions, amount_tolerance=cfg.amount_tolerance)
    print(f"Matched {len(links)} of {len(claims)} expense claim(s)")
    plan = plan_entity_links(links, transactions)
    return _apply(plan, execute=execute, store=store, cfg=cfg, snapshot=snapshot)


def cmd_split(
    transaction_id: str,
    lines: list[str],
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    execute: bool = False,
    overrides: dict[str, Any] | None = None,
) -> int:
    from .ventilation import build_children_index, plan_split

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        parent = store.get(transaction_id)
        if parent is None:
            return _error(f"transaction not found: {transaction_id}")
        existing = build_children_index(store.load()).get(parent.id, [])
        plan = plan_split(
            parent,
            [_parse_line(spec) for spec in lines],
            existing_children=existing,
            tolerance=cfg.amount_tolerance,
        )
    except (ConfigError, LedgerError, OSError, ValueError) as e:
        return _error(str(e))
    return _apply(plan, execute=execute, store=store, cfg=cfg, snapshot=snapshot)


def cmd_compare_statement(
    rows_path: Path,
    *,
    snapshot: Path | None = None,
    database_url: str | None = None,
    scope: Scope | None = None,
    overrides: dict[str, Any] | None = None,
) -> int:
    """Compare the ledger with a bank statement; exit 1 when they disagree."""

    from .balance import compare_with_statement
    from .ingest import load_raw_records
    from .models import RawRecord

    try:
        cfg = _config(**(overrides or {}))
        store = _open_store(snapshot, database_url)
        statement = [RawRecord.model_validate(r) for r in load_raw_records(rows_path)]
        result = compare_with_statement(statement, store.load(scope), cfg.tracked_account_number)
    except (ConfigError, OSError, ValueError) as e:
        return _error(str(e))

    print(f"Statement lines: {result.statement_count}; ledger lines: {result.ledger_count}")
    print(f"Missing in ledger: {', '.join(result.missing_in_ledger) or '-'}")
    print(f"Missing in statement: {', '.join(result.missing_in_statement) or '-'}")
    print(
        f"Statement net {result.statement_net:+.2f}; ledger net {result.ledger_net:+.2f}; "
        f"delta {result.delta:+.2f}"
    )
    return 0 if result.matches else 1


# ---- Typer app ----------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Reconcile a club ledger: duplicates, split transactions, balances and entity "
        "matching. Loads CLUB_LEDGER_* settings from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer inspects these when used as default values below.
SNAPSHOT_OPTION: OptionInfo = typer.Option(
    None,
    "--snapshot",
    help="JSON ledger snapshot to use instead of the database.",
    dir_okay=False,
    file_okay=True,
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override CLUB_LEDGER_DATABASE_URL (falls back to env var)."
)
EXECUTE_OPTION: OptionInfo = typer.Option(
    False, "--execute/--dry-run", help="Apply the changes (default is a dry run)."
)
START_OPTION: OptionInfo = typer.Option(None, "--start", help="First execution date (inclusive).")
END_OPTION: OptionInfo = typer.Option(None, "--end", help="Last execution date (inclusive).")
FISCAL_YEAR_OPTION: OptionInfo = typer.Option(
    None, "--fiscal-year", help="Restrict to one fiscal-year id."
)
TRACKED_ACCOUNT_OPTION: OptionInfo = typer.Option(
    None, "--tracked-account", help="Account whose transactions count toward the balance."
)
OPENING_BALANCE_OPTION: OptionInfo = typer.Option(
    None, "--opening-balance", help="Opening balance of the period (e.g. 1000,00)."
)
BATCH_SIZE_OPTION: OptionInfo = typer.Option(
    None, "--batch-size", help="Changes per write batch (default 500)."
)
BACKUP_DIR_OPTION: OptionInfo = typer.Option(
    None, "--backup-dir", help="Directory for before-state backups.", file_okay=False
)
STRATEGY_OPTION: OptionInfo = typer.Option(
    None, "--strategy", help="Orphan repair strategy: delete or promote_to_normal."
)
ROWS_OPTION: OptionInfo = typer.Option(
    ..., "--rows", help="Importer rows as a JSON array or JSON lines.", dir_okay=False
)
INSCRIPTIONS_OPTION: OptionInfo = typer.Option(
    ..., "--inscriptions", help="Unpaid inscriptions as a JSON array.", dir_okay=False
)
CLAIMS_OPTION: OptionInfo = typer.Option(
    ..., "--claims", help="Approved expense claims as a JSON array.", dir_okay=False
)
TRANSACTION_OPTION: OptionInfo = typer.Option(
    ..., "--transaction", help="Id of the transaction to split."
)
LINE_OPTION: OptionInfo = typer.Option(
    ..., "--line", help="Split line as AMOUNT[:CATEGORY[:MEMO]]; repeat per line."
)
VERBOSE_OPTION: OptionInfo = typer.Option(
    0, "--verbose", "-v", count=True, help="Increase log verbosity."
)


def _overrides(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


@app.command("reconcile")
def reconcile_cmd(
    *,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
    tracked_account: str | None = TRACKED_ACCOUNT_OPTION,
    opening_balance: str | None = OPENING_BALANCE_OPTION,
    batch_size: int | None = BATCH_SIZE_OPTION,
    backup_dir: Path | None = BACKUP_DIR_OPTION,
    strategy: str | None = STRATEGY_OPTION,
) -> None:
    """Scan for duplicates, orphans and split defects; repair with --execute."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    code = cmd_reconcile(
        snapshot=snapshot,
        database_url=database_url,
        execute=execute,
        scope=scope,
        overrides=_overrides(
            fiscal_year_id=fiscal_year,
            tracked_account_number=tracked_account,
            opening_balance=opening_balance,
            batch_size=batch_size,
            backup_dir=backup_dir,
            orphan_strategy=strategy,
        ),
    )
    raise typer.Exit(code)


@app.command("balance")
def balance_cmd(
    *,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
    tracked_account: str | None = TRACKED_ACCOUNT_OPTION,
    opening_balance: str | None = OPENING_BALANCE_OPTION,
) -> None:
    """Compute the period balance of the tracked account."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_balance(
            snapshot=snapshot,
            database_url=database_url,
            scope=scope,
            overrides=_overrides(
                tracked_account_number=tracked_account, opening_balance=opening_balance
            ),
        )
    )


@app.command("find-orphans")
def find_orphans_cmd(
    *,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
) -> None:
    """List split children whose parent is missing."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(cmd_find_orphans(snapshot=snapshot, database_url=database_url, scope=scope))


@app.command("repair-orphans")
def repair_orphans_cmd(
    *,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
    strategy: str | None = STRATEGY_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
    batch_size: int | None = BATCH_SIZE_OPTION,
    backup_dir: Path | None = BACKUP_DIR_OPTION,
) -> None:
    """Delete orphan children or promote them to normal transactions."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_repair_orphans(
            snapshot=snapshot,
            database_url=database_url,
            execute=execute,
            scope=scope,
            overrides=_overrides(
                orphan_strategy=strategy, batch_size=batch_size, backup_dir=backup_dir
            ),
        )
    )


@app.command("dedupe")
def dedupe_cmd(
    *,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
    batch_size: int | None = BATCH_SIZE_OPTION,
    backup_dir: Path | None = BACKUP_DIR_OPTION,
) -> None:
    """Delete duplicate imports, keeping the smallest sequence number."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_dedupe(
            snapshot=snapshot,
            database_url=database_url,
            execute=execute,
            scope=scope,
            overrides=_overrides(batch_size=batch_size, backup_dir=backup_dir),
        )
    )


@app.command("import")
def import_cmd(
    *,
    rows: Path = ROWS_OPTION,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
    batch_size: int | None = BATCH_SIZE_OPTION,
) -> None:
    """Import bank-statement rows, skipping known fingerprints."""

    raise typer.Exit(
        cmd_import(
            rows,
            snapshot=snapshot,
            database_url=database_url,
            execute=execute,
            overrides=_overrides(fiscal_year_id=fiscal_year, batch_size=batch_size),
        )
    )


@app.command("auto-match")
def auto_match_cmd(
    *,
    inscriptions: Path = INSCRIPTIONS_OPTION,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
) -> None:
    """Link unpaid inscriptions to incoming payments by member name."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_auto_match(
            inscriptions,
            snapshot=snapshot,
            database_url=database_url,
            execute=execute,
            scope=scope,
        )
    )


@app.command("match-expenses")
def match_expenses_cmd(
    *,
    claims: Path = CLAIMS_OPTION,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    fiscal_year: str | None = FISCAL_YEAR_OPTION,
) -> None:
    """Link outgoing payments to approved expense claims."""

    try:
        scope = _scope(start, end, fiscal_year)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_match_expenses(
            claims,
            snapshot=snapshot,
            database_url=database_url,
            execute=execute,
            scope=scope,
        )
    )


@app.command("split")
def split_cmd(
    *,
    transaction: str = TRANSACTION_OPTION,
    line: list[str] = LINE_OPTION,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    execute: bool = EXECUTE_OPTION,
) -> None:
    """Split a transaction into categorized lines that sum to its amount."""

    raise typer.Exit(
        cmd_split(
            transaction,
            line,
            snapshot=snapshot,
            database_url=database_url,
            execute=execute,
        )
    )


@app.command("compare-statement")
def compare_statement_cmd(
    *,
    rows: Path = ROWS_OPTION,
    snapshot: Path | None = SNAPSHOT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
    start: str | None = START_OPTION,
    end: str | None = END_OPTION,
    tracked_account: str | None = TRACKED_ACCOUNT_OPTION,
) -> None:
    """Compare the ledger with a bank statement by sequence number."""

    try:
        scope = _scope(start, end, None)
    except ValueError as e:
        raise typer.Exit(_error(str(e))) from e
    raise typer.Exit(
        cmd_compare_statement(
            rows,
            snapshot=snapshot,
            database_url=database_url,
            scope=scope,
            overrides=_overrides(tracked_account_number=tracked_account),
        )
    )


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    verbose: int = VERBOSE_OPTION,
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging(level_for_verbosity(verbose) if verbose else None)

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
