from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from club_ledger import ConfigError, FiscalPeriod, ReconciliationConfig


def test_defaults():
    cfg = ReconciliationConfig.from_env({})
    assert cfg.batch_size == 500
    assert cfg.orphan_strategy == "delete"
    assert cfg.match_threshold == 80
    assert cfg.amount_tolerance == Decimal("0.01")
    assert cfg.opening_balance == Decimal("0.00")


def test_env_values_are_parsed():
    env = {
        "CLUB_LEDGER_TRACKED_ACCOUNT": "BE26 2100 1607 0629",
        "CLUB_LEDGER_OPENING_BALANCE": "1.000,00",
        "CLUB_LEDGER_BATCH_SIZE": "50",
        "CLUB_LEDGER_ORPHAN_STRATEGY": "promote_to_normal",
        "CLUB_LEDGER_BACKUP_DIR": "/tmp/backups",
        "CLUB_LEDGER_FISCAL_YEAR_ID": " ",
    }
    cfg = ReconciliationConfig.from_env(env)
    assert cfg.tracked_account_number == "BE26210016070629"
    assert cfg.opening_balance == Decimal("1000.00")
    assert cfg.batch_size == 50
    assert cfg.orphan_strategy == "promote_to_normal"
    assert cfg.backup_dir == Path("/tmp/backups")
    assert cfg.fiscal_year_id is None


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("CLUB_LEDGER_BATCH_SIZE", "50")
    cfg = ReconciliationConfig.from_env(batch_size=10, fiscal_year_id=None)
    assert cfg.batch_size == 10


@pytest.mark.parametrize(
    "env",
    [
        {"CLUB_LEDGER_BATCH_SIZE": "0"},
        {"CLUB_LEDGER_ORPHAN_STRATEGY": "ignore"},
        {"CLUB_LEDGER_MATCH_THRESHOLD": "101"},
        {"CLUB_LEDGER_OPENING_BALANCE": "lots"},
    ],
)
def test_invalid_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        ReconciliationConfig.from_env(env)


def test_with_period_threads_fiscal_settings():
    period = FiscalPeriod(
        id="fy25",
        opening_balance=Decimal("1000"),
        start_date=date(2025, 1, 1),
        end_date=date(2025, 12, 31),
        tracked_account_number="BE26 2100 1607 0629",
    )
    cfg = ReconciliationConfig(tracked_account_number="BE00").with_period(period)
    assert cfg.fiscal_year_id == "fy25"
    assert cfg.tracked_account_number == "BE00"
    assert cfg.opening_balance == Decimal("1000.00")
    scope = cfg.scope()
    assert (scope.start_date, scope.end_date, scope.fiscal_year_id) == (
        date(2025, 1, 1),
        date(2025, 12, 31),
        None,
    )
    assert ReconciliationConfig(fiscal_year_id="fy24").scope().fiscal_year_id == "fy24"


def test_fiscal_period_rejects_reversed_dates():
    with pytest.raises(ValueError):
        FiscalPeriod(opening_balance=0, start_date=date(2025, 2, 1), end_date=date(2025, 1, 1))
