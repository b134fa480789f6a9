"""Run configuration.

A :class:`ReconciliationConfig` is built once per run and passed explicitly
to every core call; no module reads club, fiscal-year or account settings
from globals. Environment overrides use the ``CLUB_LEDGER_`` prefix:

- ``CLUB_LEDGER_CLUB_ID``
- ``CLUB_LEDGER_FISCAL_YEAR_ID``
- ``CLUB_LEDGER_TRACKED_ACCOUNT``
- ``CLUB_LEDGER_OPENING_BALANCE``
- ``CLUB_LEDGER_BATCH_SIZE``
- ``CLUB_LEDGER_ORPHAN_STRATEGY``
- ``CLUB_LEDGER_MATCH_THRESHOLD``
- ``CLUB_LEDGER_AMOUNT_TOLERANCE``
- ``CLUB_LEDGER_BACKUP_DIR``

The CLI loads a local ``.env`` (python-dotenv) before calling
:meth:`ReconciliationConfig.from_env`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigError
from .models import FiscalPeriod, Scope
from .normalizers import normalize_account, parse_amount
from .plan import DEFAULT_BACKUP_DIR, DEFAULT_BATCH_SIZE
from .ventilation import OrphanStrategy

ENV_PREFIX = "CLUB_LEDGER_"

_ENV_FIELDS = {
    "CLUB_ID": "club_id",
    "FISCAL_YEAR_ID": "fiscal_year_id",
    "TRACKED_ACCOUNT": "tracked_account_number",
    "OPENING_BALANCE": "opening_balance",
    "BATCH_SIZE": "batch_size",
    "ORPHAN_STRATEGY": "orphan_strategy",
    "MATCH_THRESHOLD": "match_threshold",
    "AMOUNT_TOLERANCE": "amount_tolerance",
    "BACKUP_DIR": "backup_dir",
}


class ReconciliationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    club_id: str | None = None
    fiscal_year_id: str | None = None
    tracked_account_number: str | None = None
    opening_balance: Decimal = Decimal("0.00")
    period_start: date | None = None
    period_end: date | None = None
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    orphan_strategy: OrphanStrategy = "delete"
    match_threshold: int = Field(default=80, ge=0, le=100)
    amount_tolerance: Decimal = Field(default=Decimal("0.01"), ge=0)
    backup_dir: Path = DEFAULT_BACKUP_DIR

    @field_validator("tracked_account_number")
    @classmethod
    def _normalize_account(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return normalize_account(v) or None

    @field_validator("opening_balance", mode="before")
    @classmethod
    def _parse_opening(cls, v: Any) -> Decimal:
        return parse_amount(v)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> ReconciliationConfig:
        """Build a config from ``CLUB_LEDGER_*`` variables plus explicit overrides.

        Overrides whose value is ``None`` are ignored so CLI options left unset
        fall through to the environment. Raises :class:`ConfigError` on any
        invalid value.
        """

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is not None and raw.strip() != "":
                values[field_name] = raw.strip()
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except (pydantic.ValidationError, ValueError) as exc:
            raise ConfigError(f"invalid configuration: {exc}") from exc

    def with_period(self, period: FiscalPeriod) -> ReconciliationConfig:
        """Thread a fiscal period in; explicit config values win over the period's."""

        update: dict[str, Any] = {
            "opening_balance": parse_amount(period.opening_balance),
            "period_start": period.start_date,
            "period_end": period.end_date,
        }
        if period.id is not None and self.fiscal_year_id is None:
            update["fiscal_year_id"] = period.id
        if period.tracked_account_number and self.tracked_account_number is None:
            update["tracked_account_number"] = normalize_account(period.tracked_account_number)
        return self.model_copy(update=update)

    def scope(self) -> Scope:
        """Date range of the period when known, else the fiscal-year id."""

        if self.period_start is not None or self.period_end is not None:
            return Scope(start_date=self.period_start, end_date=self.period_end)
        return Scope(fiscal_year_id=self.fiscal_year_id)


__all__ = ["ENV_PREFIX", "ReconciliationConfig"]
