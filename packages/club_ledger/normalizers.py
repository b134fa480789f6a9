"""Canonicalization of importer rows and dedup fingerprints.

Bank exports disagree on nearly every formatting detail: IBANs arrive as
``"BE26 2100 1607 0629"`` or ``"BE26210016070629"``, amounts as ``"42,50"``,
``"1.234,56"`` or ``42.5``, dates as ``dd/mm/yyyy`` or ISO with a time part.
Everything here reduces those variants to one canonical value so that
comparisons and fingerprints do not depend on the source file.

All functions are pure.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol

from .models import CENT, NormalizedRecord, RawRecord

_WS_RE = re.compile(r"\s+")
_DMY_RE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$")
_INCOMPLETE_SEQ_RE = re.compile(r"^\d{4}-$")


# ---------------------------------------------------------------------------
# Field normalizers
# ---------------------------------------------------------------------------


def normalize_account(value: str | None) -> str:
    """Remove every whitespace character; account comparisons ignore spacing."""

    if value is None:
        return ""
    return _WS_RE.sub("", str(value))


def parse_amount(value: Any) -> Decimal:
    """Parse a signed amount into a cent-quantized ``Decimal``.

    Strings may use either decimal separator. When both ``,`` and ``.`` are
    present the right-most one is the decimal separator; a lone separator
    occurring more than once is a thousands separator. Spaces (including
    NBSP), apostrophes and a ``€`` sign are ignored.
    """

    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid amount: {value!r}")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value))
    else:
        d = _parse_amount_text(str(value))
    if not d.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def _parse_amount_text(raw: str) -> Decimal:
    s = raw.strip().replace("\u00a0", "").replace(" ", "").replace("'", "")
    s = s.replace("€", "").replace("EUR", "")
    if not s:
        raise ValueError("amount is empty")

    negative = False
    if s.startswith("-"):
        negative, s = True, s[1:]
    elif s.startswith("+"):
        s = s[1:]
    if s.endswith("-"):
        negative, s = True, s[:-1]

    has_comma, has_dot = "," in s, "." in s
    if has_comma and has_dot:
        decimal_sep = "," if s.rfind(",") > s.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        s = s.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif has_comma:
        s = s.replace(",", "") if s.count(",") > 1 else s.replace(",", ".")
    elif has_dot and s.count(".") > 1:
        s = s.replace(".", "")

    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    return -d if negative else d


def to_date(value: Any) -> date:
    """Return the calendar date of ``value`` (time parts are dropped)."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        raise ValueError("date is required")
    s = str(value).strip()
    if not s:
        raise ValueError("date is empty")
    m = _DMY_RE.match(s.split()[0])
    if m:
        day, month, year = (int(p) for p in m.groups())
        return date(year, month, day)
    first = s.split()[0].split("T", 1)[0]
    try:
        return date.fromisoformat(first)
    except ValueError as exc:
        raise ValueError(f"invalid date: {value!r}") from exc


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_counterparty(value: str | None) -> str:
    """Lowercase, strip diacritics, collapse internal whitespace, trim."""

    if not value:
        return ""
    return _WS_RE.sub(" ", strip_diacritics(str(value)).lower()).strip()


def reference_digits(value: str | None) -> str:
    if not value:
        return ""
    return "".join(ch for ch in str(value) if ch.isdigit())


def is_incomplete_sequence(sequence_number: str | None) -> bool:
    """True for truncated statement sequence numbers such as ``"2025-"``."""

    return bool(sequence_number) and bool(_INCOMPLETE_SEQ_RE.match(sequence_number.strip()))


# ---------------------------------------------------------------------------
# Record normalization and fingerprints
# ---------------------------------------------------------------------------


def normalize(raw: RawRecord) -> NormalizedRecord:
    """Canonicalize an importer row.

    Text fields keep their original casing (they are shown to operators);
    only the account number is rewritten. Counterparty folding happens at
    fingerprint and comparison time.
    """

    return NormalizedRecord(
        sequence_number=raw.sequence_number.strip(),
        account_number=normalize_account(raw.account_number),
        execution_date=to_date(raw.execution_date),
        value_date=to_date(raw.value_date) if raw.value_date not in (None, "") else None,
        amount=parse_amount(raw.amount),
        counterparty_name=_WS_RE.sub(" ", raw.counterparty_name).strip(),
        communication=_WS_RE.sub(" ", raw.communication).strip(),
        bank_reference=(raw.bank_reference or None),
    )


class _Fingerprintable(Protocol):
    account_number: str
    execution_date: date
    amount: Decimal
    counterparty_name: str
    bank_reference: str | None


def compute_fingerprint(record: _Fingerprintable | RawRecord) -> str:
    """Return the dedup key of ``record``.

    - With a bank reference containing digits: ``"ref:<digits>"``.
    - Otherwise: SHA-256 over canonical JSON of account (no whitespace),
      ISO execution date, amount as ``"0.00"`` and folded counterparty.

    Accepts raw rows, normalized records and ledger transactions alike, and
    re-canonicalizes every field, so formatting variance never changes the
    result.
    """

    if isinstance(record, RawRecord):
        record = normalize(record)

    digits = reference_digits(record.bank_reference)
    if digits:
        return f"ref:{digits}"

    payload = {
        "account": normalize_account(record.account_number),
        "date": to_date(record.execution_date).isoformat(),
        "amount": f"{parse_amount(record.amount):.2f}",
        "counterparty": normalize_counterparty(record.counterparty_name),
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


__all__ = [
    "compute_fingerprint",
    "is_incomplete_sequence",
    "normalize",
    "normalize_account",
    "normalize_counterparty",
    "parse_amount",
    "reference_digits",
    "strip_diacritics",
    "to_date",
]
