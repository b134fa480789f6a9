"""Fuzzy matching of bank transactions to financial entities.

Names on bank statements are free text: ``"M. DUPONT JEAN"``,
``"Dupont-Jean"``, ``"VIR. JEAN DUPONT COTISATION"``. :func:`name_similarity`
compares two such strings on a 0..100 scale after folding case, accents
and titles away:

- 100 when the names are identical once whitespace and hyphens are removed,
- 90 when one such compacted name contains the other,
- otherwise the share of words (longer than one letter) that match a word
  of the other name, exactly or as a substring, over the larger word count.

Matching never forces a low-confidence or ambiguous pick: below the
threshold, or when several candidates share the top score, the result is
``None`` and the transaction is left for a human.

Assignment is greedy in input order. Each consumed transaction leaves the
pool so it is matched at most once per run. This is not a globally optimal
assignment; see DESIGN.md.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal

from .logging_setup import get_logger
from .models import EntityMatch, EntityType, ExpenseClaim, Inscription, Transaction
from .normalizers import strip_diacritics
from .plan import Plan

logger = get_logger("club_ledger.matching")

DEFAULT_THRESHOLD = 80
EXPENSE_ACCEPT_ABOVE = 60
EXPENSE_DATE_WINDOW_DAYS = 14

_TITLES = frozenset({"mr", "mrs", "ms", "dr", "m", "mme", "mlle", "monsieur", "madame"})
_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")
_WS_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


def normalize_name(value: str | None) -> str:
    if not value:
        return ""
    s = strip_diacritics(str(value)).lower().replace("-", " ")
    s = _NON_WORD_RE.sub(" ", s)
    words = [w for w in _WS_RE.split(s) if w and w not in _TITLES]
    return " ".join(words)


def _words_match(w: str, other: str) -> bool:
    return w == other or w in other or other in w


def name_similarity(a: str | None, b: str | None) -> int:
    """Similarity score of two person/organization names, 0..100."""

    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return 0
    ca, cb = na.replace(" ", ""), nb.replace(" ", "")
    if ca == cb:
        return 100
    if ca in cb or cb in ca:
        return 90

    words_a = [w for w in na.split() if len(w) > 1]
    words_b = [w for w in nb.split() if len(w) > 1]
    if not words_a or not words_b:
        return 0
    matched = sum(1 for w in words_a if any(_words_match(w, o) for o in words_b))
    return round(matched * 100 / max(len(words_a), len(words_b)))


def transaction_score(name: str, tx: Transaction) -> int:
    """Best of the counterparty and communication scores."""

    return max(
        name_similarity(name, tx.counterparty_name),
        name_similarity(name, tx.communication),
    )


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    transaction: Transaction
    score: int


def find_best_match(
    name: str,
    candidates: Iterable[Transaction],
    threshold: int = DEFAULT_THRESHOLD,
) -> ScoredCandidate | None:
    """Highest-scoring candidate at or above ``threshold``.

    Returns ``None`` when nothing reaches the threshold or when more than one
    candidate shares the top score.
    """

    best: ScoredCandidate | None = None
    tied = False
    for tx in candidates:
        score = transaction_score(name, tx)
        if score < threshold:
            continue
        if best is None or score > best.score:
            best = ScoredCandidate(tx, score)
            tied = False
        elif score == best.score:
            tied = True
    if tied:
        logger.debug("ambiguous match for %r: several candidates score %d", name, best.score)
        return None
    return best


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProposedLink:
    """An entity match proposed for ``transaction`` (not yet persisted)."""

    transaction: Transaction
    entity: EntityMatch
    amount: Decimal


def _auto_match(
    entity_type: EntityType,
    entity_id: str,
    entity_name: str,
    confidence: int,
    now: datetime,
    notes: str | None = None,
) -> EntityMatch:
    return EntityMatch(
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        confidence=confidence,
        matched_at=now,
        matched_by="auto",
        notes=notes,
    )


# ---------------------------------------------------------------------------
# Inscriptions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AutoMatchResult:
    matched: tuple[ProposedLink, ...]
    unmatched_count: int
    total_amount: Decimal
    matched_amount: Decimal

    @property
    def matched_count(self) -> int:
        return len(self.matched)


def inscription_pool(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Revenue lines that can still pay an inscription."""

    return [
        tx
        for tx in transactions
        if tx.amount > 0 and not tx.is_parent and not tx.linked_to("inscription")
    ]


def auto_match(
    unpaid_inscriptions: Sequence[Inscription],
    available_transactions: Iterable[Transaction],
    *,
    threshold: int = DEFAULT_THRESHOLD,
    now: datetime | None = None,
) -> AutoMatchResult:
    """Greedily link unpaid inscriptions to incoming payments by member name."""

    stamp = now or datetime.now(UTC)
    pool = inscription_pool(available_transactions)
    pending = [i for i in unpaid_inscriptions if not i.paid]

    matched: list[ProposedLink] = []
    for inscription in pending:
        best = find_best_match(inscription.member_name, pool, threshold)
        if best is None:
            logger.debug(
                "no payment found for inscription %s (%s)", inscription.id, inscription.member_name
            )
            continue
        pool = [tx for tx in pool if tx.id != best.transaction.id]
        matched.append(
            ProposedLink(
                transaction=best.transaction,
                entity=_auto_match(
                    "inscription", inscription.id, inscription.member_name, best.score, stamp
                ),
                amount=best.transaction.amount,
            )
        )

    total = sum((i.price for i in pending), Decimal("0.00"))
    matched_amount = sum((m.amount for m in matched), Decimal("0.00"))
    logger.info(
        "auto-matched %d/%d inscription(s) (%.2f of %.2f)",
        len(matched),
        len(pending),
        matched_amount,
        total,
    )
    return AutoMatchResult(
        matched=tuple(matched),
        unmatched_count=len(pending) - len(matched),
        total_amount=total,
        matched_amount=matched_amount,
    )


# ---------------------------------------------------------------------------
# Expense claims
# ---------------------------------------------------------------------------


def _amounts_match(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(abs(a) - abs(b)) <= tolerance


def _dates_close(a: date, b: date | None, days: int) -> bool:
    return b is not None and abs((a - b).days) <= days


def expense_confidence(
    tx: Transaction,
    claim: ExpenseClaim,
    *,
    amount_tolerance: Decimal = Decimal("0.01"),
) -> int:
    """Confidence that ``tx`` reimburses ``claim``; 0 when nothing lines up."""

    amount_ok = _amounts_match(tx.amount, claim.amount, amount_tolerance)
    name = name_similarity(claim.requester_name, tx.counterparty_name)
    date_ok = _dates_close(tx.execution_date, claim.approved_on, EXPENSE_DATE_WINDOW_DAYS)
    prefix = claim.description.lower()[:20].strip()
    description_ok = bool(prefix) and prefix in tx.communication.lower()

    if amount_ok and name > 80 and date_ok:
        return 95
    if amount_ok and (name > 70 or description_ok):
        return 85
    if amount_ok and date_ok:
        return 75
    if name > 80 and date_ok:
        return 70
    return 0


def match_expense_claims(
    claims: Sequence[ExpenseClaim],
    transactions: Iterable[Transaction],
    *,
    amount_tolerance: Decimal = Decimal("0.01"),
    now: datetime | None = None,
) -> list[ProposedLink]:
    """Link outgoing payments to approved claims, one claim per transaction.

    Transactions are visited in input order; each takes the best remaining
    claim scoring above 60, which then leaves the pool. A transaction whose top
    score is shared by several claims stays unlinked.
    """

    stamp = now or datetime.now(UTC)
    remaining = list(claims)
    links: list[ProposedLink] = []
    for tx in transactions:
        if tx.amount >= 0 or tx.is_parent or tx.linked_to("expense"):
            continue
        best: tuple[int, ExpenseClaim] | None = None
        tied = False
        for claim in remaining:
            score = expense_confidence(tx, claim, amount_tolerance=amount_tolerance)
            if score <= EXPENSE_ACCEPT_ABOVE:
                continue
            if best is None or score > best[0]:
                best = (score, claim)
                tied = False
            elif score == best[0]:
                tied = True
        if best is None or tied:
            continue
        score, claim = best
        remaining = [c for c in remaining if c.id != claim.id]
        links.append(
            ProposedLink(
                transaction=tx,
                entity=_auto_match(
                    "expense",
                    claim.id,
                    claim.description or claim.requester_name,
                    score,
                    stamp,
                    notes="manual_review" if score <= 85 else None,
                ),
                amount=tx.amount,
            )
        )
    logger.info("matched %d/%d expense claim(s)", len(links), len(claims))
    return links


# ---------------------------------------------------------------------------
# Link hygiene and persistence
# ---------------------------------------------------------------------------


def find_multi_linked(
    transactions: Iterable[Transaction],
) -> dict[tuple[str, str], list[Transaction]]:
    """Entities linked to more than one transaction, keyed by (type, id)."""

    by_entity: dict[tuple[str, str], list[Transaction]] = defaultdict(list)
    for tx in transactions:
        for key in {(m.entity_type, m.entity_id) for m in tx.matched_entities}:
            by_entity[key].append(tx)
    return {key: txs for key, txs in by_entity.items() if len(txs) > 1}


def plan_entity_links(
    links: Iterable[ProposedLink],
    transactions: Iterable[Transaction] = (),
) -> Plan:
    """Append proposed matches to their transactions.

    ``transactions`` supplies the current state when it is newer than the
    copy embedded in a link. Links already present on a transaction (same
    entity type and id) are skipped, so re-running a match is a no-op.
    """

    current = {tx.id: tx for tx in transactions}
    pending: dict[str, list[EntityMatch]] = defaultdict(list)
    base: dict[str, Transaction] = {}
    for link in links:
        tx = current.get(link.transaction.id, link.transaction)
        base.setdefault(tx.id, tx)
        pending[tx.id].append(link.entity)

    plan = Plan(title="Entity links")
    for tx_id, matches in pending.items():
        before = base[tx_id]
        existing = {(m.entity_type, m.entity_id) for m in before.matched_entities}
        new = []
        for m in matches:
            if (m.entity_type, m.entity_id) not in existing:
                existing.add((m.entity_type, m.entity_id))
                new.append(m)
        if not new:
            continue
        after = replace(before, matched_entities=before.matched_entities + tuple(new))
        names = ", ".join(f"{m.entity_type}:{m.entity_id} ({m.confidence}%)" for m in new)
        plan.update(before, after, f"link {names}")
    return plan


__all__ = [
    "AutoMatchResult",
    "DEFAULT_THRESHOLD",
    "ProposedLink",
    "ScoredCandidate",
    "auto_match",
    "expense_confidence",
    "find_best_match",
    "find_multi_linked",
    "inscription_pool",
    "match_expense_claims",
    "name_similarity",
    "normalize_name",
    "plan_entity_links",
    "transaction_score",
]
