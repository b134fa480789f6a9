"""Public interface for the ``club_ledger`` package.

This module exposes the reconciliation API functions and public models/types
as the stable import surface. There is no runtime logic here, only symbol
re-exports. The SQL-backed store lives in ``club_ledger.persistence`` and is
not imported here so that pure use does not require a database.
"""

from .balance import BalanceResult, StatementComparison, compare_with_statement, compute_balance
from .config import ReconciliationConfig
from .duplicates import (
    DuplicateGroup,
    find_duplicates,
    plan_duplicate_deletions,
    resolve_duplicates,
)
from .errors import (
    ConfigError,
    InconsistencyWarning,
    LedgerError,
    PersistenceError,
    ValidationError,
)
from .ingest import ImportResult, import_records
from .matching import (
    AutoMatchResult,
    ProposedLink,
    auto_match,
    find_best_match,
    match_expense_claims,
    name_similarity,
    plan_entity_links,
)
from .models import (
    ChildSpec,
    EntityMatch,
    ExpenseClaim,
    FiscalPeriod,
    Inscription,
    RawRecord,
    Scope,
    Transaction,
)
from .normalizers import compute_fingerprint, normalize
from .orchestrator import ReconciliationReport, ReconciliationRun, RunState, run_reconciliation
from .plan import Plan, PlanOutcome, PlannedChange, run_plan
from .store import InMemoryStore, LedgerStore, WriteOp
from .ventilation import (
    GroupConsistency,
    build_children_index,
    create_split,
    delete_child,
    find_inconsistencies,
    find_orphans,
    plan_split,
    remove_split,
    repair_orphans,
    validate_group_consistency,
)

__all__ = [
    # API
    "auto_match",
    "build_children_index",
    "compare_with_statement",
    "compute_balance",
    "compute_fingerprint",
    "create_split",
    "delete_child",
    "find_best_match",
    "find_duplicates",
    "find_inconsistencies",
    "find_orphans",
    "import_records",
    "match_expense_claims",
    "name_similarity",
    "normalize",
    "plan_duplicate_deletions",
    "plan_entity_links",
    "plan_split",
    "remove_split",
    "repair_orphans",
    "resolve_duplicates",
    "run_plan",
    "run_reconciliation",
    "validate_group_consistency",
    # Models / types
    "AutoMatchResult",
    "BalanceResult",
    "ChildSpec",
    "DuplicateGroup",
    "EntityMatch",
    "ExpenseClaim",
    "FiscalPeriod",
    "GroupConsistency",
    "ImportResult",
    "Inscription",
    "Plan",
    "PlanOutcome",
    "PlannedChange",
    "ProposedLink",
    "RawRecord",
    "ReconciliationConfig",
    "ReconciliationReport",
    "ReconciliationRun",
    "RunState",
    "Scope",
    "StatementComparison",
    "Transaction",
    # Stores
    "InMemoryStore",
    "LedgerStore",
    "WriteOp",
    # Errors
    "ConfigError",
    "InconsistencyWarning",
    "LedgerError",
    "PersistenceError",
    "ValidationError",
]
