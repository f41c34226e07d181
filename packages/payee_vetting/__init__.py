"""Public interface for the ``payee_vetting`` package.

Symbol re-exports only; importing the package creates no clients, reads no
files and attaches no log handlers.
"""

from .consolidation import (
    ConsolidationError,
    SuggestionFormatError,
    apply_consolidation,
    build_consolidation_groups,
    request_consolidation_suggestions,
)
from .coverage import classify_by_rule_coverage
from .engine import (
    MalformedConditionError,
    find_category_rule,
    find_first_match,
    find_pre_rule,
    matches_condition,
    matches_rule,
    rule_key,
)
from .models import (
    Action,
    Condition,
    ConsolidationGroup,
    ConsolidationSuggestion,
    CoverageResult,
    PayeeRow,
    RawTransaction,
    Rule,
    Suggestion,
    TransferPair,
    VettedRule,
)
from .normalize import extract_match_value, normalize
from .payee_rows import (
    aggregate_groups_for_review,
    apply_suggestion,
    build_payee_rows,
    save_decisions,
)
from .proposals import propose_categories, propose_clean_names
from .transfers import find_transfer_pairs
from .vetted import StoreFormatError, StorePersistenceError, VettedRuleStore

__all__ = [
    # Core operations
    "aggregate_groups_for_review",
    "apply_consolidation",
    "apply_suggestion",
    "build_consolidation_groups",
    "build_payee_rows",
    "classify_by_rule_coverage",
    "extract_match_value",
    "find_category_rule",
    "find_first_match",
    "find_pre_rule",
    "find_transfer_pairs",
    "matches_condition",
    "matches_rule",
    "normalize",
    "propose_categories",
    "propose_clean_names",
    "request_consolidation_suggestions",
    "rule_key",
    "save_decisions",
    "VettedRuleStore",
    # Models / types
    "Action",
    "Condition",
    "ConsolidationGroup",
    "ConsolidationSuggestion",
    "CoverageResult",
    "PayeeRow",
    "RawTransaction",
    "Rule",
    "Suggestion",
    "TransferPair",
    "VettedRule",
    # Errors
    "ConsolidationError",
    "MalformedConditionError",
    "StoreFormatError",
    "StorePersistenceError",
    "SuggestionFormatError",
]
