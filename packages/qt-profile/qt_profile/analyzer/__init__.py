"""Profile analysis: thresholds, rules, root cause and regression detection."""

from .diagnostics import Diagnostic, ParameterSuggestion, Severity, sort_key
from .engine import RuleEngine, performance_score
from .query_history import QueryFingerprint, QueryHistoryCache, QueryHistoryStats, fingerprint
from .registry import get_all_rules, get_rule_by_id, get_rules_by_category, get_rules_for_operator
from .root_cause import (
    KNOWN_CAUSE_PAIRS,
    CausalChain,
    CausalEdge,
    RootCause,
    RootCauseAnalysis,
    RootCauseAnalyzer,
)
from .rules import ProfileRule, RuleCategory, RuleContext
from .thresholds import QueryType, StorageBackend, ThresholdSet, compute_thresholds

__all__ = [
    "CausalChain",
    "CausalEdge",
    "Diagnostic",
    "KNOWN_CAUSE_PAIRS",
    "ParameterSuggestion",
    "ProfileRule",
    "QueryFingerprint",
    "QueryHistoryCache",
    "QueryHistoryStats",
    "QueryType",
    "RootCause",
    "RootCauseAnalysis",
    "RootCauseAnalyzer",
    "RuleCategory",
    "RuleContext",
    "RuleEngine",
    "Severity",
    "StorageBackend",
    "ThresholdSet",
    "compute_thresholds",
    "fingerprint",
    "get_all_rules",
    "get_rule_by_id",
    "get_rules_by_category",
    "get_rules_for_operator",
    "performance_score",
    "sort_key",
]
