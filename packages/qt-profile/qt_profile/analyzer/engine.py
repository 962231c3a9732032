"""Rule engine: dispatches rule collections over a parsed profile."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from ..config import get_settings
from ..models import OperatorNode, ProfileDocument
from .diagnostics import Diagnostic, Severity, sort_key
from .registry import get_all_rules, get_rules_by_category, get_rules_for_operator
from .rules import ProfileRule, RuleCategory, RuleContext
from .thresholds import QueryType, ThresholdSet

logger = logging.getLogger(__name__)

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 20.0,
    Severity.WARNING: 10.0,
    Severity.INFO: 3.0,
}

# (total time above, penalty), checked from the longest down
TIME_PENALTIES = (
    (3_600_000.0, 20.0),
    (1_800_000.0, 10.0),
    (300_000.0, 5.0),
)


class RuleEngine:
    """Evaluates the rule library against a profile.

    Per analysis:
    - planner and query collections run once
    - the fragment collection runs once per fragment
    - each operator gets its category collection plus the common collection

    Rules are stateless, so evaluate() is idempotent for a given document
    and threshold set.

    Example:
        engine = RuleEngine()
        diagnostics = engine.evaluate(document, thresholds)
    """

    def __init__(self, rules: Optional[Sequence[ProfileRule]] = None, max_diagnostics: Optional[int] = None):
        """Initialize the engine.

        Args:
            rules: Optional rule list (bypasses the registry)
            max_diagnostics: Truncation of the ranked output; defaults to settings
        """
        self._custom_rules = list(rules) if rules is not None else None
        self.max_diagnostics = max_diagnostics if max_diagnostics is not None else get_settings().max_diagnostics

    def _collection(self, category: RuleCategory) -> List[ProfileRule]:
        return get_rules_by_category(category, self._custom_rules)

    def _operator_rules(self, node: OperatorNode) -> List[ProfileRule]:
        return get_rules_for_operator(node.category, self._custom_rules)

    def evaluate(self, document: ProfileDocument, thresholds: ThresholdSet) -> List[Diagnostic]:
        """Run every applicable rule and rank the findings.

        Args:
            document: Parsed profile
            thresholds: Threshold set for this analysis

        Returns:
            Diagnostics sorted by severity, ratio, node id and rule id,
            deduplicated by (rule_id, node_path), truncated to max_diagnostics.
            Empty for queries faster than the minimum diagnosable time.
        """
        total = document.total_time_ms
        if total is not None and total < thresholds.min_diagnosis_time_ms:
            logger.debug(
                "Query %s took %.0fms, below the %.0fms diagnosis floor",
                document.summary.query_id, total, thresholds.min_diagnosis_time_ms,
            )
            return []

        query_type = thresholds.query_type
        found: List[Diagnostic] = []

        query_context = RuleContext(document=document, thresholds=thresholds)
        for category in (RuleCategory.PLANNER, RuleCategory.QUERY):
            found.extend(self._run(self._collection(category), query_context, query_type))

        fragment_rules = self._collection(RuleCategory.FRAGMENT)
        for fragment in document.fragments:
            context = RuleContext(document=document, thresholds=thresholds, fragment=fragment)
            found.extend(self._run(fragment_rules, context, query_type))

        for node in document.tree.walk():
            context = RuleContext(document=document, thresholds=thresholds, node=node)
            found.extend(self._run(self._operator_rules(node), context, query_type))

        return self.rank(found)

    def _run(self, rules: Iterable[ProfileRule], context: RuleContext, query_type: QueryType) -> List[Diagnostic]:
        results = []
        for rule in rules:
            if not query_type.allows(rule.rule_id) or not rule.applies_to(context):
                continue
            try:
                diagnostic = rule.evaluate(context)
            except Exception:
                # One bad rule shouldn't break detection
                logger.warning("Rule %s failed; skipping", rule.rule_id, exc_info=True)
                continue
            if diagnostic is not None:
                logger.debug("%s fired on %s", rule.rule_id, diagnostic.node_path)
                results.append(diagnostic)
        return results

    def rank(self, diagnostics: Iterable[Diagnostic]) -> List[Diagnostic]:
        """Sort, deduplicate by (rule_id, node_path) and truncate."""
        seen = set()
        ranked = []
        for diagnostic in sorted(diagnostics, key=sort_key):
            if diagnostic.key in seen:
                continue
            seen.add(diagnostic.key)
            ranked.append(diagnostic)
        return ranked[: self.max_diagnostics]

    @staticmethod
    def rule_ids() -> List[str]:
        return [rule.rule_id for rule in get_all_rules()]


def performance_score(diagnostics: Iterable[Diagnostic], total_ms: Optional[float] = None) -> float:
    """Score a query from 100 down: severity penalties plus a long-runtime penalty.

    Floored at 0.
    """
    score = 100.0
    for diagnostic in diagnostics:
        score -= SEVERITY_PENALTIES[diagnostic.severity]
    if total_ms is not None:
        for limit, penalty in TIME_PENALTIES:
            if total_ms > limit:
                score -= penalty
                break
    return max(score, 0.0)
