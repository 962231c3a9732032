"""Core classes for profile diagnostic rules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence

from ...models import (
    FragmentInfo,
    OperatorNode,
    OperatorSpecializedMetrics,
    OperatorTree,
    OperatorType,
    ProfileDocument,
)
from ...parser.values import try_parse_bytes, try_parse_duration_ms, try_parse_number
from ..diagnostics import Diagnostic, ParameterSuggestion, Severity
from ..thresholds import ThresholdSet


class RuleCategory(str, Enum):
    """Rule collections. Operator categories plus the non-operator ones."""
    PLANNER = "planner"
    SCAN = "scan"
    JOIN = "join"
    AGGREGATE = "aggregate"
    EXCHANGE = "exchange"
    FRAGMENT = "fragment"
    SINK = "sink"
    SORT = "sort"
    PROJECT = "project"
    QUERY = "query"
    COMMON = "common"


@dataclass
class RuleContext:
    """Everything a rule may look at for one evaluation.

    node is set for operator rules, fragment for fragment rules; both are
    None for query-level and planner rules.
    """
    document: ProfileDocument
    thresholds: ThresholdSet
    node: Optional[OperatorNode] = None
    fragment: Optional[FragmentInfo] = None

    @property
    def tree(self) -> OperatorTree:
        return self.document.tree

    @property
    def specialized(self) -> Optional[OperatorSpecializedMetrics]:
        return self.node.specialized if self.node else None

    def raw(self, key: str) -> Optional[str]:
        if self.node is None:
            return None
        return self.node.metrics.get(key)

    def number(self, key: str) -> Optional[float]:
        return try_parse_number(self.raw(key))

    def duration_ms(self, key: str) -> Optional[float]:
        return try_parse_duration_ms(self.raw(key))

    def bytes(self, key: str) -> Optional[int]:
        return try_parse_bytes(self.raw(key))

    @property
    def is_external_table(self) -> bool:
        return self.node is not None and self.node.operator_type is OperatorType.CONNECTOR_SCAN

    @property
    def total_time_ms(self) -> Optional[float]:
        return self.document.total_time_ms


class ProfileRule(ABC):
    """Base class for diagnostic rules.

    Subclasses set the class attributes and implement evaluate(), returning
    a Diagnostic or None. A rule whose inputs are missing abstains (returns
    None); it never raises on absent data.

    Example:
        class SlowScanRule(ProfileRule):
            rule_id = "S019"
            name = "Slow scan"
            category = RuleCategory.SCAN

            def evaluate(self, context):
                scan = context.specialized
                if scan is None or scan.scan_time_ms is None:
                    return None
                ...
    """

    rule_id: str = ""
    name: str = ""
    category: RuleCategory = RuleCategory.COMMON
    severity: Severity = Severity.WARNING
    description: str = ""
    suggestions: Sequence[str] = ()

    # Operator types this rule examines; empty means every node of its category
    target_types: tuple = ()

    # True when the cutoff comes from the adaptive baseline
    uses_baseline: bool = False

    def applies_to(self, context: RuleContext) -> bool:
        if not self.target_types or context.node is None:
            return True
        return context.node.operator_type in self.target_types

    @abstractmethod
    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        """Evaluate the rule.

        Args:
            context: The node, fragment, or whole document under evaluation

        Returns:
            A Diagnostic when the rule fires, else None
        """
        ...

    def diagnose(
        self,
        context: RuleContext,
        message: str,
        measured: Optional[float] = None,
        threshold: Optional[float] = None,
        severity: Optional[Severity] = None,
        reason: str = "",
        suggestions: Optional[Iterable[str]] = None,
        parameters: Iterable[ParameterSuggestion] = (),
        node: Optional[OperatorNode] = None,
    ) -> Diagnostic:
        """Build a Diagnostic carrying this rule's identity."""
        node = node or context.node
        if node is None and context.fragment is not None:
            fragment_id = context.fragment.fragment_id
            root_id = context.tree.fragment_roots.get(fragment_id)
            if root_id is None and context.tree.root.fragment_id == fragment_id:
                root_id = context.tree.root_id
            node = context.tree.get(root_id)
        node_ids = (node.id,) if node is not None else ()
        if node is not None:
            node_path = node.path
        elif context.fragment is not None:
            node_path = f"Fragment {context.fragment.fragment_id}"
        else:
            node_path = "Query"
        return Diagnostic(
            rule_id=self.rule_id,
            rule_name=self.name,
            severity=severity or self.severity,
            category=self.category.value,
            node_ids=node_ids,
            node_path=node_path,
            measured_value=measured,
            threshold=threshold,
            message=message,
            reason=reason or self.description,
            suggestions=tuple(suggestions if suggestions is not None else self.suggestions),
            parameter_suggestions=tuple(parameters),
            threshold_source=context.thresholds.source if self.uses_baseline else "default",
        )


def escalate(ratio: float, critical_at: float = 2.0) -> Severity:
    """WARNING, or CRITICAL once measured/threshold reaches critical_at."""
    return Severity.CRITICAL if ratio >= critical_at else Severity.WARNING


def skew_ratio(max_value: Optional[float], min_value: Optional[float]) -> Optional[float]:
    """max / min across instances, the imbalance used by skew rules.

    None when either side is missing or the minimum is zero (an idle
    instance is not evidence of skew on its own).
    """
    if max_value is None or min_value is None or min_value <= 0:
        return None
    return max_value / min_value
