"""Diagnostic findings emitted by rules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple


class Severity(IntEnum):
    """Ordered severity: info < warning < critical."""
    INFO = 1
    WARNING = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "Severity":
        return cls[label.strip().upper()]


@dataclass(frozen=True)
class ParameterSuggestion:
    """A session or BE parameter change that may help."""
    name: str
    recommended: str
    current: Optional[str] = None
    description: str = ""

    @property
    def command(self) -> str:
        return f"SET {self.name} = {self.recommended};"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current,
            "recommended": self.recommended,
            "command": self.command,
            "description": self.description,
        }


@dataclass(frozen=True)
class Diagnostic:
    """One rule finding. Immutable.

    Attributes:
        rule_id: Stable rule identifier (e.g. "S019", "REG001")
        rule_name: Human-readable rule name
        severity: INFO, WARNING or CRITICAL
        category: Rule collection the rule belongs to
        node_ids: Operator node(s) concerned; empty for query-level findings
        node_path: Display path of the primary node ("OLAP_SCAN (plan_node_id=0)")
        measured_value: The value that was compared
        threshold: The cutoff it violated
        message: One-line description of the finding
        reason: Longer explanation
        suggestions: Human-readable remediation hints
        parameter_suggestions: Parameter changes that may help
        threshold_source: "baseline" or "default"
    """
    rule_id: str
    rule_name: str
    severity: Severity
    category: str
    node_ids: Tuple[int, ...] = ()
    node_path: str = ""
    measured_value: Optional[float] = None
    threshold: Optional[float] = None
    message: str = ""
    reason: str = ""
    suggestions: Tuple[str, ...] = ()
    parameter_suggestions: Tuple[ParameterSuggestion, ...] = ()
    threshold_source: str = "default"

    @property
    def node_id(self) -> Optional[int]:
        return self.node_ids[0] if self.node_ids else None

    @property
    def key(self) -> str:
        """Identity used for de-duplication."""
        return f"{self.rule_id}:{self.node_path}"

    @property
    def delta(self) -> float:
        """How far the measured value exceeded its threshold (0 when unknown)."""
        if self.measured_value is None or self.threshold is None:
            return 0.0
        return self.measured_value - self.threshold

    @property
    def ratio(self) -> float:
        """measured / threshold (1.0 when unknown)."""
        if self.measured_value is None or self.threshold is None or self.threshold == 0:
            return 1.0
        return self.measured_value / self.threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "severity": self.severity.label,
            "category": self.category,
            "node_ids": list(self.node_ids),
            "node_path": self.node_path,
            "measured_value": self.measured_value,
            "threshold": self.threshold,
            "message": self.message,
            "reason": self.reason,
            "suggestions": list(self.suggestions),
            "parameter_suggestions": [p.to_dict() for p in self.parameter_suggestions],
            "threshold_source": self.threshold_source,
        }


def sort_key(diagnostic: Diagnostic) -> tuple:
    """Severity desc, ratio desc, node id, rule id. Deterministic."""
    node_id = diagnostic.node_id
    return (
        -int(diagnostic.severity),
        -diagnostic.ratio,
        node_id is None,
        node_id if node_id is not None else 0,
        diagnostic.rule_id,
    )
