"""Rules that apply to every operator regardless of category."""

from typing import Optional

from ...models import MOST_CONSUMING_PERCENTAGE, SECOND_CONSUMING_PERCENTAGE
from ...parser.values import format_bytes, format_duration_ms
from ..diagnostics import Diagnostic, Severity
from .base import ProfileRule, RuleCategory, RuleContext, escalate, skew_ratio


class MostConsumingOperatorRule(ProfileRule):
    """G001: Operator takes more than 30% of total operator time and over 500ms."""

    rule_id = "G001"
    name = "Most Time-Consuming Operator"
    category = RuleCategory.COMMON
    description = "This operator is the query's main hot spot"
    suggestions = ("Focus tuning on this operator first",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        node = context.node
        if node.time_percentage <= MOST_CONSUMING_PERCENTAGE:
            return None
        if node.common.operator_time_ms <= context.thresholds.min_operator_time_ms:
            return None
        return self.diagnose(
            context,
            message=(
                f"{node.name} takes {node.time_percentage:.1f}% of operator time "
                f"({format_duration_ms(node.common.operator_time_ms)})"
            ),
            measured=node.time_percentage,
            threshold=MOST_CONSUMING_PERCENTAGE,
        )


class SecondConsumingOperatorRule(ProfileRule):
    """G001b: Operator takes 15-30% of total operator time and over 500ms."""

    rule_id = "G001b"
    name = "Second Time-Consuming Operator"
    category = RuleCategory.COMMON
    severity = Severity.INFO
    description = "This operator is a secondary hot spot"
    suggestions = ("Tune after the main hot spot is addressed",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        node = context.node
        if not SECOND_CONSUMING_PERCENTAGE < node.time_percentage <= MOST_CONSUMING_PERCENTAGE:
            return None
        if node.common.operator_time_ms <= context.thresholds.min_operator_time_ms:
            return None
        return self.diagnose(
            context,
            message=f"{node.name} takes {node.time_percentage:.1f}% of operator time",
            measured=node.time_percentage,
            threshold=SECOND_CONSUMING_PERCENTAGE,
        )


class OperatorMemoryRule(ProfileRule):
    """G002: Operator peak memory above the cluster-relative cutoff."""

    rule_id = "G002"
    name = "High Operator Memory"
    category = RuleCategory.COMMON
    description = "The operator holds a large share of backend memory"
    suggestions = ("Reduce the data this operator buffers",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        memory = context.node.common.peak_memory_bytes
        threshold = context.thresholds.operator_memory_bytes
        if memory <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"{context.node.name} peak memory {format_bytes(memory)} (threshold {format_bytes(threshold)})",
            measured=memory,
            threshold=threshold,
            severity=escalate(memory / threshold),
        )


class ExecutionTimeSkewRule(ProfileRule):
    """G003: Slowest instance takes far longer than the fastest."""

    rule_id = "G003"
    name = "Execution Time Skew"
    category = RuleCategory.COMMON
    description = "Operator time is unevenly spread across instances"
    suggestions = ("Check for data skew on this operator's input",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        common = context.node.common
        if common.operator_time_ms < context.thresholds.min_operator_time_ms:
            return None
        ratio = skew_ratio(common.operator_time_max_ms, common.operator_time_min_ms)
        if ratio is None:
            return None
        threshold = context.thresholds.skew_ratio
        if ratio <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"{context.node.name} time is skewed across instances, max/min {ratio:.2f}",
            measured=ratio,
            threshold=threshold,
        )


COMMON_RULES = (
    MostConsumingOperatorRule,
    SecondConsumingOperatorRule,
    OperatorMemoryRule,
    ExecutionTimeSkewRule,
)
