"""Aggregate operator diagnostic rules."""

from typing import Optional

from ...models import AggregateMetrics
from ...parser.values import format_bytes
from ..diagnostics import Diagnostic, ParameterSuggestion, Severity
from .base import ProfileRule, RuleCategory, RuleContext, escalate, skew_ratio


def _agg(context: RuleContext) -> Optional[AggregateMetrics]:
    agg = context.specialized
    return agg if isinstance(agg, AggregateMetrics) else None


class AggregationSkewRule(ProfileRule):
    """A001: Aggregate compute time is skewed across instances."""

    rule_id = "A001"
    name = "Aggregation Skew"
    category = RuleCategory.AGGREGATE
    description = "A few instances do most of the aggregation work, usually because of hot group keys"
    suggestions = (
        "Check the distribution of the GROUP BY keys",
        "Enable two-stage aggregation for skewed keys",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        agg = _agg(context)
        if agg is None or (agg.input_rows or 0) < context.thresholds.min_rows_for_skew:
            return None
        max_time = context.duration_ms("__MAX_OF_AggFunctionTime") or context.duration_ms("__MAX_OF_AggComputeTime")
        min_time = context.duration_ms("__MIN_OF_AggFunctionTime") or context.duration_ms("__MIN_OF_AggComputeTime")
        ratio = skew_ratio(max_time, min_time)
        threshold = context.thresholds.skew_ratio
        if ratio is None or ratio <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"Aggregation time is skewed, max/min {ratio:.2f} (threshold {threshold:.1f})",
            measured=ratio,
            threshold=threshold,
            parameters=[
                ParameterSuggestion(
                    name="new_planner_agg_stage",
                    recommended="2",
                    description="Force two-stage aggregation",
                )
            ],
        )


class AggregateHashTableRule(ProfileRule):
    """A002: Aggregate hash table memory above the cluster-relative cutoff."""

    rule_id = "A002"
    name = "Aggregate Hash Table Too Large"
    category = RuleCategory.AGGREGATE
    description = "The aggregation hash table uses a large share of backend memory"
    suggestions = (
        "Reduce the number of distinct GROUP BY keys",
        "Enable spilling for large aggregations",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        agg = _agg(context)
        if agg is None or agg.hash_table_memory_bytes is None:
            return None
        threshold = context.thresholds.hash_table_memory_bytes
        if agg.hash_table_memory_bytes <= threshold:
            return None
        return self.diagnose(
            context,
            message=(
                f"Aggregate hash table uses {format_bytes(agg.hash_table_memory_bytes)} "
                f"(threshold {format_bytes(threshold)})"
            ),
            measured=agg.hash_table_memory_bytes,
            threshold=threshold,
            severity=escalate(agg.hash_table_memory_bytes / threshold),
        )


class HighCardinalityGroupByRule(ProfileRule):
    """A004: More than 10M distinct groups."""

    rule_id = "A004"
    name = "High Cardinality GROUP BY"
    category = RuleCategory.AGGREGATE
    description = "The aggregation produces a very large number of groups"
    suggestions = (
        "Check whether all GROUP BY columns are needed",
        "Pre-aggregate with a materialized view",
    )

    MAX_GROUPS = 10_000_000

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        agg = _agg(context)
        if agg is None or agg.hash_table_size is None or agg.hash_table_size <= self.MAX_GROUPS:
            return None
        return self.diagnose(
            context,
            message=f"Aggregation built {agg.hash_table_size:,.0f} groups",
            measured=agg.hash_table_size,
            threshold=self.MAX_GROUPS,
        )


class LowLocalAggregationRule(ProfileRule):
    """A006: Local aggregation reduces rows by less than half.

    Measured as output/input so that a higher value is worse.
    """

    rule_id = "A006"
    name = "Low Local Aggregation Efficiency"
    category = RuleCategory.AGGREGATE
    severity = Severity.INFO
    description = "The first aggregation stage barely reduces the data it forwards"
    suggestions = ("Consider disabling the local aggregation stage for high-cardinality keys",)

    MIN_INPUT_ROWS = 10_000
    MAX_KEEP_RATIO = 0.5

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        agg = _agg(context)
        if agg is None or not agg.input_rows or agg.input_rows <= self.MIN_INPUT_ROWS:
            return None
        output_rows = context.node.common.pull_rows
        if output_rows <= 0:
            return None
        keep_ratio = output_rows / agg.input_rows
        if keep_ratio <= self.MAX_KEEP_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Aggregation kept {keep_ratio:.1%} of {agg.input_rows:,.0f} input rows",
            measured=keep_ratio,
            threshold=self.MAX_KEEP_RATIO,
            parameters=[
                ParameterSuggestion(
                    name="streaming_preaggregation_mode",
                    recommended="'force_streaming'",
                    description="Skip the local hash aggregation",
                )
            ],
        )


AGGREGATE_RULES = (
    AggregationSkewRule,
    AggregateHashTableRule,
    HighCardinalityGroupByRule,
    LowLocalAggregationRule,
)
