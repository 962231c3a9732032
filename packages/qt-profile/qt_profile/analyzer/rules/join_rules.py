"""Join operator diagnostic rules."""

from typing import Optional

from ...models import JoinMetrics, OperatorType
from ...parser.values import format_bytes
from ..diagnostics import Diagnostic, ParameterSuggestion, Severity
from .base import ProfileRule, RuleCategory, RuleContext, escalate


def _join(context: RuleContext) -> Optional[JoinMetrics]:
    join = context.specialized
    return join if isinstance(join, JoinMetrics) else None


class JoinExplosionRule(ProfileRule):
    """J001: Join output is more than ten times its probe input.

    Usually a missing or non-unique join key. CRITICAL at 100x.
    """

    rule_id = "J001"
    name = "Join Result Explosion"
    category = RuleCategory.JOIN
    description = "The join produces many more rows than it reads, which usually means duplicate join keys"
    suggestions = (
        "Check that the join condition covers all key columns",
        "Deduplicate the build side before joining",
    )

    EXPLOSION_FACTOR = 10.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        join = _join(context)
        if join is None or not join.probe_rows:
            return None
        if join.probe_rows < context.thresholds.min_rows_for_join:
            return None
        output_rows = context.node.common.pull_rows
        threshold = join.probe_rows * self.EXPLOSION_FACTOR
        if output_rows <= threshold:
            return None
        factor = output_rows / join.probe_rows
        return self.diagnose(
            context,
            message=f"Join output {output_rows:,.0f} rows from {join.probe_rows:,.0f} probe rows ({factor:.1f}x)",
            measured=output_rows,
            threshold=threshold,
            severity=escalate(factor / self.EXPLOSION_FACTOR, critical_at=10.0),
        )


class BuildLargerThanProbeRule(ProfileRule):
    """J002: Build side is larger than the probe side."""

    rule_id = "J002"
    name = "Build Side Larger Than Probe"
    category = RuleCategory.JOIN
    description = "The hash table is built from the bigger input, wasting memory and build time"
    suggestions = (
        "Refresh table statistics so the optimizer picks the smaller side",
        "Reorder the join or use a join hint",
    )

    MIN_BUILD_ROWS = 100_000

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        join = _join(context)
        if join is None or join.build_rows is None or join.probe_rows is None:
            return None
        if join.build_rows <= join.probe_rows or join.build_rows <= self.MIN_BUILD_ROWS:
            return None
        return self.diagnose(
            context,
            message=f"Build side has {join.build_rows:,.0f} rows, probe side {join.probe_rows:,.0f}",
            measured=join.build_rows,
            threshold=join.probe_rows,
            parameters=[
                ParameterSuggestion(
                    name="cbo_enable_low_cardinality_optimize",
                    recommended="true",
                    description="Let the optimizer use column statistics for join ordering",
                )
            ],
        )


class LargeHashTableRule(ProfileRule):
    """J003: Join hash table memory above the cluster-relative cutoff."""

    rule_id = "J003"
    name = "Join Hash Table Too Large"
    category = RuleCategory.JOIN
    description = "The join hash table uses a large share of backend memory"
    suggestions = (
        "Filter the build side earlier",
        "Use a shuffle join instead of broadcast for large build sides",
        "Enable spilling for large joins",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        join = _join(context)
        if join is None or join.hash_table_memory_bytes is None:
            return None
        threshold = context.thresholds.hash_table_memory_bytes
        if join.hash_table_memory_bytes <= threshold:
            return None
        return self.diagnose(
            context,
            message=(
                f"Hash table uses {format_bytes(join.hash_table_memory_bytes)} "
                f"(threshold {format_bytes(threshold)})"
            ),
            measured=join.hash_table_memory_bytes,
            threshold=threshold,
            severity=escalate(join.hash_table_memory_bytes / threshold),
            parameters=[
                ParameterSuggestion(
                    name="enable_spill",
                    recommended="true",
                    description="Spill join state to disk under memory pressure",
                )
            ],
        )


class NoRuntimeFilterRule(ProfileRule):
    """J004: No runtime filter was generated for a sizeable build side."""

    rule_id = "J004"
    name = "Runtime Filter Missing"
    category = RuleCategory.JOIN
    severity = Severity.INFO
    description = "Without a runtime filter the probe-side scan cannot skip non-matching rows"
    suggestions = ("Check that runtime filters are enabled and the join key types match",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        join = _join(context)
        if join is None or join.runtime_filter_num is None or join.build_rows is None:
            return None
        if join.runtime_filter_num != 0 or join.build_rows <= context.thresholds.min_rows_for_join:
            return None
        return self.diagnose(
            context,
            message=f"No runtime filter generated for a {join.build_rows:,.0f}-row build side",
            measured=join.build_rows,
            threshold=context.thresholds.min_rows_for_join,
        )


class NestLoopJoinRule(ProfileRule):
    """J009: Join fell back to a nested-loop or cross join."""

    rule_id = "J009"
    name = "Non-Equi Join Fallback"
    category = RuleCategory.JOIN
    description = "Nested-loop joins compare every pair of rows and scale quadratically"
    suggestions = (
        "Rewrite the join condition as an equality where possible",
        "Reduce both inputs before the join",
    )

    MIN_ROWS = 1000

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        join = _join(context)
        if join is None:
            return None
        join_type = (join.join_type or "").upper()
        is_fallback = (
            context.node.operator_type is OperatorType.NEST_LOOP_JOIN
            or "CROSS" in join_type
            or "NESTLOOP" in join_type
        )
        if not is_fallback:
            return None
        rows = max(join.probe_rows or 0, join.build_rows or 0)
        if rows <= self.MIN_ROWS:
            return None
        return self.diagnose(
            context,
            message=f"Nested-loop join over {rows:,.0f} rows",
            measured=rows,
            threshold=self.MIN_ROWS,
        )


JOIN_RULES = (
    JoinExplosionRule,
    BuildLargerThanProbeRule,
    LargeHashTableRule,
    NoRuntimeFilterRule,
    NestLoopJoinRule,
)
