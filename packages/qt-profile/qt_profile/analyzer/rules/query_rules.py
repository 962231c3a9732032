"""Query-level diagnostic rules.

These read the Summary and Execution sections rather than a single
operator, so their findings carry no node id.
"""

from typing import Optional

from ...parser.values import format_bytes, format_duration_ms
from ..diagnostics import Diagnostic, ParameterSuggestion, Severity
from .base import ProfileRule, RuleCategory, RuleContext, escalate


def _session_value(context: RuleContext, name: str) -> Optional[str]:
    variables = context.document.summary.session_variables
    value = variables.get(name)
    if isinstance(value, dict):
        # NonDefaultSessionVariables stores {"defaultValue": ..., "actualValue": ...}
        value = value.get("actualValue")
    return None if value is None else str(value)


def _share(part: Optional[float], whole: Optional[float]) -> Optional[float]:
    if part is None or not whole:
        return None
    return part / whole


class LongQueryRule(ProfileRule):
    """Q001: Query time above the query-type and baseline-derived limit."""

    rule_id = "Q001"
    name = "Long Running Query"
    category = RuleCategory.QUERY
    uses_baseline = True
    description = "The query ran longer than expected for its type and complexity"
    suggestions = ("Review the operator-level findings for the dominant bottleneck",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        total = context.total_time_ms
        threshold = context.thresholds.query_time_ms
        if total is None or total <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"Query took {format_duration_ms(total)} (threshold {format_duration_ms(threshold)})",
            measured=total,
            threshold=threshold,
            severity=escalate(total / threshold),
        )


class QueryMemoryRule(ProfileRule):
    """Q002: Peak memory per node above the cluster-relative limit."""

    rule_id = "Q002"
    name = "High Query Memory"
    category = RuleCategory.QUERY
    description = "The query used a large share of backend memory"
    suggestions = (
        "Reduce the data held by joins and aggregations",
        "Enable spilling so the query degrades instead of failing",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        peak = context.document.execution.peak_memory_per_node_bytes
        threshold = context.thresholds.query_memory_bytes
        if peak is None or peak <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"Peak memory per node {format_bytes(peak)} (threshold {format_bytes(threshold)})",
            measured=peak,
            threshold=threshold,
            severity=escalate(peak / threshold, critical_at=1.5),
        )


class QuerySpillRule(ProfileRule):
    """Q003: The query spilled to disk."""

    rule_id = "Q003"
    name = "Query Spill"
    category = RuleCategory.QUERY
    description = "Operators ran out of memory and wrote intermediate data to disk"
    suggestions = ("Increase the query memory limit or reduce intermediate data",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        spilled = context.document.execution.spill_bytes
        if not spilled:
            return None
        return self.diagnose(
            context,
            message=f"Query spilled {format_bytes(spilled)} to disk",
            measured=spilled,
            threshold=0,
            parameters=[
                ParameterSuggestion(
                    name="spill_mode",
                    recommended="'auto'",
                    current=_session_value(context, "spill_mode"),
                    description="Spill only under memory pressure",
                )
            ],
        )


class LowCpuUtilizationRule(ProfileRule):
    """Q004: CPU time is under 30% of wall time.

    Reported as the idle share so that a higher value is worse.
    """

    rule_id = "Q004"
    name = "Low CPU Utilization"
    category = RuleCategory.QUERY
    severity = Severity.INFO
    description = "The query spent most of its wall time waiting rather than computing"
    suggestions = (
        "Look for IO waits or scheduling delays",
        "Increase parallelism",
    )

    MIN_CPU_SHARE = 0.3

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        execution = context.document.execution
        share = _share(execution.cpu_time_ms, execution.wall_time_ms)
        if share is None or share >= self.MIN_CPU_SHARE:
            return None
        return self.diagnose(
            context,
            message=f"CPU utilization is {share:.1%} of wall time",
            measured=1.0 - share,
            threshold=1.0 - self.MIN_CPU_SHARE,
            parameters=[
                ParameterSuggestion(
                    name="pipeline_dop",
                    recommended="0",
                    current=_session_value(context, "pipeline_dop"),
                    description="Let the engine pick the degree of parallelism",
                )
            ],
        )


class ScanDominatesRule(ProfileRule):
    """Q005: Scan time is more than 80% of wall time."""

    rule_id = "Q005"
    name = "Scan Dominated Query"
    category = RuleCategory.QUERY
    description = "Reading data is the query's main cost"
    suggestions = (
        "Improve partition pruning and predicate selectivity",
        "Use a materialized view for repeated scans",
    )

    SHARE = 0.8

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        execution = context.document.execution
        share = _share(execution.scan_time_ms, execution.wall_time_ms)
        if share is None or share <= self.SHARE:
            return None
        return self.diagnose(
            context,
            message=f"Scan time is {share:.1%} of the query",
            measured=share,
            threshold=self.SHARE,
        )


class NetworkDominatesRule(ProfileRule):
    """Q006: Network time is more than half of wall time."""

    rule_id = "Q006"
    name = "Network Dominated Query"
    category = RuleCategory.QUERY
    description = "Shuffling data between backends is the query's main cost"
    suggestions = ("Reduce shuffled data with earlier filters or colocated joins",)

    SHARE = 0.5

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        execution = context.document.execution
        share = _share(execution.network_time_ms, execution.wall_time_ms)
        if share is None or share <= self.SHARE:
            return None
        return self.diagnose(
            context,
            message=f"Network time is {share:.1%} of the query",
            measured=share,
            threshold=self.SHARE,
        )


class SlowProfileCollectionRule(ProfileRule):
    """Q007: Collecting the profile itself took over 100ms."""

    rule_id = "Q007"
    name = "Slow Profile Collection"
    category = RuleCategory.QUERY
    severity = Severity.INFO
    description = "Gathering runtime profiles added noticeable latency"
    suggestions = ("Lower the profile level or sample fewer queries",)

    MAX_MS = 100.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        collect = context.document.execution.collect_profile_time_ms
        if collect is None or collect <= self.MAX_MS:
            return None
        return self.diagnose(
            context,
            message=f"Profile collection took {format_duration_ms(collect)}",
            measured=collect,
            threshold=self.MAX_MS,
        )


class LongScheduleRule(ProfileRule):
    """Q008: Pipeline schedule time is more than 30% of wall time."""

    rule_id = "Q008"
    name = "Long Schedule Time"
    category = RuleCategory.QUERY
    description = "Pipeline drivers waited a long time to be scheduled"
    suggestions = (
        "Check backend CPU saturation from concurrent queries",
        "Increase parallelism",
    )

    SHARE = 0.3

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        execution = context.document.execution
        share = _share(execution.schedule_time_ms, execution.wall_time_ms)
        if share is None or share <= self.SHARE:
            return None
        return self.diagnose(
            context,
            message=f"Schedule time is {share:.1%} of the query",
            measured=share,
            threshold=self.SHARE,
        )


class SlowResultDeliveryRule(ProfileRule):
    """Q009: Result delivery is more than 20% of wall time."""

    rule_id = "Q009"
    name = "Slow Result Delivery"
    category = RuleCategory.QUERY
    severity = Severity.INFO
    description = "Sending results to the client took a large share of the query"
    suggestions = (
        "Check client network bandwidth",
        "Reduce the size of the result set",
    )

    SHARE = 0.2

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        execution = context.document.execution
        share = _share(execution.result_deliver_time_ms, execution.wall_time_ms)
        if share is None or share <= self.SHARE:
            return None
        return self.diagnose(
            context,
            message=f"Result delivery is {share:.1%} of the query",
            measured=share,
            threshold=self.SHARE,
        )


QUERY_RULES = (
    LongQueryRule,
    QueryMemoryRule,
    QuerySpillRule,
    LowCpuUtilizationRule,
    ScanDominatesRule,
    NetworkDominatesRule,
    SlowProfileCollectionRule,
    LongScheduleRule,
    SlowResultDeliveryRule,
)
