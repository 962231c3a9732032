"""Planner diagnostic rules (run once per query)."""

from typing import Optional

from ...parser.values import format_duration_ms
from ..diagnostics import Diagnostic, Severity
from .base import ProfileRule, RuleCategory, RuleContext


class SlowMetastoreRule(ProfileRule):
    """PL001: Hive metastore calls are slow.

    Fires when total HMS time exceeds 2s or any single call exceeds 1s.
    CRITICAL above 5s total.
    """

    rule_id = "PL001"
    name = "Slow Metastore Access"
    category = RuleCategory.PLANNER
    description = "Planning waited on the external catalog metastore"
    suggestions = (
        "Enable the metadata cache for the external catalog",
        "Reduce the number of partitions the query touches",
    )

    TOTAL_MS = 2000.0
    SINGLE_CALL_MS = 1000.0
    CRITICAL_MS = 5000.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        planner = context.document.planner
        total = planner.hms_time_ms
        if total <= self.TOTAL_MS and planner.hms_max_call_ms <= self.SINGLE_CALL_MS:
            return None
        if total > self.TOTAL_MS:
            measured, threshold = total, self.TOTAL_MS
        else:
            measured, threshold = planner.hms_max_call_ms, self.SINGLE_CALL_MS
        return self.diagnose(
            context,
            message=(
                f"Metastore access took {format_duration_ms(total)} over {planner.hms_calls} calls "
                f"(slowest {format_duration_ms(planner.hms_max_call_ms)})"
            ),
            measured=measured,
            threshold=threshold,
            severity=Severity.CRITICAL if total > self.CRITICAL_MS else Severity.WARNING,
        )


class SlowOptimizerRule(ProfileRule):
    """PL002: Optimizer time above 5s. CRITICAL above 30s."""

    rule_id = "PL002"
    name = "Slow Optimizer"
    category = RuleCategory.PLANNER
    description = "The cost-based optimizer spent a long time searching for a plan"
    suggestions = (
        "Reduce the number of joined tables or split the query",
        "Lower the optimizer search depth for very large joins",
    )

    MAX_MS = 5000.0
    CRITICAL_MS = 30000.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        optimizer = context.document.planner.optimizer_time_ms
        if optimizer is None or optimizer <= self.MAX_MS:
            return None
        return self.diagnose(
            context,
            message=f"Optimizer took {format_duration_ms(optimizer)}",
            measured=optimizer,
            threshold=self.MAX_MS,
            severity=Severity.CRITICAL if optimizer > self.CRITICAL_MS else Severity.WARNING,
        )


class PlannerShareRule(ProfileRule):
    """PL003: Planning is more than 10% of the query and above 5s."""

    rule_id = "PL003"
    name = "High Planner Share"
    category = RuleCategory.PLANNER
    description = "A significant part of the query's latency is spent before execution starts"
    suggestions = ("Check metastore latency and optimizer time",)

    MIN_PLANNER_MS = 5000.0
    SHARE = 0.10

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        planner_ms = context.document.planner.total_time_ms
        query_ms = context.total_time_ms
        if planner_ms is None or not query_ms or planner_ms <= self.MIN_PLANNER_MS:
            return None
        share = planner_ms / query_ms
        if share <= self.SHARE:
            return None
        return self.diagnose(
            context,
            message=f"Planning took {format_duration_ms(planner_ms)}, {share:.1%} of the query",
            measured=share,
            threshold=self.SHARE,
            severity=Severity.CRITICAL if share > 0.3 else Severity.WARNING,
        )


PLANNER_RULES = (
    SlowMetastoreRule,
    SlowOptimizerRule,
    PlannerShareRule,
)
