"""Sort, Top-N and window (analytic) diagnostic rules."""

from typing import Optional

from ...models import GB, OperatorType
from ...parser.values import format_bytes
from ..diagnostics import Diagnostic, ParameterSuggestion, Severity
from .base import ProfileRule, RuleCategory, RuleContext

MB = 1024 ** 2


class LargeSortRule(ProfileRule):
    """T001: Full sort over more than 10M rows."""

    rule_id = "T001"
    name = "Large Sort"
    category = RuleCategory.SORT
    target_types = (OperatorType.SORT,)
    description = "Sorting a large input without a limit is expensive in both CPU and memory"
    suggestions = (
        "Add a LIMIT so a Top-N sort can be used",
        "Remove ORDER BY from subqueries that do not need it",
    )

    MAX_ROWS = 10_000_000

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        rows = context.number("InputRowNum") or context.node.common.push_rows
        if not rows or rows <= self.MAX_ROWS:
            return None
        return self.diagnose(
            context,
            message=f"Sorting {rows:,.0f} rows",
            measured=rows,
            threshold=self.MAX_ROWS,
        )


class SortSpillRule(ProfileRule):
    """T002: Sort spilled to disk."""

    rule_id = "T002"
    name = "Sort Spill"
    category = RuleCategory.SORT
    description = "The sort ran out of memory and spilled intermediate data to disk"
    suggestions = ("Increase the query memory limit or reduce the sorted data",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        spilled = context.bytes("SpillBytes")
        if not spilled:
            return None
        return self.diagnose(
            context,
            message=f"Sort spilled {format_bytes(spilled)} to disk",
            measured=spilled,
            threshold=0,
            parameters=[
                ParameterSuggestion(
                    name="query_mem_limit",
                    recommended="0",
                    description="Remove the per-query memory cap if the backend has headroom",
                )
            ],
        )


class SortMemoryRule(ProfileRule):
    """T003: Sort peak memory above 1GB."""

    rule_id = "T003"
    name = "Sort Memory High"
    category = RuleCategory.SORT
    target_types = (OperatorType.SORT, OperatorType.TOP_N)
    description = "The sort holds a large amount of data in memory"
    suggestions = ("Reduce the columns carried through the sort",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        memory = context.node.common.peak_memory_bytes
        if memory <= GB:
            return None
        return self.diagnose(
            context,
            message=f"Sort peak memory {format_bytes(memory)}",
            measured=memory,
            threshold=GB,
        )


class WindowMemoryRule(ProfileRule):
    """W001: Analytic (window) operator peak memory above 500MB."""

    rule_id = "W001"
    name = "Window Function Memory High"
    category = RuleCategory.SORT
    target_types = (OperatorType.ANALYTIC,)
    description = "Window partitions are large enough to hold a lot of data in memory"
    suggestions = (
        "Add PARTITION BY keys with more distinct values",
        "Filter rows before the window function",
    )

    MAX_MEMORY = 500 * MB

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        memory = context.node.common.peak_memory_bytes
        if memory <= self.MAX_MEMORY:
            return None
        severity = Severity.CRITICAL if memory > 4 * self.MAX_MEMORY else Severity.WARNING
        return self.diagnose(
            context,
            message=f"Window function peak memory {format_bytes(memory)}",
            measured=memory,
            threshold=self.MAX_MEMORY,
            severity=severity,
        )


SORT_RULES = (
    LargeSortRule,
    SortSpillRule,
    SortMemoryRule,
    WindowMemoryRule,
)
