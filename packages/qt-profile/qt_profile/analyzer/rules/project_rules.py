"""Project and local exchange diagnostic rules."""

from typing import Optional

from ...models import GB, OperatorType
from ...parser.values import format_bytes, format_duration_ms
from ..diagnostics import Diagnostic, Severity
from .base import ProfileRule, RuleCategory, RuleContext


class ExpressionTimeRule(ProfileRule):
    """P001: Expression evaluation dominates the project operator."""

    rule_id = "P001"
    name = "Expensive Projection"
    category = RuleCategory.PROJECT
    target_types = (OperatorType.PROJECT,)
    description = "Computing projected expressions takes most of the operator time"
    suggestions = (
        "Simplify or precompute expensive expressions",
        "Avoid heavy functions on columns that are later filtered out",
    )

    EXPR_RATIO = 0.5
    MIN_EXPR_TIME_MS = 100.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        expr_time = context.duration_ms("ExprComputeTime")
        operator_time = context.node.common.operator_time_ms
        if expr_time is None or operator_time <= 0 or expr_time <= self.MIN_EXPR_TIME_MS:
            return None
        ratio = expr_time / operator_time
        if ratio <= self.EXPR_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Expression evaluation is {ratio:.1%} of project time ({format_duration_ms(expr_time)})",
            measured=ratio,
            threshold=self.EXPR_RATIO,
        )


class CommonSubExpressionRule(ProfileRule):
    """P002: Common sub-expression evaluation above 500ms.

    Typically a CASE WHEN repeated across several output columns.
    """

    rule_id = "P002"
    name = "Repeated Sub-Expression"
    category = RuleCategory.PROJECT
    target_types = (OperatorType.PROJECT,)
    description = "The same sub-expression is evaluated repeatedly"
    suggestions = ("Compute the shared expression once in a subquery or CTE",)

    MIN_TIME_MS = 500.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        cse_time = context.duration_ms("CommonSubExprComputeTime")
        if cse_time is None or cse_time <= self.MIN_TIME_MS:
            return None
        severity = Severity.CRITICAL if cse_time > 10 * self.MIN_TIME_MS else Severity.WARNING
        return self.diagnose(
            context,
            message=f"Common sub-expressions took {format_duration_ms(cse_time)}",
            measured=cse_time,
            threshold=self.MIN_TIME_MS,
            severity=severity,
        )


class LocalExchangeMemoryRule(ProfileRule):
    """L001: Local exchange buffers above 1GB."""

    rule_id = "L001"
    name = "Local Exchange Memory High"
    category = RuleCategory.PROJECT
    target_types = (OperatorType.LOCAL_EXCHANGE,)
    description = "Data buffered between local pipelines uses a lot of memory"
    suggestions = ("Lower pipeline_dop or check for a slow downstream operator",)

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        memory = context.node.common.peak_memory_bytes
        if memory <= GB:
            return None
        return self.diagnose(
            context,
            message=f"Local exchange peak memory {format_bytes(memory)}",
            measured=memory,
            threshold=GB,
        )


PROJECT_RULES = (
    ExpressionTimeRule,
    CommonSubExpressionRule,
    LocalExchangeMemoryRule,
)
