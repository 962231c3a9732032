"""Result and table sink (import) diagnostic rules."""

from typing import Optional

from ...models import SinkMetrics
from ..diagnostics import Diagnostic, ParameterSuggestion
from .base import ProfileRule, RuleCategory, RuleContext, skew_ratio


def _sink(context: RuleContext) -> Optional[SinkMetrics]:
    sink = context.specialized
    return sink if isinstance(sink, SinkMetrics) else None


class ImportSkewRule(ProfileRule):
    """I001: Chunks pushed into the sink are skewed across instances."""

    rule_id = "I001"
    name = "Import Data Skew"
    category = RuleCategory.SINK
    description = "A few sink instances write most of the data"
    suggestions = ("Check the distribution key of the target table",)

    SKEW_RATIO = 3.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        if _sink(context) is None:
            return None
        ratio = skew_ratio(context.number("__MAX_OF_PushChunkNum"), context.number("__MIN_OF_PushChunkNum"))
        if ratio is None or ratio <= self.SKEW_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Sink input is skewed across instances, max/min {ratio:.2f}",
            measured=ratio,
            threshold=self.SKEW_RATIO,
        )


class ImportRpcLatencyRule(ProfileRule):
    """I002: Client-side RPC time is far above server-side time."""

    rule_id = "I002"
    name = "Import RPC Latency"
    category = RuleCategory.SINK
    description = "Sink RPCs spend most of their time in transit or queued on the client"
    suggestions = (
        "Check network latency between backends",
        "Increase the load channel batch size",
    )

    LATENCY_RATIO = 2.0
    MIN_CLIENT_TIME_MS = 1000.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        if _sink(context) is None:
            return None
        client_time = context.duration_ms("RpcClientSideTime")
        server_time = context.duration_ms("RpcServerSideTime")
        if client_time is None or not server_time or client_time <= self.MIN_CLIENT_TIME_MS:
            return None
        ratio = client_time / server_time
        if ratio <= self.LATENCY_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"RPC client time is {ratio:.1f}x the server time",
            measured=ratio,
            threshold=self.LATENCY_RATIO,
        )


class ImportFilteredRowsRule(ProfileRule):
    """I003: More than 10% of the loaded rows were filtered out."""

    rule_id = "I003"
    name = "Import Rows Filtered"
    category = RuleCategory.SINK
    description = "Many rows were rejected during load, usually from type or format mismatches"
    suggestions = (
        "Inspect the load error log for rejected rows",
        "Check column types and source data format",
    )

    FILTER_RATIO = 0.1
    MIN_FILTERED = 1000

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        sink = _sink(context)
        if sink is None or not sink.rows_filtered or sink.rows_filtered <= self.MIN_FILTERED:
            return None
        total = context.number("RowsRead") or context.node.common.push_rows
        if not total:
            return None
        ratio = sink.rows_filtered / total
        if ratio <= self.FILTER_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"{sink.rows_filtered:,.0f} rows filtered ({ratio:.1%} of input)",
            measured=ratio,
            threshold=self.FILTER_RATIO,
            parameters=[
                ParameterSuggestion(
                    name="max_filter_ratio",
                    recommended="0",
                    description="Fail the load instead of silently dropping rows",
                )
            ],
        )


SINK_RULES = (
    ImportSkewRule,
    ImportRpcLatencyRule,
    ImportFilteredRowsRule,
)
