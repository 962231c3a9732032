"""Exchange (network shuffle) diagnostic rules."""

from typing import Optional

from ...models import GB, ExchangeMetrics
from ...parser.values import format_bytes
from ..diagnostics import Diagnostic, Severity
from .base import ProfileRule, RuleCategory, RuleContext, skew_ratio


def _exchange(context: RuleContext) -> Optional[ExchangeMetrics]:
    exchange = context.specialized
    return exchange if isinstance(exchange, ExchangeMetrics) else None


class LargeNetworkTransferRule(ProfileRule):
    """E001: More than 1GB sent over the network. CRITICAL above 10GB."""

    rule_id = "E001"
    name = "Large Network Transfer"
    category = RuleCategory.EXCHANGE
    description = "A large volume of data is shuffled between backends"
    suggestions = (
        "Filter or aggregate earlier to shrink the shuffled data",
        "Use colocate or bucket shuffle joins to avoid the exchange",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        exchange = _exchange(context)
        if exchange is None or exchange.bytes_sent is None:
            return None
        threshold = context.thresholds.network_bytes
        if exchange.bytes_sent <= threshold:
            return None
        severity = Severity.CRITICAL if exchange.bytes_sent > 10 * GB else Severity.WARNING
        return self.diagnose(
            context,
            message=f"Exchange sent {format_bytes(exchange.bytes_sent)} (threshold {format_bytes(threshold)})",
            measured=exchange.bytes_sent,
            threshold=threshold,
            severity=severity,
        )


class NetworkTimeDominatesRule(ProfileRule):
    """E002: Network time is more than half the exchange's operator time."""

    rule_id = "E002"
    name = "High Network Time"
    category = RuleCategory.EXCHANGE
    description = "The exchange spends most of its time waiting on the network"
    suggestions = (
        "Check network bandwidth and latency between backends",
        "Enable exchange compression",
    )

    NETWORK_RATIO = 0.5

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        exchange = _exchange(context)
        operator_time = context.node.common.operator_time_ms
        if exchange is None or exchange.network_time_ms is None or operator_time <= 0:
            return None
        if operator_time < context.thresholds.min_operator_time_ms:
            return None
        ratio = exchange.network_time_ms / operator_time
        if ratio <= self.NETWORK_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Network time is {ratio:.1%} of exchange time",
            measured=ratio,
            threshold=self.NETWORK_RATIO,
        )


class ShuffleSkewRule(ProfileRule):
    """E003: Bytes sent are skewed across sender instances."""

    rule_id = "E003"
    name = "Shuffle Data Skew"
    category = RuleCategory.EXCHANGE
    description = "A few instances send most of the shuffled data"
    suggestions = ("Check the distribution of the shuffle (partition) keys",)

    SKEW_RATIO = 2.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        if _exchange(context) is None:
            return None
        ratio = skew_ratio(context.bytes("__MAX_OF_BytesSent"), context.bytes("__MIN_OF_BytesSent"))
        if ratio is None or ratio <= self.SKEW_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Shuffle bytes are skewed across instances, max/min {ratio:.2f}",
            measured=ratio,
            threshold=self.SKEW_RATIO,
        )


EXCHANGE_RULES = (
    LargeNetworkTransferRule,
    NetworkTimeDominatesRule,
    ShuffleSkewRule,
)
