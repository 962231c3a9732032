"""Fragment-level diagnostic rules.

These run once per fragment and look at the fragment's own metrics plus
the min/max counters of its operator blocks.
"""

from typing import List, Optional

from ...models import FragmentInfo
from ...parser.values import format_duration_ms, try_parse_bytes, try_parse_duration_ms
from ..diagnostics import Diagnostic
from .base import ProfileRule, RuleCategory, RuleContext, skew_ratio


def _block_durations(fragment: FragmentInfo, key: str) -> List[float]:
    values = []
    for block in fragment.operators:
        parsed = try_parse_duration_ms(block.common.get(key))
        if parsed is not None:
            values.append(parsed)
    return values


def _block_bytes(fragment: FragmentInfo, key: str) -> List[int]:
    values = []
    for block in fragment.operators:
        parsed = try_parse_bytes(block.common.get(key))
        if parsed is not None:
            values.append(parsed)
    return values


class InstanceTimeSkewRule(ProfileRule):
    """F001: Fragment instances finish at very different times."""

    rule_id = "F001"
    name = "Instance Execution Time Skew"
    category = RuleCategory.FRAGMENT
    description = "Some instances of the fragment run much longer than others"
    suggestions = (
        "Check data distribution across buckets",
        "Review the bucketing strategy of the tables in this fragment",
    )

    SKEW_RATIO = 2.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        fragment = context.fragment
        max_times = _block_durations(fragment, "__MAX_OF_OperatorTotalTime")
        min_times = _block_durations(fragment, "__MIN_OF_OperatorTotalTime")
        if not max_times or not min_times:
            return None
        slowest = sum(max_times)
        if slowest < context.thresholds.min_operator_time_ms:
            return None
        ratio = skew_ratio(slowest, sum(min_times))
        if ratio is None or ratio <= self.SKEW_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Fragment {fragment.fragment_id} instance time is skewed, max/min {ratio:.2f}",
            measured=ratio,
            threshold=self.SKEW_RATIO,
        )


class InstanceMemorySkewRule(ProfileRule):
    """F002: Fragment instances use very different amounts of memory."""

    rule_id = "F002"
    name = "Instance Memory Skew"
    category = RuleCategory.FRAGMENT
    description = "Memory is concentrated on a few instances of the fragment"
    suggestions = ("Check for data skew on the fragment's input",)

    SKEW_RATIO = 2.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        fragment = context.fragment
        max_memory = _block_bytes(fragment, "__MAX_OF_OperatorPeakMemoryUsage")
        min_memory = _block_bytes(fragment, "__MIN_OF_OperatorPeakMemoryUsage")
        if not max_memory or not min_memory:
            return None
        ratio = skew_ratio(max(max_memory), max(min_memory))
        if ratio is None or ratio <= self.SKEW_RATIO:
            return None
        return self.diagnose(
            context,
            message=f"Fragment {fragment.fragment_id} instance memory is skewed, max/min {ratio:.2f}",
            measured=ratio,
            threshold=self.SKEW_RATIO,
        )


class PrepareTimeRule(ProfileRule):
    """F003: Fragment instance prepare time above one second."""

    rule_id = "F003"
    name = "Fragment Prepare Slow"
    category = RuleCategory.FRAGMENT
    description = "Instances spend a long time preparing before execution starts"
    suggestions = (
        "Check FE to BE RPC latency",
        "Reduce the number of tablets or partitions touched",
    )

    MAX_PREPARE_MS = 1000.0

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        metrics = context.fragment.metrics
        prepare = try_parse_duration_ms(
            metrics.get("__MAX_OF_FragmentInstancePrepareTime") or metrics.get("FragmentInstancePrepareTime")
        )
        if prepare is None or prepare <= self.MAX_PREPARE_MS:
            return None
        return self.diagnose(
            context,
            message=f"Fragment {context.fragment.fragment_id} prepare took {format_duration_ms(prepare)}",
            measured=prepare,
            threshold=self.MAX_PREPARE_MS,
        )


FRAGMENT_RULES = (
    InstanceTimeSkewRule,
    InstanceMemorySkewRule,
    PrepareTimeRule,
)
