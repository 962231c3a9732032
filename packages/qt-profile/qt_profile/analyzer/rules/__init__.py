"""Diagnostic rules organized by rule collection."""

from .aggregate_rules import (
    AGGREGATE_RULES,
    AggregateHashTableRule,
    AggregationSkewRule,
    HighCardinalityGroupByRule,
    LowLocalAggregationRule,
)
from .base import ProfileRule, RuleCategory, RuleContext
from .common_rules import (
    COMMON_RULES,
    ExecutionTimeSkewRule,
    MostConsumingOperatorRule,
    OperatorMemoryRule,
    SecondConsumingOperatorRule,
)
from .exchange_rules import (
    EXCHANGE_RULES,
    LargeNetworkTransferRule,
    NetworkTimeDominatesRule,
    ShuffleSkewRule,
)
from .fragment_rules import (
    FRAGMENT_RULES,
    InstanceMemorySkewRule,
    InstanceTimeSkewRule,
    PrepareTimeRule,
)
from .join_rules import (
    JOIN_RULES,
    BuildLargerThanProbeRule,
    JoinExplosionRule,
    LargeHashTableRule,
    NestLoopJoinRule,
    NoRuntimeFilterRule,
)
from .planner_rules import PLANNER_RULES, PlannerShareRule, SlowMetastoreRule, SlowOptimizerRule
from .project_rules import (
    PROJECT_RULES,
    CommonSubExpressionRule,
    ExpressionTimeRule,
    LocalExchangeMemoryRule,
)
from .query_rules import (
    QUERY_RULES,
    LongQueryRule,
    LongScheduleRule,
    LowCpuUtilizationRule,
    NetworkDominatesRule,
    QueryMemoryRule,
    QuerySpillRule,
    ScanDominatesRule,
    SlowProfileCollectionRule,
    SlowResultDeliveryRule,
)
from .scan_rules import (
    SCAN_RULES,
    IneffectiveFilterRule,
    IOBoundScanRule,
    LowCacheHitRule,
    ScanIOSkewRule,
    ScanRowsSkewRule,
    SlowScanRule,
)
from .sink_rules import SINK_RULES, ImportFilteredRowsRule, ImportRpcLatencyRule, ImportSkewRule
from .sort_rules import SORT_RULES, LargeSortRule, SortMemoryRule, SortSpillRule, WindowMemoryRule

__all__ = [
    "ProfileRule",
    "RuleCategory",
    "RuleContext",
    # Collections
    "AGGREGATE_RULES",
    "COMMON_RULES",
    "EXCHANGE_RULES",
    "FRAGMENT_RULES",
    "JOIN_RULES",
    "PLANNER_RULES",
    "PROJECT_RULES",
    "QUERY_RULES",
    "SCAN_RULES",
    "SINK_RULES",
    "SORT_RULES",
    # Planner
    "SlowMetastoreRule",
    "SlowOptimizerRule",
    "PlannerShareRule",
    # Query
    "LongQueryRule",
    "QueryMemoryRule",
    "QuerySpillRule",
    "LowCpuUtilizationRule",
    "ScanDominatesRule",
    "NetworkDominatesRule",
    "SlowProfileCollectionRule",
    "LongScheduleRule",
    "SlowResultDeliveryRule",
    # Scan
    "SlowScanRule",
    "ScanRowsSkewRule",
    "ScanIOSkewRule",
    "IneffectiveFilterRule",
    "IOBoundScanRule",
    "LowCacheHitRule",
    # Join
    "JoinExplosionRule",
    "BuildLargerThanProbeRule",
    "LargeHashTableRule",
    "NoRuntimeFilterRule",
    "NestLoopJoinRule",
    # Aggregate
    "AggregationSkewRule",
    "AggregateHashTableRule",
    "HighCardinalityGroupByRule",
    "LowLocalAggregationRule",
    # Exchange
    "LargeNetworkTransferRule",
    "NetworkTimeDominatesRule",
    "ShuffleSkewRule",
    # Fragment
    "InstanceTimeSkewRule",
    "InstanceMemorySkewRule",
    "PrepareTimeRule",
    # Sink
    "ImportSkewRule",
    "ImportRpcLatencyRule",
    "ImportFilteredRowsRule",
    # Sort / window
    "LargeSortRule",
    "SortSpillRule",
    "SortMemoryRule",
    "WindowMemoryRule",
    # Project
    "ExpressionTimeRule",
    "CommonSubExpressionRule",
    "LocalExchangeMemoryRule",
    # Common
    "MostConsumingOperatorRule",
    "SecondConsumingOperatorRule",
    "OperatorMemoryRule",
    "ExecutionTimeSkewRule",
]
