"""Data model for parsed query profiles.

A ProfileDocument is produced once by the structural parser and is then
read-only input to thresholds, rules and root cause analysis. The operator
tree owns its nodes; cross-fragment exchange edges are kept in a side-table
(OperatorTree.exchange_links) rather than as child pointers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union


GB = 1024 ** 3
DEFAULT_BE_MEMORY_LIMIT = 64 * GB

# Nodes above these shares of total operator time are flagged as hot spots
MOST_CONSUMING_PERCENTAGE = 30.0
SECOND_CONSUMING_PERCENTAGE = 15.0


class OperatorCategory(str, Enum):
    """Rule-collection key for an operator."""
    SCAN = "scan"
    JOIN = "join"
    AGGREGATE = "aggregate"
    EXCHANGE = "exchange"
    SINK = "sink"
    SORT = "sort"
    PROJECT = "project"
    OTHER = "other"


class OperatorType(str, Enum):
    """Closed set of operator types understood by the engine."""
    OLAP_SCAN = "OLAP_SCAN"
    CONNECTOR_SCAN = "CONNECTOR_SCAN"
    HASH_JOIN = "HASH_JOIN"
    NEST_LOOP_JOIN = "NEST_LOOP_JOIN"
    AGGREGATE = "AGGREGATE"
    EXCHANGE = "EXCHANGE"
    EXCHANGE_SINK = "EXCHANGE_SINK"
    RESULT_SINK = "RESULT_SINK"
    OLAP_TABLE_SINK = "OLAP_TABLE_SINK"
    TABLE_SINK = "TABLE_SINK"
    SORT = "SORT"
    TOP_N = "TOP_N"
    LIMIT = "LIMIT"
    ANALYTIC = "ANALYTIC"
    PROJECT = "PROJECT"
    LOCAL_EXCHANGE = "LOCAL_EXCHANGE"
    CHUNK_ACCUMULATE = "CHUNK_ACCUMULATE"
    TABLE_FUNCTION = "TABLE_FUNCTION"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_name(cls, name: str) -> "OperatorType":
        """Map a raw operator name (from topology or a block header) to a type."""
        upper = (name or "").strip().upper()
        if upper in _NAME_ALIASES:
            return _NAME_ALIASES[upper]
        try:
            return cls(upper)
        except ValueError:
            pass
        # Pipeline operators carry suffixes such as _BUILD, _PROBE, _SOURCE
        for prefix, op_type in _PREFIX_ALIASES:
            if upper.startswith(prefix):
                return op_type
        if upper.endswith("TABLE_SINK"):
            return cls.TABLE_SINK
        if upper.endswith("_SCAN"):
            return cls.CONNECTOR_SCAN
        return cls.UNKNOWN

    @property
    def category(self) -> OperatorCategory:
        return _CATEGORIES.get(self, OperatorCategory.OTHER)

    @property
    def is_sink(self) -> bool:
        return self in (
            OperatorType.RESULT_SINK,
            OperatorType.OLAP_TABLE_SINK,
            OperatorType.TABLE_SINK,
            OperatorType.EXCHANGE_SINK,
        )


_NAME_ALIASES: Dict[str, OperatorType] = {
    "NESTLOOP_JOIN": OperatorType.NEST_LOOP_JOIN,
    "AGGREGATION": OperatorType.AGGREGATE,
    "EXCHANGE_SOURCE": OperatorType.EXCHANGE,
    "MERGE_EXCHANGE": OperatorType.EXCHANGE,
    "LOCAL_EXCHANGE_SINK": OperatorType.LOCAL_EXCHANGE,
    "LOCAL_EXCHANGE_SOURCE": OperatorType.LOCAL_EXCHANGE,
    "LOCAL_MERGE_SOURCE": OperatorType.LOCAL_EXCHANGE,
    "TOPN": OperatorType.TOP_N,
    "ANALYTIC_EVAL": OperatorType.ANALYTIC,
    "LAKE_SCAN": OperatorType.OLAP_SCAN,
    "HDFS_SCAN": OperatorType.CONNECTOR_SCAN,
    "FILE_SCAN": OperatorType.CONNECTOR_SCAN,
    "MYSQL_TABLE_SINK": OperatorType.TABLE_SINK,
}

_PREFIX_ALIASES: Tuple[Tuple[str, OperatorType], ...] = (
    ("HASH_JOIN", OperatorType.HASH_JOIN),
    ("NEST_LOOP_JOIN", OperatorType.NEST_LOOP_JOIN),
    ("NESTLOOP_JOIN", OperatorType.NEST_LOOP_JOIN),
    ("AGGREGATE", OperatorType.AGGREGATE),
    ("AGGREGATION", OperatorType.AGGREGATE),
    ("ANALYTIC", OperatorType.ANALYTIC),
    ("PARTITION_SORT", OperatorType.SORT),
    ("LOCAL_SORT", OperatorType.SORT),
    ("SORT", OperatorType.SORT),
    ("TOP_N", OperatorType.TOP_N),
    ("TABLE_FUNCTION", OperatorType.TABLE_FUNCTION),
)

_CATEGORIES: Dict[OperatorType, OperatorCategory] = {
    OperatorType.OLAP_SCAN: OperatorCategory.SCAN,
    OperatorType.CONNECTOR_SCAN: OperatorCategory.SCAN,
    OperatorType.HASH_JOIN: OperatorCategory.JOIN,
    OperatorType.NEST_LOOP_JOIN: OperatorCategory.JOIN,
    OperatorType.AGGREGATE: OperatorCategory.AGGREGATE,
    OperatorType.EXCHANGE: OperatorCategory.EXCHANGE,
    OperatorType.EXCHANGE_SINK: OperatorCategory.EXCHANGE,
    OperatorType.RESULT_SINK: OperatorCategory.SINK,
    OperatorType.OLAP_TABLE_SINK: OperatorCategory.SINK,
    OperatorType.TABLE_SINK: OperatorCategory.SINK,
    OperatorType.SORT: OperatorCategory.SORT,
    OperatorType.TOP_N: OperatorCategory.SORT,
    OperatorType.ANALYTIC: OperatorCategory.SORT,
    OperatorType.PROJECT: OperatorCategory.PROJECT,
    OperatorType.LIMIT: OperatorCategory.PROJECT,
    OperatorType.LOCAL_EXCHANGE: OperatorCategory.PROJECT,
}


# =============================================================================
# Specialized metrics (one shape per operator category)
# =============================================================================

@dataclass(frozen=True)
class ScanMetrics:
    """Scan-specific metrics. Absent fields stay None."""
    table: Optional[str] = None
    rollup: Optional[str] = None
    shared_scan: Optional[bool] = None
    scan_time_ms: Optional[float] = None
    io_time_ms: Optional[float] = None
    bytes_read: Optional[int] = None
    rows_read: Optional[float] = None
    raw_rows_read: Optional[float] = None
    input_rows: Optional[float] = None
    cached_pages: Optional[float] = None
    read_pages: Optional[float] = None
    bytes_read_local: Optional[int] = None
    bytes_read_remote: Optional[int] = None


@dataclass(frozen=True)
class JoinMetrics:
    """Join-specific metrics."""
    join_type: Optional[str] = None
    distribution_mode: Optional[str] = None
    build_rows: Optional[float] = None
    probe_rows: Optional[float] = None
    runtime_filter_num: Optional[float] = None
    hash_table_memory_bytes: Optional[int] = None


@dataclass(frozen=True)
class AggregateMetrics:
    """Aggregate-specific metrics."""
    agg_mode: Optional[str] = None
    chunk_by_chunk: Optional[bool] = None
    input_rows: Optional[float] = None
    agg_compute_time_ms: Optional[float] = None
    hash_table_size: Optional[float] = None
    hash_table_memory_bytes: Optional[int] = None


@dataclass(frozen=True)
class ExchangeMetrics:
    """Exchange metrics, taken from the sending (sink) side."""
    part_type: Optional[str] = None
    bytes_sent: Optional[int] = None
    network_time_ms: Optional[float] = None
    dest_fragment_ids: Optional[Tuple[str, ...]] = None
    dest_be_addresses: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class SinkMetrics:
    """Result/table sink metrics."""
    sink_type: Optional[str] = None
    append_chunk_time_ms: Optional[float] = None
    result_send_time_ms: Optional[float] = None
    rows_filtered: Optional[float] = None
    rpc_time_ms: Optional[float] = None


OperatorSpecializedMetrics = Union[ScanMetrics, JoinMetrics, AggregateMetrics, ExchangeMetrics, SinkMetrics]


@dataclass(frozen=True)
class CommonMetrics:
    """Metrics every operator reports (zero when the block omits them)."""
    operator_time_ms: float = 0.0
    operator_time_max_ms: Optional[float] = None
    operator_time_min_ms: Optional[float] = None
    cpu_time_ms: Optional[float] = None
    push_rows: float = 0.0
    pull_rows: float = 0.0
    push_chunks: float = 0.0
    pull_chunks: float = 0.0
    peak_memory_bytes: int = 0
    peak_memory_max_bytes: Optional[int] = None
    peak_memory_min_bytes: Optional[int] = None

    @property
    def output_rows(self) -> float:
        return self.pull_rows


# =============================================================================
# Document sections
# =============================================================================

@dataclass(frozen=True)
class SummaryInfo:
    """The Summary section of a profile."""
    query_id: str = ""
    start_time: str = ""
    end_time: str = ""
    total_time_ms: Optional[float] = None
    query_state: str = ""
    query_type: str = ""
    version: str = ""
    user: str = ""
    default_db: str = ""
    sql_statement: str = ""
    session_variables: Mapping[str, Any] = field(default_factory=dict)
    extra: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PlannerInfo:
    """Planner timings."""
    total_time_ms: Optional[float] = None
    optimizer_time_ms: Optional[float] = None
    hms_time_ms: float = 0.0
    hms_max_call_ms: float = 0.0
    hms_calls: int = 0
    metrics: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TopologyNode:
    id: int
    name: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    children: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Topology:
    """Decoded Topology JSON from the Execution section."""
    root_id: int
    nodes: Mapping[int, TopologyNode]


@dataclass(frozen=True)
class ExecutionInfo:
    """Query-level execution metrics."""
    topology: Topology
    metrics: Mapping[str, str] = field(default_factory=dict)
    wall_time_ms: Optional[float] = None
    cumulative_operator_time_ms: Optional[float] = None
    cpu_time_ms: Optional[float] = None
    scan_time_ms: Optional[float] = None
    network_time_ms: Optional[float] = None
    schedule_time_ms: Optional[float] = None
    result_deliver_time_ms: Optional[float] = None
    collect_profile_time_ms: Optional[float] = None
    peak_memory_per_node_bytes: Optional[int] = None
    sum_memory_bytes: Optional[int] = None
    spill_bytes: Optional[int] = None


@dataclass
class OperatorBlock:
    """Raw metric text of one operator inside a fragment pipeline."""
    name: str
    plan_node_id: int
    fragment_id: str
    pipeline_id: Optional[int] = None
    common: Dict[str, str] = field(default_factory=dict)
    unique: Dict[str, str] = field(default_factory=dict)

    @property
    def operator_type(self) -> OperatorType:
        return OperatorType.from_name(self.name)


@dataclass
class PipelineInfo:
    pipeline_id: int
    metrics: Dict[str, str] = field(default_factory=dict)

    @property
    def degree_of_parallelism(self) -> Optional[int]:
        raw = self.metrics.get("DegreeOfParallelism")
        if raw is None:
            return None
        try:
            return int(raw.split()[0])
        except (ValueError, IndexError):
            return None


@dataclass
class FragmentInfo:
    """One fragment: its metrics, pipelines and operator blocks."""
    fragment_id: str
    metrics: Dict[str, str] = field(default_factory=dict)
    pipelines: List[PipelineInfo] = field(default_factory=list)
    operators: List[OperatorBlock] = field(default_factory=list)

    @property
    def backend_addresses(self) -> List[str]:
        raw = self.metrics.get("BackendAddresses", "")
        return [a.strip() for a in raw.split(",") if a.strip()]

    @property
    def instance_ids(self) -> List[str]:
        raw = self.metrics.get("InstanceIds", "")
        return [i.strip() for i in raw.split(",") if i.strip()]

    @property
    def backend_num(self) -> int:
        raw = self.metrics.get("BackendNum")
        if raw is not None:
            try:
                return int(raw.split()[0])
            except (ValueError, IndexError):
                pass
        return len(self.backend_addresses)

    @property
    def instance_num(self) -> int:
        return len(self.instance_ids)


@dataclass(frozen=True)
class ClusterInfo:
    """Cluster shape supplied by the host alongside the profile."""
    backend_num: int = 1
    instance_num: Optional[int] = None
    be_memory_limit_bytes: int = DEFAULT_BE_MEMORY_LIMIT
    storage: str = "local"
    total_scan_bytes: Optional[int] = None


# =============================================================================
# Operator tree
# =============================================================================

@dataclass(frozen=True)
class ExchangeLink:
    """Logical pairing of an exchange sink with its exchange source."""
    sink_fragment_id: str
    source_fragment_id: str
    exchange_node_id: int


@dataclass
class OperatorNode:
    """One execution-plan operator. Owned by its OperatorTree."""
    id: int
    name: str
    operator_type: OperatorType
    fragment_id: str
    common: CommonMetrics = field(default_factory=CommonMetrics)
    specialized: Optional[OperatorSpecializedMetrics] = None
    children: Tuple[int, ...] = ()
    metrics: Dict[str, str] = field(default_factory=dict)
    time_percentage: float = 0.0
    window: Tuple[float, float] = (0.0, 0.0)

    @property
    def category(self) -> OperatorCategory:
        return self.operator_type.category

    @property
    def path(self) -> str:
        return f"{self.name} (plan_node_id={self.id})"

    @property
    def is_hotspot(self) -> bool:
        return self.time_percentage > MOST_CONSUMING_PERCENTAGE


@dataclass
class OperatorTree:
    """Operator tree rooted at the query's top fragment."""
    root_id: int
    nodes: Dict[int, OperatorNode]
    exchange_links: Dict[str, ExchangeLink] = field(default_factory=dict)
    fragment_roots: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self._consumers: Optional[Dict[int, int]] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    @property
    def root(self) -> OperatorNode:
        return self.nodes[self.root_id]

    def get(self, node_id: Optional[int]) -> Optional[OperatorNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def remote_children(self, node_id: int) -> List[int]:
        """Fragment roots feeding an exchange node from other fragments."""
        return sorted(
            self.fragment_roots[link.sink_fragment_id]
            for link in self.exchange_links.values()
            if link.exchange_node_id == node_id and link.sink_fragment_id in self.fragment_roots
        )

    def inputs_of(self, node_id: int) -> List[int]:
        """Physical children plus producers reached through an exchange."""
        node = self.nodes[node_id]
        return list(node.children) + self.remote_children(node_id)

    def walk(self) -> Iterator[OperatorNode]:
        """Depth-first walk from the root, following exchange links."""
        seen = set()
        stack = [self.root_id]
        while stack:
            node_id = stack.pop()
            if node_id in seen or node_id not in self.nodes:
                continue
            seen.add(node_id)
            yield self.nodes[node_id]
            stack.extend(reversed(self.inputs_of(node_id)))

    def consumer_of(self, node_id: int) -> Optional[int]:
        """The node that consumes this node's output, if any."""
        if self._consumers is None:
            consumers: Dict[int, int] = {}
            for node in self.nodes.values():
                for child in node.children:
                    consumers[child] = node.id
            for link in self.exchange_links.values():
                root = self.fragment_roots.get(link.sink_fragment_id)
                if root is not None and root not in consumers:
                    consumers[root] = link.exchange_node_id
            self._consumers = consumers
        return self._consumers.get(node_id)

    def downstream_path(self, node_id: int) -> List[int]:
        """Consumers of a node, nearest first, up to the root."""
        path: List[int] = []
        seen = {node_id}
        current = self.consumer_of(node_id)
        while current is not None and current not in seen:
            path.append(current)
            seen.add(current)
            current = self.consumer_of(current)
        return path

    def feeds(self, upstream_id: int, downstream_id: int) -> bool:
        """True if upstream's output reaches downstream."""
        return downstream_id in self.downstream_path(upstream_id)


@dataclass(frozen=True)
class ProfileDocument:
    """A parsed profile. Immutable once parsed."""
    raw_text: str
    sections: Mapping[str, str]
    summary: SummaryInfo
    planner: PlannerInfo
    execution: ExecutionInfo
    fragments: Tuple[FragmentInfo, ...]
    tree: OperatorTree

    @property
    def sql(self) -> str:
        return self.summary.sql_statement

    @property
    def total_time_ms(self) -> Optional[float]:
        if self.summary.total_time_ms is not None:
            return self.summary.total_time_ms
        return self.execution.wall_time_ms

    def cluster_info(self, **overrides: Any) -> ClusterInfo:
        """Cluster shape inferred from fragment metadata."""
        backends = max((f.backend_num for f in self.fragments), default=0)
        instances = sum(f.instance_num for f in self.fragments)
        values: Dict[str, Any] = {
            "backend_num": max(backends, 1),
            "instance_num": instances or None,
        }
        values.update(overrides)
        return ClusterInfo(**values)
