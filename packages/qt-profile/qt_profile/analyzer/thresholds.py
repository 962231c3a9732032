"""Dynamic thresholds.

Thresholds start from static defaults tuned per query type and storage
backend, then adapt to:
- cluster shape (backend count drives skew tolerance, BE memory drives memory cutoffs)
- query complexity (simple queries are held to tighter time limits)
- the cluster's historical baseline, when one is available

compute_thresholds() is pure and cheap; it is called once per analysis and
never cached.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from ..baseline import DEFAULT_BASELINES, PerformanceBaseline, QueryComplexity
from ..config import ProfileSettings, get_settings
from ..models import ClusterInfo

MB = 1024 ** 2
GB = 1024 ** 3

MIN_ROWS_FOR_SKEW = 100_000
MIN_ROWS_FOR_FILTER = 100_000
MIN_ROWS_FOR_JOIN = 10_000
MIN_OPERATOR_TIME_MS = 500.0
DEFAULT_CACHE_HIT_THRESHOLD = 0.5
DEFAULT_NETWORK_BYTES = 1 * GB

COMPLEXITY_FACTORS = {
    QueryComplexity.SIMPLE: 0.5,
    QueryComplexity.MEDIUM: 1.0,
    QueryComplexity.COMPLEX: 2.0,
    QueryComplexity.VERY_COMPLEX: 3.0,
}

MIN_QUERY_TIME_BY_COMPLEXITY_MS = {
    QueryComplexity.SIMPLE: 5_000.0,
    QueryComplexity.MEDIUM: 10_000.0,
    QueryComplexity.COMPLEX: 30_000.0,
    QueryComplexity.VERY_COMPLEX: 60_000.0,
}

# Baseline scaling of per-operator cutoffs stays within this band
BASELINE_SCALE_BOUNDS = (0.5, 2.0)

_LEADING_COMMENTS = re.compile(r"^\s*(?:(?:--[^\n]*\n)|(?:/\*.*?\*/)|\s)*", re.DOTALL)
_CTAS = re.compile(r"^CREATE\s+TABLE\b.*?\bAS\s*\(?\s*(?:SELECT|WITH)\b", re.DOTALL)


class QueryType(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    EXPORT = "export"
    ANALYZE = "analyze"
    CTAS = "ctas"
    LOAD = "load"
    UNKNOWN = "unknown"

    @classmethod
    def from_sql(cls, sql: str) -> "QueryType":
        """Classify a statement by its leading keyword."""
        text = _LEADING_COMMENTS.sub("", sql or "", count=1).upper()
        if text.startswith("INSERT"):
            return cls.INSERT
        if text.startswith("EXPORT"):
            return cls.EXPORT
        if text.startswith("ANALYZE"):
            return cls.ANALYZE
        if _CTAS.match(text):
            return cls.CTAS
        if text.startswith("LOAD") or re.search(r"\b(?:BROKER|STREAM|ROUTINE)\s+LOAD\b", text):
            return cls.LOAD
        if text.startswith("SELECT") or text.startswith("WITH") or text.startswith("("):
            return cls.SELECT
        return cls.UNKNOWN

    @classmethod
    def from_profile(cls, sql: str, summary_query_type: str = "") -> "QueryType":
        """Like from_sql, but trusts a profile's 'Query Type: Load'."""
        if (summary_query_type or "").strip().lower() == "load":
            return cls.LOAD
        return cls.from_sql(sql)

    @property
    def base_time_threshold_ms(self) -> float:
        return _BASE_TIME_MS[self]

    @property
    def min_diagnosis_time_ms(self) -> float:
        """Queries faster than this are not worth diagnosing."""
        if self in (QueryType.INSERT, QueryType.LOAD, QueryType.CTAS):
            return 500.0
        return 1_000.0

    @property
    def skipped_rules(self) -> FrozenSet[str]:
        return _SKIPPED_RULES.get(self, frozenset())

    def allows(self, rule_id: str) -> bool:
        """Whether a rule is meaningful for this query type."""
        if self is QueryType.LOAD:
            return rule_id.startswith("I") or rule_id == "REG001"
        return rule_id not in self.skipped_rules


_BASE_TIME_MS: Dict[QueryType, float] = {
    QueryType.SELECT: 10_000.0,
    QueryType.INSERT: 300_000.0,
    QueryType.EXPORT: 600_000.0,
    QueryType.ANALYZE: 600_000.0,
    QueryType.CTAS: 300_000.0,
    QueryType.LOAD: 1_800_000.0,
    QueryType.UNKNOWN: 60_000.0,
}

_SKIPPED_RULES: Dict[QueryType, FrozenSet[str]] = {
    QueryType.INSERT: frozenset({"Q001", "S003"}),
    QueryType.CTAS: frozenset({"Q001", "S003"}),
    QueryType.EXPORT: frozenset({"S007", "Q005"}),
    QueryType.ANALYZE: frozenset({"S003", "S007", "Q005", "Q006"}),
}


class StorageBackend(str, Enum):
    LOCAL = "local"
    HDFS = "hdfs"
    S3 = "s3"
    OSS = "oss"
    COS = "cos"
    GCS = "gcs"
    OTHER = "other"

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> "StorageBackend":
        try:
            return cls((tag or "local").strip().lower())
        except ValueError:
            return cls.OTHER

    @property
    def is_object_store(self) -> bool:
        return self in (StorageBackend.S3, StorageBackend.OSS, StorageBackend.COS, StorageBackend.GCS)

    @property
    def small_file_bytes(self) -> int:
        if self.is_object_store:
            return 128 * MB
        if self is StorageBackend.LOCAL:
            return 32 * MB
        return 64 * MB

    @property
    def min_file_count(self) -> int:
        return 200 if self is StorageBackend.LOCAL else 500


def skew_base_for_backends(backend_num: int) -> float:
    """Larger clusters tolerate more skew before it is worth reporting."""
    if backend_num > 32:
        return 3.5
    if backend_num > 16:
        return 3.0
    if backend_num > 8:
        return 2.5
    return 2.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ThresholdSet:
    """Concrete cutoffs for one analysis."""
    query_type: QueryType
    complexity: QueryComplexity
    storage: StorageBackend
    query_time_ms: float
    min_diagnosis_time_ms: float
    scan_time_ms: float
    operator_memory_bytes: float
    hash_table_memory_bytes: float
    query_memory_bytes: float
    skew_ratio: float
    cache_hit_ratio: float = DEFAULT_CACHE_HIT_THRESHOLD
    small_file_bytes: float = 64 * MB
    min_file_count: int = 500
    network_bytes: float = DEFAULT_NETWORK_BYTES
    min_rows_for_skew: float = MIN_ROWS_FOR_SKEW
    min_rows_for_filter: float = MIN_ROWS_FOR_FILTER
    min_rows_for_join: float = MIN_ROWS_FOR_JOIN
    min_operator_time_ms: float = MIN_OPERATOR_TIME_MS
    source: str = "default"
    baseline_p95_ms: Optional[float] = None
    baseline_sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["query_type"] = self.query_type.value
        data["complexity"] = self.complexity.label
        data["storage"] = self.storage.value
        return data


def compute_thresholds(
    cluster: ClusterInfo,
    query_type: QueryType,
    storage: StorageBackend,
    complexity: QueryComplexity,
    baseline: Optional[PerformanceBaseline] = None,
    settings: Optional[ProfileSettings] = None,
) -> ThresholdSet:
    """Derive the threshold set for one analysis.

    Args:
        cluster: Cluster shape (backend count, BE memory)
        query_type: Statement classification
        storage: Storage backend of the scanned data
        complexity: Query complexity bucket
        baseline: Historical baseline; default-sourced baselines are ignored
        settings: Engine settings (per-backend scan defaults)

    Returns:
        ThresholdSet with source="baseline" when real history shaped it.
    """
    settings = settings or get_settings()
    min_query_time = MIN_QUERY_TIME_BY_COMPLEXITY_MS[complexity]
    default_scan_time = settings.scan_time_threshold_for(storage.value)

    query_time = max(query_type.base_time_threshold_ms * COMPLEXITY_FACTORS[complexity], min_query_time)
    scan_time = default_scan_time
    skew = skew_base_for_backends(cluster.backend_num)
    source = "default"
    baseline_p95: Optional[float] = None
    sample_count = 0

    if baseline is not None and baseline.has_data_for(complexity):
        stats = baseline.for_complexity(complexity)
        baseline_p95 = stats.p95_ms
        sample_count = stats.sample_count
        source = "baseline"
        # Audit history is dominated by SELECT traffic; other statement types keep their static limits
        if query_type in (QueryType.SELECT, QueryType.UNKNOWN):
            query_time = max(stats.p95_ms + 2 * stats.std_dev_ms, min_query_time)
        default_p95 = DEFAULT_BASELINES[complexity].p95_ms
        scale = _clamp(stats.p95_ms / default_p95, *BASELINE_SCALE_BOUNDS) if default_p95 else 1.0
        scan_time = default_scan_time * scale
        skew += _clamp((stats.tail_ratio - 2.0) * 0.2, 0.0, 1.0)

    be_memory = float(cluster.be_memory_limit_bytes)
    return ThresholdSet(
        query_type=query_type,
        complexity=complexity,
        storage=storage,
        query_time_ms=query_time,
        min_diagnosis_time_ms=query_type.min_diagnosis_time_ms,
        scan_time_ms=scan_time,
        operator_memory_bytes=_clamp(be_memory * 0.10, 1 * GB, 10 * GB),
        hash_table_memory_bytes=_clamp(be_memory * 0.05, 512 * MB, 5 * GB),
        query_memory_bytes=min(be_memory * 0.8, 10 * GB),
        skew_ratio=skew,
        cache_hit_ratio=DEFAULT_CACHE_HIT_THRESHOLD,
        small_file_bytes=storage.small_file_bytes,
        min_file_count=storage.min_file_count,
        source=source,
        baseline_p95_ms=baseline_p95,
        baseline_sample_count=sample_count,
    )
