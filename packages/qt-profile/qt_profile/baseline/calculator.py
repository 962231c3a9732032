"""Historical performance baselines computed from audit log records."""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .complexity import QueryComplexity, classify_complexity

logger = logging.getLogger(__name__)

SUCCESS_STATES = frozenset({"EOF", "OK", "FINISHED"})


def as_utc(moment: datetime) -> datetime:
    """Aware UTC view of a timestamp; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class BaselineSource(str, Enum):
    """Where a baseline came from."""
    AUDIT = "audit"
    DEFAULT = "default"
    STALE = "stale"


@dataclass
class AuditLogRecord:
    """One audit log row, as fetched by the host's SQL client."""
    query_id: str = ""
    query_text: str = ""
    query_time_ms: float = 0.0
    state: str = "EOF"
    table: Optional[str] = None
    user: str = ""
    db: str = ""
    timestamp: Optional[datetime] = None
    query_type: str = ""
    complexity: Optional[QueryComplexity] = None

    @property
    def is_success(self) -> bool:
        return (self.state or "").upper() in SUCCESS_STATES

    def resolved_complexity(self) -> QueryComplexity:
        if self.complexity is not None:
            return self.complexity
        return classify_complexity(self.query_text)


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Nearest-rank style percentile over an already sorted sequence."""
    if not sorted_values:
        return 0.0
    idx = int(len(sorted_values) * p)
    idx = min(max(idx, 0), len(sorted_values) - 1)
    return sorted_values[idx]


@dataclass(frozen=True)
class BaselineStats:
    """Execution-time statistics in milliseconds."""
    avg_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float
    max_ms: float
    std_dev_ms: float
    sample_count: int = 0

    @classmethod
    def from_samples(cls, samples: Iterable[float]) -> "BaselineStats":
        values = sorted(samples)
        if not values:
            raise ValueError("Cannot compute statistics without samples")
        return cls(
            avg_ms=statistics.fmean(values),
            p50_ms=percentile(values, 0.50),
            p95_ms=percentile(values, 0.95),
            p99_ms=percentile(values, 0.99),
            max_ms=values[-1],
            std_dev_ms=statistics.pstdev(values),
            sample_count=len(values),
        )

    @property
    def tail_ratio(self) -> float:
        """p99 / p50; a measure of how heavy the latency tail is."""
        if self.p50_ms <= 0:
            return 1.0
        return self.p99_ms / self.p50_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_ms": round(self.avg_ms, 2),
            "p50_ms": round(self.p50_ms, 2),
            "p95_ms": round(self.p95_ms, 2),
            "p99_ms": round(self.p99_ms, 2),
            "max_ms": round(self.max_ms, 2),
            "std_dev_ms": round(self.std_dev_ms, 2),
            "sample_count": self.sample_count,
        }


# Static defaults used whenever no audit data is available
DEFAULT_BASELINES: Dict[QueryComplexity, BaselineStats] = {
    QueryComplexity.SIMPLE: BaselineStats(2_000, 1_500, 4_000, 6_000, 10_000, 1_000),
    QueryComplexity.MEDIUM: BaselineStats(5_000, 4_000, 10_000, 15_000, 30_000, 3_000),
    QueryComplexity.COMPLEX: BaselineStats(15_000, 12_000, 30_000, 45_000, 90_000, 8_000),
    QueryComplexity.VERY_COMPLEX: BaselineStats(45_000, 35_000, 90_000, 120_000, 300_000, 20_000),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PerformanceBaseline:
    """Per-cluster baseline statistics. Always resolvable to some value."""
    cluster_id: str
    by_complexity: Mapping[QueryComplexity, BaselineStats] = field(default_factory=dict)
    by_table: Mapping[str, BaselineStats] = field(default_factory=dict)
    by_user: Mapping[str, BaselineStats] = field(default_factory=dict)
    weekday_trend: Mapping[int, float] = field(default_factory=dict)
    peak_hours: Tuple[int, ...] = ()
    source: BaselineSource = BaselineSource.DEFAULT
    computed_at: datetime = field(default_factory=_utcnow)
    sample_count: int = 0

    @classmethod
    def default(cls, cluster_id: str) -> "PerformanceBaseline":
        return cls(cluster_id=cluster_id, by_complexity=dict(DEFAULT_BASELINES), source=BaselineSource.DEFAULT)

    @property
    def is_default(self) -> bool:
        return self.sample_count == 0

    def for_complexity(self, complexity: QueryComplexity) -> BaselineStats:
        """Stats for a complexity bucket, falling back to the static default."""
        stats = self.by_complexity.get(complexity)
        if stats is None:
            return DEFAULT_BASELINES[complexity]
        return stats

    def has_data_for(self, complexity: QueryComplexity) -> bool:
        stats = self.by_complexity.get(complexity)
        return stats is not None and stats.sample_count > 0

    def with_source(self, source: BaselineSource) -> "PerformanceBaseline":
        return replace(self, source=source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "source": self.source.value,
            "computed_at": self.computed_at.isoformat(),
            "sample_count": self.sample_count,
            "by_complexity": {c.label: s.to_dict() for c, s in sorted(self.by_complexity.items())},
            "by_table": {t: s.to_dict() for t, s in sorted(self.by_table.items())},
            "by_user": {u: s.to_dict() for u, s in sorted(self.by_user.items())},
            "weekday_trend": {str(d): round(v, 2) for d, v in sorted(self.weekday_trend.items())},
            "peak_hours": list(self.peak_hours),
        }


class BaselineCalculator:
    """Pure computation of a PerformanceBaseline from audit log records.

    Fails open: empty or unusable input yields the static default baseline.
    """

    def __init__(self, min_sample_size: int = 30, time_range_hours: int = 168, peak_hour_factor: float = 1.2):
        self.min_sample_size = min_sample_size
        self.time_range_hours = time_range_hours
        self.peak_hour_factor = peak_hour_factor

    def usable_records(self, records: Iterable[AuditLogRecord], now: Optional[datetime] = None) -> List[AuditLogRecord]:
        """Successful, positive-time records inside the window."""
        cutoff = None
        if now is not None:
            cutoff = as_utc(now) - timedelta(hours=self.time_range_hours)
        usable = []
        for record in records:
            try:
                if not record.is_success or float(record.query_time_ms) <= 0:
                    continue
                if cutoff is not None and record.timestamp is not None:
                    if as_utc(record.timestamp) < cutoff:
                        continue
            except (AttributeError, TypeError, ValueError):
                logger.debug("Skipping malformed audit record: %r", record)
                continue
            usable.append(record)
        return usable

    def _grouped_stats(self, groups: Mapping[Any, List[float]]) -> Dict[Any, BaselineStats]:
        return {
            key: BaselineStats.from_samples(samples)
            for key, samples in groups.items()
            if len(samples) >= self.min_sample_size
        }

    def calculate_by_complexity(self, records: Iterable[AuditLogRecord]) -> Dict[QueryComplexity, BaselineStats]:
        groups: Dict[QueryComplexity, List[float]] = defaultdict(list)
        for record in records:
            groups[record.resolved_complexity()].append(float(record.query_time_ms))
        return self._grouped_stats(groups)

    def calculate_for_table(self, records: Iterable[AuditLogRecord], table: str) -> Optional[BaselineStats]:
        samples = [float(r.query_time_ms) for r in records if r.table == table]
        if len(samples) < self.min_sample_size:
            return None
        return BaselineStats.from_samples(samples)

    def calculate(
        self,
        records: Iterable[AuditLogRecord],
        cluster_id: str = "default",
        now: Optional[datetime] = None,
    ) -> PerformanceBaseline:
        """Compute the baseline for one cluster."""
        try:
            usable = self.usable_records(records, now=now)
        except TypeError:
            logger.warning("Audit records for cluster %s are not iterable; using defaults", cluster_id)
            return PerformanceBaseline.default(cluster_id)

        if not usable:
            return PerformanceBaseline.default(cluster_id)

        by_complexity = self.calculate_by_complexity(usable)
        if not by_complexity:
            logger.info(
                "Cluster %s has %d usable audit rows, below the sample minimum %d per bucket",
                cluster_id, len(usable), self.min_sample_size,
            )
            return PerformanceBaseline.default(cluster_id)

        tables: Dict[str, List[float]] = defaultdict(list)
        users: Dict[str, List[float]] = defaultdict(list)
        weekdays: Dict[int, List[float]] = defaultdict(list)
        hours: Dict[int, List[float]] = defaultdict(list)
        for record in usable:
            time_ms = float(record.query_time_ms)
            if record.table:
                tables[record.table].append(time_ms)
            if record.user:
                users[record.user].append(time_ms)
            if record.timestamp is not None:
                weekdays[record.timestamp.weekday()].append(time_ms)
                hours[record.timestamp.hour].append(time_ms)

        overall_mean = statistics.fmean(float(r.query_time_ms) for r in usable)
        peak_hours = tuple(sorted(
            hour for hour, samples in hours.items()
            if statistics.fmean(samples) > overall_mean * self.peak_hour_factor
        ))

        return PerformanceBaseline(
            cluster_id=cluster_id,
            by_complexity=by_complexity,
            by_table=self._grouped_stats(tables),
            by_user=self._grouped_stats(users),
            weekday_trend={day: statistics.fmean(samples) for day, samples in weekdays.items()},
            peak_hours=peak_hours,
            source=BaselineSource.AUDIT,
            computed_at=now or _utcnow(),
            sample_count=len(usable),
        )
