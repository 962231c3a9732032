"""Per-cluster TTL cache of performance baselines.

Readers never wait on a refresh: every entry is an immutable object and a
refresh swaps the whole entry in one dict assignment, so a reader sees the
old baseline or the new one, never a mix. The lock only guards creation of
missing entries.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .calculator import BaselineSource, PerformanceBaseline
from .complexity import QueryComplexity

logger = logging.getLogger(__name__)

# p95 moving outside this band between refreshes is reported as drift
DRIFT_LOWER_RATIO = 0.5
DRIFT_UPPER_RATIO = 2.0


class DriftDirection(str, Enum):
    SLOWER = "slower"
    FASTER = "faster"


@dataclass(frozen=True)
class BaselineDrift:
    """A significant p95 change for one complexity bucket."""
    cluster_id: str
    complexity: QueryComplexity
    previous_p95_ms: float
    current_p95_ms: float
    direction: DriftDirection

    @property
    def ratio(self) -> float:
        if self.previous_p95_ms <= 0:
            return float("inf")
        return self.current_p95_ms / self.previous_p95_ms


@dataclass(frozen=True)
class BaselineCacheEntry:
    """(baseline, computed-at, source) for one cluster."""
    baseline: PerformanceBaseline
    refreshed_at: float
    source: BaselineSource


def detect_drift(cluster_id: str, previous: PerformanceBaseline, current: PerformanceBaseline) -> List[BaselineDrift]:
    """Compare p95 per complexity between two audit-derived baselines."""
    drifts: List[BaselineDrift] = []
    for complexity in QueryComplexity:
        if not (previous.has_data_for(complexity) and current.has_data_for(complexity)):
            continue
        old = previous.for_complexity(complexity).p95_ms
        new = current.for_complexity(complexity).p95_ms
        if old <= 0:
            continue
        ratio = new / old
        if ratio > DRIFT_UPPER_RATIO:
            direction = DriftDirection.SLOWER
        elif ratio < DRIFT_LOWER_RATIO:
            direction = DriftDirection.FASTER
        else:
            continue
        drifts.append(BaselineDrift(cluster_id, complexity, old, new, direction))
    return drifts


class BaselineCacheManager:
    """TTL cache in front of the baseline calculator.

    get() never raises and never blocks on another cluster's refresh.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, BaselineCacheEntry] = {}
        self._create_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cluster_id: object) -> bool:
        return cluster_id in self._entries

    def clusters(self) -> List[str]:
        return sorted(self._entries)

    def _default_entry(self, cluster_id: str) -> BaselineCacheEntry:
        return BaselineCacheEntry(
            baseline=PerformanceBaseline.default(cluster_id),
            refreshed_at=self._clock(),
            source=BaselineSource.DEFAULT,
        )

    def get_entry(self, cluster_id: str) -> BaselineCacheEntry:
        entry = self._entries.get(cluster_id)
        if entry is not None:
            return entry
        with self._create_lock:
            entry = self._entries.get(cluster_id)
            if entry is None:
                entry = self._default_entry(cluster_id)
                self._entries[cluster_id] = entry
                logger.debug("Baseline cache miss for cluster %s; serving defaults", cluster_id)
            return entry

    def is_expired(self, entry: BaselineCacheEntry) -> bool:
        return self._clock() - entry.refreshed_at >= self.ttl_seconds

    def get(self, cluster_id: str) -> PerformanceBaseline:
        """Current baseline for a cluster; default on miss, stale past TTL."""
        entry = self.get_entry(cluster_id)
        source = entry.source
        if source is BaselineSource.AUDIT and self.is_expired(entry):
            source = BaselineSource.STALE
        if entry.baseline.source is source:
            return entry.baseline
        return entry.baseline.with_source(source)

    def put(self, cluster_id: str, baseline: PerformanceBaseline) -> List[BaselineDrift]:
        """Atomically replace a cluster's entry; returns detected drift."""
        previous = self._entries.get(cluster_id)
        source = BaselineSource.DEFAULT if baseline.is_default else BaselineSource.AUDIT
        entry = BaselineCacheEntry(
            baseline=baseline.with_source(source),
            refreshed_at=self._clock(),
            source=source,
        )
        self._entries[cluster_id] = entry

        drifts: List[BaselineDrift] = []
        if previous is not None and not previous.baseline.is_default and source is BaselineSource.AUDIT:
            drifts = detect_drift(cluster_id, previous.baseline, baseline)
            for drift in drifts:
                logger.info(
                    "Baseline drift on cluster %s (%s): p95 %.0fms -> %.0fms (%s)",
                    cluster_id, drift.complexity.label, drift.previous_p95_ms,
                    drift.current_p95_ms, drift.direction.value,
                )
        if previous is None or previous.source is not source:
            logger.info("Baseline for cluster %s now sourced from %s", cluster_id, source.value)
        return drifts

    def mark_stale(self, cluster_id: str) -> None:
        """Keep the current baseline but flag it stale after a failed refresh."""
        previous = self._entries.get(cluster_id)
        if previous is None:
            self.get_entry(cluster_id)
            return
        if previous.source is BaselineSource.DEFAULT:
            return
        self._entries[cluster_id] = BaselineCacheEntry(
            baseline=previous.baseline.with_source(BaselineSource.STALE),
            refreshed_at=previous.refreshed_at,
            source=BaselineSource.STALE,
        )

    def entries_due(self, margin_seconds: float = 0.0) -> List[str]:
        """Clusters whose entry is default, stale, or close to expiry."""
        now = self._clock()
        due = []
        for cluster_id, entry in list(self._entries.items()):
            if entry.source is not BaselineSource.AUDIT:
                due.append(cluster_id)
            elif now - entry.refreshed_at >= self.ttl_seconds - margin_seconds:
                due.append(cluster_id)
        return sorted(due)

    def invalidate(self, cluster_id: str) -> Optional[BaselineCacheEntry]:
        with self._create_lock:
            return self._entries.pop(cluster_id, None)

    def clear(self) -> None:
        with self._create_lock:
            self._entries.clear()
