"""Tests for the baseline TTL cache and its background refresh."""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from qt_profile.baseline import (
    AuditLogRecord,
    BaselineCacheManager,
    BaselineCalculator,
    BaselineRefreshTask,
    BaselineSource,
    BaselineStats,
    DriftDirection,
    PerformanceBaseline,
    QueryComplexity,
)
from qt_profile.config import ProfileSettings
from qt_profile.errors import AuditLogUnavailable


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def audit_baseline(cluster_id="c1", p95=1_000.0):
    stats = BaselineStats(
        avg_ms=p95 / 2, p50_ms=p95 / 2, p95_ms=p95, p99_ms=p95 * 1.2,
        max_ms=p95 * 2, std_dev_ms=p95 / 10, sample_count=40,
    )
    return PerformanceBaseline(
        cluster_id=cluster_id,
        by_complexity={QueryComplexity.SIMPLE: stats},
        source=BaselineSource.AUDIT,
        sample_count=40,
    )


def audit_records(count=40, ms=1_000.0):
    return [AuditLogRecord(query_time_ms=ms + i, complexity=QueryComplexity.SIMPLE) for i in range(count)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return BaselineCacheManager(ttl_seconds=3600, clock=clock)


# =============================================================================
# CACHE
# =============================================================================

class TestBaselineCacheManager:
    """Lookups never fail; sources move DEFAULT -> AUDIT -> STALE."""

    def test_miss_serves_default(self, cache):
        baseline = cache.get("c1")
        assert baseline.source is BaselineSource.DEFAULT
        assert baseline.is_default
        assert "c1" in cache

    def test_put_audit_baseline(self, cache):
        cache.put("c1", audit_baseline())
        assert cache.get("c1").source is BaselineSource.AUDIT

    def test_expired_entry_reported_stale(self, cache, clock):
        cache.put("c1", audit_baseline())
        clock.advance(3_600)
        baseline = cache.get("c1")
        assert baseline.source is BaselineSource.STALE
        assert baseline.has_data_for(QueryComplexity.SIMPLE)

    def test_put_default_baseline_stays_default(self, cache):
        cache.put("c1", PerformanceBaseline.default("c1"))
        assert cache.get("c1").source is BaselineSource.DEFAULT

    def test_mark_stale_keeps_data(self, cache):
        cache.put("c1", audit_baseline())
        cache.mark_stale("c1")
        baseline = cache.get("c1")
        assert baseline.source is BaselineSource.STALE
        assert baseline.for_complexity(QueryComplexity.SIMPLE).sample_count == 40

    def test_mark_stale_on_default_entry(self, cache):
        cache.mark_stale("c1")
        assert cache.get("c1").source is BaselineSource.DEFAULT

    def test_entries_due(self, cache, clock):
        cache.get("fresh-default")
        cache.put("fresh", audit_baseline("fresh"))
        assert cache.entries_due() == ["fresh-default"]
        clock.advance(3_400)
        assert cache.entries_due(margin_seconds=300) == ["fresh", "fresh-default"]

    def test_invalidate_and_clear(self, cache):
        cache.put("c1", audit_baseline())
        cache.get("c2")
        assert cache.invalidate("c1") is not None
        assert cache.invalidate("c1") is None
        assert cache.clusters() == ["c2"]
        cache.clear()
        assert len(cache) == 0

    def test_concurrent_misses_create_one_entry(self, cache):
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.get("c1"), range(32)))
        assert len(cache) == 1
        assert all(r.source is BaselineSource.DEFAULT for r in results)


class TestDrift:

    def test_slower(self, cache):
        cache.put("c1", audit_baseline(p95=1_000.0))
        drifts = cache.put("c1", audit_baseline(p95=3_000.0))
        assert len(drifts) == 1
        assert drifts[0].direction is DriftDirection.SLOWER
        assert drifts[0].ratio == pytest.approx(3.0)
        assert drifts[0].complexity is QueryComplexity.SIMPLE

    def test_faster(self, cache):
        cache.put("c1", audit_baseline(p95=1_000.0))
        drifts = cache.put("c1", audit_baseline(p95=400.0))
        assert [d.direction for d in drifts] == [DriftDirection.FASTER]

    def test_within_band(self, cache):
        cache.put("c1", audit_baseline(p95=1_000.0))
        assert cache.put("c1", audit_baseline(p95=1_500.0)) == []

    def test_no_drift_from_defaults(self, cache):
        cache.get("c1")
        assert cache.put("c1", audit_baseline(p95=50_000.0)) == []


# =============================================================================
# BACKGROUND REFRESH
# =============================================================================

class StaticSource:
    """Synchronous audit source; failing clusters raise AuditLogUnavailable."""

    def __init__(self, records, failing=()):
        self.records = records
        self.failing = set(failing)
        self.calls = []

    def fetch(self, cluster_id, since):
        self.calls.append(cluster_id)
        if cluster_id in self.failing:
            raise AuditLogUnavailable(cluster_id, "connection refused")
        return list(self.records)


class AsyncSource:

    def __init__(self, records, delay=0.0):
        self.records = records
        self.delay = delay

    async def fetch(self, cluster_id, since):
        await asyncio.sleep(self.delay)
        return list(self.records)


class BlockingSource:
    """Synchronous source whose calls hang until released."""

    def __init__(self, records):
        self.records = records
        self.release = threading.Event()
        self.calls = []

    def fetch(self, cluster_id, since):
        self.calls.append(cluster_id)
        self.release.wait(5.0)
        return list(self.records)


class TestBaselineRefreshTask:

    @pytest.mark.asyncio
    async def test_refresh_switches_default_to_audit(self, cache):
        task = BaselineRefreshTask(cache, StaticSource(audit_records()))
        assert cache.get("c1").source is BaselineSource.DEFAULT

        assert await task.refresh_cluster("c1") is True
        baseline = cache.get("c1")
        assert baseline.source is BaselineSource.AUDIT
        assert baseline.sample_count == 40

    @pytest.mark.asyncio
    async def test_coroutine_source(self, cache):
        task = BaselineRefreshTask(cache, AsyncSource(audit_records()))
        assert await task.refresh_cluster("c1") is True
        assert cache.get("c1").source is BaselineSource.AUDIT

    @pytest.mark.asyncio
    async def test_too_few_records_stay_default(self, cache):
        task = BaselineRefreshTask(cache, StaticSource(audit_records(count=5)))
        assert await task.refresh_cluster("c1") is True
        assert cache.get("c1").source is BaselineSource.DEFAULT

    @pytest.mark.asyncio
    async def test_failure_marks_existing_entry_stale(self, cache):
        cache.put("c1", audit_baseline())
        task = BaselineRefreshTask(cache, StaticSource([], failing={"c1"}))
        assert await task.refresh_cluster("c1") is False
        assert cache.get("c1").source is BaselineSource.STALE

    @pytest.mark.asyncio
    async def test_failure_on_default_entry_stays_default(self, cache):
        task = BaselineRefreshTask(cache, StaticSource([], failing={"c1"}))
        assert await task.refresh_cluster("c1") is False
        assert cache.get("c1").source is BaselineSource.DEFAULT

    @pytest.mark.asyncio
    async def test_timeout_marks_stale(self, cache):
        cache.put("c1", audit_baseline())
        task = BaselineRefreshTask(cache, AsyncSource(audit_records(), delay=1.0), timeout_seconds=0.05)
        assert await task.refresh_cluster("c1") is False
        assert cache.get("c1").source is BaselineSource.STALE

    @pytest.mark.asyncio
    async def test_refresh_once_isolates_failures(self, cache):
        source = StaticSource(audit_records(), failing={"b"})
        task = BaselineRefreshTask(cache, source, clusters=["a", "b"])
        results = await task.refresh_once()
        assert results == {"a": True, "b": False}
        assert cache.get("a").source is BaselineSource.AUDIT

    @pytest.mark.asyncio
    async def test_refresh_once_skips_fresh_entries(self, cache):
        source = StaticSource(audit_records())
        task = BaselineRefreshTask(cache, source, clusters=["a"])
        await task.refresh_once()
        assert await task.refresh_once() == {}
        assert await task.refresh_once(force=True) == {"a": True}
        assert source.calls == ["a", "a"]

    @pytest.mark.asyncio
    async def test_register_creates_entry(self, cache):
        task = BaselineRefreshTask(cache, StaticSource(audit_records()))
        task.register("c9")
        assert "c9" in cache
        assert "c9" in task.known_clusters()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, cache):
        source = StaticSource(audit_records())
        task = BaselineRefreshTask(
            cache, source, calculator=BaselineCalculator(), interval_seconds=60, clusters=["c1"],
        )
        task.start()
        assert task.is_running
        for _ in range(200):
            if cache.get_entry("c1").source is BaselineSource.AUDIT:
                break
            await asyncio.sleep(0.01)
        await task.stop()
        assert not task.is_running
        assert source.calls == ["c1"]
        assert cache.get("c1").source is BaselineSource.AUDIT

    def test_from_settings(self, cache):
        settings = ProfileSettings(
            baseline_refresh_interval_seconds=120,
            baseline_refresh_timeout_seconds=5.0,
            baseline_min_sample_size=10,
            baseline_window_hours=24,
        )
        task = BaselineRefreshTask.from_settings(cache, StaticSource([]), settings=settings, clusters=["c1"])
        assert task.interval_seconds == 120
        assert task.timeout_seconds == 5.0
        assert task.calculator.min_sample_size == 10
        assert task.calculator.time_range_hours == 24
        assert task.known_clusters() == {"c1"}
        assert task.fetch_workers == settings.baseline_fetch_workers

    @pytest.mark.asyncio
    async def test_hung_sync_fetch_is_not_resubmitted(self, cache):
        cache.put("c1", audit_baseline())
        source = BlockingSource(audit_records())
        task = BaselineRefreshTask(cache, source, timeout_seconds=0.05, fetch_workers=2)
        try:
            assert await task.refresh_cluster("c1") is False
            assert await task.refresh_cluster("c1") is False
            assert source.calls == ["c1"]
            assert task.pending_fetches() == {"c1"}
            assert cache.get("c1").source is BaselineSource.STALE

            source.release.set()
            for _ in range(200):
                if not task.pending_fetches():
                    break
                await asyncio.sleep(0.01)
            assert await task.refresh_cluster("c1") is True
            assert source.calls == ["c1", "c1"]
            assert cache.get("c1").source is BaselineSource.AUDIT
        finally:
            source.release.set()
            await task.stop()

    @pytest.mark.asyncio
    async def test_readers_see_complete_baselines_during_refresh(self, cache):
        task = BaselineRefreshTask(cache, StaticSource(audit_records()))
        done = threading.Event()

        def read_until_done():
            seen = []
            while not done.is_set() and len(seen) < 10_000:
                seen.append(cache.get("c1"))
            seen.append(cache.get("c1"))
            return seen

        with ThreadPoolExecutor(max_workers=4) as pool:
            readers = [pool.submit(read_until_done) for _ in range(4)]
            try:
                assert await task.refresh_cluster("c1") is True
            finally:
                done.set()
            reads = [reader.result() for reader in readers]
        await task.stop()

        for seen in reads:
            for baseline in seen:
                assert isinstance(baseline, PerformanceBaseline)
                assert baseline.cluster_id == "c1"
                assert baseline.source in (BaselineSource.DEFAULT, BaselineSource.AUDIT)
                if baseline.source is BaselineSource.AUDIT:
                    assert baseline.sample_count == 40
                    assert baseline.has_data_for(QueryComplexity.SIMPLE)
                else:
                    assert baseline.is_default
            assert seen[-1].source is BaselineSource.AUDIT
