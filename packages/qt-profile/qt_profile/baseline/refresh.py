"""Background refresh of cached baselines.

The task is owned by the host process: start() it inside the running event
loop at startup and await stop() at shutdown. Each tick refreshes every due
cluster concurrently, each under its own timeout, so one unreachable audit
log never holds up the others.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional, Protocol, Set

from ..config import ProfileSettings, get_settings
from ..errors import AuditLogUnavailable
from .cache import BaselineCacheManager
from .calculator import AuditLogRecord, BaselineCalculator

logger = logging.getLogger(__name__)


class AuditLogSource(Protocol):
    """Reads a bounded recent window of a cluster's audit log.

    fetch may be a plain function or a coroutine function. It raises
    AuditLogUnavailable when the log cannot be read.

    Plain functions run on the refresh task's own bounded thread pool. A
    timed-out call cannot be interrupted and keeps its worker until it
    returns, so the next refresh of that cluster is skipped (and the entry
    marked stale) while the earlier call is still running. Sources should
    still set their own socket timeouts.
    """

    def fetch(self, cluster_id: str, since: datetime) -> Iterable[AuditLogRecord]:
        ...


class BaselineRefreshTask:
    """Periodic, cancellable refresh of the baseline cache."""

    def __init__(
        self,
        cache: BaselineCacheManager,
        source: AuditLogSource,
        calculator: Optional[BaselineCalculator] = None,
        interval_seconds: float = 3600.0,
        timeout_seconds: float = 30.0,
        margin_seconds: float = 300.0,
        window_hours: int = 168,
        clusters: Optional[Iterable[str]] = None,
        fetch_workers: int = 4,
    ):
        self.cache = cache
        self.source = source
        self.calculator = calculator or BaselineCalculator(time_range_hours=window_hours)
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.margin_seconds = margin_seconds
        self.window_hours = window_hours
        self._clusters: Set[str] = set(clusters or ())
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.fetch_workers = fetch_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Dict[str, Future] = {}

    @classmethod
    def from_settings(
        cls,
        cache: BaselineCacheManager,
        source: AuditLogSource,
        settings: Optional[ProfileSettings] = None,
        clusters: Optional[Iterable[str]] = None,
    ) -> "BaselineRefreshTask":
        """Build a task whose schedule and sample window come from settings."""
        settings = settings or get_settings()
        calculator = BaselineCalculator(
            min_sample_size=settings.baseline_min_sample_size,
            time_range_hours=settings.baseline_window_hours,
        )
        return cls(
            cache,
            source,
            calculator=calculator,
            interval_seconds=settings.baseline_refresh_interval_seconds,
            timeout_seconds=settings.baseline_refresh_timeout_seconds,
            margin_seconds=settings.baseline_refresh_margin_seconds,
            window_hours=settings.baseline_window_hours,
            clusters=clusters,
            fetch_workers=settings.baseline_fetch_workers,
        )

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def register(self, cluster_id: str) -> None:
        """Track a cluster so it is refreshed on every tick."""
        self._clusters.add(cluster_id)
        self.cache.get_entry(cluster_id)

    def known_clusters(self) -> Set[str]:
        return self._clusters | set(self.cache.clusters())

    async def _fetch(self, cluster_id: str, since: datetime) -> Iterable[AuditLogRecord]:
        if inspect.iscoroutinefunction(self.source.fetch):
            return await self.source.fetch(cluster_id, since)
        pending = self._pending.get(cluster_id)
        if pending is not None and not pending.done():
            raise AuditLogUnavailable(cluster_id, "previous fetch is still running")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.fetch_workers, thread_name_prefix="baseline-fetch"
            )
        future = self._executor.submit(self.source.fetch, cluster_id, since)
        self._pending[cluster_id] = future
        return await asyncio.wrap_future(future)

    def pending_fetches(self) -> Set[str]:
        """Clusters whose synchronous fetch is still occupying a worker."""
        return {c for c, f in self._pending.items() if not f.done()}

    async def refresh_cluster(self, cluster_id: str) -> bool:
        """Refresh one cluster. Failures leave the old entry, marked stale."""
        now = datetime.now(timezone.utc)
        since = now - timedelta(hours=self.window_hours)
        try:
            records = await asyncio.wait_for(self._fetch(cluster_id, since), timeout=self.timeout_seconds)
            baseline = self.calculator.calculate(list(records), cluster_id=cluster_id, now=now)
        except asyncio.TimeoutError:
            logger.warning(
                "Baseline refresh for cluster %s timed out after %.1fs", cluster_id, self.timeout_seconds
            )
            self.cache.mark_stale(cluster_id)
            return False
        except Exception as e:
            # One cluster's failure must not affect the rest of the tick
            logger.warning("Baseline refresh for cluster %s failed: %s", cluster_id, e)
            self.cache.mark_stale(cluster_id)
            return False

        self.cache.put(cluster_id, baseline)
        logger.debug(
            "Refreshed baseline for cluster %s (%d samples)", cluster_id, baseline.sample_count
        )
        return True

    async def refresh_once(self, force: bool = False) -> Dict[str, bool]:
        """Run one tick: refresh every due cluster concurrently."""
        if force:
            due = sorted(self.known_clusters())
        else:
            due_in_cache = set(self.cache.entries_due(self.margin_seconds))
            due = sorted(c for c in self.known_clusters() if c in due_in_cache or c not in self.cache)
        if not due:
            return {}
        results = await asyncio.gather(*(self.refresh_cluster(c) for c in due))
        return dict(zip(due, results))

    async def run(self) -> None:
        """Refresh loop; returns when stop() is requested."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        logger.info("Baseline refresh task started (interval %.0fs)", self.interval_seconds)
        try:
            while not self._stop_event.is_set():
                await self.refresh_once()
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
        finally:
            logger.info("Baseline refresh task stopped")

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop."""
        if self.is_running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._stop_event is not None:
            self._stop_event.set()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.close()

    def close(self) -> None:
        """Release the fetch pool without waiting for hung calls."""
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
