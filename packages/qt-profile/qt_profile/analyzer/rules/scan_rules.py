"""Scan operator diagnostic rules."""

from typing import Optional

from ...models import GB, ScanMetrics
from ...parser.values import format_bytes, format_duration_ms
from ..diagnostics import Diagnostic, ParameterSuggestion, Severity
from .base import ProfileRule, RuleCategory, RuleContext, escalate, skew_ratio


def _scan(context: RuleContext) -> Optional[ScanMetrics]:
    scan = context.specialized
    return scan if isinstance(scan, ScanMetrics) else None


class SlowScanRule(ProfileRule):
    """S019: Scan time above the storage backend's slow-scan cutoff.

    The cutoff starts from the per-backend default (local disk is held to a
    tighter limit than object storage) and is scaled by the cluster baseline
    when one is available. CRITICAL at three times the cutoff.
    """

    rule_id = "S019"
    name = "Slow Scan"
    category = RuleCategory.SCAN
    uses_baseline = True
    description = "Scan operator spent longer reading data than expected for this storage backend"
    suggestions = (
        "Check partition and bucket pruning in the query predicates",
        "Verify the table has an effective sort key for the filter columns",
        "Consider a materialized view or rollup for frequent scans",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        scan = _scan(context)
        if scan is None or scan.scan_time_ms is None:
            return None
        threshold = context.thresholds.scan_time_ms
        if scan.scan_time_ms <= threshold:
            return None

        ratio = scan.scan_time_ms / threshold
        table = f" on {scan.table}" if scan.table else ""
        return self.diagnose(
            context,
            message=(
                f"Scan{table} took {format_duration_ms(scan.scan_time_ms)} "
                f"(threshold {format_duration_ms(threshold)})"
            ),
            measured=scan.scan_time_ms,
            threshold=threshold,
            severity=escalate(ratio, critical_at=3.0),
        )


class ScanRowsSkewRule(ProfileRule):
    """S001: Rows read are unevenly spread across scan instances."""

    rule_id = "S001"
    name = "Scan Data Skew"
    category = RuleCategory.SCAN
    description = "Some scan instances read far more rows than others"
    suggestions = (
        "Check the bucket key distribution of the scanned table",
        "Choose a higher-cardinality bucket key",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        max_rows = context.number("__MAX_OF_RowsRead")
        min_rows = context.number("__MIN_OF_RowsRead")
        if max_rows is None or min_rows is None:
            return None
        if max_rows < context.thresholds.min_rows_for_skew:
            return None
        ratio = skew_ratio(max_rows, min_rows)
        threshold = context.thresholds.skew_ratio
        if ratio is None or ratio <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"Scan rows are skewed across instances, max/min {ratio:.2f} (threshold {threshold:.1f})",
            measured=ratio,
            threshold=threshold,
        )


class ScanIOSkewRule(ProfileRule):
    """S002: IO time is unevenly spread across scan instances."""

    rule_id = "S002"
    name = "Scan IO Skew"
    category = RuleCategory.SCAN
    description = "Some scan instances spent far longer in IO than others"
    suggestions = (
        "Check for slow disks or hot tablets on individual backends",
        "Verify tablet replicas are balanced across backends",
    )

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        max_io = context.duration_ms("__MAX_OF_IOTime")
        min_io = context.duration_ms("__MIN_OF_IOTime")
        if max_io is None or min_io is None or max_io < context.thresholds.min_operator_time_ms:
            return None
        ratio = skew_ratio(max_io, min_io)
        threshold = context.thresholds.skew_ratio
        if ratio is None or ratio <= threshold:
            return None
        return self.diagnose(
            context,
            message=f"Scan IO time is skewed across instances, max/min {ratio:.2f} (threshold {threshold:.1f})",
            measured=ratio,
            threshold=threshold,
        )


class IneffectiveFilterRule(ProfileRule):
    """S003: Predicates filter out less than 20% of the raw rows."""

    rule_id = "S003"
    name = "Ineffective Filter"
    category = RuleCategory.SCAN
    severity = Severity.WARNING
    description = "Most raw rows survive the scan predicates, so the scan reads nearly the whole table"
    suggestions = (
        "Add selective predicates on partition or sort key columns",
        "Check whether predicates are pushed down to the storage layer",
    )

    FILTER_RATIO = 0.8

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        scan = _scan(context)
        if scan is None or scan.rows_read is None or not scan.raw_rows_read:
            return None
        if scan.raw_rows_read <= context.thresholds.min_rows_for_filter:
            return None
        ratio = scan.rows_read / scan.raw_rows_read
        if ratio <= self.FILTER_RATIO:
            return None
        return self.diagnose(
            context,
            message=(
                f"Filter kept {ratio:.1%} of {scan.raw_rows_read:,.0f} raw rows"
            ),
            measured=ratio,
            threshold=self.FILTER_RATIO,
        )


class IOBoundScanRule(ProfileRule):
    """S007: Scan time dominated by IO on a large read."""

    rule_id = "S007"
    name = "IO Bottleneck"
    category = RuleCategory.SCAN
    description = "Most of the scan time is spent waiting on storage IO"
    suggestions = (
        "Check disk throughput on the backends",
        "Enable the data cache for remote storage",
        "Reduce the columns read by the query",
    )

    IO_RATIO = 0.8

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        scan = _scan(context)
        if scan is None or scan.io_time_ms is None or not scan.scan_time_ms:
            return None
        if (scan.bytes_read or 0) <= GB:
            return None
        ratio = scan.io_time_ms / scan.scan_time_ms
        if ratio <= self.IO_RATIO:
            return None
        return self.diagnose(
            context,
            message=(
                f"IO is {ratio:.1%} of scan time while reading {format_bytes(scan.bytes_read)}"
            ),
            measured=ratio,
            threshold=self.IO_RATIO,
        )


class LowCacheHitRule(ProfileRule):
    """S009: Page cache or data cache hit rate below the cutoff.

    Reported as a miss rate so that measured > threshold like every other
    rule. CRITICAL when the hit rate is below 60% of the cutoff.
    """

    rule_id = "S009"
    name = "Low Cache Hit Rate"
    category = RuleCategory.SCAN
    description = "Scan data is mostly read from disk or remote storage rather than cache"
    suggestions = (
        "Increase the BE page cache or data cache capacity",
        "Warm the cache for frequently queried tables",
    )

    MIN_PAGES = 100
    MIN_BYTES = 100 * 1024 * 1024

    def _hit_rate(self, scan: ScanMetrics) -> Optional[float]:
        local = scan.bytes_read_local or 0
        remote = scan.bytes_read_remote or 0
        if remote > 0 and local + remote > self.MIN_BYTES:
            return local / (local + remote)
        if scan.read_pages and scan.read_pages > self.MIN_PAGES and scan.cached_pages is not None:
            return min(scan.cached_pages / scan.read_pages, 1.0)
        return None

    def evaluate(self, context: RuleContext) -> Optional[Diagnostic]:
        scan = _scan(context)
        if scan is None:
            return None
        hit_rate = self._hit_rate(scan)
        if hit_rate is None:
            return None
        hit_threshold = context.thresholds.cache_hit_ratio
        if hit_rate >= hit_threshold:
            return None
        severity = Severity.CRITICAL if hit_rate < hit_threshold * 0.6 else Severity.WARNING
        parameters = []
        if context.is_external_table:
            parameters.append(
                ParameterSuggestion(
                    name="enable_scan_datacache",
                    recommended="true",
                    description="Cache remote data on local disks",
                )
            )
        return self.diagnose(
            context,
            message=f"Cache hit rate is {hit_rate:.1%} (expected at least {hit_threshold:.0%})",
            measured=1.0 - hit_rate,
            threshold=1.0 - hit_threshold,
            severity=severity,
            parameters=parameters,
        )


SCAN_RULES = (
    SlowScanRule,
    ScanRowsSkewRule,
    ScanIOSkewRule,
    IneffectiveFilterRule,
    IOBoundScanRule,
    LowCacheHitRule,
)
