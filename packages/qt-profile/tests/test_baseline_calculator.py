"""Tests for baseline statistics over audit log records."""

from datetime import datetime, timedelta, timezone

import pytest

from qt_profile.baseline import (
    AuditLogRecord,
    BaselineCalculator,
    BaselineSource,
    BaselineStats,
    PerformanceBaseline,
    QueryComplexity,
)
from qt_profile.baseline.calculator import DEFAULT_BASELINES, percentile

NOW = datetime(2024, 9, 12, 12, 0, tzinfo=timezone.utc)


def _record(ms, complexity=QueryComplexity.SIMPLE, **kwargs):
    kwargs.setdefault("timestamp", NOW - timedelta(hours=1))
    return AuditLogRecord(query_time_ms=ms, complexity=complexity, **kwargs)


class TestPercentile:

    def test_index_rounds_down(self):
        values = [float(v) for v in range(1, 11)]
        assert percentile(values, 0.5) == 6.0
        assert percentile(values, 0.95) == 10.0

    def test_clamped_to_last_element(self):
        assert percentile([1.0, 2.0, 3.0], 0.99) == 3.0

    def test_empty(self):
        assert percentile([], 0.5) == 0.0


class TestBaselineStats:

    def test_from_samples(self):
        stats = BaselineStats.from_samples([400.0, 100.0, 300.0, 200.0])
        assert stats.avg_ms == 250.0
        assert stats.p50_ms == 300.0
        assert stats.max_ms == 400.0
        assert stats.sample_count == 4
        assert stats.std_dev_ms == pytest.approx(111.803, rel=1e-3)

    def test_requires_samples(self):
        with pytest.raises(ValueError):
            BaselineStats.from_samples([])

    def test_tail_ratio(self):
        assert DEFAULT_BASELINES[QueryComplexity.MEDIUM].tail_ratio == pytest.approx(3.75)
        assert BaselineStats(0, 0, 0, 0, 0, 0).tail_ratio == 1.0


class TestBaselineCalculator:
    """Fails open: anything unusable yields the default baseline."""

    def test_enough_samples_produce_audit_baseline(self):
        records = [_record(1_000.0 + i * 10) for i in range(40)]
        baseline = BaselineCalculator().calculate(records, cluster_id="c1", now=NOW)
        assert baseline.source is BaselineSource.AUDIT
        assert baseline.sample_count == 40
        assert baseline.has_data_for(QueryComplexity.SIMPLE)
        assert not baseline.has_data_for(QueryComplexity.MEDIUM)
        assert baseline.for_complexity(QueryComplexity.SIMPLE).sample_count == 40

    def test_missing_bucket_falls_back_to_default_stats(self):
        records = [_record(1_000.0) for _ in range(40)]
        baseline = BaselineCalculator().calculate(records, now=NOW)
        assert baseline.for_complexity(QueryComplexity.COMPLEX) == DEFAULT_BASELINES[QueryComplexity.COMPLEX]

    def test_too_few_samples(self):
        records = [_record(1_000.0) for _ in range(10)]
        baseline = BaselineCalculator().calculate(records, cluster_id="c1", now=NOW)
        assert baseline.source is BaselineSource.DEFAULT
        assert baseline.is_default

    def test_empty_input(self):
        baseline = BaselineCalculator().calculate([], cluster_id="c1")
        assert baseline.source is BaselineSource.DEFAULT
        assert baseline.cluster_id == "c1"
        assert dict(baseline.by_complexity) == DEFAULT_BASELINES

    def test_non_iterable_input(self):
        baseline = BaselineCalculator().calculate(None, cluster_id="c1")
        assert baseline.is_default

    def test_failed_and_zero_time_records_excluded(self):
        calculator = BaselineCalculator(min_sample_size=1)
        records = [_record(500.0), _record(900.0, state="ERR"), _record(0.0)]
        assert len(calculator.usable_records(records)) == 1

    def test_records_outside_window_excluded(self):
        calculator = BaselineCalculator(min_sample_size=1, time_range_hours=24)
        records = [_record(500.0), _record(500.0, timestamp=NOW - timedelta(days=3))]
        assert len(calculator.usable_records(records, now=NOW)) == 1

    def test_naive_now_with_aware_timestamps(self):
        calculator = BaselineCalculator(min_sample_size=1, time_range_hours=24)
        naive_now = NOW.replace(tzinfo=None)
        records = [_record(500.0), _record(500.0, timestamp=NOW - timedelta(days=3))]
        assert len(calculator.usable_records(records, now=naive_now)) == 1

    def test_aware_now_with_naive_timestamps(self):
        calculator = BaselineCalculator(min_sample_size=1, time_range_hours=24)
        records = [
            _record(500.0, timestamp=NOW.replace(tzinfo=None)),
            _record(500.0, timestamp=(NOW - timedelta(days=3)).replace(tzinfo=None)),
        ]
        assert len(calculator.usable_records(records, now=NOW)) == 1

    def test_window_compares_instants_across_zones(self):
        calculator = BaselineCalculator(min_sample_size=1, time_range_hours=1)
        # 13:30 at UTC+2 is 11:30 UTC, inside the hour before NOW
        plus_two = timezone(timedelta(hours=2))
        record = _record(500.0, timestamp=datetime(2024, 9, 12, 13, 30, tzinfo=plus_two))
        assert len(calculator.usable_records([record], now=NOW)) == 1

    def test_complexity_resolved_from_sql(self):
        record = AuditLogRecord(
            query_text="SELECT o.id FROM orders o JOIN customers c ON o.cid = c.id",
            query_time_ms=100.0,
        )
        assert record.resolved_complexity() is QueryComplexity.MEDIUM
        assert record.complexity is None

    def test_grouping_leaves_records_untouched(self):
        calculator = BaselineCalculator(min_sample_size=1)
        record = AuditLogRecord(query_text="SELECT id FROM orders", query_time_ms=100.0)
        stats = calculator.calculate_by_complexity([record])
        assert set(stats) == {QueryComplexity.SIMPLE}
        assert record.complexity is None

    def test_table_and_user_breakdowns(self):
        calculator = BaselineCalculator(min_sample_size=5)
        records = [_record(1_000.0, table="orders", user="etl") for _ in range(6)]
        records += [_record(2_000.0, table="tiny", user="bi") for _ in range(2)]
        baseline = calculator.calculate(records, now=NOW)
        assert set(baseline.by_table) == {"orders"}
        assert set(baseline.by_user) == {"etl"}
        assert calculator.calculate_for_table(records, "tiny") is None

    def test_peak_hours(self):
        calculator = BaselineCalculator(min_sample_size=10)
        quiet = NOW.replace(hour=2)
        busy = NOW.replace(hour=14) - timedelta(days=1)
        records = [_record(1_000.0, timestamp=quiet) for _ in range(10)]
        records += [_record(3_000.0, timestamp=busy) for _ in range(10)]
        baseline = calculator.calculate(records, now=NOW)
        assert baseline.peak_hours == (14,)
        assert set(baseline.weekday_trend) == {quiet.weekday(), busy.weekday()}

    def test_to_dict(self):
        records = [_record(1_000.0) for _ in range(30)]
        data = BaselineCalculator().calculate(records, cluster_id="c1", now=NOW).to_dict()
        assert data["source"] == "audit"
        assert data["by_complexity"]["simple"]["sample_count"] == 30
