"""End-to-end tests for ProfileDiagnoser."""

import json

import pytest

from qt_profile import ProfileDiagnoser
from qt_profile.analyzer import QueryHistoryCache, Severity
from qt_profile.baseline import (
    BaselineCacheManager,
    BaselineSource,
    BaselineStats,
    PerformanceBaseline,
    QueryComplexity,
)
from qt_profile.config import ProfileSettings
from qt_profile.errors import ProfileParseError


def medium_baseline(cluster_id="default"):
    stats = BaselineStats(
        avg_ms=6_000.0, p50_ms=5_000.0, p95_ms=20_000.0, p99_ms=25_000.0,
        max_ms=30_000.0, std_dev_ms=2_000.0, sample_count=50,
    )
    return PerformanceBaseline(
        cluster_id=cluster_id,
        by_complexity={QueryComplexity.MEDIUM: stats},
        source=BaselineSource.AUDIT,
        sample_count=50,
    )


class TestProfileDiagnoser:

    def test_sample_profile(self, sample_profile_text):
        result = ProfileDiagnoser().diagnose(sample_profile_text)
        assert [d.rule_id for d in result.diagnostics] == ["G001", "S019", "J001", "Q001"]
        assert result.performance_score == 60.0
        assert result.baseline_source is BaselineSource.DEFAULT
        assert result.thresholds.source == "default"
        assert result.regression is None

    def test_root_cause_of_sample(self, sample_profile_text):
        analysis = ProfileDiagnoser().diagnose(sample_profile_text).root_cause_analysis
        assert [rc.rule_id for rc in analysis.root_causes] == ["S019"]
        assert analysis.summary.startswith("1 root cause: Slow Scan on OLAP_SCAN (plan_node_id=0)")

    def test_summary(self, sample_profile_text):
        summary = ProfileDiagnoser().diagnose(sample_profile_text).summary()
        assert summary["query_id"] == "8f3c2a10-6b1e-11ef-9d2a-00163e0a1b2c"
        assert summary["query_type"] == "select"
        assert summary["complexity"] == "medium"
        assert summary["total_time_ms"] == 15_000.0
        assert summary["fragment_count"] == 3

    def test_to_dict_is_json_serializable(self, sample_profile_text):
        data = ProfileDiagnoser().diagnose(sample_profile_text).to_dict()
        assert set(data) == {
            "summary", "performance_score", "baseline_source", "thresholds",
            "diagnostics", "root_cause_analysis",
        }
        assert json.loads(json.dumps(data))["diagnostics"][0]["rule_id"] == "G001"

    def test_sql_override_changes_complexity(self, sample_profile_text):
        result = ProfileDiagnoser().diagnose(sample_profile_text, sql="SELECT order_id FROM orders")
        assert result.thresholds.complexity is QueryComplexity.SIMPLE
        q001 = next(d for d in result.diagnostics if d.rule_id == "Q001")
        assert q001.severity is Severity.CRITICAL

    def test_audit_baseline_raises_query_threshold(self, sample_profile_text):
        cache = BaselineCacheManager()
        cache.put("default", medium_baseline())
        result = ProfileDiagnoser(baseline_cache=cache).diagnose(sample_profile_text)
        assert result.baseline_source is BaselineSource.AUDIT
        assert result.thresholds.source == "baseline"
        assert result.thresholds.query_time_ms == 24_000.0
        assert "Q001" not in [d.rule_id for d in result.diagnostics]

    def test_fast_query(self, make_scan_profile):
        result = ProfileDiagnoser().diagnose(make_scan_profile(scan_time="700ms", total="800ms"))
        assert result.diagnostics == []
        assert result.performance_score == 100.0
        assert result.root_cause_analysis.summary == "No significant performance issues found"

    def test_broken_profile_raises(self):
        with pytest.raises(ProfileParseError):
            ProfileDiagnoser().diagnose("this is not a query profile")


class TestRegressionIntegration:

    @pytest.fixture
    def diagnoser(self):
        history = QueryHistoryCache(regression_factor=2.0, min_samples=3, min_record_time_ms=0.0)
        return ProfileDiagnoser(history=history)

    def test_fourth_slow_run_flags_regression(self, diagnoser, make_scan_profile):
        for total in ("10s", "10s500ms", "9s800ms"):
            result = diagnoser.diagnose(make_scan_profile(scan_time="1s", total=total))
            assert result.regression is None

        result = diagnoser.diagnose(make_scan_profile(scan_time="1s", total="40s"))
        assert result.regression is not None
        assert result.regression.severity is Severity.WARNING
        assert result.regression.threshold == pytest.approx(20_000.0)
        assert "REG001" in [d.rule_id for d in result.diagnostics]

    def test_disabled_by_settings(self, make_scan_profile):
        history = QueryHistoryCache(min_samples=1, min_record_time_ms=0.0)
        diagnoser = ProfileDiagnoser(history=history, settings=ProfileSettings(regression_enabled=False))
        for total in ("10s", "40s"):
            result = diagnoser.diagnose(make_scan_profile(scan_time="1s", total=total))
        assert result.regression is None
        assert len(history) == 0

    def test_no_history_no_regression(self, make_scan_profile):
        diagnoser = ProfileDiagnoser()
        for total in ("10s", "10s", "10s", "40s"):
            result = diagnoser.diagnose(make_scan_profile(scan_time="1s", total=total))
        assert result.regression is None
