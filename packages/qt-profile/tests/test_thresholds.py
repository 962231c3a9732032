"""Tests for query classification and dynamic threshold computation."""

import pytest

from qt_profile.analyzer import QueryType, StorageBackend, compute_thresholds
from qt_profile.analyzer.thresholds import GB, MB, skew_base_for_backends
from qt_profile.baseline import (
    BaselineSource,
    BaselineStats,
    PerformanceBaseline,
    QueryComplexity,
)
from qt_profile.models import ClusterInfo


# =============================================================================
# QUERY TYPES
# =============================================================================

class TestQueryType:
    """Statements are classified by their leading keyword."""

    @pytest.mark.parametrize("sql,expected", [
        ("select 1", QueryType.SELECT),
        ("WITH x AS (SELECT 1) SELECT * FROM x", QueryType.SELECT),
        ("  -- nightly\nSELECT a FROM t", QueryType.SELECT),
        ("/* hint */ INSERT INTO t SELECT * FROM s", QueryType.INSERT),
        ("CREATE TABLE t AS SELECT * FROM s", QueryType.CTAS),
        ("EXPORT TABLE t TO 's3://bucket/path'", QueryType.EXPORT),
        ("ANALYZE TABLE t", QueryType.ANALYZE),
        ("LOAD LABEL db.label1 (DATA INFILE('hdfs://x') INTO TABLE t)", QueryType.LOAD),
        ("SHOW TABLES", QueryType.UNKNOWN),
        ("", QueryType.UNKNOWN),
    ])
    def test_from_sql(self, sql, expected):
        assert QueryType.from_sql(sql) is expected

    def test_profile_query_type_load_wins(self):
        assert QueryType.from_profile("INSERT INTO t SELECT 1", "Load") is QueryType.LOAD
        assert QueryType.from_profile("INSERT INTO t SELECT 1", "Query") is QueryType.INSERT

    def test_base_time_thresholds(self):
        assert QueryType.SELECT.base_time_threshold_ms == 10_000.0
        assert QueryType.INSERT.base_time_threshold_ms == 300_000.0
        assert QueryType.LOAD.base_time_threshold_ms == 1_800_000.0

    def test_min_diagnosis_time(self):
        assert QueryType.SELECT.min_diagnosis_time_ms == 1_000.0
        assert QueryType.LOAD.min_diagnosis_time_ms == 500.0

    def test_load_allows_only_ingestion_rules(self):
        assert QueryType.LOAD.allows("I001")
        assert QueryType.LOAD.allows("REG001")
        assert not QueryType.LOAD.allows("S001")
        assert not QueryType.LOAD.allows("Q001")

    def test_skipped_rules(self):
        assert not QueryType.INSERT.allows("Q001")
        assert QueryType.INSERT.allows("S001")
        assert not QueryType.EXPORT.allows("S007")
        assert QueryType.SELECT.allows("Q001")


class TestStorageBackend:

    def test_from_tag(self):
        assert StorageBackend.from_tag(None) is StorageBackend.LOCAL
        assert StorageBackend.from_tag("S3") is StorageBackend.S3
        assert StorageBackend.from_tag("minio") is StorageBackend.OTHER

    def test_object_store(self):
        assert StorageBackend.S3.is_object_store
        assert StorageBackend.GCS.is_object_store
        assert not StorageBackend.HDFS.is_object_store

    def test_small_file_cutoffs(self):
        assert StorageBackend.LOCAL.small_file_bytes == 32 * MB
        assert StorageBackend.HDFS.small_file_bytes == 64 * MB
        assert StorageBackend.S3.small_file_bytes == 128 * MB
        assert StorageBackend.LOCAL.min_file_count == 200
        assert StorageBackend.S3.min_file_count == 500


# =============================================================================
# THRESHOLDS
# =============================================================================

class TestComputeThresholds:
    """Static defaults adapted to cluster shape and complexity."""

    def test_medium_select_defaults(self, thresholds):
        assert thresholds.query_time_ms == 10_000.0
        assert thresholds.scan_time_ms == 5_000.0
        assert thresholds.skew_ratio == 2.0
        assert thresholds.operator_memory_bytes == pytest.approx(6.4 * GB)
        assert thresholds.hash_table_memory_bytes == pytest.approx(3.2 * GB)
        assert thresholds.query_memory_bytes == 10 * GB
        assert thresholds.source == "default"
        assert thresholds.baseline_p95_ms is None

    @pytest.mark.parametrize("complexity,expected", [
        (QueryComplexity.SIMPLE, 5_000.0),
        (QueryComplexity.MEDIUM, 10_000.0),
        (QueryComplexity.COMPLEX, 30_000.0),
        (QueryComplexity.VERY_COMPLEX, 60_000.0),
    ])
    def test_query_time_floor_by_complexity(self, cluster, complexity, expected):
        result = compute_thresholds(cluster, QueryType.SELECT, StorageBackend.LOCAL, complexity)
        assert result.query_time_ms == expected

    def test_insert_keeps_static_query_time(self, cluster):
        result = compute_thresholds(cluster, QueryType.INSERT, StorageBackend.LOCAL, QueryComplexity.MEDIUM)
        assert result.query_time_ms == 300_000.0
        assert result.min_diagnosis_time_ms == 500.0

    @pytest.mark.parametrize("backends,expected", [(1, 2.0), (8, 2.0), (10, 2.5), (20, 3.0), (40, 3.5)])
    def test_skew_grows_with_cluster(self, backends, expected):
        assert skew_base_for_backends(backends) == expected

    def test_object_store_scan_threshold(self, cluster):
        result = compute_thresholds(cluster, QueryType.SELECT, StorageBackend.S3, QueryComplexity.MEDIUM)
        assert result.scan_time_ms == 15_000.0
        assert result.small_file_bytes == 128 * MB
        assert result.min_file_count == 500

    def test_unknown_storage_uses_local_scan_threshold(self, cluster):
        result = compute_thresholds(cluster, QueryType.SELECT, StorageBackend.OTHER, QueryComplexity.MEDIUM)
        assert result.scan_time_ms == 5_000.0

    def test_memory_cutoffs_clamped_on_small_backends(self):
        small = ClusterInfo(backend_num=3, be_memory_limit_bytes=4 * GB)
        result = compute_thresholds(small, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.MEDIUM)
        assert result.operator_memory_bytes == 1 * GB
        assert result.hash_table_memory_bytes == 512 * MB
        assert result.query_memory_bytes == pytest.approx(3.2 * GB)

    def test_to_dict_uses_labels(self, thresholds):
        data = thresholds.to_dict()
        assert data["query_type"] == "select"
        assert data["complexity"] == "medium"
        assert data["storage"] == "local"


class TestBaselineAdjustment:
    """Audit history reshapes the thresholds when it covers the bucket."""

    @pytest.fixture
    def baseline(self):
        stats = BaselineStats(
            avg_ms=6_000, p50_ms=5_000, p95_ms=20_000, p99_ms=25_000,
            max_ms=40_000, std_dev_ms=2_000, sample_count=50,
        )
        return PerformanceBaseline(
            cluster_id="c1",
            by_complexity={QueryComplexity.MEDIUM: stats},
            source=BaselineSource.AUDIT,
            sample_count=50,
        )

    def test_query_time_from_p95_plus_two_sigma(self, cluster, baseline):
        result = compute_thresholds(
            cluster, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.MEDIUM, baseline=baseline,
        )
        assert result.source == "baseline"
        assert result.query_time_ms == 24_000.0
        assert result.baseline_p95_ms == 20_000
        assert result.baseline_sample_count == 50

    def test_scan_time_scaled_within_bounds(self, cluster, baseline):
        result = compute_thresholds(
            cluster, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.MEDIUM, baseline=baseline,
        )
        assert result.scan_time_ms == 10_000.0

    def test_heavy_tail_loosens_skew(self, cluster, baseline):
        result = compute_thresholds(
            cluster, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.MEDIUM, baseline=baseline,
        )
        assert result.skew_ratio == pytest.approx(2.6)

    def test_insert_query_time_not_rebased(self, cluster, baseline):
        result = compute_thresholds(
            cluster, QueryType.INSERT, StorageBackend.LOCAL, QueryComplexity.MEDIUM, baseline=baseline,
        )
        assert result.query_time_ms == 300_000.0
        assert result.source == "baseline"

    def test_uncovered_bucket_keeps_defaults(self, cluster, baseline):
        result = compute_thresholds(
            cluster, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.COMPLEX, baseline=baseline,
        )
        assert result.source == "default"
        assert result.query_time_ms == 30_000.0

    def test_default_baseline_is_ignored(self, cluster):
        result = compute_thresholds(
            cluster, QueryType.SELECT, StorageBackend.LOCAL, QueryComplexity.MEDIUM,
            baseline=PerformanceBaseline.default("c1"),
        )
        assert result.source == "default"
        assert result.query_time_ms == 10_000.0
