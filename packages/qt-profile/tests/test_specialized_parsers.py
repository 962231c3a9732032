"""Tests for per-category specialized metric extraction."""

from qt_profile.models import (
    AggregateMetrics,
    ExchangeMetrics,
    JoinMetrics,
    OperatorCategory,
    OperatorType,
    ScanMetrics,
    SinkMetrics,
)
from qt_profile.parser.specialized import (
    parse_aggregate,
    parse_exchange,
    parse_join,
    parse_scan,
    parse_sink,
    parse_specialized,
)


class TestOperatorTypes:
    """Raw operator names map onto the closed operator type set."""

    def test_exact_names(self):
        assert OperatorType.from_name("OLAP_SCAN") is OperatorType.OLAP_SCAN
        assert OperatorType.from_name("result_sink") is OperatorType.RESULT_SINK

    def test_pipeline_suffixes(self):
        assert OperatorType.from_name("HASH_JOIN_PROBE") is OperatorType.HASH_JOIN
        assert OperatorType.from_name("HASH_JOIN_BUILD") is OperatorType.HASH_JOIN
        assert OperatorType.from_name("AGGREGATE_BLOCKING_SINK") is OperatorType.AGGREGATE
        assert OperatorType.from_name("LOCAL_SORT_SOURCE") is OperatorType.SORT

    def test_aliases(self):
        assert OperatorType.from_name("EXCHANGE_SOURCE") is OperatorType.EXCHANGE
        assert OperatorType.from_name("NESTLOOP_JOIN") is OperatorType.NEST_LOOP_JOIN
        assert OperatorType.from_name("HDFS_SCAN") is OperatorType.CONNECTOR_SCAN
        assert OperatorType.from_name("ICEBERG_SCAN") is OperatorType.CONNECTOR_SCAN
        assert OperatorType.from_name("HIVE_TABLE_SINK") is OperatorType.TABLE_SINK

    def test_unknown(self):
        assert OperatorType.from_name("MYSTERY_OPERATOR") is OperatorType.UNKNOWN
        assert OperatorType.UNKNOWN.category is OperatorCategory.OTHER

    def test_categories(self):
        assert OperatorType.CONNECTOR_SCAN.category is OperatorCategory.SCAN
        assert OperatorType.TOP_N.category is OperatorCategory.SORT
        assert OperatorType.OLAP_TABLE_SINK.category is OperatorCategory.SINK


class TestScanParser:

    def test_fields(self):
        scan = parse_scan({
            "Table": "orders",
            "ScanTime": "12s",
            "IOTime": "3s500ms",
            "BytesRead": "1.5 GB",
            "RowsRead": "1,000,000",
            "RawRowsRead": "50.000M (50000000)",
            "CachedPagesNum": "120",
            "ReadPagesNum": "1,000",
        })
        assert scan.table == "orders"
        assert scan.scan_time_ms == 12_000.0
        assert scan.io_time_ms == 3_500.0
        assert scan.bytes_read == int(1.5 * 1024 ** 3)
        assert scan.rows_read == 1_000_000
        assert scan.raw_rows_read == 50_000_000
        assert scan.cached_pages == 120
        assert scan.read_pages == 1_000

    def test_synonyms(self):
        scan = parse_scan({"IOTaskExecTime": "2s", "CompressedBytesRead": "1 KB", "FSIOBytesRead": "2 KB"})
        assert scan.io_time_ms == 2_000.0
        assert scan.bytes_read == 1024
        assert scan.bytes_read_remote == 2048

    def test_missing_and_malformed_stay_none(self):
        scan = parse_scan({"ScanTime": "soon"})
        assert scan.scan_time_ms is None
        assert scan.bytes_read is None
        assert scan == ScanMetrics()

    def test_shared_scan_flag(self):
        assert parse_scan({"SharedScan": "True"}).shared_scan is True
        assert parse_scan({"SharedScan": "false"}).shared_scan is False
        assert parse_scan({"SharedScan": "maybe"}).shared_scan is None


class TestJoinParser:

    def test_fields(self):
        join = parse_join({
            "JoinType": "LEFT_OUTER_JOIN",
            "DistributionMode": "SHUFFLE",
            "BuildRows": "2.5M",
            "ProbeRows": "10,000,000",
            "RuntimeFilterNum": "0",
            "HashTableMemoryUsage": "1.000 GB",
        })
        assert join.join_type == "LEFT_OUTER_JOIN"
        assert join.build_rows == 2_500_000
        assert join.probe_rows == 10_000_000
        assert join.runtime_filter_num == 0
        assert join.hash_table_memory_bytes == 1024 ** 3

    def test_hash_table_size_as_build_rows(self):
        assert parse_join({"HashTableSize": "42"}).build_rows == 42


class TestAggregateParser:

    def test_fields(self):
        agg = parse_aggregate({
            "AggMode": "update_finalize",
            "ChunkByChunk": "false",
            "InputRowCount": "3,000,000",
            "AggComputeTime": "800ms",
            "HashTableSize": "12.000M (12000000)",
            "HashTableMemoryUsage": "600.000 MB",
        })
        assert agg.agg_mode == "update_finalize"
        assert agg.chunk_by_chunk is False
        assert agg.input_rows == 3_000_000
        assert agg.agg_compute_time_ms == 800.0
        assert agg.hash_table_size == 12_000_000
        assert agg.hash_table_memory_bytes == 600 * 1024 ** 2


class TestExchangeParser:

    def test_fields(self):
        exchange = parse_exchange({
            "PartType": "HASH_PARTITIONED",
            "BytesSent": "2.000 GB",
            "NetworkTime": "1s",
            "DestFragmentIds": "1, 2",
            "DestBeAddresses": "10.0.0.1:9060,10.0.0.2:9060",
        })
        assert exchange.part_type == "HASH_PARTITIONED"
        assert exchange.bytes_sent == 2 * 1024 ** 3
        assert exchange.network_time_ms == 1_000.0
        assert exchange.dest_fragment_ids == ("1", "2")
        assert len(exchange.dest_be_addresses) == 2


class TestSinkParser:

    def test_result_sink(self):
        sink = parse_sink({"SinkType": "MYSQL_PROTOCAL", "ResultSendTime": "20ms"})
        assert sink.sink_type == "MYSQL_PROTOCAL"
        assert sink.result_send_time_ms == 20.0

    def test_olap_table_sink_type(self):
        sink = parse_sink({"RowsFiltered": "5,000"}, OperatorType.OLAP_TABLE_SINK)
        assert sink.sink_type == "OLAP_TABLE"
        assert sink.rows_filtered == 5_000


class TestDispatch:
    """parse_specialized picks the parser from the operator name."""

    def test_dispatch_by_category(self):
        assert isinstance(parse_specialized("OLAP_SCAN", {}), ScanMetrics)
        assert isinstance(parse_specialized("HASH_JOIN_PROBE", {}), JoinMetrics)
        assert isinstance(parse_specialized("AGGREGATE_BLOCKING_SINK", {}), AggregateMetrics)
        assert isinstance(parse_specialized("EXCHANGE_SINK", {}), ExchangeMetrics)
        assert isinstance(parse_specialized("RESULT_SINK", {}), SinkMetrics)

    def test_lowercase_name(self):
        assert isinstance(parse_specialized("olap_scan", {"ScanTime": "1s"}), ScanMetrics)

    def test_no_specialized_shape(self):
        assert parse_specialized("PROJECT", {"ExprComputeTime": "1s"}) is None
        assert parse_specialized("SORT", {}) is None

    def test_olap_table_sink_dispatch(self):
        sink = parse_specialized("OLAP_TABLE_SINK", {})
        assert isinstance(sink, SinkMetrics)
        assert sink.sink_type == "OLAP_TABLE"
