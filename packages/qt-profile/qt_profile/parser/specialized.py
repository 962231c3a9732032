"""Per-category metric extraction.

Each parser is a pure function over an operator's unique metrics. Engine
versions rename keys between releases, so several synonyms are accepted
per field; the first present key wins. A missing or malformed value leaves
the field as None rather than zero.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from ..models import (
    AggregateMetrics,
    ExchangeMetrics,
    JoinMetrics,
    OperatorCategory,
    OperatorSpecializedMetrics,
    OperatorType,
    ScanMetrics,
    SinkMetrics,
)
from .values import try_parse_bytes, try_parse_duration_ms, try_parse_number

logger = logging.getLogger(__name__)


def _first(metrics: Mapping[str, str], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        if key in metrics:
            return metrics[key]
    return None


def _duration(metrics: Mapping[str, str], *keys: str) -> Optional[float]:
    raw = _first(metrics, keys)
    value = try_parse_duration_ms(raw)
    if raw is not None and value is None:
        logger.debug("Skipping malformed duration %s=%r", keys[0], raw)
    return value


def _bytes(metrics: Mapping[str, str], *keys: str) -> Optional[int]:
    raw = _first(metrics, keys)
    value = try_parse_bytes(raw)
    if raw is not None and value is None:
        logger.debug("Skipping malformed byte size %s=%r", keys[0], raw)
    return value


def _number(metrics: Mapping[str, str], *keys: str) -> Optional[float]:
    raw = _first(metrics, keys)
    value = try_parse_number(raw)
    if raw is not None and value is None:
        logger.debug("Skipping malformed number %s=%r", keys[0], raw)
    return value


def _text(metrics: Mapping[str, str], *keys: str) -> Optional[str]:
    raw = _first(metrics, keys)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _flag(metrics: Mapping[str, str], *keys: str) -> Optional[bool]:
    raw = _text(metrics, *keys)
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    return None


def _list(metrics: Mapping[str, str], *keys: str) -> Optional[Tuple[str, ...]]:
    raw = _text(metrics, *keys)
    if raw is None:
        return None
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def parse_scan(metrics: Mapping[str, str]) -> ScanMetrics:
    return ScanMetrics(
        table=_text(metrics, "Table"),
        rollup=_text(metrics, "Rollup"),
        shared_scan=_flag(metrics, "SharedScan"),
        scan_time_ms=_duration(metrics, "ScanTime"),
        io_time_ms=_duration(metrics, "IOTime", "IOTaskExecTime"),
        bytes_read=_bytes(metrics, "BytesRead", "CompressedBytesRead"),
        rows_read=_number(metrics, "RowsRead"),
        raw_rows_read=_number(metrics, "RawRowsRead"),
        input_rows=_number(metrics, "InputRows"),
        cached_pages=_number(metrics, "CachedPagesNum"),
        read_pages=_number(metrics, "ReadPagesNum"),
        bytes_read_local=_bytes(metrics, "CompressedBytesReadLocalDisk", "DataCacheReadBytes"),
        bytes_read_remote=_bytes(metrics, "CompressedBytesReadRemote", "FSIOBytesRead"),
    )


def parse_join(metrics: Mapping[str, str]) -> JoinMetrics:
    return JoinMetrics(
        join_type=_text(metrics, "JoinType"),
        distribution_mode=_text(metrics, "DistributionMode"),
        build_rows=_number(metrics, "BuildRows", "HashTableSize"),
        probe_rows=_number(metrics, "ProbeRows", "InputRows"),
        runtime_filter_num=_number(metrics, "RuntimeFilterNum"),
        hash_table_memory_bytes=_bytes(metrics, "HashTableMemoryUsage"),
    )


def parse_aggregate(metrics: Mapping[str, str]) -> AggregateMetrics:
    return AggregateMetrics(
        agg_mode=_text(metrics, "AggMode", "AggregateMode"),
        chunk_by_chunk=_flag(metrics, "ChunkByChunk"),
        input_rows=_number(metrics, "InputRows", "InputRowCount"),
        agg_compute_time_ms=_duration(metrics, "AggFunctionTime", "AggComputeTime"),
        hash_table_size=_number(metrics, "HashTableSize"),
        hash_table_memory_bytes=_bytes(metrics, "HashTableMemoryUsage"),
    )


def parse_exchange(metrics: Mapping[str, str]) -> ExchangeMetrics:
    return ExchangeMetrics(
        part_type=_text(metrics, "PartType"),
        bytes_sent=_bytes(metrics, "BytesSent", "BytesPassThrough"),
        network_time_ms=_duration(metrics, "NetworkTime"),
        dest_fragment_ids=_list(metrics, "DestFragmentIds", "DestFragments"),
        dest_be_addresses=_list(metrics, "DestBeAddresses"),
    )


def parse_sink(metrics: Mapping[str, str], operator_type: OperatorType = OperatorType.RESULT_SINK) -> SinkMetrics:
    sink_type = _text(metrics, "SinkType")
    if operator_type is OperatorType.OLAP_TABLE_SINK:
        sink_type = "OLAP_TABLE"
    return SinkMetrics(
        sink_type=sink_type,
        append_chunk_time_ms=_duration(metrics, "AppendChunkTime"),
        result_send_time_ms=_duration(metrics, "ResultSendTime", "ResultRenderTime"),
        rows_filtered=_number(metrics, "RowsFiltered", "FilteredRows"),
        rpc_time_ms=_duration(metrics, "RpcClientSideTime", "RpcServerSideTime"),
    )


_PARSERS: Dict[OperatorCategory, Callable[[Mapping[str, str]], OperatorSpecializedMetrics]] = {
    OperatorCategory.SCAN: parse_scan,
    OperatorCategory.JOIN: parse_join,
    OperatorCategory.AGGREGATE: parse_aggregate,
    OperatorCategory.EXCHANGE: parse_exchange,
}


def parse_specialized(name: str, metrics: Mapping[str, str]) -> Optional[OperatorSpecializedMetrics]:
    """Dispatch on the uppercased operator name.

    Returns None for operator types with no specialized shape.
    """
    operator_type = OperatorType.from_name(name.upper())
    category = operator_type.category
    if category is OperatorCategory.SINK:
        return parse_sink(metrics, operator_type)
    parser = _PARSERS.get(category)
    if parser is None:
        return None
    return parser(metrics)
