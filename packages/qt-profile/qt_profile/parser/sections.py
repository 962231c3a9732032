"""Section splitting and Summary/Planner/Execution parsing.

Profiles are indentation-structured text:

    Query:
      Summary:
         - Query ID: ...
         - Total: 12s
      Planner:
         - Total[1] 15ms
      Execution:
         - Topology: {"rootId": 1, "nodes": [...]}
         - QueryPeakMemoryUsagePerNode: 1.2 GB
        Fragment 0:
          ...

A header is a non-metric line ending in ':'; its body is every following
line indented deeper than the header.
"""

from __future__ import annotations

import json
import logging
import re
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from ..errors import SectionNotFound, TopologyError
from ..models import ExecutionInfo, PlannerInfo, SummaryInfo
from .topology import parse_topology
from .values import try_parse_bytes, try_parse_duration_ms

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("Summary", "Execution")
KNOWN_SECTIONS = ("Summary", "Planner", "Execution")

METRIC_LINE = re.compile(r"^\s*-\s+([^:]+?):\s*(.*)$")
FRAGMENT_HEADER = re.compile(r"^\s*Fragment\s+(\d+):\s*$")
_PLANNER_TIMING = re.compile(r"^\s*-\s+(?:--\s*)*([A-Za-z][\w.]*)\[(\d+)\]\s+(\S+)")

_SUMMARY_FIELDS = {
    "Query ID": "query_id",
    "Start Time": "start_time",
    "End Time": "end_time",
    "Query State": "query_state",
    "Query Type": "query_type",
    "StarRocks Version": "version",
    "User": "user",
    "Default Db": "default_db",
}


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _is_header(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and stripped.endswith(":") and not stripped.startswith("-")


def _header_pattern(name: str) -> "re.Pattern[str]":
    # "Execution:" and the older "Execution Profile <id>:" both count
    return re.compile(rf"^\s*{re.escape(name)}(?:\s+[^:]*)?:\s*$")


def find_block(lines: List[str], name: str) -> Optional[Tuple[int, List[str]]]:
    """Locate a header by name and return (header indent, body lines)."""
    pattern = _header_pattern(name)
    for idx, line in enumerate(lines):
        if not pattern.match(line):
            continue
        header_indent = _indent(line)
        body: List[str] = []
        for follower in lines[idx + 1:]:
            if follower.strip() and _indent(follower) <= header_indent:
                break
            body.append(follower)
        return header_indent, body
    return None


def split_sections(text: str) -> "OrderedDict[str, str]":
    """Split a profile into its named top-level sections, in document order.

    Raises:
        SectionNotFound: if a required section is absent.
    """
    lines = text.splitlines()
    found: List[Tuple[int, str, str]] = []
    for name in KNOWN_SECTIONS:
        pattern = _header_pattern(name)
        position = next((i for i, line in enumerate(lines) if pattern.match(line)), None)
        if position is None:
            continue
        block = find_block(lines, name)
        body = "\n".join(block[1]) if block else ""
        found.append((position, name, body))

    sections: "OrderedDict[str, str]" = OrderedDict()
    for _, name, body in sorted(found):
        sections[name] = body

    for name in REQUIRED_SECTIONS:
        if name not in sections:
            raise SectionNotFound(name)
    return sections


def parse_metric_lines(lines: List[str]) -> Dict[str, str]:
    """Collect '- Key: value' lines; the first occurrence of a key wins."""
    metrics: Dict[str, str] = {}
    for line in lines:
        match = METRIC_LINE.match(line)
        if match:
            metrics.setdefault(match.group(1).strip(), match.group(2).strip())
    return metrics


# =============================================================================
# Summary
# =============================================================================

def parse_summary(body: str) -> SummaryInfo:
    """Parse the Summary section."""
    lines = body.splitlines()
    values: Dict[str, str] = {}
    sql_lines: List[str] = []
    extra: Dict[str, str] = {}

    idx = 0
    while idx < len(lines):
        match = METRIC_LINE.match(lines[idx])
        idx += 1
        if not match:
            continue
        key, value = match.group(1).strip(), match.group(2).strip()
        if key == "Sql Statement":
            sql_lines = [value] if value else []
            # The statement continues until the next metric line or a blank line
            while idx < len(lines):
                follower = lines[idx]
                stripped = follower.strip()
                if not stripped or stripped.startswith("- ") or FRAGMENT_HEADER.match(follower):
                    break
                sql_lines.append(stripped)
                idx += 1
            continue
        if key in _SUMMARY_FIELDS:
            values[_SUMMARY_FIELDS[key]] = value
        else:
            extra[key] = value

    session_variables = {}
    raw_session = extra.get("NonDefaultSessionVariables")
    if raw_session:
        try:
            decoded = json.loads(raw_session)
            if isinstance(decoded, dict):
                session_variables = decoded
        except json.JSONDecodeError:
            logger.debug("Ignoring malformed NonDefaultSessionVariables")

    total_time_ms = try_parse_duration_ms(extra.pop("Total", None))
    return SummaryInfo(
        total_time_ms=total_time_ms,
        sql_statement="\n".join(sql_lines).strip(),
        session_variables=session_variables,
        extra=extra,
        **values,
    )


# =============================================================================
# Planner
# =============================================================================

def parse_planner(body: Optional[str]) -> PlannerInfo:
    """Parse planner timings. A missing Planner section yields empty info."""
    if not body:
        return PlannerInfo()

    total: Optional[float] = None
    optimizer: Optional[float] = None
    hms_total = 0.0
    hms_max = 0.0
    hms_calls = 0
    metrics: Dict[str, str] = {}

    for line in body.splitlines():
        timing = _PLANNER_TIMING.match(line)
        if timing:
            name, count, raw = timing.group(1), int(timing.group(2)), timing.group(3)
            duration = try_parse_duration_ms(raw)
            if duration is None:
                continue
            if name == "Total" and total is None:
                total = duration
            elif name == "Optimizer" and optimizer is None:
                optimizer = duration
            elif name.startswith("HMS."):
                hms_total += duration
                hms_calls += count
                # A line aggregates `count` calls; approximate the slowest one by the mean
                hms_max = max(hms_max, duration / max(count, 1))
            continue
        match = METRIC_LINE.match(line)
        if match:
            metrics.setdefault(match.group(1).strip(), match.group(2).strip())

    return PlannerInfo(
        total_time_ms=total,
        optimizer_time_ms=optimizer,
        hms_time_ms=hms_total,
        hms_max_call_ms=hms_max,
        hms_calls=hms_calls,
        metrics=metrics,
    )


# =============================================================================
# Execution
# =============================================================================

_EXECUTION_DURATIONS = {
    "wall_time_ms": "QueryExecutionWallTime",
    "cumulative_operator_time_ms": "QueryCumulativeOperatorTime",
    "cpu_time_ms": "QueryCumulativeCpuTime",
    "scan_time_ms": "QueryCumulativeScanTime",
    "network_time_ms": "QueryCumulativeNetworkTime",
    "schedule_time_ms": "QueryPeakScheduleTime",
    "result_deliver_time_ms": "ResultDeliverTime",
    "collect_profile_time_ms": "CollectProfileTime",
}

_EXECUTION_BYTES = {
    "peak_memory_per_node_bytes": "QueryPeakMemoryUsagePerNode",
    "sum_memory_bytes": "QuerySumMemoryUsage",
    "spill_bytes": "QuerySpillBytes",
}


def extract_topology_json(body: str) -> str:
    """Cut the Topology JSON object out of the Execution body by brace matching.

    Raises:
        SectionNotFound: if there is no Topology entry.
        TopologyError: if the braces never balance.
    """
    marker = re.search(r"-\s+Topology:\s*", body)
    if not marker:
        raise SectionNotFound("Topology")
    start = body.find("{", marker.end())
    if start < 0:
        raise TopologyError("Topology entry has no JSON object")

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(body)):
        char = body[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return body[start:pos + 1]
    raise TopologyError("Unbalanced braces in Topology JSON")


def parse_execution(body: str) -> ExecutionInfo:
    """Parse the Execution section header: topology plus query-level metrics."""
    topology = parse_topology(extract_topology_json(body))

    header_lines: List[str] = []
    for line in body.splitlines():
        if FRAGMENT_HEADER.match(line):
            break
        header_lines.append(line)
    metrics = parse_metric_lines(header_lines)
    metrics.pop("Topology", None)

    values = {}
    for attr, key in _EXECUTION_DURATIONS.items():
        values[attr] = try_parse_duration_ms(metrics.get(key))
    for attr, key in _EXECUTION_BYTES.items():
        values[attr] = try_parse_bytes(metrics.get(key))

    return ExecutionInfo(topology=topology, metrics=metrics, **values)
