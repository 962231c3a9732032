"""Fragment, pipeline and operator block parsing."""

from __future__ import annotations

import re
from typing import List, Optional

from ..models import FragmentInfo, OperatorBlock, PipelineInfo
from .sections import FRAGMENT_HEADER, METRIC_LINE

PIPELINE_HEADER = re.compile(r"^\s*Pipeline\s*\(id=(\d+)\):\s*$")
OPERATOR_HEADER = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*\(plan_node_id=(-?\d+)\):\s*$")
_GROUP_HEADER = re.compile(r"^\s*(CommonMetrics|UniqueMetrics):\s*$")


def parse_fragments(execution_body: str) -> List[FragmentInfo]:
    """Scan the Execution body for fragments and their operator blocks.

    Metric lines are attributed to the innermost open scope: an operator
    (split into CommonMetrics/UniqueMetrics groups), else the pipeline,
    else the fragment itself.
    """
    fragments: List[FragmentInfo] = []
    fragment: Optional[FragmentInfo] = None
    pipeline: Optional[PipelineInfo] = None
    operator: Optional[OperatorBlock] = None
    group: Optional[str] = None

    for line in execution_body.splitlines():
        if not line.strip():
            continue

        header = FRAGMENT_HEADER.match(line)
        if header:
            fragment = FragmentInfo(fragment_id=header.group(1))
            fragments.append(fragment)
            pipeline, operator, group = None, None, None
            continue
        if fragment is None:
            # Query-level metrics and the topology precede the first fragment
            continue

        header = PIPELINE_HEADER.match(line)
        if header:
            pipeline = PipelineInfo(pipeline_id=int(header.group(1)))
            fragment.pipelines.append(pipeline)
            operator, group = None, None
            continue

        header = OPERATOR_HEADER.match(line)
        if header:
            operator = OperatorBlock(
                name=header.group(1).upper(),
                plan_node_id=int(header.group(2)),
                fragment_id=fragment.fragment_id,
                pipeline_id=pipeline.pipeline_id if pipeline else None,
            )
            fragment.operators.append(operator)
            group = None
            continue

        header = _GROUP_HEADER.match(line)
        if header:
            group = "common" if header.group(1) == "CommonMetrics" else "unique"
            continue

        metric = METRIC_LINE.match(line)
        if not metric:
            continue
        key, value = metric.group(1).strip(), metric.group(2).strip()
        if operator is not None:
            target = operator.common if group == "common" else operator.unique
        elif pipeline is not None:
            target = pipeline.metrics
        else:
            target = fragment.metrics
        target.setdefault(key, value)

    return fragments
