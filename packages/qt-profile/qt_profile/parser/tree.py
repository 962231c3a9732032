"""Operator tree assembly from topology plus fragment operator blocks."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import TreeError
from ..models import (
    CommonMetrics,
    ExchangeLink,
    FragmentInfo,
    OperatorBlock,
    OperatorNode,
    OperatorTree,
    OperatorType,
    Topology,
    TopologyNode,
)
from .specialized import parse_specialized
from .values import try_parse_bytes, try_parse_duration_ms, try_parse_number

logger = logging.getLogger(__name__)

# Operators that share a plan node id with the real operator but only move data
_AUXILIARY_TYPES = (
    OperatorType.EXCHANGE_SINK,
    OperatorType.LOCAL_EXCHANGE,
    OperatorType.CHUNK_ACCUMULATE,
)

# Lower value wins when several final sinks are present
SINK_PRIORITY = {
    OperatorType.RESULT_SINK: 1,
    OperatorType.OLAP_TABLE_SINK: 2,
    OperatorType.TABLE_SINK: 3,
}


def _sum_duration(blocks: Iterable[OperatorBlock], key: str) -> Optional[float]:
    values = [try_parse_duration_ms(b.common.get(key, b.unique.get(key))) for b in blocks]
    values = [v for v in values if v is not None]
    return sum(values) if values else None


def _numbers(blocks: Iterable[OperatorBlock], key: str) -> List[float]:
    values = [try_parse_number(b.common.get(key, b.unique.get(key))) for b in blocks]
    return [v for v in values if v is not None]


def _max_bytes(blocks: Iterable[OperatorBlock], *keys: str) -> Optional[int]:
    values = []
    for block in blocks:
        for key in keys:
            raw = block.common.get(key, block.unique.get(key))
            parsed = try_parse_bytes(raw)
            if parsed is not None:
                values.append(parsed)
                break
    return max(values) if values else None


def build_common_metrics(matching: Sequence[OperatorBlock], merged: Sequence[OperatorBlock]) -> CommonMetrics:
    """Merge the common metrics of all blocks that make up one plan node.

    Operator time sums over every block, row counts come from the blocks
    of the node's own type only (an exchange sink re-counts the same rows).
    """
    push = _numbers(matching, "PushRowNum")
    pull = _numbers(matching, "PullRowNum")
    push_chunks = _numbers(matching, "PushChunkNum")
    pull_chunks = _numbers(matching, "PullChunkNum")
    return CommonMetrics(
        operator_time_ms=_sum_duration(merged, "OperatorTotalTime") or 0.0,
        operator_time_max_ms=_sum_duration(merged, "__MAX_OF_OperatorTotalTime"),
        operator_time_min_ms=_sum_duration(merged, "__MIN_OF_OperatorTotalTime"),
        cpu_time_ms=_sum_duration(merged, "CPUTime"),
        push_rows=sum(push),
        pull_rows=max(pull) if pull else 0.0,
        push_chunks=sum(push_chunks),
        pull_chunks=sum(pull_chunks),
        peak_memory_bytes=_max_bytes(merged, "OperatorPeakMemoryUsage", "PeakMemoryUsage") or 0,
        peak_memory_max_bytes=_max_bytes(merged, "__MAX_OF_OperatorPeakMemoryUsage"),
        peak_memory_min_bytes=_max_bytes(merged, "__MIN_OF_OperatorPeakMemoryUsage"),
    )


class TreeBuilder:
    """Walks the topology depth-first and resolves each node's operator blocks."""

    def __init__(self, topology: Topology, fragments: Sequence[FragmentInfo]):
        self.topology = topology
        self.fragments = fragments
        self.blocks_by_id: Dict[int, List[OperatorBlock]] = {}
        for fragment in fragments:
            for block in fragment.operators:
                self.blocks_by_id.setdefault(block.plan_node_id, []).append(block)

        self.nodes: Dict[int, OperatorNode] = {}
        self.exchange_links: Dict[str, ExchangeLink] = {}
        self.fragment_roots: Dict[str, int] = {}

    def build(self) -> OperatorTree:
        root_id = self._visit(self.topology.root_id, path=())

        sink = self._final_sink(self.nodes[root_id].fragment_id)
        if sink is not None:
            sink.children = (root_id,)
            self.nodes[sink.id] = sink
            root_id = sink.id

        tree = OperatorTree(
            root_id=root_id,
            nodes=self.nodes,
            exchange_links=self.exchange_links,
            fragment_roots=self.fragment_roots,
        )
        _assign_time_percentages(tree)
        _assign_windows(tree)
        logger.debug(
            "Built operator tree: %d nodes, %d exchange links", len(tree.nodes), len(tree.exchange_links)
        )
        return tree

    def _visit(self, node_id: int, path: Tuple[int, ...]) -> int:
        if node_id in path:
            raise TreeError(f"Cycle in topology at plan node {node_id}", node_id)
        if node_id in self.nodes:
            raise TreeError(f"Plan node {node_id} reached twice in topology", node_id)

        topo_node = self.topology.nodes[node_id]
        node, sink_blocks = self._resolve(topo_node)
        self.nodes[node_id] = node

        for block in sink_blocks:
            if block.fragment_id != node.fragment_id:
                self.exchange_links[block.fragment_id] = ExchangeLink(
                    sink_fragment_id=block.fragment_id,
                    source_fragment_id=node.fragment_id,
                    exchange_node_id=node.id,
                )

        children: List[int] = []
        for child_id in topo_node.children:
            self._visit(child_id, path + (node_id,))
            child = self.nodes[child_id]
            if node.operator_type is OperatorType.EXCHANGE and child.fragment_id != node.fragment_id:
                # Exchange edges are logical: record the pairing instead of a child pointer
                self.fragment_roots.setdefault(child.fragment_id, child_id)
                self.exchange_links.setdefault(
                    child.fragment_id,
                    ExchangeLink(
                        sink_fragment_id=child.fragment_id,
                        source_fragment_id=node.fragment_id,
                        exchange_node_id=node.id,
                    ),
                )
            else:
                children.append(child_id)
        node.children = tuple(children)
        return node_id

    def _resolve(self, topo_node: TopologyNode) -> Tuple[OperatorNode, List[OperatorBlock]]:
        """Find the blocks for a topology node and build its OperatorNode."""
        candidates = self.blocks_by_id.get(topo_node.id)
        if not candidates:
            raise TreeError(
                f"No operator block for plan node {topo_node.id} ({topo_node.name})", topo_node.id
            )

        topo_type = OperatorType.from_name(topo_node.name)
        sink_blocks: List[OperatorBlock] = []
        if topo_type is OperatorType.EXCHANGE:
            matching = [b for b in candidates if b.operator_type is OperatorType.EXCHANGE]
            sink_blocks = [b for b in candidates if b.operator_type is OperatorType.EXCHANGE_SINK]
            if not matching:
                raise TreeError(
                    f"Exchange node {topo_node.id} has no receiving operator block", topo_node.id
                )
        else:
            matching = [b for b in candidates if b.operator_type is topo_type]
            if not matching:
                matching = [b for b in candidates if b.operator_type not in _AUXILIARY_TYPES]
            if not matching:
                matching = list(candidates)

        operator_type = topo_type
        if operator_type is OperatorType.UNKNOWN:
            operator_type = matching[0].operator_type

        merged = matching + sink_blocks
        raw_metrics: Dict[str, str] = {}
        unique_metrics: Dict[str, str] = {}
        for block in merged:
            for key, value in block.common.items():
                raw_metrics.setdefault(key, value)
            for key, value in block.unique.items():
                raw_metrics.setdefault(key, value)
                unique_metrics.setdefault(key, value)

        node = OperatorNode(
            id=topo_node.id,
            name=topo_node.name.upper(),
            operator_type=operator_type,
            fragment_id=matching[0].fragment_id,
            common=build_common_metrics(matching, merged),
            specialized=parse_specialized(operator_type.value, unique_metrics),
            metrics=raw_metrics,
        )
        return node, sink_blocks

    def _final_sink(self, fragment_id: str) -> Optional[OperatorNode]:
        """The highest-priority final sink of the top fragment, if any."""
        best: Optional[OperatorBlock] = None
        for block in self.fragments_by_id().get(fragment_id, []):
            priority = SINK_PRIORITY.get(block.operator_type)
            if priority is None or block.plan_node_id in self.nodes:
                continue
            if best is None or priority < SINK_PRIORITY[best.operator_type]:
                best = block
        if best is None:
            return None
        return OperatorNode(
            id=best.plan_node_id,
            name=best.name,
            operator_type=best.operator_type,
            fragment_id=best.fragment_id,
            common=build_common_metrics([best], [best]),
            specialized=parse_specialized(best.name, best.unique),
            metrics={**best.unique, **best.common},
        )

    def fragments_by_id(self) -> Dict[str, List[OperatorBlock]]:
        return {f.fragment_id: f.operators for f in self.fragments}


def _assign_time_percentages(tree: OperatorTree) -> None:
    total = sum(node.common.operator_time_ms for node in tree.nodes.values())
    for node in tree.nodes.values():
        if total > 0:
            node.time_percentage = round(node.common.operator_time_ms / total * 100.0, 2)
        else:
            node.time_percentage = 0.0


def _assign_windows(tree: OperatorTree) -> None:
    """Derive each node's execution window from its inputs.

    A leaf runs from 0 for its own operator time. An inner node starts with
    its earliest input and finishes its own work after the last input ends.
    """
    memo: Dict[int, Tuple[float, float]] = {}

    def window(node_id: int) -> Tuple[float, float]:
        if node_id in memo:
            return memo[node_id]
        node = tree.nodes[node_id]
        inputs = [window(child) for child in tree.inputs_of(node_id) if child in tree.nodes]
        own = node.common.operator_time_ms
        if inputs:
            start = min(w[0] for w in inputs)
            end = max(w[1] for w in inputs) + own
        else:
            start, end = 0.0, own
        memo[node_id] = (start, end)
        node.window = (start, end)
        return memo[node_id]

    for node_id in tree.nodes:
        window(node_id)


def build_tree(topology: Topology, fragments: Sequence[FragmentInfo]) -> OperatorTree:
    """Assemble the operator tree.

    Raises:
        TreeError: if a declared operator has no block, or the topology
            revisits a node.
    """
    return TreeBuilder(topology, fragments).build()
