"""Topology JSON decoding."""

from __future__ import annotations

import json
from typing import Any, Dict

from ..errors import TopologyError
from ..models import Topology, TopologyNode


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise TopologyError(f"{what} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise TopologyError(f"{what} must be an integer, got {value!r}") from None


def parse_topology(text: str) -> Topology:
    """Decode the Topology JSON.

    Expected shape: {"rootId": 1, "nodes": [{"id": 1, "name": "EXCHANGE",
    "properties": {...}, "children": [0]}, ...]}

    Raises:
        TopologyError: on invalid JSON, missing keys, or dangling child ids.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise TopologyError(f"Invalid Topology JSON: {e}") from e

    if not isinstance(data, dict):
        raise TopologyError("Topology must be a JSON object")
    if "rootId" not in data:
        raise TopologyError("Topology is missing rootId")
    raw_nodes = data.get("nodes")
    if not isinstance(raw_nodes, list):
        raise TopologyError("Topology is missing nodes")

    nodes: Dict[int, TopologyNode] = {}
    for raw in raw_nodes:
        if not isinstance(raw, dict) or "id" not in raw or "name" not in raw:
            raise TopologyError(f"Topology node without id/name: {raw!r}")
        node_id = _as_int(raw["id"], "node id")
        if node_id in nodes:
            raise TopologyError(f"Duplicate topology node id {node_id}")
        children = tuple(_as_int(c, f"child of node {node_id}") for c in raw.get("children") or [])
        properties = raw.get("properties") or {}
        if not isinstance(properties, dict):
            properties = {}
        nodes[node_id] = TopologyNode(
            id=node_id,
            name=str(raw["name"]),
            properties=properties,
            children=children,
        )

    root_id = _as_int(data["rootId"], "rootId")
    if root_id not in nodes:
        raise TopologyError(f"rootId {root_id} is not a declared node")
    for node in nodes.values():
        for child in node.children:
            if child not in nodes:
                raise TopologyError(f"Node {node.id} references undeclared child {child}")

    return Topology(root_id=root_id, nodes=nodes)
