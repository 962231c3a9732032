"""Structural parser for query profile documents.

parse_profile() turns raw profile text into a ProfileDocument:
- sections: Summary / Planner / Execution split by indentation
- topology: the Execution section's embedded JSON plan shape
- fragments: per-fragment pipelines and operator metric blocks
- tree: typed operator tree with specialized metrics per category
"""

from __future__ import annotations

import logging

from ..models import ProfileDocument
from .fragments import parse_fragments
from .sections import parse_execution, parse_planner, parse_summary, split_sections
from .specialized import parse_specialized
from .tree import build_tree
from .values import (
    parse_bytes,
    parse_duration_ms,
    parse_number,
    try_parse_bytes,
    try_parse_duration_ms,
    try_parse_number,
)

logger = logging.getLogger(__name__)


def parse_profile(raw_text: str) -> ProfileDocument:
    """Parse a complete profile document.

    Args:
        raw_text: Profile text as returned by the cluster.

    Returns:
        The parsed, immutable ProfileDocument.

    Raises:
        SectionNotFound: a required section (or the topology) is missing.
        TopologyError: the topology JSON is malformed.
        TreeError: an operator declared in the topology has no block.
    """
    sections = split_sections(raw_text)
    summary = parse_summary(sections["Summary"])
    planner = parse_planner(sections.get("Planner"))
    execution = parse_execution(sections["Execution"])
    fragments = parse_fragments(sections["Execution"])
    tree = build_tree(execution.topology, fragments)

    logger.debug(
        "Parsed profile %s: %d fragments, %d operators",
        summary.query_id or "<unknown>", len(fragments), len(tree.nodes),
    )
    return ProfileDocument(
        raw_text=raw_text,
        sections=sections,
        summary=summary,
        planner=planner,
        execution=execution,
        fragments=tuple(fragments),
        tree=tree,
    )


__all__ = [
    "parse_profile",
    "parse_specialized",
    "parse_bytes",
    "parse_duration_ms",
    "parse_number",
    "try_parse_bytes",
    "try_parse_duration_ms",
    "try_parse_number",
]
