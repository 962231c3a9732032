"""Root cause analysis over rule diagnostics.

Builds a directed graph whose vertices are diagnostics and whose edges say
"this finding plausibly explains that one":

1. Intra-node: on each operator the finding with the largest excess over
   its threshold is the primary; every other finding on that node is a
   corollary of it.
2. Inter-node: a primary on an upstream operator explains a primary on a
   downstream operator when the upstream output reaches the downstream
   operator (following exchange links across fragments), their execution
   windows overlap, and the link is plausible (row counts agree, or the
   rule pair is a known cause and effect).
3. Query-level findings sit downstream of every operator and are only
   linked through the known rule pairs.

Each weakly-connected component of the graph becomes one RootCause.

Usage:
    analyzer = RootCauseAnalyzer()
    analysis = analyzer.analyze(diagnostics, document.tree)
    for cause in analysis.root_causes:
        print(cause.diagnostic.rule_id, cause.impact_percentage)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set, Tuple

from ..config import get_settings
from ..models import AggregateMetrics, JoinMetrics, OperatorNode, OperatorTree
from .diagnostics import Diagnostic, Severity, sort_key

logger = logging.getLogger(__name__)

# Known cause -> effect rule pairs, across operators and within one operator
KNOWN_CAUSE_PAIRS: FrozenSet[Tuple[str, str]] = frozenset({
    # scan skew drives downstream skew and memory
    ("S001", "J003"),
    ("S001", "A001"),
    ("S001", "E003"),
    ("S001", "G003"),
    # unfiltered scans feed large joins, aggregations, shuffles and sorts
    ("S003", "J001"),
    ("S003", "A002"),
    ("S003", "E001"),
    ("S003", "T001"),
    ("S002", "J001"),
    ("S002", "E001"),
    ("S019", "J001"),
    ("S019", "G001"),
    ("S019", "Q001"),
    ("S019", "Q005"),
    # join explosion inflates everything after it
    ("J001", "A002"),
    ("J001", "Q003"),
    ("J001", "G001"),
    ("J003", "G002"),
    ("J003", "Q003"),
    ("A002", "G002"),
    ("A002", "Q003"),
    ("G001", "Q005"),
    ("G001", "Q001"),
    ("G002", "Q002"),
    ("Q008", "Q001"),
    ("E001", "E002"),
    ("E001", "Q006"),
    ("E001", "Q008"),
    ("S009", "S007"),
    ("S003", "S002"),
    ("T002", "Q003"),
})

SEVERITY_IMPACT = {
    Severity.CRITICAL: 40.0,
    Severity.WARNING: 25.0,
    Severity.INFO: 15.0,
}
SYMPTOM_IMPACT = 10.0

ROW_MATCH_CONFIDENCE = 1.0
RULE_PAIR_CONFIDENCE = 0.8
MAX_CHAINS = 10

# (upstream, downstream, tree) -> confidence weight; 0 means not plausible
Plausibility = Callable[[Diagnostic, Diagnostic, OperatorTree], float]
Window = Tuple[float, float]


@dataclass(frozen=True)
class CausalEdge:
    """One "cause explains effect" link between two diagnostics."""
    cause: Diagnostic
    effect: Diagnostic
    kind: str
    confidence: float
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cause": self.cause.key,
            "effect": self.effect.key,
            "kind": self.kind,
            "confidence": round(self.confidence, 3),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class CausalChain:
    """A path from a root cause down to a leaf symptom."""
    diagnostics: Tuple[Diagnostic, ...]
    confidence: float
    explanation: str = ""

    @property
    def chain(self) -> List[str]:
        return [d.rule_id for d in self.diagnostics]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain": " -> ".join(self.chain),
            "nodes": [d.node_path for d in self.diagnostics],
            "confidence": round(self.confidence, 3),
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class RootCause:
    """One independent problem and the findings it explains."""
    id: str
    diagnostic: Diagnostic
    co_causes: Tuple[Diagnostic, ...] = ()
    symptoms: Tuple[Diagnostic, ...] = ()
    impact_percentage: float = 0.0
    confidence: float = 1.0
    evidence: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()

    @property
    def rule_id(self) -> str:
        return self.diagnostic.rule_id

    @property
    def node_id(self) -> Optional[int]:
        return self.diagnostic.node_id

    @property
    def description(self) -> str:
        return f"{self.diagnostic.rule_name} on {self.diagnostic.node_path}"

    @property
    def diagnostic_ids(self) -> List[str]:
        return [self.diagnostic.rule_id] + [d.rule_id for d in self.co_causes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "description": self.description,
            "severity": self.diagnostic.severity.label,
            "diagnostic_ids": self.diagnostic_ids,
            "affected_nodes": sorted({d.node_path for d in (self.diagnostic,) + self.co_causes + self.symptoms}),
            "impact_percentage": self.impact_percentage,
            "confidence": round(self.confidence, 3),
            "evidence": list(self.evidence),
            "symptoms": [d.key for d in self.symptoms],
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class RootCauseAnalysis:
    """Ranked root causes plus the chains that connect them to symptoms."""
    root_causes: Tuple[RootCause, ...] = ()
    causal_chains: Tuple[CausalChain, ...] = ()
    edges: Tuple[CausalEdge, ...] = ()
    summary: str = "No significant performance issues found"
    total_diagnostics: int = 0

    @property
    def multiple_root_causes(self) -> bool:
        return len(self.root_causes) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_causes": [rc.to_dict() for rc in self.root_causes],
            "causal_chains": [c.to_dict() for c in self.causal_chains],
            "edges": [e.to_dict() for e in self.edges],
            "summary": self.summary,
            "total_diagnostics": self.total_diagnostics,
            "multiple_root_causes": self.multiple_root_causes,
        }


def overlap_ratio(first: Window, second: Window) -> float:
    """Overlap of two windows as a share of the shorter one."""
    start = max(first[0], second[0])
    end = min(first[1], second[1])
    if end < start:
        return 0.0
    shorter = min(first[1] - first[0], second[1] - second[0])
    if shorter <= 0:
        # A zero-length window that touches the other one is fully inside it
        return 1.0
    return min((end - start) / shorter, 1.0)


def input_rows(node: OperatorNode) -> List[float]:
    """Candidate input row counts for a consumer node."""
    spec = node.specialized
    if isinstance(spec, JoinMetrics):
        return [r for r in (spec.probe_rows, spec.build_rows) if r]
    if isinstance(spec, AggregateMetrics) and spec.input_rows:
        return [spec.input_rows]
    return [node.common.push_rows] if node.common.push_rows else []


def rows_match(produced: float, consumed: float, tolerance: float) -> bool:
    if produced <= 0 or consumed <= 0:
        return False
    return abs(produced - consumed) <= tolerance * max(produced, consumed)


def default_plausibility(tolerance: float) -> Plausibility:
    """Row-flow match, else a known rule pair."""

    def plausible(upstream: Diagnostic, downstream: Diagnostic, tree: OperatorTree) -> float:
        up_node = tree.get(upstream.node_id)
        down_node = tree.get(downstream.node_id)
        if up_node is not None and down_node is not None:
            produced = up_node.common.pull_rows
            if any(rows_match(produced, consumed, tolerance) for consumed in input_rows(down_node)):
                return ROW_MATCH_CONFIDENCE
        if (upstream.rule_id, downstream.rule_id) in KNOWN_CAUSE_PAIRS:
            return RULE_PAIR_CONFIDENCE
        return 0.0

    return plausible


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


class RootCauseAnalyzer:
    """Collapses symptom-level diagnostics into independent root causes."""

    def __init__(
        self,
        min_overlap_ratio: Optional[float] = None,
        row_match_tolerance: Optional[float] = None,
        plausibility: Optional[Plausibility] = None,
    ):
        settings = get_settings()
        self.min_overlap_ratio = (
            min_overlap_ratio if min_overlap_ratio is not None else settings.causal_min_overlap_ratio
        )
        self.row_match_tolerance = (
            row_match_tolerance if row_match_tolerance is not None else settings.causal_row_match_tolerance
        )
        self.plausibility = plausibility or default_plausibility(self.row_match_tolerance)

    def analyze(
        self,
        diagnostics: Sequence[Diagnostic],
        tree: OperatorTree,
        timings: Optional[Mapping[int, Window]] = None,
    ) -> RootCauseAnalysis:
        """Build the causal graph and extract root causes.

        Args:
            diagnostics: Rule findings (any order)
            tree: Operator tree the findings refer to
            timings: Optional execution windows per node id, overriding the
                windows derived by the parser

        Returns:
            RootCauseAnalysis; empty when there are no diagnostics.
        """
        if not diagnostics:
            return RootCauseAnalysis()

        diags = sorted(diagnostics, key=sort_key)
        edges: List[Tuple[int, int, str, float, str]] = []
        primaries = self._group_by_node(diags, edges)
        self._link_nodes(diags, primaries, tree, timings or {}, edges)
        self._link_query_level(diags, primaries, edges)

        root_causes, chains = self._components(diags, edges)
        edge_objects = tuple(
            CausalEdge(cause=diags[a], effect=diags[b], kind=kind, confidence=conf, reason=reason)
            for a, b, kind, conf, reason in edges
        )
        logger.debug(
            "Root cause analysis: %d diagnostics, %d edges, %d root causes",
            len(diags), len(edges), len(root_causes),
        )
        return RootCauseAnalysis(
            root_causes=tuple(root_causes),
            causal_chains=tuple(chains),
            edges=edge_objects,
            summary=self._summarize(root_causes),
            total_diagnostics=len(diags),
        )

    def _group_by_node(self, diags: List[Diagnostic], edges: list) -> Dict[int, int]:
        """Pick a primary per node and link it to the node's other findings."""
        by_node: Dict[int, List[int]] = defaultdict(list)
        for index, diagnostic in enumerate(diags):
            if diagnostic.node_id is not None:
                by_node[diagnostic.node_id].append(index)

        primaries: Dict[int, int] = {}
        for node_id, indices in by_node.items():
            # diags is already in rank order, so ties keep the better-ranked finding
            primary = max(indices, key=lambda i: (diags[i].delta, -i))
            primaries[node_id] = primary
            for index in indices:
                if index != primary:
                    edges.append((primary, index, "intra", 1.0, "same operator"))
        return primaries

    def _window(self, node: OperatorNode, timings: Mapping[int, Window]) -> Window:
        return timings.get(node.id, node.window)

    def _link_nodes(
        self,
        diags: List[Diagnostic],
        primaries: Dict[int, int],
        tree: OperatorTree,
        timings: Mapping[int, Window],
        edges: list,
    ) -> None:
        for up_id, up_index in primaries.items():
            up_node = tree.get(up_id)
            if up_node is None:
                continue
            downstream = set(tree.downstream_path(up_id))
            for down_id, down_index in primaries.items():
                if down_id == up_id or down_id not in downstream:
                    continue
                down_node = tree.get(down_id)
                overlap = overlap_ratio(self._window(up_node, timings), self._window(down_node, timings))
                if overlap < self.min_overlap_ratio:
                    continue
                weight = self.plausibility(diags[up_index], diags[down_index], tree)
                if weight <= 0:
                    continue
                reason = "row flow matches" if weight >= ROW_MATCH_CONFIDENCE else "known cause and effect"
                edges.append((up_index, down_index, "inter", overlap * weight, reason))

    def _link_query_level(self, diags: List[Diagnostic], primaries: Dict[int, int], edges: list) -> None:
        query_level = [i for i, d in enumerate(diags) if d.node_id is None]
        causes = list(primaries.values()) + query_level
        for effect in query_level:
            for cause in causes:
                if cause == effect:
                    continue
                if (diags[cause].rule_id, diags[effect].rule_id) in KNOWN_CAUSE_PAIRS:
                    edges.append((cause, effect, "query", RULE_PAIR_CONFIDENCE, "known cause and effect"))

    def _components(self, diags: List[Diagnostic], edges: list) -> Tuple[List[RootCause], List[CausalChain]]:
        uf = _UnionFind(len(diags))
        in_degree = [0] * len(diags)
        outgoing: Dict[int, List[Tuple[int, float]]] = defaultdict(list)
        for a, b, _kind, conf, _reason in edges:
            uf.union(a, b)
            in_degree[b] += 1
            outgoing[a].append((b, conf))

        members: Dict[int, List[int]] = defaultdict(list)
        for index in range(len(diags)):
            members[uf.find(index)].append(index)

        def component_rank(indices: List[int]) -> tuple:
            node_ids = [diags[i].node_id for i in indices if diags[i].node_id is not None]
            return (
                -max(int(diags[i].severity) for i in indices),
                -max(diags[i].ratio for i in indices),
                min(node_ids) if node_ids else float("inf"),
            )

        components = sorted(members.values(), key=component_rank)
        root_causes: List[RootCause] = []
        chains: List[CausalChain] = []
        for number, indices in enumerate(components, start=1):
            # indices are ascending, which is rank order
            sources = [i for i in indices if in_degree[i] == 0] or [indices[0]]
            root, co_causes = sources[0], sources[1:]
            symptoms = [i for i in indices if i not in sources]
            component_edges = [e for e in edges if e[0] in indices]
            confidence = (
                sum(e[3] for e in component_edges) / len(component_edges) if component_edges else 1.0
            )
            root_causes.append(
                RootCause(
                    id=f"RC{number:03d}",
                    diagnostic=diags[root],
                    co_causes=tuple(diags[i] for i in co_causes),
                    symptoms=tuple(diags[i] for i in symptoms),
                    impact_percentage=min(
                        100.0, SEVERITY_IMPACT[diags[root].severity] + SYMPTOM_IMPACT * len(symptoms)
                    ),
                    confidence=confidence,
                    evidence=self._evidence(diags, root, component_edges),
                    suggestions=_merge_suggestions(diags[i] for i in [root] + co_causes + symptoms),
                )
            )
            for source in sources:
                chains.extend(self._chains_from(diags, source, outgoing))

        return root_causes, chains[:MAX_CHAINS]

    @staticmethod
    def _evidence(diags: List[Diagnostic], root: int, component_edges: list) -> Tuple[str, ...]:
        evidence = [diags[root].message] if diags[root].message else []
        for a, b, _kind, _conf, reason in component_edges:
            evidence.append(f"{diags[a].rule_id} -> {diags[b].rule_id} on {diags[b].node_path} ({reason})")
        return tuple(evidence)

    @staticmethod
    def _chains_from(
        diags: List[Diagnostic], source: int, outgoing: Dict[int, List[Tuple[int, float]]]
    ) -> List[CausalChain]:
        chains: List[CausalChain] = []
        stack: List[Tuple[List[int], float]] = [([source], 1.0)]
        while stack and len(chains) < MAX_CHAINS:
            path, confidence = stack.pop()
            nexts = [(b, c) for b, c in outgoing.get(path[-1], []) if b not in path]
            if not nexts:
                if len(path) > 1:
                    chain_diags = tuple(diags[i] for i in path)
                    chains.append(
                        CausalChain(
                            diagnostics=chain_diags,
                            confidence=confidence,
                            explanation=" leads to ".join(d.rule_name for d in chain_diags),
                        )
                    )
                continue
            for b, c in reversed(nexts):
                stack.append((path + [b], confidence * c))
        return chains

    @staticmethod
    def _summarize(root_causes: List[RootCause]) -> str:
        if not root_causes:
            return "No significant performance issues found"
        if len(root_causes) == 1:
            cause = root_causes[0]
            if not cause.symptoms:
                return f"1 root cause: {cause.description}"
            return f"1 root cause: {cause.description}, explaining {len(cause.symptoms)} downstream finding(s)"
        top = ", ".join(rc.rule_id for rc in root_causes[:3])
        return f"{len(root_causes)} independent root causes, most significant: {top}"


def _merge_suggestions(diagnostics) -> Tuple[str, ...]:
    merged: List[str] = []
    seen: Set[str] = set()
    for diagnostic in diagnostics:
        for suggestion in diagnostic.suggestions:
            if suggestion not in seen:
                seen.add(suggestion)
                merged.append(suggestion)
    return tuple(merged)
