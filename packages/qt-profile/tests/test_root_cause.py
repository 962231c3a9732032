"""Tests for causal graph construction and root cause extraction."""

import pytest

from qt_profile.analyzer import (
    Diagnostic,
    RootCauseAnalyzer,
    RuleEngine,
    Severity,
)
from qt_profile.analyzer.root_cause import overlap_ratio, rows_match


@pytest.fixture
def tree(sample_document):
    return sample_document.tree


@pytest.fixture
def analyzer():
    return RootCauseAnalyzer(min_overlap_ratio=0.5, row_match_tolerance=0.1)


def finding(tree, rule_id, node_id=None, severity=Severity.WARNING, measured=2.0, threshold=1.0):
    node = tree.get(node_id)
    return Diagnostic(
        rule_id=rule_id,
        rule_name=f"Rule {rule_id}",
        severity=severity,
        category="test",
        node_ids=(node_id,) if node_id is not None else (),
        node_path=node.path if node is not None else "Query",
        measured_value=measured,
        threshold=threshold,
        message=f"{rule_id} fired",
        suggestions=(f"fix {rule_id}",),
    )


def weak_components(diagnostics, edges):
    """Group diagnostic keys into weakly-connected components of the edge set."""
    neighbours = {d.key: set() for d in diagnostics}
    for edge in edges:
        neighbours[edge.cause.key].add(edge.effect.key)
        neighbours[edge.effect.key].add(edge.cause.key)
    seen, components = set(), []
    for start in neighbours:
        if start in seen:
            continue
        stack, component = [start], set()
        while stack:
            key = stack.pop()
            if key in component:
                continue
            component.add(key)
            stack.extend(neighbours[key] - component)
        seen |= component
        components.append(component)
    return components


def is_acyclic(edges):
    outgoing = {}
    for edge in edges:
        outgoing.setdefault(edge.cause.key, set()).add(edge.effect.key)
        outgoing.setdefault(edge.effect.key, set())
    in_degree = {key: 0 for key in outgoing}
    for targets in outgoing.values():
        for key in targets:
            in_degree[key] += 1
    ready = [key for key, degree in in_degree.items() if degree == 0]
    visited = 0
    while ready:
        key = ready.pop()
        visited += 1
        for target in outgoing[key]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                ready.append(target)
    return visited == len(outgoing)


def assert_graph_invariants(analysis, diagnostics):
    assert is_acyclic(analysis.edges)
    placed = []
    for cause in analysis.root_causes:
        placed.append(cause.diagnostic.key)
        placed.extend(d.key for d in cause.co_causes)
        placed.extend(d.key for d in cause.symptoms)
    assert sorted(placed) == sorted(d.key for d in diagnostics)
    assert len(analysis.root_causes) == len(weak_components(diagnostics, analysis.edges))


class TestHelpers:

    @pytest.mark.parametrize("first,second,expected", [
        ((0.0, 10.0), (5.0, 20.0), 0.5),
        ((0.0, 10.0), (2.0, 4.0), 1.0),
        ((0.0, 10.0), (20.0, 30.0), 0.0),
        ((0.0, 10.0), (10.0, 20.0), 0.0),
        ((5.0, 5.0), (0.0, 10.0), 1.0),
    ])
    def test_overlap_ratio(self, first, second, expected):
        assert overlap_ratio(first, second) == pytest.approx(expected)

    def test_rows_match(self):
        assert rows_match(1_000, 1_050, 0.1)
        assert not rows_match(1_000, 2_000, 0.1)
        assert not rows_match(0, 0, 0.1)


class TestSampleProfile:
    """A slow scan explains the hot-spot, the join explosion and the long query."""

    @pytest.fixture
    def analysis(self, sample_document, thresholds, analyzer):
        diagnostics = RuleEngine().evaluate(sample_document, thresholds)
        return analyzer.analyze(diagnostics, sample_document.tree)

    def test_single_root_cause(self, analysis):
        assert len(analysis.root_causes) == 1
        cause = analysis.root_causes[0]
        assert cause.id == "RC001"
        assert cause.rule_id == "S019"
        assert cause.node_id == 0
        assert not analysis.multiple_root_causes

    def test_symptoms(self, analysis):
        cause = analysis.root_causes[0]
        assert [d.rule_id for d in cause.symptoms] == ["G001", "J001", "Q001"]
        assert cause.co_causes == ()

    def test_impact_and_confidence(self, analysis):
        cause = analysis.root_causes[0]
        assert cause.impact_percentage == 55.0
        assert cause.confidence == pytest.approx(2.8 / 3)

    def test_edges(self, analysis):
        kinds = {(e.cause.rule_id, e.effect.rule_id): e.kind for e in analysis.edges}
        assert kinds == {("S019", "G001"): "intra", ("S019", "J001"): "inter", ("S019", "Q001"): "query"}

    def test_join_linked_by_row_flow(self, analysis):
        edge = next(e for e in analysis.edges if e.effect.rule_id == "J001")
        assert edge.confidence == pytest.approx(1.0)
        assert edge.reason == "row flow matches"

    def test_chains(self, analysis):
        assert [c.chain for c in analysis.causal_chains] == [
            ["S019", "G001"], ["S019", "J001"], ["S019", "Q001"],
        ]
        assert analysis.causal_chains[2].confidence == pytest.approx(0.8)

    def test_summary(self, analysis):
        assert analysis.summary == (
            "1 root cause: Slow Scan on OLAP_SCAN (plan_node_id=0), explaining 3 downstream finding(s)"
        )
        assert analysis.total_diagnostics == 4

    def test_to_dict(self, analysis):
        data = analysis.to_dict()
        assert data["root_causes"][0]["diagnostic_ids"] == ["S019"]
        assert data["causal_chains"][0]["chain"] == "S019 -> G001"
        assert data["multiple_root_causes"] is False

    def test_graph_invariants(self, sample_document, thresholds, analyzer):
        diagnostics = RuleEngine().evaluate(sample_document, thresholds)
        assert_graph_invariants(analyzer.analyze(diagnostics, sample_document.tree), diagnostics)


class TestGraphConstruction:

    def test_empty_input(self, analyzer, tree):
        analysis = analyzer.analyze([], tree)
        assert analysis.root_causes == ()
        assert analysis.summary == "No significant performance issues found"

    def test_primary_is_largest_excess(self, analyzer, tree):
        small = finding(tree, "S001", 0, Severity.CRITICAL, measured=6.0, threshold=2.0)
        large = finding(tree, "S019", 0, Severity.WARNING, measured=12_000.0, threshold=5_000.0)
        analysis = analyzer.analyze([small, large], tree)
        assert analysis.root_causes[0].rule_id == "S019"
        assert [d.rule_id for d in analysis.root_causes[0].symptoms] == ["S001"]

    def test_unrelated_operators_are_independent(self, analyzer, tree):
        # Node 0 and node 1 are sibling scans; neither feeds the other
        first = finding(tree, "S019", 0, Severity.CRITICAL, measured=30.0)
        second = finding(tree, "S009", 1)
        analysis = analyzer.analyze([second, first], tree)
        assert [rc.rule_id for rc in analysis.root_causes] == ["S019", "S009"]
        assert analysis.multiple_root_causes
        assert analysis.summary == "2 independent root causes, most significant: S019, S009"

    def test_known_pair_without_row_match(self, analyzer, tree):
        # The scan's 1M output rows do not match the exchange's 20M input rows
        scan = finding(tree, "S003", 0)
        exchange = finding(tree, "E001", 4)
        analysis = analyzer.analyze([scan, exchange], tree)
        assert len(analysis.root_causes) == 1
        edge = analysis.edges[0]
        assert edge.reason == "known cause and effect"
        assert edge.confidence == pytest.approx(0.8)

    def test_implausible_link_is_dropped(self, analyzer, tree):
        scan = finding(tree, "S003", 0)
        exchange = finding(tree, "T002", 4)
        assert len(analyzer.analyze([scan, exchange], tree).root_causes) == 2

    def test_disjoint_windows_are_not_linked(self, analyzer, tree):
        scan = finding(tree, "S019", 0)
        join = finding(tree, "J001", 3)
        timings = {0: (0.0, 1_000.0), 3: (5_000.0, 6_000.0)}
        analysis = analyzer.analyze([scan, join], tree, timings=timings)
        assert len(analysis.root_causes) == 2

    def test_custom_plausibility(self, tree):
        analyzer = RootCauseAnalyzer(plausibility=lambda up, down, t: 0.0)
        scan = finding(tree, "S019", 0)
        join = finding(tree, "J001", 3)
        assert len(analyzer.analyze([scan, join], tree).root_causes) == 2

    def test_downstream_only(self, analyzer, tree):
        # The join sits downstream of the scan, never the other way round
        scan = finding(tree, "S019", 0)
        join = finding(tree, "J001", 3, Severity.CRITICAL)
        analysis = analyzer.analyze([scan, join], tree)
        assert [e.cause.rule_id for e in analysis.edges] == ["S019"]
        assert analysis.root_causes[0].rule_id == "S019"

    def test_query_level_co_causes(self, analyzer, tree):
        scan = finding(tree, "S019", 0)
        schedule = finding(tree, "Q008", None, measured=1.5)
        long_query = finding(tree, "Q001", None, measured=1.2)
        analysis = analyzer.analyze([scan, schedule, long_query], tree)
        assert len(analysis.root_causes) == 1
        cause = analysis.root_causes[0]
        assert cause.rule_id == "S019"
        assert [d.rule_id for d in cause.co_causes] == ["Q008"]
        assert [d.rule_id for d in cause.symptoms] == ["Q001"]
        assert cause.diagnostic_ids == ["S019", "Q008"]

    def test_suggestions_merged_without_duplicates(self, analyzer, tree):
        scan = finding(tree, "S019", 0)
        hot = finding(tree, "G001", 0, measured=1.5)
        suggestions = analyzer.analyze([scan, hot], tree).root_causes[0].suggestions
        assert suggestions == ("fix S019", "fix G001")

    def test_impact_capped(self, analyzer, tree):
        scan = finding(tree, "S019", 0, Severity.CRITICAL, measured=100.0)
        others = [finding(tree, f"X{i:02d}", 0, measured=1.5) for i in range(8)]
        cause = analyzer.analyze([scan] + others, tree).root_causes[0]
        assert cause.impact_percentage == 100.0

    def test_graph_invariants_across_components(self, analyzer, tree):
        diagnostics = [
            finding(tree, "S019", 0, Severity.CRITICAL, measured=30.0),
            finding(tree, "G001", 0, measured=1.5),
            finding(tree, "S009", 1),
            finding(tree, "Q008", None, measured=1.5),
            finding(tree, "Q001", None, measured=1.2),
            finding(tree, "Q002", None, measured=1.1),
        ]
        analysis = analyzer.analyze(diagnostics, tree)
        assert len(analysis.root_causes) == 3
        assert_graph_invariants(analysis, diagnostics)

    def test_graph_invariants_without_edges(self, analyzer, tree):
        diagnostics = [finding(tree, "S009", 1), finding(tree, "Q002", None)]
        analysis = analyzer.analyze(diagnostics, tree)
        assert analysis.edges == ()
        assert_graph_invariants(analysis, diagnostics)
