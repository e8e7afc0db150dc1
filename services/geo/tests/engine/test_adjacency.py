"""
Adjacency graph tests.

Covers:
- Reciprocity is measured, never enforced
- Self-loops and missing nodes
- Cross-cluster findings and the drop policy
- Explicit cross-cluster enforcement with whitelist/blacklist
- Representative suburb and DOT export
"""

import pytest

from services.geo.engine.adjacency import (
    AdjacencyGraph,
    build_graph,
    enforce_cross_cluster,
    reciprocity,
    representative,
    to_dot,
    validate,
)
from services.geo.engine.cluster_index import build_index
from services.geo.engine.models import CrossClusterMode, Edge, ScoreWeights
from services.geo.engine.schemas import normalize_clusters
from services.geo.tests.engine.conftest import SEQ_ADJACENCY, SEQ_CLUSTERS


@pytest.fixture
def index():
    return build_index(normalize_clusters(SEQ_CLUSTERS))


@pytest.fixture
def graph(index):
    return build_graph(SEQ_ADJACENCY, index)


# ===================================================================
# Construction
# ===================================================================


class TestBuild:

    def test_from_raw_document(self):
        graph = build_graph({"Spring Hill": {"adjacent_suburbs": ["New Farm"]}})
        assert graph.neighbours == {"spring-hill": ("new-farm",)}

    def test_graph_passes_through(self, graph):
        assert build_graph(graph) is graph

    def test_edges_and_degree(self, graph):
        assert graph.edge_count == 12
        assert graph.degree("booval") == 2
        assert graph.degree("kangaroo-point") == 0
        assert graph.has_edge("redbank", "springwood")
        assert not graph.has_edge("slacks-creek", "springwood")
        assert next(graph.edges()) == Edge("spring-hill", "fortitude-valley")


# ===================================================================
# Validation
# ===================================================================


class TestValidate:

    def test_one_directional_edge(self, index):
        graph = AdjacencyGraph({"spring-hill": ("new-farm",)})
        findings = validate(graph, index)
        assert findings.reciprocity_rate < 1.0
        assert findings.missing == []
        assert findings.self_loops == []

    def test_reciprocal_pair(self, index):
        graph = AdjacencyGraph({"spring-hill": ("new-farm",), "new-farm": ("spring-hill",)})
        assert validate(graph, index).reciprocity_rate == 1.0

    def test_reciprocity_counts(self, graph):
        # spring-hill -> new-farm and springwood -> slacks-creek have no reverse edge
        assert reciprocity(graph) == (10, 12)

    def test_empty_graph_rate(self, index):
        assert validate(AdjacencyGraph(), index).reciprocity_rate == 0.0

    def test_self_loop(self, index):
        findings = validate(AdjacencyGraph({"booval": ("booval", "ipswich")}), index)
        assert findings.self_loops == ['adjacency: "booval" lists itself']

    def test_missing_nodes(self, index):
        graph = AdjacencyGraph({"booval": ("atlantis",), "ghost": ("booval",)})
        findings = validate(graph, index)
        assert findings.missing == [
            'adjacency: "booval" -> "atlantis" not in clusters',
            'adjacency: source "ghost" not in clusters',
        ]
        assert findings.missing_slugs == {"atlantis", "ghost"}

    def test_cross_cluster_edges_are_informational(self, graph, index):
        findings = validate(graph, index)
        assert [e.describe() for e in findings.cross_cluster] == [
            "redbank(ipswich) -> springwood(logan)",
            "springwood(logan) -> redbank(ipswich)",
        ]
        assert findings.disallowed_cross_cluster == []

    def test_drop_mode_flags_non_whitelisted(self, graph, index):
        weights = ScoreWeights(cross_cluster_mode=CrossClusterMode.DROP)
        assert len(validate(graph, index, weights).disallowed_cross_cluster) == 2

    def test_drop_mode_whitelist_is_symmetric(self, graph, index):
        weights = ScoreWeights(
            cross_cluster_mode=CrossClusterMode.DROP,
            whitelist=frozenset({("springwood", "redbank")}),
        )
        assert validate(graph, index, weights).disallowed_cross_cluster == []


# ===================================================================
# Enforcement
# ===================================================================


class TestEnforceCrossCluster:

    def test_removes_cross_cluster_edges(self, graph, index):
        enforced, removed = enforce_cross_cluster(graph, index, ScoreWeights())
        assert removed == [Edge("redbank", "springwood"), Edge("springwood", "redbank")]
        assert enforced.neighbours_of("redbank") == ("booval",)
        assert enforced.neighbours_of("springwood") == ("slacks-creek",)
        assert validate(enforced, index).cross_cluster == []

    def test_whitelisted_edges_survive(self, graph, index):
        weights = ScoreWeights(whitelist=frozenset({("redbank", "springwood")}))
        enforced, removed = enforce_cross_cluster(graph, index, weights)
        assert removed == []
        assert enforced.neighbours == graph.neighbours

    def test_blacklist_wins_within_cluster(self, graph, index):
        weights = ScoreWeights(
            whitelist=frozenset({("redbank", "springwood")}),
            blacklist=frozenset({("ipswich", "booval")}),
        )
        enforced, removed = enforce_cross_cluster(graph, index, weights)
        assert removed == [Edge("ipswich", "booval"), Edge("booval", "ipswich")]
        assert enforced.neighbours_of("ipswich") == ()

    def test_unknown_nodes_left_for_validation(self, index):
        graph = AdjacencyGraph({"booval": ("atlantis",)})
        enforced, removed = enforce_cross_cluster(graph, index, ScoreWeights())
        assert removed == []
        assert enforced.neighbours_of("booval") == ("atlantis",)


# ===================================================================
# Helpers
# ===================================================================


class TestHelpers:

    def test_representative_highest_degree_then_slug(self, graph, index):
        assert representative("brisbane", graph, index) == "fortitude-valley"
        assert representative("ipswich", graph, index) == "booval"
        assert representative("atlantis", graph, index) is None

    def test_dot_export_sorted(self):
        dot = to_dot(AdjacencyGraph({"b": ("a",), "a": ("c", "b")}))
        lines = dot.splitlines()
        assert lines[0] == "graph G {"
        assert lines[3:6] == ['  "a" -- "b";', '  "a" -- "c";', '  "b" -- "a";']
        assert lines[-1] == "}"
