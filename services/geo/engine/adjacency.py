"""
Adjacency graph over suburbs.

Stored as directed neighbour lists per source suburb. The relation is meant
to be symmetric but reciprocity is measured, never enforced.

validate() reports each rule independently:
  - missing node      source/target absent from the catalog (referential)
  - self-loop         suburb lists itself (schema)
  - cross-cluster     endpoints in different clusters (informational)
  - reciprocity rate  reversed-edge fraction (diagnostic only)

enforce_cross_cluster() is the explicit rewrite step that drops disallowed
cross-cluster edges; it never runs as part of validation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from services.geo.engine.cluster_index import ClusterIndex
from services.geo.engine.models import CrossClusterMode, Edge, ScoreWeights
from services.geo.engine.schemas import NormalizedAdjacency, normalize_adjacency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdjacencyGraph:
    neighbours: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def neighbours_of(self, slug: str) -> tuple[str, ...]:
        return self.neighbours.get(slug, ())

    def has_edge(self, source: str, target: str) -> bool:
        return target in self.neighbours.get(source, ())

    def degree(self, slug: str) -> int:
        return len(self.neighbours.get(slug, ()))

    def edges(self) -> Iterator[Edge]:
        """Directed edges in document order."""
        for source, targets in self.neighbours.items():
            for target in targets:
                yield Edge(source, target)

    @property
    def edge_count(self) -> int:
        return sum(len(t) for t in self.neighbours.values())

    def to_document(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self.neighbours.items()}


def build_graph(adjacency: Any, index: Optional[ClusterIndex] = None, strict: bool = False) -> AdjacencyGraph:
    """
    Build the graph from a raw adjacency document or an already normalized mapping.

    The index is accepted for symmetry with validate(); construction itself
    does not drop unknown nodes, so validation can report them.
    """
    if isinstance(adjacency, AdjacencyGraph):
        return adjacency
    normalized: NormalizedAdjacency
    if isinstance(adjacency, dict) and all(isinstance(v, tuple) for v in adjacency.values()):
        normalized = adjacency
    else:
        normalized = normalize_adjacency(adjacency, strict=strict)
    graph = AdjacencyGraph(neighbours=dict(normalized))
    if index is not None:
        logger.debug(
            "Adjacency graph: %d sources, %d edges over %d catalog suburbs",
            len(graph.neighbours), graph.edge_count, len(index),
        )
    return graph


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CrossClusterEdge:
    source: str
    target: str
    source_cluster: str
    target_cluster: str

    def describe(self) -> str:
        return f"{self.source}({self.source_cluster}) -> {self.target}({self.target_cluster})"


@dataclass
class AdjacencyFindings:
    """Outcome of one validation pass; every list is complete, never truncated."""
    missing: list[str] = field(default_factory=list)
    missing_slugs: set[str] = field(default_factory=set)
    self_loops: list[str] = field(default_factory=list)
    cross_cluster: list[CrossClusterEdge] = field(default_factory=list)
    disallowed_cross_cluster: list[CrossClusterEdge] = field(default_factory=list)
    total_edges: int = 0
    reciprocal_edges: int = 0

    @property
    def reciprocity_rate(self) -> float:
        return self.reciprocal_edges / self.total_edges if self.total_edges else 0.0


def reciprocity(graph: AdjacencyGraph) -> tuple[int, int]:
    """(reciprocal edges, total directed edges)."""
    total = reciprocal = 0
    for edge in graph.edges():
        total += 1
        if graph.has_edge(edge.target, edge.source):
            reciprocal += 1
    return reciprocal, total


def validate(
    graph: AdjacencyGraph,
    index: ClusterIndex,
    weights: Optional[ScoreWeights] = None,
) -> AdjacencyFindings:
    findings = AdjacencyFindings()
    drop_mode = weights is not None and weights.cross_cluster_mode == CrossClusterMode.DROP

    for source, targets in graph.neighbours.items():
        source_cluster = index.cluster_of(source)
        if source_cluster is None:
            findings.missing.append(f'adjacency: source "{source}" not in clusters')
            findings.missing_slugs.add(source)
        for target in targets:
            if target == source:
                findings.self_loops.append(f'adjacency: "{source}" lists itself')
                continue
            target_cluster = index.cluster_of(target)
            if target_cluster is None:
                findings.missing.append(f'adjacency: "{source}" -> "{target}" not in clusters')
                findings.missing_slugs.add(target)
                continue
            if source_cluster is not None and source_cluster != target_cluster:
                cross = CrossClusterEdge(source, target, source_cluster, target_cluster)
                findings.cross_cluster.append(cross)
                if drop_mode and not weights.is_whitelisted(source, target):
                    findings.disallowed_cross_cluster.append(cross)

    findings.reciprocal_edges, findings.total_edges = reciprocity(graph)
    logger.info(
        "Adjacency: %d edges, %d cross-cluster, reciprocity %.1f%%, %d missing, %d self-loops",
        findings.total_edges, len(findings.cross_cluster), findings.reciprocity_rate * 100,
        len(findings.missing), len(findings.self_loops),
    )
    return findings


# ---------------------------------------------------------------------------
# Enforcement and helpers
# ---------------------------------------------------------------------------

def enforce_cross_cluster(
    graph: AdjacencyGraph,
    index: ClusterIndex,
    weights: ScoreWeights,
) -> tuple[AdjacencyGraph, list[Edge]]:
    """
    Keep only same-cluster or whitelisted edges; blacklisted edges always go.

    Edges touching a suburb outside the catalog are left for validation to
    report. Returns the rewritten graph and the removed edges.
    """
    kept: dict[str, tuple[str, ...]] = {}
    removed: list[Edge] = []
    for source, targets in graph.neighbours.items():
        keep = []
        for target in targets:
            if weights.is_blacklisted(source, target):
                removed.append(Edge(source, target))
                continue
            source_cluster = index.cluster_of(source)
            target_cluster = index.cluster_of(target)
            crosses = (
                source_cluster is not None
                and target_cluster is not None
                and source_cluster != target_cluster
            )
            if crosses and not weights.is_whitelisted(source, target):
                removed.append(Edge(source, target))
                continue
            keep.append(target)
        kept[source] = tuple(keep)
    logger.info("Cross-cluster enforcement removed %d edge(s)", len(removed))
    return AdjacencyGraph(neighbours=kept), removed


def representative(cluster_slug: str, graph: AdjacencyGraph, index: ClusterIndex) -> Optional[str]:
    """Best-connected suburb of a cluster (highest degree, ties by slug)."""
    members = index.cluster_to_suburbs.get(cluster_slug, ())
    if not members:
        return None
    return min(members, key=lambda s: (-graph.degree(s), s))


def to_dot(graph: AdjacencyGraph) -> str:
    """Graphviz export of every directed edge, sorted for stable output."""
    lines = ["graph G {", "  graph [overlap=false];", "  node [shape=point];"]
    for edge in sorted(graph.edges(), key=lambda e: (e.source, e.target)):
        lines.append(f'  "{edge.source}" -- "{edge.target}";')
    lines.append("}")
    return "\n".join(lines) + "\n"
