"""
Per-run geo context.

load_context() reads every source document once, validates and normalizes
it, and returns one immutable GeoContext that is passed explicitly to
whatever needs the catalog, graph, coverage or weights. There are no
module-level caches.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from services.geo.config import Settings, settings as default_settings
from services.geo.engine.adjacency import AdjacencyGraph, build_graph, validate
from services.geo.engine.cluster_index import ClusterIndex, build_index
from services.geo.engine.coverage import Coverage
from services.geo.engine.errors import GeoInputError, ReferentialError, SchemaError
from services.geo.engine.models import Cluster, ScoreWeights
from services.geo.engine.proximity import ProximityScorer
from services.geo.engine.schemas import collect_config, normalize_clusters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoPaths:
    clusters: Path
    adjacency: Path
    coverage: Optional[Path] = None
    config: Optional[Path] = None
    proximity: Optional[Path] = None
    cluster_map: Optional[Path] = None

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings, data_dir: Optional[Path] = None) -> "GeoPaths":
        root = Path(data_dir or cfg.data_dir)
        return cls(
            clusters=root / cfg.clusters_file,
            adjacency=root / cfg.adjacency_file,
            coverage=root / cfg.coverage_file,
            config=root / cfg.config_file,
            proximity=root / cfg.proximity_file,
            cluster_map=root / cfg.cluster_map_file,
        )


@dataclass(frozen=True)
class LoadedDocument:
    """Result of reading one JSON source file."""
    path: str
    ok: bool
    data: Any = None
    err: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.err != "ENOENT"


def read_json(path: Optional[Path]) -> LoadedDocument:
    if path is None:
        return LoadedDocument(path="", ok=False, err="ENOENT")
    p = Path(path)
    if not p.exists():
        return LoadedDocument(path=str(p), ok=False, err="ENOENT")
    try:
        return LoadedDocument(path=str(p), ok=True, data=json.loads(p.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return LoadedDocument(path=str(p), ok=False, err=str(exc))


def require_json(path: Path) -> Any:
    """Read a required JSON file or raise GeoInputError."""
    doc = read_json(path)
    if not doc.ok:
        raise GeoInputError(path, "file not found" if doc.err == "ENOENT" else doc.err)
    return doc.data


def write_json(path: Path, data: Any) -> None:
    """Pretty JSON with a trailing newline, parent directories created."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


@dataclass(frozen=True)
class GeoContext:
    clusters: tuple[Cluster, ...]
    index: ClusterIndex
    graph: AdjacencyGraph
    coverage: Coverage = field(default_factory=Coverage)
    weights: ScoreWeights = field(default_factory=ScoreWeights)

    @property
    def scorer(self) -> ProximityScorer:
        return ProximityScorer(self.index, self.graph, self.weights, self.coverage)

    @classmethod
    def from_documents(
        cls,
        clusters_doc: Any,
        adjacency_doc: Any,
        coverage_doc: Any = None,
        config_doc: Any = None,
        *,
        strict: bool = False,
        tolerant: bool = False,
        limit: Optional[int] = None,
    ) -> "GeoContext":
        """
        Build a context from already-parsed documents.

        Raises SchemaError / ReferentialError with every violation found.
        With tolerant=True, unknown adjacency or coverage slugs are logged
        as warnings instead of raising.
        """
        clusters = normalize_clusters(clusters_doc, strict=strict)
        index = build_index(clusters)
        graph = build_graph(adjacency_doc, index, strict=strict)

        config, config_violations = collect_config(config_doc)
        coverage, coverage_violations = Coverage.from_document(coverage_doc)
        schema = config_violations + coverage_violations
        weights = config.to_weights(limit)

        findings = validate(graph, index, weights)
        schema += findings.self_loops
        if schema:
            raise SchemaError(schema)

        referential = findings.missing + [
            f"coverage token {t} not in clusters" for t in coverage.unknown_tokens(index)
        ]
        if referential:
            if not tolerant:
                raise ReferentialError(referential)
            for msg in referential:
                logger.warning("%s (tolerant)", msg)

        return cls(clusters=clusters, index=index, graph=graph, coverage=coverage, weights=weights)


def load_context(
    paths: Optional[GeoPaths] = None,
    *,
    cfg: Settings = default_settings,
    limit: Optional[int] = None,
) -> GeoContext:
    """Read and validate every source once; missing required files raise GeoInputError."""
    paths = paths or GeoPaths.from_settings(cfg)
    clusters_doc = require_json(paths.clusters)
    adjacency_doc = require_json(paths.adjacency)

    optional = {}
    for name in ("coverage", "config"):
        doc = read_json(getattr(paths, name))
        if not doc.ok and doc.present:
            raise GeoInputError(doc.path, doc.err)
        optional[name] = doc.data if doc.ok else None

    context = GeoContext.from_documents(
        clusters_doc,
        adjacency_doc,
        optional["coverage"],
        optional["config"],
        tolerant=cfg.tolerant,
        limit=limit,
    )
    logger.info(
        "Loaded geo context: %d clusters, %d suburbs, %d edges",
        len(context.clusters), len(context.index), context.graph.edge_count,
    )
    return context
