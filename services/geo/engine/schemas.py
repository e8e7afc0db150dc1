"""
Schema validation and shape normalization for geo source documents.

Cluster documents arrive in two historical shapes:
  (a) {"clusters": [{"slug", "name"?, "suburbs": [str | {slug?, name?, lat?, lng?}]}]}
  (b) {"<cluster-slug>": ["Suburb Name", ...]}

Adjacency documents arrive as either:
  {"<suburb>": ["<slug>", ...]}  or  {"<suburb>": {"adjacent_suburbs": [...]}}

Both are resolved once, here, into one canonical in-memory shape. Nothing
downstream branches on input shape.

Every collect_* function returns (result, violations) and never stops at the
first problem; the matching normalize_* function raises SchemaError with the
full violation list.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from services.geo.config import settings
from services.geo.engine.errors import SchemaError
from services.geo.engine.models import Cluster, CrossClusterMode, ScoreWeights, Suburb
from services.geo.engine.slugs import normalize, title_case

logger = logging.getLogger(__name__)

NormalizedAdjacency = dict[str, tuple[str, ...]]
CoverageMap = dict[str, frozenset[str]]


# ---------------------------------------------------------------------------
# Raw element models
# ---------------------------------------------------------------------------

class RawSuburb(BaseModel):
    """Object form of a suburb entry. Unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    slug: Optional[str] = None
    name: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class RawAdjacencyEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    adjacent_suburbs: list[str] = Field(default_factory=list)


def _describe(exc: ValidationError) -> list[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "value"
        out.append(f"{loc}: {err.get('msg')}")
    return out


# ---------------------------------------------------------------------------
# Clusters
# ---------------------------------------------------------------------------

def _resolve_suburb(
    raw: Any,
    cluster_slug: str,
    where: str,
    strict: bool,
    violations: list[str],
) -> Optional[Suburb]:
    if isinstance(raw, str):
        slug = normalize(raw)
        if not slug:
            violations.append(f"{where}: suburb '{raw}' has no resolvable slug")
            return None
        if strict and raw != slug:
            violations.append(f"{where}: non-slug suburb '{raw}' (strict)")
        name = title_case(slug) if raw == slug else raw.strip()
        return Suburb(slug=slug, name=name, cluster_slug=cluster_slug)

    if not isinstance(raw, dict):
        violations.append(f"{where}: suburb must be a string or object, got {type(raw).__name__}")
        return None

    try:
        item = RawSuburb.model_validate(raw)
    except ValidationError as exc:
        violations.extend(f"{where}.{msg}" for msg in _describe(exc))
        return None

    slug = normalize(item)
    if not slug:
        violations.append(f"{where}: suburb missing slug")
        return None
    if strict and item.slug is not None and item.slug != slug:
        violations.append(f"{where}: non-slug suburb '{item.slug}' (strict)")
    name = (item.name or "").strip() or title_case(slug)
    return Suburb(slug=slug, name=name, cluster_slug=cluster_slug, lat=item.lat, lng=item.lng)


def _resolve_cluster(
    raw_slug: Any,
    raw_name: Any,
    raw_suburbs: Any,
    where: str,
    strict: bool,
    violations: list[str],
) -> Optional[Cluster]:
    slug = normalize(raw_slug) if isinstance(raw_slug, str) else ""
    if not slug:
        violations.append(f"{where}: cluster missing slug")
        return None
    if strict and raw_slug != slug:
        violations.append(f"{where}: non-slug cluster '{raw_slug}' (strict)")
    if not isinstance(raw_suburbs, list):
        violations.append(f"cluster '{slug}': suburbs must be a list")
        return None

    name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else title_case(slug)
    suburbs: list[Suburb] = []
    seen: set[str] = set()
    for i, raw in enumerate(raw_suburbs):
        suburb = _resolve_suburb(raw, slug, f"cluster '{slug}' suburbs[{i}]", strict, violations)
        if suburb is None:
            continue
        if suburb.slug in seen:
            violations.append(f"cluster '{slug}': duplicate suburb '{suburb.slug}'")
            continue
        seen.add(suburb.slug)
        suburbs.append(suburb)
    return Cluster(slug=slug, name=name, suburbs=tuple(suburbs))


def collect_clusters(doc: Any, strict: bool = False) -> tuple[tuple[Cluster, ...], list[str]]:
    """Normalize either cluster shape; returns (clusters, violations)."""
    violations: list[str] = []
    entries: list[tuple[Any, Any, Any, str]] = []

    if not isinstance(doc, dict):
        return (), [f"cluster document must be an object, got {type(doc).__name__}"]

    if "clusters" in doc:
        extra = sorted(k for k in doc if k != "clusters")
        if extra:
            violations.append(f"cluster document has unexpected keys: {', '.join(extra)}")
        raw_list = doc["clusters"]
        if not isinstance(raw_list, list):
            return (), violations + ["clusters must be an array"]
        for i, c in enumerate(raw_list):
            if not isinstance(c, dict):
                violations.append(f"clusters[{i}]: cluster must be an object")
                continue
            entries.append((c.get("slug"), c.get("name"), c.get("suburbs"), f"clusters[{i}]"))
    else:
        for key, subs in doc.items():
            entries.append((key, None, subs, f"clusters['{key}']"))

    clusters: list[Cluster] = []
    seen: set[str] = set()
    for raw_slug, raw_name, raw_suburbs, where in entries:
        cluster = _resolve_cluster(raw_slug, raw_name, raw_suburbs, where, strict, violations)
        if cluster is None:
            continue
        if cluster.slug in seen:
            violations.append(f"{where}: duplicate cluster slug '{cluster.slug}'")
            continue
        seen.add(cluster.slug)
        clusters.append(cluster)

    if not clusters and not violations:
        violations.append("cluster document defines no clusters")
    return tuple(clusters), violations


def normalize_clusters(doc: Any, strict: bool = False) -> tuple[Cluster, ...]:
    clusters, violations = collect_clusters(doc, strict=strict)
    if violations:
        raise SchemaError(violations)
    return clusters


def clusters_document(clusters: tuple[Cluster, ...] | list[Cluster]) -> dict:
    """Canonical (shape a) document for a set of clusters."""
    out = []
    for c in clusters:
        subs = []
        for s in c.suburbs:
            entry: dict[str, Any] = {"slug": s.slug, "name": s.name}
            if s.has_coords:
                entry["lat"] = s.lat
                entry["lng"] = s.lng
            subs.append(entry)
        out.append({"slug": c.slug, "name": c.name, "suburbs": subs})
    return {"clusters": out}


# ---------------------------------------------------------------------------
# Adjacency
# ---------------------------------------------------------------------------

def collect_adjacency(doc: Any, strict: bool = False) -> tuple[NormalizedAdjacency, list[str]]:
    """Normalize either adjacency shape to suburb -> tuple of neighbour slugs."""
    if not isinstance(doc, dict):
        return {}, [f"adjacency document must be an object, got {type(doc).__name__}"]

    violations: list[str] = []
    out: dict[str, list[str]] = {}
    for key, value in doc.items():
        source = normalize(key) if isinstance(key, str) else ""
        if not source:
            violations.append(f"adjacency key '{key}' has no resolvable slug")
            continue
        if strict and key != source:
            violations.append(f"adjacency: non-slug source '{key}' (strict)")

        if isinstance(value, list):
            raw_targets = value
        elif isinstance(value, dict):
            try:
                raw_targets = RawAdjacencyEntry.model_validate(value).adjacent_suburbs
            except ValidationError as exc:
                violations.extend(f"adjacency['{key}'].{msg}" for msg in _describe(exc))
                continue
        else:
            violations.append(f"adjacency['{key}'] must be a list or {{adjacent_suburbs}}")
            continue

        targets = out.setdefault(source, [])
        for raw in raw_targets:
            target = normalize(raw) if isinstance(raw, str) else ""
            if not target:
                violations.append(f"adjacency['{key}']: neighbour {raw!r} has no resolvable slug")
                continue
            if strict and raw != target:
                violations.append(f"adjacency['{key}']: non-slug neighbour '{raw}' (strict)")
            if target not in targets:
                targets.append(target)

    return {k: tuple(v) for k, v in out.items()}, violations


def normalize_adjacency(doc: Any, strict: bool = False) -> NormalizedAdjacency:
    adjacency, violations = collect_adjacency(doc, strict=strict)
    if violations:
        raise SchemaError(violations)
    return adjacency


def adjacency_document(adjacency: NormalizedAdjacency) -> dict[str, list[str]]:
    return {k: list(v) for k, v in adjacency.items()}


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------

def collect_coverage(doc: Any) -> tuple[CoverageMap, list[str]]:
    """Normalize service -> [suburb-or-cluster token] into frozensets of slugs."""
    if doc is None:
        return {}, []
    if not isinstance(doc, dict):
        return {}, [f"coverage document must be an object, got {type(doc).__name__}"]

    violations: list[str] = []
    out: CoverageMap = {}
    for service, tokens in doc.items():
        key = normalize(service) if isinstance(service, str) else ""
        if not key:
            violations.append(f"coverage: service key {service!r} has no resolvable slug")
            continue
        if not isinstance(tokens, list):
            violations.append(f"coverage['{service}'] must be a list")
            continue
        slugs = set()
        for raw in tokens:
            token = normalize(raw) if isinstance(raw, str) else ""
            if not token:
                violations.append(f"coverage['{service}']: token {raw!r} has no resolvable slug")
                continue
            slugs.add(token)
        out[key] = frozenset(slugs)
    return out, violations


# ---------------------------------------------------------------------------
# Geo config
# ---------------------------------------------------------------------------

class NearbyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    limit: int = Field(default_factory=lambda: settings.default_limit, ge=1, le=24)
    adjacencyBoost: float = Field(default=24, ge=0, le=2000)
    clusterBoost: float = Field(default=200, ge=0, le=5000)
    biasKm: float = Field(default=12, ge=0, le=50)
    distanceWeight: float = Field(default=1, ge=0, le=10)
    onlyCovered: bool = False
    crossClusterMode: CrossClusterMode = CrossClusterMode.PENALIZE
    crossClusterPenalty: float = Field(default=200, ge=0, le=5000)


class ServiceOverride(BaseModel):
    model_config = ConfigDict(extra="allow")

    limit: Optional[int] = Field(default=None, ge=1, le=24)


class EdgeRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str


class CrossClusterConfig(BaseModel):
    whitelistEdges: list[EdgeRef] = Field(default_factory=list)
    blacklistEdges: list[EdgeRef] = Field(default_factory=list)


_LEGACY_WEIGHT_KEYS = (
    "adjacencyBoost", "clusterBoost", "biasKm", "distanceWeight",
    "onlyCovered", "crossClusterMode", "crossClusterPenalty",
)


class GeoConfigDocument(BaseModel):
    """geo.config.json. The legacy flat shape is folded into `nearby`."""
    model_config = ConfigDict(extra="forbid")

    nearby: NearbyConfig = Field(default_factory=NearbyConfig)
    services: dict[str, ServiceOverride] = Field(default_factory=dict)
    crossCluster: CrossClusterConfig = Field(default_factory=CrossClusterConfig)

    @model_validator(mode="before")
    @classmethod
    def fold_legacy_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if set(data) == {"data"} and isinstance(data["data"], dict):
            data = data["data"]
        data = dict(data)
        nearby = data.get("nearby") or {}
        if not isinstance(nearby, dict):
            return data
        nearby = dict(nearby)
        for key in _LEGACY_WEIGHT_KEYS:
            if key in data:
                nearby.setdefault(key, data.pop(key))
        data["nearby"] = nearby
        return data

    def to_weights(self, limit_override: Optional[int] = None) -> ScoreWeights:
        n = self.nearby

        def pairs(edges: list[EdgeRef]) -> frozenset[tuple[str, str]]:
            return frozenset((normalize(e.from_), normalize(e.to)) for e in edges)

        limits = tuple(sorted(
            (normalize(name), o.limit) for name, o in self.services.items() if o.limit is not None
        ))
        return ScoreWeights(
            limit=max(1, limit_override) if limit_override else n.limit,
            adjacency_boost=n.adjacencyBoost,
            cluster_boost=n.clusterBoost,
            bias_km=n.biasKm,
            cross_cluster_penalty=n.crossClusterPenalty,
            distance_weight=n.distanceWeight,
            cross_cluster_mode=n.crossClusterMode,
            only_covered=n.onlyCovered,
            whitelist=pairs(self.crossCluster.whitelistEdges),
            blacklist=pairs(self.crossCluster.blacklistEdges),
            service_limits=limits,
        )


def collect_config(doc: Any) -> tuple[GeoConfigDocument, list[str]]:
    """Validate the geo config; defaults are used when the document is absent or invalid."""
    if doc is None:
        return GeoConfigDocument(), []
    try:
        return GeoConfigDocument.model_validate(doc), []
    except ValidationError as exc:
        return GeoConfigDocument(), [f"geo config {msg}" for msg in _describe(exc)]


def load_config(doc: Any) -> GeoConfigDocument:
    config, violations = collect_config(doc)
    if violations:
        raise SchemaError(violations)
    return config
