"""
Proximity scoring: how "near" one suburb is to another, and the derived
top-K nearby list used for location pages and internal links.

Score (all terms additive):
  + adjacencyBoost                          b is a direct neighbour of a
  + clusterBoost                            same cluster
  - |crossClusterPenalty|                   different cluster (mode "penalize"/"drop")
  - |biasKm| * distanceWeight * km(a, b)    both have coordinates, else 0

A missing coordinate contributes 0, never an infinite distance, so it
cannot silently disqualify a candidate.

Ranking is score descending, ties by ascending slug, so results are fully
deterministic for fixed inputs and weights.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from services.geo.engine.adjacency import AdjacencyGraph
from services.geo.engine.cluster_index import ClusterIndex
from services.geo.engine.coverage import Coverage
from services.geo.engine.models import CrossClusterMode, ScoreWeights, Suburb

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

# Maximum entries reported per side of a per-suburb diff
DIFF_ITEMS_PER_SIDE = 5

SuburbRef = Union[Suburb, str]


def great_circle_km(a_lat: float, a_lng: float, b_lat: float, b_lng: float) -> float:
    """Haversine distance in kilometres on a sphere of radius 6371 km."""
    lat1 = math.radians(a_lat)
    lat2 = math.radians(b_lat)
    dlat = math.radians(b_lat - a_lat)
    dlng = math.radians(b_lng - a_lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def suburb_distance_km(a: Suburb, b: Suburb) -> Optional[float]:
    if not (a.has_coords and b.has_coords):
        return None
    return great_circle_km(a.lat, a.lng, b.lat, b.lng)


@dataclass(frozen=True)
class ScoreBreakdown:
    adjacency: float = 0.0
    cluster: float = 0.0
    cross_penalty: float = 0.0
    distance: float = 0.0
    distance_km: Optional[float] = None

    @property
    def total(self) -> float:
        return self.adjacency + self.cluster + self.cross_penalty + self.distance

    def as_dict(self) -> dict[str, Any]:
        return {
            "adjacency": self.adjacency,
            "cluster": self.cluster,
            "crossPenalty": self.cross_penalty,
            "distance": self.distance,
            "distanceKm": None if self.distance_km is None else round(self.distance_km, 3),
        }


@dataclass
class ProximityScorer:
    """Scores suburb pairs against one catalog, graph and weight set."""
    index: ClusterIndex
    graph: AdjacencyGraph
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    coverage: Coverage = field(default_factory=Coverage)

    def _resolve(self, ref: SuburbRef) -> Optional[Suburb]:
        if isinstance(ref, Suburb):
            return ref
        return self.index.get(ref)

    # ------------------------------------------------------------------
    # Pair scoring
    # ------------------------------------------------------------------

    def breakdown(self, a: SuburbRef, b: SuburbRef) -> ScoreBreakdown:
        src = self._resolve(a)
        dst = self._resolve(b)
        if src is None or dst is None:
            raise KeyError(f"unknown suburb: {a if src is None else b}")
        w = self.weights

        adjacency = w.adjacency_boost if self.graph.has_edge(src.slug, dst.slug) else 0.0
        cluster = cross = 0.0
        if src.cluster_slug == dst.cluster_slug:
            cluster = w.cluster_boost
        elif w.cross_cluster_mode != CrossClusterMode.ALLOW:
            cross = -abs(w.cross_cluster_penalty)

        km = suburb_distance_km(src, dst)
        distance = -abs(w.bias_km) * w.distance_weight * km if km is not None else 0.0
        return ScoreBreakdown(
            adjacency=adjacency, cluster=cluster, cross_penalty=cross,
            distance=distance, distance_km=km,
        )

    def score(self, a: SuburbRef, b: SuburbRef) -> float:
        return self.breakdown(a, b).total

    # ------------------------------------------------------------------
    # Candidate pools
    # ------------------------------------------------------------------

    def is_candidate(self, src: Suburb, dst: Suburb, service: Optional[str] = None) -> bool:
        if dst.slug == src.slug:
            return False
        w = self.weights
        if w.is_blacklisted(src.slug, dst.slug):
            return False
        if (
            w.cross_cluster_mode == CrossClusterMode.DROP
            and src.cluster_slug != dst.cluster_slug
            and not w.is_whitelisted(src.slug, dst.slug)
        ):
            return False
        if service and w.only_covered and not self.coverage.is_covered(service, dst.slug, self.index):
            return False
        return True

    def ranked(self, a: SuburbRef, service: Optional[str] = None) -> list[tuple[float, Suburb]]:
        """Every eligible candidate with its score, best first."""
        src = self._resolve(a)
        if src is None:
            return []
        scored = [
            (self.score(src, dst), dst)
            for dst in self.index.suburbs.values()
            if self.is_candidate(src, dst, service)
        ]
        scored.sort(key=lambda pair: (-pair[0], pair[1].slug))
        return scored

    def nearest(
        self,
        a: SuburbRef,
        limit: Optional[int] = None,
        service: Optional[str] = None,
    ) -> list[Suburb]:
        """Top `limit` suburbs by score over the whole catalog."""
        limit = self.weights.limit_for(service) if limit is None else max(1, limit)
        return [dst for _, dst in self.ranked(a, service)[:limit]]

    def nearby(
        self,
        a: SuburbRef,
        limit: Optional[int] = None,
        service: Optional[str] = None,
    ) -> list[Suburb]:
        """
        Tiered nearby list for page generation.

        Direct neighbours first (adjacency order), then same-cluster suburbs
        by distance (by slug without coordinates), then the rest of the
        catalog in score order.
        """
        src = self._resolve(a)
        if src is None:
            return []
        limit = self.weights.limit_for(service) if limit is None else max(1, limit)

        out: list[Suburb] = []
        taken: set[str] = {src.slug}

        def take(candidates: Iterable[Suburb]) -> bool:
            for dst in candidates:
                if len(out) >= limit:
                    return True
                if dst.slug in taken or not self.is_candidate(src, dst, service):
                    continue
                taken.add(dst.slug)
                out.append(dst)
            return len(out) >= limit

        neighbours = (self.index.get(s) for s in self.graph.neighbours_of(src.slug))
        if take(d for d in neighbours if d is not None):
            return out
        if take(self.rank_by_distance(src, self.index.members(src.cluster_slug))):
            return out
        take(self.nearest(src, len(self.index), service))
        return out

    @staticmethod
    def rank_by_distance(src: Suburb, suburbs: Iterable[Suburb]) -> list[Suburb]:
        pool = list(suburbs)
        if not src.has_coords:
            return sorted(pool, key=lambda s: s.slug)

        def key(s: Suburb) -> tuple[float, str]:
            km = suburb_distance_km(src, s)
            return (math.inf if km is None else km, s.slug)

        return sorted(pool, key=key)

    # ------------------------------------------------------------------
    # Explain
    # ------------------------------------------------------------------

    def explain(self, a: SuburbRef, top: int = 12, service: Optional[str] = None) -> dict[str, Any]:
        """Top candidates with their score breakdown."""
        src = self._resolve(a)
        if src is None:
            raise KeyError(f"unknown suburb: {a}")
        rows = []
        for total, dst in self.ranked(src, service)[:top]:
            rows.append({
                "slug": dst.slug,
                "name": dst.name,
                "cluster": dst.cluster_slug,
                "score": round(total, 6),
                "parts": self.breakdown(src, dst).as_dict(),
            })
        return {
            "source": src.slug,
            "cluster": src.cluster_slug,
            "limit": self.weights.limit_for(service),
            "weights": self.weights.as_dict(),
            "top": rows,
        }


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

def compute_etag(nearby: dict[str, list[dict[str, str]]]) -> str:
    """SHA-256 of the canonical JSON form of a nearby payload."""
    payload = json.dumps(nearby, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_snapshot(scorer: ProximityScorer, limit: Optional[int] = None) -> dict[str, Any]:
    nearby = {
        slug: [s.ref() for s in scorer.nearest(slug, limit)]
        for slug in sorted(scorer.index.suburbs)
    }
    return {"etag": compute_etag(nearby), "nearby": nearby}


def snapshot_entries(doc: Any) -> dict[str, Any]:
    """The `nearby` mapping of a snapshot document, or {} for anything else."""
    if isinstance(doc, dict) and isinstance(doc.get("nearby"), dict):
        return doc["nearby"]
    return {}


@dataclass
class SnapshotFindings:
    schema: list[str] = field(default_factory=list)
    referential: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_snapshot(doc: Any, index: ClusterIndex, limit: int) -> SnapshotFindings:
    """Check a prior snapshot against the catalog; collects every finding."""
    findings = SnapshotFindings()
    if doc is None:
        return findings
    if not isinstance(doc, dict) or not isinstance(doc.get("nearby", {}), dict):
        findings.schema.append("proximity snapshot must be {nearby: {...}}")
        return findings

    for src, items in snapshot_entries(doc).items():
        if src not in index:
            findings.referential.append(f'proximity: source "{src}" not in clusters')
            continue
        if not isinstance(items, list):
            findings.schema.append(f'proximity.nearby["{src}"] must be an array')
            continue
        if len(items) > limit:
            findings.warnings.append(f'proximity["{src}"] length {len(items)} exceeds limit {limit}')
        seen: set[str] = set()
        for item in items:
            slug = item.get("slug") if isinstance(item, dict) else None
            if not isinstance(slug, str) or not slug.strip():
                findings.schema.append(f'proximity["{src}"] item missing slug')
                continue
            if slug == src:
                findings.schema.append(f'proximity["{src}"] contains self')
            if slug in seen:
                findings.schema.append(f'proximity["{src}"] duplicate "{slug}"')
            seen.add(slug)
            if slug not in index:
                findings.referential.append(f'proximity["{src}"] -> "{slug}" not in clusters')
    return findings


def repair_snapshot(doc: Any, scorer: ProximityScorer, limit: Optional[int] = None) -> dict[str, Any]:
    """
    Produce a fixed snapshot from a prior one.

    Self-references, duplicates, malformed items and unknown targets are
    dropped; shortfalls are padded from nearest(); no list exceeds limit.
    """
    limit = scorer.weights.limit if limit is None else max(1, limit)
    prior = snapshot_entries(doc)
    fixed: dict[str, list[dict[str, str]]] = {}
    dropped = padded = 0

    for src in sorted(scorer.index.suburbs):
        current = prior.get(src)
        current = current if isinstance(current, list) else []
        keep: list[dict[str, str]] = []
        seen: set[str] = set()
        for item in current:
            slug = item.get("slug") if isinstance(item, dict) else None
            if not isinstance(slug, str) or slug == src or slug in seen or slug not in scorer.index:
                dropped += 1
                continue
            seen.add(slug)
            keep.append(scorer.index.suburbs[slug].ref())
            if len(keep) >= limit:
                break
        if len(keep) < limit:
            for cand in scorer.nearest(src, limit * 2):
                if cand.slug in seen:
                    continue
                seen.add(cand.slug)
                keep.append(cand.ref())
                padded += 1
                if len(keep) >= limit:
                    break
        fixed[src] = keep[:limit]

    logger.info("Snapshot repair: dropped %d invalid item(s), padded %d", dropped, padded)
    return {"etag": compute_etag(fixed), "nearby": fixed, "meta": {"limit": limit}}


def diff_snapshot(
    doc: Any,
    scorer: ProximityScorer,
    sample: Iterable[str],
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Per-suburb differences between a prior snapshot and a fresh computation."""
    prior = snapshot_entries(doc)
    diffs = []
    for slug in sample:
        items = prior.get(slug)
        pre = [
            i["slug"] for i in items if isinstance(i, dict) and isinstance(i.get("slug"), str)
        ] if isinstance(items, list) else []
        rec = [s.slug for s in scorer.nearest(slug, limit)]
        pre_set, rec_set = set(pre), set(rec)
        missing = [s for s in rec if s not in pre_set][:DIFF_ITEMS_PER_SIDE]
        extras = [s for s in pre if s not in rec_set][:DIFF_ITEMS_PER_SIDE]
        if missing or extras:
            diffs.append({"suburb": slug, "missingFromPre": missing, "extrasInPre": extras})
    return diffs
