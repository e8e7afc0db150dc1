"""
Coordinate enrichment and the geo sync step.

Optional CSV and GeoJSON exports backfill lat/lng for suburbs the
hand-authored cluster document leaves without coordinates. Precedence:

  1. coordinates already in the cluster document
  2. enrichment CSV rows
  3. GeoJSON features (explicit lat/lng properties, else geometry centroid)

The sync step writes canonical cluster and adjacency documents that the
Doctor and page generation then read.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from services.geo.engine.models import Cluster, Suburb
from services.geo.engine.schemas import (
    NormalizedAdjacency,
    clusters_document,
    normalize_adjacency,
    normalize_clusters,
)
from services.geo.engine.slugs import normalize

logger = logging.getLogger(__name__)

CSV_SLUG_COLUMNS = ("slug", "suburb_slug")
CSV_NAME_COLUMNS = ("name", "suburb", "suburb_name", "sa2_name")
CSV_LAT_COLUMNS = ("lat", "latitude")
CSV_LNG_COLUMNS = ("lng", "lon", "longitude")

GEOJSON_NAME_PROPERTIES = ("name", "suburb", "SA2_NAME", "SA2_NAME21", "SA2_NAME16")


@dataclass(frozen=True)
class EnrichmentRecord:
    slug: str
    name: str
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def in_range(self) -> bool:
        return self.has_coords and -90 <= self.lat <= 90 and -180 <= self.lng <= 180


def _as_float(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _pick(row: dict[str, str], columns: Iterable[str]) -> str:
    for col in columns:
        value = row.get(col)
        if value is not None and value.strip():
            return value.strip()
    return ""


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def parse_csv(text: Optional[str]) -> list[EnrichmentRecord]:
    """Parse `slug,name,lat,lng` or SA2-style exports; header names are case-insensitive."""
    if not text:
        return []
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return []
    reader.fieldnames = [(f or "").strip().lower() for f in reader.fieldnames]

    out = []
    for row in reader:
        raw_slug = _pick(row, CSV_SLUG_COLUMNS)
        raw_name = _pick(row, CSV_NAME_COLUMNS)
        slug = normalize(raw_slug or raw_name)
        if not slug:
            continue
        out.append(EnrichmentRecord(
            slug=slug,
            name=raw_name or raw_slug or slug,
            lat=_as_float(_pick(row, CSV_LAT_COLUMNS)),
            lng=_as_float(_pick(row, CSV_LNG_COLUMNS)),
        ))
    return out


# ---------------------------------------------------------------------------
# GeoJSON
# ---------------------------------------------------------------------------

def _mean_position(positions: list[Any]) -> Optional[tuple[float, float]]:
    lats, lngs = [], []
    for pos in positions:
        if not isinstance(pos, (list, tuple)) or len(pos) < 2:
            continue
        lng, lat = _as_float(pos[0]), _as_float(pos[1])
        if lat is None or lng is None:
            continue
        lats.append(lat)
        lngs.append(lng)
    if not lats:
        return None
    return sum(lats) / len(lats), sum(lngs) / len(lngs)


def geometry_centroid(geometry: Any) -> Optional[tuple[float, float]]:
    """
    Representative (lat, lng) for a GeoJSON geometry.

    Point: its coordinates. Polygon: vertex mean of the outer ring.
    MultiPolygon: vertex mean over every ring. Anything else: None.
    """
    if not isinstance(geometry, dict):
        return None
    kind = geometry.get("type")
    coords = geometry.get("coordinates")
    if kind == "Point":
        return _mean_position([coords]) if coords else None
    if kind == "Polygon":
        if not isinstance(coords, list) or not coords:
            return None
        return _mean_position(coords[0] if isinstance(coords[0], list) else [])
    if kind == "MultiPolygon":
        if not isinstance(coords, list):
            return None
        positions = [pos for polygon in coords if isinstance(polygon, list)
                     for ring in polygon if isinstance(ring, list)
                     for pos in ring]
        return _mean_position(positions)
    return None


def parse_geojson(text: Optional[str]) -> list[EnrichmentRecord]:
    if not text:
        return []
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("GeoJSON enrichment unreadable: %s", exc)
        return []
    features = doc.get("features") if isinstance(doc, dict) else None
    if not isinstance(features, list):
        return []

    out = []
    for feature in features:
        if not isinstance(feature, dict):
            continue
        props = feature.get("properties") or {}
        name = ""
        for key in GEOJSON_NAME_PROPERTIES:
            if props.get(key):
                name = str(props[key]).strip()
                break
        slug = normalize(str(props.get("slug") or name))
        if not slug:
            continue
        lat, lng = _as_float(props.get("lat")), _as_float(props.get("lng"))
        if lat is None or lng is None:
            centroid = geometry_centroid(feature.get("geometry"))
            lat, lng = centroid if centroid else (None, None)
        out.append(EnrichmentRecord(slug=slug, name=name or slug, lat=lat, lng=lng))
    return out


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def build_enrichment(
    csv_records: Iterable[EnrichmentRecord] = (),
    geojson_records: Iterable[EnrichmentRecord] = (),
) -> dict[str, EnrichmentRecord]:
    """Explicit CSV rows win over GeoJSON-derived centroids."""
    enrich: dict[str, EnrichmentRecord] = {}
    for rec in csv_records:
        enrich[rec.slug] = rec
    for rec in geojson_records:
        enrich.setdefault(rec.slug, rec)
    return enrich


def enrich_clusters(
    clusters: Iterable[Cluster],
    enrichment: dict[str, EnrichmentRecord],
) -> tuple[tuple[Cluster, ...], int]:
    """Backfill missing coordinates. Returns (clusters, number of suburbs filled)."""
    filled = 0
    out = []
    for cluster in clusters:
        suburbs = []
        for s in cluster.suburbs:
            rec = enrichment.get(s.slug)
            if not s.has_coords and rec is not None and rec.in_range:
                s = Suburb(slug=s.slug, name=s.name, cluster_slug=s.cluster_slug, lat=rec.lat, lng=rec.lng)
                filled += 1
            suburbs.append(s)
        out.append(Cluster(slug=cluster.slug, name=cluster.name, suburbs=tuple(suburbs)))
    logger.info("Enrichment backfilled coordinates for %d suburb(s)", filled)
    return tuple(out), filled


def prune_adjacency(adjacency: NormalizedAdjacency, known: set[str]) -> NormalizedAdjacency:
    """
    Keep only edges between known suburbs; drops self-loops and duplicates.

    Sources left without neighbours are omitted.
    """
    out: dict[str, tuple[str, ...]] = {}
    for source, targets in adjacency.items():
        if source not in known:
            continue
        kept: list[str] = []
        for target in targets:
            if target == source or target not in known or target in kept:
                continue
            kept.append(target)
        if kept:
            out[source] = tuple(kept)
    return out


def read_text(path: Path) -> Optional[str]:
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def load_enrichment(csv_paths: Iterable[Path] = (), geojson_paths: Iterable[Path] = ()) -> dict[str, EnrichmentRecord]:
    csv_records: list[EnrichmentRecord] = []
    for p in csv_paths:
        csv_records.extend(parse_csv(read_text(p)))
    geo_records: list[EnrichmentRecord] = []
    for p in geojson_paths:
        geo_records.extend(parse_geojson(read_text(p)))
    logger.info("Enrichment sources: %d CSV row(s), %d GeoJSON feature(s)", len(csv_records), len(geo_records))
    return build_enrichment(csv_records, geo_records)


@dataclass(frozen=True)
class SyncResult:
    clusters: dict
    adjacency: dict[str, list[str]]
    coordinates_filled: int
    edges_dropped: int


def sync_documents(
    clusters_doc: Any,
    adjacency_doc: Any,
    enrichment: Optional[dict[str, EnrichmentRecord]] = None,
    strict: bool = False,
) -> SyncResult:
    """
    Produce canonical cluster and adjacency documents from raw sources.

    Raises SchemaError if either source document is malformed.
    """
    clusters = normalize_clusters(clusters_doc, strict=strict)
    clusters, filled = enrich_clusters(clusters, enrichment or {})
    known = {s.slug for c in clusters for s in c.suburbs}

    adjacency = normalize_adjacency(adjacency_doc or {}, strict=strict)
    pruned = prune_adjacency(adjacency, known)
    dropped = sum(len(t) for t in adjacency.values()) - sum(len(t) for t in pruned.values())
    if dropped:
        logger.warning("Sync dropped %d adjacency edge(s) to unknown suburbs or self", dropped)

    return SyncResult(
        clusters=clusters_document(clusters),
        adjacency={k: list(v) for k, v in pruned.items()},
        coordinates_filled=filled,
        edges_dropped=dropped,
    )
