"""
Cluster splitting: partition an oversized cluster into k geographic
sub-clusters with Lloyd's k-means on (lat, lng).

Advisory output only. Suggested splits need human review before they are
committed back to the cluster source of truth.

  - only coordinate-bearing suburbs take part
  - centroids start from evenly spaced samples of the input order
  - squared Euclidean distance on raw degrees
  - empty buckets keep their previous centroid
  - stops after max_iterations or once no centroid moves more than epsilon
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from services.geo.config import settings
from services.geo.engine.errors import GeoError
from services.geo.engine.models import Cluster, Suburb
from services.geo.engine.slugs import is_slug, normalize, title_case

logger = logging.getLogger(__name__)

COMPASS_LABELS: dict[int, tuple[str, ...]] = {
    2: ("north", "south"),
    3: ("north", "central", "south"),
    4: ("north", "east", "south", "west"),
}


class SplitError(GeoError):
    """The cluster cannot be split as requested."""


@dataclass(frozen=True)
class KMeansResult:
    assignments: np.ndarray  # bucket index per input point
    centroids: np.ndarray    # shape (k, 2)
    iterations: int
    converged: bool


def initial_centroids(points: np.ndarray, k: int) -> np.ndarray:
    """Evenly spaced samples of the input order."""
    idx = np.linspace(0, len(points) - 1, num=k).round().astype(int)
    return points[idx].astype(float).copy()


def kmeans(
    points: np.ndarray,
    k: int,
    max_iterations: Optional[int] = None,
    epsilon: Optional[float] = None,
) -> KMeansResult:
    max_iterations = max_iterations or settings.kmeans_max_iterations
    epsilon = settings.kmeans_epsilon if epsilon is None else epsilon

    points = np.asarray(points, dtype=float)
    centroids = initial_centroids(points, k)
    assignments = np.zeros(len(points), dtype=int)

    for iteration in range(1, max_iterations + 1):
        # (n, k) squared distances; argmin picks the lowest bucket on ties
        d2 = ((points[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
        assignments = d2.argmin(axis=1)

        updated = centroids.copy()
        for bucket in range(k):
            members = points[assignments == bucket]
            if len(members):
                updated[bucket] = members.mean(axis=0)

        shift = float(np.abs(updated - centroids).max()) if k else 0.0
        centroids = updated
        if shift <= epsilon:
            return KMeansResult(assignments, centroids, iteration, True)

    return KMeansResult(assignments, centroids, max_iterations, False)


def bucket_labels(k: int, centroids: Optional[np.ndarray] = None) -> list[str]:
    """
    Compass labels for k <= 4, ordinal labels otherwise.

    With centroids available the compass words follow geography (the most
    northern bucket is "north"); the label list itself stays in bucket order.
    """
    words = COMPASS_LABELS.get(k)
    if words is None or centroids is None:
        return [f"part-{i + 1}" for i in range(k)] if words is None else list(words)

    lat, lng = centroids[:, 0], centroids[:, 1]
    labels = [""] * k
    if k in (2, 3):
        for rank, bucket in enumerate(np.argsort(-lat, kind="stable")):
            labels[bucket] = words[rank]
        return labels

    # k == 4: north/south by latitude extremes, east/west for the remaining two
    order = list(np.argsort(-lat, kind="stable"))
    north, south = order[0], order[-1]
    rest = sorted(order[1:-1], key=lambda b: -lng[b])
    labels[north], labels[south] = "north", "south"
    labels[rest[0]], labels[rest[1]] = "east", "west"
    return labels


def split_cluster(
    cluster: Cluster,
    k: int,
    labels: Optional[Sequence[str]] = None,
    max_iterations: Optional[int] = None,
) -> list[Cluster]:
    """
    Split a cluster into k sub-clusters; result order follows bucket index.

    Suburbs without coordinates are left out of every sub-cluster.
    """
    if k < 2:
        raise SplitError(f"k must be at least 2, got {k}")
    located: list[Suburb] = [s for s in cluster.suburbs if s.has_coords]
    if len(located) < k:
        raise SplitError(
            f"cluster '{cluster.slug}' has {len(located)} suburb(s) with coordinates, need at least {k}"
        )
    if labels is not None and len(labels) != k:
        raise SplitError(f"expected {k} labels, got {len(labels)}")
    if labels is not None:
        label_slugs = [normalize(label) for label in labels]
        if not all(label_slugs) or len(set(label_slugs)) != k:
            raise SplitError(f"labels must normalize to {k} distinct non-empty slugs: {list(labels)}")

    points = np.array([[s.lat, s.lng] for s in located], dtype=float)
    result = kmeans(points, k, max_iterations=max_iterations)
    names = list(labels) if labels is not None else bucket_labels(k, result.centroids)
    logger.info(
        "Split %s into %d buckets after %d iteration(s) (converged=%s); %d suburb(s) lacked coordinates",
        cluster.slug, k, result.iterations, result.converged,
        len(cluster.suburbs) - len(located),
    )

    out = []
    for bucket, label in enumerate(names):
        slug = f"{cluster.slug}-{normalize(label)}"
        display = title_case(label) if is_slug(label) else label.strip()
        members = tuple(
            Suburb(slug=s.slug, name=s.name, cluster_slug=slug, lat=s.lat, lng=s.lng)
            for s, assigned in zip(located, result.assignments)
            if assigned == bucket
        )
        out.append(Cluster(slug=slug, name=f"{cluster.name} {display}", suburbs=members))
    return out


def split_suggestion(cluster: Cluster, k: int) -> dict:
    """JSON-ready suggestion document for a proposed split."""
    parts = split_cluster(cluster, k)
    return {
        "cluster": cluster.slug,
        "k": k,
        "groups": [
            {"slug": p.slug, "name": p.name, "suburbs": [s.ref() for s in p.suburbs]}
            for p in parts
        ],
        "unplaced": [s.ref() for s in cluster.suburbs if not s.has_coords],
        "note": "Advisory only. Review names and membership before committing to the cluster source.",
    }
