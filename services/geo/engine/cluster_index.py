"""
Cluster index: suburb -> cluster and cluster -> suburbs lookup tables.

A suburb may belong to exactly one cluster. Unlike adjacency, this is a
hard invariant: a second claim on the same suburb is a ReferentialError
naming both clusters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from services.geo.engine.errors import ReferentialError
from services.geo.engine.models import Cluster, Suburb

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MembershipConflict:
    suburb: str
    first_cluster: str
    second_cluster: str

    def message(self) -> str:
        return (
            f"Suburb '{self.suburb}' in multiple clusters: "
            f"'{self.first_cluster}', '{self.second_cluster}'"
        )


@dataclass(frozen=True)
class ClusterIndex:
    """
    Lookup tables built from normalized clusters.

    suburb_to_cluster  suburb slug -> cluster slug
    cluster_to_suburbs cluster slug -> suburb slugs, sorted
    suburbs            suburb slug -> Suburb, in catalog (document) order
    clusters           cluster slug -> Cluster, in document order
    """
    suburb_to_cluster: dict[str, str] = field(default_factory=dict)
    cluster_to_suburbs: dict[str, tuple[str, ...]] = field(default_factory=dict)
    suburbs: dict[str, Suburb] = field(default_factory=dict)
    clusters: dict[str, Cluster] = field(default_factory=dict)

    def __contains__(self, slug: object) -> bool:
        return slug in self.suburbs

    def __len__(self) -> int:
        return len(self.suburbs)

    def get(self, slug: str) -> Optional[Suburb]:
        return self.suburbs.get((slug or "").lower())

    def cluster_of(self, slug: str) -> Optional[str]:
        return self.suburb_to_cluster.get((slug or "").lower())

    def same_cluster(self, a: str, b: str) -> bool:
        ca = self.suburb_to_cluster.get(a)
        return ca is not None and ca == self.suburb_to_cluster.get(b)

    def members(self, cluster_slug: str) -> list[Suburb]:
        return [self.suburbs[s] for s in self.cluster_to_suburbs.get(cluster_slug, ())]

    def cluster_sizes(self) -> dict[str, int]:
        return {slug: len(members) for slug, members in self.cluster_to_suburbs.items()}


def collect_index(clusters: Iterable[Cluster]) -> tuple[ClusterIndex, list[MembershipConflict]]:
    """
    Build the index, keeping the first claim on any contested suburb.

    Returns every membership conflict alongside the index so callers can
    report the complete set.
    """
    suburb_to_cluster: dict[str, str] = {}
    suburbs: dict[str, Suburb] = {}
    by_cluster: dict[str, list[str]] = {}
    cluster_map: dict[str, Cluster] = {}
    conflicts: list[MembershipConflict] = []

    for cluster in clusters:
        cluster_map[cluster.slug] = cluster
        members = by_cluster.setdefault(cluster.slug, [])
        for suburb in cluster.suburbs:
            prev = suburb_to_cluster.get(suburb.slug)
            if prev is not None and prev != cluster.slug:
                conflicts.append(MembershipConflict(suburb.slug, prev, cluster.slug))
                logger.error("Suburb %s claimed by %s and %s", suburb.slug, prev, cluster.slug)
                continue
            if prev is None:
                suburb_to_cluster[suburb.slug] = cluster.slug
                suburbs[suburb.slug] = suburb
                members.append(suburb.slug)

    index = ClusterIndex(
        suburb_to_cluster=suburb_to_cluster,
        cluster_to_suburbs={slug: tuple(sorted(members)) for slug, members in by_cluster.items()},
        suburbs=suburbs,
        clusters=cluster_map,
    )
    return index, conflicts


def build_index(clusters: Iterable[Cluster]) -> ClusterIndex:
    """Build the index; raises ReferentialError if any suburb sits in two clusters."""
    index, conflicts = collect_index(clusters)
    if conflicts:
        raise ReferentialError([c.message() for c in conflicts])
    logger.debug("Cluster index: %d clusters, %d suburbs", len(index.clusters), len(index.suburbs))
    return index
