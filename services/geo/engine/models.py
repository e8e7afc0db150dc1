"""
Immutable in-memory shapes shared by every engine component.

Everything here is constructed once per run from validated documents and
never mutated afterwards. Updates go through a new normalized document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class CrossClusterMode(str, Enum):
    """How proximity treats candidates outside the source suburb's cluster."""
    ALLOW = "allow"
    PENALIZE = "penalize"
    DROP = "drop"


@dataclass(frozen=True)
class Suburb:
    slug: str
    name: str
    cluster_slug: str
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lng is not None

    def ref(self) -> dict[str, str]:
        """The {slug, name} pair emitted in proximity snapshots."""
        return {"slug": self.slug, "name": self.name}


@dataclass(frozen=True)
class Cluster:
    """A named group of suburbs; suburbs keep document order for display."""
    slug: str
    name: str
    suburbs: tuple[Suburb, ...] = ()

    @property
    def suburb_slugs(self) -> tuple[str, ...]:
        return tuple(s.slug for s in self.suburbs)


@dataclass(frozen=True)
class Edge:
    """Directed adjacency pair."""
    source: str
    target: str

    def reversed(self) -> Edge:
        return Edge(self.target, self.source)


@dataclass(frozen=True)
class ScoreWeights:
    """Proximity weights. Loaded once per run from the geo config document."""
    limit: int = 6
    adjacency_boost: float = 24.0
    cluster_boost: float = 200.0
    bias_km: float = 12.0
    cross_cluster_penalty: float = 200.0
    distance_weight: float = 1.0
    cross_cluster_mode: CrossClusterMode = CrossClusterMode.PENALIZE
    only_covered: bool = False
    whitelist: frozenset[tuple[str, str]] = field(default_factory=frozenset)
    blacklist: frozenset[tuple[str, str]] = field(default_factory=frozenset)
    service_limits: tuple[tuple[str, int], ...] = ()

    def limit_for(self, service: Optional[str] = None) -> int:
        if service:
            for name, value in self.service_limits:
                if name == service:
                    return value
        return self.limit

    def is_whitelisted(self, a: str, b: str) -> bool:
        return (a, b) in self.whitelist or (b, a) in self.whitelist

    def is_blacklisted(self, a: str, b: str) -> bool:
        return (a, b) in self.blacklist or (b, a) in self.blacklist

    def as_dict(self) -> dict:
        return {
            "limit": self.limit,
            "adjacencyBoost": self.adjacency_boost,
            "clusterBoost": self.cluster_boost,
            "biasKm": self.bias_km,
            "distanceWeight": self.distance_weight,
            "crossClusterPenalty": self.cross_cluster_penalty,
            "crossClusterMode": self.cross_cluster_mode.value,
            "onlyCovered": self.only_covered,
        }
