"""
Service coverage: which suburbs each service is offered in.

A service with no entry is open everywhere. That is the deliberate default,
not a data gap. Coverage tokens may name a suburb or a whole cluster.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from services.geo.engine.cluster_index import ClusterIndex
from services.geo.engine.schemas import CoverageMap, collect_coverage
from services.geo.engine.slugs import normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Coverage:
    services: CoverageMap = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: Any) -> tuple["Coverage", list[str]]:
        services, violations = collect_coverage(doc)
        return cls(services=services), violations

    def is_restricted(self, service: str) -> bool:
        return normalize(service) in self.services

    def is_covered(self, service: str, suburb: str, index: Optional[ClusterIndex] = None) -> bool:
        """True if the service is offered in the suburb (or is unrestricted)."""
        tokens = self.services.get(normalize(service))
        if tokens is None:
            return True
        slug = normalize(suburb)
        if slug in tokens:
            return True
        if index is not None:
            return index.cluster_of(slug) in tokens
        return False

    def unknown_tokens(self, index: ClusterIndex) -> list[str]:
        """Tokens naming neither a suburb nor a cluster, as "[service] token" strings."""
        unknown = []
        for service in sorted(self.services):
            for token in sorted(self.services[service]):
                if token in index.suburbs or token in index.cluster_to_suburbs:
                    continue
                unknown.append(f"[{service}] '{token}'")
        return unknown
