"""
Shared fixtures for the geo engine test suite.

Two synthetic catalogs:
  - the small p/q/r catalog used by the proximity scenarios
  - a south-east Queensland catalog (three clusters, one cross-cluster
    edge, one suburb without coordinates) used by the Doctor tests
"""

import copy
import json
from pathlib import Path
from typing import Any, Optional

import pytest

from services.geo.engine.context import GeoContext, GeoPaths


# ---------------------------------------------------------------------------
# Scenario catalog: p and q share a cluster, r is far away in another
# ---------------------------------------------------------------------------

SCENARIO_CLUSTERS = {
    "clusters": [
        {
            "slug": "cluster-a",
            "name": "Cluster A",
            "suburbs": [
                {"slug": "p", "name": "P", "lat": 0, "lng": 0},
                {"slug": "q", "name": "Q", "lat": 0, "lng": 1},
            ],
        },
        {
            "slug": "cluster-b",
            "name": "Cluster B",
            "suburbs": [{"slug": "r", "name": "R", "lat": 0, "lng": 10}],
        },
    ]
}

SCENARIO_ADJACENCY = {"p": ["q"]}

SCENARIO_CONFIG = {
    "nearby": {"adjacencyBoost": 24, "clusterBoost": 200, "biasKm": 1, "crossClusterPenalty": 200}
}


# ---------------------------------------------------------------------------
# SEQ catalog
# ---------------------------------------------------------------------------

SEQ_CLUSTERS = {
    "clusters": [
        {
            "slug": "brisbane",
            "name": "Brisbane",
            "suburbs": [
                {"slug": "spring-hill", "name": "Spring Hill", "lat": -27.460, "lng": 153.020},
                {"slug": "fortitude-valley", "name": "Fortitude Valley", "lat": -27.457, "lng": 153.034},
                {"slug": "new-farm", "name": "New Farm", "lat": -27.467, "lng": 153.050},
                {"slug": "kangaroo-point", "name": "Kangaroo Point", "lat": -27.476, "lng": 153.036},
            ],
        },
        {
            "slug": "ipswich",
            "name": "Ipswich",
            "suburbs": [
                {"slug": "ipswich", "name": "Ipswich", "lat": -27.615, "lng": 152.760},
                {"slug": "booval", "name": "Booval", "lat": -27.613, "lng": 152.790},
                {"slug": "redbank", "name": "Redbank", "lat": -27.600, "lng": 152.870},
            ],
        },
        {
            "slug": "logan",
            "name": "Logan",
            "suburbs": [
                {"slug": "springwood", "name": "Springwood", "lat": -27.610, "lng": 153.130},
                "Slacks Creek",
            ],
        },
    ]
}

SEQ_ADJACENCY = {
    "spring-hill": ["fortitude-valley", "new-farm"],
    "fortitude-valley": ["spring-hill", "new-farm"],
    "new-farm": ["fortitude-valley"],
    "ipswich": ["booval"],
    "booval": ["ipswich", "redbank"],
    "redbank": ["booval", "springwood"],
    "springwood": ["redbank", "slacks-creek"],
}


@pytest.fixture
def scenario_docs() -> dict[str, Any]:
    return {
        "clusters": copy.deepcopy(SCENARIO_CLUSTERS),
        "adjacency": copy.deepcopy(SCENARIO_ADJACENCY),
        "config": copy.deepcopy(SCENARIO_CONFIG),
    }


@pytest.fixture
def scenario_context(scenario_docs) -> GeoContext:
    return GeoContext.from_documents(
        scenario_docs["clusters"],
        scenario_docs["adjacency"],
        config_doc=scenario_docs["config"],
    )


@pytest.fixture
def seq_docs() -> dict[str, Any]:
    return {
        "clusters": copy.deepcopy(SEQ_CLUSTERS),
        "adjacency": copy.deepcopy(SEQ_ADJACENCY),
    }


@pytest.fixture
def seq_context(seq_docs) -> GeoContext:
    return GeoContext.from_documents(seq_docs["clusters"], seq_docs["adjacency"])


def make_context(
    clusters: Any = None,
    adjacency: Any = None,
    coverage: Any = None,
    config: Any = None,
    **kwargs: Any,
) -> GeoContext:
    """Context over the SEQ catalog unless documents are given."""
    return GeoContext.from_documents(
        copy.deepcopy(SEQ_CLUSTERS) if clusters is None else clusters,
        copy.deepcopy(SEQ_ADJACENCY) if adjacency is None else adjacency,
        coverage,
        config,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# On-disk sources
# ---------------------------------------------------------------------------

def write_sources(data_dir: Path, **docs: Optional[Any]) -> GeoPaths:
    """
    Write source documents into data_dir and return matching paths.

    Keyword names follow GeoPaths fields; a value of None skips the file.
    """
    paths = GeoPaths.from_settings(data_dir=data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    for name, doc in docs.items():
        if doc is None:
            continue
        target = getattr(paths, name)
        if isinstance(doc, str):
            target.write_text(doc, encoding="utf-8")
        else:
            target.write_text(json.dumps(doc, indent=2), encoding="utf-8")
    return paths


@pytest.fixture
def seq_paths(tmp_path) -> GeoPaths:
    return write_sources(
        tmp_path / "data",
        clusters=copy.deepcopy(SEQ_CLUSTERS),
        adjacency=copy.deepcopy(SEQ_ADJACENCY),
    )
