#!/usr/bin/env python3
"""
Rewrite the adjacency document keeping only allowed edges.

An edge survives when both suburbs share a cluster or the pair is listed
in crossCluster.whitelistEdges. Blacklisted edges are always removed.
Run on its own, never alongside a Doctor pass: it rewrites the source file.

Usage:
    PYTHONPATH=. python3 scripts/enforce_cross_cluster.py
    PYTHONPATH=. python3 scripts/enforce_cross_cluster.py --dry-run
"""

import argparse
import logging
import sys
from pathlib import Path

from services.geo.config import settings
from services.geo.engine.adjacency import build_graph, enforce_cross_cluster
from services.geo.engine.cluster_index import build_index
from services.geo.engine.context import GeoPaths, read_json, require_json, write_json
from services.geo.engine.errors import GeoError, GeoInputError
from services.geo.engine.schemas import load_config, normalize_clusters

logger = logging.getLogger("enforce_cross_cluster")


def main() -> int:
    parser = argparse.ArgumentParser(description="Drop cross-cluster adjacency edges that are not whitelisted")
    parser.add_argument("--data-dir", type=Path, default=settings.data_dir)
    parser.add_argument("--dry-run", action="store_true", help="Report removals without writing")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    paths = GeoPaths.from_settings(settings, args.data_dir)
    try:
        index = build_index(normalize_clusters(require_json(paths.clusters)))
        graph = build_graph(require_json(paths.adjacency), index)
        config_doc = read_json(paths.config)
        if not config_doc.ok and config_doc.present:
            raise GeoInputError(config_doc.path, config_doc.err)
        weights = load_config(config_doc.data if config_doc.ok else None).to_weights()
    except GeoError as exc:
        logger.error("Cannot enforce cross-cluster policy: %s", exc)
        return 1

    enforced, removed = enforce_cross_cluster(graph, index, weights)
    for edge in removed:
        logger.debug("removed %s -> %s", edge.source, edge.target)
    logger.info("Removed %d cross-cluster edge(s)", len(removed))

    if not args.dry_run and removed:
        write_json(paths.adjacency, enforced.to_document())
        logger.info("Rewrote %s", paths.adjacency)
    return 0


if __name__ == "__main__":
    sys.exit(main())
