#!/usr/bin/env python3
"""
Geo sync: build the canonical inputs the Geo Doctor and page generation read.

Reads the hand-authored cluster document plus optional enrichment exports,
backfills coordinates, prunes adjacency to known suburbs and writes:
  - <data-dir>/areas.clusters.json   canonical {clusters: [...]} shape
  - <data-dir>/areas.adj.json        suburb -> [neighbour, ...]
  - <data-dir>/geo.config.json       defaults, only when missing
  - <data-dir>/proximity.json        empty snapshot, only when missing

Usage:
    PYTHONPATH=. python3 scripts/geo_sync.py --clusters src/content/areas.clusters.json \
        --adjacency src/data/adjacency.json --csv geo/suburbs_enriched.csv --geojson geo/suburbs.geojson
"""

import argparse
import logging
import sys
from pathlib import Path

from services.geo.config import settings
from services.geo.engine.context import require_json, write_json
from services.geo.engine.enrichment import load_enrichment, sync_documents
from services.geo.engine.errors import GeoError
from services.geo.engine.proximity import compute_etag
from services.geo.engine.schemas import GeoConfigDocument

logger = logging.getLogger("geo_sync")


def main() -> int:
    parser = argparse.ArgumentParser(description="Normalize and enrich geo source documents")
    parser.add_argument("--clusters", type=Path, required=True, help="Hand-authored cluster document")
    parser.add_argument("--adjacency", type=Path, required=True, help="Adjacency document (either shape)")
    parser.add_argument("--csv", type=Path, action="append", default=[], help="Enrichment CSV (repeatable)")
    parser.add_argument("--geojson", type=Path, action="append", default=[], help="Enrichment GeoJSON (repeatable)")
    parser.add_argument("--data-dir", type=Path, default=settings.data_dir)
    parser.add_argument("--strict-slugs", action="store_true", help="Reject slugs that are not already normalized")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        result = sync_documents(
            require_json(args.clusters),
            require_json(args.adjacency),
            load_enrichment(args.csv, args.geojson),
            strict=args.strict_slugs,
        )
    except GeoError as exc:
        logger.error("Sync failed: %s", exc)
        return 1

    data_dir = args.data_dir
    write_json(data_dir / settings.clusters_file, result.clusters)
    write_json(data_dir / settings.adjacency_file, result.adjacency)

    config_path = data_dir / settings.config_file
    if not config_path.exists():
        write_json(config_path, GeoConfigDocument().model_dump(by_alias=True, mode="json"))
        logger.info("Created default %s", config_path)

    proximity_path = data_dir / settings.proximity_file
    if not proximity_path.exists():
        write_json(proximity_path, {"etag": compute_etag({}), "nearby": {}})
        logger.info("Created empty %s", proximity_path)

    logger.info(
        "Wrote %s and %s (%d coordinate(s) backfilled, %d edge(s) dropped)",
        data_dir / settings.clusters_file, data_dir / settings.adjacency_file,
        result.coordinates_filled, result.edges_dropped,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
