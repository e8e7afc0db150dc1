"""
Geo Doctor: integrity checks, reports and optional artifacts for the geo
source documents.

Run states: Load -> Validate -> Index -> Score (optional) -> Report.

Findings are grouped as:
  missing      required input absent or unparseable (always fatal)
  schema       malformed documents, self-loops, out-of-range coordinates
  referential  unknown slugs, suburbs claimed by two clusters
  warnings     topology and data-quality notes (never fatal)

Every pass collects all of its findings; pass/fail is decided once, at the
end. The human and JSON reports are written whatever the outcome, so a
failing CI run still leaves its diagnostics behind.

Usage:
    python -m services.geo.engine.doctor
    python -m services.geo.engine.doctor --strict
    python -m services.geo.engine.doctor --explain ipswich
    python -m services.geo.engine.doctor --graph --write
    python -m services.geo.engine.doctor --suggest-split brisbane --k 3
    GEO_TOLERANT=1 python -m services.geo.engine.doctor
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from services.geo.config import Settings, settings as default_settings
from services.geo.engine.adjacency import AdjacencyFindings, AdjacencyGraph, to_dot, validate
from services.geo.engine.cluster_index import ClusterIndex, collect_index
from services.geo.engine.context import GeoPaths, LoadedDocument, read_json, write_json
from services.geo.engine.errors import TopologyWarning
from services.geo.engine.coverage import Coverage
from services.geo.engine.models import ScoreWeights
from services.geo.engine.proximity import (
    ProximityScorer,
    diff_snapshot,
    repair_snapshot,
    snapshot_entries,
    validate_snapshot,
)
from services.geo.engine.schemas import (
    GeoConfigDocument,
    collect_adjacency,
    collect_clusters,
    collect_config,
)
from services.geo.engine.splitter import SplitError, split_suggestion

logger = logging.getLogger(__name__)

# ANSI colors
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
RESET = "\033[0m"
BOLD = "\033[1m"

REPORT_JSON = "geo-report.json"
REPORT_TXT = "geo-report.txt"
DIFF_JSON = "geo-proximity-diff.json"
FIXED_JSON = "geo-proximity-fixed.json"
GRAPH_DOT = "geo-adjacency.dot"
SPLIT_JSON = "geo-suggested-split.json"

# How many cross-cluster edges are spelled out in the warning list
CROSS_EDGE_SAMPLE = 10
# How many messages per category make it into the text report
TOP_MESSAGES = 10


@dataclass
class DoctorOptions:
    strict: bool = False
    tolerant: bool = False
    strict_slugs: bool = False
    explain: Optional[str] = None
    graph: bool = False
    write: bool = False
    suggest_split: Optional[str] = None
    split_k: Optional[int] = None
    limit: Optional[int] = None
    diff_sample: int = 60
    out_dir: Path = Path("__ai")

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings, **overrides: Any) -> "DoctorOptions":
        base = dict(
            strict=cfg.strict,
            tolerant=cfg.tolerant,
            diff_sample=cfg.diff_sample,
            out_dir=cfg.out_dir,
        )
        base.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**base)


@dataclass
class Issues:
    missing: list[str] = field(default_factory=list)
    schema: list[str] = field(default_factory=list)
    referential: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "missing": self.missing,
            "schema": self.schema,
            "referential": self.referential,
            "warnings": self.warnings,
        }


@dataclass
class DoctorResult:
    exit_code: int
    report: dict[str, Any]
    text: str
    issues: Issues
    outputs: dict[str, Optional[str]]

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


class GeoDoctor:
    """One Doctor run over a set of source paths."""

    def __init__(self, paths: GeoPaths, options: DoctorOptions, cfg: Settings = default_settings):
        self.paths = paths
        self.options = options
        self.cfg = cfg
        self.issues = Issues()
        self.docs: dict[str, LoadedDocument] = {}
        self.index = ClusterIndex()
        self.graph = AdjacencyGraph()
        self.coverage = Coverage()
        self.config = GeoConfigDocument()
        self.weights = ScoreWeights()
        self.findings = AdjacencyFindings()

    # ------------------------------------------------------------------
    # Finding helpers
    # ------------------------------------------------------------------

    def schema(self, msg: str) -> None:
        self.issues.schema.append(msg)
        logger.error("schema: %s", msg)

    def referential(self, msg: str, downgradable: bool = True) -> None:
        if downgradable and self.options.tolerant:
            self.warn(f"{msg} (tolerant)")
            return
        self.issues.referential.append(msg)
        logger.error("referential: %s", msg)

    def warn(self, msg: str, topology: bool = False) -> None:
        self.issues.warnings.append(msg)
        if topology:
            logger.warning("[%s] %s", TopologyWarning.__name__, msg)
        else:
            logger.warning("%s", msg)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> None:
        p = self.paths
        for name, path, required in (
            ("clusters", p.clusters, True),
            ("adjacency", p.adjacency, True),
            ("coverage", p.coverage, False),
            ("config", p.config, False),
            ("proximity", p.proximity, False),
            ("clusterMap", p.cluster_map, False),
        ):
            doc = read_json(path)
            self.docs[name] = doc
            if doc.ok:
                continue
            reason = "file not found" if doc.err == "ENOENT" else doc.err
            if required:
                self.issues.missing.append(f"Missing {doc.path or name}: {reason}")
                logger.error("Required input %s unavailable: %s", doc.path or name, reason)
            elif doc.present:
                self.schema(f"{doc.path} unreadable: {reason}")

        if not self.docs["clusterMap"].ok and not self.docs["clusterMap"].present:
            self.warn("cluster_map.json missing; region will be undefined in some UIs/LD.")

    # ------------------------------------------------------------------
    # Validate + Index
    # ------------------------------------------------------------------

    def validate(self) -> None:
        docs = self.docs

        self.config, violations = collect_config(docs["config"].data if docs["config"].ok else None)
        for msg in violations:
            self.schema(msg)
        self.weights = self.config.to_weights(self.options.limit)

        if docs["clusters"].ok:
            clusters, violations = collect_clusters(docs["clusters"].data, strict=self.options.strict_slugs)
            for msg in violations:
                self.schema(msg)
            self.index, conflicts = collect_index(clusters)
            for conflict in conflicts:
                self.referential(conflict.message(), downgradable=False)

        if docs["clusterMap"].ok:
            data = docs["clusterMap"].data
            if not isinstance(data, dict):
                self.schema("cluster_map.json must be an object")
            else:
                for key in data:
                    if key not in self.index.clusters:
                        self.referential(f'cluster_map.json references unknown cluster "{key}"')

        if docs["adjacency"].ok:
            adjacency, violations = collect_adjacency(docs["adjacency"].data, strict=self.options.strict_slugs)
            for msg in violations:
                self.schema(msg)
            self.graph = AdjacencyGraph(neighbours=adjacency)

        if docs["coverage"].ok:
            self.coverage, violations = Coverage.from_document(docs["coverage"].data)
            for msg in violations:
                self.schema(msg)
            for token in self.coverage.unknown_tokens(self.index):
                self.referential(f"coverage token {token} not in clusters")

        self.findings = validate(self.graph, self.index, self.weights)
        for msg in self.findings.missing:
            self.referential(msg)
        for msg in self.findings.self_loops:
            self.schema(msg)
        if self.findings.cross_cluster:
            sample = ", ".join(e.describe() for e in self.findings.cross_cluster[:CROSS_EDGE_SAMPLE])
            more = len(self.findings.cross_cluster) - CROSS_EDGE_SAMPLE
            suffix = f" ... and {more} more" if more > 0 else ""
            self.warn(
                f"Cross-cluster edges ({len(self.findings.cross_cluster)}): {sample}{suffix}",
                topology=True,
            )
        if self.findings.disallowed_cross_cluster:
            self.warn(
                f"{len(self.findings.disallowed_cross_cluster)} cross-cluster edge(s) not whitelisted "
                f"under crossClusterMode=drop; run the enforce utility to remove them",
                topology=True,
            )

        if docs["proximity"].ok:
            snap = validate_snapshot(docs["proximity"].data, self.index, self.weights.limit)
            for msg in snap.schema:
                self.schema(msg)
            for msg in snap.referential:
                self.referential(msg)
            for msg in snap.warnings:
                self.warn(msg)

        missing_coords = sum(1 for s in self.index.suburbs.values() if not s.has_coords)
        if missing_coords:
            self.warn(f"{missing_coords} suburbs missing lat/lng (distance fallback limited)")

        big = [
            f"{slug} ({n})" for slug, n in self.index.cluster_sizes().items()
            if n >= self.cfg.large_cluster_threshold
        ]
        if big:
            self.warn(
                f"Large clusters detected: {', '.join(big)}; consider subdividing for better nearby relevance.",
                topology=True,
            )

    # ------------------------------------------------------------------
    # Score + side outputs
    # ------------------------------------------------------------------

    @property
    def scorer(self) -> ProximityScorer:
        return ProximityScorer(self.index, self.graph, self.weights, self.coverage)

    def run(self, now: Optional[datetime] = None) -> DoctorResult:
        self.load()
        self.validate()

        out_dir = Path(self.options.out_dir)
        scorer = self.scorer
        prox_doc = self.docs["proximity"].data if self.docs["proximity"].ok else None
        limit = self.weights.limit
        outputs: dict[str, Optional[str]] = {
            "reportJson": str(out_dir / REPORT_JSON),
            "reportTxt": str(out_dir / REPORT_TXT),
            "diff": str(out_dir / DIFF_JSON),
            "explain": None,
            "fixed": None,
            "graph": None,
            "split": None,
        }

        sample = list(self.index.suburbs)[: max(1, self.options.diff_sample)]
        diffs = diff_snapshot(prox_doc, scorer, sample, limit)
        write_json(out_dir / DIFF_JSON, diffs)

        if self.options.explain:
            slug = self.options.explain
            if slug in self.index:
                explained = scorer.explain(slug, top=self.cfg.explain_top)
                path = out_dir / f"geo-explain-{slug}.json"
                write_json(path, explained)
                outputs["explain"] = str(path)
            else:
                self.warn(f'explain: suburb "{slug}" not in clusters')

        if self.options.graph and self.docs["adjacency"].ok:
            path = out_dir / GRAPH_DOT
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(to_dot(self.graph), encoding="utf-8")
            outputs["graph"] = str(path)

        if self.options.write and len(self.index):
            path = out_dir / FIXED_JSON
            write_json(path, repair_snapshot(prox_doc, scorer, limit))
            outputs["fixed"] = str(path)

        if self.options.suggest_split:
            outputs["split"] = self.suggest_split(out_dir)

        report = self.build_report(now or datetime.now(timezone.utc), diffs, len(sample), outputs)
        text = render_text(report)
        write_json(out_dir / REPORT_JSON, report)
        (out_dir / REPORT_TXT).write_text(text, encoding="utf-8")

        return DoctorResult(
            exit_code=self.exit_code(),
            report=report,
            text=text,
            issues=self.issues,
            outputs=outputs,
        )

    def suggest_split(self, out_dir: Path) -> Optional[str]:
        slug = self.options.suggest_split
        cluster = self.index.clusters.get(slug)
        if cluster is None:
            self.warn(f'suggest-split: cluster "{slug}" not in clusters')
            return None
        k = self.options.split_k or self.cfg.split_default_k
        try:
            suggestion = split_suggestion(cluster, k)
        except SplitError as exc:
            self.warn(f"suggest-split: {exc}")
            return None
        path = out_dir / SPLIT_JSON
        write_json(path, suggestion)
        logger.info("Suggested split for %s saved to %s", slug, path)
        return str(path)

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def exit_code(self) -> int:
        if self.issues.missing:
            return 1
        if self.options.strict and (self.issues.schema or self.issues.referential):
            return 1
        return 0

    def build_report(
        self,
        now: datetime,
        diffs: list[dict[str, Any]],
        sampled: int,
        outputs: dict[str, Optional[str]],
    ) -> dict[str, Any]:
        prox = self.docs["proximity"]
        adj = self.docs["adjacency"]
        return {
            "timestamp": now.isoformat(),
            "mode": {"strict": self.options.strict, "tolerant": self.options.tolerant},
            "files": {
                name: {"path": doc.path, "ok": doc.ok, "err": doc.err}
                for name, doc in self.docs.items()
            },
            "config": {"limit": self.weights.limit, "weights": self.weights.as_dict()},
            "counts": {
                "clusters": len(self.index.clusters),
                "suburbs": len(self.index),
                "adjacencySources": len(self.graph.neighbours) if adj.ok else 0,
                "proximitySources": len(snapshot_entries(prox.data)) if prox.ok else 0,
            },
            "clusterSizes": self.index.cluster_sizes(),
            "clusterSizeHistogram": size_histogram(self.index.cluster_sizes()),
            "adjacency": {
                "totalEdges": self.findings.total_edges,
                "reciprocalEdges": self.findings.reciprocal_edges,
                "reciprocityRate": round(self.findings.reciprocity_rate, 6),
                "crossClusterEdges": len(self.findings.cross_cluster),
                "missingNodes": sorted(self.findings.missing_slugs),
            },
            "diffsSampled": sampled,
            "proximityDiffs": diffs[:200],
            "outputs": outputs,
            "issues": self.issues.as_dict(),
            "result": "fail" if self.exit_code() else "pass",
        }


def size_histogram(sizes: dict[str, int]) -> dict[str, int]:
    """Cluster counts per size bucket: 1-9, 10-49, 50-119, 120+."""
    buckets = (("1-9", 1, 9), ("10-49", 10, 49), ("50-119", 50, 119), ("120+", 120, None))
    hist = {label: 0 for label, _, _ in buckets}
    hist["empty"] = 0
    for n in sizes.values():
        if n == 0:
            hist["empty"] += 1
            continue
        for label, lo, hi in buckets:
            if n >= lo and (hi is None or n <= hi):
                hist[label] += 1
                break
    return hist


def render_text(report: dict[str, Any]) -> str:
    files = report["files"]
    counts = report["counts"]
    adj = report["adjacency"]
    issues = report["issues"]

    def status(name: str, required: bool = False) -> str:
        if files[name]["ok"]:
            return "OK"
        return "MISSING/ERR" if required else "Missing"

    sizes = sorted(report["clusterSizes"].items(), key=lambda kv: (-kv[1], kv[0]))[:10]
    size_lines = "\n".join(f"  - {k}: {v}" for k, v in sizes) or "  (none)"
    hist_lines = "\n".join(f"  - {k}: {v}" for k, v in report["clusterSizeHistogram"].items())
    top = [m for key in ("missing", "schema", "referential", "warnings") for m in issues[key][:TOP_MESSAGES]]
    top_lines = "\n".join(f"  - {m}" for m in top) or "  (none)"

    return (
        "Geo Doctor\n"
        "==========\n"
        f"Time: {report['timestamp']}\n"
        f"Result: {report['result'].upper()}\n"
        "\n"
        "Files:\n"
        f"- clusters:   {status('clusters', True)}\n"
        f"- adjacency:  {status('adjacency', True)}\n"
        f"- coverage:   {status('coverage')}\n"
        f"- config:     {status('config')}\n"
        f"- proximity:  {status('proximity')}\n"
        f"- clusterMap: {status('clusterMap')}\n"
        "\n"
        "Config:\n"
        f"- limit: {report['config']['limit']}\n"
        f"- weights: {json.dumps(report['config']['weights'], sort_keys=True)}\n"
        "\n"
        "Counts:\n"
        f"- clusters:  {counts['clusters']}\n"
        f"- suburbs:   {counts['suburbs']}\n"
        f"- adjacency: {counts['adjacencySources']} sources (edges: {adj['totalEdges']}; "
        f"cross-cluster: {adj['crossClusterEdges']}; reciprocity {adj['reciprocityRate'] * 100:.1f}%)\n"
        f"- proximity: {counts['proximitySources']} sources\n"
        "\n"
        f"Diffs (sample {report['diffsSampled']}):\n"
        f"- records with mismatches: {len(report['proximityDiffs'])}\n"
        f"  (saved -> {report['outputs']['diff']})\n"
        "\n"
        "Cluster sizes (top 10):\n"
        f"{size_lines}\n"
        "\n"
        "Cluster size histogram:\n"
        f"{hist_lines}\n"
        "\n"
        "Issues:\n"
        f"- missing:     {len(issues['missing'])}\n"
        f"- schema:      {len(issues['schema'])}\n"
        f"- referential: {len(issues['referential'])}\n"
        f"- warnings:    {len(issues['warnings'])}\n"
        "\n"
        "Top messages:\n"
        f"{top_lines}\n"
    )


def run_doctor(
    paths: Optional[GeoPaths] = None,
    options: Optional[DoctorOptions] = None,
    cfg: Settings = default_settings,
    now: Optional[datetime] = None,
) -> DoctorResult:
    paths = paths or GeoPaths.from_settings(cfg)
    options = options or DoctorOptions.from_settings(cfg)
    return GeoDoctor(paths, options, cfg).run(now=now)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate geo clusters, adjacency and proximity data")
    parser.add_argument("--strict", action="store_true", help="Fail on schema or referential findings")
    parser.add_argument("--strict-slugs", action="store_true", help="Reject slugs that are not already normalized")
    parser.add_argument("--explain", metavar="SLUG", help="Write the score breakdown for one suburb")
    parser.add_argument("--graph", action="store_true", help="Export the adjacency graph as Graphviz DOT")
    parser.add_argument("--write", action="store_true", help="Write a repaired proximity snapshot")
    parser.add_argument("--suggest-split", metavar="CLUSTER", help="Suggest a k-means split for a cluster")
    parser.add_argument("--k", type=int, default=None, help="Number of sub-clusters for --suggest-split")
    parser.add_argument("--limit", type=int, default=None, help="Override the nearby list length")
    parser.add_argument("--diff-sample", type=int, default=None, help="Suburbs compared against the snapshot")
    parser.add_argument("--data-dir", type=Path, default=None)
    parser.add_argument("--out-dir", type=Path, default=None)
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    cfg = default_settings
    options = DoctorOptions.from_settings(
        cfg,
        strict=args.strict or cfg.strict,
        strict_slugs=args.strict_slugs,
        explain=args.explain,
        graph=args.graph,
        write=args.write,
        suggest_split=args.suggest_split,
        split_k=args.k,
        limit=args.limit,
        diff_sample=args.diff_sample,
        out_dir=args.out_dir,
    )
    result = run_doctor(GeoPaths.from_settings(cfg, args.data_dir), options, cfg)

    print(f"{BOLD}\n[geo-doctor]{RESET}")
    print(result.text)
    if result.issues.warnings:
        print(f"{YELLOW}[geo-doctor] {len(result.issues.warnings)} warning(s){RESET}")
    if result.passed:
        print(f"{GREEN}[geo-doctor] done{RESET}")
    else:
        reasons = [name for name in ("missing", "schema", "referential") if getattr(result.issues, name)]
        print(f"{RED}[geo-doctor] fail: {', '.join(reasons)}{RESET}", file=sys.stderr)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
