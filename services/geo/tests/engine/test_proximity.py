"""
Proximity scoring tests.

Covers:
- Great-circle distance
- Score formula terms and the cross-cluster policy
- Deterministic ranking (score desc, slug asc)
- Candidate filters: blacklist, drop mode, onlyCovered
- Tiered nearby lists and coordinate-less suburbs
- Snapshot build, validation, repair and diff
"""

import pytest

from services.geo.engine.context import GeoContext
from services.geo.engine.proximity import (
    DIFF_ITEMS_PER_SIDE,
    build_snapshot,
    compute_etag,
    diff_snapshot,
    great_circle_km,
    repair_snapshot,
    suburb_distance_km,
    validate_snapshot,
)
from services.geo.tests.engine.conftest import SCENARIO_ADJACENCY, SCENARIO_CLUSTERS

ONE_DEGREE_KM = 111.19


def scenario_with(config=None, coverage=None, clusters=None, adjacency=None):
    nearby = {"biasKm": 1}
    nearby.update((config or {}).pop("nearby", {}))
    return GeoContext.from_documents(
        clusters or SCENARIO_CLUSTERS,
        adjacency or SCENARIO_ADJACENCY,
        coverage,
        {"nearby": nearby, **(config or {})},
    )


def slugs(suburbs):
    return [s.slug for s in suburbs]


# ===================================================================
# Distance
# ===================================================================


class TestGreatCircle:

    def test_zero_for_same_point(self):
        assert great_circle_km(-27.46, 153.02, -27.46, 153.02) == 0.0

    def test_symmetric(self):
        there = great_circle_km(-27.46, 153.02, -27.615, 152.76)
        back = great_circle_km(-27.615, 152.76, -27.46, 153.02)
        assert there == pytest.approx(back)

    def test_one_degree_on_equator(self):
        assert great_circle_km(0, 0, 0, 1) == pytest.approx(ONE_DEGREE_KM, abs=0.01)

    def test_missing_coordinates(self, seq_context):
        slacks = seq_context.index.get("slacks-creek")
        springwood = seq_context.index.get("springwood")
        assert suburb_distance_km(slacks, springwood) is None


# ===================================================================
# Score formula
# ===================================================================


class TestScore:

    def test_nearest_prefers_adjacent_same_cluster(self, scenario_context):
        assert slugs(scenario_context.scorer.nearest("p", 1)) == ["q"]

    def test_breakdown_same_cluster_neighbour(self, scenario_context):
        parts = scenario_context.scorer.breakdown("p", "q")
        assert parts.adjacency == 24
        assert parts.cluster == 200
        assert parts.cross_penalty == 0
        assert parts.distance == pytest.approx(-ONE_DEGREE_KM, abs=0.01)
        assert parts.total == pytest.approx(24 + 200 - ONE_DEGREE_KM, abs=0.01)

    def test_breakdown_cross_cluster(self, scenario_context):
        parts = scenario_context.scorer.breakdown("p", "r")
        assert parts.adjacency == 0
        assert parts.cluster == 0
        assert parts.cross_penalty == -200
        assert parts.distance == pytest.approx(-10 * ONE_DEGREE_KM, rel=1e-3)

    def test_adjacency_is_directional(self, scenario_context):
        assert scenario_context.scorer.breakdown("q", "p").adjacency == 0

    def test_distance_weight_scales_distance(self):
        context = scenario_with({"nearby": {"distanceWeight": 2}})
        assert context.scorer.breakdown("p", "q").distance == pytest.approx(-2 * ONE_DEGREE_KM, abs=0.02)

    def test_missing_coordinate_contributes_zero(self):
        context = scenario_with(clusters={"cluster-a": [{"slug": "p", "lat": 0, "lng": 0}, "z"]}, adjacency={"p": []})
        parts = context.scorer.breakdown("p", "z")
        assert parts.distance == 0
        assert parts.distance_km is None

    def test_unknown_suburb(self, scenario_context):
        with pytest.raises(KeyError):
            scenario_context.scorer.breakdown("p", "atlantis")
        assert scenario_context.scorer.nearest("atlantis") == []


class TestRanking:

    def test_ties_broken_by_slug(self):
        context = scenario_with(clusters={"a": ["x", "c", "b"]}, adjacency={"x": []})
        assert slugs(context.scorer.nearest("x")) == ["b", "c"]

    def test_default_limit(self, scenario_context):
        assert slugs(scenario_context.scorer.nearest("p")) == ["q", "r"]

    def test_service_limit(self):
        context = scenario_with({"services": {"pest-control": {"limit": 1}}})
        assert len(context.scorer.nearest("p", service="pest-control")) == 1
        assert len(context.scorer.nearest("p")) == 2

    def test_never_contains_source(self, seq_context):
        for slug in seq_context.index.suburbs:
            assert slug not in slugs(seq_context.scorer.nearest(slug, 20))


class TestCrossClusterPolicy:

    def test_cross_cluster_pair_scores_lower(self):
        p = {"slug": "p", "lat": 0, "lng": 0}
        q = {"slug": "q", "lat": 0, "lng": 1}
        apart = scenario_with(clusters={"a": [p], "b": [q]}, adjacency={"p": ["q"]})
        together = scenario_with(clusters={"a": [p, q]}, adjacency={"p": ["q"]})
        assert apart.scorer.score("p", "q") < together.scorer.score("p", "q")

    def test_allow_has_no_penalty(self):
        context = scenario_with({"nearby": {"crossClusterMode": "allow"}})
        assert context.scorer.breakdown("p", "r").cross_penalty == 0

    def test_drop_excludes_other_clusters(self):
        context = scenario_with({"nearby": {"crossClusterMode": "drop"}})
        assert slugs(context.scorer.nearest("p", 5)) == ["q"]

    def test_drop_keeps_whitelisted_pairs(self):
        context = scenario_with({
            "nearby": {"crossClusterMode": "drop"},
            "crossCluster": {"whitelistEdges": [{"from": "r", "to": "p"}]},
        })
        assert slugs(context.scorer.nearest("p", 5)) == ["q", "r"]

    def test_blacklist_excludes_pair(self):
        context = scenario_with({"crossCluster": {"blacklistEdges": [{"from": "q", "to": "p"}]}})
        assert slugs(context.scorer.nearest("p", 5)) == ["r"]


class TestCoverageFilter:

    def test_only_covered_limits_pool(self):
        context = scenario_with({"nearby": {"onlyCovered": True}}, coverage={"pest-control": ["r"]})
        assert slugs(context.scorer.nearest("p", service="pest-control")) == ["r"]

    def test_no_service_means_no_filter(self):
        context = scenario_with({"nearby": {"onlyCovered": True}}, coverage={"pest-control": ["r"]})
        assert slugs(context.scorer.nearest("p")) == ["q", "r"]

    def test_unrestricted_service(self):
        context = scenario_with({"nearby": {"onlyCovered": True}}, coverage={"pest-control": ["r"]})
        assert slugs(context.scorer.nearest("p", service="bond-cleaning")) == ["q", "r"]

    def test_flag_off_ignores_coverage(self):
        context = scenario_with(coverage={"pest-control": ["r"]})
        assert slugs(context.scorer.nearest("p", service="pest-control")) == ["q", "r"]


# ===================================================================
# Tiered nearby
# ===================================================================


class TestNearby:

    def test_neighbours_then_cluster_by_distance(self, seq_context):
        nearby = seq_context.scorer.nearby("spring-hill", 3)
        assert slugs(nearby) == ["fortitude-valley", "new-farm", "kangaroo-point"]

    def test_coordinate_less_suburb_ranks_as_zero_distance(self, seq_context):
        # slacks-creek has no coordinates, so it outranks every located cross-cluster suburb
        assert slugs(seq_context.scorer.nearby("spring-hill", 4))[3] == "slacks-creek"

    def test_source_without_coordinates(self, seq_context):
        assert slugs(seq_context.scorer.nearby("slacks-creek", 3)) == [
            "springwood", "booval", "fortitude-valley",
        ]

    def test_respects_limit(self, seq_context):
        assert len(seq_context.scorer.nearby("booval", 2)) == 2
        assert len(seq_context.scorer.nearby("booval", 50)) == 8

    def test_unknown_source(self, seq_context):
        assert seq_context.scorer.nearby("atlantis") == []


# ===================================================================
# Explain
# ===================================================================


class TestExplain:

    def test_structure(self, scenario_context):
        explained = scenario_context.scorer.explain("p")
        assert explained["source"] == "p"
        assert explained["cluster"] == "cluster-a"
        assert explained["limit"] == 6
        assert explained["weights"]["biasKm"] == 1
        assert [row["slug"] for row in explained["top"]] == ["q", "r"]
        assert set(explained["top"][0]["parts"]) == {
            "adjacency", "cluster", "crossPenalty", "distance", "distanceKm",
        }

    def test_top_truncates(self, seq_context):
        assert len(seq_context.scorer.explain("booval", top=3)["top"]) == 3

    def test_unknown_source(self, scenario_context):
        with pytest.raises(KeyError):
            scenario_context.scorer.explain("atlantis")


# ===================================================================
# Snapshots
# ===================================================================


class TestEtag:

    def test_key_order_does_not_matter(self):
        a = {"p": [{"slug": "q", "name": "Q"}], "q": []}
        b = {"q": [], "p": [{"name": "Q", "slug": "q"}]}
        assert compute_etag(a) == compute_etag(b)

    def test_content_changes_etag(self):
        assert compute_etag({"p": []}) != compute_etag({"p": [{"slug": "q", "name": "Q"}]})
        assert len(compute_etag({})) == 64


class TestBuildSnapshot:

    def test_snapshot(self, scenario_context):
        snapshot = build_snapshot(scenario_context.scorer, 1)
        assert list(snapshot["nearby"]) == ["p", "q", "r"]
        assert snapshot["nearby"]["p"] == [{"slug": "q", "name": "Q"}]
        assert snapshot["nearby"]["r"] == [{"slug": "q", "name": "Q"}]
        assert snapshot["etag"] == compute_etag(snapshot["nearby"])

    def test_deterministic(self, seq_context):
        assert build_snapshot(seq_context.scorer) == build_snapshot(seq_context.scorer)


class TestValidateSnapshot:

    def test_collects_every_finding(self, scenario_context):
        doc = {
            "nearby": {
                "p": [{"slug": "p"}, {"slug": "q"}, {"slug": "q"}, {"slug": "atlantis"}, {"name": "X"}],
                "ghost": [],
            }
        }
        findings = validate_snapshot(doc, scenario_context.index, 2)
        assert findings.schema == [
            'proximity["p"] contains self',
            'proximity["p"] duplicate "q"',
            'proximity["p"] item missing slug',
        ]
        assert findings.referential == [
            'proximity["p"] -> "atlantis" not in clusters',
            'proximity: source "ghost" not in clusters',
        ]
        assert findings.warnings == ['proximity["p"] length 5 exceeds limit 2']

    def test_entry_must_be_array(self, scenario_context):
        findings = validate_snapshot({"nearby": {"p": "q"}}, scenario_context.index, 6)
        assert findings.schema == ['proximity.nearby["p"] must be an array']

    def test_absent_and_malformed(self, scenario_context):
        assert validate_snapshot(None, scenario_context.index, 6).schema == []
        assert validate_snapshot(["p"], scenario_context.index, 6).schema == [
            "proximity snapshot must be {nearby: {...}}"
        ]


class TestRepairSnapshot:

    def test_drops_self_and_unknown_then_pads(self, scenario_context):
        prior = {"nearby": {"p": [{"slug": "p", "name": "P"}, {"slug": "atlantis", "name": "Atlantis"}]}}
        fixed = repair_snapshot(prior, scenario_context.scorer, 2)
        assert fixed["nearby"]["p"] == [{"slug": "q", "name": "Q"}, {"slug": "r", "name": "R"}]
        assert all(len(items) <= 2 for items in fixed["nearby"].values())
        assert fixed["meta"] == {"limit": 2}
        assert fixed["etag"] == compute_etag(fixed["nearby"])

    def test_keeps_valid_prior_entries_first(self, scenario_context):
        prior = {"nearby": {"p": [{"slug": "r", "name": "stale"}]}}
        fixed = repair_snapshot(prior, scenario_context.scorer, 2)
        assert fixed["nearby"]["p"] == [{"slug": "r", "name": "R"}, {"slug": "q", "name": "Q"}]

    def test_caps_at_limit(self, scenario_context):
        prior = {"nearby": {"p": [{"slug": "q"}, {"slug": "r"}]}}
        fixed = repair_snapshot(prior, scenario_context.scorer, 1)
        assert fixed["nearby"]["p"] == [{"slug": "q", "name": "Q"}]

    def test_no_prior_snapshot(self, scenario_context):
        fixed = repair_snapshot(None, scenario_context.scorer, 1)
        assert fixed["nearby"] == build_snapshot(scenario_context.scorer, 1)["nearby"]


class TestDiffSnapshot:

    def test_reports_both_sides(self, scenario_context):
        prior = {"nearby": {"p": [{"slug": "r"}]}}
        diffs = diff_snapshot(prior, scenario_context.scorer, ["p", "q"], 1)
        assert diffs == [
            {"suburb": "p", "missingFromPre": ["q"], "extrasInPre": ["r"]},
            {"suburb": "q", "missingFromPre": ["p"], "extrasInPre": []},
        ]

    def test_matching_snapshot_has_no_diffs(self, seq_context):
        snapshot = build_snapshot(seq_context.scorer)
        assert diff_snapshot(snapshot, seq_context.scorer, list(seq_context.index.suburbs)) == []

    def test_sides_are_capped(self, seq_context):
        prior = {"nearby": {"booval": [{"slug": f"ghost-{i}"} for i in range(10)]}}
        diffs = diff_snapshot(prior, seq_context.scorer, ["booval"], 8)
        assert len(diffs[0]["extrasInPre"]) == DIFF_ITEMS_PER_SIDE
        assert len(diffs[0]["missingFromPre"]) == DIFF_ITEMS_PER_SIDE

    def test_non_string_slugs_are_ignored(self, scenario_context):
        prior = {"nearby": {"p": [{"slug": ["q"]}, {"slug": {"x": 1}}, {"slug": "r"}]}}
        diffs = diff_snapshot(prior, scenario_context.scorer, ["p"], 1)
        assert diffs == [{"suburb": "p", "missingFromPre": ["q"], "extrasInPre": ["r"]}]
