"""
Tests for the feature synthesis planner.

Planning never touches data, so every test runs against a schema alone.
"""

from __future__ import annotations

import pytest

from episode_forecaster.errors import PlanningError
from episode_forecaster.primitives.library import PrimitiveLibrary
from episode_forecaster.schema.registry import SchemaBuilder
from episode_forecaster.synthesis.planner import plan
from episode_forecaster.synthesis.spec import AggregationFeature, DirectFeature
from episode_forecaster.taxonomy.column_types import ColumnType, PrimitiveKind


def _names(specs) -> list[str]:
    return [s.name for s in specs]


class _RecordingLibrary(PrimitiveLibrary):
    """Library that logs every type-compatibility query and can veto a kind."""

    def __init__(self, primitives, vetoed=None):
        super().__init__(primitives)
        self.queries: list[tuple[PrimitiveKind, ColumnType]] = []
        self.vetoed = vetoed

    def compatible_primitives(self, kind, input_type):
        self.queries.append((kind, input_type))
        if kind == self.vetoed:
            return []
        return super().compatible_primitives(kind, input_type)


class TestPlanShape:
    def test_depth_zero_is_target_columns(self, episode_schema, library):
        specs = plan(episode_schema, "episodes", library, 0, excluded_columns=["award_amount"])
        assert _names(specs) == ["judge_id", "case_type", "city", "notes"]
        assert all(s.depth == 0 for s in specs)

    def test_depth_one_small_library(self, episode_schema, library):
        specs = plan(
            episode_schema, "episodes", library.subset(["count", "sum", "mean", "month"]), 1,
            excluded_columns=["award_amount"],
        )
        assert _names(specs) == [
            "judge_id", "case_type", "city", "notes",
            "COUNT(motions.motion_id)",
            "SUM(motions.amount)",
            "MEAN(motions.amount)",
            "judges.court",
        ]

    @pytest.mark.parametrize("max_depth", [0, 1, 2])
    def test_depth_bound(self, episode_schema, library, max_depth):
        specs = plan(episode_schema, "episodes", library, max_depth)
        assert specs
        assert max(s.depth for s in specs) <= max_depth

    def test_depth_two_composes(self, episode_schema, library):
        specs = plan(episode_schema, "episodes", library.subset(["sum", "absolute"]), 2)
        names = _names(specs)
        assert "SUM(motions.amount)" in names
        assert "ABSOLUTE(SUM(motions.amount))" in names
        assert "ABSOLUTE(ABSOLUTE(award_amount))" not in names

    def test_every_spec_on_target(self, episode_schema, library):
        specs = plan(episode_schema, "episodes", library, 2)
        assert {s.entity for s in specs} == {"episodes"}

    def test_no_structural_duplicates(self, episode_schema, library):
        specs = plan(episode_schema, "episodes", library, 2)
        assert len({s.key for s in specs}) == len(specs)
        assert len(set(_names(specs))) == len(specs)

    def test_deterministic(self, episode_schema, library):
        first = plan(episode_schema, "episodes", library, 2)
        second = plan(episode_schema, "episodes", library, 2)
        assert _names(first) == _names(second)

    def test_shallow_first(self, episode_schema, library):
        depths = [s.depth for s in plan(episode_schema, "episodes", library, 2)]
        zero = [d for d in depths if d == 0]
        assert depths[: len(zero)] == zero

    def test_max_features_truncates(self, episode_schema, library):
        full = plan(episode_schema, "episodes", library, 2)
        capped = plan(episode_schema, "episodes", library, 2, max_features=5)
        assert _names(capped) == _names(full)[:5]


class TestDegenerateFeatures:
    def test_join_keys_never_aggregated(self, episode_schema, library):
        for spec in plan(episode_schema, "episodes", library, 2):
            for node in spec.walk():
                if isinstance(node, AggregationFeature) and node.primitive.name != "count":
                    assert node.child.name not in {"episode_id", "motion_id"}

    def test_count_only_over_index(self, episode_schema, library):
        for spec in plan(episode_schema, "episodes", library, 2):
            for node in spec.walk():
                if isinstance(node, AggregationFeature) and node.primitive.name == "count":
                    leaf = node.path[-1].child_entity
                    assert node.child.name == episode_schema.entity(leaf).index_column

    def test_excluded_column_never_used(self, episode_schema, library):
        specs = plan(episode_schema, "episodes", library, 2, excluded_columns=["award_amount"])
        for spec in specs:
            assert ("episodes", "award_amount") not in spec.base_columns()

    def test_time_column_never_a_base(self, episode_schema, library):
        names = _names(plan(episode_schema, "episodes", library, 2))
        assert "aired_at" not in names
        assert "MONTH(aired_at)" not in names

    def test_never_walks_back_through_arrival_edge(self, episode_schema, library):
        # episodes.COUNT(motions.motion_id) on a motion would count the motion
        # itself and its siblings through the edge the direct feature came down.
        specs = plan(episode_schema, "motions", library.subset(["count", "sum", "absolute"]), 3)
        names = _names(specs)
        assert "episodes.case_type" in names
        assert "episodes.judges.court" in names
        assert "episodes.COUNT(motions.motion_id)" not in names
        for spec in specs:
            for node in spec.walk():
                if isinstance(node, DirectFeature):
                    for inner in node.child.walk():
                        if isinstance(inner, AggregationFeature):
                            assert node.relationship not in inner.path


class TestMultiHop:
    def test_chained_path_needs_depth_budget(self, session_schema, library):
        names = _names(plan(session_schema, "customers", library.subset(["count", "sum"]), 1))
        assert "COUNT(sessions.session_id)" in names
        assert "COUNT(sessions.events.event_id)" not in names

    def test_chained_path_within_budget(self, session_schema, library):
        specs = plan(session_schema, "customers", library.subset(["count", "sum"]), 2)
        names = _names(specs)
        assert "COUNT(sessions.session_id)" in names
        assert "COUNT(sessions.events.event_id)" in names
        assert "SUM(sessions.events.amount)" in names

    def test_nested_aggregation_at_depth_two(self, session_schema, library):
        specs = plan(session_schema, "customers", library.subset(["count", "mean"]), 2)
        assert "MEAN(sessions.COUNT(events.event_id))" in _names(specs)

    def test_twin_relationships_get_qualified_labels(self, library):
        builder = SchemaBuilder()
        builder.register_entity("people", "person_id", None, {"person_id": "identifier"})
        builder.register_entity("cases", "case_id", "opened_at", {
            "case_id": "identifier",
            "plaintiff_id": "identifier",
            "defendant_id": "identifier",
            "opened_at": "timestamp",
            "amount": "numeric",
        })
        builder.register_relationship("people", "person_id", "cases", "plaintiff_id")
        builder.register_relationship("people", "person_id", "cases", "defendant_id")
        names = _names(plan(builder.build(), "people", library.subset(["sum"]), 1))
        assert names == ["SUM(cases[plaintiff_id].amount)", "SUM(cases[defendant_id].amount)"]


class TestPlanningErrors:
    def test_negative_depth(self, episode_schema, library):
        with pytest.raises(PlanningError):
            plan(episode_schema, "episodes", library, -1)

    def test_non_integer_depth(self, episode_schema, library):
        with pytest.raises(PlanningError):
            plan(episode_schema, "episodes", library, 1.5)

    def test_unknown_target(self, episode_schema, library):
        with pytest.raises(PlanningError, match="not registered"):
            plan(episode_schema, "nope", library, 1)

    def test_unknown_excluded_column(self, episode_schema, library):
        with pytest.raises(PlanningError, match="do not exist"):
            plan(episode_schema, "episodes", library, 1, excluded_columns=["bogus"])


class TestTypePruning:
    def test_candidates_come_from_compatible_primitives(self, episode_schema, library):
        recording = _RecordingLibrary([library.get("sum"), library.get("absolute")])
        specs = plan(episode_schema, "episodes", recording, 1, excluded_columns=["award_amount"])

        assert (PrimitiveKind.AGGREGATION, ColumnType.NUMERIC) in recording.queries
        assert (PrimitiveKind.TRANSFORM, ColumnType.NUMERIC) in recording.queries
        assert "SUM(motions.amount)" in _names(specs)

    def test_vetoed_kind_is_never_planned(self, episode_schema, library):
        recording = _RecordingLibrary(
            [library.get("count"), library.get("sum")], vetoed=PrimitiveKind.AGGREGATION
        )
        specs = plan(episode_schema, "episodes", recording, 2, excluded_columns=["award_amount"])
        assert not any(isinstance(s, AggregationFeature) for s in specs)
        assert "judges.court" in _names(specs)
