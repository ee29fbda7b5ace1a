"""
Tests for the cutoff-time evaluator on the episodes dataset.

Expected values are worked out by hand from the fixtures in ``conftest.py``.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from episode_forecaster.errors import EvaluationError
from episode_forecaster.primitives.base import Primitive
from episode_forecaster.synthesis.evaluator import (
    FeatureEvaluator,
    build_cutoff_frame,
    evaluate,
    evaluate_features,
)
from episode_forecaster.synthesis.planner import plan
from episode_forecaster.synthesis.spec import (
    AggregationFeature,
    BaseFeature,
    DirectFeature,
    TransformFeature,
)
from episode_forecaster.taxonomy.column_types import (
    ColumnType,
    CutoffPolicy,
    EvaluationMode,
    PrimitiveKind,
)


def _utc(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, tzinfo=timezone.utc)


@pytest.fixture
def frame(episode_data):
    return build_cutoff_frame(episode_data, "episodes")


@pytest.fixture
def motions_rel(episode_schema):
    return episode_schema.relationships_from("episodes")[0]


def _agg(library, name, rel, column, column_type=ColumnType.NUMERIC):
    return AggregationFeature(
        library.get(name), (rel,), BaseFeature("motions", column, column_type)
    )


class TestCutoffFrame:
    def test_defaults_to_row_times(self, frame):
        assert frame == {
            "E1": _utc(2024, 1, 1),
            "E2": _utc(2024, 1, 10),
            "E3": _utc(2024, 1, 5),
            "E4": _utc(2024, 1, 20),
        }

    def test_explicit_frame_normalised(self, episode_data):
        cutoffs = {"E1": "2024-02-01", "E2": 0, "E3": _utc(2024, 1, 1), "E4": _utc(2024, 1, 1)}
        frame = build_cutoff_frame(episode_data, "episodes", cutoffs)
        assert frame["E1"] == _utc(2024, 2, 1)
        assert frame["E2"] == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_incomplete_frame_rejected(self, episode_data):
        with pytest.raises(EvaluationError, match="No cutoff"):
            build_cutoff_frame(episode_data, "episodes", {"E1": _utc(2024, 1, 1)})

    def test_missing_cutoff_value_rejected(self, episode_data):
        cutoffs = {"E1": None, "E2": 1, "E3": 1, "E4": 1}
        with pytest.raises(EvaluationError, match="missing"):
            build_cutoff_frame(episode_data, "episodes", cutoffs)

    def test_atemporal_target_is_unbounded(self, session_data):
        assert build_cutoff_frame(session_data, "customers") == {"C1": None, "C2": None}


class TestEvaluate:
    def test_base_column(self, episode_data, frame):
        spec = BaseFeature("episodes", "case_type", ColumnType.CATEGORICAL)
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": "contract", "E2": "property", "E3": "contract", "E4": "contract"}

    def test_count(self, episode_data, frame, library, motions_rel):
        spec = _agg(library, "count", motions_rel, "motion_id", ColumnType.IDENTIFIER)
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": 1.0, "E2": 1.0, "E3": 1.0, "E4": 0.0}

    def test_sum_drops_missing_and_defaults_empty(self, episode_data, frame, library, motions_rel):
        spec = _agg(library, "sum", motions_rel, "amount")
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": 10.0, "E2": 5.0, "E3": 0.0, "E4": 0.0}

    def test_mean_empty_is_missing(self, episode_data, frame, library, motions_rel):
        spec = _agg(library, "mean", motions_rel, "amount")
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": 10.0, "E2": 5.0, "E3": None, "E4": None}

    def test_percent_true(self, episode_data, frame, library, motions_rel):
        spec = _agg(library, "percent_true", motions_rel, "granted", ColumnType.BOOLEAN)
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": 1.0, "E2": 1.0, "E3": 0.0, "E4": None}

    def test_direct_from_atemporal_parent(self, episode_data, episode_schema, frame):
        rel = episode_schema.relationships_to("episodes")[0]
        spec = DirectFeature(rel, BaseFeature("judges", "court", ColumnType.CATEGORICAL))
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": "north", "E2": "north", "E3": "south", "E4": "north"}

    def test_direct_hides_parent_stamped_after_cutoff(self, episode_data, motions_rel):
        spec = DirectFeature(motions_rel, BaseFeature("episodes", "case_type", ColumnType.CATEGORICAL))
        motion_frame = build_cutoff_frame(episode_data, "motions")
        values = evaluate(spec, "motions", motion_frame, episode_data)
        # M1 and M4 were filed before their episode aired; M3 ties with E2.
        assert values == {"M1": None, "M2": "contract", "M3": "property", "M4": None}

    def test_direct_exclusive_tie_is_hidden(self, episode_data, motions_rel):
        spec = DirectFeature(motions_rel, BaseFeature("episodes", "case_type", ColumnType.CATEGORICAL))
        motion_frame = build_cutoff_frame(episode_data, "motions")
        values = evaluate(
            spec, "motions", motion_frame, episode_data, cutoff_policy=CutoffPolicy.EXCLUSIVE
        )
        assert values == {"M1": None, "M2": "contract", "M3": None, "M4": None}

    def test_transform_of_aggregation(self, episode_data, frame, library, motions_rel):
        spec = TransformFeature(library.get("is_null"), (_agg(library, "mean", motions_rel, "amount"),))
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": False, "E2": False, "E3": True, "E4": True}

    def test_transform_missing_input_short_circuits(self, episode_data, frame, library):
        spec = TransformFeature(
            library.get("num_words"), (BaseFeature("episodes", "notes", ColumnType.FREE_TEXT),)
        )
        values = evaluate(spec, "episodes", frame, episode_data)
        assert values == {"E1": 4.0, "E2": 2.0, "E3": 2.0, "E4": None}

    def test_spec_on_wrong_entity(self, episode_data, frame):
        spec = BaseFeature("motions", "amount", ColumnType.NUMERIC)
        with pytest.raises(EvaluationError, match="not 'episodes'"):
            evaluate(spec, "episodes", frame, episode_data)

    def test_unknown_column(self, episode_data, frame):
        spec = BaseFeature("episodes", "ghost", ColumnType.NUMERIC)
        with pytest.raises(EvaluationError, match="not in the schema"):
            evaluate(spec, "episodes", frame, episode_data)

    def test_primitive_failure_wrapped(self, episode_data, frame):
        def explode(x):
            raise ZeroDivisionError("boom")

        primitive = Primitive(
            "explode", PrimitiveKind.TRANSFORM, (ColumnType.NUMERIC,), ColumnType.NUMERIC, explode
        )
        spec = TransformFeature(
            primitive, (BaseFeature("episodes", "award_amount", ColumnType.NUMERIC),)
        )
        with pytest.raises(EvaluationError) as exc_info:
            evaluate(spec, "episodes", frame, episode_data)
        assert exc_info.value.feature == "EXPLODE(award_amount)"
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    def test_memoised_evaluator_reused(self, episode_data, frame, library, motions_rel):
        evaluator = FeatureEvaluator(episode_data)
        spec = _agg(library, "sum", motions_rel, "amount")
        first = evaluate(spec, "episodes", frame, episode_data, evaluator=evaluator)
        second = evaluate(spec, "episodes", frame, episode_data, evaluator=evaluator)
        assert first == second


class TestEvaluateFeatures:
    def test_all_planned_features(self, episode_data, frame, library):
        specs = plan(episode_data.schema, "episodes", library, 2, excluded_columns=["award_amount"])
        value_maps, report = evaluate_features(specs, "episodes", frame, episode_data)
        assert list(value_maps) == [s.name for s in specs]
        assert report.ok
        assert report.evaluated == len(specs)
        for values in value_maps.values():
            assert set(values) == {"E1", "E2", "E3", "E4"}

    def test_parallel_matches_sequential(self, episode_data, frame, library):
        specs = plan(episode_data.schema, "episodes", library, 2)
        sequential, _ = evaluate_features(specs, "episodes", frame, episode_data, max_workers=1)
        parallel, _ = evaluate_features(specs, "episodes", frame, episode_data, max_workers=4)
        assert parallel == sequential

    def test_strict_mode_raises(self, episode_data, frame):
        primitive = Primitive(
            "explode", PrimitiveKind.TRANSFORM, (ColumnType.NUMERIC,), ColumnType.NUMERIC,
            lambda x: 1 / 0,
        )
        spec = TransformFeature(
            primitive, (BaseFeature("episodes", "award_amount", ColumnType.NUMERIC),)
        )
        with pytest.raises(EvaluationError):
            evaluate_features([spec], "episodes", frame, episode_data, mode=EvaluationMode.STRICT)

    def test_lenient_mode_fills_and_reports(self, episode_data, frame, library, motions_rel):
        primitive = Primitive(
            "explode", PrimitiveKind.TRANSFORM, (ColumnType.NUMERIC,), ColumnType.NUMERIC,
            lambda x: 1 / 0, default_value=-1.0,
        )
        good = _agg(library, "sum", motions_rel, "amount")
        bad = TransformFeature(
            primitive, (BaseFeature("episodes", "award_amount", ColumnType.NUMERIC),)
        )
        value_maps, report = evaluate_features(
            [good, bad], "episodes", frame, episode_data, mode="lenient"
        )
        assert value_maps["SUM(motions.amount)"]["E1"] == 10.0
        assert value_maps["EXPLODE(award_amount)"] == {"E1": -1.0, "E2": -1.0, "E3": -1.0, "E4": -1.0}
        assert report.failed_features == ["EXPLODE(award_amount)"]
        assert report.failures[0].error_type == "ZeroDivisionError"
        assert not report.ok

    def test_exclusive_policy(self, episode_data, frame, library, motions_rel):
        spec = _agg(library, "count", motions_rel, "motion_id", ColumnType.IDENTIFIER)
        value_maps, _ = evaluate_features(
            [spec], "episodes", frame, episode_data, cutoff_policy=CutoffPolicy.EXCLUSIVE
        )
        # M3 is filed at exactly E2's cutoff.
        assert value_maps["COUNT(motions.motion_id)"]["E2"] == 0.0
        assert value_maps["COUNT(motions.motion_id)"]["E1"] == 1.0
