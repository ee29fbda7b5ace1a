"""
End-to-end: schema -> plan -> evaluate -> assemble on the smallest scenario
that exercises the cutoff rule.

    target:   {id=1, t=10}, {id=2, t=20}, {id=3, t=30}
    children: {parent=1, t=9, val=5}, {parent=1, t=15, val=7}, {parent=2, t=21, val=2}

SUM(children.val) must be 5 for row 1 (the t=15 row is after its cutoff), 0
for row 2 (its only child is at t=21 > 20) and 0 for row 3 (no children).
Timestamps are epoch seconds.
"""

from __future__ import annotations

import pytest

from episode_forecaster.data.tables import EntitySetData
from episode_forecaster.schema.registry import SchemaBuilder
from episode_forecaster.synthesis.assembler import assemble
from episode_forecaster.synthesis.dfs import run_dfs
from episode_forecaster.synthesis.evaluator import build_cutoff_frame, evaluate_features
from episode_forecaster.synthesis.planner import plan


@pytest.fixture
def scenario() -> EntitySetData:
    builder = SchemaBuilder()
    builder.register_entity("target", "id", "t", {"id": "identifier", "t": "timestamp"})
    builder.register_entity("children", "child_id", "t", {
        "child_id": "identifier",
        "parent": "identifier",
        "t": "timestamp",
        "val": "numeric",
    })
    builder.register_relationship("target", "id", "children", "parent")
    return EntitySetData(builder.build(), {
        "target": [
            {"id": 1, "t": 10},
            {"id": 2, "t": 20},
            {"id": 3, "t": 30},
        ],
        "children": [
            {"child_id": "c1", "parent": 1, "t": 9, "val": 5},
            {"child_id": "c2", "parent": 1, "t": 15, "val": 7},
            {"child_id": "c3", "parent": 2, "t": 21, "val": 2},
        ],
    })


class TestEndToEnd:
    def test_sum_respects_cutoffs(self, scenario, library):
        specs = plan(scenario.schema, "target", library.subset(["sum"]), 1)
        assert [s.name for s in specs] == ["SUM(children.val)"]

        frame = build_cutoff_frame(scenario, "target")
        value_maps, report = evaluate_features(specs, "target", frame, scenario)
        matrix = assemble(scenario.table("target"), specs, value_maps)

        assert report.ok
        assert matrix.index == (1, 2, 3)
        assert matrix.column("SUM(children.val)") == [5.0, 0.0, 0.0]

    def test_run_dfs_matches(self, scenario, library):
        matrix, specs, report = run_dfs(
            scenario, "target", primitive_library=library.subset(["sum", "count"]), max_depth=1
        )
        assert matrix.columns == ["COUNT(children.child_id)", "SUM(children.val)"]
        assert matrix.to_rows() == [
            {"id": 1, "COUNT(children.child_id)": 1.0, "SUM(children.val)": 5.0},
            {"id": 2, "COUNT(children.child_id)": 0.0, "SUM(children.val)": 0.0},
            {"id": 3, "COUNT(children.child_id)": 0.0, "SUM(children.val)": 0.0},
        ]

    def test_unbounded_cutoffs_see_all_children(self, scenario, library):
        matrix, _, _ = run_dfs(
            scenario, "target", primitive_library=library.subset(["sum"]), max_depth=1,
            cutoffs={1: 100, 2: 100, 3: 100},
        )
        assert matrix.column("SUM(children.val)") == [12.0, 2.0, 0.0]
