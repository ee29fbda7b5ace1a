"""
Tests for SchemaBuilder validation and the frozen SchemaRegistry.
"""

from __future__ import annotations

import pytest

from episode_forecaster.errors import SchemaError
from episode_forecaster.models.schema import RelationshipDef
from episode_forecaster.schema.registry import SchemaBuilder
from episode_forecaster.taxonomy.column_types import ColumnType


def _builder_with(*names: str) -> SchemaBuilder:
    builder = SchemaBuilder()
    for name in names:
        builder.register_entity(name, "id", "ts", {
            "id": "identifier",
            "ts": "timestamp",
            "parent_id": "identifier",
            "value": "numeric",
        })
    return builder


class TestEntityRegistration:
    def test_registers_typed_columns(self):
        builder = _builder_with("a")
        entity = builder.build().entity("a")
        assert entity.columns["value"] == ColumnType.NUMERIC
        assert entity.time_column == "ts"

    def test_duplicate_entity_rejected(self):
        builder = _builder_with("a")
        with pytest.raises(SchemaError, match="already registered"):
            builder.register_entity("a", "id", None, {"id": "identifier"})

    def test_unknown_type_tag_rejected(self):
        with pytest.raises(SchemaError, match="unknown type") as exc_info:
            SchemaBuilder().register_entity("a", "id", None, {"id": "identifier", "x": "float"})
        assert exc_info.value.column == "x"

    def test_index_must_be_declared(self):
        with pytest.raises(SchemaError, match="Index column"):
            SchemaBuilder().register_entity("a", "id", None, {"other": "numeric"})

    def test_time_column_must_be_timestamp(self):
        with pytest.raises(SchemaError, match="Timestamp-typed"):
            SchemaBuilder().register_entity(
                "a", "id", "when", {"id": "identifier", "when": "numeric"}
            )

    def test_unique_column_must_be_declared(self):
        with pytest.raises(SchemaError, match="Unique column"):
            SchemaBuilder().register_entity(
                "a", "id", None, {"id": "identifier"}, unique_columns=["code"]
            )


class TestRelationshipRegistration:
    def test_registers_relationship(self):
        builder = _builder_with("a", "b")
        builder.register_relationship("a", "id", "b", "parent_id")
        schema = builder.build()
        rel = RelationshipDef(
            parent_entity="a", parent_key="id", child_entity="b", child_key="parent_id"
        )
        assert schema.has_relationship(rel)
        assert schema.relationships_from("a") == [rel]
        assert schema.relationships_to("b") == [rel]
        assert rel.name == "a.id->b.parent_id"

    def test_unregistered_entity_rejected(self):
        builder = _builder_with("a")
        with pytest.raises(SchemaError, match="unregistered entity 'zzz'"):
            builder.register_relationship("a", "id", "zzz", "parent_id")

    def test_unknown_child_key_rejected(self):
        builder = _builder_with("a", "b")
        with pytest.raises(SchemaError, match="Child key"):
            builder.register_relationship("a", "id", "b", "missing")

    def test_non_unique_parent_key_rejected(self):
        builder = _builder_with("a", "b")
        with pytest.raises(SchemaError, match="neither the index"):
            builder.register_relationship("a", "value", "b", "parent_id")

    def test_declared_unique_parent_key_accepted(self):
        builder = SchemaBuilder()
        builder.register_entity(
            "a", "id", None, {"id": "identifier", "code": "identifier"}, unique_columns=["code"]
        )
        builder.register_entity("b", "id", None, {"id": "identifier", "code": "identifier"})
        rel = builder.register_relationship("a", "code", "b", "code")
        assert rel.parent_key == "code"

    def test_duplicate_relationship_rejected(self):
        builder = _builder_with("a", "b")
        builder.register_relationship("a", "id", "b", "parent_id")
        with pytest.raises(SchemaError, match="already registered"):
            builder.register_relationship("a", "id", "b", "parent_id")

    def test_self_relationship_is_a_cycle(self):
        builder = _builder_with("a")
        with pytest.raises(SchemaError, match="cycle"):
            builder.register_relationship("a", "id", "a", "parent_id")

    def test_transitive_cycle_rejected(self):
        builder = _builder_with("a", "b", "c")
        builder.register_relationship("a", "id", "b", "parent_id")
        builder.register_relationship("b", "id", "c", "parent_id")
        with pytest.raises(SchemaError, match="cycle"):
            builder.register_relationship("c", "id", "a", "parent_id")

    def test_diamond_is_not_a_cycle(self):
        builder = _builder_with("a", "b", "c", "d")
        builder.register_relationship("a", "id", "b", "parent_id")
        builder.register_relationship("a", "id", "c", "parent_id")
        builder.register_relationship("b", "id", "d", "parent_id")
        builder.register_relationship("c", "id", "d", "value")
        assert len(builder.build().relationships) == 4


class TestRegistry:
    def test_unknown_entity_lookup_raises(self, episode_schema):
        with pytest.raises(SchemaError):
            episode_schema.entity("nope")

    def test_entity_names_in_registration_order(self, episode_schema):
        assert episode_schema.entity_names == ["judges", "episodes", "motions"]

    def test_key_columns(self, episode_schema):
        assert episode_schema.key_columns("episodes") == {"episode_id", "judge_id"}

    def test_registry_is_independent_of_builder(self):
        builder = _builder_with("a")
        schema = builder.build()
        builder.register_entity("late", "id", None, {"id": "identifier"})
        assert not schema.has_entity("late")
