"""
Schema registry.

Built once through an ordered sequence of registration calls on a
``SchemaBuilder``, then frozen by ``build()`` into an immutable
``SchemaRegistry`` that planning and evaluation share read-only.

Validation happens at registration time so every problem surfaces as a
``SchemaError`` before any planning work begins:

- duplicate entity names;
- an index or time column missing from ``columns``;
- a time column that is not Timestamp-typed;
- relationships referencing unknown entities or columns;
- a parent key that is neither the parent's index nor declared unique;
- a relationship that would close a cycle in the parent -> child graph.

Acyclicity is enforced here and nowhere else: the planner walks the graph
without cycle detection.

Usage::

    builder = SchemaBuilder()
    builder.register_entity("judges", "judge_id", None, {...})
    builder.register_entity("episodes", "episode_id", "aired_at", {...})
    builder.register_relationship("judges", "judge_id", "episodes", "judge_id")
    schema = builder.build()
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from episode_forecaster.errors import SchemaError
from episode_forecaster.models.schema import EntityDef, RelationshipDef
from episode_forecaster.taxonomy.column_types import ColumnType

logger = logging.getLogger(__name__)


class SchemaRegistry:
    """Immutable view over registered entities and relationships.

    Construct through ``SchemaBuilder.build()`` rather than directly.
    """

    def __init__(
        self,
        entities: dict[str, EntityDef],
        relationships: list[RelationshipDef],
    ) -> None:
        self._entities: Mapping[str, EntityDef] = MappingProxyType(dict(entities))
        self._relationships: tuple[RelationshipDef, ...] = tuple(relationships)

    # ── Lookups ───────────────────────────────────────────────────────────────

    @property
    def entity_names(self) -> list[str]:
        """Entity names in registration order."""
        return list(self._entities)

    @property
    def relationships(self) -> tuple[RelationshipDef, ...]:
        return self._relationships

    def has_entity(self, name: str) -> bool:
        return name in self._entities

    def entity(self, name: str) -> EntityDef:
        """Return the ``EntityDef`` for ``name``.

        Raises:
            SchemaError: If ``name`` is not registered.
        """
        try:
            return self._entities[name]
        except KeyError:
            raise SchemaError(f"Entity '{name}' is not registered.", entity=name) from None

    def relationships_from(self, entity: str) -> list[RelationshipDef]:
        """Relationships where ``entity`` is the parent, in registration order."""
        return [r for r in self._relationships if r.parent_entity == entity]

    def relationships_to(self, entity: str) -> list[RelationshipDef]:
        """Relationships where ``entity`` is the child, in registration order."""
        return [r for r in self._relationships if r.child_entity == entity]

    def has_relationship(self, relationship: RelationshipDef) -> bool:
        return relationship in self._relationships

    def key_columns(self, entity: str) -> set[str]:
        """Columns of ``entity`` that participate structurally in a join."""
        keys: set[str] = set()
        for r in self._relationships:
            if r.parent_entity == entity:
                keys.add(r.parent_key)
            if r.child_entity == entity:
                keys.add(r.child_key)
        return keys


class SchemaBuilder:
    """Accumulates registrations and validates them as they arrive."""

    def __init__(self) -> None:
        self._entities: dict[str, EntityDef] = {}
        self._relationships: list[RelationshipDef] = []

    def register_entity(
        self,
        name: str,
        index_column: str,
        time_column: Optional[str],
        columns: Mapping[str, ColumnType | str],
        unique_columns: tuple[str, ...] | list[str] = (),
    ) -> EntityDef:
        """Register one entity.

        Raises:
            SchemaError: On a duplicate name, an index/time column missing from
                ``columns``, a non-Timestamp time column, or an unknown type tag.
        """
        if name in self._entities:
            raise SchemaError(f"Entity '{name}' is already registered.", entity=name)

        typed: dict[str, ColumnType] = {}
        for col, col_type in columns.items():
            try:
                typed[col] = ColumnType(col_type)
            except ValueError:
                raise SchemaError(
                    f"Column '{name}.{col}' has unknown type '{col_type}'. "
                    f"Must be one of {[t.value for t in ColumnType]}.",
                    entity=name, column=col,
                ) from None

        if index_column not in typed:
            raise SchemaError(
                f"Index column '{index_column}' is not declared in the columns of '{name}'.",
                entity=name, column=index_column,
            )
        if time_column is not None:
            if time_column not in typed:
                raise SchemaError(
                    f"Time column '{time_column}' is not declared in the columns of '{name}'.",
                    entity=name, column=time_column,
                )
            if typed[time_column] != ColumnType.TIMESTAMP:
                raise SchemaError(
                    f"Time column '{name}.{time_column}' must be Timestamp-typed, "
                    f"got '{typed[time_column]}'.",
                    entity=name, column=time_column,
                )
        for col in unique_columns:
            if col not in typed:
                raise SchemaError(
                    f"Unique column '{col}' is not declared in the columns of '{name}'.",
                    entity=name, column=col,
                )

        entity = EntityDef(
            name=name,
            index_column=index_column,
            time_column=time_column,
            columns=typed,
            unique_columns=tuple(unique_columns),
        )
        self._entities[name] = entity
        logger.debug("Registered entity %s (%d columns)", name, len(typed))
        return entity

    def register_relationship(
        self,
        parent_entity: str,
        parent_key: str,
        child_entity: str,
        child_key: str,
    ) -> RelationshipDef:
        """Register a one-to-many relationship.

        Raises:
            SchemaError: If either entity is unregistered, a key column is
                unknown, the parent key is not unique, the relationship is a
                duplicate, or it would create a cycle.
        """
        for ent in (parent_entity, child_entity):
            if ent not in self._entities:
                raise SchemaError(
                    f"Cannot relate unregistered entity '{ent}'.", entity=ent
                )
        parent = self._entities[parent_entity]
        child = self._entities[child_entity]

        if parent_key not in parent.columns:
            raise SchemaError(
                f"Parent key '{parent_entity}.{parent_key}' is not a declared column.",
                entity=parent_entity, column=parent_key,
            )
        if child_key not in child.columns:
            raise SchemaError(
                f"Child key '{child_entity}.{child_key}' is not a declared column.",
                entity=child_entity, column=child_key,
            )
        if not parent.is_unique(parent_key):
            raise SchemaError(
                f"Parent key '{parent_entity}.{parent_key}' is neither the index "
                "nor a declared unique column.",
                entity=parent_entity, column=parent_key,
            )

        relationship = RelationshipDef(
            parent_entity=parent_entity,
            parent_key=parent_key,
            child_entity=child_entity,
            child_key=child_key,
        )
        if relationship in self._relationships:
            raise SchemaError(
                f"Relationship {relationship.name} is already registered.",
                entity=child_entity,
            )
        if self._reaches(child_entity, parent_entity):
            raise SchemaError(
                f"Relationship {relationship.name} would create a cycle: "
                f"'{parent_entity}' is already a descendant of '{child_entity}'.",
                entity=parent_entity,
            )

        self._relationships.append(relationship)
        logger.debug("Registered relationship %s", relationship.name)
        return relationship

    def build(self) -> SchemaRegistry:
        """Freeze the accumulated declarations into a ``SchemaRegistry``."""
        return SchemaRegistry(self._entities, self._relationships)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _reaches(self, start: str, goal: str) -> bool:
        """True if ``goal`` is reachable from ``start`` via parent -> child edges.

        A self-relationship (``start == goal``) counts as reachable.
        """
        stack = [start]
        seen: set[str] = set()
        while stack:
            node = stack.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(
                r.child_entity for r in self._relationships if r.parent_entity == node
            )
        return False
