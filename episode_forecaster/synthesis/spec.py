"""
FeatureSpec: a typed description of one (possibly composed) feature.

Four node kinds:

    BaseFeature(entity, column)                      raw column
    TransformFeature(primitive, args...)             row-wise function of same-entity features
    AggregationFeature(primitive, path, child)       many descendant rows -> one value
    DirectFeature(relationship, child)               copy a parent-entity feature onto the child

``entity`` is always the entity the feature's values are defined on.  For an
aggregation that is the parent of the first hop; for a direct feature it is the
child side of the relationship.

Equality and hashing use the structural ``key`` (primitive name, argument keys,
relationship path) so structurally identical specs are one feature.  ``name``
is derived from the same structure, e.g.::

    amount
    NUM_WORDS(notes)
    SUM(rulings.damages)
    MEAN(rulings.COUNT(motions.motion_id))
    judges.court
    ABSOLUTE(SUM(rulings.damages))
"""

from __future__ import annotations

from typing import Any, Optional

from episode_forecaster.models.schema import RelationshipDef
from episode_forecaster.primitives.base import Primitive
from episode_forecaster.taxonomy.column_types import ColumnType


class FeatureSpec:
    """Abstract node.  Subclasses set ``name``, ``entity``, ``output_type``, ``depth``."""

    __slots__ = ("name", "entity", "output_type", "depth", "key")

    name: str
    entity: str
    output_type: ColumnType
    depth: int
    key: tuple

    @property
    def children(self) -> tuple["FeatureSpec", ...]:
        return ()

    @property
    def primitive(self) -> Optional[Primitive]:
        return None

    @property
    def default_value(self) -> Any:
        """Fill value for this feature after a lenient-mode failure."""
        root = self.primitive
        return root.default_value if root is not None else None

    def base_columns(self) -> set[tuple[str, str]]:
        """``(entity, column)`` pairs of every leaf under this node."""
        out: set[tuple[str, str]] = set()
        for child in self.children:
            out |= child.base_columns()
        return out

    def walk(self) -> list["FeatureSpec"]:
        """This node and all descendants, children before parents."""
        out: list[FeatureSpec] = []
        for child in self.children:
            out.extend(child.walk())
        out.append(self)
        return out

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FeatureSpec) and self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} depth={self.depth}>"


class BaseFeature(FeatureSpec):
    """A raw column of ``entity``."""

    __slots__ = ("column",)

    def __init__(self, entity: str, column: str, column_type: ColumnType) -> None:
        self.entity = entity
        self.column = column
        self.output_type = column_type
        self.depth = 0
        self.name = column
        self.key = ("base", entity, column)

    def base_columns(self) -> set[tuple[str, str]]:
        return {(self.entity, self.column)}


class TransformFeature(FeatureSpec):
    """Row-wise primitive applied to features of one entity."""

    __slots__ = ("_primitive", "args")

    def __init__(self, primitive: Primitive, args: tuple[FeatureSpec, ...]) -> None:
        entities = {a.entity for a in args}
        if len(entities) != 1:
            raise ValueError(
                f"Transform '{primitive.name}' arguments span entities {sorted(entities)}."
            )
        self._primitive = primitive
        self.args = tuple(args)
        self.entity = args[0].entity
        self.output_type = primitive.output_type
        self.depth = 1 + max(a.depth for a in args)
        self.name = f"{primitive.name.upper()}({', '.join(a.name for a in args)})"
        self.key = ("transform", primitive.name, tuple(a.key for a in args))

    @property
    def children(self) -> tuple[FeatureSpec, ...]:
        return self.args

    @property
    def primitive(self) -> Primitive:
        return self._primitive


class AggregationFeature(FeatureSpec):
    """Aggregation primitive applied across a parent -> child relationship path.

    Attributes:
        path: Relationship hops from ``entity`` down to ``child.entity``.
        path_labels: Display label per hop (child entity name, qualified with
            the key column when two relationships join the same pair).
    """

    __slots__ = ("_primitive", "path", "path_labels", "child")

    def __init__(
        self,
        primitive: Primitive,
        path: tuple[RelationshipDef, ...],
        child: FeatureSpec,
        path_labels: Optional[tuple[str, ...]] = None,
    ) -> None:
        if not path:
            raise ValueError("Aggregation path must contain at least one relationship.")
        for upper, lower in zip(path, path[1:]):
            if upper.child_entity != lower.parent_entity:
                raise ValueError(f"Broken relationship path at {upper.name} -> {lower.name}.")
        if path[-1].child_entity != child.entity:
            raise ValueError(
                f"Aggregation path ends at '{path[-1].child_entity}' but the argument "
                f"is defined on '{child.entity}'."
            )
        self._primitive = primitive
        self.path = tuple(path)
        self.path_labels = tuple(path_labels) if path_labels else tuple(r.child_entity for r in path)
        self.child = child
        self.entity = path[0].parent_entity
        self.output_type = primitive.output_type
        self.depth = 1 + child.depth
        self.name = f"{primitive.name.upper()}({'.'.join(self.path_labels)}.{child.name})"
        self.key = ("aggregation", primitive.name, tuple(r.name for r in path), child.key)

    @property
    def children(self) -> tuple[FeatureSpec, ...]:
        return (self.child,)

    @property
    def primitive(self) -> Primitive:
        return self._primitive


class DirectFeature(FeatureSpec):
    """A parent-entity feature copied onto each child row through ``relationship``."""

    __slots__ = ("relationship", "label", "child")

    def __init__(
        self,
        relationship: RelationshipDef,
        child: FeatureSpec,
        label: Optional[str] = None,
    ) -> None:
        if child.entity != relationship.parent_entity:
            raise ValueError(
                f"Direct feature argument is on '{child.entity}', expected "
                f"'{relationship.parent_entity}'."
            )
        self.relationship = relationship
        self.label = label or relationship.parent_entity
        self.child = child
        self.entity = relationship.child_entity
        self.output_type = child.output_type
        self.depth = 1 + child.depth
        self.name = f"{self.label}.{child.name}"
        self.key = ("direct", relationship.name, child.key)

    @property
    def children(self) -> tuple[FeatureSpec, ...]:
        return (self.child,)

    @property
    def default_value(self) -> Any:
        return self.child.default_value
