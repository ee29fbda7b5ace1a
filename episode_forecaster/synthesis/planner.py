"""
Feature synthesis planner.

Purpose
-------
``plan()`` enumerates every realizable ``FeatureSpec`` for a target entity up
to ``max_depth``, in an order that is identical across runs with identical
inputs.  Nothing here touches data: type compatibility is decided entirely from
``ColumnType`` tags, so a type error can only ever be a planning-time failure.

How it works
------------
1.  Depth 0 of the plan is every column of the target entity except the index,
    the time column, and ``excluded_columns`` (declaration order).
2.  ``_features_for(entity, budget, blocked)`` builds, level by level, the
    features usable as *inputs* on ``entity``.  Level 0 holds non-identifier,
    non-key, non-time columns.  Each level ``d`` then adds, in this order:

    a.  **Aggregations** along every downward path of relationships starting at
        ``entity`` (single hop or chained), applying every compatible
        aggregation primitive to each level ``d-1`` feature of the path's last
        entity.  A path of ``k`` hops is allowed while
        ``k + depth(argument) <= budget``.  ``count`` is applied to the last
        entity's index, the only place an index is ever used as an input.
    b.  **Direct features** pulling each level ``d-1`` feature of a parent
        entity down onto ``entity``.
    c.  **Transforms** of ``entity``'s own features at levels ``< d``, at least
        one argument at level ``d-1``.

3.  A relationship, once traversed, is added to ``blocked`` for the recursive
    call, so the planner never walks back along the edge it came through.
4.  The plan is level 0 followed by levels 1..max_depth of the target, with
    structural duplicates removed (first occurrence wins).

Degenerate features suppressed
------------------------------
- Join keys, identifiers, and time columns are never primitive inputs (except
  the index under ``count``).
- A transform is never applied directly to the output of the same primitive
  (``ABSOLUTE(ABSOLUTE(x))``).
- The target's ``excluded_columns`` are never used anywhere in the plan.
"""

from __future__ import annotations

import logging
from itertools import product
from typing import Iterable, Optional

from episode_forecaster.errors import PlanningError
from episode_forecaster.models.schema import RelationshipDef
from episode_forecaster.primitives.base import Primitive
from episode_forecaster.primitives.library import PrimitiveLibrary
from episode_forecaster.schema.registry import SchemaRegistry
from episode_forecaster.synthesis.spec import (
    AggregationFeature,
    BaseFeature,
    DirectFeature,
    FeatureSpec,
    TransformFeature,
)
from episode_forecaster.taxonomy.column_types import ColumnType, PrimitiveKind

logger = logging.getLogger(__name__)

_Blocked = frozenset[RelationshipDef]


def plan(
    schema: SchemaRegistry,
    target_entity: str,
    primitive_library: PrimitiveLibrary,
    max_depth: int,
    excluded_columns: Iterable[str] = (),
    max_features: Optional[int] = None,
) -> list[FeatureSpec]:
    """Enumerate the FeatureSpecs for ``target_entity``.

    Args:
        schema:            Frozen schema registry.
        target_entity:     Entity whose rows the feature matrix describes.
        primitive_library: Primitives to apply (all of them are used).
        max_depth:         Maximum composition depth; 0 means base columns only.
        excluded_columns:  Target columns to omit entirely (e.g. the outcome).
        max_features:      Optional cap on the number of returned specs.

    Returns:
        Ordered list of unique FeatureSpecs, shallowest first.

    Raises:
        PlanningError: If ``max_depth`` is negative, ``target_entity`` is not
            registered, or an excluded column does not exist on the target.
    """
    return FeaturePlanner(
        schema, target_entity, primitive_library, max_depth,
        excluded_columns=excluded_columns,
    ).plan(max_features=max_features)


class FeaturePlanner:
    """Stateful planner for one (schema, target, library, depth) request."""

    def __init__(
        self,
        schema: SchemaRegistry,
        target_entity: str,
        primitive_library: PrimitiveLibrary,
        max_depth: int,
        excluded_columns: Iterable[str] = (),
    ) -> None:
        if not isinstance(max_depth, int) or isinstance(max_depth, bool) or max_depth < 0:
            raise PlanningError(f"max_depth must be a non-negative integer, got {max_depth!r}.")
        if not schema.has_entity(target_entity):
            raise PlanningError(f"Target entity '{target_entity}' is not registered.")

        target = schema.entity(target_entity)
        excluded = list(excluded_columns)
        unknown = [c for c in excluded if c not in target.columns]
        if unknown:
            raise PlanningError(
                f"Excluded columns {unknown} do not exist on '{target_entity}'."
            )

        self.schema = schema
        self.target_entity = target_entity
        self.library = primitive_library
        self.max_depth = max_depth
        self.excluded: frozenset[str] = frozenset(excluded)

        self._transforms = primitive_library.of_kind(PrimitiveKind.TRANSFORM)
        # Transform names accepting each column type, resolved once per plan.
        self._transforms_for: dict[ColumnType, frozenset[str]] = {
            t: frozenset(
                p.name for p in primitive_library.compatible_primitives(PrimitiveKind.TRANSFORM, t)
            )
            for t in ColumnType
        }
        self._memo: dict[tuple[str, int, _Blocked], list[list[FeatureSpec]]] = {}

    # ── Public ────────────────────────────────────────────────────────────────

    def plan(self, max_features: Optional[int] = None) -> list[FeatureSpec]:
        target = self.schema.entity(self.target_entity)
        result: list[FeatureSpec] = [
            BaseFeature(target.name, col, col_type)
            for col, col_type in target.columns.items()
            if col not in (target.index_column, target.time_column)
            and col not in self.excluded
        ]

        levels = self._features_for(self.target_entity, self.max_depth, frozenset())
        for level in levels[1:]:
            result.extend(level)

        result = _dedupe(result)
        self._check_names(result)

        by_depth: dict[int, int] = {}
        for spec in result:
            by_depth[spec.depth] = by_depth.get(spec.depth, 0) + 1
        logger.info(
            "Planned %d features for '%s' (max_depth=%d): %s",
            len(result), self.target_entity, self.max_depth,
            ", ".join(f"depth{d}={n}" for d, n in sorted(by_depth.items())),
        )

        if max_features is not None and len(result) > max_features:
            logger.info("Truncating plan to max_features=%d", max_features)
            result = result[:max_features]
        return result

    # ── Level construction ────────────────────────────────────────────────────

    def _features_for(
        self,
        entity: str,
        budget: int,
        blocked: _Blocked,
    ) -> list[list[FeatureSpec]]:
        """Input features of ``entity`` grouped by depth ``0..budget``."""
        memo_key = (entity, budget, blocked)
        if memo_key in self._memo:
            return self._memo[memo_key]

        seen: set[tuple] = set()
        levels: list[list[FeatureSpec]] = [self._add_new(self._input_bases(entity), seen)]

        for d in range(1, budget + 1):
            level: list[FeatureSpec] = []
            level += self._add_new(self._aggregations_at(entity, d, budget, blocked), seen)
            level += self._add_new(self._directs_at(entity, d, blocked), seen)
            level += self._add_new(self._transforms_at(levels, d), seen)
            levels.append(level)

        self._memo[memo_key] = levels
        return levels

    def _input_bases(self, entity: str) -> list[FeatureSpec]:
        ent = self.schema.entity(entity)
        keys = self.schema.key_columns(entity)
        out: list[FeatureSpec] = []
        for col, col_type in ent.columns.items():
            if col in (ent.index_column, ent.time_column) or col in keys:
                continue
            if col_type == ColumnType.IDENTIFIER:
                continue
            if entity == self.target_entity and col in self.excluded:
                continue
            out.append(BaseFeature(entity, col, col_type))
        return out

    def _aggregations_at(
        self,
        entity: str,
        d: int,
        budget: int,
        blocked: _Blocked,
    ) -> list[FeatureSpec]:
        out: list[FeatureSpec] = []
        max_hops = budget - (d - 1)
        for path in self._paths_from(entity, max_hops, blocked):
            leaf = path[-1].child_entity
            child_levels = self._features_for(leaf, d - 1, blocked | frozenset(path))
            arguments = list(child_levels[d - 1])
            if d == 1:
                leaf_def = self.schema.entity(leaf)
                arguments.insert(
                    0, BaseFeature(leaf, leaf_def.index_column, ColumnType.IDENTIFIER)
                )
            labels = tuple(self._hop_label(r) for r in path)
            for arg in arguments:
                for primitive in self.library.compatible_primitives(
                    PrimitiveKind.AGGREGATION, arg.output_type
                ):
                    out.append(AggregationFeature(primitive, path, arg, path_labels=labels))
        return out

    def _paths_from(
        self,
        entity: str,
        max_hops: int,
        blocked: _Blocked,
    ) -> list[tuple[RelationshipDef, ...]]:
        """Downward relationship paths of length 1..max_hops, shorter first."""
        paths: list[tuple[RelationshipDef, ...]] = []
        frontier: list[tuple[RelationshipDef, ...]] = [
            (r,) for r in self.schema.relationships_from(entity) if r not in blocked
        ]
        hops = 1
        while frontier and hops <= max_hops:
            paths.extend(frontier)
            next_frontier: list[tuple[RelationshipDef, ...]] = []
            for path in frontier:
                for r in self.schema.relationships_from(path[-1].child_entity):
                    if r not in blocked and r not in path:
                        next_frontier.append(path + (r,))
            frontier = next_frontier
            hops += 1
        return paths

    def _directs_at(self, entity: str, d: int, blocked: _Blocked) -> list[FeatureSpec]:
        out: list[FeatureSpec] = []
        for rel in self.schema.relationships_to(entity):
            if rel in blocked:
                continue
            parent_levels = self._features_for(rel.parent_entity, d - 1, blocked | {rel})
            label = self._direct_label(rel)
            for spec in parent_levels[d - 1]:
                out.append(DirectFeature(rel, spec, label=label))
        return out

    def _transforms_at(
        self,
        levels: list[list[FeatureSpec]],
        d: int,
    ) -> list[FeatureSpec]:
        candidates = [spec for level in levels[:d] for spec in level]
        out: list[FeatureSpec] = []
        for primitive in self._transforms:
            if primitive.arity == 1:
                for arg in levels[d - 1]:
                    if primitive.name not in self._transforms_for[arg.output_type]:
                        continue
                    if self._transform_ok(primitive, (arg,)):
                        out.append(TransformFeature(primitive, (arg,)))
                continue

            pools = [
                [c for c in candidates if c.output_type == t] for t in primitive.input_types
            ]
            for args in product(*pools):
                if max(a.depth for a in args) != d - 1:
                    continue
                if len({a.key for a in args}) != len(args):
                    continue
                if primitive.commutative and not _in_candidate_order(args, candidates):
                    continue
                if self._transform_ok(primitive, args):
                    out.append(TransformFeature(primitive, tuple(args)))
        return out

    @staticmethod
    def _transform_ok(primitive: Primitive, args: tuple[FeatureSpec, ...]) -> bool:
        for arg, expected in zip(args, primitive.input_types):
            if arg.output_type != expected or arg.output_type == ColumnType.IDENTIFIER:
                return False
            if arg.primitive is not None and arg.primitive.name == primitive.name:
                return False
        return True

    # ── Naming ────────────────────────────────────────────────────────────────

    def _hop_label(self, rel: RelationshipDef) -> str:
        twins = [
            r for r in self.schema.relationships_from(rel.parent_entity)
            if r.child_entity == rel.child_entity
        ]
        if len(twins) > 1:
            return f"{rel.child_entity}[{rel.child_key}]"
        return rel.child_entity

    def _direct_label(self, rel: RelationshipDef) -> str:
        twins = [
            r for r in self.schema.relationships_to(rel.child_entity)
            if r.parent_entity == rel.parent_entity
        ]
        if len(twins) > 1:
            return f"{rel.parent_entity}[{rel.child_key}]"
        return rel.parent_entity

    @staticmethod
    def _check_names(specs: list[FeatureSpec]) -> None:
        owners: dict[str, tuple] = {}
        for spec in specs:
            other = owners.setdefault(spec.name, spec.key)
            if other != spec.key:
                raise PlanningError(f"Feature name collision on '{spec.name}'.")

    @staticmethod
    def _add_new(specs: list[FeatureSpec], seen: set[tuple]) -> list[FeatureSpec]:
        out: list[FeatureSpec] = []
        for spec in specs:
            if spec.key not in seen:
                seen.add(spec.key)
                out.append(spec)
        return out


def _dedupe(specs: list[FeatureSpec]) -> list[FeatureSpec]:
    seen: set[tuple] = set()
    out: list[FeatureSpec] = []
    for spec in specs:
        if spec.key not in seen:
            seen.add(spec.key)
            out.append(spec)
    return out


def _in_candidate_order(args: tuple[FeatureSpec, ...], candidates: list[FeatureSpec]) -> bool:
    positions = [next(i for i, c in enumerate(candidates) if c.key == a.key) for a in args]
    return positions == sorted(positions)
