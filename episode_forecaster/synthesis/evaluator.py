"""
Cutoff-time evaluator: point-in-time correct feature values.

Purpose
-------
Computes the value of planned FeatureSpecs for every target row, reading only
rows that were knowable at that row's cutoff time.

Instances
---------
The unit of evaluation is an *instance* ``(row_key, cutoff)``.  Target rows
become instances through the ``CutoffFrame``; descendant and parent rows become
instances when an aggregation or direct feature reaches them, inheriting the
cutoff of the target row that reached them.  A nested aggregation evaluated on
a child row therefore still filters grandchildren by the *target* row's cutoff.

Leakage prevention: the point-in-time rule
------------------------------------------
- **Aggregation**: descendants are resolved hop by hop with
  ``EntitySetData.visible_children()``, which drops every row whose own
  timestamp is past the cutoff *at each hop*.  A grandchild is only reachable
  through a visible child and must itself be visible.
- **Direct**: a parent row whose timestamp is past the cutoff is invisible; the
  feature is missing for that instance.
- **Base / Transform**: read the instance's own row, which is visible at a
  cutoff equal to its own timestamp.  Transforms only consume values already
  scoped to the instance, so they need no filter of their own.

Tie handling (row time == cutoff) for related rows follows ``CutoffPolicy``.

Evaluation order & isolation
----------------------------
Children are always resolved before their parent node.  Resolved values are
memoised per spec as an immutable snapshot (copy-on-write under a lock), so
concurrent evaluation of independent specs never observes a partial map, and a
failed spec leaves nothing behind for other specs to read.

Failure policy
--------------
A primitive that raises is surfaced as ``EvaluationError`` naming the feature.
``evaluate_features()`` aborts on the first failure in strict mode; in lenient
mode it fills the feature with its declared empty value and records a
``FeatureFailure`` in the ``SynthesisReport``.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Hashable, Mapping, Optional, Sequence

from episode_forecaster.data.tables import EntitySetData, is_visible
from episode_forecaster.errors import EvaluationError
from episode_forecaster.models.values import is_missing
from episode_forecaster.synthesis.spec import (
    AggregationFeature,
    BaseFeature,
    DirectFeature,
    FeatureSpec,
    TransformFeature,
)
from episode_forecaster.taxonomy.column_types import CutoffPolicy, EvaluationMode
from episode_forecaster.utils.time_utils import to_timestamp

logger = logging.getLogger(__name__)

Instance = tuple[Hashable, Optional[datetime]]
# Target index -> cutoff.  A None cutoff means unbounded (all data visible).
CutoffFrame = Mapping[Hashable, Optional[datetime]]


# ── Report ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FeatureFailure:
    """One feature that failed to compute in lenient mode."""

    feature: str
    error_type: str
    message: str


@dataclass
class SynthesisReport:
    """Run-level outcome of ``evaluate_features()``.

    Attributes:
        mode:       Evaluation mode the run used.
        evaluated:  Number of planned features evaluated (including failed ones).
        failures:   Lenient-mode failures, in plan order.
    """

    mode: EvaluationMode
    evaluated: int = 0
    failures: list[FeatureFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_features(self) -> list[str]:
        return [f.feature for f in self.failures]


# ── Cutoff frame ───────────────────────────────────────────────────────────────


def build_cutoff_frame(
    data: EntitySetData,
    target_entity: str,
    cutoffs: Optional[Mapping[Hashable, Any]] = None,
) -> dict[Hashable, Optional[datetime]]:
    """Resolve the cutoff time of every target row.

    - Explicit ``cutoffs`` are normalised with ``to_timestamp()`` and must cover
      every target row.
    - Otherwise, when the target has a time column, each row's cutoff is its own
      timestamp.
    - Otherwise every cutoff is ``None`` (unbounded: all data visible).

    Raises:
        EvaluationError: If an explicit frame lacks a target row, holds a missing
            value, or holds something that is not a timestamp.
    """
    table = data.table(target_entity)
    if cutoffs is None:
        if table.entity.time_column is None:
            logger.info("Target '%s' has no time column; cutoffs are unbounded.", target_entity)
        return {key: table.time_of(key) for key in table.keys}

    frame: dict[Hashable, Optional[datetime]] = {}
    for key in table.keys:
        if key not in cutoffs:
            raise EvaluationError(f"No cutoff time for target row {key!r} of '{target_entity}'.")
        try:
            ts = to_timestamp(cutoffs[key])
        except ValueError as exc:
            raise EvaluationError(f"Invalid cutoff for target row {key!r}: {exc}") from exc
        if ts is None:
            raise EvaluationError(f"Cutoff for target row {key!r} is missing.")
        frame[key] = ts

    extra = len(set(cutoffs) - set(frame))
    if extra:
        logger.warning("Ignoring %d cutoff entries with no matching target row.", extra)
    return frame


# ── Evaluator ──────────────────────────────────────────────────────────────────


class FeatureEvaluator:
    """Memoising evaluator bound to one ``EntitySetData`` and cutoff policy.

    Thread-safe: ``values()`` may be called concurrently for independent specs.
    """

    def __init__(
        self,
        data: EntitySetData,
        cutoff_policy: CutoffPolicy = CutoffPolicy.INCLUSIVE,
    ) -> None:
        self.data = data
        self.cutoff_policy = cutoff_policy
        self._memo: dict[tuple, Mapping[Instance, Any]] = {}
        self._lock = threading.Lock()

    def values(self, spec: FeatureSpec, instances: Sequence[Instance]) -> list[Any]:
        """Values of ``spec`` for ``instances``, in the same order."""
        known = self._memo.get(spec.key, {})
        todo = list(dict.fromkeys(i for i in instances if i not in known))
        if todo:
            computed = self._compute(spec, todo)
            with self._lock:
                merged = dict(self._memo.get(spec.key, {}))
                merged.update(computed)
                self._memo[spec.key] = merged
            known = merged
        return [known[i] for i in instances]

    # ── Dispatch ──────────────────────────────────────────────────────────────

    def _compute(self, spec: FeatureSpec, instances: list[Instance]) -> dict[Instance, Any]:
        if isinstance(spec, BaseFeature):
            return self._compute_base(spec, instances)
        if isinstance(spec, TransformFeature):
            return self._compute_transform(spec, instances)
        if isinstance(spec, AggregationFeature):
            return self._compute_aggregation(spec, instances)
        if isinstance(spec, DirectFeature):
            return self._compute_direct(spec, instances)
        raise EvaluationError(f"Unsupported feature node {spec!r}.", feature=spec.name)

    def _compute_base(self, spec: BaseFeature, instances: list[Instance]) -> dict[Instance, Any]:
        schema = self.data.schema
        if not schema.has_entity(spec.entity) or spec.column not in schema.entity(spec.entity).columns:
            raise EvaluationError(
                f"Column '{spec.entity}.{spec.column}' is not in the schema.", feature=spec.name
            )
        table = self.data.table(spec.entity)
        out: dict[Instance, Any] = {}
        for inst in instances:
            key, cutoff = inst
            # An instance's own row is visible at a cutoff equal to its timestamp.
            if is_visible(table.time_of(key), cutoff, CutoffPolicy.INCLUSIVE):
                out[inst] = table.value(key, spec.column)
            else:
                out[inst] = None
        return out

    def _compute_transform(
        self,
        spec: TransformFeature,
        instances: list[Instance],
    ) -> dict[Instance, Any]:
        primitive = spec.primitive
        columns = [self.values(arg, instances) for arg in spec.args]
        out: dict[Instance, Any] = {}
        for i, inst in enumerate(instances):
            args = [col[i] for col in columns]
            if not primitive.handles_missing and any(is_missing(a) for a in args):
                out[inst] = None
                continue
            try:
                out[inst] = primitive.compute(*args)
            except Exception as exc:
                raise EvaluationError(
                    f"Primitive '{primitive.name}' failed on row {inst[0]!r} "
                    f"of feature '{spec.name}': {exc}",
                    feature=spec.name,
                ) from exc
        return out

    def _compute_aggregation(
        self,
        spec: AggregationFeature,
        instances: list[Instance],
    ) -> dict[Instance, Any]:
        self._require_relationships(spec, spec.path)
        primitive = spec.primitive

        # Resolve descendants hop by hop; every hop applies the cutoff filter.
        members: dict[Instance, list[Hashable]] = {}
        leaf_instances: dict[Instance, None] = {}
        for inst in instances:
            key, cutoff = inst
            frontier: list[Hashable] = [key]
            for rel in spec.path:
                frontier = [
                    child
                    for parent in frontier
                    for child in self.data.visible_children(rel, parent, cutoff, self.cutoff_policy)
                ]
            members[inst] = frontier
            for child in frontier:
                leaf_instances[(child, cutoff)] = None

        leaf_list = list(leaf_instances)
        leaf_values = dict(zip(leaf_list, self.values(spec.child, leaf_list)))

        out: dict[Instance, Any] = {}
        for inst, leaf_keys in members.items():
            cutoff = inst[1]
            group = [leaf_values[(k, cutoff)] for k in leaf_keys]
            group = [v for v in group if not is_missing(v)]
            if not group:
                out[inst] = primitive.default_value
                continue
            try:
                out[inst] = primitive.compute(group)
            except Exception as exc:
                raise EvaluationError(
                    f"Primitive '{primitive.name}' failed on row {inst[0]!r} "
                    f"of feature '{spec.name}': {exc}",
                    feature=spec.name,
                ) from exc
        return out

    def _compute_direct(
        self,
        spec: DirectFeature,
        instances: list[Instance],
    ) -> dict[Instance, Any]:
        rel = spec.relationship
        self._require_relationships(spec, (rel,))
        parent_table = self.data.table(rel.parent_entity)

        parent_of: dict[Instance, Optional[Instance]] = {}
        for inst in instances:
            key, cutoff = inst
            parent = self.data.parent_of(rel, key)
            if parent is None or not is_visible(
                parent_table.time_of(parent), cutoff, self.cutoff_policy
            ):
                parent_of[inst] = None
            else:
                parent_of[inst] = (parent, cutoff)

        wanted = list(dict.fromkeys(p for p in parent_of.values() if p is not None))
        parent_values = dict(zip(wanted, self.values(spec.child, wanted)))
        return {
            inst: (parent_values[p] if p is not None else None)
            for inst, p in parent_of.items()
        }

    def _require_relationships(self, spec: FeatureSpec, path: Sequence) -> None:
        for rel in path:
            if not self.data.schema.has_relationship(rel):
                raise EvaluationError(
                    f"Relationship {rel.name} used by '{spec.name}' is not registered.",
                    feature=spec.name,
                )


# ── Public entry points ────────────────────────────────────────────────────────


def _target_instances(
    data: EntitySetData,
    target_entity: str,
    cutoff_frame: CutoffFrame,
) -> list[Instance]:
    table = data.table(target_entity)
    instances: list[Instance] = []
    for key in table.keys:
        if key not in cutoff_frame:
            raise EvaluationError(f"No cutoff time for target row {key!r} of '{target_entity}'.")
        try:
            instances.append((key, to_timestamp(cutoff_frame[key])))
        except ValueError as exc:
            raise EvaluationError(f"Invalid cutoff for target row {key!r}: {exc}") from exc
    return instances


def evaluate(
    spec: FeatureSpec,
    target_entity: str,
    cutoff_frame: CutoffFrame,
    data: EntitySetData,
    cutoff_policy: CutoffPolicy = CutoffPolicy.INCLUSIVE,
    evaluator: Optional[FeatureEvaluator] = None,
) -> dict[Hashable, Any]:
    """Compute ``spec`` for every row of ``target_entity``.

    Returns:
        Target index value -> feature value.

    Raises:
        EvaluationError: If the spec is not defined on ``target_entity``, a
            cutoff is missing, a relationship is unknown, or a primitive fails.
    """
    if spec.entity != target_entity:
        raise EvaluationError(
            f"Feature '{spec.name}' is defined on '{spec.entity}', not '{target_entity}'.",
            feature=spec.name,
        )
    evaluator = evaluator or FeatureEvaluator(data, cutoff_policy)
    instances = _target_instances(data, target_entity, cutoff_frame)
    values = evaluator.values(spec, instances)
    return {inst[0]: value for inst, value in zip(instances, values)}


def evaluate_features(
    specs: Sequence[FeatureSpec],
    target_entity: str,
    cutoff_frame: CutoffFrame,
    data: EntitySetData,
    cutoff_policy: CutoffPolicy = CutoffPolicy.INCLUSIVE,
    mode: EvaluationMode = EvaluationMode.STRICT,
    max_workers: int = 1,
) -> tuple[dict[str, dict[Hashable, Any]], SynthesisReport]:
    """Evaluate every planned spec, depth by depth.

    Specs of equal depth are independent and may run on a thread pool of
    ``max_workers``; each depth completes before the next starts.

    Returns:
        ``(value_maps, report)`` where ``value_maps`` maps feature name to a
        target-index -> value dict.

    Raises:
        EvaluationError: In strict mode, the first feature failure.  In any
            mode, an incomplete cutoff frame.
    """
    mode = EvaluationMode(mode)
    evaluator = FeatureEvaluator(data, cutoff_policy)
    instances = _target_instances(data, target_entity, cutoff_frame)
    report = SynthesisReport(mode=mode)
    value_maps: dict[str, dict[Hashable, Any]] = {}

    by_depth: dict[int, list[FeatureSpec]] = defaultdict(list)
    for spec in specs:
        by_depth[spec.depth].append(spec)

    def run_one(spec: FeatureSpec) -> tuple[FeatureSpec, Optional[list[Any]], Optional[EvaluationError]]:
        if spec.entity != target_entity:
            return spec, None, EvaluationError(
                f"Feature '{spec.name}' is defined on '{spec.entity}', not '{target_entity}'.",
                feature=spec.name,
            )
        try:
            return spec, evaluator.values(spec, instances), None
        except EvaluationError as exc:
            return spec, None, exc

    for depth in sorted(by_depth):
        group = by_depth[depth]
        logger.info("Evaluating %d features at depth %d", len(group), depth)
        if max_workers > 1 and len(group) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                outcomes = list(pool.map(run_one, group))
        else:
            outcomes = [run_one(spec) for spec in group]

        for spec, values, error in outcomes:
            report.evaluated += 1
            if error is not None:
                if mode == EvaluationMode.STRICT:
                    raise error
                logger.warning("Feature '%s' failed; filling with default: %s", spec.name, error)
                report.failures.append(
                    FeatureFailure(
                        feature=spec.name,
                        error_type=type(error.__cause__ or error).__name__,
                        message=str(error),
                    )
                )
                fill = spec.default_value
                value_maps[spec.name] = {inst[0]: fill for inst in instances}
                continue
            value_maps[spec.name] = {inst[0]: v for inst, v in zip(instances, values)}

    return value_maps, report
