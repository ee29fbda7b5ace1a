"""
One-call deep feature synthesis: plan, evaluate, assemble.

``run_dfs()`` is the entry point used by the feature build stage and the CLI.
Passing ``features`` skips planning and re-scores a previously saved plan.
"""

from __future__ import annotations

import logging
from typing import Any, Hashable, Iterable, Mapping, Optional, Sequence

from episode_forecaster.data.tables import EntitySetData
from episode_forecaster.primitives.library import PrimitiveLibrary, default_library
from episode_forecaster.synthesis.assembler import FeatureMatrix, assemble
from episode_forecaster.synthesis.evaluator import (
    SynthesisReport,
    build_cutoff_frame,
    evaluate_features,
)
from episode_forecaster.synthesis.planner import plan
from episode_forecaster.synthesis.spec import FeatureSpec
from episode_forecaster.taxonomy.column_types import CutoffPolicy, EvaluationMode

logger = logging.getLogger(__name__)


def run_dfs(
    data: EntitySetData,
    target_entity: str,
    primitive_library: Optional[PrimitiveLibrary] = None,
    max_depth: int = 2,
    excluded_columns: Iterable[str] = (),
    cutoffs: Optional[Mapping[Hashable, Any]] = None,
    cutoff_policy: CutoffPolicy = CutoffPolicy.INCLUSIVE,
    mode: EvaluationMode = EvaluationMode.STRICT,
    max_workers: int = 1,
    max_features: Optional[int] = None,
    features: Optional[Sequence[FeatureSpec]] = None,
) -> tuple[FeatureMatrix, list[FeatureSpec], SynthesisReport]:
    """Build the feature matrix for ``target_entity``.

    Args:
        data:              Bound entity tables.
        target_entity:     Entity whose rows become matrix rows.
        primitive_library: Primitives to plan with; defaults to the built-ins.
        max_depth:         Maximum composition depth.
        excluded_columns:  Target columns never used (e.g. the prediction label).
        cutoffs:           Optional target index -> cutoff time.  Defaults to
                           each row's own timestamp.
        cutoff_policy:     Tie handling for rows reached through relationships.
        mode:              ``strict`` raises on the first failure; ``lenient``
                           fills defaults and records failures.
        max_workers:       Thread pool size per depth level (1 = sequential).
        max_features:      Optional cap on the planned feature count.
        features:          Pre-planned specs; when given, planning is skipped.

    Returns:
        ``(matrix, specs, report)``.
    """
    if features is None:
        specs = plan(
            data.schema,
            target_entity,
            primitive_library or default_library(),
            max_depth,
            excluded_columns=excluded_columns,
            max_features=max_features,
        )
    else:
        specs = list(features)
        logger.info("Re-scoring %d saved features for '%s'", len(specs), target_entity)

    frame = build_cutoff_frame(data, target_entity, cutoffs)
    value_maps, report = evaluate_features(
        specs,
        target_entity,
        frame,
        data,
        cutoff_policy=cutoff_policy,
        mode=mode,
        max_workers=max_workers,
    )
    matrix = assemble(data.table(target_entity), specs, value_maps)
    return matrix, specs, report
