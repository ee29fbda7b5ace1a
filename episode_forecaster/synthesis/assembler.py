"""
Feature matrix assembly.

``assemble()`` merges per-feature value maps into one ``FeatureMatrix`` keyed
by the target entity's index, one column per planned spec, in plan order.  It
is single-threaded and deterministic: the column order is exactly the order of
``specs`` and the row order is the target table's source row order.

Every planned feature must provide a value for every target row; a default
or the missing marker counts as a value, an absent key does not.  Any gap
raises ``AssemblyError``; rows are never silently dropped.

``FeatureMatrix.to_arrow()`` converts to a ``pyarrow.Table`` with a schema
derived from each spec's ``ColumnType``, for Parquet output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Hashable, Mapping, Sequence

import pyarrow as pa

from episode_forecaster.data.tables import EntityTable
from episode_forecaster.errors import AssemblyError
from episode_forecaster.synthesis.spec import FeatureSpec
from episode_forecaster.taxonomy.column_types import ColumnType

logger = logging.getLogger(__name__)

# ── PyArrow type map ───────────────────────────────────────────────────────────
# IDENTIFIER is absent on purpose: key types vary, so pyarrow infers them.

_PA_TYPE_MAP: dict[ColumnType, pa.DataType] = {
    ColumnType.NUMERIC:     pa.float64(),
    ColumnType.CATEGORICAL: pa.string(),
    ColumnType.FREE_TEXT:   pa.string(),
    ColumnType.BOOLEAN:     pa.bool_(),
    ColumnType.TIMESTAMP:   pa.timestamp("us", tz="UTC"),
}


@dataclass(frozen=True)
class FeatureMatrix:
    """Wide table of feature values aligned to the target index.

    Attributes:
        target_entity: Name of the target entity.
        index_column:  Name of the target's index column.
        index:         Target index values in row order.
        specs:         Planned specs, one per column, in column order.
        values:        Feature name -> column values aligned with ``index``.
    """

    target_entity: str
    index_column: str
    index: tuple[Hashable, ...]
    specs: tuple[FeatureSpec, ...]
    values: Mapping[str, tuple[Any, ...]]

    @property
    def columns(self) -> list[str]:
        return [s.name for s in self.specs]

    def __len__(self) -> int:
        return len(self.index)

    def column(self, name: str) -> list[Any]:
        return list(self.values[name])

    def row(self, key: Hashable) -> dict[str, Any]:
        """Feature values of one target row, keyed by feature name."""
        position = self.index.index(key)
        return {name: self.values[name][position] for name in self.columns}

    def to_rows(self) -> list[dict[str, Any]]:
        """One dict per target row, index column first, then features in order."""
        names = self.columns
        return [
            {self.index_column: key, **{n: self.values[n][i] for n in names}}
            for i, key in enumerate(self.index)
        ]

    def to_arrow(self) -> pa.Table:
        """Convert to a ``pyarrow.Table`` (index column first)."""
        arrays: dict[str, pa.Array] = {self.index_column: pa.array(list(self.index))}
        for spec in self.specs:
            pa_type = _PA_TYPE_MAP.get(spec.output_type)
            arrays[spec.name] = pa.array(list(self.values[spec.name]), type=pa_type)
        return pa.table(arrays)


def assemble(
    target: EntityTable,
    specs: Sequence[FeatureSpec],
    value_maps: Mapping[str, Mapping[Hashable, Any]],
) -> FeatureMatrix:
    """Merge feature value maps into a ``FeatureMatrix``.

    Args:
        target:     The bound target entity table (supplies the index).
        specs:      Planned specs in plan order.
        value_maps: Feature name -> (target index value -> feature value).

    Returns:
        A ``FeatureMatrix`` with exactly one row per target index value.

    Raises:
        AssemblyError: If a spec has no value map, two specs share a name, a
            spec is not defined on the target entity, or a value map is missing
            any target index value.
    """
    entity = target.entity
    columns: dict[str, tuple[Any, ...]] = {}
    for spec in specs:
        if spec.name in columns:
            raise AssemblyError(f"Duplicate feature column '{spec.name}'.", feature=spec.name)
        if spec.entity != entity.name:
            raise AssemblyError(
                f"Feature '{spec.name}' is defined on '{spec.entity}', not '{entity.name}'.",
                feature=spec.name,
            )
        if spec.name not in value_maps:
            raise AssemblyError(f"No values computed for feature '{spec.name}'.", feature=spec.name)

        mapping = value_maps[spec.name]
        missing = [key for key in target.keys if key not in mapping]
        if missing:
            raise AssemblyError(
                f"Feature '{spec.name}' has no value for {len(missing)} target rows "
                f"(first: {missing[0]!r}).",
                feature=spec.name,
                missing_keys=missing,
            )
        columns[spec.name] = tuple(mapping[key] for key in target.keys)

    logger.info(
        "Assembled feature matrix for '%s': %d rows x %d features",
        entity.name, len(target.keys), len(columns),
    )
    return FeatureMatrix(
        target_entity=entity.name,
        index_column=entity.index_column,
        index=tuple(target.keys),
        specs=tuple(specs),
        values=columns,
    )
