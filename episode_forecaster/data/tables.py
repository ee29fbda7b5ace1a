"""
In-memory entity tables bound to a schema.

Purpose
-------
``EntitySetData`` holds one ``EntityTable`` per registered entity plus the
join indexes the evaluator needs.  Everything is computed once, up front, and
never mutated afterwards, so evaluation threads can share it freely.

How binding works
-----------------
1.  Each raw row is coerced column-by-column with ``models.values.coerce_value``
    (strongly-typed cells; failures raise ``SchemaError``).
2.  Index values must be present and unique; a declared time column must be
    populated for every row.
3.  For every relationship a child index is built:
        parent key value -> (child keys, child timestamps) sorted by time.
    The sort order lets ``visible_children()`` take the "rows <= t" prefix with
    one ``bisect`` instead of re-scanning every child row per target row.
4.  Parent key values are checked for uniqueness against the actual data.

Point-in-time visibility
------------------------
A row with no time column is always visible.  Otherwise it is visible when
``row_time <= cutoff`` (``CutoffPolicy.INCLUSIVE``) or ``row_time < cutoff``
(``CutoffPolicy.EXCLUSIVE``).  A ``None`` cutoff means "unbounded".
"""

from __future__ import annotations

import logging
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Hashable, Iterable, Mapping, Optional

import pyarrow.csv as pa_csv
import pyarrow.parquet as pq

from episode_forecaster.errors import SchemaError
from episode_forecaster.models.schema import EntityDef, RelationshipDef
from episode_forecaster.models.values import coerce_value, is_missing
from episode_forecaster.schema.registry import SchemaRegistry
from episode_forecaster.taxonomy.column_types import CutoffPolicy

logger = logging.getLogger(__name__)


def is_visible(
    row_time: Optional[datetime],
    cutoff: Optional[datetime],
    policy: CutoffPolicy = CutoffPolicy.INCLUSIVE,
) -> bool:
    """Apply the point-in-time rule to a single row timestamp."""
    if row_time is None or cutoff is None:
        return True
    if policy == CutoffPolicy.EXCLUSIVE:
        return row_time < cutoff
    return row_time <= cutoff


# ── Tables ─────────────────────────────────────────────────────────────────────


class EntityTable:
    """Coerced rows of one entity, keyed by index value.

    Attributes:
        entity: The entity declaration this table is bound to.
        keys: Index values in source row order.
    """

    def __init__(self, entity: EntityDef, rows: Iterable[Mapping[str, Any]]) -> None:
        self.entity = entity
        self._rows: dict[Hashable, dict[str, Any]] = {}
        self._times: dict[Hashable, Optional[datetime]] = {}
        self.keys: list[Hashable] = []

        rows = list(rows)
        if rows:
            absent = [c for c in entity.columns if c not in rows[0]]
            if absent:
                raise SchemaError(
                    f"Table for '{entity.name}' lacks declared columns: {absent}.",
                    entity=entity.name, column=absent[0],
                )

        for position, raw in enumerate(rows):
            row = self._coerce_row(raw, position)
            key = row[entity.index_column]
            if key is None:
                raise SchemaError(
                    f"Row {position} of '{entity.name}' has a missing index value.",
                    entity=entity.name, column=entity.index_column,
                )
            if key in self._rows:
                raise SchemaError(
                    f"Duplicate index value {key!r} in '{entity.name}'.",
                    entity=entity.name, column=entity.index_column,
                )
            if entity.time_column is not None and row[entity.time_column] is None:
                raise SchemaError(
                    f"Row {key!r} of '{entity.name}' has no value for time column "
                    f"'{entity.time_column}'.",
                    entity=entity.name, column=entity.time_column,
                )
            self._rows[key] = row
            self._times[key] = row[entity.time_column] if entity.time_column else None
            self.keys.append(key)

    def _coerce_row(self, raw: Mapping[str, Any], position: int) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for col, col_type in self.entity.columns.items():
            try:
                row[col] = coerce_value(raw.get(col), col_type)
            except (TypeError, ValueError) as exc:
                raise SchemaError(
                    f"Row {position} of '{self.entity.name}': column '{col}' value "
                    f"{raw.get(col)!r} is not a valid {col_type}: {exc}",
                    entity=self.entity.name, column=col,
                ) from exc
        return row

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._rows

    def value(self, key: Hashable, column: str) -> Any:
        return self._rows[key][column]

    def time_of(self, key: Hashable) -> Optional[datetime]:
        return self._times[key]


@dataclass(frozen=True)
class _ChildGroup:
    """Children of one parent key value, sorted by timestamp."""

    keys: tuple[Hashable, ...]
    times: tuple[Optional[datetime], ...]
    is_temporal: bool


@dataclass
class _RelationshipIndex:
    groups: dict[Hashable, _ChildGroup] = field(default_factory=dict)
    parent_rows: dict[Hashable, Hashable] = field(default_factory=dict)


class EntitySetData:
    """All tables of one synthesis run, bound to a ``SchemaRegistry``.

    Raises:
        SchemaError: If a registered entity has no table, a table names an
            unregistered entity, or a parent key is not unique in the data.
    """

    def __init__(
        self,
        schema: SchemaRegistry,
        tables: Mapping[str, Iterable[Mapping[str, Any]]],
    ) -> None:
        self.schema = schema
        unknown = sorted(set(tables) - set(schema.entity_names))
        if unknown:
            raise SchemaError(f"Tables supplied for unregistered entities: {unknown}.")

        self._tables: dict[str, EntityTable] = {}
        for name in schema.entity_names:
            if name not in tables:
                raise SchemaError(f"No table supplied for entity '{name}'.", entity=name)
            self._tables[name] = EntityTable(schema.entity(name), tables[name])

        self._indexes: dict[RelationshipDef, _RelationshipIndex] = {
            rel: self._index_relationship(rel) for rel in schema.relationships
        }
        logger.debug(
            "Bound %d tables (%s rows)",
            len(self._tables),
            ", ".join(f"{n}={len(t)}" for n, t in self._tables.items()),
        )

    def table(self, entity: str) -> EntityTable:
        try:
            return self._tables[entity]
        except KeyError:
            raise SchemaError(f"Entity '{entity}' is not registered.", entity=entity) from None

    def _index_relationship(self, rel: RelationshipDef) -> _RelationshipIndex:
        parent = self._tables[rel.parent_entity]
        child = self._tables[rel.child_entity]
        index = _RelationshipIndex()

        for pkey in parent.keys:
            value = parent.value(pkey, rel.parent_key)
            if is_missing(value):
                continue
            if value in index.parent_rows:
                raise SchemaError(
                    f"Parent key '{rel.parent_entity}.{rel.parent_key}' is not unique: "
                    f"value {value!r} appears more than once.",
                    entity=rel.parent_entity, column=rel.parent_key,
                )
            index.parent_rows[value] = pkey

        buckets: dict[Hashable, list[tuple[Optional[datetime], int, Hashable]]] = {}
        for position, ckey in enumerate(child.keys):
            fk = child.value(ckey, rel.child_key)
            if is_missing(fk):
                continue
            buckets.setdefault(fk, []).append((child.time_of(ckey), position, ckey))

        temporal = child.entity.time_column is not None
        for fk, members in buckets.items():
            if temporal:
                members.sort(key=lambda m: (m[0], m[1]))
            index.groups[fk] = _ChildGroup(
                keys=tuple(m[2] for m in members),
                times=tuple(m[0] for m in members),
                is_temporal=temporal,
            )
        return index

    # ── Traversal ─────────────────────────────────────────────────────────────

    def visible_children(
        self,
        rel: RelationshipDef,
        parent_row: Hashable,
        cutoff: Optional[datetime],
        policy: CutoffPolicy = CutoffPolicy.INCLUSIVE,
    ) -> tuple[Hashable, ...]:
        """Child index values linked to ``parent_row`` and visible at ``cutoff``."""
        parent = self._tables[rel.parent_entity]
        value = parent.value(parent_row, rel.parent_key)
        group = self._indexes[rel].groups.get(value)
        if group is None:
            return ()
        if not group.is_temporal or cutoff is None:
            return group.keys
        if policy == CutoffPolicy.EXCLUSIVE:
            end = bisect_left(group.times, cutoff)
        else:
            end = bisect_right(group.times, cutoff)
        return group.keys[:end]

    def parent_of(self, rel: RelationshipDef, child_row: Hashable) -> Optional[Hashable]:
        """Index value of the parent row linked to ``child_row``, or None."""
        fk = self._tables[rel.child_entity].value(child_row, rel.child_key)
        if is_missing(fk):
            return None
        return self._indexes[rel].parent_rows.get(fk)


# ── File loaders ───────────────────────────────────────────────────────────────


def read_table_file(path: Path) -> list[dict[str, Any]]:
    """Read a CSV or Parquet file into a list of row dicts.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the extension is not ``.csv`` or ``.parquet``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table file not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        table = pa_csv.read_csv(str(path))
    elif suffix in (".parquet", ".pq"):
        table = pq.read_table(str(path))
    else:
        raise ValueError(f"Unsupported table format '{suffix}' for {path.name}.")
    rows = table.to_pylist()
    logger.info("Loaded %s (%d rows)", path.name, len(rows))
    return rows


def load_entity_set(
    schema: SchemaRegistry,
    sources: Mapping[str, str],
    tables_dir: Path,
) -> EntitySetData:
    """Load every entity's table from ``tables_dir`` and bind it to ``schema``.

    Raises:
        SchemaError: If an entity has no declared source file.
    """
    tables: dict[str, list[dict[str, Any]]] = {}
    for name in schema.entity_names:
        if name not in sources:
            raise SchemaError(f"Entity '{name}' has no 'source' table file.", entity=name)
        tables[name] = read_table_file(Path(tables_dir) / sources[name])
    return EntitySetData(schema, tables)
