"""
Entity and relationship declarations.

``EntityDef`` describes one table: its unique index, optional time column,
and the ``ColumnType`` of every column.  ``RelationshipDef`` is a directed
one-to-many edge from a parent key to a child foreign key.

Both are frozen pydantic models: once registered they are never mutated, which
keeps a ``SchemaRegistry`` safe to share across worker threads.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from episode_forecaster.taxonomy.column_types import ColumnType


class EntityDef(BaseModel):
    """Declaration of one entity (table).

    Attributes:
        name: Unique entity name, e.g. ``"episodes"``.
        index_column: Column whose values uniquely identify a row.
        time_column: Timestamp column used for point-in-time filtering, or
            ``None`` for atemporal lookup tables.
        columns: Column name -> ``ColumnType``.  Insertion order is the
            declaration order and drives base-feature ordering.
        unique_columns: Additional columns declared unique (usable as a
            relationship parent key besides the index).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    index_column: str
    time_column: Optional[str] = None
    columns: dict[str, ColumnType]
    unique_columns: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Entity name must be a non-empty string.")
        return v

    def column_type(self, column: str) -> ColumnType:
        return self.columns[column]

    def is_unique(self, column: str) -> bool:
        """True if ``column`` is the index or declared unique."""
        return column == self.index_column or column in self.unique_columns


class RelationshipDef(BaseModel):
    """One-to-many link ``parent.parent_key -> child.child_key``."""

    model_config = ConfigDict(frozen=True)

    parent_entity: str
    parent_key: str
    child_entity: str
    child_key: str

    @property
    def name(self) -> str:
        """Stable textual form, e.g. ``judges.judge_id->episodes.judge_id``."""
        return (
            f"{self.parent_entity}.{self.parent_key}"
            f"->{self.child_entity}.{self.child_key}"
        )
