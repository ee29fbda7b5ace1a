"""
Primitive library.

Holds the primitives available to one synthesis run, in registration order.
Registration order is part of the planner's deterministic ordering, so two
libraries built from the same sequence of ``register()`` calls always yield the
same plan.

Usage
-----
    from episode_forecaster.primitives.library import default_library

    library = default_library().subset(["count", "sum", "mean", "month"])
    library.compatible_primitives(PrimitiveKind.AGGREGATION, ColumnType.NUMERIC)
"""

from __future__ import annotations

import logging
from typing import Iterable

from episode_forecaster.errors import PrimitiveError
from episode_forecaster.primitives.aggregation import AGGREGATION_PRIMITIVES
from episode_forecaster.primitives.base import Primitive
from episode_forecaster.primitives.transform import TRANSFORM_PRIMITIVES
from episode_forecaster.taxonomy.column_types import ColumnType, PrimitiveKind

logger = logging.getLogger(__name__)


class PrimitiveLibrary:
    """Registry of named primitives."""

    def __init__(self, primitives: Iterable[Primitive] = ()) -> None:
        self._primitives: dict[str, Primitive] = {}
        for primitive in primitives:
            self.register(primitive)

    def register(self, primitive: Primitive) -> None:
        """Add ``primitive`` to the library.

        Raises:
            PrimitiveError: On a name collision, a kind or type tag outside the
                enumerations, an aggregation with arity other than 1, a
                transform with no inputs, or a non-callable ``compute``.
        """
        name = primitive.name
        if not name or not name.strip():
            raise PrimitiveError("Primitive name must be a non-empty string.", primitive=name)
        if name in self._primitives:
            raise PrimitiveError(f"Primitive '{name}' is already registered.", primitive=name)
        if not isinstance(primitive.kind, PrimitiveKind):
            raise PrimitiveError(
                f"Primitive '{name}' has invalid kind {primitive.kind!r}.", primitive=name
            )
        for t in (*primitive.input_types, primitive.output_type):
            if not isinstance(t, ColumnType):
                raise PrimitiveError(
                    f"Primitive '{name}' declares {t!r}, which is not a ColumnType.",
                    primitive=name,
                )
        if primitive.kind == PrimitiveKind.AGGREGATION and primitive.arity != 1:
            raise PrimitiveError(
                f"Aggregation primitive '{name}' must take exactly one input, "
                f"got {primitive.arity}.",
                primitive=name,
            )
        if primitive.kind == PrimitiveKind.TRANSFORM and primitive.arity < 1:
            raise PrimitiveError(
                f"Transform primitive '{name}' must take at least one input.", primitive=name
            )
        if not callable(primitive.compute):
            raise PrimitiveError(f"Primitive '{name}' compute is not callable.", primitive=name)

        self._primitives[name] = primitive

    def get(self, name: str) -> Primitive:
        """Return the primitive called ``name``.

        Raises:
            PrimitiveError: If no such primitive is registered.
        """
        try:
            return self._primitives[name]
        except KeyError:
            raise PrimitiveError(
                f"Primitive '{name}' is not registered. "
                f"Known: {sorted(self._primitives)}.",
                primitive=name,
            ) from None

    def __contains__(self, name: str) -> bool:
        return name in self._primitives

    def __len__(self) -> int:
        return len(self._primitives)

    def names(self, kind: PrimitiveKind | None = None) -> list[str]:
        """Primitive names in registration order, optionally filtered by kind."""
        return [p.name for p in self._primitives.values() if kind is None or p.kind == kind]

    def compatible_primitives(
        self,
        kind: PrimitiveKind,
        input_type: ColumnType,
    ) -> list[Primitive]:
        """Primitives of ``kind`` with an argument that accepts ``input_type``."""
        return [
            p for p in self._primitives.values()
            if p.kind == kind and p.accepts(input_type)
        ]

    def of_kind(self, kind: PrimitiveKind) -> list[Primitive]:
        return [p for p in self._primitives.values() if p.kind == kind]

    def subset(self, names: Iterable[str]) -> "PrimitiveLibrary":
        """New library holding only ``names``, keeping this library's order.

        Raises:
            PrimitiveError: If any name is unknown.
        """
        wanted = list(names)
        for name in wanted:
            self.get(name)
        keep = set(wanted)
        return PrimitiveLibrary(p for p in self._primitives.values() if p.name in keep)


def default_library() -> PrimitiveLibrary:
    """A fresh library with every built-in primitive: aggregations first."""
    library = PrimitiveLibrary([*AGGREGATION_PRIMITIVES, *TRANSFORM_PRIMITIVES])
    logger.debug("Default primitive library: %d primitives", len(library))
    return library
