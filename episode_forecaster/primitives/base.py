"""
Primitive definition.

A ``Primitive`` is a named pure function plus the type metadata the planner
needs to decide, before any data is touched, where it may be applied.

- Transform primitives receive one value per declared input (one row) and
  return one value.  Missing inputs short-circuit to ``None`` unless
  ``handles_missing`` is set.
- Aggregation primitives receive the list of non-missing values of one group
  (one target row's cutoff-filtered multiset) and return one scalar.  An empty
  group never reaches ``compute``: the evaluator returns ``default_value``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from episode_forecaster.taxonomy.column_types import ColumnType, PrimitiveKind


@dataclass(frozen=True)
class Primitive:
    """A named transform or aggregation function.

    Attributes:
        name: Unique lower-case name, e.g. ``"sum"``.  Rendered upper-case in
            feature names.
        kind: ``PrimitiveKind.TRANSFORM`` or ``PrimitiveKind.AGGREGATION``.
        input_types: One ``ColumnType`` per argument.
        output_type: ``ColumnType`` of the produced value.
        compute: For transforms ``f(*values) -> value``; for aggregations
            ``f(values: list) -> value``.
        default_value: Aggregation result for an empty group, and the fill
            value for this primitive's features after a lenient failure.
        handles_missing: Transforms only.  Pass ``None`` inputs to ``compute``
            instead of short-circuiting.
        commutative: Arity-2 transforms only: ``f(a, b) == f(b, a)``, so the
            planner builds one ordering of each argument pair.
        description: One-line human explanation.
    """

    name: str
    kind: PrimitiveKind
    input_types: tuple[ColumnType, ...]
    output_type: ColumnType
    compute: Callable[..., Any]
    default_value: Any = None
    handles_missing: bool = False
    commutative: bool = False
    description: str = ""

    @property
    def arity(self) -> int:
        return len(self.input_types)

    def accepts(self, column_type: ColumnType) -> bool:
        """True if any argument position accepts ``column_type``."""
        return column_type in self.input_types
