"""
Typed cell values.

A cell is one of: ``float`` (Numeric), ``str`` (Categorical / FreeText),
``datetime`` (Timestamp), ``bool`` (Boolean), an arbitrary hashable
(Identifier), or ``None``, the single missing marker.

``coerce_value()`` is applied exactly once per cell when a table is bound to
the schema (see ``data.tables``), so primitives never see raw strings where a
number or timestamp was declared.
"""

from __future__ import annotations

import math
from typing import Any

from episode_forecaster.taxonomy.column_types import ColumnType
from episode_forecaster.utils.time_utils import to_timestamp

MISSING = None

_TRUE_STRINGS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_STRINGS = frozenset({"false", "f", "no", "n", "0"})


def is_missing(value: Any) -> bool:
    """True for ``None`` and float NaN."""
    if value is None:
        return True
    return isinstance(value, float) and math.isnan(value)


def coerce_value(value: Any, column_type: ColumnType) -> Any:
    """Convert a raw cell to the Python representation of ``column_type``.

    Raises:
        ValueError: If the value is present but not representable.
    """
    if is_missing(value):
        return MISSING
    if isinstance(value, str) and not value.strip() and column_type != ColumnType.FREE_TEXT:
        return MISSING

    if column_type == ColumnType.NUMERIC:
        if isinstance(value, bool):
            return float(value)
        result = float(value)
        return MISSING if math.isnan(result) else result

    if column_type in (ColumnType.CATEGORICAL, ColumnType.FREE_TEXT):
        return str(value)

    if column_type == ColumnType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            if value in (0, 1):
                return bool(value)
            raise ValueError(f"Numeric {value!r} is not a boolean (expected 0 or 1).")
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot interpret {value!r} as a boolean.")

    if column_type == ColumnType.TIMESTAMP:
        return to_timestamp(value)

    # IDENTIFIER: keep the key as supplied so joins compare like with like.
    return value
