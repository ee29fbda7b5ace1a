"""
Built-in aggregation primitives.

Every function receives the non-missing values of one group and must not
depend on their order.  Sums use ``math.fsum`` so results are identical under
any permutation of the input; ``mode`` breaks frequency ties by the smallest
value.

Empty groups are handled by the evaluator with each primitive's
``default_value``: ``count``/``num_unique``/``num_true`` -> 0, ``sum`` -> 0.0,
everything else -> ``None`` (missing).
"""

from __future__ import annotations

import math
import statistics
from collections import Counter
from typing import Any

from episode_forecaster.primitives.base import Primitive
from episode_forecaster.taxonomy.column_types import ColumnType, PrimitiveKind

_AGG = PrimitiveKind.AGGREGATION


def _count(values: list[Any]) -> float:
    return float(len(values))


def _sum(values: list[float]) -> float:
    return math.fsum(values)


def _mean(values: list[float]) -> float:
    return math.fsum(values) / len(values)


def _std(values: list[float]) -> float:
    # Population std.
    return float(statistics.pstdev(values))


def _median(values: list[float]) -> float:
    return float(statistics.median(values))


def _mode(values: list[str]) -> str:
    counts = Counter(values)
    best = max(counts.values())
    return min(v for v, c in counts.items() if c == best)


def _num_unique(values: list[Any]) -> float:
    return float(len(set(values)))


def _num_true(values: list[bool]) -> float:
    return float(sum(1 for v in values if v))


def _percent_true(values: list[bool]) -> float:
    return sum(1 for v in values if v) / len(values)


AGGREGATION_PRIMITIVES: list[Primitive] = [
    Primitive("count", _AGG, (ColumnType.IDENTIFIER,), ColumnType.NUMERIC, _count,
              default_value=0.0, description="Number of visible related rows."),
    Primitive("sum", _AGG, (ColumnType.NUMERIC,), ColumnType.NUMERIC, _sum,
              default_value=0.0, description="Sum of values."),
    Primitive("mean", _AGG, (ColumnType.NUMERIC,), ColumnType.NUMERIC, _mean,
              description="Arithmetic mean; missing for an empty group."),
    Primitive("min", _AGG, (ColumnType.NUMERIC,), ColumnType.NUMERIC, min,
              description="Smallest value."),
    Primitive("max", _AGG, (ColumnType.NUMERIC,), ColumnType.NUMERIC, max,
              description="Largest value."),
    Primitive("std", _AGG, (ColumnType.NUMERIC,), ColumnType.NUMERIC, _std,
              description="Population standard deviation; 0.0 for a single value."),
    Primitive("median", _AGG, (ColumnType.NUMERIC,), ColumnType.NUMERIC, _median,
              description="Median value."),
    Primitive("mode", _AGG, (ColumnType.CATEGORICAL,), ColumnType.CATEGORICAL, _mode,
              description="Most frequent category; ties go to the smallest label."),
    Primitive("num_unique", _AGG, (ColumnType.CATEGORICAL,), ColumnType.NUMERIC, _num_unique,
              default_value=0.0, description="Number of distinct categories."),
    Primitive("num_true", _AGG, (ColumnType.BOOLEAN,), ColumnType.NUMERIC, _num_true,
              default_value=0.0, description="Number of True values."),
    Primitive("percent_true", _AGG, (ColumnType.BOOLEAN,), ColumnType.NUMERIC, _percent_true,
              description="Fraction of True values."),
]
