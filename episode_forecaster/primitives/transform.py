"""
Built-in transform primitives.

Transforms are row-wise and never cross a relationship.  Calendar transforms
read the UTC components of a Timestamp; text transforms measure FreeText
notes; arity-2 numeric transforms combine two features of the same row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from episode_forecaster.primitives.base import Primitive
from episode_forecaster.taxonomy.column_types import ColumnType, PrimitiveKind

_TRANS = PrimitiveKind.TRANSFORM
_TS = (ColumnType.TIMESTAMP,)
_NUM = ColumnType.NUMERIC


def _year(ts: datetime) -> float:
    return float(ts.year)


def _month(ts: datetime) -> float:
    return float(ts.month)


def _day(ts: datetime) -> float:
    return float(ts.day)


def _weekday(ts: datetime) -> float:
    # 0 = Monday ... 6 = Sunday
    return float(ts.weekday())


def _hour(ts: datetime) -> float:
    return float(ts.hour)


def _is_weekend(ts: datetime) -> bool:
    return ts.weekday() >= 5


def _num_characters(text: str) -> float:
    return float(len(text))


def _num_words(text: str) -> float:
    return float(len(text.split()))


def _is_null(value: Any) -> bool:
    return value is None


def _divide(a: float, b: float) -> Optional[float]:
    if b == 0.0:
        return None
    return a / b


TRANSFORM_PRIMITIVES: list[Primitive] = [
    Primitive("year", _TRANS, _TS, _NUM, _year, description="Calendar year."),
    Primitive("month", _TRANS, _TS, _NUM, _month, description="Month 1-12."),
    Primitive("day", _TRANS, _TS, _NUM, _day, description="Day of month 1-31."),
    Primitive("weekday", _TRANS, _TS, _NUM, _weekday, description="0=Mon ... 6=Sun."),
    Primitive("hour", _TRANS, _TS, _NUM, _hour, description="Hour of day 0-23 (UTC)."),
    Primitive("is_weekend", _TRANS, _TS, ColumnType.BOOLEAN, _is_weekend,
              description="True on Saturday and Sunday."),
    Primitive("num_characters", _TRANS, (ColumnType.FREE_TEXT,), _NUM, _num_characters,
              description="Length of the text in characters."),
    Primitive("num_words", _TRANS, (ColumnType.FREE_TEXT,), _NUM, _num_words,
              description="Whitespace-separated word count."),
    Primitive("absolute", _TRANS, (_NUM,), _NUM, abs, description="Absolute value."),
    Primitive("is_null", _TRANS, (_NUM,), ColumnType.BOOLEAN, _is_null,
              handles_missing=True,
              description="True when the value is missing."),
    Primitive("add_numeric", _TRANS, (_NUM, _NUM), _NUM, lambda a, b: a + b,
              commutative=True, description="a + b."),
    Primitive("subtract_numeric", _TRANS, (_NUM, _NUM), _NUM, lambda a, b: a - b,
              description="a - b."),
    Primitive("divide_numeric", _TRANS, (_NUM, _NUM), _NUM, _divide,
              description="a / b; missing when b is 0."),
    Primitive("greater_than", _TRANS, (_NUM, _NUM), ColumnType.BOOLEAN, lambda a, b: a > b,
              description="a > b."),
]
