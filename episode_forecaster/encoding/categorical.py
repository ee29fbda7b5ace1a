"""
Two-phase one-hot encoding of categorical feature columns.

``fit_encoding()`` learns, per categorical column, the ``top_n`` most frequent
values of a training matrix and freezes them into an ``EncodingState``.
``apply_encoding()`` then encodes any row (training or scoring) with that
state and never looks at the data again, so train-time and score-time columns
are always identical.

Encoded keys are named ``<column> = <value>``; values outside the learned set
go to ``<column> = __unknown__`` when ``include_unknown`` is set.  A missing
value encodes as all zeros.  The original raw keys are preserved for
traceability.

States are persisted as JSON with ``save_encoding()`` so a later scoring run
can ``load_encoding()`` the training-time state instead of refitting.
"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from episode_forecaster.models.values import is_missing
from episode_forecaster.synthesis.assembler import FeatureMatrix
from episode_forecaster.taxonomy.column_types import ColumnType

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "__unknown__"


class EncodingState(BaseModel):
    """Frozen categories learned by ``fit_encoding()``.

    Attributes:
        categories:      Column name -> retained values, most frequent first.
        include_unknown: Whether an ``__unknown__`` indicator is emitted.
    """

    model_config = ConfigDict(frozen=True)

    categories: dict[str, tuple[str, ...]]
    include_unknown: bool = True

    @field_validator("categories")
    @classmethod
    def no_reserved_value(cls, v: dict[str, tuple[str, ...]]) -> dict[str, tuple[str, ...]]:
        for column, values in v.items():
            if UNKNOWN_CATEGORY in values:
                raise ValueError(f"'{UNKNOWN_CATEGORY}' is reserved (column '{column}').")
        return v

    def encoded_columns(self) -> list[str]:
        """Names of every indicator key ``apply_encoding()`` adds, in order."""
        out: list[str] = []
        for column, values in self.categories.items():
            out.extend(_indicator(column, v) for v in values)
            if self.include_unknown:
                out.append(_indicator(column, UNKNOWN_CATEGORY))
        return out


def _indicator(column: str, value: str) -> str:
    return f"{column} = {value}"


def fit_encoding(
    matrix: FeatureMatrix,
    columns: Optional[Iterable[str]] = None,
    top_n: int = 10,
    include_unknown: bool = True,
) -> EncodingState:
    """Learn the retained categories of ``columns`` from ``matrix``.

    Args:
        matrix:          Training feature matrix.
        columns:         Columns to encode; defaults to every CATEGORICAL feature.
        top_n:           Values kept per column (ties broken by value).
        include_unknown: Emit an ``__unknown__`` indicator for unseen values.

    Raises:
        KeyError:   If a requested column is not in the matrix.
        ValueError: If ``top_n`` < 1.
    """
    if top_n < 1:
        raise ValueError(f"top_n must be >= 1, got {top_n}")
    if columns is None:
        columns = [s.name for s in matrix.specs if s.output_type == ColumnType.CATEGORICAL]

    categories: dict[str, tuple[str, ...]] = {}
    for column in columns:
        if column not in matrix.values:
            raise KeyError(f"Column '{column}' is not in the feature matrix.")
        counts = Counter(str(v) for v in matrix.values[column] if not is_missing(v))
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        categories[column] = tuple(
            value for value, _ in ranked if value != UNKNOWN_CATEGORY
        )[:top_n]

    return EncodingState(categories=categories, include_unknown=include_unknown)


def apply_encoding(state: EncodingState, row: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``row`` with one-hot indicator keys added."""
    encoded = dict(row)
    for column, values in state.categories.items():
        raw = row.get(column)
        value = None if is_missing(raw) else str(raw)
        for category in values:
            encoded[_indicator(column, category)] = int(value == category)
        if state.include_unknown:
            encoded[_indicator(column, UNKNOWN_CATEGORY)] = int(
                value is not None and value not in values
            )
    return encoded


def save_encoding(state: EncodingState, path: Path) -> Path:
    """Write ``state`` to ``path`` as JSON.  Returns the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
    logger.info("Saved encoding for %d columns -> %s", len(state.categories), path)
    return path


def load_encoding(path: Path) -> EncodingState:
    """Load a state written by ``save_encoding()``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        pydantic.ValidationError: If the file is not a valid encoding state.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Encoding state not found: {path}")
    return EncodingState.model_validate_json(path.read_text(encoding="utf-8"))
