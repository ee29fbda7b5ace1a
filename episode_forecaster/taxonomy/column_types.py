"""
Enumerations shared by the schema, primitive, and synthesis layers.

  - ``ColumnType``     — semantic type tag of a column; governs which
                          primitives may consume it.
  - ``PrimitiveKind``  — transform (row-wise) vs aggregation (group-wise).
  - ``CutoffPolicy``   — how a row timestamp equal to the cutoff is treated.
  - ``EvaluationMode`` — strict (abort on first feature failure) vs lenient.

This module has NO imports from any other ``episode_forecaster`` package.
"""

from enum import StrEnum


class ColumnType(StrEnum):
    """Semantic type of a column."""

    NUMERIC = "numeric"
    """Real-valued measurement; consumed by arithmetic and statistical primitives."""

    CATEGORICAL = "categorical"
    """Low-cardinality label (e.g. a judge name, a state)."""

    FREE_TEXT = "free_text"
    """Unstructured notes; only text-length style primitives apply."""

    IDENTIFIER = "identifier"
    """Index or foreign key.  Never an input to transforms."""

    TIMESTAMP = "timestamp"
    """Point in time; required type for a declared time column."""

    BOOLEAN = "boolean"
    """True / False flag."""


class PrimitiveKind(StrEnum):
    """Whether a primitive works within one row or across a group of rows."""

    TRANSFORM = "transform"
    AGGREGATION = "aggregation"


class CutoffPolicy(StrEnum):
    """Tie handling for rows whose timestamp equals the cutoff."""

    INCLUSIVE = "inclusive"
    """Row time <= cutoff is visible (default)."""

    EXCLUSIVE = "exclusive"
    """Row time < cutoff is visible."""


class EvaluationMode(StrEnum):
    """Failure policy for feature evaluation."""

    STRICT = "strict"
    """Any feature failure aborts the run."""

    LENIENT = "lenient"
    """Failed features are filled with their empty value and reported."""
