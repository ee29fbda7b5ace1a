"""
Exception taxonomy for the feature synthesis engine.

Configuration-time errors (``SchemaError``, ``PrimitiveError``,
``PlanningError``) always abort a run: they indicate a caller mistake, never a
data problem.  ``EvaluationError`` is the only recoverable error: in lenient
mode the evaluator records it against the failing feature and continues.
``AssemblyError`` signals an internal consistency bug upstream of the merge.
"""

from __future__ import annotations

from typing import Optional


class SynthesisError(Exception):
    """Base class for every error raised by the synthesis engine."""


class SchemaError(SynthesisError):
    """Malformed, inconsistent, or cyclic entity/relationship declaration.

    Attributes:
        entity: Entity the error concerns, when known.
        column: Column the error concerns, when known.
    """

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        column: Optional[str] = None,
    ) -> None:
        self.entity = entity
        self.column = column
        super().__init__(message)


class PrimitiveError(SynthesisError):
    """Invalid primitive registration or lookup.

    Attributes:
        primitive: Name of the offending primitive.
    """

    def __init__(self, message: str, primitive: Optional[str] = None) -> None:
        self.primitive = primitive
        super().__init__(message)


class PlanningError(SynthesisError):
    """Invalid planning request (bad depth, unknown entity or column)."""


class EvaluationError(SynthesisError):
    """A feature could not be computed for some or all target rows.

    Attributes:
        feature: Name of the failing feature, or None for run-level inputs
            such as an incomplete cutoff frame.
    """

    def __init__(self, message: str, feature: Optional[str] = None) -> None:
        self.feature = feature
        super().__init__(message)


class AssemblyError(SynthesisError):
    """Row/column mismatch while merging feature values into the matrix.

    Attributes:
        feature: Feature column whose values were incomplete.
        missing_keys: Target index values with no value for ``feature``.
    """

    def __init__(
        self,
        message: str,
        feature: Optional[str] = None,
        missing_keys: Optional[list] = None,
    ) -> None:
        self.feature = feature
        self.missing_keys = missing_keys or []
        super().__init__(message)
