"""
Data quality checks for an assembled feature matrix.

Purpose
-------
``build_quality_report()`` inspects a ``FeatureMatrix`` (and optionally the
``SynthesisReport`` of the run that produced it) and summarises:

- Missingness fraction per feature column.
- Constant columns (a single distinct non-missing value, or all missing).
- Duplicate target index values.
- Features that failed in lenient mode and were filled with defaults.

``is_clean`` is set to False only for hard errors (duplicate index values,
recorded failures).  High missingness is expected for aggregations over sparse
histories and does NOT mark the report as unclean.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from episode_forecaster.models.values import is_missing
from episode_forecaster.synthesis.assembler import FeatureMatrix
from episode_forecaster.synthesis.evaluator import SynthesisReport


@dataclass
class DataQualityReport:
    """Summary of quality checks on one feature matrix.

    Attributes:
        total_rows:            Rows in the matrix.
        total_features:        Feature columns in the matrix.
        missingness:           Feature name -> fraction of missing values.
        high_missingness_cols: Features with missingness > threshold.
        constant_cols:         Features with at most one distinct value.
        duplicate_index_count: Repeated target index values.
        failed_features:       Features filled with defaults after a failure.
        is_clean:              False if duplicates or failures were found.
    """

    total_rows: int
    total_features: int
    missingness: dict[str, float]
    high_missingness_cols: list[str]
    constant_cols: list[str]
    duplicate_index_count: int
    failed_features: list[str]
    is_clean: bool


def build_quality_report(
    matrix: FeatureMatrix,
    synthesis_report: Optional[SynthesisReport] = None,
    missingness_threshold: float = 0.30,
) -> DataQualityReport:
    """Build a quality report for ``matrix``."""
    n = len(matrix)
    failed = synthesis_report.failed_features if synthesis_report else []

    missingness: dict[str, float] = {}
    constant_cols: list[str] = []
    for name in matrix.columns:
        column = matrix.values[name]
        present = [v for v in column if not is_missing(v)]
        missingness[name] = (n - len(present)) / n if n else 0.0
        if n and len(set(present)) <= 1:
            constant_cols.append(name)

    high_missingness_cols = [
        col for col, frac in missingness.items() if frac > missingness_threshold
    ]

    duplicate_index_count = n - len(set(matrix.index))

    return DataQualityReport(
        total_rows=n,
        total_features=len(matrix.columns),
        missingness=missingness,
        high_missingness_cols=high_missingness_cols,
        constant_cols=constant_cols,
        duplicate_index_count=duplicate_index_count,
        failed_features=list(failed),
        is_clean=duplicate_index_count == 0 and not failed,
    )
