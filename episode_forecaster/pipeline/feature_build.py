"""
FeatureBuildStage — synthesize the feature matrix for the target entity.

Reads every entity's table (CSV or Parquet) declared in the schema file, runs
deep feature synthesis with the configured primitives, depth and cutoff
policy, and writes to ``<output_dir>/``:

- ``features_<target>_<run8>.parquet``     — the matrix (Snappy-compressed)
- ``feature_defs_<target>_<run8>.json``    — serialized FeatureSpecs
- ``encoding_<target>_<run8>.json``        — categorical encoding state
- ``features_encoded_<target>_<run8>.parquet`` — the matrix plus one-hot
                                             indicator columns
- ``manifest_<target>_<run8>.json``        — names, depths, SHA-256, quality,
                                             config snapshot

``<run8>`` is the first 8 characters of the run slug.  Passing
``features_file`` re-scores a previously saved plan instead of planning anew;
passing ``encoding_file`` applies a previously saved encoding state instead of
fitting one on this matrix with the ``[encoding]`` settings.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Hashable, Mapping, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from episode_forecaster.data.tables import load_entity_set
from episode_forecaster.encoding.categorical import (
    EncodingState,
    apply_encoding,
    fit_encoding,
    load_encoding,
    save_encoding,
)
from episode_forecaster.models.meta import RunMetadata
from episode_forecaster.pipeline.base import PipelineStage
from episode_forecaster.schema.loader import load_schema_file
from episode_forecaster.synthesis.assembler import FeatureMatrix
from episode_forecaster.synthesis.dfs import run_dfs
from episode_forecaster.synthesis.quality import DataQualityReport, build_quality_report
from episode_forecaster.synthesis.serialize import load_features, save_features

log = logging.getLogger(__name__)


def write_matrix_parquet(matrix: FeatureMatrix, path: Path) -> int:
    """Write ``matrix`` as Snappy Parquet.  Returns the number of rows written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(matrix.to_arrow(), str(path), compression="snappy")
    log.info("Feature Parquet written: %s (%d rows)", path.name, len(matrix))
    return len(matrix)


def encode_matrix(state: EncodingState, matrix: FeatureMatrix) -> pa.Table:
    """Arrow table of ``matrix`` with the state's indicator columns appended."""
    table = matrix.to_arrow()
    encoded = [apply_encoding(state, row) for row in matrix.to_rows()]
    for name in state.encoded_columns():
        table = table.append_column(name, pa.array([row[name] for row in encoded], type=pa.int8()))
    return table


def _hash_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def build_manifest(
    run: RunMetadata,
    matrix: FeatureMatrix,
    quality: DataQualityReport,
    parquet_path: Path,
    defs_path: Path,
    encoding: EncodingState,
    encoding_path: Path,
    encoded_path: Path,
) -> dict[str, Any]:
    """Build the manifest dict for one feature build."""
    return {
        "run_slug":      run.run_slug,
        "target_entity": matrix.target_entity,
        "index_column":  matrix.index_column,
        "row_count":     len(matrix),
        "features": [
            {"name": s.name, "depth": s.depth, "type": s.output_type.value}
            for s in matrix.specs
        ],
        "files": {
            "matrix": {"path": str(parquet_path), "sha256": _hash_file(parquet_path)},
            "feature_defs": {"path": str(defs_path)},
            "encoding": {"path": str(encoding_path)},
            "encoded_matrix": {"path": str(encoded_path), "sha256": _hash_file(encoded_path)},
        },
        "encoding": {
            "columns": sorted(encoding.categories),
            "indicator_count": len(encoding.encoded_columns()),
            "include_unknown": encoding.include_unknown,
        },
        "quality": {
            "is_clean":              quality.is_clean,
            "duplicate_index_count": quality.duplicate_index_count,
            "high_missingness_cols": quality.high_missingness_cols,
            "constant_cols":         quality.constant_cols,
            "failed_features":       quality.failed_features,
        },
        "config_snapshot": run.config_snapshot,
    }


def write_manifest(manifest: dict[str, Any], path: Path) -> None:
    """Write the manifest dict as pretty-printed JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, default=str)
    log.info("Manifest written: %s", path.name)


class FeatureBuildStage(PipelineStage):
    """Load entity tables, run DFS, persist the matrix and its manifest."""

    stage_name = "feature_build"

    def _execute(
        self,
        run: RunMetadata,
        tables_dir: Optional[str | Path] = None,
        schema_file: Optional[str | Path] = None,
        features_file: Optional[str | Path] = None,
        encoding_file: Optional[str | Path] = None,
        cutoffs: Optional[Mapping[Hashable, Any]] = None,
        **kwargs,
    ) -> int:
        """Build and persist the feature matrix.

        Args:
            run:           In-progress ``RunMetadata``.
            tables_dir:    Table directory; defaults to ``config.data.tables_dir``.
            schema_file:   Schema TOML; defaults to ``config.data.schema_file``.
            features_file: Saved feature definitions to re-score.
            encoding_file: Saved encoding state to apply instead of fitting one.
            cutoffs:       Target index -> cutoff time; defaults to row times.

        Returns:
            Rows in the written matrix.
        """
        synth = self.config.synthesis
        schema, sources = load_schema_file(Path(schema_file or self.config.data.schema_file))
        data = load_entity_set(schema, sources, Path(tables_dir or self.config.data.tables_dir))
        library = synth.primitive_library()

        features = None
        if features_file is not None:
            features = load_features(Path(features_file), schema, library)

        matrix, specs, report = run_dfs(
            data,
            synth.target_entity,
            primitive_library=library,
            max_depth=synth.max_depth,
            excluded_columns=synth.excluded_columns,
            cutoffs=cutoffs,
            cutoff_policy=synth.cutoff_policy,
            mode=synth.mode,
            max_workers=synth.max_workers,
            max_features=synth.max_features,
            features=features,
        )
        quality = build_quality_report(matrix, report)
        if not quality.is_clean:
            log.warning(
                "Quality issues: %d duplicate index values, %d failed features",
                quality.duplicate_index_count, len(quality.failed_features),
            )

        stem = f"{synth.target_entity}_{run.run_slug[:8]}"
        parquet_path = self.output_dir / f"features_{stem}.parquet"
        defs_path = self.output_dir / f"feature_defs_{stem}.json"
        encoding_path = self.output_dir / f"encoding_{stem}.json"
        encoded_path = self.output_dir / f"features_encoded_{stem}.parquet"
        manifest_path = self.output_dir / f"manifest_{stem}.json"

        if encoding_file is not None:
            encoding = load_encoding(Path(encoding_file))
        else:
            encoding = fit_encoding(
                matrix,
                top_n=self.config.encoding.top_n,
                include_unknown=self.config.encoding.include_unknown,
            )

        rows = write_matrix_parquet(matrix, parquet_path)
        save_features(specs, defs_path)
        save_encoding(encoding, encoding_path)
        pq.write_table(encode_matrix(encoding, matrix), str(encoded_path), compression="snappy")
        log.info("Encoded Parquet written: %s", encoded_path.name)
        write_manifest(
            build_manifest(
                run, matrix, quality, parquet_path, defs_path,
                encoding, encoding_path, encoded_path,
            ),
            manifest_path,
        )

        run.target_entity = synth.target_entity
        run.features_built = len(specs)
        run.failed_features = report.failed_features
        run.artifacts = {
            "matrix": str(parquet_path),
            "feature_defs": str(defs_path),
            "encoding": str(encoding_path),
            "encoded_matrix": str(encoded_path),
            "manifest": str(manifest_path),
        }
        return rows
