"""
Abstract base class for pipeline stages.

Every stage follows the same contract:
  1. Receive ``AppConfig`` at construction.
  2. ``run(**kwargs)`` is the sole public API.
  3. ``run()`` creates a ``RunMetadata`` record, calls ``_execute()``,
     and persists the run record with its final status.
  4. ``_execute()`` is the stage-specific implementation.

Run records are written as JSON to ``<output_dir>/runs/run_<slug>.json``.
Stages never swallow exceptions: a failure is recorded on the run and
re-raised.

Usage::

    class MyStage(PipelineStage):
        stage_name = "feature_build"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            return 42

    run = MyStage(config=app_config).run()
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from uuid import uuid4

from episode_forecaster.config import AppConfig
from episode_forecaster.models.meta import RunMetadata
from episode_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Abstract base for pipeline stages.

    Attributes:
        stage_name: Identifier matching a valid ``RunMetadata.pipeline_stage``.
        config:     The application configuration for this run.
        output_dir: Directory for artifacts and run records.
    """

    stage_name: str

    def __init__(self, config: AppConfig, output_dir: str | Path | None = None) -> None:
        self.config = config
        self.output_dir = Path(output_dir or config.data.output_dir)

    def run(self, **kwargs) -> RunMetadata:
        """Execute this stage and return the finalised ``RunMetadata``.

        Raises:
            Exception: Re-raises any exception from ``_execute()`` after
                recording ``status='failed'`` on the run record.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            config_snapshot=self.config.model_dump(mode="json"),
            started_at=utcnow(),
        )
        logger.info("Stage [%s] starting | run_slug=%s", self.stage_name, run.run_slug)

        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.status = "failed"
            run.error_message = f"{type(exc).__name__}: {exc}"
            run.finished_at = utcnow()
            logger.error(
                "Stage [%s] FAILED: %s | run_slug=%s", self.stage_name, exc, run.run_slug
            )
            self._persist_run(run)
            raise

        run.status = "success"
        run.rows_processed = rows
        run.finished_at = utcnow()
        logger.info(
            "Stage [%s] completed | rows=%d | run_slug=%s",
            self.stage_name, rows, run.run_slug,
        )
        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Stage-specific implementation.

        Args:
            run:      The in-progress ``RunMetadata`` record (mutable).
            **kwargs: Stage-specific parameters.

        Returns:
            Count of rows processed.
        """
        ...

    def run_record_path(self, run: RunMetadata) -> Path:
        return self.output_dir / "runs" / f"run_{run.run_slug}.json"

    def _persist_run(self, run: RunMetadata) -> None:
        """Write ``run`` as JSON.

        Persistence failures are logged, not raised, so they never mask the
        stage's own error.
        """
        path = self.run_record_path(run)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(run.model_dump(mode="json"), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to persist RunMetadata for run_slug=%s: %s", run.run_slug, exc)
