"""
Run metadata: the audit record of one pipeline execution.

Every run records a complete ``config_snapshot`` (the full ``AppConfig`` as a
dict) so the same feature matrix can be rebuilt by restoring that config.

``RunMetadata`` is the only pydantic model in the package that is NOT frozen:
``status``, ``rows_processed``, ``features_built``, ``error_message``,
``artifacts`` and ``finished_at`` are updated while the stage executes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PIPELINE_STAGES = frozenset({"feature_build"})
VALID_RUN_STATUSES = frozenset({"started", "success", "failed"})


class RunMetadata(BaseModel):
    """Pipeline execution audit record.

    Attributes:
        run_slug:        UUID4 string uniquely identifying this run.
        pipeline_stage:  Which stage produced this record.
        status:          Current execution status.
        target_entity:   Entity whose rows the run produced features for.
        config_snapshot: Full ``AppConfig.model_dump(mode="json")`` at run start.
        rows_processed:  Target rows in the produced matrix.
        features_built:  Feature columns in the produced matrix.
        failed_features: Features filled with defaults in lenient mode.
        artifacts:       Artifact kind -> file path written by the stage.
        error_message:   Error description if ``status == "failed"``.
        started_at:      UTC datetime when the run began.
        finished_at:     UTC datetime when the run completed or failed.
    """

    model_config = ConfigDict(frozen=False)

    run_slug: str
    pipeline_stage: str
    status: str = "started"
    target_entity: Optional[str] = None
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    features_built: int = 0
    failed_features: list[str] = []
    artifacts: dict[str, str] = {}
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("pipeline_stage")
    @classmethod
    def validate_pipeline_stage(cls, v: str) -> str:
        if v not in VALID_PIPELINE_STAGES:
            raise ValueError(
                f"Unknown pipeline_stage '{v}'. Must be one of {sorted(VALID_PIPELINE_STAGES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v
