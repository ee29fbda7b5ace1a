"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local env overrides (gitignored)
  4. Environment variables        — ``EPISODE_FORECASTER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The feature build stage and every CLI command receive an ``AppConfig``
instance, never raw dicts or ad-hoc env var lookups.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from episode_forecaster.primitives.library import PrimitiveLibrary, default_library
from episode_forecaster.taxonomy.column_types import CutoffPolicy, EvaluationMode, PrimitiveKind

ENV_PREFIX = "EPISODE_FORECASTER_"

# ── Sub-config models ─────────────────────────────────────────────────────────


class DataConfig(BaseModel):
    """Filesystem paths for entity tables, the schema and build output."""

    model_config = ConfigDict(frozen=True)

    tables_dir: str = "data/tables"
    output_dir: str = "data/features"
    schema_file: str = "config/schema.toml"


class SynthesisConfig(BaseModel):
    """Deep feature synthesis parameters.

    ``agg_primitives`` / ``trans_primitives`` default to every built-in of
    that kind; an empty list disables the kind entirely.
    """

    model_config = ConfigDict(frozen=True)

    target_entity: str = "episodes"
    max_depth: int = 2
    agg_primitives: Optional[list[str]] = None
    trans_primitives: Optional[list[str]] = None
    excluded_columns: list[str] = []
    cutoff_policy: CutoffPolicy = CutoffPolicy.INCLUSIVE
    mode: EvaluationMode = EvaluationMode.STRICT
    max_workers: int = 1
    max_features: Optional[int] = None

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_depth must be >= 0, got {v}.")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_workers must be >= 1, got {v}.")
        return v

    @field_validator("max_features")
    @classmethod
    def validate_max_features(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError(f"max_features must be >= 1 when set, got {v}.")
        return v

    @field_validator("agg_primitives", "trans_primitives")
    @classmethod
    def validate_primitive_names(
        cls, v: Optional[list[str]], info: ValidationInfo
    ) -> Optional[list[str]]:
        if v is None:
            return v
        kind = (
            PrimitiveKind.AGGREGATION if info.field_name == "agg_primitives"
            else PrimitiveKind.TRANSFORM
        )
        known = set(default_library().names(kind))
        unknown = [name for name in v if name not in known]
        if unknown:
            raise ValueError(f"Unknown primitives {unknown}. Known: {sorted(known)}.")
        return v

    def primitive_library(self) -> PrimitiveLibrary:
        """The built-in library restricted to the configured primitive names."""
        library = default_library()
        aggs = self.agg_primitives
        trans = self.trans_primitives
        if aggs is None:
            aggs = library.names(PrimitiveKind.AGGREGATION)
        if trans is None:
            trans = library.names(PrimitiveKind.TRANSFORM)
        return library.subset([*aggs, *trans])


class EncodingConfig(BaseModel):
    """Categorical one-hot encoding settings."""

    model_config = ConfigDict(frozen=True)

    top_n: int = 10
    include_unknown: bool = True

    @field_validator("top_n")
    @classmethod
    def validate_top_n(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"top_n must be >= 1, got {v}.")
        return v


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = ""
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration, the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    data: DataConfig = DataConfig()
    synthesis: SynthesisConfig = SynthesisConfig()
    encoding: EncodingConfig = EncodingConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config explicitly."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    # Also merge local.toml if present (gitignored local overrides)
    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    # 3. Apply EPISODE_FORECASTER_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply EPISODE_FORECASTER_* env vars to the raw config dict.

    Supported overrides:
      EPISODE_FORECASTER_LOG_LEVEL  → raw["logging"]["level"]
      EPISODE_FORECASTER_MAX_DEPTH  → raw["synthesis"]["max_depth"]
      EPISODE_FORECASTER_MODE       → raw["synthesis"]["mode"]
      EPISODE_FORECASTER_DEBUG      → raw["debug"]
    """
    if log_level := os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if max_depth := os.environ.get(f"{ENV_PREFIX}MAX_DEPTH"):
        raw.setdefault("synthesis", {})["max_depth"] = max_depth

    if mode := os.environ.get(f"{ENV_PREFIX}MODE"):
        raw.setdefault("synthesis", {})["mode"] = mode.lower()

    if debug := os.environ.get(f"{ENV_PREFIX}DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        data=DataConfig(**raw.get("data", {})),
        synthesis=SynthesisConfig(**raw.get("synthesis", {})),
        encoding=EncodingConfig(**raw.get("encoding", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
