"""
Episode Forecaster — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute the action (plan, build).
  5. Report the result to stdout.

Install and run::

    pip install -e .
    episode-forecaster --help
    episode-forecaster validate-config
    episode-forecaster plan --max-depth 1
    episode-forecaster build-features --tables-dir data/tables
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from episode_forecaster.errors import SynthesisError

app = typer.Typer(
    name="episode-forecaster",
    help="Leakage-safe deep feature synthesis for episodic event tables.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from episode_forecaster.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from episode_forecaster.utils.logging import configure_logging
    configure_logging(config.logging, debug=config.debug)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)
    synth = config.synthesis

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Schema file:      {config.data.schema_file}")
    typer.echo(f"  Tables dir:       {config.data.tables_dir}")
    typer.echo(f"  Output dir:       {config.data.output_dir}")
    typer.echo(f"  Target entity:    {synth.target_entity}")
    typer.echo(f"  Max depth:        {synth.max_depth}")
    typer.echo(f"  Cutoff policy:    {synth.cutoff_policy.value}")
    typer.echo(f"  Mode:             {synth.mode.value}")
    typer.echo(f"  Workers:          {synth.max_workers}")
    typer.echo(f"  Log level:        {config.logging.level}")

    if show_full:
        import json
        typer.echo("")
        typer.echo(json.dumps(config.model_dump(mode="json"), indent=2))


@app.command("plan")
def plan_features(
    schema_file: Optional[str] = typer.Option(
        None,
        "--schema",
        help="Schema TOML file. Defaults to config.data.schema_file.",
    ),
    max_depth: Optional[int] = typer.Option(
        None,
        "--max-depth",
        help="Override config.synthesis.max_depth.",
    ),
    save: Optional[str] = typer.Option(
        None,
        "--save",
        help="Write the planned feature definitions to this JSON file.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Print the planned feature names without evaluating any data."""
    from episode_forecaster.schema.loader import load_schema_file
    from episode_forecaster.synthesis.planner import plan
    from episode_forecaster.synthesis.serialize import save_features

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    synth = config.synthesis

    depth = synth.max_depth if max_depth is None else max_depth
    try:
        schema, _ = load_schema_file(Path(schema_file or config.data.schema_file))
        specs = plan(
            schema,
            synth.target_entity,
            synth.primitive_library(),
            depth,
            excluded_columns=synth.excluded_columns,
            max_features=synth.max_features,
        )
    except (FileNotFoundError, SynthesisError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    for spec in specs:
        typer.echo(f"  [d{spec.depth}] {spec.name}")
    typer.echo("")
    typer.echo(f"{len(specs)} features planned for '{synth.target_entity}' (max_depth={depth}).")

    if save:
        save_features(specs, Path(save))
        typer.echo(f"Feature definitions written to {save}")


@app.command("build-features")
def build_features(
    tables_dir: Optional[str] = typer.Option(
        None,
        "--tables-dir",
        help="Directory holding the entity tables. Defaults to config.data.tables_dir.",
    ),
    schema_file: Optional[str] = typer.Option(
        None,
        "--schema",
        help="Schema TOML file. Defaults to config.data.schema_file.",
    ),
    features_file: Optional[str] = typer.Option(
        None,
        "--features",
        help="Re-score saved feature definitions instead of planning.",
    ),
    encoding_file: Optional[str] = typer.Option(
        None,
        "--encoding",
        help="Apply a saved encoding state instead of fitting one.",
    ),
    output_dir: Optional[str] = typer.Option(
        None,
        "--output-dir",
        help="Override config.data.output_dir.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Run deep feature synthesis and write the matrix as Parquet + manifest."""
    from episode_forecaster.pipeline.feature_build import FeatureBuildStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    stage = FeatureBuildStage(config=config, output_dir=output_dir)
    try:
        run = stage.run(
            tables_dir=tables_dir,
            schema_file=schema_file,
            features_file=features_file,
            encoding_file=encoding_file,
        )
    except (FileNotFoundError, ValueError, SynthesisError) as exc:
        typer.echo(f"[ERROR] Feature build failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Feature build complete | run_slug={run.run_slug}")
    typer.echo(f"  Rows:     {run.rows_processed}")
    typer.echo(f"  Features: {run.features_built}")
    if run.failed_features:
        typer.echo(f"  Failed (filled with defaults): {', '.join(run.failed_features)}")
    for kind, path in run.artifacts.items():
        typer.echo(f"  {kind:<13} {path}")


if __name__ == "__main__":
    app()
