"""
Load schema declarations from a TOML file.

TOML structure::

    [entities.judges]
    index  = "judge_id"
    source = "judges.csv"          # optional; file under data.tables_dir

    [entities.judges.columns]
    judge_id = "identifier"
    court    = "categorical"

    [entities.episodes]
    index      = "episode_id"
    time_index = "aired_at"
    source     = "episodes.parquet"

    [entities.episodes.columns]
    episode_id = "identifier"
    judge_id   = "identifier"
    aired_at   = "timestamp"
    amount     = "numeric"

    [[relationships]]
    parent     = "judges"
    parent_key = "judge_id"
    child      = "episodes"
    child_key  = "judge_id"

Entities are registered in file order, then relationships in list order, so
planning over a loaded schema is reproducible.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from episode_forecaster.errors import SchemaError
from episode_forecaster.schema.registry import SchemaBuilder, SchemaRegistry


def schema_from_dict(raw: dict[str, Any]) -> SchemaRegistry:
    """Build a ``SchemaRegistry`` from an already-parsed TOML/JSON dict.

    Raises:
        SchemaError: If a block is missing required keys or fails validation.
    """
    builder = SchemaBuilder()

    for name, block in raw.get("entities", {}).items():
        if "index" not in block:
            raise SchemaError(f"Entity '{name}' is missing the 'index' key.", entity=name)
        builder.register_entity(
            name,
            index_column=block["index"],
            time_column=block.get("time_index"),
            columns=block.get("columns", {}),
            unique_columns=tuple(block.get("unique", ())),
        )

    for i, rel in enumerate(raw.get("relationships", [])):
        missing = [k for k in ("parent", "parent_key", "child", "child_key") if k not in rel]
        if missing:
            raise SchemaError(f"Relationship #{i} is missing keys: {missing}.")
        builder.register_relationship(
            rel["parent"], rel["parent_key"], rel["child"], rel["child_key"]
        )

    return builder.build()


def table_sources(raw: dict[str, Any]) -> dict[str, str]:
    """Return entity name -> ``source`` file name for entities that declare one."""
    return {
        name: block["source"]
        for name, block in raw.get("entities", {}).items()
        if "source" in block
    }


def load_schema_file(path: Path) -> tuple[SchemaRegistry, dict[str, str]]:
    """Parse a schema TOML file.

    Returns:
        ``(schema, sources)`` where ``sources`` maps entity names to their
        table file names.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        tomllib.TOMLDecodeError: If the TOML is malformed.
        SchemaError: If the declarations are invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Schema file not found: {path}")
    with open(path, "rb") as f:
        raw = tomllib.load(f)
    return schema_from_dict(raw), table_sources(raw)
