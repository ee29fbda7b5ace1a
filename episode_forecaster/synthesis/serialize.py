"""
JSON persistence for planned FeatureSpecs.

A saved plan lets a fitted model be re-scored on new data with exactly the same
column set: ``load_features()`` rebuilds each spec against the current schema
and primitive library, and fails loudly if either no longer supports it.

File layout::

    {
      "format_version": 1,
      "features": [
        {"name": "SUM(rulings.damages)", "spec": {"type": "aggregation", ...}},
        ...
      ]
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Sequence

from episode_forecaster.errors import SchemaError
from episode_forecaster.models.schema import RelationshipDef
from episode_forecaster.primitives.library import PrimitiveLibrary
from episode_forecaster.schema.registry import SchemaRegistry
from episode_forecaster.synthesis.spec import (
    AggregationFeature,
    BaseFeature,
    DirectFeature,
    FeatureSpec,
    TransformFeature,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def spec_to_dict(spec: FeatureSpec) -> dict[str, Any]:
    """Encode one spec tree as JSON-compatible dicts."""
    if isinstance(spec, BaseFeature):
        return {
            "type": "base",
            "entity": spec.entity,
            "column": spec.column,
            "column_type": spec.output_type.value,
        }
    if isinstance(spec, TransformFeature):
        return {
            "type": "transform",
            "primitive": spec.primitive.name,
            "args": [spec_to_dict(a) for a in spec.args],
        }
    if isinstance(spec, AggregationFeature):
        return {
            "type": "aggregation",
            "primitive": spec.primitive.name,
            "path": [r.model_dump() for r in spec.path],
            "path_labels": list(spec.path_labels),
            "child": spec_to_dict(spec.child),
        }
    if isinstance(spec, DirectFeature):
        return {
            "type": "direct",
            "relationship": spec.relationship.model_dump(),
            "label": spec.label,
            "child": spec_to_dict(spec.child),
        }
    raise TypeError(f"Cannot serialize feature node {spec!r}.")


def spec_from_dict(
    raw: dict[str, Any],
    schema: SchemaRegistry,
    library: PrimitiveLibrary,
) -> FeatureSpec:
    """Rebuild a spec tree, resolving columns, relationships and primitives.

    Raises:
        SchemaError: An entity, column or relationship is not in ``schema``.
        PrimitiveError: A primitive name is not in ``library``.
    """
    kind = raw.get("type")
    if kind == "base":
        entity = schema.entity(raw["entity"])
        column = raw["column"]
        if column not in entity.columns:
            raise SchemaError(
                f"Saved feature uses unknown column '{entity.name}.{column}'.",
                entity=entity.name,
                column=column,
            )
        return BaseFeature(entity.name, column, entity.column_type(column))
    if kind == "transform":
        args = tuple(spec_from_dict(a, schema, library) for a in raw["args"])
        return TransformFeature(library.get(raw["primitive"]), args)
    if kind == "aggregation":
        path = tuple(_relationship(r, schema) for r in raw["path"])
        return AggregationFeature(
            library.get(raw["primitive"]),
            path,
            spec_from_dict(raw["child"], schema, library),
            path_labels=tuple(raw.get("path_labels") or ()) or None,
        )
    if kind == "direct":
        return DirectFeature(
            _relationship(raw["relationship"], schema),
            spec_from_dict(raw["child"], schema, library),
            label=raw.get("label"),
        )
    raise SchemaError(f"Unknown saved feature type {kind!r}.")


def _relationship(raw: dict[str, Any], schema: SchemaRegistry) -> RelationshipDef:
    rel = RelationshipDef(**raw)
    if not schema.has_relationship(rel):
        raise SchemaError(f"Saved feature uses unregistered relationship {rel.name}.")
    return rel


def save_features(specs: Sequence[FeatureSpec], path: Path) -> Path:
    """Write ``specs`` to ``path`` as JSON.  Returns the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "format_version": FORMAT_VERSION,
        "features": [{"name": s.name, "spec": spec_to_dict(s)} for s in specs],
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("Saved %d feature definitions -> %s", len(specs), path)
    return path


def load_features(
    path: Path,
    schema: SchemaRegistry,
    library: PrimitiveLibrary,
) -> list[FeatureSpec]:
    """Load specs saved by ``save_features()``, in their saved order.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        SchemaError: On an unsupported format version, a schema mismatch, or a
            rebuilt name that differs from the saved one.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Feature definitions not found: {path}")
    payload = json.loads(path.read_text(encoding="utf-8"))

    version = payload.get("format_version")
    if version != FORMAT_VERSION:
        raise SchemaError(f"Unsupported feature file format version {version!r}.")

    specs: list[FeatureSpec] = []
    for entry in payload.get("features", []):
        spec = spec_from_dict(entry["spec"], schema, library)
        if spec.name != entry["name"]:
            raise SchemaError(
                f"Saved feature '{entry['name']}' rebuilt as '{spec.name}'."
            )
        specs.append(spec)
    logger.info("Loaded %d feature definitions from %s", len(specs), path)
    return specs
