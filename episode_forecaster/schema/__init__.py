"""Schema registry: entity and relationship declarations for one synthesis run."""

from episode_forecaster.schema.registry import SchemaBuilder, SchemaRegistry

__all__ = ["SchemaBuilder", "SchemaRegistry"]
