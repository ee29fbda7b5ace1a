"""Primitive library: named transform and aggregation functions used to build features."""

from episode_forecaster.primitives.base import Primitive
from episode_forecaster.primitives.library import PrimitiveLibrary, default_library

__all__ = ["Primitive", "PrimitiveLibrary", "default_library"]
