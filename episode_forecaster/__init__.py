"""Episode Forecaster — leakage-safe deep feature synthesis for episodic event data."""

__version__ = "0.3.0"
