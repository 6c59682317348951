"""Burn GPS track overlays (speed gauge, info panel, mini-map) into videos."""

__version__ = "0.1.0"
