"""Tideflow: gated autonomous workflow core."""

__version__ = "0.1.0"
