"""Kura: hybrid search over captured personal knowledge."""

__version__ = "0.1.0"
