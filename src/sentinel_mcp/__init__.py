"""Sentinel: tracks whether a coding agent is working and serves that state."""

__version__ = "0.1.0"

__all__ = ["__version__"]
