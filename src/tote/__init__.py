"""Autonomous plan / execute / observe / critique loop for coding tasks."""

__version__ = "0.1.0"
