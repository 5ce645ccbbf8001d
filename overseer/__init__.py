"""Interval scheduler and process supervisor for isolated collection jobs."""

__version__ = "0.1.0"
