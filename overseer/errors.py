from __future__ import annotations


class OverseerError(Exception):
    """Base error for overseer."""


class ConfigError(OverseerError):
    """Schedule file validation error."""


class StartupError(OverseerError):
    """Supervisor could not reach a runnable state."""
