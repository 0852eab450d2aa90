"""
Custom exceptions for the suitekit.config package.

Kept in one module so the loader, resolver and secret expansion can share
them without circular imports.
"""

from __future__ import annotations

from typing import Iterable

from suitekit.errors import SuitekitError


class ConfigurationError(SuitekitError):
    """Raised when a configuration file is invalid or cannot be loaded."""

    pass


class UnknownEnvironmentError(ConfigurationError):
    """Raised when no overlay is registered for the requested environment."""

    def __init__(self, name: str, available: Iterable[str] = ()) -> None:
        self.name = name
        self.available = sorted(available)
        known = ", ".join(self.available) or "none"
        super().__init__(
            f"Unknown environment '{name}'. Available environments: {known}"
        )
