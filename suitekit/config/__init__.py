"""
Configuration Management Module.

Handles loading, validation and resolution of:
- The base configuration (timeouts, retries, reporter options, run toggles).
- Environment overlays (base URL, API URL, credentials, environment label).
- The resulting read-only EffectiveConfig for one run.
"""

from suitekit.config.exceptions import ConfigurationError, UnknownEnvironmentError
from suitekit.config.loader import ConfigLoader
from suitekit.config.resolver import Credentials, EffectiveConfig, merge_config, resolve
from suitekit.config.schema_registry import (
    SchemaNotFoundError,
    SchemaRegistry,
    SchemaValidationError,
)

__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "Credentials",
    "EffectiveConfig",
    "SchemaNotFoundError",
    "SchemaRegistry",
    "SchemaValidationError",
    "UnknownEnvironmentError",
    "merge_config",
    "resolve",
]
