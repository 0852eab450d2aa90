"""
Environment Config Resolver.

Merges the overlay of one named environment onto the base configuration and
produces the single, read-only EffectiveConfig used for the whole run.

Merge policy:
- Every top-level key of the overlay replaces the base key entirely.
- The ``env`` sub-mapping is merged key by key, overlay winning on conflict.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping

from loguru import logger

from suitekit.config.exceptions import UnknownEnvironmentError
from suitekit.session.cache import fingerprint

ENV_KEY = "env"


@dataclass(frozen=True)
class Credentials:
    """
    Login credentials of the environment's default actor.

    Attributes:
        identifier: User name / email.
        secret: Password; never shown in repr or logs.
    """

    identifier: str = ""
    secret: str = field(default="", repr=False)

    @property
    def fingerprint(self) -> str:
        """Opaque, non-reversible reference to this credential pair."""
        return fingerprint(self.identifier, self.secret)

    def __bool__(self) -> bool:
        return bool(self.identifier)


@dataclass(frozen=True)
class EffectiveConfig:
    """
    Base configuration with one environment overlay applied.

    Created once at run start and read-only afterwards. Base fields are
    available as items or attributes::

        config["defaultCommandTimeout"]
        config.timeout
        config.get("retries", 0)

    Attributes:
        name: Environment name the config was resolved for.
        base_url: Application base URL.
        api_url: API base URL.
        environment_label: Display label of the environment.
        credentials: Default actor credentials.
        settings: Full merged mapping (deep read-only).
    """

    name: str
    base_url: str
    api_url: str
    environment_label: str
    credentials: Credentials
    settings: Mapping[str, Any] = field(repr=False)

    def __getitem__(self, key: str) -> Any:
        return self.settings[key]

    def __contains__(self, key: object) -> bool:
        return key in self.settings

    def get(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not dataclass fields.
        settings = self.__dict__.get("settings")
        if settings is None or name.startswith("_") or name not in settings:
            raise AttributeError(
                f"{type(self).__name__!r} has no attribute or setting {name!r}"
            )
        return settings[name]

    @property
    def env(self) -> Mapping[str, Any]:
        """The merged ``env`` sub-mapping."""
        return self.settings.get(ENV_KEY, MappingProxyType({}))

    def to_dict(self) -> Dict[str, Any]:
        """Return a mutable deep copy of the merged settings."""
        return _thaw(self.settings)

    def with_overrides(self, **overrides: Any) -> "EffectiveConfig":
        """
        Return a local copy with top-level settings replaced.

        The run-wide instance is left untouched; use this for per-test
        variations (e.g. a shorter timeout).
        """
        settings = self.to_dict()
        for key, value in overrides.items():
            if key == ENV_KEY and isinstance(value, Mapping):
                settings[ENV_KEY] = {**settings.get(ENV_KEY, {}), **value}
            else:
                settings[key] = copy.deepcopy(value)
        return _build(self.name, settings)

    def __str__(self) -> str:
        return (
            f"EffectiveConfig(env={self.name}, label={self.environment_label}, "
            f"base_url={self.base_url}, api_url={self.api_url}, "
            f"user={self.credentials.identifier or '-'})"
        )


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Shallow-merge an overlay onto a base configuration.

    Args:
        base: Environment-independent settings.
        overlay: Settings of one environment.

    Returns:
        A new dict; neither input is mutated.
    """
    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        base_value = merged.get(key)
        if key == ENV_KEY and isinstance(value, Mapping) and isinstance(base_value, Mapping):
            merged[key] = {**base_value, **copy.deepcopy(dict(value))}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolve(
    name: str,
    base: Mapping[str, Any],
    overlays: Mapping[str, Mapping[str, Any]],
) -> EffectiveConfig:
    """
    Resolve the effective configuration for a named environment.

    Args:
        name: Environment name (e.g., "qa").
        base: Base configuration mapping.
        overlays: Environment name -> overlay mapping, with secrets already
                  resolved to concrete values.

    Returns:
        The immutable EffectiveConfig.

    Raises:
        UnknownEnvironmentError: If no overlay is registered for the name.
    """
    name = (name or "").strip()
    if name not in overlays:
        raise UnknownEnvironmentError(name, overlays.keys())

    config = _build(name, merge_config(base, overlays[name]))
    logger.info(f"Environment resolved: {config}")
    return config


def _build(name: str, settings: Dict[str, Any]) -> EffectiveConfig:
    env = settings.get(ENV_KEY) or {}
    if not isinstance(env, Mapping):
        env = {}

    base_url = _first(env, settings, "baseUrl")
    if not base_url:
        logger.warning(f"Environment '{name}' defines no baseUrl")

    return EffectiveConfig(
        name=name,
        base_url=base_url,
        api_url=_first(env, settings, "apiUrl"),
        environment_label=str(env.get("environment") or name),
        credentials=Credentials(
            identifier=str(env.get("username") or ""),
            secret=str(env.get("password") or ""),
        ),
        settings=_freeze(settings),
    )


def _first(env: Mapping[str, Any], settings: Mapping[str, Any], key: str) -> str:
    """The ``env`` sub-mapping takes precedence over the top level."""
    value = env.get(key)
    if value in (None, ""):
        value = settings.get(key)
    return "" if value is None else str(value)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value
