"""
Configuration Loader Module.

Provides the loader that handles:
- Loading YAML and JSON configuration files.
- Schema validation of the base file and every environment overlay.
- Secret reference expansion (``${VAR:-default}``) in overlays.
- Resolution of the effective configuration for a named environment.

Expected layout::

    config/
        base.yaml                 # environment-independent settings
        environments/
            dev.yaml              # one overlay per environment
            qa.yaml
            ...
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import yaml
from loguru import logger

from suitekit.config.exceptions import ConfigurationError
from suitekit.config.resolver import EffectiveConfig, resolve
from suitekit.config.schema_registry import SchemaRegistry
from suitekit.config.secrets import build_environ, expand_env_refs

BASE_SCHEMA = "base_schema"
OVERLAY_SCHEMA = "overlay_schema"

# Suffix -> text parser, in lookup order for a file stem.
PARSERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}
PARSE_ERRORS = (yaml.YAMLError, json.JSONDecodeError)


class ConfigLoader:
    """
    Configuration loader with schema validation and secret expansion.

    Attributes:
        config_dir: Base directory for configuration files.
        environments_dir: Directory holding one overlay file per environment.
        schema_registry: Registry of JSON schemas for validation.
    """

    BASE_STEM = "base"
    ENVIRONMENTS_SUBDIR = "environments"

    def __init__(
        self,
        config_dir: str | Path = "config",
        schema_dir: str | Path | None = None,
        env_file: str | Path | None = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """
        Initialize the configuration loader.

        Args:
            config_dir: Path to the directory containing configuration files.
            schema_dir: Path to the JSON schema directory. Defaults to the
                        schemas bundled with suitekit.
            env_file: Optional dotenv file consulted for secret references.
            environ: Process environment override (defaults to os.environ).
        """
        self.config_dir = Path(config_dir)
        self.environments_dir = self.config_dir / self.ENVIRONMENTS_SUBDIR
        self.schema_registry = SchemaRegistry(schema_dir)
        self._env_file = env_file
        self._environ = environ
        self._cache: Dict[str, Dict[str, Any]] = {}

        logger.debug(f"ConfigLoader initialized: config_dir={self.config_dir}")

    def load(
        self,
        filename: str | Path,
        schema_name: Optional[str] = None,
        *,
        validate: bool = True,
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """
        Load a configuration file with optional schema validation.

        Args:
            filename: Name or relative path of the config file within config_dir.
            schema_name: JSON schema name to validate against (without extension).
            validate: Whether to validate against the schema.
            use_cache: Whether to use cached config if available.

        Returns:
            Parsed configuration as a dictionary.

        Raises:
            ConfigurationError: If the file is missing or does not load cleanly.
        """
        path = self._locate(filename)
        cache_key = str(path.resolve())
        cached = self._cache.get(cache_key) if use_cache else None
        if cached is not None:
            return cached

        data = self._parse(path)
        if validate and schema_name:
            self.schema_registry.validate(data, schema_name, source=str(path))
        logger.debug(f"Loaded {path} ({len(data)} key(s))")

        if use_cache:
            self._cache[cache_key] = data
        return data

    def load_base(self) -> Dict[str, Any]:
        """
        Load the environment-independent base configuration.

        Returns:
            The base mapping, or an empty dict when no base file exists.
        """
        path = self._find_by_stem(self.config_dir, self.BASE_STEM)
        if path is None:
            logger.warning(
                f"No {self.BASE_STEM}.yaml/.yml/.json in {self.config_dir}, "
                f"using an empty base configuration"
            )
            return {}
        return self.load(path, schema_name=BASE_SCHEMA)

    def load_overlays(self) -> Dict[str, Dict[str, Any]]:
        """
        Load every environment overlay, with secret references expanded.

        Returns:
            Environment name (file stem) -> overlay mapping.

        Raises:
            ConfigurationError: If an overlay is invalid, two files define the
                                same environment, or a required variable is unset.
        """
        if not self.environments_dir.is_dir():
            logger.warning(f"No environments directory at {self.environments_dir}")
            return {}

        environ = build_environ(self._env_file, self._environ)
        overlays: Dict[str, Dict[str, Any]] = {}
        for path in self._overlay_files():
            if path.stem in overlays:
                raise ConfigurationError(
                    f"Environment '{path.stem}' is defined more than once in "
                    f"{self.environments_dir}"
                )
            raw = self.load(path, schema_name=OVERLAY_SCHEMA)
            overlays[path.stem] = expand_env_refs(raw, environ, source=str(path))

        logger.debug(f"Loaded {len(overlays)} environment overlay(s): {sorted(overlays)}")
        return overlays

    def available_environments(self) -> List[str]:
        """Names of all environments with an overlay file."""
        return sorted({path.stem for path in self._overlay_files()})

    def resolve(self, name: str) -> EffectiveConfig:
        """
        Load the base and overlays, then resolve the named environment.

        Raises:
            UnknownEnvironmentError: If no overlay exists for the name.
            ConfigurationError: If any configuration file is invalid.
        """
        logger.info(f"Resolving environment '{name}' from {self.config_dir}")
        return resolve(name, self.load_base(), self.load_overlays())

    def clear_cache(self) -> None:
        """Drop parsed files so the next load reads them again."""
        self._cache.clear()

    def _overlay_files(self) -> Iterator[Path]:
        if not self.environments_dir.is_dir():
            return
        for path in sorted(self.environments_dir.iterdir()):
            if path.is_file() and path.suffix.lower() in PARSERS:
                yield path

    def _find_by_stem(self, directory: Path, stem: str) -> Optional[Path]:
        for suffix in PARSERS:
            candidate = directory / f"{stem}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def _locate(self, filename: str | Path) -> Path:
        """config_dir first, then the name as given (absolute or from the cwd)."""
        for candidate in (self.config_dir / filename, Path(filename)):
            if candidate.is_file():
                return candidate
        raise ConfigurationError(
            f"Configuration file not found: {filename} "
            f"(looked in {self.config_dir} and the working directory)"
        )

    def _parse(self, path: Path) -> Dict[str, Any]:
        parser = PARSERS.get(path.suffix.lower())
        if parser is None:
            raise ConfigurationError(
                f"Unsupported file format '{path.suffix}' for {path}. "
                f"Supported: {', '.join(PARSERS)}"
            )
        try:
            data = parser(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Failed to read {path}: {e}") from e
        except PARSE_ERRORS as e:
            raise ConfigurationError(f"Failed to parse {path}: {e}") from e

        # An empty file is an environment with no overrides.
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping (dict), "
                f"got {type(data).__name__}: {path}"
            )
        return data
