"""
Schema Registry Module.

Base and overlay files are checked against Draft-07 JSON schemas looked up
by name (``base_schema``, ``overlay_schema``). The schemas bundled with the
package are used unless a project points the registry at its own directory.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
from loguru import logger

from suitekit.config.exceptions import ConfigurationError

BUNDLED_SCHEMA_DIR = Path(__file__).parent / "schemas"


class SchemaNotFoundError(ConfigurationError):
    """Raised when no schema file exists for a name."""

    pass


class SchemaValidationError(ConfigurationError):
    """Raised when a configuration fails schema validation."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def _describe(error: jsonschema.ValidationError) -> str:
    location = "/".join(str(part) for part in error.absolute_path) or "<root>"
    return f"{location}: {error.message}"


class SchemaRegistry:
    """
    Compiled validators keyed by schema name (file stem), built on first use.

    Attributes:
        schema_dir: Directory containing ``<name>.json`` schema files.
    """

    def __init__(self, schema_dir: Optional[str | Path] = None) -> None:
        self.schema_dir = Path(schema_dir) if schema_dir else BUNDLED_SCHEMA_DIR
        self._validators: Dict[str, jsonschema.Draft7Validator] = {}

    def get_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Return the schema document for a name.

        Raises:
            SchemaNotFoundError: No ``<schema_name>.json`` in the schema directory.
            ConfigurationError: The schema file is unreadable or not a valid schema.
        """
        return self._validator(schema_name).schema

    def validate(self, data: Dict[str, Any], schema_name: str, source: str = "") -> None:
        """
        Validate a configuration mapping, reporting every violation at once.

        Raises:
            SchemaValidationError: Listing each violation as ``path: message``.
        """
        violations = sorted(
            self._validator(schema_name).iter_errors(data),
            key=lambda e: [str(part) for part in e.absolute_path],
        )
        if not violations:
            return

        problems = [_describe(v) for v in violations]
        raise SchemaValidationError(
            f"{source or 'Configuration'} does not match {schema_name} "
            f"({len(problems)} error(s)):\n" + "\n".join(f"  - {p}" for p in problems),
            errors=problems,
        )

    def list_schemas(self) -> List[str]:
        """Names of the schemas available in the schema directory."""
        return sorted(path.stem for path in self.schema_dir.glob("*.json"))

    def _validator(self, schema_name: str) -> jsonschema.Draft7Validator:
        validator = self._validators.get(schema_name)
        if validator is not None:
            return validator

        path = self.schema_dir / f"{schema_name}.json"
        if not path.is_file():
            raise SchemaNotFoundError(f"No schema named '{schema_name}' in {self.schema_dir}")
        try:
            schema = json.loads(path.read_text(encoding="utf-8"))
            jsonschema.Draft7Validator.check_schema(schema)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot read schema {path}: {e}") from e
        except jsonschema.SchemaError as e:
            raise ConfigurationError(f"Invalid schema {path}: {e.message}") from e

        validator = self._validators[schema_name] = jsonschema.Draft7Validator(schema)
        logger.debug(f"Schema compiled: {schema_name} ({path})")
        return validator
