"""
Secret Reference Expansion.

Overlay values may reference external variables instead of carrying secrets::

    username: ${QA_USERNAME:-test@example.com}   # fallback when unset or empty
    password: ${QA_PASSWORD}                     # required

Values are looked up in a ``.env`` file (if given) overridden by the process
environment, so CI variables always win over local developer files.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import dotenv_values
from loguru import logger

from suitekit.config.exceptions import ConfigurationError

# ${NAME} or ${NAME:-default}; names restricted to identifier characters.
_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def build_environ(
    env_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Build the variable lookup table for secret expansion.

    Args:
        env_file: Optional path to a dotenv file. Missing files are ignored.
        environ: Process environment (defaults to os.environ).

    Returns:
        Merged mapping; process environment wins over the dotenv file.
    """
    values: Dict[str, str] = {}
    if env_file is not None:
        path = Path(env_file)
        if path.is_file():
            values.update(
                {k: v for k, v in dotenv_values(path).items() if v is not None}
            )
            logger.debug(f"Loaded {len(values)} variable(s) from {path}")
        else:
            logger.debug(f"No dotenv file at {path}")

    values.update(os.environ if environ is None else environ)
    return values


def expand_env_refs(value: Any, environ: Mapping[str, str], source: str = "") -> Any:
    """
    Recursively replace ${VAR} / ${VAR:-default} references.

    Args:
        value: A scalar, mapping or list from a parsed config file.
        environ: Variable lookup table (see build_environ()).
        source: Description of where the value came from, for error messages.

    Returns:
        A new structure with every reference replaced by a concrete value.

    Raises:
        ConfigurationError: If a reference without a default names an unset
                            variable. The message names the variable only.
    """
    if isinstance(value, dict):
        return {k: expand_env_refs(v, environ, source) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_refs(v, environ, source) for v in value]
    if not isinstance(value, str) or "${" not in value:
        return value

    def _substitute(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        resolved = environ.get(name)
        if resolved:
            return resolved
        if default is not None:
            return default
        if resolved is not None:
            return resolved
        where = f" in {source}" if source else ""
        raise ConfigurationError(
            f"Environment variable '{name}' is not set{where} and has no default"
        )

    return _REFERENCE.sub(_substitute, value)
