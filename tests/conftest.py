"""
Root conftest.py: shared Pytest fixtures.

Provides fixtures for:
- Sample base configuration and environment overlays
- A temporary config directory laid out as suitekit expects
- pytester, for end-to-end plugin runs
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import yaml

pytest_plugins = ["pytester"]


# ---------------------------------------------------------------------------
# Configuration Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_base_config() -> Dict[str, Any]:
    """Return a base configuration dictionary."""
    return {
        "timeout": 10000,
        "defaultCommandTimeout": 10000,
        "responseTimeout": 5000,
        "retries": {"runMode": 2, "openMode": 0},
        "env": {
            "grepFilterSpecs": False,
            "grepOmitFiltered": True,
        },
    }


@pytest.fixture
def sample_overlays() -> Dict[str, Dict[str, Any]]:
    """Return overlays for the dev and qa environments."""
    return {
        "dev": {
            "baseUrl": "https://dev.example.com",
            "env": {
                "apiUrl": "https://dev.example.com/api",
                "environment": "dev",
                "username": "dev@example.com",
                "password": "DevPassword1!",
            },
        },
        "qa": {
            "baseUrl": "https://qa.example.com",
            "retries": {"runMode": 0},
            "env": {
                "apiUrl": "https://qa.example.com/api",
                "environment": "qa",
                "username": "qa@example.com",
                "password": "QaPassword1!",
                "grepOmitFiltered": False,
            },
        },
    }


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """
    Factory writing a suitekit config directory under tmp_path.

    Usage::

        config_dir = write_config(base={...}, overlays={"qa": {...}})
    """

    def _write(
        base: Dict[str, Any] | None = None,
        overlays: Dict[str, Dict[str, Any]] | None = None,
        root: Path | None = None,
    ) -> Path:
        config_dir = (root or tmp_path) / "config"
        env_dir = config_dir / "environments"
        env_dir.mkdir(parents=True, exist_ok=True)
        if base is not None:
            (config_dir / "base.yaml").write_text(yaml.safe_dump(base), encoding="utf-8")
        for name, overlay in (overlays or {}).items():
            (env_dir / f"{name}.yaml").write_text(yaml.safe_dump(overlay), encoding="utf-8")
        return config_dir

    return _write


@pytest.fixture
def config_dir(
    write_config: Callable[..., Path],
    sample_base_config: Dict[str, Any],
    sample_overlays: Dict[str, Dict[str, Any]],
) -> Path:
    """A config directory populated with the sample base and overlays."""
    return write_config(base=sample_base_config, overlays=sample_overlays)
