"""
Pytest Plugin: environment resolution, tag filtering and session fixtures.

Enable it per project with ``pytest_plugins = ["suitekit.plugin"]`` in the
root conftest.py, or per run with ``pytest -p suitekit.plugin``.

Provides:
- CLI options: --suite-env, --suite-config-dir, --suite-env-file, --grep-tags,
  --grep, --[no-]grep-filter-specs, --[no-]grep-omit-filtered
- The ``tags`` marker (functions, classes, module ``pytestmark``)
- Fixtures: effective_config, session_cache, credentials, authenticated_session

Run lifecycle:
1. pytest_configure: resolve the environment and parse the filter, once.
   Any configuration or filter error aborts the run before collection.
2. pytest_ignore_collect: with filter specs on, skip files whose statically
   declared tags match no test.
3. pytest_collection_modifyitems: run, skip or deselect each test.
4. pytest_unconfigure: release all cached sessions.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional

import pytest
import requests
from loguru import logger

from suitekit.config import (
    ConfigLoader,
    ConfigurationError,
    Credentials,
    EffectiveConfig,
)
from suitekit.session import SessionCache, cached_login
from suitekit.tags.discovery import TAGS_MARKER, scan_spec_file
from suitekit.tags.evaluator import Decision, FilterOptions, TagFilter
from suitekit.tags.model import InvalidTagError, TagSet, tags_from_marker_args
from suitekit.tags.parser import ParseError

DEFAULT_ENVIRONMENT = "local"
ENVIRONMENT_VARIABLE = "SUITE_ENV"


@dataclass
class RunState:
    """Everything resolved once at run start and shared by all hooks."""

    config: EffectiveConfig
    tag_filter: TagFilter
    session_cache: SessionCache = field(default_factory=SessionCache)
    ignored_specs: List[str] = field(default_factory=list)


RUN_STATE = pytest.StashKey[RunState]()
ITEM_TAGS = pytest.StashKey[TagSet]()


# ---------------------------------------------------------------------------
# CLI Options
# ---------------------------------------------------------------------------


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add suitekit CLI and ini options."""
    group = parser.getgroup("suitekit", "environment and tag filtering")
    group.addoption(
        "--suite-env",
        dest="suite_env",
        default=None,
        help=f"Environment to run against. Default: ${ENVIRONMENT_VARIABLE}, "
             f"ini suitekit_env, or '{DEFAULT_ENVIRONMENT}'",
    )
    group.addoption(
        "--suite-config-dir",
        dest="suite_config_dir",
        default=None,
        help="Directory with base.yaml and environments/. Default: ini "
             "suitekit_config_dir or 'config' under rootdir",
    )
    group.addoption(
        "--suite-env-file",
        dest="suite_env_file",
        default=None,
        help="dotenv file for secret references. Default: .env under rootdir",
    )
    group.addoption(
        "--grep-tags",
        dest="grep_tags",
        default=None,
        help="Tag filter expression, e.g. '@smoke+@critical -@skip'. "
             "Default: env.grepTags from the configuration",
    )
    group.addoption(
        "--grep",
        dest="grep_title",
        default=None,
        help="';'-separated title substrings; prefix with '-' to exclude",
    )
    group.addoption(
        "--grep-filter-specs",
        action="store_true",
        dest="grep_filter_specs",
        default=None,
        help="Skip loading test files with no matching test",
    )
    group.addoption(
        "--no-grep-filter-specs",
        action="store_false",
        dest="grep_filter_specs",
        default=None,
        help="Load every test file regardless of the tag filter",
    )
    group.addoption(
        "--grep-omit-filtered",
        action="store_true",
        dest="grep_omit_filtered",
        default=None,
        help="Deselect non-matching tests instead of reporting them skipped",
    )
    group.addoption(
        "--no-grep-omit-filtered",
        action="store_false",
        dest="grep_omit_filtered",
        default=None,
        help="Report non-matching tests as skipped",
    )
    parser.addini("suitekit_env", "Default environment name", default=DEFAULT_ENVIRONMENT)
    parser.addini("suitekit_config_dir", "Configuration directory", default="config")


# ---------------------------------------------------------------------------
# Run Setup / Teardown
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register the tags marker, resolve the environment and parse the filter."""
    config.addinivalue_line(
        "markers",
        f"{TAGS_MARKER}(*labels): Tags used by --grep-tags, e.g. tags('@smoke', '@api')",
    )

    if config.getoption("help", False) or config.getoption("version", False):
        return

    try:
        state = build_run_state(config)
    except (ConfigurationError, ParseError) as e:
        logger.error(f"Run aborted: {e}")
        raise pytest.UsageError(str(e)) from e

    config.stash[RUN_STATE] = state


def build_run_state(config: pytest.Config) -> RunState:
    """
    Resolve the EffectiveConfig and the TagFilter for this run.

    Raises:
        UnknownEnvironmentError: If the environment has no overlay.
        ConfigurationError: If a configuration file is invalid.
        ParseError: If the tag filter is malformed.
    """
    env_name = (
        config.getoption("suite_env")
        or os.environ.get(ENVIRONMENT_VARIABLE)
        or config.getini("suitekit_env")
        or DEFAULT_ENVIRONMENT
    )
    config_dir = _rooted(config, config.getoption("suite_config_dir")
                         or config.getini("suitekit_config_dir"))
    env_file = _rooted(config, config.getoption("suite_env_file") or ".env")

    effective = ConfigLoader(config_dir, env_file=env_file).resolve(env_name)

    options = FilterOptions(
        filter_specs=_toggle(config, "grep_filter_specs", effective, "grepFilterSpecs"),
        omit_filtered=_toggle(config, "grep_omit_filtered", effective, "grepOmitFiltered"),
    )
    raw_tags = config.getoption("grep_tags")
    if raw_tags is None:
        raw_tags = effective.env.get("grepTags", "")
    title_grep = config.getoption("grep_title")
    if title_grep is None:
        title_grep = effective.env.get("grep", "")

    tag_filter = TagFilter(raw_tags, options, title_grep=title_grep)
    logger.info(f"Run configured: {effective} | filter: {tag_filter.describe()}")
    return RunState(config=effective, tag_filter=tag_filter)


def pytest_report_header(config: pytest.Config) -> Optional[List[str]]:
    state = config.stash.get(RUN_STATE, None)
    if state is None:
        return None
    return [
        f"suitekit: env={state.config.name} ({state.config.environment_label}), "
        f"baseUrl={state.config.base_url or '-'}",
        f"suitekit filter: {state.tag_filter.describe()}",
    ]


def pytest_unconfigure(config: pytest.Config) -> None:
    state = config.stash.get(RUN_STATE, None)
    if state is not None:
        state.session_cache.clear()


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


def pytest_ignore_collect(collection_path: Path, config: pytest.Config) -> Optional[bool]:
    """With filter specs on, skip test files that contain no matching test."""
    state = config.stash.get(RUN_STATE, None)
    if state is None:
        return None

    tag_filter = state.tag_filter
    if not tag_filter.options.filter_specs or tag_filter.is_universal:
        return None
    if collection_path.suffix != ".py" or not _is_test_module(collection_path, config):
        return None

    scan = scan_spec_file(collection_path)
    if not scan.exact or tag_filter.should_load_spec(scan.as_pairs()):
        return None

    logger.info(f"Spec filtered out (no matching tests): {collection_path}")
    state.ignored_specs.append(str(collection_path))
    return True


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    """Decide run / skip / omit for every collected test."""
    state = config.stash.get(RUN_STATE, None)
    if state is None:
        return

    tag_filter = state.tag_filter
    selected: List[pytest.Item] = []
    deselected: List[pytest.Item] = []
    skipped = 0
    skip_marker = pytest.mark.skip(reason=f"filtered out ({tag_filter.describe()})")

    for item in items:
        decision = tag_filter.decide(item_tags(item), _title(item))
        logger.debug(f"{item.nodeid}: {decision.value}")
        if decision is Decision.OMIT:
            deselected.append(item)
            continue
        if decision is Decision.SKIP:
            item.add_marker(skip_marker)
            skipped += 1
        selected.append(item)

    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = selected

    logger.info(
        f"Tag filter applied: {len(selected) - skipped} to run, {skipped} skipped, "
        f"{len(deselected)} omitted, {len(state.ignored_specs)} spec file(s) not loaded"
    )


def item_tags(item: pytest.Item) -> TagSet:
    """
    Effective tags of a collected test: its own ``tags`` markers united with
    those of its class and module. Computed once and cached on the item.
    """
    cached = item.stash.get(ITEM_TAGS, None)
    if cached is not None:
        return cached

    tags = TagSet()
    try:
        for marker in item.iter_markers(name=TAGS_MARKER):
            tags = tags.union(tags_from_marker_args(marker.args))
    except InvalidTagError as e:
        raise pytest.UsageError(f"{item.nodeid}: {e}") from e

    item.stash[ITEM_TAGS] = tags
    return tags


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def effective_config(pytestconfig: pytest.Config) -> EffectiveConfig:
    """The read-only configuration resolved for this run."""
    return _run_state(pytestconfig).config


@pytest.fixture(scope="session")
def session_cache(pytestconfig: pytest.Config) -> SessionCache:
    """The run's session cache; one per pytest process."""
    return _run_state(pytestconfig).session_cache


@pytest.fixture(scope="session")
def credentials(effective_config: EffectiveConfig) -> Credentials:
    """Default actor credentials of the selected environment."""
    return effective_config.credentials


@pytest.fixture
def authenticated_session(
    session_cache: SessionCache,
    effective_config: EffectiveConfig,
) -> requests.Session:
    """
    API session of the default actor, logged in once per run.

    A login failure errors only the requesting test; the next test retries.
    """
    return cached_login(session_cache, effective_config)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_state(config: pytest.Config) -> RunState:
    state = config.stash.get(RUN_STATE, None)
    if state is None:
        raise RuntimeError("suitekit run state is not initialized")
    return state


def _rooted(config: pytest.Config, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else config.rootpath / path


def _toggle(config: pytest.Config, dest: str, effective: EffectiveConfig, key: str) -> bool:
    """CLI flag wins; otherwise the env setting from the configuration."""
    value = config.getoption(dest)
    if value is None:
        value = effective.env.get(key, False)
    return bool(value)


def _is_test_module(path: Path, config: pytest.Config) -> bool:
    return any(fnmatch(path.name, pattern) for pattern in config.getini("python_files"))


def _title(item: pytest.Item) -> str:
    """Node id without the file part, e.g. 'TestLogin::test_valid[param]'."""
    return item.nodeid.split("::", 1)[-1]
