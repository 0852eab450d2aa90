"""
Suitekit Command Line.

Validates the environment and the tag filter before any test is collected,
then runs pytest with the suitekit plugin enabled.

Usage:
    suitekit run --env qa --grep-tags "@smoke -@skip"
    suitekit run --env staging --grep-tags "@api+@critical" --omit-filtered tests/api
    suitekit run --env dev --config-dir suites/config -v -- -x --maxfail 3
    suitekit envs --config-dir suites/config
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pytest
from loguru import logger

from suitekit import __version__
from suitekit.config import ConfigLoader, ConfigurationError, EffectiveConfig
from suitekit.tags.evaluator import FilterOptions, TagFilter
from suitekit.tags.parser import ParseError

EXIT_CONFIG_ERROR = 2

# (CLI dest, pytest flag stem, env key)
TOGGLES = (
    ("filter_specs", "grep-filter-specs", "grepFilterSpecs"),
    ("omit_filtered", "grep-omit-filtered", "grepOmitFiltered"),
)


def _common_options() -> argparse.ArgumentParser:
    """Options shared by every sub-command, accepted after the sub-command name."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory with base.yaml and environments/ (default: config)",
    )
    common.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="dotenv file for secret references (default: .env)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the suitekit command."""
    parser = argparse.ArgumentParser(
        prog="suitekit",
        description="Run a tag-filtered test suite against a named environment",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)
    common = _common_options()

    run = subparsers.add_parser("run", parents=[common], help="Run the test suite")
    run.add_argument(
        "--env",
        type=str,
        default="local",
        help="Environment to run against (default: local)",
    )
    run.add_argument(
        "--grep-tags",
        type=str,
        default=None,
        help="Tag filter expression, e.g. '@smoke+@critical -@skip'",
    )
    run.add_argument(
        "--grep",
        type=str,
        default=None,
        help="';'-separated test title substrings; '-' prefix excludes",
    )
    run.add_argument(
        "--filter-specs",
        action="store_true",
        default=None,
        help="Do not load test files without a matching test",
    )
    run.add_argument(
        "--no-filter-specs",
        action="store_false",
        dest="filter_specs",
        default=None,
        help="Load every test file, overriding env.grepFilterSpecs",
    )
    run.add_argument(
        "--omit-filtered",
        action="store_true",
        default=None,
        help="Deselect non-matching tests instead of reporting them skipped",
    )
    run.add_argument(
        "--no-omit-filtered",
        action="store_false",
        dest="omit_filtered",
        default=None,
        help="Report non-matching tests as skipped, overriding env.grepOmitFiltered",
    )
    run.add_argument(
        "paths",
        nargs="*",
        help="Test paths (default: pytest's testpaths / rootdir)",
    )

    subparsers.add_parser("envs", parents=[common], help="List available environments")
    return parser


def configure_logging(verbose: bool) -> None:
    """Route loguru output to stderr at INFO (or DEBUG with -v)."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def build_pytest_args(args: argparse.Namespace, extra: Sequence[str] = ()) -> List[str]:
    """
    Translate parsed CLI arguments into pytest arguments.

    Values are attached with ``=`` so pytest never reads a leading ``@`` as
    an argument file.

    Args:
        args: Parsed arguments of the ``run`` sub-command.
        extra: Arguments after ``--``, passed to pytest untouched.

    Returns:
        Argument list for pytest.main().
    """
    pytest_args = [
        "-p", "suitekit.plugin",
        "--suite-env", args.env,
        "--suite-config-dir", str(Path(args.config_dir).resolve()),
        "--suite-env-file", str(Path(args.env_file).resolve()),
    ]
    if args.grep_tags is not None:
        pytest_args.append(f"--grep-tags={args.grep_tags}")
    if args.grep is not None:
        pytest_args.append(f"--grep={args.grep}")
    for dest, flag, _ in TOGGLES:
        value = getattr(args, dest)
        if value is not None:
            pytest_args.append(f"--{flag}" if value else f"--no-{flag}")
    if args.verbose:
        pytest_args.append("-v")

    pytest_args.extend(extra)
    pytest_args.extend(args.paths)
    return pytest_args


def resolve_filter(args: argparse.Namespace, effective: EffectiveConfig) -> TagFilter:
    """Build the run's filter the way the plugin will: CLI, then env, then off."""
    raw_tags = args.grep_tags
    if raw_tags is None:
        raw_tags = effective.env.get("grepTags", "")
    title_grep = args.grep
    if title_grep is None:
        title_grep = effective.env.get("grep", "")

    toggles = {}
    for dest, _, key in TOGGLES:
        value = getattr(args, dest)
        toggles[dest] = bool(effective.env.get(key, False) if value is None else value)
    return TagFilter(raw_tags, FilterOptions(**toggles), title_grep=title_grep)


def preflight(args: argparse.Namespace) -> TagFilter:
    """
    Fail fast on configuration and filter errors, before pytest starts.

    Raises:
        ConfigurationError: Unknown environment or invalid configuration.
        ParseError: Malformed tag filter.
    """
    effective = ConfigLoader(args.config_dir, env_file=args.env_file).resolve(args.env)
    tag_filter = resolve_filter(args, effective)
    logger.info(f"[Runner] Environment: {effective}")
    logger.info(f"[Runner] Filter: {tag_filter.describe()}")
    return tag_filter


def list_environments(args: argparse.Namespace) -> int:
    loader = ConfigLoader(args.config_dir, env_file=args.env_file)
    names = loader.available_environments()
    if not names:
        logger.warning(f"[Runner] No environments found in {loader.environments_dir}")
        return 1
    for name in names:
        print(name)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the suitekit command."""
    argv = list(sys.argv[1:] if argv is None else argv)
    extra: List[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, extra = argv[:split], argv[split + 1:]

    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "envs":
        return list_environments(args)

    try:
        preflight(args)
    except (ConfigurationError, ParseError) as e:
        logger.error(f"[Runner] {e}")
        return EXIT_CONFIG_ERROR

    pytest_args = build_pytest_args(args, extra)
    logger.info(f"[Runner] Pytest args: {pytest_args}")
    exit_code = int(pytest.main(pytest_args))

    logger.info(f"[Runner] Finished with exit code: {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
