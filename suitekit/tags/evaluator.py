"""
Tag Expression Evaluator.

Decides, for each test, whether it runs under the current filter:
- evaluate(): pure boolean evaluation of an expression against a TagSet.
- FilterOptions: the two run toggles (filter specs, omit filtered).
- TagFilter: parsed-once filter for a whole run, producing a Decision per test.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from loguru import logger

from suitekit.tags.model import TagSet
from suitekit.tags.parser import (
    And,
    FilterExpression,
    Literal,
    Not,
    Or,
    Universal,
    parse,
    to_string,
)


def evaluate(expr: FilterExpression, tags: TagSet) -> bool:
    """
    Evaluate a filter expression against a test's effective tags.

    Args:
        expr: Parsed filter expression.
        tags: The test's effective TagSet.

    Returns:
        True if the test matches the expression.
    """
    if isinstance(expr, Literal):
        return expr.tag in tags
    if isinstance(expr, And):
        return evaluate(expr.left, tags) and evaluate(expr.right, tags)
    if isinstance(expr, Or):
        return evaluate(expr.left, tags) or evaluate(expr.right, tags)
    if isinstance(expr, Not):
        return not evaluate(expr.operand, tags)
    if isinstance(expr, Universal):
        return True
    raise TypeError(f"Not a filter expression: {expr!r}")


class Decision(Enum):
    """What happens to a collected test under the current filter."""

    RUN = "run"
    SKIP = "skip"    # Reported as skipped
    OMIT = "omit"    # Removed from the reported suite entirely


@dataclass(frozen=True)
class FilterOptions:
    """
    Run-scoped filtering toggles. The two knobs are independent.

    Attributes:
        filter_specs: Pre-filter at file level; a test file with no matching
                      test is not loaded at all.
        omit_filtered: Drop non-matching tests from the run instead of
                       reporting them as skipped.
    """

    filter_specs: bool = False
    omit_filtered: bool = False


def match_title(title: str, grep: str, *, prefix_only: bool = False) -> bool:
    """
    Match a test title against a ';'-separated substring grep.

    A title matches when it contains any positive substring and none of the
    '-'-prefixed ones. An empty grep matches every title.

    With prefix_only, the title is a statically known prefix of the collected
    title (parameter ids such as "[case-1]" may still be appended), so only
    the excluding substrings can rule it out.
    """
    parts = [part.strip() for part in (grep or "").split(";") if part.strip()]
    if not parts:
        return True

    excluded = [part[1:] for part in parts if part.startswith("-") and len(part) > 1]
    included = [part for part in parts if not part.startswith("-")]

    if any(text in title for text in excluded):
        return False
    if included and not prefix_only:
        return any(text in title for text in included)
    return True


class TagFilter:
    """
    Filter for one run: the expression is parsed once and reused per test.

    Usage::

        tag_filter = TagFilter("@smoke -@skip", FilterOptions(omit_filtered=True))
        tag_filter.decide(TagSet.of("@smoke"))          # Decision.RUN
        tag_filter.decide(TagSet.of("@smoke", "@skip")) # Decision.OMIT

    Raises:
        ParseError: At construction, if the tag expression is malformed.
    """

    def __init__(
        self,
        raw: Optional[str] = "",
        options: Optional[FilterOptions] = None,
        title_grep: Optional[str] = "",
    ) -> None:
        self.raw = raw or ""
        self.options = options or FilterOptions()
        self.title_grep = title_grep or ""
        self.expression = parse(self.raw)

        logger.debug(
            f"TagFilter ready: expr={to_string(self.expression) or '<all>'!r}, "
            f"grep={self.title_grep!r}, filter_specs={self.options.filter_specs}, "
            f"omit_filtered={self.options.omit_filtered}"
        )

    @property
    def is_universal(self) -> bool:
        """True when neither tags nor titles restrict the run."""
        return isinstance(self.expression, Universal) and not self.title_grep.strip()

    def matches(self, tags: TagSet, title: str = "") -> bool:
        """Check both the tag expression and the title grep."""
        return evaluate(self.expression, tags) and match_title(title, self.title_grep)

    def decide(self, tags: TagSet, title: str = "") -> Decision:
        """
        Decide what to do with one test.

        Args:
            tags: The test's effective TagSet.
            title: The test's name, used for title grep.

        Returns:
            RUN if the test matches, otherwise OMIT or SKIP depending on
            the omit_filtered toggle.
        """
        if self.matches(tags, title):
            return Decision.RUN
        return Decision.OMIT if self.options.omit_filtered else Decision.SKIP

    def should_load_spec(self, tests: Iterable[Tuple[str, TagSet]]) -> bool:
        """
        File-level pre-filter.

        Args:
            tests: (title, effective tags) for every test declared in the file.

        Returns:
            False only when filter_specs is on and no test in the file can
            match. Titles are compared as prefixes of the collected titles.
        """
        if not self.options.filter_specs or self.is_universal:
            return True
        return any(
            evaluate(self.expression, tags)
            and match_title(title, self.title_grep, prefix_only=True)
            for title, tags in tests
        )

    def describe(self) -> str:
        """Human-readable summary for report headers."""
        parts: List[str] = [f"tags={to_string(self.expression) or '<all>'}"]
        if self.title_grep:
            parts.append(f"grep={self.title_grep}")
        parts.append(f"filterSpecs={self.options.filter_specs}")
        parts.append(f"omitFiltered={self.options.omit_filtered}")
        return ", ".join(parts)
