"""
Tag Filtering Module.

Handles selection of tests by tag:
- Tag model: normalized labels and immutable tag sets.
- Parser: filter strings such as "@smoke+@critical -@skip" into expression trees.
- Evaluator: per-test run/skip/omit decisions.
- Discovery: static tag scan of spec files for file-level pre-filtering.
"""

from suitekit.tags.model import InvalidTagError, Tag, TagSet, effective_tags
from suitekit.tags.parser import (
    And,
    FilterExpression,
    Literal,
    Not,
    Or,
    ParseError,
    Universal,
    parse,
    to_string,
)
from suitekit.tags.evaluator import Decision, FilterOptions, TagFilter, evaluate
from suitekit.tags.discovery import SpecScan, scan_spec_file

__all__ = [
    "And",
    "Decision",
    "FilterExpression",
    "FilterOptions",
    "InvalidTagError",
    "Literal",
    "Not",
    "Or",
    "ParseError",
    "SpecScan",
    "Tag",
    "TagFilter",
    "TagSet",
    "Universal",
    "effective_tags",
    "evaluate",
    "parse",
    "scan_spec_file",
    "to_string",
]
