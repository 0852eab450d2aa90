"""
Spec-file Scanner.

Reads the tags declared in a pytest module without importing it, so the
"filter specs" toggle can skip whole files that contain no matching test.

Recognized declarations::

    pytestmark = pytest.mark.tags("@api")              # module group
    pytestmark = [pytest.mark.tags("@api"), ...]

    @pytest.mark.tags("@smoke", "@login")              # class group
    class TestLogin:
        pytestmark = mark.tags(["@ui"])

        @pytest.mark.tags("@critical")                 # test
        def test_valid_credentials(self): ...

Anything pytest could turn into tags that cannot be read here makes the scan
inexact, and callers must then load the file. That covers:

- tag arguments that are not string literals
- decorators that are not a literal ``pytest.mark.*`` / ``mark.*`` expression
  (e.g. a mark stored in a variable)
- ``marks=`` keywords (``pytest.param``) and ``add_marker`` / ``applymarker``
- ``Test*`` classes with base classes, whose marks are inherited
- ``pytestmark`` built incrementally (``+=``, ``append``, a non-literal value)
- ``pytest`` or ``mark`` imported under another name
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from loguru import logger

from suitekit.tags.model import EMPTY_TAGS, InvalidTagError, TagSet

TAGS_MARKER = "tags"

_DYNAMIC_MARKER_CALLS = {"add_marker", "applymarker"}


@dataclass(frozen=True)
class ScannedTest:
    """A test function found in a spec file, with its effective tags."""

    title: str
    tags: TagSet


@dataclass
class SpecScan:
    """
    Result of scanning one spec file.

    Attributes:
        path: The scanned file.
        tests: Every test function found, with effective tags.
        exact: False if some tags could not be read statically.
        reasons: Why the scan is inexact, for logging.
    """

    path: Path
    tests: List[ScannedTest] = field(default_factory=list)
    exact: bool = True
    reasons: List[str] = field(default_factory=list)

    def as_pairs(self) -> List[Tuple[str, TagSet]]:
        """(title, tags) pairs in the shape TagFilter.should_load_spec expects."""
        return [(test.title, test.tags) for test in self.tests]

    def mark_inexact(self, reason: str, node: Optional[ast.AST] = None) -> None:
        line = getattr(node, "lineno", None)
        self.exact = False
        self.reasons.append(f"line {line}: {reason}" if line else reason)


class _Scanner:
    def __init__(self, path: Path) -> None:
        self.scan = SpecScan(path=path)

    def run(self, tree: ast.Module) -> SpecScan:
        self._check_module(tree)
        module_tags = self._pytestmark(tree.body)
        self._walk(tree.body, module_tags, prefix="")
        return self.scan

    def _check_module(self, tree: ast.Module) -> None:
        """Whole-module checks for marks applied outside decorators."""
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                for alias in node.names:
                    if alias.name == "pytest" and alias.asname not in (None, "pytest"):
                        self.scan.mark_inexact(f"pytest imported as {alias.asname!r}", node)
            elif isinstance(node, ast.ImportFrom) and node.module == "pytest":
                for alias in node.names:
                    if alias.name == "mark" and alias.asname not in (None, "mark"):
                        self.scan.mark_inexact(f"mark imported as {alias.asname!r}", node)
            elif isinstance(node, ast.keyword) and node.arg == "marks":
                self.scan.mark_inexact("marks= keyword", node.value)
            elif isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute) \
                    and node.func.attr in _DYNAMIC_MARKER_CALLS:
                self.scan.mark_inexact(f"dynamic {node.func.attr}()", node)

    def _walk(self, body: List[ast.stmt], group_tags: TagSet, prefix: str) -> None:
        for node in body:
            if isinstance(node, ast.ClassDef) and node.name.startswith("Test"):
                if any(not _is_plain_object(base) for base in node.bases):
                    self.scan.mark_inexact(f"class {node.name} inherits marks", node)
                class_tags = group_tags.union(
                    self._decorator_tags(node.decorator_list),
                    self._pytestmark(node.body),
                )
                self._walk(node.body, class_tags, prefix=f"{prefix}{node.name}::")
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and \
                    node.name.startswith("test"):
                tags = group_tags.union(self._decorator_tags(node.decorator_list))
                self.scan.tests.append(ScannedTest(title=f"{prefix}{node.name}", tags=tags))

    def _pytestmark(self, body: List[ast.stmt]) -> TagSet:
        tags = EMPTY_TAGS
        for node in body:
            if isinstance(node, ast.Assign) and any(_is_pytestmark(t) for t in node.targets):
                tags = tags.union(self._marks(node.value))
            elif isinstance(node, ast.AnnAssign) and _is_pytestmark(node.target) \
                    and node.value is not None:
                tags = tags.union(self._marks(node.value))
            elif isinstance(node, ast.AugAssign) and _is_pytestmark(node.target):
                self.scan.mark_inexact("pytestmark extended with +=", node)
            elif isinstance(node, ast.Expr) and isinstance(node.value, ast.Call) \
                    and isinstance(node.value.func, ast.Attribute) \
                    and _is_pytestmark(node.value.func.value):
                self.scan.mark_inexact(f"pytestmark.{node.value.func.attr}()", node)
        return tags

    def _decorator_tags(self, decorators: List[ast.expr]) -> TagSet:
        return EMPTY_TAGS.union(*(self._marks(d) for d in decorators))

    def _marks(self, node: ast.expr) -> TagSet:
        if isinstance(node, (ast.List, ast.Tuple)):
            return EMPTY_TAGS.union(*(self._marks(elt) for elt in node.elts))
        if isinstance(node, ast.Call) and _is_tags_marker(node.func):
            return self._marker_args(node)
        if isinstance(node, ast.Call) and _is_mark_attribute(node.func):
            return EMPTY_TAGS
        if _is_mark_attribute(node):
            return EMPTY_TAGS
        self.scan.mark_inexact("unresolved decorator or mark", node)
        return EMPTY_TAGS

    def _marker_args(self, call: ast.Call) -> TagSet:
        labels: List[str] = []
        for arg in call.args:
            if isinstance(arg, ast.Constant) and isinstance(arg.value, str):
                labels.append(arg.value)
            elif isinstance(arg, (ast.List, ast.Tuple, ast.Set)) and all(
                isinstance(e, ast.Constant) and isinstance(e.value, str) for e in arg.elts
            ):
                labels.extend(e.value for e in arg.elts)
            else:
                self.scan.mark_inexact("non-literal tag argument", arg)
        try:
            return TagSet(labels)
        except InvalidTagError:
            self.scan.mark_inexact("invalid tag literal", call)
            return EMPTY_TAGS


def _is_pytestmark(node: ast.expr) -> bool:
    return isinstance(node, ast.Name) and node.id == "pytestmark"


def _is_plain_object(base: ast.expr) -> bool:
    return isinstance(base, ast.Name) and base.id == "object"


def _is_mark_namespace(node: ast.expr) -> bool:
    """Match `pytest.mark` and `mark`."""
    if isinstance(node, ast.Name):
        return node.id == "mark"
    return (
        isinstance(node, ast.Attribute)
        and node.attr == "mark"
        and isinstance(node.value, ast.Name)
        and node.value.id == "pytest"
    )


def _is_mark_attribute(node: ast.expr) -> bool:
    """Match any `pytest.mark.<name>` / `mark.<name>`."""
    return isinstance(node, ast.Attribute) and _is_mark_namespace(node.value)


def _is_tags_marker(func: ast.expr) -> bool:
    """Match `pytest.mark.tags` and `mark.tags`."""
    return _is_mark_attribute(func) and func.attr == TAGS_MARKER


def scan_source(source: str, path: Union[str, Path] = "<string>") -> SpecScan:
    """
    Scan module source text for tests and their declared tags.

    Returns:
        SpecScan; inexact if the source does not parse.
    """
    path = Path(path)
    try:
        tree = ast.parse(source, filename=str(path))
    except SyntaxError as e:
        scan = SpecScan(path=path)
        scan.mark_inexact(f"syntax error: {e}")
        return scan
    return _Scanner(path).run(tree)


def scan_spec_file(path: Union[str, Path]) -> SpecScan:
    """Read and scan a spec file from disk."""
    path = Path(path)
    try:
        source = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        scan = SpecScan(path=path)
        scan.mark_inexact(f"cannot read: {e}")
        return scan

    scan = scan_source(source, path)
    logger.debug(
        f"Spec scan: {path.name}: {len(scan.tests)} test(s), exact={scan.exact}"
        + (f" ({'; '.join(scan.reasons)})" if scan.reasons else "")
    )
    return scan
