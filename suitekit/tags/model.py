"""
Tag Model Module.

Canonical representation of the labels a test declares:
- Tag: a single normalized label (lower-case, stored without the leading '@').
- TagSet: an immutable, deduplicated set of tags.
- effective_tags(): union of a test's own tags and its enclosing groups' tags.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, Union

from suitekit.errors import SuitekitError

# Characters with a meaning in filter expressions; never part of a tag name.
RESERVED_CHARS = frozenset("+,()")


class InvalidTagError(SuitekitError, ValueError):
    """Raised when a label is empty or malformed after normalization."""

    pass


def normalize_tag(raw: str) -> str:
    """
    Normalize a raw tag label to its canonical stored name.

    Args:
        raw: Label as written by the test author (e.g., "@Smoke", " api ").

    Returns:
        Lower-cased name without leading '@' characters (e.g., "smoke").

    Raises:
        InvalidTagError: If the label is empty or contains reserved characters.
    """
    if not isinstance(raw, str):
        raise InvalidTagError(f"Tag must be a string, got {type(raw).__name__}: {raw!r}")

    name = raw.strip().lower().lstrip("@")
    if not name:
        raise InvalidTagError(f"Empty tag after normalization: {raw!r}")

    if any(ch.isspace() or ch in RESERVED_CHARS for ch in name):
        raise InvalidTagError(
            f"Tag {raw!r} contains whitespace or one of the reserved characters "
            f"{''.join(sorted(RESERVED_CHARS))!r}"
        )
    return name


@dataclass(frozen=True, order=True)
class Tag:
    """
    A single normalized test label.

    Attributes:
        name: Canonical name, lower-case and without the '@' prefix.
    """

    name: str

    @classmethod
    def parse(cls, raw: Union[str, "Tag"]) -> "Tag":
        """Build a Tag from a raw label, normalizing case and '@' prefix."""
        if isinstance(raw, Tag):
            return raw
        return cls(normalize_tag(raw))

    def __str__(self) -> str:
        return f"@{self.name}"


TagLike = Union[str, Tag]


class TagSet:
    """
    Immutable set of tags attached to a test or to an enclosing group.

    Membership checks accept raw labels, which are normalized the same way
    as declared tags, so "@SMOKE" in TagSet.of("smoke") is True.

    Usage::

        group = TagSet.of("@smoke", "@login")
        test = TagSet.of("@ui")
        effective = group | test   # {@login, @smoke, @ui}
    """

    __slots__ = ("_tags",)

    def __init__(self, tags: Iterable[TagLike] = ()) -> None:
        self._tags: FrozenSet[Tag] = frozenset(Tag.parse(t) for t in tags)

    @classmethod
    def of(cls, *labels: Union[TagLike, Iterable[TagLike]]) -> "TagSet":
        """
        Build a TagSet from labels, Tags, or iterables of either.

        Args:
            *labels: e.g. TagSet.of("@smoke", ["@api", "@users"]).

        Returns:
            A new TagSet.
        """
        flat = []
        for label in labels:
            if isinstance(label, (str, Tag)):
                flat.append(label)
            else:
                flat.extend(label)
        return cls(flat)

    def union(self, *others: "TagSet") -> "TagSet":
        """Return a new TagSet containing the tags of self and all others."""
        merged = set(self._tags)
        for other in others:
            merged.update(other._tags)
        return TagSet(merged)

    __or__ = union

    @property
    def names(self) -> FrozenSet[str]:
        """Canonical names of all tags in the set."""
        return frozenset(tag.name for tag in self._tags)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Tag):
            return item in self._tags
        if isinstance(item, str):
            try:
                return Tag.parse(item) in self._tags
            except InvalidTagError:
                return False
        return False

    def __iter__(self) -> Iterator[Tag]:
        return iter(sorted(self._tags))

    def __len__(self) -> int:
        return len(self._tags)

    def __bool__(self) -> bool:
        return bool(self._tags)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TagSet):
            return NotImplemented
        return self._tags == other._tags

    def __hash__(self) -> int:
        return hash(self._tags)

    def __str__(self) -> str:
        return " ".join(str(tag) for tag in self)

    def __repr__(self) -> str:
        return f"TagSet({', '.join(repr(str(tag)) for tag in self)})"


EMPTY_TAGS = TagSet()


def effective_tags(own: TagSet, *groups: TagSet) -> TagSet:
    """
    Compute the effective tags of a test.

    Args:
        own: Tags declared directly on the test.
        *groups: Tags declared on each enclosing group (class, module).

    Returns:
        Union of the test's own tags and all group tags.
    """
    return own.union(*groups)


def tags_from_marker_args(args: Iterable[object]) -> TagSet:
    """
    Build a TagSet from the positional arguments of a ``tags`` marker.

    Accepts both ``tags("@a", "@b")`` and ``tags(["@a", "@b"])`` forms.

    Raises:
        InvalidTagError: If an argument is not a string or iterable of strings.
    """
    labels = []
    for arg in args:
        if isinstance(arg, (str, Tag)):
            labels.append(arg)
        elif isinstance(arg, (list, tuple, set, frozenset)):
            labels.extend(arg)
        else:
            raise InvalidTagError(f"Unsupported tag marker argument: {arg!r}")
    return TagSet(labels)
