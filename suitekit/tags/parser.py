"""
Tag Expression Parser.

Turns a user-supplied filter string (e.g. "@smoke+@critical -@skip") into an
immutable expression tree.

Grammar (precedence low -> high)::

    filter  := term ( (WS | ',') term )*     # OR
    term    := factor ( '+' factor )*        # AND
    factor  := '-' factor | atom             # NOT
    atom    := TAG | '(' filter ')'

A top-level term that is a single negated factor ("-@skip") is an exclusion:
it is ANDed onto the OR of the remaining terms instead of joining the OR, so
"@smoke -@skip" means smoke AND NOT skip.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import reduce
from typing import List, Optional, Tuple, Union

from suitekit.errors import SuitekitError
from suitekit.tags.model import InvalidTagError, Tag


class ParseError(SuitekitError):
    """Raised when a filter expression is malformed."""

    def __init__(self, expression: str, detail: str, position: int) -> None:
        super().__init__(
            f"Invalid tag filter {expression!r}: {detail} (at position {position})"
        )
        self.expression = expression
        self.detail = detail
        self.position = position


# ---------------------------------------------------------------------------
# Expression Tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Universal:
    """Matches every test; the parse of an empty filter."""


@dataclass(frozen=True)
class Literal:
    """True iff the tag is present in the test's TagSet."""

    tag: Tag

    @classmethod
    def of(cls, raw: str) -> "Literal":
        return cls(Tag.parse(raw))


@dataclass(frozen=True)
class And:
    left: "FilterExpression"
    right: "FilterExpression"


@dataclass(frozen=True)
class Or:
    left: "FilterExpression"
    right: "FilterExpression"


@dataclass(frozen=True)
class Not:
    operand: "FilterExpression"


FilterExpression = Union[Universal, Literal, And, Or, Not]

UNIVERSAL = Universal()


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

TAG, NOT, AND, COMMA, SEP, LPAREN, RPAREN = (
    "TAG", "NOT", "AND", "COMMA", "SEP", "LPAREN", "RPAREN",
)

_SINGLE = {"+": AND, ",": COMMA, "(": LPAREN, ")": RPAREN}

# Token: (kind, text, position)
Token = Tuple[str, str, int]


def _tokenize(raw: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch.isspace():
            start = i
            while i < len(raw) and raw[i].isspace():
                i += 1
            tokens.append((SEP, raw[start:i], start))
        elif ch in _SINGLE:
            tokens.append((_SINGLE[ch], ch, i))
            i += 1
        elif ch == "-":
            tokens.append((NOT, ch, i))
            i += 1
        else:
            start = i
            while i < len(raw) and not raw[i].isspace() and raw[i] not in _SINGLE:
                i += 1
            tokens.append((TAG, raw[start:i], start))
    return _drop_insignificant_whitespace(tokens)


def _drop_insignificant_whitespace(tokens: List[Token]) -> List[Token]:
    """Whitespace only separates terms; next to '+', ',' or a paren it is noise."""
    kept: List[Token] = []
    for index, token in enumerate(tokens):
        if token[0] != SEP:
            kept.append(token)
            continue
        prev_kind = tokens[index - 1][0] if index > 0 else None
        next_kind = tokens[index + 1][0] if index + 1 < len(tokens) else None
        if prev_kind in (None, AND, COMMA, LPAREN):
            continue
        if next_kind in (None, AND, COMMA, RPAREN):
            continue
        kept.append(token)
    return kept


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    """Recursive-descent parser over the token list of one raw expression."""

    _TERM_END = (None, SEP, COMMA, AND, RPAREN)

    def __init__(self, raw: str) -> None:
        self.raw = raw
        self.tokens = _tokenize(raw)
        self.index = 0

    def parse(self) -> FilterExpression:
        expr = self._filter()
        token = self._peek()
        if token is not None:
            raise self._error("unbalanced ')'" if token[0] == RPAREN else
                              f"unexpected {token[1]!r}", token[2])
        return expr

    # -- helpers -----------------------------------------------------------

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _peek_kind(self) -> Optional[str]:
        token = self._peek()
        return token[0] if token else None

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _position(self) -> int:
        token = self._peek()
        return token[2] if token else len(self.raw)

    def _error(self, detail: str, position: Optional[int] = None) -> ParseError:
        return ParseError(self.raw, detail, self._position() if position is None else position)

    # -- grammar -----------------------------------------------------------

    def _filter(self) -> FilterExpression:
        terms = [self._term()]
        while self._peek_kind() in (SEP, COMMA):
            separator = self._advance()
            if separator[0] == COMMA and self._peek_kind() in (None, COMMA, RPAREN):
                raise self._error("dangling ','", separator[2])
            terms.append(self._term())
        return _combine(terms)

    def _term(self) -> Tuple[FilterExpression, bool]:
        negated = self._peek_kind() == NOT
        factors = [self._factor()]
        while self._peek_kind() == AND:
            operator = self._advance()
            if self._peek_kind() in self._TERM_END:
                raise self._error("dangling '+'", operator[2])
            factors.append(self._factor())
        node = reduce(And, factors)
        return node, negated and len(factors) == 1

    def _factor(self) -> FilterExpression:
        token = self._peek()
        if token is None:
            raise self._error("unexpected end of expression")

        kind, text, position = token
        if kind == NOT:
            self._advance()
            if self._peek_kind() in self._TERM_END:
                raise self._error("dangling '-'", position)
            return Not(self._factor())
        if kind == LPAREN:
            self._advance()
            if self._peek_kind() == RPAREN:
                raise self._error("empty group '()'", position)
            inner = self._filter()
            if self._peek_kind() != RPAREN:
                raise self._error("unbalanced '('", position)
            self._advance()
            return inner
        if kind == TAG:
            self._advance()
            try:
                return Literal(Tag.parse(text))
            except InvalidTagError as e:
                raise self._error(f"empty or invalid tag {text!r}", position) from e
        if kind == RPAREN:
            raise self._error("unbalanced ')'", position)
        if kind == AND:
            raise self._error("dangling '+'", position)
        if kind == COMMA:
            raise self._error("dangling ','", position)
        raise self._error(f"unexpected {text!r}", position)


def _combine(terms: List[Tuple[FilterExpression, bool]]) -> FilterExpression:
    """OR the inclusion terms together, then AND each exclusion onto the result."""
    inclusions = [node for node, exclusion in terms if not exclusion]
    exclusions = [node for node, exclusion in terms if exclusion]

    if inclusions:
        base = reduce(Or, inclusions)
    else:
        base, exclusions = exclusions[0], exclusions[1:]
    return reduce(And, exclusions, base)


def parse(raw: Optional[str]) -> FilterExpression:
    """
    Parse a raw filter string into an expression tree.

    Args:
        raw: Filter expression (e.g., "@smoke+@critical", "@smoke -@skip").
             None, empty, or whitespace-only input matches everything.

    Returns:
        The root FilterExpression node.

    Raises:
        ParseError: If the expression is malformed (unbalanced grouping,
                    empty literal, dangling operator).
    """
    if raw is None or not raw.strip():
        return UNIVERSAL
    return _Parser(raw).parse()


# ---------------------------------------------------------------------------
# Canonical serialization
# ---------------------------------------------------------------------------


def to_string(expr: FilterExpression) -> str:
    """
    Serialize an expression tree to its canonical string.

    The output is lower-case with '@'-prefixed tags and only the parentheses
    needed, so that parse(to_string(expr)) == expr.
    """
    if isinstance(expr, Universal):
        return ""
    if isinstance(expr, Literal):
        return str(expr.tag)
    if isinstance(expr, Not):
        return "-" + _wrap(expr.operand, (And, Or))
    if isinstance(expr, And):
        return _wrap(expr.left, (Or,)) + "+" + _wrap(expr.right, (Or, And))
    if isinstance(expr, Or):
        return _wrap(expr.left, (Not,)) + " " + _wrap(expr.right, (Or, Not))
    raise TypeError(f"Not a filter expression: {expr!r}")


def _wrap(expr: FilterExpression, grouped: tuple) -> str:
    text = to_string(expr)
    return f"({text})" if isinstance(expr, grouped) else text
