"""
Tests for the Tag Filtering Module.

Covers:
- Tag / TagSet: normalization, deduplication, union of group tags.
- Parser: grammar, precedence, exclusions, errors, canonical serialization.
- Evaluator: boolean semantics, empty tag sets, run/skip/omit decisions.
- TagFilter: title grep and file-level pre-filtering.
"""

from __future__ import annotations

import re

import pytest

from suitekit.tags.evaluator import (
    Decision,
    FilterOptions,
    TagFilter,
    evaluate,
    match_title,
)
from suitekit.tags.model import (
    InvalidTagError,
    Tag,
    TagSet,
    effective_tags,
    normalize_tag,
    tags_from_marker_args,
)
from suitekit.tags.parser import (
    And,
    Literal,
    Not,
    Or,
    ParseError,
    Universal,
    parse,
    to_string,
)


def lit(name: str) -> Literal:
    return Literal.of(name)


# ---------------------------------------------------------------------------
# Tag Model Tests
# ---------------------------------------------------------------------------


class TestTagModel:
    """Tests for Tag, TagSet and effective tag computation."""

    @pytest.mark.parametrize("raw", ["smoke", "@smoke", "@SMOKE", "  @Smoke ", "@@smoke"])
    def test_normalization(self, raw: str) -> None:
        """Case, whitespace and leading '@' variations normalize to one name."""
        assert normalize_tag(raw) == "smoke"

    @pytest.mark.parametrize("raw", ["", "@", "  ", "@ @", "a+b", "a,b", "(a)"])
    def test_invalid_tags(self, raw: str) -> None:
        """Empty and reserved-character labels are rejected."""
        with pytest.raises(InvalidTagError):
            normalize_tag(raw)

    def test_invalid_tag_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            Tag.parse("@")

    def test_tag_display_has_at_prefix(self) -> None:
        tag = Tag.parse("@Critical")
        assert tag.name == "critical"
        assert str(tag) == "@critical"

    def test_hyphenated_tag_is_kept(self) -> None:
        assert Tag.parse("@user-profile").name == "user-profile"

    def test_tagset_deduplicates(self) -> None:
        tags = TagSet.of("@smoke", "SMOKE", "smoke", "@api")
        assert len(tags) == 2
        assert tags.names == frozenset({"smoke", "api"})

    def test_tagset_membership_normalizes(self) -> None:
        tags = TagSet.of("@smoke")
        assert "@SMOKE" in tags
        assert "smoke" in tags
        assert Tag("smoke") in tags
        assert "@api" not in tags
        assert "@" not in tags
        assert 42 not in tags

    def test_tagset_of_accepts_iterables(self) -> None:
        tags = TagSet.of("@a", ["@b", "@c"], (Tag("d"),))
        assert tags.names == frozenset({"a", "b", "c", "d"})

    def test_tagset_equality_and_hash(self) -> None:
        assert TagSet.of("@a", "@b") == TagSet.of("B", "a")
        assert hash(TagSet.of("@a", "@b")) == hash(TagSet.of("b", "a"))
        assert TagSet.of("@a") != TagSet.of("@b")

    def test_tagset_str_is_sorted(self) -> None:
        assert str(TagSet.of("@smoke", "@api", "@login")) == "@api @login @smoke"

    def test_empty_tagset_is_falsy(self) -> None:
        assert not TagSet()
        assert TagSet.of("@a")

    def test_effective_tags_union(self) -> None:
        """Effective tags = own tags united with every enclosing group's."""
        module = TagSet.of("@api")
        cls = TagSet.of("@users", "@api")
        own = TagSet.of("@post", "@smoke")
        result = effective_tags(own, cls, module)
        assert result.names == frozenset({"api", "users", "post", "smoke"})
        assert own.names == frozenset({"post", "smoke"})  # Inputs untouched

    def test_union_operator(self) -> None:
        assert (TagSet.of("@a") | TagSet.of("@b")) == TagSet.of("@a", "@b")

    def test_tags_from_marker_args(self) -> None:
        assert tags_from_marker_args(("@smoke", ["@api", "@users"])) == TagSet.of(
            "@smoke", "@api", "@users"
        )

    def test_tags_from_marker_args_rejects_non_strings(self) -> None:
        with pytest.raises(InvalidTagError, match="Unsupported tag marker argument"):
            tags_from_marker_args((42,))


# ---------------------------------------------------------------------------
# Parser Tests
# ---------------------------------------------------------------------------


class TestParser:
    """Tests for the filter expression parser."""

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_is_universal(self, raw) -> None:
        assert parse(raw) == Universal()

    def test_single_literal(self) -> None:
        assert parse("@smoke") == lit("smoke")

    def test_plus_is_and(self) -> None:
        assert parse("@smoke+@critical") == And(lit("smoke"), lit("critical"))

    def test_space_is_or(self) -> None:
        assert parse("@smoke @api") == Or(lit("smoke"), lit("api"))

    def test_comma_is_or(self) -> None:
        assert parse("@smoke,@api") == Or(lit("smoke"), lit("api"))
        assert parse("@smoke , @api") == Or(lit("smoke"), lit("api"))

    def test_negated_term_is_exclusion(self) -> None:
        """A lone '-' term is ANDed onto the rest instead of ORed."""
        assert parse("@smoke -@skip") == And(lit("smoke"), Not(lit("skip")))

    def test_only_exclusion(self) -> None:
        assert parse("-@skip") == Not(lit("skip"))

    def test_only_exclusions(self) -> None:
        assert parse("-@skip -@flaky") == And(Not(lit("skip")), Not(lit("flaky")))

    def test_several_inclusions_and_exclusions(self) -> None:
        expected = And(
            And(Or(lit("smoke"), lit("api")), Not(lit("skip"))),
            Not(lit("flaky")),
        )
        assert parse("@smoke -@skip @api -@flaky") == expected

    def test_negation_inside_and_group(self) -> None:
        assert parse("@smoke+-@slow") == And(lit("smoke"), Not(lit("slow")))
        assert parse("-@slow+@smoke") == And(Not(lit("slow")), lit("smoke"))

    def test_and_binds_tighter_than_or(self) -> None:
        assert parse("@a+@b @c") == Or(And(lit("a"), lit("b")), lit("c"))

    def test_left_associativity(self) -> None:
        assert parse("@a+@b+@c") == And(And(lit("a"), lit("b")), lit("c"))
        assert parse("@a @b @c") == Or(Or(lit("a"), lit("b")), lit("c"))

    def test_grouping(self) -> None:
        assert parse("(@smoke @api)+@critical") == And(
            Or(lit("smoke"), lit("api")), lit("critical")
        )
        assert parse("( @smoke )") == lit("smoke")

    def test_negated_group(self) -> None:
        assert parse("@a -(@b @c)") == And(lit("a"), Not(Or(lit("b"), lit("c"))))

    def test_double_negation(self) -> None:
        assert parse("--@a") == Not(Not(lit("a")))

    def test_hyphen_inside_tag_is_not_negation(self) -> None:
        assert parse("@user-profile") == lit("user-profile")

    def test_case_and_prefix_insensitive(self) -> None:
        """Case and '@' variations yield structurally equal trees."""
        assert parse("@smoke+@critical") == parse("@SMOKE+@Critical")
        assert parse("smoke -skip") == parse("@Smoke -@SKIP")

    def test_parse_is_deterministic(self) -> None:
        assert parse("@a+@b -@c") == parse("@a+@b -@c")

    @pytest.mark.parametrize(
        "raw, detail",
        [
            ("(@smoke", "unbalanced '('"),
            ("@smoke)", "unbalanced ')'"),
            ("(@a (@b)", "unbalanced '('"),
            ("@", "empty or invalid tag"),
            ("@a @", "empty or invalid tag"),
            ("@smoke+", "dangling '+'"),
            ("+@smoke", "dangling '+'"),
            ("@a + ", "dangling '+'"),
            ("-", "dangling '-'"),
            ("@a -", "dangling '-'"),
            ("- @a", "dangling '-'"),
            ("@a,", "dangling ','"),
            (",@a", "dangling ','"),
            ("@a,,@b", "dangling ','"),
            ("()", "empty group"),
            ("(@a)@b", "unexpected"),
        ],
    )
    def test_malformed_expressions(self, raw: str, detail: str) -> None:
        with pytest.raises(ParseError, match=re.escape(detail)) as exc_info:
            parse(raw)
        assert exc_info.value.expression == raw
        assert repr(raw) in str(exc_info.value)

    def test_parse_error_position(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse("@a+@b+")
        assert exc_info.value.position == 5


class TestCanonicalSerialization:
    """Tests for to_string() and its round trip through parse()."""

    def test_universal_is_empty(self) -> None:
        assert to_string(Universal()) == ""

    def test_canonical_form(self) -> None:
        assert to_string(parse("@SMOKE+@Critical")) == "@smoke+@critical"
        assert to_string(parse("smoke -skip")) == "@smoke+-@skip"

    @pytest.mark.parametrize(
        "raw",
        [
            "@smoke",
            "@smoke+@critical",
            "@smoke @api",
            "@smoke -@skip",
            "@a @b -@c -@d",
            "(@a @b)+@c",
            "@a+(@b+@c)",
            "@a (@b @c)",
            "--@a",
            "-(@a+@b)",
            "(-@a) @b",
            "@a -(@b @c)",
        ],
    )
    def test_reparse_yields_equal_tree(self, raw: str) -> None:
        expr = parse(raw)
        assert parse(to_string(expr)) == expr

    def test_hand_built_trees_round_trip(self) -> None:
        for expr in (
            Or(lit("a"), Not(lit("b"))),
            Or(Not(lit("a")), lit("b")),
            And(lit("a"), And(lit("b"), lit("c"))),
            Or(lit("a"), Or(lit("b"), lit("c"))),
            Not(Or(lit("a"), And(lit("b"), lit("c")))),
        ):
            assert parse(to_string(expr)) == expr


# ---------------------------------------------------------------------------
# Evaluator Tests
# ---------------------------------------------------------------------------

TAG_SETS = [
    TagSet(),
    TagSet.of("@smoke"),
    TagSet.of("@skip"),
    TagSet.of("@smoke", "@skip"),
    TagSet.of("@api", "@critical"),
]


class TestEvaluator:
    """Tests for evaluate()."""

    @pytest.mark.parametrize("tags", TAG_SETS, ids=repr)
    @pytest.mark.parametrize("name", ["smoke", "skip", "api"])
    def test_literal_is_membership(self, tags: TagSet, name: str) -> None:
        assert evaluate(lit(name), tags) == (name in tags)

    @pytest.mark.parametrize("tags", TAG_SETS, ids=repr)
    def test_connectives(self, tags: TagSet) -> None:
        e1, e2 = lit("smoke"), Not(lit("skip"))
        assert evaluate(And(e1, e2), tags) == (evaluate(e1, tags) and evaluate(e2, tags))
        assert evaluate(Or(e1, e2), tags) == (evaluate(e1, tags) or evaluate(e2, tags))
        assert evaluate(Not(e1), tags) == (not evaluate(e1, tags))

    def test_universal_matches_everything(self) -> None:
        for tags in TAG_SETS:
            assert evaluate(Universal(), tags)

    def test_empty_tagset(self) -> None:
        """Only expressions true on the empty set match untagged tests."""
        assert evaluate(parse(""), TagSet())
        assert evaluate(parse("-@skip"), TagSet())
        assert evaluate(parse("-@skip -@slow"), TagSet())
        assert not evaluate(parse("@smoke"), TagSet())
        assert not evaluate(parse("@smoke -@skip"), TagSet())

    def test_evaluation_is_repeatable(self) -> None:
        expr, tags = parse("@smoke -@skip"), TagSet.of("@smoke")
        assert evaluate(expr, tags) == evaluate(expr, tags) is True

    def test_rejects_non_expression(self) -> None:
        with pytest.raises(TypeError):
            evaluate("@smoke", TagSet())  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# TagFilter Tests
# ---------------------------------------------------------------------------


class TestTagFilter:
    """Tests for per-run decisions, title grep and spec pre-filtering."""

    def test_smoke_without_skip_scenario(self) -> None:
        tag_filter = TagFilter("@smoke -@skip")
        tests = {
            "A": TagSet.of("@smoke"),
            "B": TagSet.of("@smoke", "@skip"),
            "C": TagSet.of("@regression"),
        }
        running = [name for name, tags in tests.items()
                   if tag_filter.decide(tags) is Decision.RUN]
        assert running == ["A"]

    def test_empty_filter_runs_everything(self) -> None:
        tag_filter = TagFilter("")
        assert tag_filter.is_universal
        for tags in TAG_SETS:
            assert tag_filter.decide(tags) is Decision.RUN

    def test_non_matching_is_skipped_by_default(self) -> None:
        assert TagFilter("@smoke").decide(TagSet.of("@api")) is Decision.SKIP

    def test_non_matching_is_omitted_when_configured(self) -> None:
        tag_filter = TagFilter("@smoke", FilterOptions(omit_filtered=True))
        assert tag_filter.decide(TagSet.of("@api")) is Decision.OMIT
        assert tag_filter.decide(TagSet.of("@smoke")) is Decision.RUN

    def test_invalid_expression_fails_at_construction(self) -> None:
        with pytest.raises(ParseError, match="@smoke\\+"):
            TagFilter("@smoke+")

    def test_title_grep_combines_with_tags(self) -> None:
        tag_filter = TagFilter("@smoke", title_grep="login")
        assert tag_filter.decide(TagSet.of("@smoke"), "test_login_ok") is Decision.RUN
        assert tag_filter.decide(TagSet.of("@smoke"), "test_logout") is Decision.SKIP
        assert tag_filter.decide(TagSet.of("@api"), "test_login_ok") is Decision.SKIP
        assert not tag_filter.is_universal

    def test_should_load_spec_respects_toggle(self) -> None:
        tests = [("test_a", TagSet.of("@api"))]
        assert TagFilter("@smoke").should_load_spec(tests)
        assert not TagFilter("@smoke", FilterOptions(filter_specs=True)).should_load_spec(tests)

    def test_should_load_spec_with_one_match(self) -> None:
        tag_filter = TagFilter("@smoke", FilterOptions(filter_specs=True))
        tests = [("test_a", TagSet.of("@api")), ("test_b", TagSet.of("@smoke"))]
        assert tag_filter.should_load_spec(tests)

    def test_should_load_spec_universal(self) -> None:
        assert TagFilter("", FilterOptions(filter_specs=True)).should_load_spec([])

    def test_should_load_spec_keeps_parametrized_titles(self) -> None:
        """Scanned titles lack parameter ids, so a grep on an id must not drop the file."""
        tag_filter = TagFilter("@smoke", FilterOptions(filter_specs=True), title_grep="case2")
        assert tag_filter.should_load_spec([("test_login", TagSet.of("@smoke"))])

    def test_should_load_spec_honors_title_exclusion(self) -> None:
        tag_filter = TagFilter("@smoke", FilterOptions(filter_specs=True), title_grep="-login")
        assert not tag_filter.should_load_spec([("test_login", TagSet.of("@smoke"))])
        assert tag_filter.should_load_spec([("test_logout_ok", TagSet.of("@smoke"))])

    def test_should_load_spec_needs_tags_and_title_on_one_test(self) -> None:
        tag_filter = TagFilter("@smoke", FilterOptions(filter_specs=True), title_grep="-admin")
        tests = [("test_admin", TagSet.of("@smoke")), ("test_user", TagSet.of("@api"))]
        assert not tag_filter.should_load_spec(tests)

    def test_toggles_are_independent(self) -> None:
        """Omitting does not imply spec filtering and vice versa."""
        tests = [("test_a", TagSet.of("@api"))]
        omit_only = TagFilter("@smoke", FilterOptions(omit_filtered=True))
        specs_only = TagFilter("@smoke", FilterOptions(filter_specs=True))
        assert omit_only.should_load_spec(tests)
        assert specs_only.decide(TagSet.of("@api")) is Decision.SKIP

    def test_describe(self) -> None:
        text = TagFilter("@SMOKE -@skip", FilterOptions(True, False), "login").describe()
        assert "tags=@smoke+-@skip" in text
        assert "grep=login" in text
        assert "filterSpecs=True" in text
        assert "omitFiltered=False" in text


class TestMatchTitle:
    """Tests for title grep."""

    @pytest.mark.parametrize(
        "title, grep, expected",
        [
            ("test_login", "", True),
            ("test_login", "login", True),
            ("test_login", "logout", False),
            ("test_login", "logout; login", True),
            ("test_login", "-login", False),
            ("test_logout", "-login", True),
            ("test_login_admin", "login;-admin", False),
            ("test_login_user", "login;-admin", True),
            ("test_login", "Login", False),
        ],
    )
    def test_match_title(self, title: str, grep: str, expected: bool) -> None:
        assert match_title(title, grep) is expected

    @pytest.mark.parametrize(
        "title, grep, expected",
        [
            ("test_login", "case2", True),
            ("test_login", "login;-login", False),
            ("TestUsers::test_create", "-TestUsers", False),
            ("TestUsers::test_create", "delete;-admin", True),
        ],
    )
    def test_prefix_only(self, title: str, grep: str, expected: bool) -> None:
        assert match_title(title, grep, prefix_only=True) is expected
