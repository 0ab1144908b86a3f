"""Tests for warden.permissions.pattern — glob argument matching."""

from __future__ import annotations

import pytest

from warden.errors import InvalidRuleError
from warden.permissions.pattern import (
    ANY_PATTERN,
    PatternKind,
    RulePattern,
    matches,
    normalize,
    split_rule_text,
)

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParse:
    def test_none_is_any(self) -> None:
        assert RulePattern.parse(None) is ANY_PATTERN

    def test_plain_text_is_exact(self) -> None:
        p = RulePattern.parse("npm install lodash")
        assert p.kind is PatternKind.EXACT
        assert p.text == "npm install lodash"

    def test_star_makes_wildcard(self) -> None:
        assert RulePattern.parse("git *").kind is PatternKind.WILDCARD

    def test_whitespace_is_normalized(self) -> None:
        assert RulePattern.parse("  git   status ").text == "git status"

    def test_legacy_prefix_form(self) -> None:
        assert RulePattern.parse("npm:*") == RulePattern.parse("npm *")

    def test_empty_parentheses_is_exact_empty(self) -> None:
        p = RulePattern.parse("")
        assert p.kind is PatternKind.EXACT
        assert p.matches("")
        assert not p.matches("ls")

    def test_exact_keeps_literal_star(self) -> None:
        p = RulePattern.exact("echo *")
        assert p.kind is PatternKind.EXACT
        assert p.matches("echo *")
        assert not p.matches("echo hi")


class TestNormalize:
    def test_collapses_tabs_and_newlines(self) -> None:
        assert normalize("a\t b\n c ") == "a b c"


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestMatching:
    def test_wildcard_prefix(self) -> None:
        p = RulePattern.parse("git *")
        assert matches(p, "git status")
        assert matches(p, "git commit -m 'x'")

    def test_wildcard_requires_separator(self) -> None:
        assert not matches(RulePattern.parse("git *"), "gitstatus")

    def test_trailing_wildcard_matches_bare_prefix(self) -> None:
        assert matches(RulePattern.parse("git *"), "git")

    def test_case_sensitive(self) -> None:
        assert not matches(RulePattern.parse("git *"), "GIT status")

    def test_exact_only_identical(self) -> None:
        p = RulePattern.parse("npm install lodash")
        assert matches(p, "npm install lodash")
        assert matches(p, "npm  install   lodash")
        assert not matches(p, "npm install lodash-es")

    def test_any_matches_everything(self) -> None:
        assert matches(ANY_PATTERN, "")
        assert matches(ANY_PATTERN, "rm -rf /")

    def test_inner_wildcard(self) -> None:
        p = RulePattern.parse("docker * --rm")
        assert matches(p, "docker run --rm")
        assert not matches(p, "docker run")

    def test_regex_metacharacters_are_literal(self) -> None:
        p = RulePattern.parse("ls .")
        assert matches(p, "ls .")
        assert not matches(p, "ls x")

    def test_leading_wildcard(self) -> None:
        p = RulePattern.parse("*.py")
        assert matches(p, "src/app.py")
        assert not matches(p, "src/app.pyc")

    def test_unrelated_command_does_not_match(self) -> None:
        assert not matches(RulePattern.parse("git *"), "rm -rf /")


# ---------------------------------------------------------------------------
# Specificity
# ---------------------------------------------------------------------------


class TestSpecificity:
    def test_exact_beats_wildcard(self) -> None:
        assert RulePattern.parse("npm install lodash").specificity > RulePattern.parse(
            "npm install *"
        ).specificity

    def test_longer_prefix_beats_shorter(self) -> None:
        assert RulePattern.parse("npm install *").specificity > RulePattern.parse(
            "npm *"
        ).specificity

    def test_wildcard_beats_any(self) -> None:
        assert RulePattern.parse("*").specificity > ANY_PATTERN.specificity

    def test_literal_prefix(self) -> None:
        assert RulePattern.parse("git push *").literal_prefix == "git push "


# ---------------------------------------------------------------------------
# Rule text splitting
# ---------------------------------------------------------------------------


class TestSplitRuleText:
    def test_bare_category(self) -> None:
        assert split_rule_text("Edit") == ("Edit", None)

    def test_category_with_argument(self) -> None:
        assert split_rule_text("Bash(git *)") == ("Bash", "git *")

    def test_nested_parentheses_in_argument(self) -> None:
        assert split_rule_text("Bash(echo (hi))") == ("Bash", "echo (hi)")

    @pytest.mark.parametrize(
        "text",
        ["", "   ", "(git *)", "Bash(git *", "Bash)", "Ba sh(ls)", "Ba*(ls)"],
    )
    def test_malformed_raises(self, text: str) -> None:
        with pytest.raises(InvalidRuleError):
            split_rule_text(text)

    def test_invalid_rule_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            split_rule_text("")
