"""Glob matcher for rule argument patterns — pure logic, no regex.

A rule such as ``Bash(git *)`` carries the argument pattern ``git *``.
Every character except ``*`` is literal; ``*`` matches any run of
characters, including an empty one.  Whitespace is normalized on both
sides before comparison, so ``git  status`` and ``git status`` are the
same argument string.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from warden.errors import InvalidRuleError

WILDCARD = "*"
_LEGACY_PREFIX_SUFFIX = ":*"


class PatternKind(Enum):
    """How a pattern constrains the arguments of its category."""

    ANY = "any"
    WILDCARD = "wildcard"
    EXACT = "exact"


def normalize(text: str) -> str:
    """Collapse runs of whitespace to one space and strip both ends."""
    return " ".join(text.split())


def _glob_match(pattern: str, text: str) -> bool:
    """Match *text* against *pattern* where ``*`` is the only metacharacter."""
    parts = pattern.split(WILDCARD)
    if len(parts) == 1:
        return pattern == text

    head, *middle, tail = parts
    if len(head) + len(tail) > len(text):
        return False
    if not text.startswith(head) or not text.endswith(tail):
        return False

    pos = len(head)
    end = len(text) - len(tail)
    for part in middle:
        if not part:
            continue
        idx = text.find(part, pos, end)
        if idx < 0:
            return False
        pos = idx + len(part)
    return True


@dataclass(frozen=True)
class RulePattern:
    """A parsed argument pattern.

    ``text`` holds the normalized pattern; it is empty for
    :attr:`PatternKind.ANY`.
    """

    kind: PatternKind
    text: str = ""

    @classmethod
    def parse(cls, text: str | None) -> RulePattern:
        """Parse the text between a rule's parentheses.

        ``None`` (a bare category) yields :data:`ANY_PATTERN`.  The legacy
        ``prefix:*`` form is rewritten to ``prefix *``.
        """
        if text is None:
            return ANY_PATTERN
        normalized = normalize(text)
        if normalized.endswith(_LEGACY_PREFIX_SUFFIX):
            prefix = normalized[: -len(_LEGACY_PREFIX_SUFFIX)].rstrip()
            normalized = f"{prefix} {WILDCARD}" if prefix else WILDCARD
        if WILDCARD in normalized:
            return cls(PatternKind.WILDCARD, normalized)
        return cls(PatternKind.EXACT, normalized)

    @classmethod
    def exact(cls, arguments: str) -> RulePattern:
        """Build an exact pattern for *arguments*, even if they contain ``*``."""
        return cls(PatternKind.EXACT, normalize(arguments))

    @property
    def literal_prefix(self) -> str:
        if self.kind is PatternKind.WILDCARD:
            return self.text.split(WILDCARD, 1)[0]
        return self.text

    @property
    def specificity(self) -> tuple[int, int, int]:
        """Sortable rank: exact > longest literal prefix > bare category."""
        if self.kind is PatternKind.ANY:
            return (0, 0, 0)
        if self.kind is PatternKind.EXACT:
            return (2, len(self.text), len(self.text))
        literal_chars = len(self.text) - self.text.count(WILDCARD)
        return (1, len(self.literal_prefix), literal_chars)

    def matches(self, arguments: str) -> bool:
        """Return True if *arguments* fall under this pattern."""
        if self.kind is PatternKind.ANY:
            return True
        candidate = normalize(arguments)
        if self.kind is PatternKind.EXACT:
            return candidate == self.text
        if _glob_match(self.text, candidate):
            return True
        # ``git *`` also covers a bare ``git``
        trailing = f" {WILDCARD}"
        return self.text.endswith(trailing) and _glob_match(
            self.text[: -len(trailing)], candidate
        )


ANY_PATTERN = RulePattern(PatternKind.ANY)


def matches(pattern: RulePattern, arguments: str) -> bool:
    """Module-level form of :meth:`RulePattern.matches`."""
    return pattern.matches(arguments)


def split_rule_text(text: str) -> tuple[str, str | None]:
    """Split ``Category(args)`` into ``("Category", "args")``.

    A bare ``Category`` returns ``("Category", None)``.  Raises
    :exc:`InvalidRuleError` on malformed input.
    """
    stripped = text.strip()
    if not stripped:
        raise InvalidRuleError("Empty permission rule")

    if "(" not in stripped:
        if ")" in stripped:
            raise InvalidRuleError(f"Unbalanced parentheses in rule: {text!r}")
        category, argument = stripped, None
    else:
        if not stripped.endswith(")"):
            raise InvalidRuleError(f"Rule must end with ')': {text!r}")
        category, _, rest = stripped.partition("(")
        category = category.strip()
        argument = rest[:-1]

    if not category:
        raise InvalidRuleError(f"Missing tool category in rule: {text!r}")
    if any(ch.isspace() for ch in category) or WILDCARD in category:
        raise InvalidRuleError(f"Invalid tool category {category!r} in rule: {text!r}")
    return category, argument
