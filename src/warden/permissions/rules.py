"""Permission data model — rules, scopes, action requests and decisions."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from warden.permissions.pattern import PatternKind, RulePattern, split_rule_text

# ---------------------------------------------------------------------------
# Tool categories
# ---------------------------------------------------------------------------

SHELL = "Bash"
EDIT = "Edit"
WRITE = "Write"
WEB_FETCH = "WebFetch"

FILE_CATEGORIES: frozenset[str] = frozenset({EDIT, WRITE})

INTERACTIVE_SOURCE = "interactive-session"

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Decision(Enum):
    """What a stored rule says about matching actions."""

    ALLOW = "allow"
    DENY = "deny"


class Verdict(Enum):
    """Outcome of a permission decision."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRES_PROMPT = "requires_prompt"


class Scope(Enum):
    """Provenance tier of a rule.  Higher precedence wins."""

    GLOBAL = "global"
    PROJECT = "project"
    SESSION_GRANTED = "session_granted"
    SESSION_DENIED = "session_denied"

    @property
    def precedence(self) -> int:
        return _SCOPE_PRECEDENCE[self]

    @property
    def is_session(self) -> bool:
        return self in (Scope.SESSION_GRANTED, Scope.SESSION_DENIED)

    @classmethod
    def by_precedence(cls) -> list[Scope]:
        """All scopes, highest precedence first."""
        return sorted(cls, key=lambda s: s.precedence, reverse=True)


_SCOPE_PRECEDENCE: dict[Scope, int] = {
    Scope.GLOBAL: 0,
    Scope.PROJECT: 1,
    Scope.SESSION_GRANTED: 2,
    Scope.SESSION_DENIED: 3,
}

# ---------------------------------------------------------------------------
# PermissionRule
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionRule:
    """A stored ``(category, pattern, decision, scope)`` rule.

    ``source`` records where the rule came from (a settings file path or
    :data:`INTERACTIVE_SOURCE`) and does not take part in equality.
    """

    category: str
    pattern: RulePattern
    decision: Decision
    scope: Scope
    source: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if self.scope is Scope.SESSION_DENIED and self.decision is not Decision.DENY:
            raise ValueError("Session-denied rules must have decision DENY")
        if self.scope is Scope.SESSION_GRANTED and self.decision is not Decision.ALLOW:
            raise ValueError("Session-granted rules must have decision ALLOW")

    @classmethod
    def parse(
        cls,
        text: str,
        decision: Decision,
        scope: Scope,
        source: str = "",
    ) -> PermissionRule:
        """Build a rule from its textual form, e.g. ``Bash(git *)``."""
        category, argument = split_rule_text(text)
        return cls(category, RulePattern.parse(argument), decision, scope, source)

    @classmethod
    def exact_for(
        cls,
        request: ActionRequest,
        decision: Decision,
        scope: Scope,
        source: str = INTERACTIVE_SOURCE,
    ) -> PermissionRule:
        """Build a rule covering exactly *request*'s arguments."""
        return cls(request.category, RulePattern.exact(request.arguments), decision, scope, source)

    @property
    def text(self) -> str:
        if self.pattern.kind is PatternKind.ANY:
            return self.category
        return f"{self.category}({self.pattern.text})"

    def same_target(self, other: PermissionRule) -> bool:
        """True if both rules cover the same category and pattern."""
        return self.category == other.category and self.pattern == other.pattern

    def covers(self, request: ActionRequest) -> bool:
        return self.category == request.category and self.pattern.matches(request.arguments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.text,
            "decision": self.decision.value,
            "scope": self.scope.value,
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# ActionRequest
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionRequest:
    """A side effect the agent loop wants to perform.

    ``arguments`` is the string rules are matched against (the command,
    file path, URL or extension argument string).  ``params`` carries the
    backend payload and is frozen on construction.
    """

    category: str
    arguments: str = ""
    params: Mapping[str, Any] = field(default_factory=dict, compare=False)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def action_string(self) -> str:
        return f"{self.category}({self.arguments})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "category": self.category,
            "arguments": self.arguments,
        }


# ---------------------------------------------------------------------------
# DecisionResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecisionResult:
    """Verdict for one request plus the rule that produced it, if any.

    ``indeterminate`` marks a DENY that was reached because no human
    answer arrived rather than because of an explicit decision.
    """

    verdict: Verdict
    matched_rule: PermissionRule | None = None
    reason: str = ""
    indeterminate: bool = False

    @property
    def allowed(self) -> bool:
        return self.verdict is Verdict.ALLOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "matched_rule": self.matched_rule.text if self.matched_rule else None,
            "reason": self.reason,
            "indeterminate": self.indeterminate,
        }
