"""Permission layer — glob rules, layered store, decision engine, prompts."""

from warden.permissions.engine import DecisionEngine
from warden.permissions.pattern import PatternKind, RulePattern, matches
from warden.permissions.prompt import (
    PromptResolver,
    PromptResponse,
    console_resolver,
    static_resolver,
)
from warden.permissions.rules import (
    ActionRequest,
    Decision,
    DecisionResult,
    PermissionRule,
    Scope,
    Verdict,
)
from warden.permissions.settings import SettingsFile
from warden.permissions.store import PermissionStore

__all__ = [
    "ActionRequest",
    "Decision",
    "DecisionEngine",
    "DecisionResult",
    "PatternKind",
    "PermissionRule",
    "PermissionStore",
    "PromptResolver",
    "PromptResponse",
    "RulePattern",
    "Scope",
    "SettingsFile",
    "Verdict",
    "console_resolver",
    "matches",
    "static_resolver",
]
