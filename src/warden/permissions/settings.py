"""Permission settings files — ``allowedTools`` / ``deniedTools`` JSON.

Example ``.warden/settings.json``::

    {
        "allowedTools": ["Edit", "Bash(git *)"],
        "deniedTools": ["Bash(rm *)"]
    }

Unknown top-level keys are preserved on save.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from warden.errors import ConfigurationCorruptError, InvalidRuleError
from warden.permissions.rules import Decision, PermissionRule, Scope

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("warden.permissions.settings")

ALLOWED_KEY = "allowedTools"
DENIED_KEY = "deniedTools"


def _rule_list(data: dict[str, Any], key: str, path: Path) -> list[str]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationCorruptError(str(path), f"{key!r} must be a list of strings")
    return list(value)


def canonical_text(text: str) -> str:
    """Normalized form of rule *text*, e.g. ``Bash(git  *)`` becomes ``Bash(git *)``.

    Raises :exc:`InvalidRuleError` if *text* is malformed.
    """
    return PermissionRule.parse(text, Decision.ALLOW, Scope.GLOBAL).text


def _rule_key(text: str) -> str:
    try:
        return canonical_text(text)
    except InvalidRuleError:
        return text


@dataclass
class SettingsFile:
    """One permission settings file on disk."""

    path: Path
    allowed: list[str] = field(default_factory=list)
    denied: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> SettingsFile:
        """Read *path*.  A missing file yields empty settings.

        Raises :exc:`ConfigurationCorruptError` if the file exists but is
        unreadable, is not a JSON object, or holds malformed rule lists.
        """
        if not path.exists():
            return cls(path=path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationCorruptError(str(path), f"unreadable: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationCorruptError(str(path), f"invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationCorruptError(str(path), "top level must be a JSON object")

        allowed = _rule_list(data, ALLOWED_KEY, path)
        denied = _rule_list(data, DENIED_KEY, path)
        extra = {k: v for k, v in data.items() if k not in (ALLOWED_KEY, DENIED_KEY)}
        return cls(path=path, allowed=allowed, denied=denied, extra=extra)

    def to_rules(self, scope: Scope) -> list[PermissionRule]:
        """Parse every entry into a :class:`PermissionRule` for *scope*.

        Deny entries come first so that, at equal specificity, file order
        never lets an allow shadow a deny.
        """
        rules: list[PermissionRule] = []
        entries = [(text, Decision.DENY) for text in self.denied]
        entries += [(text, Decision.ALLOW) for text in self.allowed]
        for text, decision in entries:
            try:
                rules.append(PermissionRule.parse(text, decision, scope, source=str(self.path)))
            except InvalidRuleError as exc:
                raise ConfigurationCorruptError(str(self.path), str(exc)) from exc
        return rules

    def add_rule(self, text: str, decision: Decision) -> bool:
        """Add *text* to the list for *decision*.  Returns False if present.

        Entries are compared in normalized form and stored that way.  The
        opposite list loses any equivalent entry.
        """
        key = canonical_text(text)
        target, other = self._lists(decision)
        other[:] = [entry for entry in other if _rule_key(entry) != key]
        if any(_rule_key(entry) == key for entry in target):
            return False
        target.append(key)
        return True

    def remove_rule(self, text: str, decision: Decision | None = None) -> bool:
        """Remove *text* from one list (or both when *decision* is None)."""
        key = _rule_key(text)
        removed = False
        for dec in (Decision.ALLOW, Decision.DENY):
            if decision is not None and dec is not decision:
                continue
            target, _ = self._lists(dec)
            kept = [entry for entry in target if entry != text and _rule_key(entry) != key]
            if len(kept) != len(target):
                target[:] = kept
                removed = True
        return removed

    def save(self) -> None:
        """Persist to :attr:`path` as JSON."""
        data: dict[str, Any] = dict(self.extra)
        data[ALLOWED_KEY] = self.allowed
        data[DENIED_KEY] = self.denied
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        logger.info("Saved permission settings to %s", self.path)

    def _lists(self, decision: Decision) -> tuple[list[str], list[str]]:
        if decision is Decision.ALLOW:
            return self.allowed, self.denied
        return self.denied, self.allowed
