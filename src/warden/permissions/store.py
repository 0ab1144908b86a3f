"""Layered permission store — Global, Project and in-memory session scopes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from warden.errors import ConfigurationCorruptError
from warden.permissions.rules import PermissionRule, Scope
from warden.permissions.settings import SettingsFile

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("warden.permissions.store")

_FILE_SCOPES = (Scope.GLOBAL, Scope.PROJECT)


class PermissionStore:
    """Holds an ordered rule list per :class:`Scope`.

    Global and Project scopes are loaded from settings files and treated
    as read-only configuration here; session scopes are mutated by the
    decision engine and the session's management commands.
    """

    def __init__(self) -> None:
        self._rules: dict[Scope, list[PermissionRule]] = {scope: [] for scope in Scope}
        self.load_errors: list[str] = []

    @classmethod
    def from_settings(
        cls,
        global_path: Path | None,
        project_path: Path | None,
    ) -> PermissionStore:
        store = cls()
        store.load(global_path, project_path)
        return store

    # -- Loading -------------------------------------------------------------

    def load(self, global_path: Path | None, project_path: Path | None) -> None:
        """(Re)load the file-backed scopes.

        A corrupt or unreadable file leaves its scope empty and is recorded
        in :attr:`load_errors`, so nothing it would have allowed is allowed.
        """
        self.load_errors = []
        for scope, path in zip(_FILE_SCOPES, (global_path, project_path), strict=True):
            self._rules[scope] = []
            if path is None:
                continue
            try:
                rules = SettingsFile.load(path).to_rules(scope)
            except ConfigurationCorruptError as exc:
                logger.warning(
                    "Ignoring %s permission settings, failing closed: %s", scope.value, exc
                )
                self.load_errors.append(str(exc))
                continue
            self._rules[scope] = rules
            logger.info("Loaded %d %s rule(s) from %s", len(rules), scope.value, path)

    # -- Queries -------------------------------------------------------------

    def lookup(self, category: str, arguments: str | None = None) -> list[PermissionRule]:
        """Return candidate rules for *category* across all scopes.

        Ordered by scope precedence, then specificity (most specific first),
        then insertion order.  When *arguments* is given only rules whose
        pattern matches are returned.
        """
        candidates = [
            rule
            for scope in Scope.by_precedence()
            for rule in self._rules[scope]
            if rule.category == category
            and (arguments is None or rule.pattern.matches(arguments))
        ]
        return sorted(
            candidates,
            key=lambda r: (r.scope.precedence, r.pattern.specificity),
            reverse=True,
        )

    def rules(self, scope: Scope | None = None) -> list[PermissionRule]:
        """All rules, or those of one *scope*, highest precedence first."""
        if scope is not None:
            return list(self._rules[scope])
        return [rule for s in Scope.by_precedence() for rule in self._rules[s]]

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._rules.values())

    # -- Mutation ------------------------------------------------------------

    def add(self, rule: PermissionRule) -> bool:
        """Append *rule* to its scope.  Returns False for a duplicate.

        A session denial drops an identical session grant and vice versa.
        """
        bucket = self._rules[rule.scope]
        if rule in bucket:
            return False
        opposite = {
            Scope.SESSION_DENIED: Scope.SESSION_GRANTED,
            Scope.SESSION_GRANTED: Scope.SESSION_DENIED,
        }.get(rule.scope)
        if opposite is not None:
            self._rules[opposite] = [r for r in self._rules[opposite] if not r.same_target(rule)]
        bucket.append(rule)
        logger.debug("Added %s rule %s", rule.scope.value, rule.text)
        return True

    def remove(self, rule: PermissionRule) -> bool:
        bucket = self._rules[rule.scope]
        if rule not in bucket:
            return False
        bucket.remove(rule)
        logger.debug("Removed %s rule %s", rule.scope.value, rule.text)
        return True

    def clear(self, scope: Scope) -> int:
        """Drop every rule in *scope*.  Returns the number removed."""
        count = len(self._rules[scope])
        self._rules[scope] = []
        return count
