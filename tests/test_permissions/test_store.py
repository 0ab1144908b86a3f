"""Tests for warden.permissions.store — layered rule storage."""

from __future__ import annotations

from typing import TYPE_CHECKING

from conftest import write_settings

from warden.permissions.rules import Decision, PermissionRule, Scope
from warden.permissions.store import PermissionStore

if TYPE_CHECKING:
    from pathlib import Path


def _rule(text: str, decision: Decision, scope: Scope) -> PermissionRule:
    return PermissionRule.parse(text, decision, scope)


class TestLoad:
    def test_loads_global_and_project(self, tmp_path: Path) -> None:
        g = write_settings(tmp_path / "global.json", allowed=["Edit"])
        p = write_settings(tmp_path / "project.json", denied=["Bash(rm *)"])
        store = PermissionStore.from_settings(g, p)
        assert [r.text for r in store.rules(Scope.GLOBAL)] == ["Edit"]
        assert [r.text for r in store.rules(Scope.PROJECT)] == ["Bash(rm *)"]
        assert store.load_errors == []

    def test_missing_paths_are_empty(self, tmp_path: Path) -> None:
        store = PermissionStore.from_settings(None, tmp_path / "missing.json")
        assert len(store) == 0

    def test_corrupt_file_leaves_scope_empty(self, tmp_path: Path) -> None:
        g = write_settings(tmp_path / "global.json", allowed=["Edit"])
        p = tmp_path / "project.json"
        p.write_text("{broken")
        store = PermissionStore.from_settings(g, p)
        assert store.rules(Scope.PROJECT) == []
        assert len(store.rules(Scope.GLOBAL)) == 1
        assert len(store.load_errors) == 1
        assert str(p) in store.load_errors[0]

    def test_one_bad_rule_discards_whole_file(self, tmp_path: Path) -> None:
        p = write_settings(tmp_path / "project.json", allowed=["Edit", "Bash(git *"])
        store = PermissionStore.from_settings(None, p)
        assert store.rules(Scope.PROJECT) == []
        assert store.load_errors

    def test_reload_keeps_session_rules(self, tmp_path: Path) -> None:
        p = write_settings(tmp_path / "project.json", allowed=["Edit"])
        store = PermissionStore.from_settings(None, p)
        store.add(_rule("Bash(ls)", Decision.ALLOW, Scope.SESSION_GRANTED))
        store.load(None, p)
        assert len(store.rules(Scope.SESSION_GRANTED)) == 1


class TestLookup:
    def test_filters_by_category(self) -> None:
        store = PermissionStore()
        store.add(_rule("Edit", Decision.ALLOW, Scope.GLOBAL))
        store.add(_rule("Bash(ls)", Decision.ALLOW, Scope.GLOBAL))
        assert [r.text for r in store.lookup("Edit")] == ["Edit"]

    def test_orders_by_scope_then_specificity(self) -> None:
        store = PermissionStore()
        store.add(_rule("Bash", Decision.ALLOW, Scope.GLOBAL))
        store.add(_rule("Bash(git *)", Decision.ALLOW, Scope.PROJECT))
        store.add(_rule("Bash(git status)", Decision.ALLOW, Scope.PROJECT))
        store.add(_rule("Bash(git *)", Decision.DENY, Scope.SESSION_DENIED))
        texts = [(r.scope, r.text) for r in store.lookup("Bash")]
        assert texts == [
            (Scope.SESSION_DENIED, "Bash(git *)"),
            (Scope.PROJECT, "Bash(git status)"),
            (Scope.PROJECT, "Bash(git *)"),
            (Scope.GLOBAL, "Bash"),
        ]

    def test_arguments_filter(self) -> None:
        store = PermissionStore()
        store.add(_rule("Bash(git *)", Decision.ALLOW, Scope.PROJECT))
        store.add(_rule("Bash(npm *)", Decision.ALLOW, Scope.PROJECT))
        assert [r.text for r in store.lookup("Bash", "npm test")] == ["Bash(npm *)"]


class TestMutation:
    def test_duplicates_ignored(self) -> None:
        store = PermissionStore()
        assert store.add(_rule("Edit", Decision.ALLOW, Scope.GLOBAL)) is True
        assert store.add(_rule("Edit", Decision.ALLOW, Scope.GLOBAL)) is False
        assert len(store) == 1

    def test_session_deny_drops_identical_grant(self) -> None:
        store = PermissionStore()
        store.add(_rule("Bash(ls)", Decision.ALLOW, Scope.SESSION_GRANTED))
        store.add(_rule("Bash(ls)", Decision.DENY, Scope.SESSION_DENIED))
        assert store.rules(Scope.SESSION_GRANTED) == []
        assert len(store.rules(Scope.SESSION_DENIED)) == 1

    def test_session_grant_drops_identical_deny(self) -> None:
        store = PermissionStore()
        store.add(_rule("Bash(ls)", Decision.DENY, Scope.SESSION_DENIED))
        store.add(_rule("Bash(ls)", Decision.ALLOW, Scope.SESSION_GRANTED))
        assert store.rules(Scope.SESSION_DENIED) == []

    def test_session_grant_keeps_broader_deny(self) -> None:
        store = PermissionStore()
        store.add(_rule("Bash(npm *)", Decision.DENY, Scope.SESSION_DENIED))
        store.add(_rule("Bash(npm install lodash)", Decision.ALLOW, Scope.SESSION_GRANTED))
        assert len(store.rules(Scope.SESSION_DENIED)) == 1

    def test_remove(self) -> None:
        store = PermissionStore()
        rule = _rule("Edit", Decision.ALLOW, Scope.GLOBAL)
        store.add(rule)
        assert store.remove(rule) is True
        assert store.remove(rule) is False

    def test_clear_scope(self) -> None:
        store = PermissionStore()
        store.add(_rule("Edit", Decision.ALLOW, Scope.SESSION_GRANTED))
        store.add(_rule("Write", Decision.ALLOW, Scope.SESSION_GRANTED))
        store.add(_rule("Edit", Decision.ALLOW, Scope.GLOBAL))
        assert store.clear(Scope.SESSION_GRANTED) == 2
        assert len(store) == 1

    def test_rules_all_scopes_highest_first(self) -> None:
        store = PermissionStore()
        store.add(_rule("Edit", Decision.ALLOW, Scope.GLOBAL))
        store.add(_rule("Write", Decision.DENY, Scope.SESSION_DENIED))
        assert [r.scope for r in store.rules()] == [Scope.SESSION_DENIED, Scope.GLOBAL]
