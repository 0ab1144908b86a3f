"""Command-line front end for the permission broker.

Usage:
    warden rules [--scope global|project]
    warden allow "Bash(git *)" [--global]
    warden deny "Bash(rm *)" [--global]
    warden remove "Bash(git *)" [--global]
    warden check Bash "git status"
    warden run Bash "ls -la" [--timeout 30] [--headless]
    warden audit --last 20
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys

from dotenv import load_dotenv

from warden.config import BrokerConfig
from warden.errors import ConfigurationCorruptError, InvalidRuleError
from warden.executor import create_default_executor
from warden.permissions.engine import DecisionEngine
from warden.permissions.rules import ActionRequest, Decision, Scope, Verdict
from warden.permissions.settings import SettingsFile
from warden.permissions.store import PermissionStore
from warden.session import OutcomeStatus, Session
from warden.storage.db import Database

logger = logging.getLogger("warden.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_DENIED = 3
EXIT_TIMEOUT = 124
EXIT_CANCELLED = 130

_OUTCOME_EXIT_CODES: dict[OutcomeStatus, int] = {
    OutcomeStatus.COMPLETED: EXIT_OK,
    OutcomeStatus.DENIED: EXIT_DENIED,
    OutcomeStatus.INDETERMINATE: EXIT_DENIED,
    OutcomeStatus.FAILED: EXIT_FAILED,
    OutcomeStatus.TIMEOUT: EXIT_TIMEOUT,
    OutcomeStatus.CANCELLED: EXIT_CANCELLED,
}

_BYPASS_BANNER = (
    "WARNING: permission checks are DISABLED for this session "
    "(--dangerously-skip-permissions). Every action will run unchecked."
)


def _load_store(config: BrokerConfig) -> PermissionStore:
    store = PermissionStore.from_settings(config.global_settings_path, config.project_settings_path)
    for error in store.load_errors:
        print(f"warning: ignored corrupt settings: {error}", file=sys.stderr)
    return store


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_rules(config: BrokerConfig, args: argparse.Namespace) -> int:
    """List effective file-backed rules."""
    store = _load_store(config)
    scopes = [Scope(args.scope)] if args.scope else [Scope.PROJECT, Scope.GLOBAL]
    rules = [rule for scope in scopes for rule in store.rules(scope)]
    if not rules:
        print("No rules found.")
        return EXIT_OK
    print(f"{'Scope':<10} {'Decision':<9} Rule")
    print("-" * 50)
    for rule in rules:
        print(f"{rule.scope.value:<10} {rule.decision.value:<9} {rule.text}")
    print(f"\n{len(rules)} rule(s)")
    return EXIT_OK


def _edit_settings(config: BrokerConfig, args: argparse.Namespace, decision: Decision | None) -> int:
    path = config.global_settings_path if args.use_global else config.project_settings_path
    try:
        settings = SettingsFile.load(path)
        if decision is None:
            changed = settings.remove_rule(args.rule)
        else:
            changed = settings.add_rule(args.rule, decision)
    except (InvalidRuleError, ConfigurationCorruptError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if not changed:
        print(f"No change: {args.rule}")
        return EXIT_OK
    settings.save()
    verb = "Removed" if decision is None else f"Added {decision.value} rule"
    print(f"{verb} {args.rule} in {path}")
    return EXIT_OK


def cmd_allow(config: BrokerConfig, args: argparse.Namespace) -> int:
    return _edit_settings(config, args, Decision.ALLOW)


def cmd_deny(config: BrokerConfig, args: argparse.Namespace) -> int:
    return _edit_settings(config, args, Decision.DENY)


def cmd_remove(config: BrokerConfig, args: argparse.Namespace) -> int:
    return _edit_settings(config, args, None)


def cmd_check(config: BrokerConfig, args: argparse.Namespace) -> int:
    """Print the verdict for an action without running or prompting."""
    engine = DecisionEngine(_load_store(config))
    request = create_default_executor(config.project_dir).canonicalize(
        ActionRequest(args.category, args.arguments)
    )
    result = engine.decide(request)
    matched = result.matched_rule.text if result.matched_rule else "-"
    print(f"{result.verdict.value}  (rule: {matched}; {result.reason})")
    return EXIT_DENIED if result.verdict is Verdict.DENY else EXIT_OK


async def _run_action(config: BrokerConfig, args: argparse.Namespace) -> int:
    params: dict[str, str] = {}
    if args.content is not None:
        params["content"] = args.content
    if args.old_string is not None:
        params["old_string"] = args.old_string
    if args.new_string is not None:
        params["new_string"] = args.new_string
    request = ActionRequest(args.category, args.arguments, params=params)

    async def echo(stream: str, line: str) -> None:
        print(line, file=sys.stderr if stream == "stderr" else sys.stdout, flush=True)

    async with await Session.open(config) as session:
        outcome = await session.handle_proposed_action(
            request, timeout=args.timeout, on_output=echo
        )
    if outcome.status is not OutcomeStatus.COMPLETED:
        print(f"{outcome.status.value}: {outcome.detail}", file=sys.stderr)
    return _OUTCOME_EXIT_CODES[outcome.status]


def cmd_run(config: BrokerConfig, args: argparse.Namespace) -> int:
    """Authorize and execute one action, streaming its output."""
    config = dataclasses.replace(
        config,
        headless=config.headless or args.headless,
        bypass_permissions=config.bypass_permissions or args.dangerously_skip_permissions,
    )
    if config.bypass_permissions:
        print(_BYPASS_BANNER, file=sys.stderr)
    return asyncio.run(_run_action(config, args))


async def _show_audit(config: BrokerConfig, limit: int) -> int:
    if not config.audit_db_path.exists():
        print(f"Audit database not found at {config.audit_db_path}")
        return EXIT_FAILED
    db = Database(config.audit_db_path)
    await db.init()
    try:
        rows = await db.list_decisions(limit=limit)
    finally:
        await db.close()
    if not rows:
        print("No audit entries.")
        return EXIT_OK
    for row in reversed(rows):
        rule = f" rule={row['matched_rule']}" if row["matched_rule"] else ""
        print(
            f"[{row['timestamp']}] {row['category']}({row['arguments'][:80]}) "
            f"{row['verdict']} -> {row['outcome']}{rule}"
        )
    print(f"\n{len(rows)} entr{'y' if len(rows) == 1 else 'ies'}")
    return EXIT_OK


def cmd_audit(config: BrokerConfig, args: argparse.Namespace) -> int:
    """Show recent audit entries, oldest first."""
    return asyncio.run(_show_audit(config, args.last))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="warden",
        description="Tool permission broker for agent sessions",
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    rules_parser = subparsers.add_parser("rules", help="List permission rules")
    rules_parser.add_argument(
        "--scope", choices=[Scope.GLOBAL.value, Scope.PROJECT.value], default=None
    )

    for name, help_text in (
        ("allow", "Add an allow rule"),
        ("deny", "Add a deny rule"),
        ("remove", "Remove a rule from both lists"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("rule", help='Rule text, e.g. "Bash(git *)"')
        sub.add_argument(
            "--global",
            dest="use_global",
            action="store_true",
            help="Edit the global settings file instead of the project one",
        )

    check_parser = subparsers.add_parser("check", help="Show the verdict for an action")
    check_parser.add_argument("category", help="Action category, e.g. Bash")
    check_parser.add_argument("arguments", nargs="?", default="", help="Action arguments")

    run_parser = subparsers.add_parser("run", help="Authorize and run an action")
    run_parser.add_argument("category", help="Action category, e.g. Bash")
    run_parser.add_argument("arguments", nargs="?", default="", help="Action arguments")
    run_parser.add_argument("--timeout", type=float, default=None, help="Seconds before timeout")
    run_parser.add_argument("--headless", action="store_true", help="Deny instead of prompting")
    run_parser.add_argument(
        "--dangerously-skip-permissions",
        action="store_true",
        help="Run without any permission checks",
    )
    run_parser.add_argument("--content", default=None, help="File content for Write")
    run_parser.add_argument("--old-string", default=None, help="Text to replace for Edit")
    run_parser.add_argument("--new-string", default=None, help="Replacement text for Edit")

    audit_parser = subparsers.add_parser("audit", help="Show recent audit entries")
    audit_parser.add_argument("--last", type=int, default=20, help="Number of entries (default: 20)")

    return parser


_DISPATCH = {
    "rules": cmd_rules,
    "allow": cmd_allow,
    "deny": cmd_deny,
    "remove": cmd_remove,
    "check": cmd_check,
    "run": cmd_run,
    "audit": cmd_audit,
}


def main(argv: list[str] | None = None) -> None:
    """Entry point for the ``warden`` command."""
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("WARDEN_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(EXIT_USAGE)

    try:
        config = BrokerConfig.from_env()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(EXIT_USAGE)

    try:
        code = _DISPATCH[args.command](config, args)
    except KeyboardInterrupt:
        code = EXIT_CANCELLED
    sys.exit(code)


if __name__ == "__main__":
    main()
