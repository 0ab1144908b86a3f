"""Session controller — the boundary between the agent loop and the broker.

A :class:`Session` owns one permission store (with its in-memory session
scopes), a decision engine, an executor, a prompt resolver and, when
auditing is on, an audit database.  ``handle_proposed_action`` is the only
entry point the agent loop needs: it authorizes, executes approved
actions, and packages the outcome.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import aiosqlite

from warden.errors import ConfigurationCorruptError, ErrorKind
from warden.executor import create_default_executor
from warden.executor.models import ExecutionStatus
from warden.permissions.engine import DecisionEngine
from warden.permissions.pattern import WILDCARD, PatternKind
from warden.permissions.prompt import console_resolver, static_resolver
from warden.permissions.rules import (
    INTERACTIVE_SOURCE,
    Decision,
    DecisionResult,
    PermissionRule,
    Scope,
    Verdict,
)
from warden.permissions.settings import SettingsFile
from warden.permissions.store import PermissionStore
from warden.storage.db import Database

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from warden.config import BrokerConfig
    from warden.executor.executor import ActionExecutor
    from warden.executor.extensions import ExtensionRegistry
    from warden.executor.models import ExecutionResult, OutputCallback
    from warden.permissions.prompt import PromptResolver
    from warden.permissions.rules import ActionRequest

logger = logging.getLogger("warden.session")

# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


class OutcomeStatus(Enum):
    """Final state of one proposed action, as seen by the agent loop."""

    COMPLETED = "completed"
    DENIED = "denied"
    INDETERMINATE = "indeterminate"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


_EXECUTION_OUTCOMES: dict[ExecutionStatus, OutcomeStatus] = {
    ExecutionStatus.SUCCESS: OutcomeStatus.COMPLETED,
    ExecutionStatus.FAILED: OutcomeStatus.FAILED,
    ExecutionStatus.TIMEOUT: OutcomeStatus.TIMEOUT,
    ExecutionStatus.CANCELLED: OutcomeStatus.CANCELLED,
}

_OUTCOME_ERRORS: dict[OutcomeStatus, ErrorKind] = {
    OutcomeStatus.DENIED: ErrorKind.AUTHORIZATION_DENIED,
    OutcomeStatus.INDETERMINATE: ErrorKind.AUTHORIZATION_INDETERMINATE,
    OutcomeStatus.FAILED: ErrorKind.EXECUTION_FAILURE,
    OutcomeStatus.TIMEOUT: ErrorKind.TIMEOUT,
    OutcomeStatus.CANCELLED: ErrorKind.CANCELLED,
}


@dataclass(frozen=True)
class ActionOutcome:
    """What happened to one proposed action.

    ``result`` is ``None`` when the action never reached the executor
    (denied, indeterminate, or cancelled while waiting for a prompt).
    """

    request: ActionRequest
    status: OutcomeStatus
    decision: DecisionResult
    result: ExecutionResult | None = None

    @property
    def error_kind(self) -> ErrorKind | None:
        return _OUTCOME_ERRORS.get(self.status)

    @property
    def detail(self) -> str:
        if self.result is not None:
            return self.result.error or ""
        return self.decision.reason

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "request": self.request.to_dict(),
            "status": self.status.value,
            "decision": self.decision.to_dict(),
        }
        if self.error_kind is not None:
            d["error_kind"] = self.error_kind.value
        if self.result is not None:
            d["result"] = self.result.to_dict()
        return d


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Session:
    """One agent session's permission state and execution pipeline.

    Parameters
    ----------
    engine:
        Decision engine over this session's store.
    executor:
        Executor for approved actions.
    resolver:
        Prompt resolver consulted when no rule matches.  ``None`` turns
        every unmatched request into an indeterminate denial.
    database:
        Optional audit database; one row is written per handled request.
    project_settings_path / global_settings_path:
        Settings files backing the Project and Global scopes, used when
        rules are edited or persisted through the session.
    default_timeout:
        Timeout passed to the executor when the caller gives none.
    """

    def __init__(
        self,
        engine: DecisionEngine,
        executor: ActionExecutor,
        *,
        resolver: PromptResolver | None = None,
        database: Database | None = None,
        project_settings_path: Path | None = None,
        global_settings_path: Path | None = None,
        default_timeout: float | None = None,
        session_id: str | None = None,
        owns_database: bool = False,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._engine = engine
        self._executor = executor
        self._resolver = resolver
        self._db = database
        self._owns_db = owns_database
        self._project_settings_path = project_settings_path
        self._global_settings_path = global_settings_path
        self._default_timeout = default_timeout
        self._lock = asyncio.Lock()
        self._seen_request_ids: set[str] = set()
        self._cancel_event: asyncio.Event | None = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        config: BrokerConfig,
        *,
        resolver: PromptResolver | None = None,
        executor: ActionExecutor | None = None,
        extensions: ExtensionRegistry | None = None,
        database: Database | None = None,
    ) -> Session:
        """Load settings and assemble a session from *config*.

        Without an explicit *resolver*, headless sessions deny every
        prompt and interactive sessions ask on the terminal.
        """
        store = PermissionStore.from_settings(
            config.global_settings_path, config.project_settings_path
        )
        engine = DecisionEngine(
            store,
            bypass=config.bypass_permissions,
            prompt_timeout=config.prompt_timeout,
        )
        if resolver is None:
            resolver = static_resolver() if config.headless else console_resolver()
        if executor is None:
            executor = create_default_executor(
                config.project_dir,
                extensions=extensions,
                default_timeout=config.default_timeout,
                max_output_len=config.max_output_len,
                max_concurrency=config.max_concurrency,
                inherit_env=config.inherit_env,
            )

        owns_db = False
        if database is None and config.audit_enabled:
            database = Database(config.audit_db_path)
            await database.init()
            owns_db = True

        session = cls(
            engine,
            executor,
            resolver=resolver,
            database=database,
            project_settings_path=config.project_settings_path,
            global_settings_path=config.global_settings_path,
            default_timeout=config.default_timeout,
            owns_database=owns_db,
        )
        logger.info(
            "Session %s opened (project=%s, headless=%s, bypass=%s)",
            session.session_id, config.project_dir, config.headless, engine.bypass,
        )
        return session

    async def close(self) -> None:
        """Discard session rules and release the audit database."""
        if self._closed:
            return
        self._closed = True
        self.clear_session_rules()
        if self._db is not None and self._owns_db:
            await self._db.close()
        logger.info("Session %s closed", self.session_id)

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -- Properties ----------------------------------------------------------

    @property
    def engine(self) -> DecisionEngine:
        return self._engine

    @property
    def store(self) -> PermissionStore:
        return self._engine.store

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    @property
    def bypass(self) -> bool:
        return self._engine.bypass

    @property
    def closed(self) -> bool:
        return self._closed

    # -- Agent loop boundary -------------------------------------------------

    async def handle_proposed_action(
        self,
        request: ActionRequest,
        *,
        timeout: float | None = None,
        on_output: OutputCallback | None = None,
    ) -> ActionOutcome:
        """Authorize, execute if allowed, and report the outcome.

        Requests are handled one at a time in arrival order.  A request
        whose ``request_id`` was already handled is denied without being
        evaluated again.  File paths are canonicalized before any rule is
        consulted, and the outcome carries the canonical request.
        """
        if self._closed:
            raise RuntimeError(f"Session {self.session_id} is closed")

        async with self._lock:
            if request.request_id in self._seen_request_ids:
                logger.warning("Rejected reused request id %s", request.request_id)
                decision = DecisionResult(
                    Verdict.DENY, reason=f"request id {request.request_id} was already handled"
                )
                return ActionOutcome(request, OutcomeStatus.DENIED, decision)
            self._seen_request_ids.add(request.request_id)
            request = self._executor.canonicalize(request)

            cancel = asyncio.Event()
            self._cancel_event = cancel
            try:
                outcome = await self._handle(request, cancel, timeout, on_output)
            finally:
                self._cancel_event = None

            await self._audit(outcome)
            return outcome

    async def _handle(
        self,
        request: ActionRequest,
        cancel: asyncio.Event,
        timeout: float | None,
        on_output: OutputCallback | None,
    ) -> ActionOutcome:
        decision = await self._authorize(request, cancel)
        if decision is None:
            decision = DecisionResult(
                Verdict.DENY, reason="cancelled while awaiting permission", indeterminate=True
            )
            return ActionOutcome(request, OutcomeStatus.CANCELLED, decision)

        if not decision.allowed:
            status = OutcomeStatus.INDETERMINATE if decision.indeterminate else OutcomeStatus.DENIED
            logger.info("%s %s: %s", request.action_string, status.value, decision.reason)
            return ActionOutcome(request, status, decision)

        result = await self._executor.execute(
            request,
            timeout=timeout if timeout is not None else self._default_timeout,
            cancel=cancel,
            on_output=on_output,
        )
        return ActionOutcome(request, _EXECUTION_OUTCOMES[result.status], decision, result)

    async def _authorize(
        self, request: ActionRequest, cancel: asyncio.Event
    ) -> DecisionResult | None:
        """Run the engine, returning ``None`` if :meth:`cancel` fires first."""
        auth = asyncio.create_task(self._engine.authorize(request, self._resolver))
        cancel_wait = asyncio.create_task(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {auth, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            auth.cancel()
            raise
        finally:
            cancel_wait.cancel()

        if auth in done:
            return auth.result()
        auth.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await auth
        return None

    def cancel(self) -> bool:
        """Cancel the in-flight action.  Returns False if nothing is running."""
        if self._cancel_event is None:
            return False
        self._cancel_event.set()
        return True

    async def _audit(self, outcome: ActionOutcome) -> None:
        if self._db is None:
            return
        rule = outcome.decision.matched_rule
        try:
            await self._db.log_decision(
                session_id=self.session_id,
                request_id=outcome.request.request_id,
                category=outcome.request.category,
                arguments=outcome.request.arguments,
                verdict=outcome.decision.verdict.value,
                matched_rule=rule.text if rule is not None else None,
                outcome=outcome.status.value,
                detail=outcome.detail or None,
            )
        except (aiosqlite.Error, RuntimeError):
            logger.warning("Failed to write audit row for %s", outcome.request.request_id, exc_info=True)

    # -- Rule management -----------------------------------------------------

    def list_rules(self, scope: Scope | None = None) -> list[PermissionRule]:
        return self.store.rules(scope)

    def add_rule(self, text: str, decision: Decision, scope: Scope) -> bool:
        """Add a rule in textual form.  Returns False if already present.

        Session scopes change in memory; Project and Global scopes are
        written to their settings file and reloaded.  Raises
        :exc:`~warden.errors.InvalidRuleError` for malformed *text* and
        :exc:`~warden.errors.ConfigurationCorruptError` if the settings
        file cannot be parsed (it is left untouched).
        """
        if scope.is_session:
            rule = PermissionRule.parse(text, decision, scope, source=INTERACTIVE_SOURCE)
            return self.store.add(rule)
        settings = self._load_settings(scope)
        added = settings.add_rule(text, decision)
        if added:
            settings.save()
            self._reload()
        return added

    def remove_rule(self, text: str, decision: Decision, scope: Scope) -> bool:
        """Remove a rule.  Raises like :meth:`add_rule` for file-backed scopes."""
        if scope.is_session:
            return self.store.remove(PermissionRule.parse(text, decision, scope))
        settings = self._load_settings(scope)
        removed = settings.remove_rule(text, decision)
        if removed:
            settings.save()
            self._reload()
        return removed

    def clear_session_rules(self) -> int:
        return self.store.clear(Scope.SESSION_GRANTED) + self.store.clear(Scope.SESSION_DENIED)

    def persist_session_rules(self) -> int:
        """Write session rules to the project settings file.

        Exact rules whose arguments contain ``*`` are skipped: written out
        they would read back as wildcards covering more than was approved.
        So is a grant covered by a less specific session denial, which it
        would outrank once both share the project scope.
        Returns the number of rules written.  Raises
        :exc:`~warden.errors.ConfigurationCorruptError` if the project
        settings file cannot be parsed.
        """
        denials = self.store.rules(Scope.SESSION_DENIED)
        grants = self.store.rules(Scope.SESSION_GRANTED)
        if not denials and not grants:
            return 0

        settings = self._load_settings(Scope.PROJECT)
        written = 0
        persisted_denials: list[PermissionRule] = []
        for rule in denials + grants:
            if rule.pattern.kind is PatternKind.EXACT and WILDCARD in rule.pattern.text:
                logger.warning("Not persisting %s: literal '*' would widen the rule", rule.text)
                continue
            if rule.decision is Decision.ALLOW:
                covering = _covering_denial(rule, persisted_denials)
                if covering is not None:
                    logger.warning(
                        "Not persisting %s: session denial %s covers it", rule.text, covering.text
                    )
                    continue
            else:
                persisted_denials.append(rule)
            if settings.add_rule(rule.text, rule.decision):
                written += 1
        if written:
            settings.save()
            self._reload()
        logger.info("Persisted %d session rule(s) to %s", written, settings.path)
        return written

    def _load_settings(self, scope: Scope) -> SettingsFile:
        try:
            return SettingsFile.load(self._settings_path(scope))
        except ConfigurationCorruptError as exc:
            logger.error("Refusing to edit corrupt settings: %s", exc)
            raise

    def _settings_path(self, scope: Scope) -> Path:
        path = (
            self._global_settings_path if scope is Scope.GLOBAL else self._project_settings_path
        )
        if path is None:
            raise RuntimeError(f"No settings file configured for the {scope.value} scope")
        return path

    def _reload(self) -> None:
        self.store.load(self._global_settings_path, self._project_settings_path)


def _covering_denial(
    grant: PermissionRule, denials: list[PermissionRule]
) -> PermissionRule | None:
    """Return a denial that overlaps *grant* but is less specific than it."""
    for denial in denials:
        if denial.category != grant.category:
            continue
        if denial.pattern.specificity >= grant.pattern.specificity:
            continue
        if denial.pattern.matches(grant.pattern.text) or denial.pattern.matches(
            grant.pattern.literal_prefix
        ):
            return denial
    return None
