"""Decision engine — turns an action request into ALLOW, DENY or a prompt.

Precedence across scopes: session-denied → session-granted → project →
global → prompt.  Inside the project and global scopes the most specific
matching rule wins; at equal specificity a deny beats an allow.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from warden.permissions.prompt import PromptResponse
from warden.permissions.rules import (
    Decision,
    DecisionResult,
    PermissionRule,
    Scope,
    Verdict,
)

if TYPE_CHECKING:
    from warden.permissions.prompt import PromptResolver
    from warden.permissions.rules import ActionRequest
    from warden.permissions.store import PermissionStore

logger = logging.getLogger("warden.permissions.engine")


def _most_specific(rules: list[PermissionRule]) -> PermissionRule:
    """Pick the winning rule within one scope (first wins on full ties)."""
    return max(rules, key=lambda r: (r.pattern.specificity, r.decision is Decision.DENY))


class DecisionEngine:
    """Stateless decision logic over a :class:`PermissionStore`.

    Parameters
    ----------
    store:
        Rule store consulted by :meth:`decide` and updated by :meth:`resolve`.
    bypass:
        Allow everything without consulting the store.  Fixed for the
        lifetime of the engine.
    prompt_timeout:
        Seconds to wait for a prompt resolver before treating the request
        as indeterminate.  ``None`` waits indefinitely.
    """

    def __init__(
        self,
        store: PermissionStore,
        *,
        bypass: bool = False,
        prompt_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._bypass = bypass
        self._prompt_timeout = prompt_timeout
        if bypass:
            logger.warning(
                "Permission bypass is ENABLED: every action will run without any rule check"
            )

    @property
    def bypass(self) -> bool:
        return self._bypass

    @property
    def store(self) -> PermissionStore:
        return self._store

    # -- Decide --------------------------------------------------------------

    def decide(self, request: ActionRequest) -> DecisionResult:
        """Return the verdict for *request* without mutating anything."""
        if self._bypass:
            return DecisionResult(Verdict.ALLOW, reason="permission bypass enabled")

        matching = [
            rule
            for rule in self._store.lookup(request.category)
            if rule.pattern.matches(request.arguments)
        ]

        for scope in Scope.by_precedence():
            in_scope = [rule for rule in matching if rule.scope is scope]
            if not in_scope:
                continue
            rule = _most_specific(in_scope)
            verdict = Verdict.ALLOW if rule.decision is Decision.ALLOW else Verdict.DENY
            logger.debug(
                "%s → %s via %s rule %s",
                request.action_string, verdict.value, scope.value, rule.text,
            )
            return DecisionResult(verdict, rule, f"matched {scope.value} rule {rule.text}")

        return DecisionResult(Verdict.REQUIRES_PROMPT, reason="no matching rule")

    # -- Prompt resolution ---------------------------------------------------

    def resolve(
        self,
        request: ActionRequest,
        response: PromptResponse | None,
    ) -> DecisionResult:
        """Apply a prompt *response* for *request* and return the verdict.

        ``ALLOW_ALWAYS`` and ``DENY_ALWAYS`` record an exact session rule
        and then re-evaluate, so a broader session denial still wins.
        """
        if response is None:
            return DecisionResult(
                Verdict.DENY,
                reason="no response to permission prompt",
                indeterminate=True,
            )
        if response is PromptResponse.ALLOW_ONCE:
            return DecisionResult(Verdict.ALLOW, reason="allowed once by user")
        if response is PromptResponse.DENY:
            return DecisionResult(Verdict.DENY, reason="denied by user")

        if response is PromptResponse.ALLOW_ALWAYS:
            rule = PermissionRule.exact_for(request, Decision.ALLOW, Scope.SESSION_GRANTED)
        else:
            rule = PermissionRule.exact_for(request, Decision.DENY, Scope.SESSION_DENIED)
        self._store.add(rule)
        logger.info("Recorded %s rule %s", rule.scope.value, rule.text)
        return self.decide(request)

    async def authorize(
        self,
        request: ActionRequest,
        resolver: PromptResolver | None = None,
    ) -> DecisionResult:
        """Decide, prompting through *resolver* when no rule matches.

        Never raises (cancellation excepted): a missing resolver, a resolver
        error, or a prompt timeout all produce an indeterminate DENY.
        """
        result = self.decide(request)
        if result.verdict is not Verdict.REQUIRES_PROMPT:
            return result

        if resolver is None:
            return DecisionResult(
                Verdict.DENY,
                reason="permission required but no prompt is available",
                indeterminate=True,
            )

        try:
            if self._prompt_timeout is not None:
                response = await asyncio.wait_for(resolver(request), timeout=self._prompt_timeout)
            else:
                response = await resolver(request)
        except TimeoutError:
            logger.info("Permission prompt for %s timed out", request.action_string)
            return DecisionResult(
                Verdict.DENY, reason="permission prompt timed out", indeterminate=True
            )
        except Exception:
            logger.warning(
                "Permission prompt for %s failed", request.action_string, exc_info=True
            )
            return DecisionResult(
                Verdict.DENY, reason="permission prompt failed", indeterminate=True
            )

        return self.resolve(request, response)
