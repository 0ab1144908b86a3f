"""Prompt resolvers — the human-in-the-loop boundary.

A resolver is an async callable that receives the pending
:class:`~warden.permissions.rules.ActionRequest` and returns a
:class:`PromptResponse`, or ``None`` when no answer arrived.
Headless callers use :func:`static_resolver`; the CLI uses
:func:`console_resolver`; the Discord front end lives in
:mod:`warden.permissions.ask_ui`.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from warden.permissions.rules import ActionRequest


class PromptResponse(str, Enum):
    """A human's answer to a permission prompt."""

    ALLOW_ONCE = "once"
    ALLOW_ALWAYS = "always"
    DENY = "deny"
    DENY_ALWAYS = "never"


PromptResolver = Callable[["ActionRequest"], Awaitable["PromptResponse | None"]]

_ANSWERS: dict[str, PromptResponse] = {
    "y": PromptResponse.ALLOW_ONCE,
    "yes": PromptResponse.ALLOW_ONCE,
    "once": PromptResponse.ALLOW_ONCE,
    "a": PromptResponse.ALLOW_ALWAYS,
    "always": PromptResponse.ALLOW_ALWAYS,
    "n": PromptResponse.DENY,
    "no": PromptResponse.DENY,
    "": PromptResponse.DENY,
    "d": PromptResponse.DENY_ALWAYS,
    "never": PromptResponse.DENY_ALWAYS,
}


def parse_answer(answer: str) -> PromptResponse | None:
    """Map a typed answer to a response; ``None`` if unrecognised."""
    return _ANSWERS.get(answer.strip().lower())


def static_resolver(
    response: PromptResponse = PromptResponse.DENY,
) -> PromptResolver:
    """Resolver that answers every prompt with *response* (headless mode)."""

    async def resolve(request: ActionRequest) -> PromptResponse | None:
        return response

    return resolve


def console_resolver(
    input_func: Callable[[str], str] = input,
    output: TextIO | None = None,
    max_attempts: int = 3,
) -> PromptResolver:
    """Resolver that asks on the terminal.

    Blocking ``input`` runs in a worker thread so the event loop keeps
    serving other tasks.  End of input or repeated unrecognised answers
    resolve to ``None``.
    """

    async def resolve(request: ActionRequest) -> PromptResponse | None:
        out = output or sys.stderr
        out.write(f"\nPermission required: {request.action_string}\n")
        out.write("  [y] allow once  [a] always allow  [n] deny  [d] always deny\n")
        out.flush()
        for _ in range(max_attempts):
            try:
                answer = await asyncio.to_thread(input_func, "> ")
            except EOFError:
                return None
            response = parse_answer(answer)
            if response is not None:
                return response
            out.write(f"Unrecognised answer {answer!r}\n")
            out.flush()
        return None

    return resolve
