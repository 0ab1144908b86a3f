"""Tests for warden.permissions.prompt — prompt resolvers."""

from __future__ import annotations

import io

import pytest

from warden.permissions.prompt import (
    PromptResponse,
    console_resolver,
    parse_answer,
    static_resolver,
)
from warden.permissions.rules import ActionRequest


class TestParseAnswer:
    @pytest.mark.parametrize(
        ("answer", "expected"),
        [
            ("y", PromptResponse.ALLOW_ONCE),
            ("YES", PromptResponse.ALLOW_ONCE),
            ("a", PromptResponse.ALLOW_ALWAYS),
            (" always ", PromptResponse.ALLOW_ALWAYS),
            ("n", PromptResponse.DENY),
            ("", PromptResponse.DENY),
            ("d", PromptResponse.DENY_ALWAYS),
            ("never", PromptResponse.DENY_ALWAYS),
        ],
    )
    def test_known_answers(self, answer: str, expected: PromptResponse) -> None:
        assert parse_answer(answer) is expected

    def test_unknown_answer(self) -> None:
        assert parse_answer("maybe") is None


class TestStaticResolver:
    @pytest.mark.asyncio
    async def test_defaults_to_deny(self) -> None:
        resolver = static_resolver()
        assert await resolver(ActionRequest("Bash", "ls")) is PromptResponse.DENY

    @pytest.mark.asyncio
    async def test_custom_response(self) -> None:
        resolver = static_resolver(PromptResponse.ALLOW_ONCE)
        assert await resolver(ActionRequest("Bash", "ls")) is PromptResponse.ALLOW_ONCE


class TestConsoleResolver:
    @pytest.mark.asyncio
    async def test_prompts_with_action_string(self) -> None:
        out = io.StringIO()
        resolver = console_resolver(input_func=lambda _: "y", output=out)
        response = await resolver(ActionRequest("Bash", "git push"))
        assert response is PromptResponse.ALLOW_ONCE
        assert "Bash(git push)" in out.getvalue()

    @pytest.mark.asyncio
    async def test_retries_unrecognised_answer(self) -> None:
        answers = iter(["huh", "a"])
        out = io.StringIO()
        resolver = console_resolver(input_func=lambda _: next(answers), output=out)
        assert await resolver(ActionRequest("Bash", "ls")) is PromptResponse.ALLOW_ALWAYS
        assert "Unrecognised answer 'huh'" in out.getvalue()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        resolver = console_resolver(
            input_func=lambda _: "what", output=io.StringIO(), max_attempts=2
        )
        assert await resolver(ActionRequest("Bash", "ls")) is None

    @pytest.mark.asyncio
    async def test_eof_is_no_answer(self) -> None:
        def eof(_: str) -> str:
            raise EOFError

        resolver = console_resolver(input_func=eof, output=io.StringIO())
        assert await resolver(ActionRequest("Bash", "ls")) is None
