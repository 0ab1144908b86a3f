"""Shared test fixtures for warden."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

from warden.config import BrokerConfig
from warden.permissions.prompt import PromptResponse
from warden.permissions.rules import ActionRequest
from warden.storage.db import Database


class ScriptedResolver:
    """Prompt resolver that replays canned answers and records each prompt."""

    def __init__(self, *responses: PromptResponse | None) -> None:
        self._responses = list(responses)
        self.prompts: list[ActionRequest] = []

    async def __call__(self, request: ActionRequest) -> PromptResponse | None:
        self.prompts.append(request)
        if not self._responses:
            return None
        return self._responses.pop(0)


@pytest.fixture
def tmp_warden_home(tmp_path: Path) -> Path:
    """Create a temporary ~/.warden/ structure."""
    home = tmp_path / "warden-home"
    home.mkdir()
    (home / "db").mkdir()
    return home


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A project directory with an empty ``.warden/`` folder."""
    project = tmp_path / "project"
    project.mkdir()
    (project / ".warden").mkdir()
    return project


@pytest.fixture
def workspace_dir(project_dir: Path) -> Path:
    """Return the project directory pre-populated with test files."""
    (project_dir / "hello.txt").write_text("Hello, world!\n", encoding="utf-8")
    (project_dir / "src").mkdir()
    (project_dir / "src" / "app.py").write_text(
        "def main():\n    print('hello')\n\nif __name__ == '__main__':\n    main()\n",
        encoding="utf-8",
    )
    return project_dir


@pytest.fixture
def broker_config(tmp_warden_home: Path, project_dir: Path) -> BrokerConfig:
    """Headless config pointing at temporary home and project directories."""
    return BrokerConfig(
        warden_home=tmp_warden_home,
        project_dir=project_dir,
        headless=True,
        default_timeout=10.0,
        audit_enabled=False,
    )


def write_settings(path: Path, allowed: list[str] | None = None, denied: list[str] | None = None) -> Path:
    """Write a settings file with the given rule lists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"allowedTools": allowed or [], "deniedTools": denied or []}),
        encoding="utf-8",
    )
    return path


@pytest.fixture
async def db(tmp_warden_home: Path) -> AsyncGenerator[Database, None]:
    """Initialized audit database in the temp home."""
    database = Database(tmp_warden_home / "db" / "audit.db")
    await database.init()
    yield database
    await database.close()


@pytest.fixture
def safe_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set dummy secret env vars to verify they're stripped from subprocess."""
    monkeypatch.setenv("DISCORD_TOKEN", "dummy-discord-token-for-testing")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-dummy-key")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai-dummy-key")


@pytest.fixture
def mock_interaction() -> MagicMock:
    """A Discord interaction from user 12345."""
    interaction = MagicMock()
    interaction.user.id = 12345
    interaction.response = MagicMock()
    interaction.response.send_message = AsyncMock()
    return interaction
