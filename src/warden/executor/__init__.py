"""Action executor and its backends (shell, files, fetch, extensions)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from warden.executor.executor import ActionExecutor
from warden.executor.extensions import ExtensionBackend, ExtensionRegistry, ExtensionTool
from warden.executor.fetch import FetchBackend
from warden.executor.files import FileBackend
from warden.executor.models import (
    ExecutionBackend,
    ExecutionResult,
    ExecutionStatus,
    OutputCallback,
)
from warden.executor.shell import ShellBackend

if TYPE_CHECKING:
    from pathlib import Path


def create_default_executor(
    workspace: Path,
    *,
    extensions: ExtensionRegistry | None = None,
    default_timeout: float | None = 120.0,
    max_output_len: int = 50_000,
    max_concurrency: int = 4,
    inherit_env: bool = False,
) -> ActionExecutor:
    """Build an executor with the built-in backends registered."""
    executor = ActionExecutor(
        default_timeout=default_timeout,
        max_concurrency=max_concurrency,
    )
    executor.register(ShellBackend(workspace, max_output_len=max_output_len, inherit_env=inherit_env))
    executor.register(FileBackend(workspace))
    executor.register(FetchBackend(max_output_len=max_output_len))
    if extensions is not None:
        executor.register(ExtensionBackend(extensions))
    return executor


__all__ = [
    "ActionExecutor",
    "ExecutionBackend",
    "ExecutionResult",
    "ExecutionStatus",
    "ExtensionBackend",
    "ExtensionRegistry",
    "ExtensionTool",
    "FetchBackend",
    "FileBackend",
    "OutputCallback",
    "ShellBackend",
    "create_default_executor",
]
