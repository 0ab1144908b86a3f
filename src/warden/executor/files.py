"""File mutation backend — ``Write(...)`` and ``Edit(...)`` actions.

The rule argument of a file action is its path.  Relative paths resolve
against the session workspace; absolute paths are used as-is.  Before a
file action is authorized its path is canonicalized (``..``, ``./`` and
symlinks resolved) so rules see the same file the backend writes.  OS-level
failures are reported as descriptive FAILED results, distinct from the
tool-permission layer.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

from warden.executor.models import ExecutionResult, ExecutionStatus
from warden.permissions.rules import EDIT, WRITE

if TYPE_CHECKING:
    from warden.executor.models import OutputCallback
    from warden.permissions.rules import ActionRequest

logger = logging.getLogger("warden.executor.files")

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FileActionError(Exception):
    """Raised when a file action cannot be carried out."""


class StringNotFoundError(FileActionError):
    """Raised when an edit cannot find the target string."""


class AmbiguousMatchError(FileActionError):
    """Raised when an edit finds the target string more than once."""


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

_CONTEXT_LINES = 3


def write_file(path: Path, content: str) -> str:
    """Create (or overwrite) *path*.  Returns a short summary."""
    existed = path.exists()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return f"{'Overwrote' if existed else 'Created'} {path} ({len(content)} chars)"


def edit_file(path: Path, old: str, new: str, replace_all: bool = False) -> str:
    """Replace *old* with *new* in *path*.

    Exactly one occurrence is required unless *replace_all* is set.
    Returns a numbered snippet around the first replacement.
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not old:
        raise FileActionError("Edit requires a non-empty 'old_string'")

    content = path.read_text(encoding="utf-8")
    count = content.count(old)
    if count == 0:
        raise StringNotFoundError(f"String not found in {path}: {old!r}")
    if count > 1 and not replace_all:
        raise AmbiguousMatchError(f"String appears {count} times in {path}; must be unique")

    original_mode = path.stat().st_mode
    new_content = content.replace(old, new) if replace_all else content.replace(old, new, 1)
    path.write_text(new_content, encoding="utf-8")
    path.chmod(original_mode)
    return _context_around(new_content, new)


def _context_around(content: str, target: str) -> str:
    """Return lines around the first occurrence of *target* with line numbers."""
    lines = content.splitlines()
    target_line = None
    for i, line in enumerate(lines):
        if target and target.splitlines()[0] in line:
            target_line = i
            break

    if target_line is None:
        start = 0
        end = min(len(lines), _CONTEXT_LINES * 2 + 1)
    else:
        start = max(0, target_line - _CONTEXT_LINES)
        end = min(len(lines), target_line + _CONTEXT_LINES + 1)

    return "\n".join(f"{i + 1}\t{lines[i]}" for i in range(start, end))


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class FileBackend:
    """Performs file writes and edits relative to *workspace*."""

    categories: frozenset[str] = frozenset({WRITE, EDIT})

    def __init__(self, workspace: Path) -> None:
        self._workspace = workspace.expanduser().resolve()

    def resolve(self, raw_path: str) -> Path:
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = self._workspace / path
        return path.resolve()

    def canonical_path(self, raw_path: str) -> str:
        """Workspace-relative form of *raw_path*, or absolute if it lies outside."""
        path = self.resolve(raw_path)
        try:
            return path.relative_to(self._workspace).as_posix()
        except ValueError:
            return path.as_posix()

    def canonicalize(self, request: ActionRequest) -> ActionRequest:
        """Rewrite the path argument to the file the action will actually touch."""
        if not request.arguments.strip():
            return request
        canonical = self.canonical_path(request.arguments)
        if canonical == request.arguments:
            return request
        return dataclasses.replace(request, arguments=canonical)

    def resource_key(self, request: ActionRequest) -> str | None:
        return str(self.resolve(request.arguments))

    async def run(self, request: ActionRequest, emit: OutputCallback) -> ExecutionResult:
        start = time.monotonic()
        try:
            summary = self._apply(request)
        except (FileActionError, OSError) as exc:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=_describe_os_error(exc, request.arguments),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        await emit("stdout", summary)
        logger.info("%s %s", request.category, request.arguments)
        return ExecutionResult(
            status=ExecutionStatus.SUCCESS,
            stdout=summary,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def _apply(self, request: ActionRequest) -> str:
        if not request.arguments.strip():
            raise FileActionError(f"{request.category} requires a file path")
        path = self.resolve(request.arguments)
        params = request.params
        if request.category == WRITE:
            content = params.get("content")
            if not isinstance(content, str):
                raise FileActionError("Write requires a string 'content' parameter")
            return write_file(path, content)

        old = params.get("old_string")
        new = params.get("new_string")
        if not isinstance(old, str) or not isinstance(new, str):
            raise FileActionError("Edit requires string 'old_string' and 'new_string' parameters")
        return edit_file(path, old, new, replace_all=bool(params.get("replace_all", False)))


def _describe_os_error(exc: Exception, raw_path: str) -> str:
    if isinstance(exc, PermissionError):
        return f"Operating system denied access to {raw_path}: {exc.strerror or exc}"
    if isinstance(exc, IsADirectoryError):
        return f"Path is a directory: {raw_path}"
    if isinstance(exc, FileNotFoundError):
        return str(exc) if str(exc).startswith("File not found") else f"File not found: {raw_path}"
    return str(exc)
