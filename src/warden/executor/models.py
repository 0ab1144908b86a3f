"""Execution result types and the backend protocol."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from warden.errors import ErrorKind

if TYPE_CHECKING:
    from warden.permissions.rules import ActionRequest

# (stream_name, line_text) → awaitable; stream_name is "stdout" or "stderr"
OutputCallback = Callable[[str, str], Awaitable[None]]


class ExecutionStatus(Enum):
    """How an executed action ended."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def error_kind(self) -> ErrorKind | None:
        return _STATUS_ERRORS.get(self)


_STATUS_ERRORS: dict[ExecutionStatus, ErrorKind] = {
    ExecutionStatus.FAILED: ErrorKind.EXECUTION_FAILURE,
    ExecutionStatus.TIMEOUT: ErrorKind.TIMEOUT,
    ExecutionStatus.CANCELLED: ErrorKind.CANCELLED,
}


@dataclass
class ExecutionResult:
    """Structured result of one executed action."""

    status: ExecutionStatus
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    error: str | None = None
    duration_ms: int = 0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "status": self.status.value,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "truncated": self.truncated,
        }
        if self.error is not None:
            d["error"] = self.error
        return d


@runtime_checkable
class ExecutionBackend(Protocol):
    """One executable target behind the uniform executor contract."""

    categories: frozenset[str]

    async def run(
        self,
        request: ActionRequest,
        emit: OutputCallback,
    ) -> ExecutionResult:
        """Perform *request*, streaming output lines through *emit*."""
        ...

    def resource_key(self, request: ActionRequest) -> str | None:
        """Identity of the resource *request* touches, or None."""
        ...


def truncate_output(output: str, max_len: int) -> tuple[str, bool]:
    """Truncate *output* to *max_len* chars, keeping the tail.

    Returns ``(output, truncated)``.
    """
    if len(output) <= max_len:
        return output, False
    header = f"[Output truncated: showing last {max_len} chars of {len(output)} chars]\n"
    return header + output[-max_len:], True
