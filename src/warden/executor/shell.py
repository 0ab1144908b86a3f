"""Shell command backend — ``Bash(...)`` actions.

Commands run as subprocesses with ``cwd`` set to the session workspace
and a sanitized environment.  stdout and stderr are read line by line so
callers can stream output while the command runs.  When the surrounding
task is cancelled (timeout or user cancel) the whole process group gets
SIGTERM, then SIGKILL after a grace period.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import time
from typing import TYPE_CHECKING

from warden.executor.models import ExecutionResult, ExecutionStatus, truncate_output
from warden.permissions.rules import SHELL

if TYPE_CHECKING:
    from pathlib import Path

    from warden.executor.models import OutputCallback
    from warden.permissions.rules import ActionRequest

logger = logging.getLogger("warden.executor.shell")

# ---------------------------------------------------------------------------
# Environment sanitization
# ---------------------------------------------------------------------------

ALLOWED_ENV_VARS: frozenset[str] = frozenset(
    {"PATH", "HOME", "USER", "LOGNAME", "LANG", "LC_ALL", "TERM", "SHELL", "TMPDIR"}
)


def sanitized_env(
    overrides: dict[str, str] | None = None,
    inherit_env: bool = False,
) -> dict[str, str]:
    """Build the environment for a spawned command.

    When *inherit_env* is False (default) only variables in
    :data:`ALLOWED_ENV_VARS` are carried over, keeping API keys and other
    secrets out of agent-run commands.  ``PYTHONUNBUFFERED=1`` is always
    set so Python children flush output line by line.
    """
    if inherit_env:
        env = dict(os.environ)
    else:
        env = {k: v for k, v in os.environ.items() if k in ALLOWED_ENV_VARS}
    env["PYTHONUNBUFFERED"] = "1"
    if overrides:
        env.update(overrides)
    return env


# ---------------------------------------------------------------------------
# Process termination
# ---------------------------------------------------------------------------

_DEFAULT_SIGTERM_GRACE_SECONDS = 5.0
_STREAM_LIMIT = 1024 * 1024


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, sig)


async def terminate_process(
    process: asyncio.subprocess.Process,
    grace: float = _DEFAULT_SIGTERM_GRACE_SECONDS,
) -> None:
    """SIGTERM the process group, escalating to SIGKILL after *grace* seconds."""
    if process.returncode is not None:
        return
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except TimeoutError:
        _signal_group(process, signal.SIGKILL)
        with contextlib.suppress(ProcessLookupError):
            await process.wait()


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class ShellBackend:
    """Runs shell commands inside *workspace*.

    Parameters
    ----------
    workspace:
        Directory used as the command's working directory.
    max_output_len:
        Maximum characters kept per stream before truncation.
    inherit_env:
        Pass the full host environment instead of the sanitized subset.
    sigterm_grace:
        Seconds to wait after SIGTERM before escalating to SIGKILL.
    """

    categories: frozenset[str] = frozenset({SHELL})

    def __init__(
        self,
        workspace: Path,
        max_output_len: int = 50_000,
        inherit_env: bool = False,
        sigterm_grace: float = _DEFAULT_SIGTERM_GRACE_SECONDS,
    ) -> None:
        self._workspace = workspace
        self._max_output_len = max_output_len
        self._inherit_env = inherit_env
        self._sigterm_grace = sigterm_grace

    def resource_key(self, request: ActionRequest) -> str | None:
        return None

    async def run(self, request: ActionRequest, emit: OutputCallback) -> ExecutionResult:
        command = request.arguments
        env_overrides = request.params.get("env")
        env = sanitized_env(env_overrides, inherit_env=self._inherit_env)

        start = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=self._workspace,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=True,
            limit=_STREAM_LIMIT,
        )
        logger.info("Spawned pid=%d cmd=%r", process.pid, command)

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        try:
            readers = []
            if process.stdout is not None:
                readers.append(self._read_stream(process.stdout, "stdout", stdout_lines, emit))
            if process.stderr is not None:
                readers.append(self._read_stream(process.stderr, "stderr", stderr_lines, emit))
            await asyncio.gather(*readers)
            exit_code = await process.wait()
        except asyncio.CancelledError:
            logger.info("Stopping pid=%d cmd=%r", process.pid, command)
            await terminate_process(process, self._sigterm_grace)
            raise

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout, stdout_trunc = truncate_output("".join(stdout_lines), self._max_output_len)
        stderr, stderr_trunc = truncate_output("".join(stderr_lines), self._max_output_len)

        if exit_code == 0:
            status, error = ExecutionStatus.SUCCESS, None
        else:
            status, error = ExecutionStatus.FAILED, f"Command exited with status {exit_code}"
        return ExecutionResult(
            status=status,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            error=error,
            duration_ms=elapsed_ms,
            truncated=stdout_trunc or stderr_trunc,
        )

    async def _read_stream(
        self,
        stream: asyncio.StreamReader,
        stream_name: str,
        sink: list[str],
        emit: OutputCallback,
    ) -> None:
        """Read lines from *stream* into *sink*, forwarding each to *emit*."""
        while True:
            try:
                line_bytes = await stream.readline()
            except ValueError:
                # asyncio drops an over-long line from its buffer
                line_bytes = b"[line exceeded stream limit]\n"
            if not line_bytes:
                break
            line = line_bytes.decode("utf-8", errors="replace")
            sink.append(line)
            await emit(stream_name, line.rstrip("\n"))
