"""ActionExecutor — runs already-approved actions through their backend.

The executor never checks permissions.  It picks the backend for the
request's category, applies the caller's timeout and cancel signal, and
always returns an :class:`ExecutionResult`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

from warden.executor.models import ExecutionResult, ExecutionStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from warden.executor.models import ExecutionBackend, OutputCallback
    from warden.permissions.rules import ActionRequest

logger = logging.getLogger("warden.executor")

_DEFAULT_TIMEOUT = 120.0


class _OutputCapture:
    """Collects streamed lines so partial output survives a timeout or cancel."""

    def __init__(self, on_output: OutputCallback | None) -> None:
        self._on_output = on_output
        self.stdout: list[str] = []
        self.stderr: list[str] = []

    async def emit(self, stream: str, line: str) -> None:
        (self.stderr if stream == "stderr" else self.stdout).append(line)
        if self._on_output is None:
            return
        try:
            await self._on_output(stream, line)
        except Exception:
            logger.warning("on_output callback failed", exc_info=True)


async def _stop(task: asyncio.Task[ExecutionResult]) -> None:
    """Cancel *task* and wait for its cleanup to finish."""
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        try:
            await task
        except Exception:
            logger.warning("Backend raised while stopping", exc_info=True)


class ActionExecutor:
    """Dispatches approved actions to execution backends.

    Parameters
    ----------
    backends:
        Backends to register; later registrations win for a category.
    default_timeout:
        Seconds an action may run when the caller gives no timeout.
        ``None`` means no limit.
    max_concurrency:
        Default cap for :meth:`execute_many`.
    """

    def __init__(
        self,
        backends: Iterable[ExecutionBackend] = (),
        default_timeout: float | None = _DEFAULT_TIMEOUT,
        max_concurrency: int = 4,
    ) -> None:
        self._backends: list[ExecutionBackend] = []
        self._default_timeout = default_timeout
        self._max_concurrency = max_concurrency
        for backend in backends:
            self.register(backend)

    def register(self, backend: ExecutionBackend) -> None:
        self._backends.append(backend)

    def backend_for(self, category: str) -> ExecutionBackend | None:
        for backend in reversed(self._backends):
            if category in backend.categories:
                return backend
        return None

    def canonicalize(self, request: ActionRequest) -> ActionRequest:
        """Return *request* with arguments in the form its backend acts on.

        Backends without a ``canonicalize`` hook leave the request as is.
        """
        canonicalize = getattr(self.backend_for(request.category), "canonicalize", None)
        return canonicalize(request) if canonicalize is not None else request

    # -- Single action -------------------------------------------------------

    async def execute(
        self,
        request: ActionRequest,
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
        on_output: OutputCallback | None = None,
    ) -> ExecutionResult:
        """Run *request* and report how it ended.

        *timeout* overrides the default limit.  Setting *cancel* stops the
        action and yields :attr:`ExecutionStatus.CANCELLED`.  *on_output*
        receives ``(stream, line)`` as output is produced.
        """
        backend = self.backend_for(request.category)
        if backend is None:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"No executor available for action category {request.category!r}",
            )
        if cancel is not None and cancel.is_set():
            return ExecutionResult(status=ExecutionStatus.CANCELLED, error="Cancelled before start")

        limit = timeout if timeout is not None else self._default_timeout
        capture = _OutputCapture(on_output)
        start = time.monotonic()

        work = asyncio.create_task(backend.run(request, capture.emit))
        waiters: set[asyncio.Task[Any]] = {work}
        cancel_wait: asyncio.Task[bool] | None = None
        if cancel is not None:
            cancel_wait = asyncio.create_task(cancel.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=limit, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await _stop(work)
            raise
        finally:
            if cancel_wait is not None and not cancel_wait.done():
                cancel_wait.cancel()

        if work in done:
            try:
                return work.result()
            except Exception as exc:
                logger.exception("Backend failed for %s", request.action_string)
                return ExecutionResult(
                    status=ExecutionStatus.FAILED,
                    stdout="\n".join(capture.stdout),
                    stderr="\n".join(capture.stderr),
                    error=f"{type(exc).__name__}: {exc}",
                    duration_ms=int((time.monotonic() - start) * 1000),
                )

        await _stop(work)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        if cancel_wait is not None and cancel_wait in done:
            status, error = ExecutionStatus.CANCELLED, "Cancelled by caller"
        else:
            status, error = ExecutionStatus.TIMEOUT, f"Timed out after {limit:g}s"
        logger.info("%s: %s", request.action_string, error)
        return ExecutionResult(
            status=status,
            stdout="\n".join(capture.stdout),
            stderr="\n".join(capture.stderr),
            error=error,
            duration_ms=elapsed_ms,
        )

    # -- Many actions --------------------------------------------------------

    def resource_key(self, request: ActionRequest) -> str | None:
        backend = self.backend_for(request.category)
        return backend.resource_key(request) if backend is not None else None

    async def execute_many(
        self,
        requests: Sequence[ActionRequest],
        *,
        max_concurrency: int | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[ExecutionResult]:
        """Run independent approved actions concurrently.

        At most *max_concurrency* run at once.  Actions on the same
        resource run one at a time in the order given.  Results are
        returned in input order.
        """
        cap = max_concurrency if max_concurrency is not None else self._max_concurrency
        semaphore = asyncio.Semaphore(max(1, cap))
        locks: dict[str, asyncio.Lock] = {}

        async def run_one(request: ActionRequest) -> ExecutionResult:
            key = self.resource_key(request)
            lock = locks.setdefault(key, asyncio.Lock()) if key else None
            async with contextlib.AsyncExitStack() as stack:
                if lock is not None:
                    await stack.enter_async_context(lock)
                await stack.enter_async_context(semaphore)
                return await self.execute(request, timeout=timeout, cancel=cancel)

        return list(await asyncio.gather(*(run_one(r) for r in requests)))
