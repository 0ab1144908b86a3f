"""Network fetch backend — ``WebFetch(<url>)`` actions via httpx."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import httpx

from warden.executor.models import ExecutionResult, ExecutionStatus, truncate_output
from warden.permissions.rules import WEB_FETCH

if TYPE_CHECKING:
    from warden.executor.models import OutputCallback
    from warden.permissions.rules import ActionRequest

logger = logging.getLogger("warden.executor.fetch")

_USER_AGENT = "warden/0.1 (+tool-permission-broker)"


class FetchBackend:
    """Performs HTTP GET requests for approved ``WebFetch`` actions.

    Parameters
    ----------
    max_output_len:
        Maximum characters of response body kept.
    transport:
        Optional httpx transport (tests use :class:`httpx.MockTransport`).
    request_timeout:
        Per-request network timeout in seconds.  The executor's overall
        action timeout still applies on top.
    """

    categories: frozenset[str] = frozenset({WEB_FETCH})

    def __init__(
        self,
        max_output_len: int = 50_000,
        transport: httpx.AsyncBaseTransport | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        self._max_output_len = max_output_len
        self._transport = transport
        self._request_timeout = request_timeout

    def resource_key(self, request: ActionRequest) -> str | None:
        return None

    async def run(self, request: ActionRequest, emit: OutputCallback) -> ExecutionResult:
        url = request.arguments.strip()
        start = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        if not url.startswith(("http://", "https://")):
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"URL must start with http:// or https://: {url!r}",
            )

        headers = {"User-Agent": _USER_AGENT}
        headers.update(request.params.get("headers", {}))
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._request_timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"Request timed out for {url}",
                duration_ms=elapsed(),
            )
        except httpx.HTTPError as exc:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"Error fetching {url}: {exc}",
                duration_ms=elapsed(),
            )

        body, truncated = truncate_output(response.text, self._max_output_len)
        logger.info("Fetched %s → HTTP %d", url, response.status_code)
        if response.is_error:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                stdout=body,
                exit_code=response.status_code,
                error=f"HTTP {response.status_code} for {url}",
                duration_ms=elapsed(),
                truncated=truncated,
            )
        await emit("stdout", body)
        return ExecutionResult(
            status=ExecutionStatus.SUCCESS,
            stdout=body,
            exit_code=response.status_code,
            duration_ms=elapsed(),
            truncated=truncated,
        )
