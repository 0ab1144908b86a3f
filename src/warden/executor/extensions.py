"""Extension registry — named, host-provided actions.

A host registers an :class:`ExtensionTool` under its category name
(e.g. ``mcp__github__create_issue``).  Approved requests with that
category are dispatched to the tool's async handler, which receives the
request's ``params`` as keyword arguments.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from warden.executor.models import ExecutionResult, ExecutionStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from warden.executor.models import OutputCallback
    from warden.permissions.rules import ActionRequest

logger = logging.getLogger("warden.executor.extensions")


@dataclass
class ExtensionTool:
    """Metadata and handler for a single extension-provided action."""

    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    resource_param: str | None = None


class ExtensionRegistry:
    """Stores and retrieves extension tools by name."""

    def __init__(self) -> None:
        self._tools: dict[str, ExtensionTool] = {}

    def register(self, tool: ExtensionTool) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ExtensionTool | None:
        return self._tools.get(name)

    def list_all(self) -> list[ExtensionTool]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


class ExtensionBackend:
    """Executes requests whose category names a registered extension tool."""

    def __init__(self, registry: ExtensionRegistry) -> None:
        self._registry = registry

    @property
    def categories(self) -> frozenset[str]:
        return frozenset(tool.name for tool in self._registry.list_all())

    def resource_key(self, request: ActionRequest) -> str | None:
        tool = self._registry.get(request.category)
        if tool is None or tool.resource_param is None:
            return None
        value = request.params.get(tool.resource_param)
        return f"{tool.name}:{value}" if value is not None else None

    async def run(self, request: ActionRequest, emit: OutputCallback) -> ExecutionResult:
        tool = self._registry.get(request.category)
        if tool is None:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"No extension tool registered for {request.category!r}",
            )

        start = time.monotonic()
        try:
            value = await tool.handler(**dict(request.params))
        except TypeError as exc:
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"Invalid arguments for {tool.name}: {exc}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as exc:
            logger.warning("Extension tool %s raised", tool.name, exc_info=True)
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                error=f"{type(exc).__name__}: {exc}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        output = _render(value)
        if output:
            await emit("stdout", output)
        return ExecutionResult(
            status=ExecutionStatus.SUCCESS,
            stdout=output,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
