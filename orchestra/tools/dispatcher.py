from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Sequence

from orchestra.schemas.messages import ToolCall, ToolResult
from orchestra.tools.base import ToolExecutionResult
from orchestra.tools.registry import ToolRegistry
from orchestra.utils.execution_mode import ExecutionModeManager

LOGGER = logging.getLogger(__name__)

ToolEventHook = Callable[[str, Dict[str, Any]], None]


class ToolDispatcher:
    """Executes the tool calls of one model turn concurrently.

    Results come back in the order the calls were requested, whatever order
    the handlers finish in.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        execution_mode: ExecutionModeManager | None = None,
        on_event: ToolEventHook | None = None,
    ) -> None:
        self.registry = registry
        self.execution_mode = execution_mode
        self.on_event = on_event

    async def execute(
        self,
        name: str,
        query: Dict[str, Any],
        cancel_event: asyncio.Event | None = None,
    ) -> ToolExecutionResult:
        self._emit("agent:tool_call", {"tool": name, "input": query})
        try:
            refusal = await self._authorize(name, query)
        except Exception as exc:
            LOGGER.warning("Permission check for %s raised %s: %s", name, exc.__class__.__name__, exc)
            refusal = f"Permission check for '{name}' failed: {exc}"
        if refusal is not None:
            result = ToolExecutionResult(success=False, error=refusal)
        else:
            result = await self.registry.execute(name, query, cancel_event)
        LOGGER.debug(
            "Tool %s finished: %s in %.3fs", name, "ok" if result.success else result.error, result.execution_time
        )
        self._emit(
            "agent:tool_result",
            {"tool": name, "success": result.success, "error": result.error, "execution_time": result.execution_time},
        )
        return result

    async def execute_all(
        self,
        calls: Sequence[ToolCall],
        cancel_event: asyncio.Event | None = None,
    ) -> List[tuple[ToolCall, ToolExecutionResult]]:
        results = await asyncio.gather(*(self.execute(call.name, call.input, cancel_event) for call in calls))
        return list(zip(calls, results))

    @staticmethod
    def to_tool_results(executed: Sequence[tuple[ToolCall, ToolExecutionResult]]) -> List[ToolResult]:
        return [
            ToolResult(
                tool_call_id=call.id,
                output=result.output,
                error=result.error,
                is_error=not result.success,
            )
            for call, result in executed
        ]

    async def _authorize(self, name: str, query: Dict[str, Any]) -> str | None:
        if self.execution_mode is None:
            return None
        category = self.registry.category_of(name)
        if category is None:
            return None
        return await self.execution_mode.authorize(name, category, query)

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.on_event is not None:
            self.on_event(event, data)
