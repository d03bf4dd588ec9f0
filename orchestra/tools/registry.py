"""Name-keyed tool registry."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Mapping

from orchestra.tools.base import FunctionTool, Handler, Tool, ToolDefinition, ToolExecutionResult
from orchestra.utils.errors import ToolNotFoundError

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Maps tool names to implementations and executes them by name."""

    def __init__(self, tools: Iterable[Tool] | None = None) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            LOGGER.debug("Replacing tool %s", tool.name)
        self._tools[tool.name] = tool

    def register_handler(self, definition: ToolDefinition, handler: Handler, category: str = "general") -> None:
        self.register(FunctionTool(definition, handler, category))

    def register_batch(
        self,
        definitions: Iterable[ToolDefinition],
        handlers: Mapping[str, Handler],
        category: str = "general",
    ) -> int:
        count = 0
        for definition in definitions:
            handler = handlers.get(definition.name)
            if handler is None:
                LOGGER.warning("No handler for tool %s, skipping", definition.name)
                continue
            self.register_handler(definition, handler, category)
            count += 1
        return count

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise ToolNotFoundError(f"Unknown tool: {name}")
        return self._tools[name]

    def category_of(self, name: str) -> str | None:
        tool = self._tools.get(name)
        return tool.category if tool else None

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    async def execute(
        self,
        name: str,
        query: Dict[str, Any],
        cancel_event: asyncio.Event | None = None,
    ) -> ToolExecutionResult:
        """Run a tool by name; failures come back as results, never raised."""

        start = time.perf_counter()
        tool = self._tools.get(name)
        if tool is None:
            available = ", ".join(self.names()) or "no tools registered"
            return ToolExecutionResult(
                success=False,
                error=f"Tool '{name}' not found. Available tools: {available}",
                execution_time=time.perf_counter() - start,
            )
        try:
            outcome = await tool.run(query, cancel_event)
        except Exception as exc:
            LOGGER.warning("Tool %s raised %s: %s", name, exc.__class__.__name__, exc)
            return ToolExecutionResult(
                success=False,
                error=str(exc) or exc.__class__.__name__,
                execution_time=time.perf_counter() - start,
            )
        elapsed = time.perf_counter() - start
        if not outcome.success:
            return ToolExecutionResult(
                success=False,
                output=outcome.output,
                error=outcome.error or f"Tool '{name}' execution failed",
                execution_time=elapsed,
            )
        return ToolExecutionResult(success=True, output=outcome.output, execution_time=elapsed)
