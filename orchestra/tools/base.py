from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from langchain_core.tools import BaseTool


@dataclass
class ToolOutcome:
    """What a handler reports back: success flag plus output or error text."""

    success: bool
    output: Any = None
    error: Optional[str] = None


@dataclass
class ToolExecutionResult:
    success: bool
    output: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0


@dataclass(frozen=True)
class ToolDefinition:
    """Schema advertised to the model for one tool."""

    name: str
    description: str
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def as_openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class Tool(ABC):
    """Capability interface every registered tool implements."""

    name: str

    def __init__(self, definition: ToolDefinition, category: str = "general") -> None:
        self.definition = definition
        self.name = definition.name
        self.category = category

    @abstractmethod
    async def run(
        self,
        query: Dict[str, Any],
        cancel_event: asyncio.Event | None = None,
    ) -> ToolOutcome:
        """Execute tool logic and return a structured outcome.

        Long-running tools should stop early once ``cancel_event`` is set.
        """


Handler = Callable[[Dict[str, Any]], Union[ToolOutcome, Awaitable[ToolOutcome], Any]]


class FunctionTool(Tool):
    """Adapts a plain (sync or async) callable into a ``Tool``.

    The callable may return a ``ToolOutcome`` or any other value, which is
    taken as a successful output.
    """

    def __init__(self, definition: ToolDefinition, handler: Handler, category: str = "general") -> None:
        super().__init__(definition, category)
        self._handler = handler

    async def run(self, query: Dict[str, Any], cancel_event: asyncio.Event | None = None) -> ToolOutcome:
        value = self._handler(query)
        if inspect.isawaitable(value):
            value = await value
        if isinstance(value, ToolOutcome):
            return value
        return ToolOutcome(success=True, output=value)


class LangChainTool(Tool):
    """Exposes a LangChain ``BaseTool`` through the registry."""

    def __init__(self, tool: BaseTool, category: str = "general") -> None:
        schema = tool.get_input_schema().model_json_schema()
        definition = ToolDefinition(
            name=tool.name,
            description=tool.description or tool.name,
            input_schema={
                "type": "object",
                "properties": schema.get("properties", {}),
                "required": schema.get("required", []),
            },
        )
        super().__init__(definition, category)
        self._tool = tool

    async def run(self, query: Dict[str, Any], cancel_event: asyncio.Event | None = None) -> ToolOutcome:
        output = await self._tool.ainvoke(query)
        return ToolOutcome(success=True, output=output)
