from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import openai
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from orchestra.schemas.messages import AgentMessage, ToolCall
from orchestra.tools.base import ToolDefinition
from orchestra.utils.errors import RateLimitError

LOGGER = logging.getLogger(__name__)


@dataclass
class LLMUsage:
    input: int = 0
    output: int = 0


@dataclass
class LLMResponse:
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: LLMUsage = field(default_factory=LLMUsage)
    stop_reason: Optional[str] = None


class LLMClient(ABC):
    """Provider boundary so agents can swap between real and stub models."""

    model: str = "unknown"

    @abstractmethod
    async def call(
        self,
        system_prompt: str,
        messages: Sequence[AgentMessage],
        tools: Sequence[ToolDefinition] | None = None,
        max_tokens: int = 16384,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Send one request; rate limiting surfaces as ``RateLimitError``."""


class EchoLLMClient(LLMClient):
    """Fallback implementation used for local runs without external APIs."""

    model = "echo"

    async def call(
        self,
        system_prompt: str,
        messages: Sequence[AgentMessage],
        tools: Sequence[ToolDefinition] | None = None,
        max_tokens: int = 16384,
        temperature: float = 0.2,
    ) -> LLMResponse:
        user_turns = [m.content for m in messages if m.role == "user" and m.content]
        transcript = "\n".join(f"{m.role}: {m.content}" for m in messages if m.content)
        text = f"Task: {(user_turns[0] if user_turns else '').strip()}\nTranscript:\n{transcript.strip()}"
        return LLMResponse(text=text, usage=LLMUsage(input=len(transcript) // 4, output=len(text) // 4))


@dataclass
class RecordedCall:
    system_prompt: str
    messages: List[AgentMessage]
    tools: List[str]
    max_tokens: int
    temperature: float


ScriptItem = Union[LLMResponse, BaseException, Callable[[RecordedCall], LLMResponse]]


class ScriptedLLMClient(LLMClient):
    """Deterministic client replaying canned responses in order.

    Items may be responses, exceptions to raise, or callables receiving the
    recorded call. Once the script is exhausted ``default`` is returned, or a
    ``RuntimeError`` is raised when no default was given.
    """

    model = "scripted"

    def __init__(
        self,
        script: Sequence[ScriptItem] = (),
        default: LLMResponse | None = None,
        delay: float = 0.0,
    ) -> None:
        self._script = list(script)
        self.default = default
        self.delay = delay
        self.calls: List[RecordedCall] = []

    def push(self, *items: ScriptItem) -> None:
        self._script.extend(items)

    async def call(
        self,
        system_prompt: str,
        messages: Sequence[AgentMessage],
        tools: Sequence[ToolDefinition] | None = None,
        max_tokens: int = 16384,
        temperature: float = 0.2,
    ) -> LLMResponse:
        record = RecordedCall(
            system_prompt=system_prompt,
            messages=list(messages),
            tools=[t.name for t in tools or []],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        self.calls.append(record)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self._script:
            if self.default is None:
                raise RuntimeError("ScriptedLLMClient script exhausted")
            return self.default
        item = self._script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(record)
        return item


class LangChainLLMClient(LLMClient):
    """Adapter over any LangChain chat model that supports tool binding."""

    def __init__(self, chat_model: BaseChatModel, model: str = "") -> None:
        self.chat_model = chat_model
        self.model = model or getattr(chat_model, "model_name", None) or chat_model.__class__.__name__

    async def call(
        self,
        system_prompt: str,
        messages: Sequence[AgentMessage],
        tools: Sequence[ToolDefinition] | None = None,
        max_tokens: int = 16384,
        temperature: float = 0.2,
    ) -> LLMResponse:
        runnable: Any = self.chat_model
        if tools:
            runnable = self.chat_model.bind_tools([t.as_openai_tool() for t in tools])
        payload = [SystemMessage(content=system_prompt), *to_langchain_messages(messages)]
        try:
            reply = await runnable.ainvoke(payload, max_tokens=max_tokens, temperature=temperature)
        except openai.RateLimitError as exc:
            raise RateLimitError(str(exc)) from exc
        return from_langchain_message(reply)


def to_langchain_messages(messages: Sequence[AgentMessage]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in messages:
        if message.tool_results:
            for result in message.tool_results:
                body = result.output if isinstance(result.output, str) else json.dumps(result.output, default=str)
                if result.is_error:
                    body = f"Error: {result.error or body}"
                converted.append(ToolMessage(content=body, tool_call_id=result.tool_call_id))
        elif message.role == "assistant":
            converted.append(
                AIMessage(
                    content=message.content,
                    tool_calls=[{"id": c.id, "name": c.name, "args": c.input} for c in message.tool_calls],
                )
            )
        else:
            # system turns are replayed as user input; the real system prompt is sent separately
            converted.append(HumanMessage(content=message.content))
    return converted


def from_langchain_message(reply: BaseMessage) -> LLMResponse:
    content = reply.content
    if isinstance(content, list):
        text = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block) for block in content
        )
    else:
        text = content or ""
    tool_calls = [
        ToolCall(id=call.get("id") or f"call_{index}", name=call["name"], input=dict(call.get("args") or {}))
        for index, call in enumerate(getattr(reply, "tool_calls", None) or [])
    ]
    usage_meta: Dict[str, Any] = getattr(reply, "usage_metadata", None) or {}
    metadata = getattr(reply, "response_metadata", None) or {}
    return LLMResponse(
        text=text,
        tool_calls=tool_calls,
        usage=LLMUsage(input=usage_meta.get("input_tokens", 0), output=usage_meta.get("output_tokens", 0)),
        stop_reason=metadata.get("finish_reason"),
    )


def build_llm_client(provider: str, model: str, temperature: float = 0.2) -> LLMClient:
    provider = provider.lower()
    if provider == "echo":
        return EchoLLMClient()
    if provider == "openai":
        from langchain_openai import ChatOpenAI

        return LangChainLLMClient(ChatOpenAI(model=model, temperature=temperature, max_retries=0), model)
    if provider == "deepseek":
        from langchain_deepseek import ChatDeepSeek

        return LangChainLLMClient(ChatDeepSeek(model=model, temperature=temperature, max_retries=0), model)
    raise ValueError(f"Unsupported LLM provider: {provider}")


class ClientPool:
    """Shares one client per key between agents, with reference counting."""

    def __init__(self, factory: Callable[[str], LLMClient]) -> None:
        self._factory = factory
        self._clients: Dict[str, LLMClient] = {}
        self._refs: Dict[str, int] = {}

    @classmethod
    def of(cls, client: LLMClient) -> "ClientPool":
        return cls(lambda _key: client)

    def acquire(self, key: str = "default") -> LLMClient:
        client = self._clients.get(key)
        if client is None:
            client = self._factory(key)
            self._clients[key] = client
        self._refs[key] = self._refs.get(key, 0) + 1
        return client

    def release(self, key: str, client: LLMClient) -> None:
        if self._clients.get(key) is not client:
            LOGGER.warning("Releasing a client that does not belong to pool key %s", key)
            return
        self._refs[key] = max(0, self._refs.get(key, 0) - 1)

    def in_use(self, key: str = "default") -> int:
        return self._refs.get(key, 0)

    def evict_idle(self) -> int:
        """Drop clients nobody holds; the next ``acquire`` rebuilds them."""

        idle = [key for key in self._clients if self._refs.get(key, 0) == 0]
        for key in idle:
            del self._clients[key]
            self._refs.pop(key, None)
        if idle:
            LOGGER.debug("Evicted idle LLM clients: %s", ", ".join(idle))
        return len(idle)

    def __len__(self) -> int:
        return len(self._clients)
