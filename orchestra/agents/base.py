from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from orchestra.agents.guard import ExecutionGuard
from orchestra.agents.prompts import iteration_reminder
from orchestra.memory.transcript import MAX_HISTORY, Transcript
from orchestra.schemas.messages import AgentError, AgentMessage, Task, TaskMetrics, TaskResult
from orchestra.tools.base import Tool, ToolDefinition
from orchestra.tools.dispatcher import ToolDispatcher
from orchestra.tools.registry import ToolRegistry
from orchestra.utils.cache import Cache, response_key
from orchestra.utils.errors import DependencyNotInitializedError, TaskAbortedError, TaskTimeoutError, to_agent_error
from orchestra.utils.execution_mode import ExecutionModeManager
from orchestra.utils.llm_clients import ClientPool, LLMClient, LLMResponse
from orchestra.utils.retry import (
    BASE_BACKOFF_DELAY,
    MAX_BACKOFF_DELAY,
    MAX_RATE_LIMIT_RETRIES,
    RetryStrategy,
    Sleep,
    call_with_rate_limit_retry,
    execute_with_retry_strategy,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 15
REMINDER_FROM_ITERATION = 4

EventCallback = Callable[[str, Dict[str, Any]], None]


class AgentStatus(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class Agent(ABC):
    """Base contract for every LLM-driven agent in the system.

    ``run()`` is the only public entry point. It is single-flight per
    instance: concurrent callers queue on the execution guard in arrival
    order. Subclasses implement ``execute()`` (usually by calling
    ``run_agent_loop``) and ``get_system_prompt()``.
    """

    name: str

    def __init__(
        self,
        name: str,
        description: str = "",
        *,
        client_pool: ClientPool | None = None,
        pool_key: str = "default",
        tools: ToolRegistry | Iterable[Tool] | None = None,
        capabilities: Sequence[str] = (),
        limitations: Sequence[str] = (),
        max_tokens: int = 16384,
        temperature: float = 0.2,
        timeout: float = 300.0,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_history: int = MAX_HISTORY,
        max_rate_limit_retries: int = MAX_RATE_LIMIT_RETRIES,
        base_delay: float = BASE_BACKOFF_DELAY,
        max_delay: float = MAX_BACKOFF_DELAY,
        retry_strategy: RetryStrategy | None = None,
        response_cache: Cache[LLMResponse] | None = None,
        execution_mode: ExecutionModeManager | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.name = name
        self.description = description
        self.capabilities = list(capabilities)
        self.limitations = list(limitations)
        self.client_pool = client_pool
        self.pool_key = pool_key
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.max_iterations = max_iterations
        self.max_rate_limit_retries = max_rate_limit_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_strategy = retry_strategy
        self.response_cache = response_cache
        self.execution_mode = execution_mode
        self.dispatcher = ToolDispatcher(self.tools, execution_mode, on_event=self.emit_event)
        self.transcript = Transcript(max_history)
        self.metrics = TaskMetrics()
        self._sleep = sleep
        self._guard = ExecutionGuard()
        self._abort = asyncio.Event()
        self._client: LLMClient | None = None
        self._current_task: Task | None = None
        self._status = AgentStatus.IDLE
        self._subscribers: List[EventCallback] = []

    @abstractmethod
    async def execute(self, task: Task) -> TaskResult:
        """Agent-specific work for one task, run under the guard and timeout."""

    @abstractmethod
    def get_system_prompt(self) -> str:
        """System prompt sent with every LLM call."""

    async def run(self, task: Task) -> TaskResult:
        async with self._guard:
            return await self._run_exclusive(task)

    async def _run_exclusive(self, task: Task) -> TaskResult:
        self._current_task = task
        self.transcript.reset()
        self.metrics = TaskMetrics()
        self._abort = asyncio.Event()
        self._set_status(AgentStatus.THINKING)
        timeout = task.timeout or self.timeout
        started = time.perf_counter()
        LOGGER.info("[%s] task %s started", self.name, task.id)
        self.emit_event("agent:started", {"prompt": task.prompt})

        try:
            try:
                if self.client_pool is not None:
                    self._client = self.client_pool.acquire(self.pool_key)
                result = await asyncio.wait_for(self.execute(task), timeout)
            except asyncio.TimeoutError:
                raise TaskTimeoutError(f"Task {task.id} timed out after {timeout:g}s")
        except Exception as exc:
            error = to_agent_error(exc, self.name)
            LOGGER.error("[%s] task %s failed: %s (%s)", self.name, task.id, error.message, error.code)
            result = TaskResult.failure(f"Task failed: {error.message}", error)
        finally:
            if self.client_pool is not None and self._client is not None:
                self.client_pool.release(self.pool_key, self._client)
            self._client = None

        self.metrics.execution_time = time.perf_counter() - started
        result.metrics = self.metrics.copy()
        if result.success:
            self._set_status(AgentStatus.COMPLETED)
            LOGGER.info("[%s] task %s completed in %.2fs", self.name, task.id, self.metrics.execution_time)
            self.emit_event("agent:completed", {"output": result.output})
        else:
            aborted = any(e.code == TaskAbortedError.code for e in result.errors)
            self._set_status(AgentStatus.ABORTED if aborted else AgentStatus.FAILED)
            self.emit_event("agent:failed", {"errors": [asdict(e) for e in result.errors]})

        self.transcript.reset()
        self._current_task = None
        return result

    async def run_agent_loop(
        self,
        prompt: str,
        tools: Sequence[ToolDefinition] | None = None,
    ) -> TaskResult:
        """Alternate LLM calls and tool execution until the model stops calling tools."""

        self.transcript.append(AgentMessage(role="user", content=prompt))

        for iteration in range(1, self.max_iterations + 1):
            if self.transcript.needs_trim():
                self.transcript.trim()

            if self._abort.is_set():
                raise TaskAbortedError(f"Task {self.task_id} was aborted")

            if iteration >= REMINDER_FROM_ITERATION:
                self.transcript.append(
                    AgentMessage(role="user", content=self.get_iteration_reminder(iteration))
                )
                LOGGER.debug("[%s] iteration reminder injected (%d/%d)", self.name, iteration, self.max_iterations)

            self._set_status(AgentStatus.THINKING)
            response = await self._call_llm(self.transcript.all(), tools)
            self.transcript.append(
                AgentMessage(role="assistant", content=response.text, tool_calls=list(response.tool_calls))
            )
            if not response.tool_calls:
                return TaskResult.ok(response.text)

            self._set_status(AgentStatus.EXECUTING)
            executed = await self.dispatcher.execute_all(response.tool_calls, self._abort)
            self.metrics.tool_calls += len(executed)
            self.metrics.tool_execution_time += sum(result.execution_time for _, result in executed)
            self.transcript.append(
                AgentMessage(role="user", tool_results=ToolDispatcher.to_tool_results(executed))
            )

        LOGGER.warning("[%s] task %s hit the iteration limit (%d)", self.name, self.task_id, self.max_iterations)
        return TaskResult.failure(
            "Maximum iterations reached",
            AgentError(
                code="MAX_ITERATIONS",
                message=f"Agent reached maximum iterations ({self.max_iterations})",
                recoverable=False,
                agent=self.name,
            ),
        )

    def get_iteration_reminder(self, iteration: int) -> str:
        return iteration_reminder(iteration, self.max_iterations)

    async def _call_llm(
        self,
        messages: Sequence[AgentMessage],
        tools: Sequence[ToolDefinition] | None = None,
    ) -> LLMResponse:
        client = self._client
        if client is None:
            raise DependencyNotInitializedError(f"Agent {self.name} has no LLM client")
        system_prompt = self.get_system_prompt()
        tool_defs = list(tools) if tools is not None else self.tools.definitions()

        cache_key: Optional[str] = None
        if self.response_cache is not None:
            cache_key = response_key(
                client.model,
                system_prompt,
                [asdict(m) for m in messages],
                [t.name for t in tool_defs],
            )
            cached = self.response_cache.get(cache_key)
            if cached is not None:
                LOGGER.debug("[%s] LLM response cache hit", self.name)
                return cached

        async def call_once() -> LLMResponse:
            return await client.call(
                system_prompt,
                messages,
                tool_defs or None,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )

        async def call_with_backoff() -> LLMResponse:
            return await call_with_rate_limit_retry(
                call_once,
                max_retries=self.max_rate_limit_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self._sleep,
                label=self.name,
            )

        response = await execute_with_retry_strategy(
            call_with_backoff,
            lambda exc: to_agent_error(exc, self.name),
            self.retry_strategy,
            task_id=self.task_id,
            agent_type=self.name,
            sleep=self._sleep,
        )
        self.metrics.llm_calls += 1
        self.metrics.input_tokens += response.usage.input
        self.metrics.output_tokens += response.usage.output
        if cache_key is not None:
            self.response_cache.set(cache_key, response)
        return response

    def abort(self) -> None:
        """Request cancellation of the current run; observed at the next loop iteration."""

        if self._current_task is not None:
            LOGGER.info("[%s] abort requested for task %s", self.name, self._current_task.id)
        self._abort.set()

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def task_id(self) -> str:
        return self._current_task.id if self._current_task else "unknown"

    @property
    def current_task(self) -> Task | None:
        return self._current_task

    def is_available(self) -> bool:
        return not self._guard.locked()

    def history_snapshot(self) -> List[AgentMessage]:
        return self.transcript.snapshot()

    def register_tool(self, tool: Tool) -> None:
        self.tools.register(tool)

    def register_tools(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.tools.register(tool)

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self._status.value,
            "available": self.is_available(),
            "capabilities": list(self.capabilities),
            "limitations": list(self.limitations),
        }

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit_event(self, event: str, data: Dict[str, Any] | None = None) -> None:
        payload = {"agent": self.name, "task_id": self.task_id, **(data or {})}
        for callback in list(self._subscribers):
            try:
                callback(event, payload)
            except Exception:
                LOGGER.exception("[%s] event callback failed for %s", self.name, event)

    def _set_status(self, status: AgentStatus) -> None:
        self._status = status
