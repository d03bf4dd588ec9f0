from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Sequence

from orchestra.agents.base import Agent
from orchestra.agents.prompts import ORCHESTRATOR_SYSTEM_PROMPT
from orchestra.agents.registry import AgentRegistry
from orchestra.memory.checkpoints import CheckpointScheduler, CheckpointState
from orchestra.schemas.decisions import AskUser, Complete, Decision, Decompose, Delegate, ExecuteDirectly
from orchestra.schemas.messages import AgentMessage, Artifact, Task, TaskResult
from orchestra.tools.base import ToolDefinition
from orchestra.tools.interaction import AskUserCallback, HumanInTheLoop, Question, TodoCallback, interaction_tools
from orchestra.tools.orchestration import GET_AGENT_STATUS_TOOL, agent_status_handler
from orchestra.utils.cache import Cache
from orchestra.utils.circuit_breaker import CircuitBreaker
from orchestra.utils.execution_mode import ExecutionModeManager
from orchestra.utils.llm_clients import LLMResponse
from orchestra.workflows.decision import DecisionEngine
from orchestra.workflows.decision_parser import MAX_SUBTASKS
from orchestra.workflows.executor import (
    MAX_CONCURRENCY,
    MAX_DECOMPOSITION_DEPTH,
    STEP_TIMEOUT,
    DelegationExecutor,
    PlanExecutor,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_RESPONSE = "Task completed"


class Orchestrator(Agent):
    """Top-level agent that routes each task among the registered specialists.

    One routing turn picks a decision; the orchestrator then answers
    directly, delegates, runs a decomposition plan or asks the user. While a
    task is in flight it is checkpointed on an interval and on errors.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        *,
        name: str = "orchestrator",
        description: str = "Routes user tasks to specialist agents",
        checkpoints: CheckpointScheduler | None = None,
        checkpoint_interval: float = 30.0,
        circuit_breaker: CircuitBreaker | None = None,
        routing_cache: Cache[Decision] | None = None,
        hitl: HumanInTheLoop | None = None,
        execution_mode: ExecutionModeManager | None = None,
        max_decomposition_depth: int = MAX_DECOMPOSITION_DEPTH,
        max_concurrency: int = MAX_CONCURRENCY,
        step_timeout: float | None = STEP_TIMEOUT,
        max_subtasks: int = MAX_SUBTASKS,
        **kwargs: Any,
    ) -> None:
        self.hitl = hitl or HumanInTheLoop()
        if execution_mode is None:
            execution_mode = ExecutionModeManager()
        if execution_mode.approval_handler is None:
            execution_mode.approval_handler = self.hitl.approval_handler()
        super().__init__(name, description, execution_mode=execution_mode, **kwargs)

        self.registry = registry
        self.checkpoints = checkpoints or CheckpointScheduler(interval=checkpoint_interval)
        self.checkpoint_interval = checkpoint_interval
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.decision_engine = DecisionEngine(registry, self._route, routing_cache, max_subtasks)
        self.delegation = DelegationExecutor(registry, self.checkpoints, self.circuit_breaker)
        self.plan_executor = PlanExecutor(
            registry,
            self.checkpoints,
            self.circuit_breaker,
            max_concurrency=max_concurrency,
            step_timeout=step_timeout,
            max_depth=max_decomposition_depth,
            on_event=self.emit_event,
        )
        self.register_tools(interaction_tools(self.hitl))
        self.tools.register_handler(GET_AGENT_STATUS_TOOL, agent_status_handler(registry))

    def get_system_prompt(self) -> str:
        return ORCHESTRATOR_SYSTEM_PROMPT

    async def execute(self, task: Task) -> TaskResult:
        LOGGER.info("Orchestrator received task %s: %.100s", task.id, task.prompt)
        self.plan_executor.current_plan = None
        self.checkpoints.register(task.id, self._checkpoint_state)
        self.checkpoints.schedule_by_interval(task.id, self.checkpoint_interval)
        try:
            decision = await self.decision_engine.decide(task)
            LOGGER.info("Orchestration decision for task %s: %s", task.id, decision.action)
            self.emit_event("orchestrator:decision", {"action": decision.action})
            return await self._dispatch(decision, task)
        except Exception as exc:
            LOGGER.error("Orchestration of task %s failed: %s", task.id, exc)
            await self.checkpoints.create_error_checkpoint(task.id, exc)
            raise
        except asyncio.CancelledError as exc:
            LOGGER.warning("Orchestration of task %s was cancelled", task.id)
            await self.checkpoints.create_error_checkpoint(task.id, exc)
            raise
        finally:
            self.checkpoints.cancel_all_for_task(task.id)

    async def _dispatch(self, decision: Decision, task: Task) -> TaskResult:
        if isinstance(decision, Delegate):
            return await self.delegation.execute(decision, task)
        if isinstance(decision, Decompose):
            return await self.plan_executor.execute(decision, task)
        if isinstance(decision, ExecuteDirectly):
            return TaskResult.ok(decision.response or DEFAULT_RESPONSE)
        if isinstance(decision, AskUser):
            return await self._clarify(decision)
        if isinstance(decision, Complete):
            return TaskResult.ok(
                decision.response or DEFAULT_RESPONSE,
                artifacts=[Artifact(kind="file", path=path, agent=self.name) for path in decision.artifacts],
                data={"summary": decision.summary} if decision.summary else {},
            )
        raise ValueError(f"Unknown decision action: {decision!r}")

    async def _clarify(self, decision: AskUser) -> TaskResult:
        data: dict = {"needs_clarification": True}
        if decision.reason:
            data["reason"] = decision.reason
        if self.hitl.interactive:
            data["answers"] = await self.hitl.ask([Question(question=decision.question)])
        return TaskResult.ok(decision.question, data=data)

    async def _route(
        self,
        messages: Sequence[AgentMessage],
        tools: Sequence[ToolDefinition],
    ) -> LLMResponse:
        for message in messages:
            self.transcript.append(message)
        response = await self._call_llm(self.transcript.all(), tools)
        self.transcript.append(
            AgentMessage(role="assistant", content=response.text, tool_calls=list(response.tool_calls))
        )
        return response

    def _checkpoint_state(self, task_id: str) -> Optional[CheckpointState]:
        task = self.current_task
        if task is None or task.id != task_id:
            return None
        state = CheckpointState(task=task, agent_name=self.name, message_history=self.history_snapshot())
        plan = self.plan_executor.current_plan
        if plan is not None and plan.steps:
            state.progress = plan.progress
            state.current_step = plan.completed_count
            state.total_steps = len(plan.steps)
            state.partial_results = {
                "output": f"Plan in progress: {plan.id}",
                "steps": [
                    {"index": s.index, "agent": s.agent, "status": s.status.value} for s in plan.steps
                ],
            }
        return state

    @property
    def current_plan(self):
        return self.plan_executor.current_plan

    def set_execution_mode(self, mode: str) -> None:
        self.execution_mode.set_mode(mode)

    def enter_plan_mode(self) -> None:
        self.execution_mode.enter_plan_mode()

    def exit_plan_mode(self) -> None:
        self.execution_mode.exit_plan_mode()

    def set_ask_user_callback(self, callback: AskUserCallback | None) -> None:
        self.hitl.ask_user_callback = callback

    def set_todo_callback(self, callback: TodoCallback | None) -> None:
        self.hitl.todo_callback = callback
