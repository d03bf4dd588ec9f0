"""Delegation to one specialist and execution of decomposed plans."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from orchestra.agents.registry import AgentRegistry
from orchestra.evaluation.metrics import calculate_stats
from orchestra.memory.checkpoints import CheckpointScheduler
from orchestra.schemas.decisions import Decompose, Delegate
from orchestra.schemas.messages import AgentError, Artifact, Task, TaskResult
from orchestra.schemas.plan import ExecutionPlan, Step, StepStatus
from orchestra.utils.circuit_breaker import CircuitBreaker
from orchestra.utils.errors import InvalidPlanError, to_agent_error
from orchestra.workflows.planning import build_plan

LOGGER = logging.getLogger(__name__)

MAX_DECOMPOSITION_DEPTH = 3
MAX_CONCURRENCY = 3
STEP_TIMEOUT = 120.0

EventHook = Callable[[str, Dict[str, Any]], None]


def attribute_errors(errors: List[AgentError], agent: str) -> List[AgentError]:
    """Copy child errors, filling in the agent that produced them when missing."""

    return [e if e.agent else dataclasses.replace(e, agent=agent) for e in errors]


def circuit_open_result(breaker: CircuitBreaker, agent: str) -> TaskResult:
    stats = breaker.get_stats(agent)
    LOGGER.warning("Circuit breaker OPEN for agent %s (%d failures)", agent, stats.failure_count)
    return TaskResult.failure(
        f"Agent '{agent}' is temporarily unavailable (circuit open after {stats.failure_count} failures)",
        AgentError(
            code="CIRCUIT_OPEN",
            message=f"Agent {agent} circuit breaker is OPEN",
            recoverable=True,
            agent=agent,
            suggestion="Retry later or use another agent",
            context={"state": stats.state.value, "failure_count": stats.failure_count},
        ),
    )


def agent_not_found_result(agent: str) -> TaskResult:
    return TaskResult.failure(
        f"Agent '{agent}' is not available",
        AgentError(
            code="AGENT_NOT_FOUND",
            message=f"Agent {agent} not found in registry",
            recoverable=False,
            agent=agent,
        ),
    )


class DelegationExecutor:
    """Runs a delegate decision: one child task on one specialist."""

    def __init__(
        self,
        registry: AgentRegistry,
        checkpoints: CheckpointScheduler,
        circuit_breaker: CircuitBreaker,
    ) -> None:
        self.registry = registry
        self.checkpoints = checkpoints
        self.circuit_breaker = circuit_breaker

    async def execute(self, decision: Delegate, parent: Task) -> TaskResult:
        name = decision.target_agent
        if not self.circuit_breaker.is_allowed(name):
            return circuit_open_result(self.circuit_breaker, name)
        agent = self.registry.get(name)
        if agent is None:
            return agent_not_found_result(name)

        context = {**(parent.context or {}), **decision.context}
        child = Task(
            id=f"{parent.id}-{name}-{uuid.uuid4().hex[:8]}",
            prompt=decision.task,
            context=context or None,
            agent=name,
            metadata={
                "parent_task_id": parent.id,
                "decomposition_depth": parent.decomposition_depth,
                "source": "orchestrator",
            },
        )
        LOGGER.info("Delegating task %s to %s as %s", parent.id, name, child.id)

        await self.checkpoints.create_delegation_checkpoint(parent.id, name, "before", sub_task_id=child.id)
        try:
            result = await agent.run(child)
        except Exception as exc:
            await self.checkpoints.create_error_checkpoint(parent.id, exc)
            self.circuit_breaker.record_failure(name, str(exc))
            raise
        await self.checkpoints.create_delegation_checkpoint(
            parent.id, name, "after", sub_task_id=child.id, success=result.success
        )

        if result.success:
            self.circuit_breaker.record_success(name)
        else:
            self.circuit_breaker.record_failure(name, result.output)

        return TaskResult(
            success=result.success,
            output=f"[{name}] {result.output}",
            artifacts=list(result.artifacts),
            errors=attribute_errors(result.errors, name),
            data={
                **result.data,
                "delegated_to": name,
                "sub_task_id": child.id,
                "sub_task_metrics": result.metrics,
                "circuit_state": self.circuit_breaker.get_state(name).value,
            },
        )


class PlanExecutor:
    """Runs the steps of a decomposition in dependency order.

    Steps whose dependencies have all completed start together, up to
    ``max_concurrency`` at a time. A failed required step stops new steps
    from starting; running steps finish. Steps whose dependencies failed or
    were skipped are marked skipped.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        checkpoints: CheckpointScheduler,
        circuit_breaker: CircuitBreaker,
        *,
        max_concurrency: int = MAX_CONCURRENCY,
        step_timeout: float | None = STEP_TIMEOUT,
        max_depth: int = MAX_DECOMPOSITION_DEPTH,
        on_event: EventHook | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.registry = registry
        self.checkpoints = checkpoints
        self.circuit_breaker = circuit_breaker
        self.max_concurrency = max_concurrency
        self.step_timeout = step_timeout
        self.max_depth = max_depth
        self.on_event = on_event
        self.current_plan: Optional[ExecutionPlan] = None

    async def execute(self, decision: Decompose, parent: Task) -> TaskResult:
        if parent.decomposition_depth >= self.max_depth:
            LOGGER.warning("Max decomposition depth (%d) reached for task %s", self.max_depth, parent.id)
            return TaskResult.failure(
                f"Maximum decomposition depth ({self.max_depth}) reached; the task cannot be split further.",
                AgentError(
                    code="MAX_DEPTH_EXCEEDED",
                    message=f"Maximum decomposition depth ({self.max_depth}) exceeded",
                ),
            )
        if not decision.subtasks:
            return TaskResult.failure(
                "No subtasks were defined",
                AgentError(code="NO_SUBTASKS", message="Decomposition produced no subtasks"),
            )
        try:
            plan = build_plan(decision, parent, self.step_timeout)
        except InvalidPlanError as exc:
            return TaskResult.failure(f"Invalid plan: {exc}", to_agent_error(exc))

        self.current_plan = plan
        LOGGER.info(
            "Decomposing task %s into %d step(s) over %d level(s)", parent.id, len(plan.steps), plan.levels
        )
        started = time.perf_counter()
        await self.run_plan(plan, parent)
        return self.aggregate(plan, time.perf_counter() - started)

    async def run_plan(self, plan: ExecutionPlan, parent: Task) -> None:
        running: Dict[asyncio.Task, Step] = {}
        halted = False
        try:
            while True:
                self._skip_blocked(plan, halted)
                if not halted:
                    for step in self._ready_steps(plan):
                        if len(running) >= self.max_concurrency:
                            break
                        step.status = StepStatus.RUNNING
                        running[asyncio.ensure_future(self._run_step(plan, step, parent))] = step
                if not running:
                    break

                done, _ = await asyncio.wait(set(running), return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    step = running.pop(finished)
                    exc = finished.exception()
                    if exc is not None:
                        LOGGER.error("Step %d (%s) crashed: %s", step.index, step.agent, exc)
                        error = to_agent_error(exc, step.agent)
                        step.result = TaskResult.failure(f"Step failed: {error.message}", error)
                        step.status = StepStatus.FAILED
                    if step.status is StepStatus.FAILED and not step.optional and not halted:
                        LOGGER.warning(
                            "Required step %d (%s) failed, not starting remaining steps", step.index, step.agent
                        )
                        halted = True
        finally:
            for pending in running:
                pending.cancel()

    async def _run_step(self, plan: ExecutionPlan, step: Step, parent: Task) -> None:
        step.task = self._with_dependency_results(plan, step)
        step.started_at = time.perf_counter()
        LOGGER.info("Step %d started on %s (level %d)", step.index, step.agent, step.level)
        result = await self._invoke(step, parent)
        step.finished_at = time.perf_counter()
        step.result = result
        step.status = StepStatus.COMPLETED if result.success else StepStatus.FAILED
        await self.checkpoints.create_subtask_checkpoint(
            parent.id, step.index, agent=step.agent, sub_task_id=step.task.id, success=result.success
        )
        self._emit(
            "task:progress",
            {"completed": plan.completed_count, "total": len(plan.steps), "current": step.task.id,
             "success": result.success},
        )

    async def _invoke(self, step: Step, parent: Task) -> TaskResult:
        name = step.agent
        if not self.circuit_breaker.is_allowed(name):
            return circuit_open_result(self.circuit_breaker, name)
        agent = self.registry.get(name)
        if agent is None:
            return agent_not_found_result(name)
        try:
            result = await agent.run(step.task)
        except Exception as exc:
            await self.checkpoints.create_error_checkpoint(parent.id, exc)
            self.circuit_breaker.record_failure(name, str(exc))
            error = to_agent_error(exc, name)
            return TaskResult.failure(f"Step failed: {error.message}", error)
        if result.success:
            self.circuit_breaker.record_success(name)
        else:
            self.circuit_breaker.record_failure(name, result.output)
        return result

    @staticmethod
    def _ready_steps(plan: ExecutionPlan) -> List[Step]:
        return [
            step
            for step in plan.steps
            if step.status is StepStatus.PENDING
            and all(plan.steps[d].status is StepStatus.COMPLETED for d in step.depends_on)
        ]

    def _skip_blocked(self, plan: ExecutionPlan, halted: bool) -> None:
        blocked = {StepStatus.FAILED, StepStatus.SKIPPED}
        changed = True
        while changed:
            changed = False
            for step in plan.steps:
                if step.status is not StepStatus.PENDING:
                    continue
                if halted or any(plan.steps[d].status in blocked for d in step.depends_on):
                    step.status = StepStatus.SKIPPED
                    LOGGER.warning("Step %d (%s) skipped", step.index, step.agent)
                    changed = True

    @staticmethod
    def _with_dependency_results(plan: ExecutionPlan, step: Step) -> Task:
        if not step.depends_on:
            return step.task
        outputs = {d: plan.steps[d].result.output for d in step.depends_on if plan.steps[d].result}
        context = {**(step.task.context or {}), "dependency_results": outputs}
        return dataclasses.replace(step.task, context=context)

    def aggregate(self, plan: ExecutionPlan, elapsed: float) -> TaskResult:
        stats = calculate_stats(plan, elapsed)
        success = all(step.status is StepStatus.COMPLETED for step in plan.steps if not step.optional)

        artifacts: List[Artifact] = []
        errors: List[AgentError] = []
        failures: List[Dict[str, Any]] = []
        for step in plan.steps:
            if step.result is not None:
                artifacts.extend(step.result.artifacts)
            if step.status is StepStatus.FAILED:
                child_errors = attribute_errors(step.result.errors if step.result else [], step.agent)
                errors.extend(child_errors)
                message = child_errors[0].message if child_errors else (step.result.output if step.result else "")
                failures.append({"step": step.index, "agent": step.agent, "message": message,
                                 "optional": step.optional})

        skipped = [step for step in plan.steps if step.status is StepStatus.SKIPPED]
        required_failures = [f for f in failures if not f["optional"]]
        if required_failures:
            errors.append(
                AgentError(
                    code="STEP_FAILED",
                    message="; ".join(f"step {f['step']} ({f['agent']}): {f['message']}" for f in required_failures),
                    context={"failures": required_failures},
                )
            )
        if skipped:
            errors.append(
                AgentError(
                    code="STEP_SKIPPED",
                    message=f"{len(skipped)} step(s) were not run: "
                    + ", ".join(f"step {s.index} ({s.agent})" for s in skipped),
                    recoverable=True,
                    context={"steps": [s.index for s in skipped]},
                )
            )

        sections = []
        for level in range(plan.levels):
            members = [step for step in plan.steps if step.level == level]
            body = "\n\n".join(f"#### {step.task.id} [{step.agent}]\n{self._step_output(step)}" for step in members)
            sections.append(f"### Level {level} ({len(members)} task(s))\n{body}")
        header = (
            f"## Plan result ({stats.successful}/{stats.total} succeeded)\n\n"
            f"**Levels:** {stats.levels}\n"
            f"**Parallel efficiency:** {stats.parallel_efficiency}x\n"
            f"**Total time:** {stats.total_time:.2f}s\n\n"
        )
        return TaskResult(
            success=success,
            output=header + "\n\n---\n\n".join(sections),
            artifacts=artifacts,
            errors=errors,
            data={
                "plan_id": plan.id,
                "reasoning": plan.reasoning,
                "step_results": [
                    {
                        "index": step.index,
                        "task_id": step.task.id,
                        "agent": step.agent,
                        "level": step.level,
                        "status": step.status.value,
                        "output": step.result.output if step.result else None,
                    }
                    for step in plan.steps
                ],
                "execution_stats": dataclasses.asdict(stats),
            },
        )

    @staticmethod
    def _step_output(step: Step) -> str:
        if step.status is StepStatus.SKIPPED:
            return "(skipped)"
        return step.result.output if step.result else ""

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.on_event is not None:
            self.on_event(event, data)
