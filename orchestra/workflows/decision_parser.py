from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping

from orchestra.schemas.decisions import AskUser, Complete, Decision, Decompose, Delegate, ExecuteDirectly, SubtaskSpec
from orchestra.schemas.messages import ToolCall
from orchestra.tools.orchestration import ASK_USER, COMPLETE_TASK, CREATE_SUBTASKS, DECISION_TOOL_NAMES, DELEGATE_TO_AGENT
from orchestra.utils.errors import DecisionParseError, InvalidPlanError
from orchestra.utils.llm_clients import LLMResponse
from orchestra.workflows.planning import compute_levels

LOGGER = logging.getLogger(__name__)

MAX_SUBTASKS = 20


class DecisionParser:
    """Validates the routing turn of the model and turns it into a ``Decision``.

    Every validation problem raises ``DecisionParseError``; the decision
    engine decides what to fall back to.
    """

    def __init__(self, agent_names: Iterable[str], max_subtasks: int = MAX_SUBTASKS) -> None:
        self._agents = {name.lower(): name for name in agent_names}
        self.max_subtasks = max_subtasks

    def parse(self, response: LLMResponse) -> Decision:
        calls = [call for call in response.tool_calls if call.name in DECISION_TOOL_NAMES]
        if not calls:
            text = response.text.strip()
            if not text:
                raise DecisionParseError("Model returned neither a decision tool call nor text")
            return ExecuteDirectly(response=text)
        if len(calls) > 1:
            LOGGER.warning("Model returned %d decision calls, using the first (%s)", len(calls), calls[0].name)
        return self.parse_call(calls[0])

    def parse_call(self, call: ToolCall) -> Decision:
        data = call.input if isinstance(call.input, Mapping) else {}
        if call.name == DELEGATE_TO_AGENT:
            return self._delegate(data)
        if call.name == CREATE_SUBTASKS:
            return self._subtasks(data)
        if call.name == COMPLETE_TASK:
            result = self._text(data.get("result"), "complete_task.result")
            artifacts = data.get("artifacts") or []
            return Complete(
                response=result,
                summary=str(data.get("summary") or ""),
                artifacts=tuple(str(a) for a in artifacts) if isinstance(artifacts, list) else (),
            )
        if call.name == ASK_USER:
            return AskUser(question=self._text(data.get("question"), "ask_user.question"))
        raise DecisionParseError(f"Unknown decision tool: {call.name}")

    def resolve_agent(self, value: Any, where: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise DecisionParseError(f"{where}: agent name is required")
        name = self._agents.get(value.strip().lower())
        if name is None:
            known = ", ".join(sorted(self._agents.values())) or "none"
            raise DecisionParseError(f"{where}: unknown agent {value!r} (known agents: {known})")
        return name

    def _delegate(self, data: Mapping[str, Any]) -> Delegate:
        agent = self.resolve_agent(data.get("agent"), "delegate_to_agent.agent")
        task = self._text(data.get("task"), "delegate_to_agent.task")
        context = data.get("context")
        if context is not None and not isinstance(context, dict):
            LOGGER.warning("delegate_to_agent: ignoring non-object context (%s)", type(context).__name__)
            context = None
        return Delegate(
            target_agent=agent,
            task=task,
            context=dict(context or {}),
            reasoning=f"Delegating to {agent}: {task}",
        )

    def _subtasks(self, data: Mapping[str, Any]) -> Decompose:
        tasks = data.get("tasks")
        if not isinstance(tasks, list) or not tasks:
            raise DecisionParseError("create_subtasks.tasks must be a non-empty list")
        if len(tasks) > self.max_subtasks:
            raise DecisionParseError(f"create_subtasks: too many subtasks ({len(tasks)}, max {self.max_subtasks})")

        specs: List[SubtaskSpec] = []
        for index, raw in enumerate(tasks):
            where = f"create_subtasks.tasks[{index}]"
            if not isinstance(raw, dict):
                raise DecisionParseError(f"{where} must be an object")
            depends_on = self._dependencies(raw, where)
            specs.append(
                SubtaskSpec(
                    agent=self.resolve_agent(raw.get("agent"), f"{where}.agent"),
                    prompt=self._text(raw.get("description"), f"{where}.description"),
                    depends_on=depends_on,
                    optional=bool(raw.get("optional", False)),
                )
            )
        try:
            compute_levels([spec.depends_on for spec in specs])
        except InvalidPlanError as exc:
            raise DecisionParseError(f"create_subtasks: {exc}") from exc

        reasoning = data.get("reasoning")
        return Decompose(
            subtasks=tuple(specs),
            reasoning=reasoning.strip() if isinstance(reasoning, str) and reasoning.strip() else "Task decomposition",
        )

    @staticmethod
    def _dependencies(raw: Dict[str, Any], where: str) -> tuple:
        deps = raw.get("dependsOn", raw.get("depends_on"))
        if deps is None:
            return ()
        if not isinstance(deps, list):
            raise DecisionParseError(f"{where}.dependsOn must be a list of indices")
        for dep in deps:
            if not isinstance(dep, int) or isinstance(dep, bool) or dep < 0:
                raise DecisionParseError(f"{where}.dependsOn contains invalid index {dep!r}")
        return tuple(deps)

    @staticmethod
    def _text(value: Any, where: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise DecisionParseError(f"{where} is required and must be a non-empty string")
        return value.strip()
