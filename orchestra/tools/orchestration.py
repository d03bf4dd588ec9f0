"""Tools the orchestrator offers the model when routing a task."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from orchestra.agents.registry import AgentRegistry
from orchestra.tools.base import ToolDefinition, ToolOutcome

DELEGATE_TO_AGENT = "delegate_to_agent"
CREATE_SUBTASKS = "create_subtasks"
COMPLETE_TASK = "complete_task"
ASK_USER = "ask_user"
GET_AGENT_STATUS = "get_agent_status"

DECISION_TOOL_NAMES = frozenset({DELEGATE_TO_AGENT, CREATE_SUBTASKS, COMPLETE_TASK, ASK_USER})


def _agent_field(agent_names: Sequence[str], description: str) -> Dict[str, Any]:
    field: Dict[str, Any] = {"type": "string", "description": description}
    if agent_names:
        field["enum"] = list(agent_names)
    return field


def decision_tools(agent_names: Sequence[str]) -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name=DELEGATE_TO_AGENT,
            description="Hand the whole task to one specialist agent.",
            input_schema={
                "type": "object",
                "properties": {
                    "agent": _agent_field(agent_names, "Agent that will do the work"),
                    "task": {"type": "string", "description": "Precise instructions for the agent"},
                    "context": {"type": "object", "description": "Extra context for the agent"},
                },
                "required": ["agent", "task"],
            },
        ),
        ToolDefinition(
            name=CREATE_SUBTASKS,
            description=(
                "Split the task into subtasks for several agents. dependsOn lists the indices "
                "of subtasks that must finish first; subtasks without pending dependencies run in parallel."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "tasks": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "agent": _agent_field(agent_names, "Agent for this subtask"),
                                "description": {"type": "string"},
                                "dependsOn": {"type": "array", "items": {"type": "integer"}},
                                "optional": {"type": "boolean"},
                            },
                            "required": ["agent", "description"],
                        },
                    },
                    "reasoning": {"type": "string"},
                },
                "required": ["tasks", "reasoning"],
            },
        ),
        ToolDefinition(
            name=COMPLETE_TASK,
            description="Finish the task with a final answer.",
            input_schema={
                "type": "object",
                "properties": {
                    "result": {"type": "string"},
                    "summary": {"type": "string"},
                    "artifacts": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["result"],
            },
        ),
        ToolDefinition(
            name=ASK_USER,
            description="Ask the user a clarifying question before doing anything.",
            input_schema={
                "type": "object",
                "properties": {"question": {"type": "string"}},
                "required": ["question"],
            },
        ),
    ]


GET_AGENT_STATUS_TOOL = ToolDefinition(
    name=GET_AGENT_STATUS,
    description="Report the status of one registered agent, or all of them.",
    input_schema={
        "type": "object",
        "properties": {"agent": {"type": "string"}},
        "required": [],
    },
)


def agent_status_handler(registry: AgentRegistry):
    def handler(query: Dict[str, Any]) -> ToolOutcome:
        name = query.get("agent")
        if not name:
            return ToolOutcome(success=True, output=registry.agents_info())
        agent = registry.get(name)
        if agent is None:
            return ToolOutcome(success=False, error=f"Unknown agent: {name}")
        return ToolOutcome(success=True, output=agent.info())

    return handler
