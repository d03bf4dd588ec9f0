"""Human-in-the-loop tools and their offline fallbacks."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Sequence, Union

from orchestra.tools.base import FunctionTool, Tool, ToolDefinition, ToolOutcome
from orchestra.utils.execution_mode import ApprovalHandler, PendingAction

LOGGER = logging.getLogger(__name__)

ASK_USER_QUESTION = "ask_user_question"
TODO_WRITE = "todo_write"
FALLBACK_ANSWER = "Option 1"


@dataclass
class Question:
    question: str
    options: List[str] = field(default_factory=list)


AskUserCallback = Callable[[List[Question]], Awaitable[List[str]]]
TodoCallback = Callable[[List[Dict[str, Any]]], Union[Awaitable[None], None]]


class HumanInTheLoop:
    """Routes questions and todo updates to the user when callbacks are set.

    Without an ask callback each question is answered with its first option.
    Without a todo callback todos are only kept locally.
    """

    def __init__(
        self,
        ask_user: AskUserCallback | None = None,
        update_todos: TodoCallback | None = None,
    ) -> None:
        self.ask_user_callback = ask_user
        self.todo_callback = update_todos
        self.todos: List[Dict[str, Any]] = []

    @property
    def interactive(self) -> bool:
        return self.ask_user_callback is not None

    async def ask(self, questions: Sequence[Question]) -> List[str]:
        questions = list(questions)
        if self.ask_user_callback is None:
            LOGGER.info("No ask-user callback, answering %d question(s) with first options", len(questions))
            return [q.options[0] if q.options else FALLBACK_ANSWER for q in questions]
        return list(await self.ask_user_callback(questions))

    async def update_todos(self, todos: Sequence[Dict[str, Any]]) -> None:
        self.todos = [dict(t) for t in todos]
        if self.todo_callback is None:
            return
        outcome = self.todo_callback(self.todos)
        if inspect.isawaitable(outcome):
            await outcome

    def approval_handler(self) -> ApprovalHandler:
        """Approval gate for strict mode; denies when nobody can be asked."""

        async def approve(action: PendingAction) -> bool:
            if self.ask_user_callback is None:
                LOGGER.warning("No ask-user callback, denying %s", action.description)
                return False
            try:
                answers = await self.ask_user_callback(
                    [Question(question=f"Allow {action.description}?", options=["Approve", "Deny"])]
                )
            except Exception:
                LOGGER.exception("Approval request for %s failed, denying", action.description)
                return False
            return bool(answers) and answers[0].strip().lower() in {"approve", "yes", "y"}

        return approve


ASK_USER_QUESTION_TOOL = ToolDefinition(
    name=ASK_USER_QUESTION,
    description="Ask the user one or more multiple-choice questions.",
    input_schema={
        "type": "object",
        "properties": {
            "questions": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "question": {"type": "string"},
                        "options": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["question"],
                },
            }
        },
        "required": ["questions"],
    },
)

TODO_WRITE_TOOL = ToolDefinition(
    name=TODO_WRITE,
    description="Replace the visible todo list for the current task.",
    input_schema={
        "type": "object",
        "properties": {
            "todos": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "content": {"type": "string"},
                        "status": {"type": "string", "enum": ["pending", "in_progress", "completed"]},
                    },
                    "required": ["content", "status"],
                },
            }
        },
        "required": ["todos"],
    },
)


def interaction_tools(hitl: HumanInTheLoop) -> List[Tool]:
    async def ask_question(query: Dict[str, Any]) -> ToolOutcome:
        raw = query.get("questions") or []
        questions = [Question(q.get("question", ""), list(q.get("options") or [])) for q in raw if isinstance(q, dict)]
        if not questions:
            return ToolOutcome(success=False, error="questions must be a non-empty list")
        answers = await hitl.ask(questions)
        return ToolOutcome(
            success=True,
            output={
                "answers": [{"question": q.question, "answer": a} for q, a in zip(questions, answers)],
                "interactive": hitl.interactive,
            },
        )

    async def write_todos(query: Dict[str, Any]) -> ToolOutcome:
        todos = query.get("todos")
        if not isinstance(todos, list):
            return ToolOutcome(success=False, error="todos must be a list")
        await hitl.update_todos(todos)
        return ToolOutcome(success=True, output={"count": len(todos)})

    return [
        FunctionTool(ASK_USER_QUESTION_TOOL, ask_question, category="interaction"),
        FunctionTool(TODO_WRITE_TOOL, write_todos, category="interaction"),
    ]
