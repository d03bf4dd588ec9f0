from __future__ import annotations

from pathlib import Path
from typing import Any

from orchestra.agents.base import Agent
from orchestra.agents.prompts import frame_task
from orchestra.schemas.messages import Task, TaskResult


class SpecialistAgent(Agent):
    """Worker agent whose behaviour is defined by a markdown system prompt.

    The prompt is read from ``prompt_path`` or passed inline as
    ``system_prompt``; one of the two is required.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        *,
        prompt_path: str | None = None,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, description, **kwargs)
        if system_prompt is None:
            if prompt_path is None:
                raise ValueError(f"Agent {name} needs either prompt_path or system_prompt")
            system_prompt = Path(prompt_path).read_text(encoding="utf-8")
        self.prompt = system_prompt

    def get_system_prompt(self) -> str:
        return self.prompt

    async def execute(self, task: Task) -> TaskResult:
        return await self.run_agent_loop(frame_task(task.prompt, task.context))
