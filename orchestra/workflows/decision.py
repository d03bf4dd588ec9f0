from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Sequence

from orchestra.agents.prompts import build_analysis_prompt
from orchestra.agents.registry import AgentRegistry
from orchestra.schemas.decisions import AskUser, Decision
from orchestra.schemas.messages import AgentMessage, Task
from orchestra.tools.base import ToolDefinition
from orchestra.tools.orchestration import decision_tools
from orchestra.utils.cache import Cache, MemoryCache, routing_key
from orchestra.utils.errors import DecisionParseError
from orchestra.utils.llm_clients import LLMResponse
from orchestra.workflows.decision_parser import MAX_SUBTASKS, DecisionParser

LOGGER = logging.getLogger(__name__)

LLMCall = Callable[[Sequence[AgentMessage], Sequence[ToolDefinition]], Awaitable[LLMResponse]]

FALLBACK_QUESTION = "I could not work out how to handle this request. Could you describe what you need in more detail?"


class DecisionEngine:
    """Routes a task to one ``Decision`` with a single LLM turn.

    Decisions are cached by normalized prompt, so identical requests are
    routed without calling the model again. Invalid model output degrades to
    an ``AskUser`` decision, which is never cached.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        call_llm: LLMCall,
        cache: Cache[Decision] | None = None,
        max_subtasks: int = MAX_SUBTASKS,
    ) -> None:
        self.registry = registry
        self.call_llm = call_llm
        self.cache = cache if cache is not None else MemoryCache()
        self.max_subtasks = max_subtasks

    def tools(self) -> List[ToolDefinition]:
        return decision_tools(self.registry.names())

    async def decide(self, task: Task) -> Decision:
        key = routing_key(task.prompt)
        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug("Routing cache hit for task %s: %s", task.id, cached.action)
            return cached

        prompt = build_analysis_prompt(task.prompt, self.registry.agents_info(), task.context)
        response = await self.call_llm([AgentMessage(role="user", content=prompt)], self.tools())
        parser = DecisionParser(self.registry.names(), self.max_subtasks)
        try:
            decision = parser.parse(response)
        except DecisionParseError as exc:
            LOGGER.warning("Could not parse routing decision for task %s: %s", task.id, exc)
            return self.fallback(exc)

        self.cache.set(key, decision)
        return decision

    @staticmethod
    def fallback(error: Exception) -> Decision:
        return AskUser(question=FALLBACK_QUESTION, reason=str(error))
