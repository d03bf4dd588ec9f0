from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from orchestra.agents.base import Agent

LOGGER = logging.getLogger(__name__)


class AgentRegistry:
    """Specialist agents available for delegation, keyed by name."""

    def __init__(self, agents: Iterable[Agent] | None = None) -> None:
        self._agents: Dict[str, Agent] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        if agent.name in self._agents:
            LOGGER.warning("Replacing registered agent %s", agent.name)
        self._agents[agent.name] = agent

    def unregister(self, name: str) -> bool:
        return self._agents.pop(name, None) is not None

    def get(self, name: str) -> Optional[Agent]:
        return self._agents.get(name)

    def has(self, name: str) -> bool:
        return name in self._agents

    def names(self) -> List[str]:
        return list(self._agents)

    def agents_info(self) -> List[Dict[str, Any]]:
        return [agent.info() for agent in self._agents.values()]

    def __len__(self) -> int:
        return len(self._agents)
