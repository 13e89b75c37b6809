"""
AgentRegistry -- Ordered roster of dialogue participants.

Registration order is speaking order. The scheduler only ever receives
`enabled_agents()`: descriptors that are enabled and name a model.

Usage:
    registry = AgentRegistry()
    registry.register(AgentDescriptor.create("Model A", "llama3.2"))
    registry.register(AgentDescriptor.create("Model B", "qwen3", port=11435))

    scheduler.start(prompt, registry.enabled_agents())
"""

import logging
from collections.abc import Iterable

from .descriptor import AgentDescriptor

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Ordered, id-keyed collection of AgentDescriptors."""

    def __init__(self, agents: Iterable[AgentDescriptor] = ()):
        self._agents: dict[str, AgentDescriptor] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: AgentDescriptor) -> None:
        """Add an agent at the end of the speaking order (or replace in place)."""
        if agent.id in self._agents:
            logger.warning(f"[AgentRegistry] Replacing existing agent '{agent.id}'")
        self._agents[agent.id] = agent
        logger.info(
            f"[AgentRegistry] Registered {agent.display_name} "
            f"({agent.model_name or 'no model'} at {agent.base_url})"
        )

    def unregister(self, agent_id: str) -> bool:
        """Remove an agent from the roster."""
        if agent_id not in self._agents:
            return False
        del self._agents[agent_id]
        logger.info(f"[AgentRegistry] Unregistered agent: {agent_id}")
        return True

    def get(self, agent_id: str) -> AgentDescriptor | None:
        return self._agents.get(agent_id)

    def get_all(self) -> list[AgentDescriptor]:
        """All agents in speaking order, including disabled ones."""
        return list(self._agents.values())

    def enabled_agents(self) -> list[AgentDescriptor]:
        """Agents that take part in the next conversation, in speaking order."""
        return [a for a in self._agents.values() if a.is_runnable]

    def display_name_for(self, agent_id: str) -> str | None:
        agent = self._agents.get(agent_id)
        return agent.display_name if agent else None

    @property
    def count(self) -> int:
        return len(self._agents)

    @property
    def enabled_count(self) -> int:
        return sum(1 for a in self._agents.values() if a.is_runnable)
