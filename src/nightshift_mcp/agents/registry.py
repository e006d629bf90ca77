"""Agent role definitions and their live runtime state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from ..profiles import RoleProfile


class AgentState(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    BLOCKED = "blocked"
    DONE = "done"


class UnknownAgent(ValueError):
    """Raised when an agent id is not part of the registry."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Unknown agent '{agent_id}'")


class InvalidHandoff(ValueError):
    """Raised when a role's handoff contract rejects a task."""

    def __init__(self, from_agent_id: str | None, to_agent_id: str, reason: str) -> None:
        self.from_agent_id = from_agent_id
        self.to_agent_id = to_agent_id
        source = from_agent_id or "direct assignment"
        super().__init__(f"Invalid handoff from {source} to '{to_agent_id}': {reason}")


@dataclass(slots=True)
class Agent:
    id: str
    type: str
    state: AgentState = AgentState.IDLE
    current_task: str | None = None


@dataclass(slots=True, frozen=True)
class AgentSnapshot:
    id: str
    type: str
    state: AgentState
    current_task: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "state": self.state.value,
            "currentTask": self.current_task,
        }


@dataclass(slots=True, frozen=True)
class SystemState:
    """Read-only view of every agent, as exposed to dashboards."""

    agents: tuple[AgentSnapshot, ...]
    session_id: str | None = None
    collaboration_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agents": [agent.to_dict() for agent in self.agents],
            "sessionId": self.session_id,
            "collaborationCount": self.collaboration_count,
        }


class AgentRegistry:
    """Fixed set of roles, one agent per role, with the agents' live state.

    Only the task orchestrator calls :meth:`update`; everything else reads
    through :meth:`get_system_state`.
    """

    def __init__(self, roles: Iterable[RoleProfile]) -> None:
        self._roles: dict[str, RoleProfile] = {}
        self._agents: dict[str, Agent] = {}
        for role in roles:
            if role.id in self._roles:
                raise ValueError(f"Duplicate role '{role.id}'")
            self._roles[role.id] = role
            self._agents[role.id] = Agent(id=role.id, type=role.id)
        if not self._roles:
            raise ValueError("AgentRegistry requires at least one role")

    def agent_ids(self) -> list[str]:
        return list(self._agents)

    def get(self, agent_id: str) -> AgentSnapshot:
        agent = self._agent(agent_id)
        return AgentSnapshot(id=agent.id, type=agent.type, state=agent.state, current_task=agent.current_task)

    def role(self, agent_id: str) -> RoleProfile:
        return self._roles[self._agent(agent_id).type]

    def validate_handoff(self, from_agent_id: str, to_agent_id: str) -> None:
        source = self._agent(from_agent_id)
        target_role = self.role(to_agent_id)
        if not target_role.accepts_from(source.type):
            accepted = ", ".join(target_role.accepts_handoff_from) or "no role"
            raise InvalidHandoff(
                from_agent_id,
                to_agent_id,
                f"role '{target_role.id}' accepts handoffs from {accepted}, not '{source.type}'",
            )

    def validate_assignment(self, agent_id: str) -> None:
        role = self.role(agent_id)
        if not role.accepts_direct_assignment:
            raise InvalidHandoff(None, agent_id, f"role '{role.id}' only accepts handed-off tasks")

    def update(self, agent_id: str, *, state: AgentState, current_task: str | None) -> None:
        agent = self._agent(agent_id)
        agent.state = state
        agent.current_task = current_task

    def get_system_state(self, *, session_id: str | None = None, collaboration_count: int = 0) -> SystemState:
        return SystemState(
            agents=tuple(self.get(agent_id) for agent_id in self._agents),
            session_id=session_id,
            collaboration_count=collaboration_count,
        )

    def _agent(self, agent_id: str) -> Agent:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise UnknownAgent(agent_id) from None


__all__ = [
    "Agent",
    "AgentRegistry",
    "AgentSnapshot",
    "AgentState",
    "InvalidHandoff",
    "SystemState",
    "UnknownAgent",
]
