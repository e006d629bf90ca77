"""Agent registry exports."""

from .registry import (
    Agent,
    AgentRegistry,
    AgentSnapshot,
    AgentState,
    InvalidHandoff,
    SystemState,
    UnknownAgent,
)

__all__ = [
    "Agent",
    "AgentRegistry",
    "AgentSnapshot",
    "AgentState",
    "InvalidHandoff",
    "SystemState",
    "UnknownAgent",
]
