"""Transition tables for tasks and agents."""

from __future__ import annotations

from enum import Enum

from ..agents import AgentState
from .models import TaskStatus


class InvalidTransition(RuntimeError):
    """Raised when a task or agent is asked to make a move not in its transition table."""

    def __init__(self, subject: str, subject_id: str, current: Enum, target: Enum) -> None:
        self.subject = subject
        self.subject_id = subject_id
        self.current = current
        self.target = target
        super().__init__(
            f"{subject.capitalize()} '{subject_id}' cannot move from {current.value} to {target.value}"
        )


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.BLOCKED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.HANDED_OFF}),
    TaskStatus.BLOCKED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.ABORTED}),
    TaskStatus.HANDED_OFF: frozenset(),
    TaskStatus.ABORTED: frozenset(),
}

AGENT_TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.IDLE: frozenset({AgentState.WORKING, AgentState.DONE}),
    AgentState.WORKING: frozenset({AgentState.IDLE, AgentState.BLOCKED}),
    AgentState.BLOCKED: frozenset({AgentState.WORKING, AgentState.IDLE}),
    AgentState.DONE: frozenset(),
}


def check_task_transition(task_id: str, current: TaskStatus, target: TaskStatus) -> None:
    if target not in TASK_TRANSITIONS[current]:
        raise InvalidTransition("task", task_id, current, target)


def check_agent_transition(agent_id: str, current: AgentState, target: AgentState) -> None:
    if target not in AGENT_TRANSITIONS[current]:
        raise InvalidTransition("agent", agent_id, current, target)


__all__ = [
    "AGENT_TRANSITIONS",
    "InvalidTransition",
    "TASK_TRANSITIONS",
    "check_agent_transition",
    "check_task_transition",
]
