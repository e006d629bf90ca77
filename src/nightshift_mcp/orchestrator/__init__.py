"""Task orchestration: lifecycle state machine, handoffs and agent workspaces."""

from .machine import AGENT_TRANSITIONS, TASK_TRANSITIONS, InvalidTransition
from .models import ContextBundle, Task, TaskStatus, WorkspaceStatus
from .orchestrator import AgentBusy, NoActiveTask, TaskOrchestrator, UnknownTask

__all__ = [
    "AGENT_TRANSITIONS",
    "AgentBusy",
    "ContextBundle",
    "InvalidTransition",
    "NoActiveTask",
    "TASK_TRANSITIONS",
    "Task",
    "TaskOrchestrator",
    "TaskStatus",
    "UnknownTask",
    "WorkspaceStatus",
]
