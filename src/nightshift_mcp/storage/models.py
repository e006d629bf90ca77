"""Data models for persistent orchestration tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

CollaborationType = Literal["assign", "complete", "handoff", "blocked", "resume", "abort"]


@dataclass(slots=True)
class WorktreeRecord:
    task_id: str
    path: str
    branch: str
    status: str
    recorded_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CollaborationEvent:
    """One entry of the orchestrator's collaboration log."""

    from_agent_id: str
    to_agent_id: str
    event_type: CollaborationType
    task_id: str
    content: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_agent_id": self.from_agent_id,
            "to_agent_id": self.to_agent_id,
            "event_type": self.event_type,
            "task_id": self.task_id,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


__all__ = ["CollaborationEvent", "CollaborationType", "WorktreeRecord"]
