"""Task records and context bundles handled by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..git.provenance import CommitMetadata, DiffStats, EnhancedCommit
from ..index.models import IndexEntry, SemanticHit

_HEAVY_FIELDS = {"keywords", "embedding"}


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    HANDED_OFF = "handed_off"
    BLOCKED = "blocked"
    ABORTED = "aborted"


@dataclass(slots=True)
class Task:
    id: str
    description: str
    assigned_agent_id: str
    chain_id: str
    created_at: datetime
    updated_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    result_summary: str | None = None
    input_context: str | None = None
    parent_task_id: str | None = None
    blocked_reason: str | None = None
    worktree_path: str | None = None
    commits: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "assigned_agent_id": self.assigned_agent_id,
            "status": self.status.value,
            "result_summary": self.result_summary,
            "input_context": self.input_context,
            "parent_task_id": self.parent_task_id,
            "chain_id": self.chain_id,
            "blocked_reason": self.blocked_reason,
            "worktree_path": self.worktree_path,
            "commits": list(self.commits),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class ContextBundle:
    """Independent keyword, semantic and commit-history results for one query."""

    query: str
    keyword_hits: list[IndexEntry] = field(default_factory=list)
    semantic_hits: list[SemanticHit] = field(default_factory=list)
    commits: list[EnhancedCommit] = field(default_factory=list)
    semantic_available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "keyword_hits": [entry.model_dump(exclude=_HEAVY_FIELDS) for entry in self.keyword_hits],
            "semantic_hits": [
                {**hit.entry.model_dump(exclude=_HEAVY_FIELDS), "similarity": round(hit.similarity, 6)}
                for hit in self.semantic_hits
            ],
            "semantic_available": self.semantic_available,
            "commits": [
                {
                    "commit_hash": commit.commit_hash,
                    "message": commit.message,
                    "agent_id": commit.metadata.agent_id if commit.metadata else None,
                }
                for commit in self.commits
            ],
        }


@dataclass(slots=True)
class WorkspaceStatus:
    """Where an agent's chain workspace stands relative to its last commit."""

    task_id: str
    path: str
    branch: str
    clean: bool
    diff: DiffStats
    head_metadata: CommitMetadata | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "path": self.path,
            "branch": self.branch,
            "clean": self.clean,
            "diff": {
                "additions": self.diff.additions,
                "deletions": self.diff.deletions,
                "files_changed": self.diff.files_changed,
                "changed_files": list(self.diff.changed_files),
            },
            "head_metadata": self.head_metadata.to_payload() if self.head_metadata else None,
        }


__all__ = ["ContextBundle", "Task", "TaskStatus", "WorkspaceStatus"]
