"""Git plumbing: command runner, task worktrees and provenance commits."""

from .provenance import (
    COMMIT_METADATA_END,
    COMMIT_METADATA_START,
    CommitMetadata,
    DiffStats,
    EnhancedCommit,
    NothingToCommit,
    ProvenanceCommitter,
)
from .runner import GitExecutionResult, GitNotFoundError, GitOperationError, GitRunner
from .worktrees import Worktree, WorktreeConflict, WorktreeStore

__all__ = [
    "COMMIT_METADATA_END",
    "COMMIT_METADATA_START",
    "CommitMetadata",
    "DiffStats",
    "EnhancedCommit",
    "GitExecutionResult",
    "GitNotFoundError",
    "GitOperationError",
    "GitRunner",
    "NothingToCommit",
    "ProvenanceCommitter",
    "Worktree",
    "WorktreeConflict",
    "WorktreeStore",
]
