"""Tool registration for Nightshift MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..git import EnhancedCommit, ProvenanceCommitter, Worktree, WorktreeStore
from ..index import CodeIndex, EmbeddingUnavailable, IndexRebuildRequired
from ..orchestrator import Task, TaskOrchestrator

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)

_HEAVY_FIELDS = {"keywords", "embedding"}


@dataclass(slots=True)
class ToolHandles:
    assign_task: Any
    complete_task: Any
    block_task: Any
    resume_task: Any
    abort_task: Any
    close_session: Any
    system_state: Any
    prepare_workspace: Any
    workspace_status: Any
    remove_worktree: Any
    record_output: Any
    commit_history: Any
    retrieve_context: Any
    index_project: Any
    search_code: Any
    semantic_search: Any
    index_stats: Any
    collaboration_history: Any


def _task_summary(task: Task, *, prompt: str | None = None) -> dict[str, Any]:
    payload = task.to_dict()
    if prompt is not None:
        payload["prompt"] = prompt
    return payload


def _worktree_summary(worktree: Worktree) -> dict[str, Any]:
    return {
        "task_id": worktree.task_id,
        "path": str(worktree.path),
        "branch": worktree.branch_name,
        "base_ref": worktree.base_ref,
        "created_at": worktree.created_at.isoformat(),
    }


def _commit_summary(commit: EnhancedCommit) -> dict[str, Any]:
    return {
        "commit_hash": commit.commit_hash,
        "message": commit.message,
        "metadata": commit.metadata.to_payload() if commit.metadata else None,
    }


def register_tools(
    server: FastMCP,
    *,
    orchestrator: TaskOrchestrator,
    worktrees: WorktreeStore | None,
    committer: ProvenanceCommitter | None,
    code_index: CodeIndex | None,
) -> ToolHandles:
    """Register Nightshift's MCP tools on the server."""

    def _require_index() -> CodeIndex:
        if code_index is None:
            raise RuntimeError("Code index is unavailable; configure a repository before searching")
        return code_index

    def _require_worktrees() -> WorktreeStore:
        if worktrees is None:
            raise RuntimeError("Worktree store is unavailable; configure a repository first")
        return worktrees

    # -- task lifecycle -------------------------------------------------

    def _assign_task(agent_id: str, description: str) -> dict[str, Any]:
        """Assign a new task to an idle agent and return it with the agent's prompt."""

        task = orchestrator.assign_task(agent_id, description)
        _emit_log("info", "Assigned task", extra={"task_id": task.id, "agent_id": agent_id})
        return _task_summary(task, prompt=orchestrator.build_prompt(agent_id))

    def _complete_task(
        agent_id: str,
        result_summary: str,
        next_agent_id: str | None = None,
        next_description: str | None = None,
    ) -> dict[str, Any]:
        """Complete the agent's task, optionally handing the result to another agent."""

        task = orchestrator.complete_task(
            agent_id, result_summary, next_agent_id, next_description=next_description
        )
        handed_off = next_agent_id is not None
        _emit_log(
            "info",
            "Completed task",
            extra={"task_id": task.id, "agent_id": agent_id, "next_agent_id": next_agent_id},
        )
        return {
            "handed_off": handed_off,
            "task": _task_summary(task, prompt=orchestrator.build_prompt(next_agent_id) if handed_off else None),
        }

    def _block_task(agent_id: str, reason: str) -> dict[str, Any]:
        return _task_summary(orchestrator.block_task(agent_id, reason))

    def _resume_task(agent_id: str) -> dict[str, Any]:
        task = orchestrator.resume_task(agent_id)
        return _task_summary(task, prompt=orchestrator.build_prompt(agent_id))

    def _abort_task(agent_id: str, reason: str | None = None) -> dict[str, Any]:
        return _task_summary(orchestrator.abort_task(agent_id, reason))

    def _close_session() -> dict[str, Any]:
        closed = orchestrator.close_session()
        return {"session_id": orchestrator.session_id, "closed_agents": closed}

    def _system_state() -> dict[str, Any]:
        """Return every agent's state and current task."""

        return orchestrator.get_system_state().to_dict()

    tool_assign = server.tool(
        name="assign_task",
        description="Assign a task to an idle agent. Returns the task and the prompt to run it with.",
    )(_assign_task)

    tool_complete = server.tool(
        name="complete_task",
        description=(
            "Mark the agent's current task completed. Pass next_agent_id to hand the result "
            "summary to another role as the input of a follow-up task."
        ),
    )(_complete_task)

    tool_block = server.tool(
        name="block_task",
        description="Move a working agent and its task to blocked, recording the reason.",
    )(_block_task)

    tool_resume = server.tool(
        name="resume_task",
        description="Resume a blocked agent on the same task.",
    )(_resume_task)

    tool_abort = server.tool(
        name="abort_task",
        description=(
            "Abort a blocked task and return the agent to idle. The task's worktree is kept; "
            "call remove_worktree to discard it."
        ),
        annotations={"destructiveHint": True},
    )(_abort_task)

    tool_close = server.tool(
        name="close_session",
        description="Retire every idle agent at the end of a session.",
    )(_close_session)

    tool_state = server.tool(
        name="system_state",
        description="Snapshot of every agent's state and current task for this session.",
    )(_system_state)

    # -- workspaces and provenance --------------------------------------

    def _prepare_workspace(agent_id: str) -> dict[str, Any]:
        """Create or return the isolated worktree for the agent's task chain."""

        worktree = orchestrator.prepare_workspace(agent_id)
        _emit_log("info", "Prepared workspace", extra={"agent_id": agent_id, "path": str(worktree.path)})
        return _worktree_summary(worktree)

    def _workspace_status(agent_id: str) -> dict[str, Any]:
        """Branch, uncommitted changes and HEAD provenance of the agent's workspace."""

        return orchestrator.workspace_status(agent_id).to_dict()

    def _remove_worktree(task_id: str) -> dict[str, Any]:
        store = _require_worktrees()
        store.remove_worktree(task_id)
        return {"task_id": task_id, "removed": True}

    def _record_output(
        agent_id: str,
        message: str,
        prompt: str,
        expected_outcome: str,
        context_summary: str,
        extras: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Commit the agent's workspace with provenance metadata."""

        commit_hash = orchestrator.record_output(
            agent_id,
            message,
            prompt=prompt,
            expected_outcome=expected_outcome,
            context_summary=context_summary,
            extras=extras,
        )
        return {"agent_id": agent_id, "commit_hash": commit_hash, "session_id": orchestrator.session_id}

    def _commit_history(task_id: str | None = None, limit: int = 20) -> dict[str, Any]:
        """Newest-first commits of a task worktree, or of the primary repository."""

        store = _require_worktrees()
        if committer is None:
            raise RuntimeError("Provenance committer is unavailable")
        path = store.repo_path
        if task_id is not None:
            worktree = store.get_worktree(task_id)
            if worktree is None:
                raise ValueError(f"No worktree for task '{task_id}'")
            path = worktree.path
        commits = committer.get_enhanced_commit_history(path, limit=limit)
        _emit_log("debug", "Read commit history", extra={"path": str(path), "count": len(commits)})
        return {"path": str(path), "commits": [_commit_summary(commit) for commit in commits]}

    def _retrieve_context(query: str, agent_id: str | None = None, limit: int = 10) -> dict[str, Any]:
        """Keyword hits, semantic hits and related commits for a query."""

        return orchestrator.retrieve_context(query, agent_id=agent_id, limit=limit).to_dict()

    tool_prepare = server.tool(
        name="prepare_workspace",
        description="Create (or return) the isolated git worktree for the agent's current task chain.",
    )(_prepare_workspace)

    tool_workspace_status = server.tool(
        name="workspace_status",
        description=(
            "Report the agent's workspace branch, whether it is clean, its uncommitted diff "
            "stats and the provenance metadata of its latest commit."
        ),
        annotations={"readOnlyHint": True},
    )(_workspace_status)

    tool_remove = server.tool(
        name="remove_worktree",
        description="Remove a task worktree and its branch. Removing a missing worktree is a no-op.",
        annotations={"destructiveHint": True, "idempotentHint": True},
    )(_remove_worktree)

    tool_record = server.tool(
        name="record_output",
        description=(
            "Commit everything in the agent's worktree with the prompt, expected outcome and "
            "context summary embedded in the commit message."
        ),
    )(_record_output)

    tool_history = server.tool(
        name="commit_history",
        description="List commits newest-first with their decoded provenance metadata.",
        annotations={"readOnlyHint": True},
    )(_commit_history)

    tool_context = server.tool(
        name="retrieve_context",
        description="Gather code search hits and related commit history for a query.",
        annotations={"readOnlyHint": True},
    )(_retrieve_context)

    # -- code index -----------------------------------------------------

    def _index_project() -> dict[str, Any]:
        return _require_index().index_project().to_dict()

    def _search_code(term: str, limit: int = 20) -> dict[str, Any]:
        """Keyword search over indexed symbols."""

        entries = _require_index().search_by_keyword(term, limit=limit)
        _emit_log("debug", "Keyword search", extra={"term": term, "results": len(entries)})
        return {"matches": [entry.model_dump(exclude=_HEAVY_FIELDS) for entry in entries]}

    def _semantic_search(query: str, limit: int = 10) -> dict[str, Any]:
        """Similarity search over indexed symbols; reports unavailability instead of failing."""

        try:
            hits = _require_index().search_by_embedding(query, limit=limit)
        except EmbeddingUnavailable as exc:
            _emit_log("info", "Semantic search unavailable", extra={"query": query})
            return {
                "available": False,
                "rebuild_required": isinstance(exc, IndexRebuildRequired),
                "error": str(exc),
                "matches": [],
            }
        return {
            "available": True,
            "matches": [
                {**hit.entry.model_dump(exclude=_HEAVY_FIELDS), "similarity": round(hit.similarity, 6)}
                for hit in hits
            ],
        }

    def _index_stats() -> dict[str, Any]:
        return _require_index().get_index_stats().to_dict()

    def _collaboration_history(limit: int = 50) -> dict[str, Any]:
        events = orchestrator.get_collaboration_history(limit)
        return {
            "session_id": orchestrator.session_id,
            "events": [event.to_dict() for event in events],
        }

    tool_index = server.tool(
        name="index_project",
        description="Rebuild the code index. Unchanged files are reused; deleted files are dropped.",
    )(_index_project)

    tool_search = server.tool(
        name="search_code",
        description="Find functions, classes, interfaces and modules whose keywords contain the term.",
        annotations={"readOnlyHint": True},
    )(_search_code)

    tool_semantic = server.tool(
        name="semantic_search",
        description="Rank indexed symbols by embedding similarity to a natural-language query.",
        annotations={"readOnlyHint": True},
    )(_semantic_search)

    tool_stats = server.tool(
        name="index_stats",
        description="File count, entry count and last rebuild time of the code index.",
        annotations={"readOnlyHint": True},
    )(_index_stats)

    tool_collab = server.tool(
        name="collaboration_history",
        description="Recent assignments, completions and handoffs in this session.",
        annotations={"readOnlyHint": True},
    )(_collaboration_history)

    return ToolHandles(
        assign_task=tool_assign,
        complete_task=tool_complete,
        block_task=tool_block,
        resume_task=tool_resume,
        abort_task=tool_abort,
        close_session=tool_close,
        system_state=tool_state,
        prepare_workspace=tool_prepare,
        workspace_status=tool_workspace_status,
        remove_worktree=tool_remove,
        record_output=tool_record,
        commit_history=tool_history,
        retrieve_context=tool_context,
        index_project=tool_index,
        search_code=tool_search,
        semantic_search=tool_semantic,
        index_stats=tool_stats,
        collaboration_history=tool_collab,
    )


def _emit_log(level: str, message: str, *, extra: dict[str, Any] | None = None) -> None:
    log_method = getattr(logger, level, logger.info)
    log_method(message, extra=extra or {})


__all__ = ["ToolHandles", "register_tools"]
