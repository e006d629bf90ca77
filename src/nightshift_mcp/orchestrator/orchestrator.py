"""Task lifecycle, handoffs and agent workspaces."""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterator
from uuid import uuid4

from ..agents import AgentRegistry, AgentSnapshot, AgentState, SystemState
from ..git import (
    CommitMetadata,
    EnhancedCommit,
    GitOperationError,
    ProvenanceCommitter,
    Worktree,
    WorktreeStore,
)
from ..index import CodeIndex, EmbeddingUnavailable
from ..storage import ChromaStore, CollaborationEvent
from ..storage.models import CollaborationType
from .machine import InvalidTransition, check_agent_transition, check_task_transition
from .models import ContextBundle, Task, TaskStatus, WorkspaceStatus

logger = logging.getLogger(__name__)

COLLABORATION_LOG_CAP = 1000
COLLABORATION_LOG_KEEP = 500
_HISTORY_SCAN_LIMIT = 50


class AgentBusy(RuntimeError):
    """Raised when work is given to an agent that is not idle."""

    def __init__(self, agent_id: str, state: AgentState, current_task: str | None) -> None:
        self.agent_id = agent_id
        self.state = state
        self.current_task = current_task
        detail = f" on task '{current_task}'" if current_task else ""
        super().__init__(f"Agent '{agent_id}' is {state.value}{detail}")


class UnknownTask(ValueError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found")


class NoActiveTask(RuntimeError):
    """Raised when an operation needs the agent's current task and it has none."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' has no active task")


def _new_session_id(now: datetime) -> str:
    return f"session_{now.strftime('%Y%m%d%H%M%S')}_{uuid4().hex[:8]}"


def _new_task_id() -> str:
    return f"task-{uuid4().hex[:12]}"


class TaskOrchestrator:
    """Owns every task and is the only writer of agent state.

    Each operation validates all of its preconditions before it changes
    anything, so a rejected call leaves tasks and agents exactly as they
    were. Operations on the same agent are serialized by a per-agent lock;
    a handoff holds the locks of both agents, taken in sorted order.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        *,
        worktrees: WorktreeStore | None = None,
        committer: ProvenanceCommitter | None = None,
        code_index: CodeIndex | None = None,
        events: ChromaStore | None = None,
        session_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._registry = registry
        self._worktrees = worktrees
        self._committer = committer
        self._code_index = code_index
        self._events = events
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or _new_task_id
        self._session_id = session_id or _new_session_id(self._clock())

        self._agent_locks = {agent_id: threading.Lock() for agent_id in registry.agent_ids()}
        self._state_lock = threading.Lock()
        self._tasks: dict[str, Task] = {}
        self._archive: dict[str, Task] = {}
        self._collaboration: list[CollaborationEvent] = []
        if session_id is not None and events is not None:
            self._collaboration = events.list_collaboration(session_id, limit=COLLABORATION_LOG_KEEP)
            if self._collaboration:
                logger.info(
                    "Restored collaboration history",
                    extra={"session_id": session_id, "events": len(self._collaboration)},
                )

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def code_index(self) -> CodeIndex | None:
        return self._code_index

    # -- task lifecycle -------------------------------------------------

    def assign_task(self, agent_id: str, description: str) -> Task:
        """Give ``agent_id`` a new task, starting a new chain."""

        if not description.strip():
            raise ValueError("Task description must not be empty")

        with self._locked(agent_id):
            agent = self._registry.get(agent_id)
            if agent.state is not AgentState.IDLE:
                raise AgentBusy(agent_id, agent.state, agent.current_task)
            self._registry.validate_assignment(agent_id)

            task = self._new_task(agent_id, description)
            self._start(task, agent)
            self._log_collaboration("system", agent_id, "assign", task.id, f"Task assigned: {description}")

        logger.info("Assigned task", extra={"task_id": task.id, "agent_id": agent_id})
        return self._copy(task)

    def complete_task(
        self,
        agent_id: str,
        result_summary: str,
        next_agent_id: str | None = None,
        *,
        next_description: str | None = None,
    ) -> Task:
        """Finish the agent's current task, optionally handing off to ``next_agent_id``.

        Returns the successor task when a handoff happened, otherwise the
        completed task.
        """

        involved = [agent_id] if next_agent_id is None else [agent_id, next_agent_id]
        with self._locked(*involved):
            current = self._registry.get(agent_id)
            if current.state is not AgentState.WORKING:
                raise InvalidTransition("agent", agent_id, current.state, AgentState.IDLE)
            _, task = self._active(agent_id)
            check_task_transition(task.id, task.status, TaskStatus.COMPLETED)

            target: AgentSnapshot | None = None
            if next_agent_id is not None:
                self._registry.validate_handoff(agent_id, next_agent_id)
                if next_agent_id != agent_id:
                    target = self._registry.get(next_agent_id)
                    if target.state is not AgentState.IDLE:
                        raise AgentBusy(next_agent_id, target.state, target.current_task)
                check_task_transition(task.id, TaskStatus.COMPLETED, TaskStatus.HANDED_OFF)

            now = self._clock()
            task.status = TaskStatus.COMPLETED
            task.result_summary = result_summary
            task.updated_at = now
            self._registry.update(agent_id, state=AgentState.IDLE, current_task=None)
            self._log_collaboration(agent_id, next_agent_id or "system", "complete", task.id, result_summary)

            if next_agent_id is None:
                self._archive_chain(task.chain_id)
                logger.info("Completed task", extra={"task_id": task.id, "agent_id": agent_id})
                return self._copy(task)

            successor = self._new_task(
                next_agent_id,
                next_description or self._handoff_description(task, next_agent_id),
                input_context=result_summary,
                parent=task,
            )
            task.status = TaskStatus.HANDED_OFF
            self._start(successor, target or self._registry.get(next_agent_id))
            self._log_collaboration(agent_id, next_agent_id, "handoff", successor.id, result_summary)

        logger.info(
            "Handed off task",
            extra={
                "task_id": task.id,
                "successor_id": successor.id,
                "from_agent_id": agent_id,
                "to_agent_id": next_agent_id,
            },
        )
        return self._copy(successor)

    def block_task(self, agent_id: str, reason: str) -> Task:
        with self._locked(agent_id):
            agent, task = self._active(agent_id)
            self._block(agent, task, reason)
        return self._copy(task)

    def resume_task(self, agent_id: str) -> Task:
        """Put a blocked agent back to work on the same task."""

        with self._locked(agent_id):
            agent, task = self._active(agent_id)
            check_agent_transition(agent_id, agent.state, AgentState.WORKING)
            check_task_transition(task.id, task.status, TaskStatus.IN_PROGRESS)

            task.status = TaskStatus.IN_PROGRESS
            task.blocked_reason = None
            task.updated_at = self._clock()
            self._registry.update(agent_id, state=AgentState.WORKING, current_task=task.id)
            self._log_collaboration("system", agent_id, "resume", task.id, "Task resumed")

        logger.info("Resumed task", extra={"task_id": task.id, "agent_id": agent_id})
        return self._copy(task)

    def abort_task(self, agent_id: str, reason: str | None = None) -> Task:
        """Abandon a blocked task; the agent returns to idle and the chain is archived.

        The chain's worktree is left on disk for inspection.
        """

        with self._locked(agent_id):
            agent, task = self._active(agent_id)
            check_agent_transition(agent_id, agent.state, AgentState.IDLE)
            check_task_transition(task.id, task.status, TaskStatus.ABORTED)

            task.status = TaskStatus.ABORTED
            task.updated_at = self._clock()
            if reason:
                task.blocked_reason = reason
            self._registry.update(agent_id, state=AgentState.IDLE, current_task=None)
            self._log_collaboration(agent_id, "system", "abort", task.id, reason or "Task aborted")
            self._archive_chain(task.chain_id)

        logger.warning("Aborted task", extra={"task_id": task.id, "agent_id": agent_id, "reason": reason})
        return self._copy(task)

    def close_session(self) -> list[str]:
        """Retire every idle agent; returns the ids that moved to ``done``."""

        closed: list[str] = []
        for agent_id in self._registry.agent_ids():
            with self._locked(agent_id):
                agent = self._registry.get(agent_id)
                if agent.state is not AgentState.IDLE:
                    continue
                check_agent_transition(agent_id, agent.state, AgentState.DONE)
                self._registry.update(agent_id, state=AgentState.DONE, current_task=None)
                closed.append(agent_id)
        logger.info("Closed session", extra={"session_id": self._session_id, "agents": closed})
        return closed

    # -- workspaces and provenance --------------------------------------

    def prepare_workspace(self, agent_id: str) -> Worktree:
        """Return the worktree of the agent's task chain, creating it on first use."""

        worktrees = self._require_worktrees()
        with self._locked(agent_id):
            agent, task = self._active(agent_id)
            try:
                worktree = self._workspace(worktrees, task)
            except GitOperationError as exc:
                if agent.state is AgentState.WORKING:
                    self._block(agent, task, f"Workspace setup failed: {exc}")
                raise
        return worktree

    def workspace_status(self, agent_id: str) -> WorkspaceStatus:
        """Branch, uncommitted changes and HEAD provenance of the agent's chain workspace."""

        worktrees = self._require_worktrees()
        committer = self._require_committer()
        with self._locked(agent_id):
            _, task = self._active(agent_id)
            worktree = worktrees.get_worktree(task.chain_id)
            if worktree is None:
                raise ValueError(f"Task '{task.id}' has no workspace yet; call prepare_workspace first")
            return WorkspaceStatus(
                task_id=task.id,
                path=str(worktree.path),
                branch=committer.current_branch(worktree.path),
                clean=committer.is_clean(worktree.path),
                diff=committer.diff_stats(worktree.path),
                head_metadata=committer.extract_commit_metadata(worktree.path),
            )

    def record_output(
        self,
        agent_id: str,
        message: str,
        *,
        prompt: str,
        expected_outcome: str,
        context_summary: str,
        extras: dict[str, Any] | None = None,
    ) -> str:
        """Commit the agent's workspace with provenance metadata; returns the commit hash.

        A git failure blocks the agent before the error propagates.
        ``NothingToCommit`` propagates without any state change.
        """

        worktrees = self._require_worktrees()
        committer = self._require_committer()
        with self._locked(agent_id):
            agent, task = self._active(agent_id)
            if agent.state is not AgentState.WORKING:
                raise InvalidTransition("agent", agent_id, agent.state, AgentState.WORKING)
            metadata = CommitMetadata(
                prompt=prompt,
                expected_outcome=expected_outcome,
                context_summary=context_summary,
                agent_id=agent_id,
                session_id=self._session_id,
                timestamp=self._clock(),
                extras=dict(extras or {}),
            )
            try:
                worktree = self._workspace(worktrees, task)
                commit_hash = committer.commit_with_metadata(worktree.path, message, metadata)
            except GitOperationError as exc:
                self._block(agent, task, f"Git failure: {exc}")
                raise
            task.commits.append(commit_hash)
            task.updated_at = self._clock()
        return commit_hash

    def retrieve_context(
        self,
        query: str,
        *,
        agent_id: str | None = None,
        limit: int = 10,
    ) -> ContextBundle:
        """Gather code and history relevant to ``query``.

        Keyword and semantic hits are returned as separate lists. Commits are
        read from the agent's chain workspace when ``agent_id`` has one, else
        from the primary repository.
        """

        bundle = ContextBundle(query=query)
        if self._code_index is not None:
            bundle.keyword_hits = self._code_index.search_by_keyword(query, limit=limit)
            try:
                bundle.semantic_hits = self._code_index.search_by_embedding(query, limit=limit)
                bundle.semantic_available = True
            except EmbeddingUnavailable:
                logger.debug("Semantic search unavailable", extra={"query": query})

        if self._committer is not None and self._worktrees is not None:
            history_path = self._worktrees.repo_path
            if agent_id is not None:
                current = self._registry.get(agent_id).current_task
                chain_tree = self._worktrees.get_worktree(self._lookup(current).chain_id) if current else None
                if chain_tree is not None:
                    history_path = chain_tree.path
            history = self._committer.get_enhanced_commit_history(history_path, limit=_HISTORY_SCAN_LIMIT)
            bundle.commits = [commit for commit in history if _mentions(commit, query)][:limit]
        return bundle

    def build_prompt(self, agent_id: str) -> str:
        _, task = self._active(agent_id)
        role = self._registry.role(agent_id)

        sections = [
            role.system_prompt.strip() or f"You are the {role.title or role.id}.",
            "Task:\n" + task.description.strip(),
        ]
        if task.input_context:
            source = self._lookup(task.parent_task_id).assigned_agent_id if task.parent_task_id else "a previous agent"
            sections.append(f"Context from {source}:\n" + task.input_context.strip())
        goals = "\n".join(f"- {goal}" for goal in role.goalset)
        sections.append("Goals:\n" + (goals or "- Follow the system prompt"))
        constraints = "\n".join(f"- {constraint}" for constraint in role.constraints)
        if constraints:
            sections.append("Constraints:\n" + constraints)
        if task.worktree_path:
            sections.append("Workspace:\n" + task.worktree_path)
        return "\n\n".join(sections)

    # -- queries --------------------------------------------------------

    def get_task(self, task_id: str) -> Task:
        with self._state_lock:
            return self._copy(self._lookup(task_id))

    def list_tasks(self) -> list[Task]:
        with self._state_lock:
            return [self._copy(task) for task in self._tasks.values()]

    def archived_tasks(self) -> list[Task]:
        with self._state_lock:
            return [self._copy(task) for task in self._archive.values()]

    def get_collaboration_history(self, limit: int | None = None) -> list[CollaborationEvent]:
        with self._state_lock:
            history = list(self._collaboration)
        return history[-limit:] if limit else history

    def get_system_state(self) -> SystemState:
        with self._state_lock:
            count = len(self._collaboration)
        return self._registry.get_system_state(session_id=self._session_id, collaboration_count=count)

    # -- internals ------------------------------------------------------

    @contextmanager
    def _locked(self, *agent_ids: str) -> Iterator[None]:
        with ExitStack() as stack:
            for agent_id in sorted(set(agent_ids)):
                self._registry.get(agent_id)
                stack.enter_context(self._agent_locks[agent_id])
            yield

    def _active(self, agent_id: str) -> tuple[AgentSnapshot, Task]:
        agent = self._registry.get(agent_id)
        if agent.current_task is None:
            raise NoActiveTask(agent_id)
        with self._state_lock:
            return agent, self._lookup(agent.current_task)

    def _lookup(self, task_id: str) -> Task:
        task = self._tasks.get(task_id) or self._archive.get(task_id)
        if task is None:
            raise UnknownTask(task_id)
        return task

    def _new_task(
        self,
        agent_id: str,
        description: str,
        *,
        input_context: str | None = None,
        parent: Task | None = None,
    ) -> Task:
        now = self._clock()
        task_id = self._id_factory()
        task = Task(
            id=task_id,
            description=description,
            assigned_agent_id=agent_id,
            chain_id=parent.chain_id if parent else task_id,
            created_at=now,
            updated_at=now,
            input_context=input_context,
            parent_task_id=parent.id if parent else None,
            worktree_path=parent.worktree_path if parent else None,
        )
        with self._state_lock:
            self._tasks[task.id] = task
        return task

    def _start(self, task: Task, agent: AgentSnapshot) -> None:
        check_task_transition(task.id, task.status, TaskStatus.IN_PROGRESS)
        check_agent_transition(agent.id, agent.state, AgentState.WORKING)
        task.status = TaskStatus.IN_PROGRESS
        task.updated_at = self._clock()
        self._registry.update(agent.id, state=AgentState.WORKING, current_task=task.id)

    def _block(self, agent: AgentSnapshot, task: Task, reason: str) -> None:
        check_agent_transition(agent.id, agent.state, AgentState.BLOCKED)
        check_task_transition(task.id, task.status, TaskStatus.BLOCKED)
        task.status = TaskStatus.BLOCKED
        task.blocked_reason = reason
        task.updated_at = self._clock()
        self._registry.update(agent.id, state=AgentState.BLOCKED, current_task=task.id)
        self._log_collaboration(agent.id, "system", "blocked", task.id, reason)
        logger.warning("Blocked task", extra={"task_id": task.id, "agent_id": agent.id, "reason": reason})

    def _workspace(self, worktrees: WorktreeStore, task: Task) -> Worktree:
        worktree = worktrees.get_worktree(task.chain_id)
        if worktree is None:
            worktrees.create_worktree(task.chain_id)
            worktree = worktrees.get_worktree(task.chain_id)
            if worktree is None:
                raise RuntimeError(f"Worktree for chain '{task.chain_id}' vanished after creation")
        task.worktree_path = str(worktree.path)
        return worktree

    def _archive_chain(self, chain_id: str) -> None:
        with self._state_lock:
            for task_id in [tid for tid, task in self._tasks.items() if task.chain_id == chain_id]:
                self._archive[task_id] = self._tasks.pop(task_id)

    def _handoff_description(self, task: Task, next_agent_id: str) -> str:
        role = self._registry.role(next_agent_id)
        return f"{role.title or role.id}: follow up on '{task.description}'"

    def _log_collaboration(
        self,
        from_agent_id: str,
        to_agent_id: str,
        event_type: CollaborationType,
        task_id: str,
        content: str,
    ) -> None:
        event = CollaborationEvent(
            from_agent_id=from_agent_id,
            to_agent_id=to_agent_id,
            event_type=event_type,
            task_id=task_id,
            content=content,
            timestamp=self._clock(),
        )
        with self._state_lock:
            self._collaboration.append(event)
            if len(self._collaboration) > COLLABORATION_LOG_CAP:
                del self._collaboration[:-COLLABORATION_LOG_KEEP]
        if self._events is not None:
            self._events.record_collaboration(self._session_id, event)

    def _require_worktrees(self) -> WorktreeStore:
        if self._worktrees is None:
            raise RuntimeError("Worktree store is unavailable; configure a repository first")
        return self._worktrees

    def _require_committer(self) -> ProvenanceCommitter:
        if self._committer is None:
            raise RuntimeError("Provenance committer is unavailable; configure a repository first")
        return self._committer

    def _copy(self, task: Task) -> Task:
        return replace(task, commits=list(task.commits))


def _mentions(commit: EnhancedCommit, query: str) -> bool:
    needle = query.strip().lower()
    if not needle:
        return False
    haystack = [commit.message]
    if commit.metadata is not None:
        haystack.extend(
            [commit.metadata.prompt, commit.metadata.context_summary, commit.metadata.expected_outcome]
        )
    return any(needle in text.lower() for text in haystack)


__all__ = [
    "AgentBusy",
    "COLLABORATION_LOG_CAP",
    "COLLABORATION_LOG_KEEP",
    "NoActiveTask",
    "TaskOrchestrator",
    "UnknownTask",
]
