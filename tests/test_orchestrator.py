from __future__ import annotations

import threading
from pathlib import Path

import pytest

from nightshift_mcp.agents import AgentRegistry, AgentState, InvalidHandoff, UnknownAgent
from nightshift_mcp.git import GitOperationError, GitRunner, NothingToCommit, ProvenanceCommitter, WorktreeStore
from nightshift_mcp.index import CodeIndex, HashingEmbeddingProvider
from nightshift_mcp.orchestrator import (
    AgentBusy,
    InvalidTransition,
    NoActiveTask,
    TaskOrchestrator,
    TaskStatus,
    UnknownTask,
)
from nightshift_mcp.orchestrator.machine import TASK_TRANSITIONS, check_task_transition
from nightshift_mcp.orchestrator.orchestrator import COLLABORATION_LOG_CAP, COLLABORATION_LOG_KEEP
from nightshift_mcp.profiles import DEFAULT_ROLE_PROFILES
from nightshift_mcp.storage import ChromaStore


def sequential_ids():
    counter = iter(range(1, 10_000))
    return lambda: f"task-{next(counter)}"


@pytest.fixture
def orchestrator(clock) -> TaskOrchestrator:
    return TaskOrchestrator(
        AgentRegistry(DEFAULT_ROLE_PROFILES),
        session_id="session_test",
        clock=clock,
        id_factory=sequential_ids(),
    )


def agent_states(orchestrator: TaskOrchestrator) -> dict[str, tuple[AgentState, str | None]]:
    return {agent.id: (agent.state, agent.current_task) for agent in orchestrator.get_system_state().agents}


def test_assign_then_hand_off_to_coder(orchestrator: TaskOrchestrator) -> None:
    task = orchestrator.assign_task("planner", "Design a login system")

    assert task.status is TaskStatus.IN_PROGRESS
    assert orchestrator.registry.get("planner").state is AgentState.WORKING
    assert orchestrator.registry.get("planner").current_task == task.id

    successor = orchestrator.complete_task("planner", "Use JWT tokens with refresh", next_agent_id="coder")

    assert orchestrator.get_task(task.id).status is TaskStatus.HANDED_OFF
    assert orchestrator.get_task(task.id).result_summary == "Use JWT tokens with refresh"
    assert successor.assigned_agent_id == "coder"
    assert successor.status is TaskStatus.IN_PROGRESS
    assert successor.input_context == "Use JWT tokens with refresh"
    assert successor.parent_task_id == task.id
    assert successor.chain_id == task.chain_id
    states = agent_states(orchestrator)
    assert states["planner"] == (AgentState.IDLE, None)
    assert states["coder"] == (AgentState.WORKING, successor.id)


def test_assign_to_busy_agent_changes_nothing(orchestrator: TaskOrchestrator) -> None:
    first = orchestrator.assign_task("coder", "Implement feature A")
    before_states = agent_states(orchestrator)
    before_tasks = orchestrator.list_tasks()

    with pytest.raises(AgentBusy) as excinfo:
        orchestrator.assign_task("coder", "Implement feature B")

    assert excinfo.value.agent_id == "coder"
    assert excinfo.value.current_task == first.id
    assert agent_states(orchestrator) == before_states
    assert orchestrator.list_tasks() == before_tasks


def test_rejected_handoff_leaves_both_agents_unchanged(orchestrator: TaskOrchestrator) -> None:
    task = orchestrator.assign_task("planner", "Plan the release")
    before_states = agent_states(orchestrator)

    with pytest.raises(InvalidHandoff):
        orchestrator.complete_task("planner", "Plan ready", next_agent_id="curator")

    assert agent_states(orchestrator) == before_states
    assert orchestrator.get_task(task.id).status is TaskStatus.IN_PROGRESS
    assert orchestrator.get_task(task.id).result_summary is None


def test_handoff_to_busy_agent_leaves_both_agents_unchanged(orchestrator: TaskOrchestrator) -> None:
    orchestrator.assign_task("coder", "Fix the flaky test")
    planned = orchestrator.assign_task("planner", "Plan the refactor")
    before_states = agent_states(orchestrator)
    history_before = len(orchestrator.get_collaboration_history())

    with pytest.raises(AgentBusy):
        orchestrator.complete_task("planner", "Plan ready", next_agent_id="coder")

    assert agent_states(orchestrator) == before_states
    assert orchestrator.get_task(planned.id).status is TaskStatus.IN_PROGRESS
    assert len(orchestrator.get_collaboration_history()) == history_before


def test_complete_requires_a_working_agent(orchestrator: TaskOrchestrator) -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        orchestrator.complete_task("coder", "nothing to report")

    assert excinfo.value.subject_id == "coder"
    assert excinfo.value.current is AgentState.IDLE


def test_completing_without_successor_archives_the_chain(orchestrator: TaskOrchestrator) -> None:
    first = orchestrator.assign_task("planner", "Plan a tiny fix")
    second = orchestrator.complete_task("planner", "One-line change", next_agent_id="coder")

    done = orchestrator.complete_task("coder", "Fixed")

    assert done.id == second.id
    assert done.status is TaskStatus.COMPLETED
    assert orchestrator.list_tasks() == []
    assert {task.id for task in orchestrator.archived_tasks()} == {first.id, second.id}
    assert orchestrator.get_task(first.id).status is TaskStatus.HANDED_OFF
    assert agent_states(orchestrator)["coder"] == (AgentState.IDLE, None)


def test_block_resume_and_abort(orchestrator: TaskOrchestrator) -> None:
    task = orchestrator.assign_task("coder", "Upgrade dependencies")

    blocked = orchestrator.block_task("coder", "Registry is down")
    assert blocked.status is TaskStatus.BLOCKED
    assert blocked.blocked_reason == "Registry is down"
    assert agent_states(orchestrator)["coder"] == (AgentState.BLOCKED, task.id)

    with pytest.raises(InvalidTransition):
        orchestrator.complete_task("coder", "done anyway")

    resumed = orchestrator.resume_task("coder")
    assert resumed.status is TaskStatus.IN_PROGRESS
    assert resumed.blocked_reason is None
    assert agent_states(orchestrator)["coder"] == (AgentState.WORKING, task.id)

    orchestrator.block_task("coder", "Registry is down again")
    aborted = orchestrator.abort_task("coder", "Giving up for today")

    assert aborted.status is TaskStatus.ABORTED
    assert agent_states(orchestrator)["coder"] == (AgentState.IDLE, None)
    assert [item.id for item in orchestrator.archived_tasks()] == [task.id]


def test_abort_requires_blocked_task(orchestrator: TaskOrchestrator) -> None:
    orchestrator.assign_task("tester", "Run the suite")

    with pytest.raises(InvalidTransition):
        orchestrator.abort_task("tester")

    assert orchestrator.registry.get("tester").state is AgentState.WORKING


def test_resume_requires_blocked_agent(orchestrator: TaskOrchestrator) -> None:
    orchestrator.assign_task("tester", "Run the suite")

    with pytest.raises(InvalidTransition):
        orchestrator.resume_task("tester")


def test_block_without_task(orchestrator: TaskOrchestrator) -> None:
    with pytest.raises(NoActiveTask):
        orchestrator.block_task("reviewer", "nothing assigned")


def test_unknown_ids(orchestrator: TaskOrchestrator) -> None:
    with pytest.raises(UnknownAgent):
        orchestrator.assign_task("janitor", "Sweep")
    with pytest.raises(UnknownTask):
        orchestrator.get_task("task-missing")


def test_empty_description_is_rejected(orchestrator: TaskOrchestrator) -> None:
    with pytest.raises(ValueError):
        orchestrator.assign_task("planner", "   ")
    assert orchestrator.list_tasks() == []


def test_returned_tasks_are_copies(orchestrator: TaskOrchestrator) -> None:
    task = orchestrator.assign_task("planner", "Plan")
    task.status = TaskStatus.ABORTED
    task.commits.append("deadbeef")

    stored = orchestrator.get_task(task.id)
    assert stored.status is TaskStatus.IN_PROGRESS
    assert stored.commits == []


def test_collaboration_history_records_each_step(orchestrator: TaskOrchestrator) -> None:
    task = orchestrator.assign_task("planner", "Design a login system")
    successor = orchestrator.complete_task("planner", "Use JWT", next_agent_id="coder")

    events = orchestrator.get_collaboration_history()

    assert [(event.event_type, event.from_agent_id, event.to_agent_id) for event in events] == [
        ("assign", "system", "planner"),
        ("complete", "planner", "coder"),
        ("handoff", "planner", "coder"),
    ]
    assert events[0].task_id == task.id
    assert events[2].task_id == successor.id
    assert [event.event_type for event in orchestrator.get_collaboration_history(limit=1)] == ["handoff"]
    assert orchestrator.get_system_state().collaboration_count == 3


def test_collaboration_log_is_trimmed(orchestrator: TaskOrchestrator) -> None:
    rounds = COLLABORATION_LOG_CAP // 2 + 1
    for index in range(rounds):
        orchestrator.assign_task("coder", f"Chore {index}")
        orchestrator.complete_task("coder", "done")

    history = orchestrator.get_collaboration_history()

    assert COLLABORATION_LOG_KEEP <= len(history) <= COLLABORATION_LOG_CAP
    assert history[-1].event_type == "complete"


def test_collaboration_is_mirrored_to_event_store(clock, chroma_store: ChromaStore) -> None:
    orchestrator = TaskOrchestrator(
        AgentRegistry(DEFAULT_ROLE_PROFILES), events=chroma_store, session_id="session_mirror", clock=clock
    )
    orchestrator.assign_task("planner", "Plan")
    orchestrator.complete_task("planner", "Plan ready", next_agent_id="coder")

    stored = chroma_store.list_collaboration("session_mirror")

    assert [event.event_type for event in stored] == ["assign", "complete", "handoff"]
    assert stored[-1].content == "Plan ready"


def test_collaboration_history_is_restored_for_a_known_session(clock, chroma_store: ChromaStore) -> None:
    first = TaskOrchestrator(
        AgentRegistry(DEFAULT_ROLE_PROFILES), events=chroma_store, session_id="session_resume", clock=clock
    )
    first.assign_task("planner", "Plan")
    first.complete_task("planner", "Plan ready", next_agent_id="coder")

    restarted = TaskOrchestrator(
        AgentRegistry(DEFAULT_ROLE_PROFILES), events=chroma_store, session_id="session_resume", clock=clock
    )
    other = TaskOrchestrator(
        AgentRegistry(DEFAULT_ROLE_PROFILES), events=chroma_store, session_id="session_other", clock=clock
    )

    history = restarted.get_collaboration_history()
    assert [event.event_type for event in history] == ["assign", "complete", "handoff"]
    assert restarted.get_system_state().collaboration_count == 3
    assert other.get_collaboration_history() == []

    restarted.assign_task("planner", "Plan again")
    assert restarted.get_collaboration_history()[-1].event_type == "assign"
    assert len(chroma_store.list_collaboration("session_resume")) == 4


def test_session_id_is_generated() -> None:
    orchestrator = TaskOrchestrator(AgentRegistry(DEFAULT_ROLE_PROFILES))

    assert orchestrator.session_id.startswith("session_")
    assert orchestrator.get_system_state().session_id == orchestrator.session_id


def test_close_session_retires_idle_agents(orchestrator: TaskOrchestrator) -> None:
    orchestrator.assign_task("coder", "Still working")

    closed = orchestrator.close_session()

    assert closed == ["planner", "reviewer", "tester", "curator"]
    assert orchestrator.registry.get("coder").state is AgentState.WORKING
    with pytest.raises(AgentBusy):
        orchestrator.assign_task("planner", "Too late")


def test_build_prompt_includes_inherited_context(orchestrator: TaskOrchestrator) -> None:
    orchestrator.assign_task("planner", "Design a login system")
    orchestrator.complete_task(
        "planner", "Use JWT tokens", next_agent_id="coder", next_description="Implement JWT login"
    )

    prompt = orchestrator.build_prompt("coder")

    assert prompt.startswith("You are the coder.")
    assert "Task:\nImplement JWT login" in prompt
    assert "Context from planner:\nUse JWT tokens" in prompt
    assert "- Implement the plan" in prompt
    assert "Constraints:\n- Work only inside the assigned worktree" in prompt


# -- git-backed workflow ----------------------------------------------------


@pytest.fixture
def workspace_orchestrator(tmp_path: Path, git_repo: Path, runner: GitRunner, clock) -> TaskOrchestrator:
    return TaskOrchestrator(
        AgentRegistry(DEFAULT_ROLE_PROFILES),
        worktrees=WorktreeStore(git_repo, tmp_path / "worktrees", runner=runner),
        committer=ProvenanceCommitter(runner),
        code_index=CodeIndex(git_repo, runner=runner, embedding_provider=HashingEmbeddingProvider()),
        session_id="session_git",
        clock=clock,
        id_factory=sequential_ids(),
    )


def test_chain_shares_one_workspace(workspace_orchestrator: TaskOrchestrator) -> None:
    task = workspace_orchestrator.assign_task("planner", "Plan feature")
    planner_tree = workspace_orchestrator.prepare_workspace("planner")
    workspace_orchestrator.complete_task("planner", "Plan ready", next_agent_id="coder")

    coder_tree = workspace_orchestrator.prepare_workspace("coder")

    assert coder_tree.path == planner_tree.path
    assert coder_tree.task_id == task.chain_id
    assert workspace_orchestrator.get_task(task.id).worktree_path == str(planner_tree.path)


def test_record_output_commits_with_provenance(workspace_orchestrator: TaskOrchestrator, run_git) -> None:
    workspace_orchestrator.assign_task("coder", "Add feature.ts")
    worktree = workspace_orchestrator.prepare_workspace("coder")
    (worktree.path / "feature.ts").write_text("export function feature() { return 42; }\n", encoding="utf-8")

    commit_hash = workspace_orchestrator.record_output(
        "coder",
        "Add feature",
        prompt="Add feature.ts",
        expected_outcome="feature() returns 42",
        context_summary="No prior context",
    )

    committer = ProvenanceCommitter(GitRunner())
    metadata = committer.extract_commit_metadata(worktree.path, commit_hash)
    assert metadata.agent_id == "coder"
    assert metadata.session_id == "session_git"
    assert metadata.expected_outcome == "feature() returns 42"
    assert workspace_orchestrator.get_task(workspace_orchestrator.registry.get("coder").current_task).commits == [
        commit_hash
    ]


def test_record_output_without_changes_keeps_agent_working(workspace_orchestrator: TaskOrchestrator) -> None:
    workspace_orchestrator.assign_task("coder", "No-op")
    workspace_orchestrator.prepare_workspace("coder")

    with pytest.raises(NothingToCommit):
        workspace_orchestrator.record_output(
            "coder", "Nothing", prompt="p", expected_outcome="o", context_summary="c"
        )

    assert workspace_orchestrator.registry.get("coder").state is AgentState.WORKING


def test_git_failure_blocks_the_agent(workspace_orchestrator: TaskOrchestrator) -> None:
    task = workspace_orchestrator.assign_task("coder", "Break git")
    worktree = workspace_orchestrator.prepare_workspace("coder")
    (worktree.path / "change.txt").write_text("change", encoding="utf-8")
    (worktree.path / ".git").write_text("gitdir: /nonexistent/path\n", encoding="utf-8")

    with pytest.raises(GitOperationError):
        workspace_orchestrator.record_output(
            "coder", "Will fail", prompt="p", expected_outcome="o", context_summary="c"
        )

    assert workspace_orchestrator.registry.get("coder").state is AgentState.BLOCKED
    blocked = workspace_orchestrator.get_task(task.id)
    assert blocked.status is TaskStatus.BLOCKED
    assert blocked.blocked_reason.startswith("Git failure")


def test_retrieve_context_combines_sources(workspace_orchestrator: TaskOrchestrator, git_repo: Path) -> None:
    (git_repo / "auth.py").write_text("def issue_token(user):\n    return user\n", encoding="utf-8")
    workspace_orchestrator.assign_task("coder", "Token work")
    worktree = workspace_orchestrator.prepare_workspace("coder")
    (worktree.path / "notes.md").write_text("token notes\n", encoding="utf-8")
    workspace_orchestrator.record_output(
        "coder",
        "Document tokens",
        prompt="Write token notes",
        expected_outcome="notes.md exists",
        context_summary="token handling",
    )
    workspace_orchestrator.code_index.index_project()

    bundle = workspace_orchestrator.retrieve_context("token", agent_id="coder")

    assert any(entry.name == "issue_token" for entry in bundle.keyword_hits)
    assert bundle.semantic_available
    assert bundle.semantic_hits
    assert [commit.message for commit in bundle.commits] == ["Document tokens"]
    assert bundle.to_dict()["commits"][0]["agent_id"] == "coder"


def test_workspace_status_needs_a_prepared_workspace(workspace_orchestrator: TaskOrchestrator) -> None:
    workspace_orchestrator.assign_task("coder", "Status check")

    with pytest.raises(ValueError):
        workspace_orchestrator.workspace_status("coder")

    worktree = workspace_orchestrator.prepare_workspace("coder")
    status = workspace_orchestrator.workspace_status("coder")

    assert status.path == str(worktree.path)
    assert status.branch == worktree.branch_name
    assert status.clean
    assert status.head_metadata is None


def test_retrieve_context_before_indexing_reports_semantic_unavailable(
    workspace_orchestrator: TaskOrchestrator,
) -> None:
    bundle = workspace_orchestrator.retrieve_context("token")

    assert bundle.semantic_available is False
    assert bundle.semantic_hits == []
    assert bundle.keyword_hits == []


def test_workspace_operations_need_a_store(orchestrator: TaskOrchestrator) -> None:
    orchestrator.assign_task("coder", "Anything")

    with pytest.raises(RuntimeError):
        orchestrator.prepare_workspace("coder")


def test_concurrent_assignments_to_one_agent(orchestrator: TaskOrchestrator) -> None:
    outcomes: list[str] = []
    barrier = threading.Barrier(8)

    def attempt(index: int) -> None:
        barrier.wait()
        try:
            orchestrator.assign_task("coder", f"Race {index}")
            outcomes.append("assigned")
        except AgentBusy:
            outcomes.append("busy")

    threads = [threading.Thread(target=attempt, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["assigned"] + ["busy"] * 7
    assert len(orchestrator.list_tasks()) == 1


def test_task_transition_table_is_closed() -> None:
    for current, allowed in TASK_TRANSITIONS.items():
        for target in TaskStatus:
            if target in allowed:
                check_task_transition("t", current, target)
            else:
                with pytest.raises(InvalidTransition):
                    check_task_transition("t", current, target)
