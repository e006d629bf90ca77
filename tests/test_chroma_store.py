from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from nightshift_mcp.git import Worktree
from nightshift_mcp.storage import ChromaStore, ChromaUnavailableError, CollaborationEvent, WorktreeRecord


def make_store(tmp_path: Path, client) -> ChromaStore:
    return ChromaStore(
        tmp_path,
        client_factory=lambda: client,
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )


def test_record_and_fetch_events(tmp_path: Path, stub_client) -> None:
    store = make_store(tmp_path, stub_client)

    event = store.record_event(
        stream="task::task-1",
        event_type="log",
        body={"message": "started"},
        metadata={"level": "INFO"},
    )

    assert event.stream == "task::task-1"
    assert event.metadata["sequence"] == 1

    events = store.fetch_stream("task::task-1")
    assert len(events) == 1
    assert events[0].metadata["level"] == "INFO"
    assert events[0].document == '{"message": "started"}'


def test_sequence_increments_per_stream(tmp_path: Path, stub_client) -> None:
    store = make_store(tmp_path, stub_client)

    store.record_event(stream="a", event_type="x", body="A1")
    store.record_event(stream="b", event_type="x", body="B1")
    store.record_event(stream="a", event_type="y", body="A2")

    assert [event.metadata["sequence"] for event in store.fetch_stream("a")] == [1, 2]
    assert [event.document for event in store.fetch_stream("a")] == ["A1", "A2"]


def test_metadata_is_flattened_to_scalars(tmp_path: Path, stub_client) -> None:
    store = make_store(tmp_path, stub_client)

    event = store.record_event(
        stream="s", event_type="note", body="x", metadata={"tags": ["auth"], "missing": None, "count": 2}
    )

    assert event.metadata["tags"] == '["auth"]'
    assert "missing" not in event.metadata
    assert event.metadata["count"] == 2


def test_search_filters(tmp_path: Path, stub_client) -> None:
    store = make_store(tmp_path, stub_client)

    store.record_event(stream="s", event_type="note", body="Investigate auth", metadata={"tags": ["auth"]})
    store.record_event(stream="s", event_type="note", body="Fix logging", metadata={})
    store.record_event(stream="t", event_type="other", body="auth elsewhere")

    assert len(store.search_events("auth")) == 2
    results = store.search_events("auth", filters={"stream": "s", "event_type": "note"})
    assert [event.document for event in results] == ["Investigate auth"]


def test_worktree_recording(tmp_path: Path, stub_client) -> None:
    store = make_store(tmp_path, stub_client)
    worktree = Worktree(
        task_id="task1",
        path=Path("/tmp/work"),
        branch_name="ns/task/task1",
        base_ref="main",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )

    record = store.record_worktree(worktree, status="active")

    assert isinstance(record, WorktreeRecord)
    worktrees = store.list_worktrees("task1")
    assert worktrees[0].path == "/tmp/work"
    assert worktrees[0].branch == "ns/task/task1"
    assert worktrees[0].metadata["base_ref"] == "main"
    assert store.list_worktrees("other") == []


def test_collaboration_round_trip(tmp_path: Path, stub_client) -> None:
    store = make_store(tmp_path, stub_client)
    stamp = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
    for event_type in ("assign", "complete", "handoff"):
        store.record_collaboration(
            "session_a",
            CollaborationEvent(
                from_agent_id="planner",
                to_agent_id="coder",
                event_type=event_type,
                task_id="task-1",
                content=f"{event_type} content",
                timestamp=stamp,
            ),
        )

    events = store.list_collaboration("session_a")

    assert [event.event_type for event in events] == ["assign", "complete", "handoff"]
    assert events[0].timestamp == stamp
    assert [event.event_type for event in store.list_collaboration("session_a", limit=1)] == ["handoff"]
    assert store.list_collaboration("session_b") == []


def test_unavailable_client_surfaces_on_ping(tmp_path: Path) -> None:
    def failing_factory():
        raise ChromaUnavailableError("chromadb package is not installed")

    store = ChromaStore(tmp_path, client_factory=failing_factory)

    with pytest.raises(ChromaUnavailableError):
        store.ping()
