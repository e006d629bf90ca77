"""Chroma-backed event log for orchestration history."""

from __future__ import annotations

import json
import threading
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Protocol

from .models import CollaborationEvent, WorktreeRecord

if TYPE_CHECKING:
    from ..git.worktrees import Worktree


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Nightshift."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Nightshift."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    stream: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _scalar_metadata(values: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata only accepts str, int, float and bool values.
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value, default=str)
    return cleaned


class ChromaStore:
    """Append-only log of worktree and collaboration events kept in ChromaDB.

    Events are grouped into streams (``task::<id>``, ``worktree::<id>``,
    ``session::<id>``) and carry a per-stream sequence number so they can be
    replayed in order.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "nightshift_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install nightshift-mcp with the persistence extra"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    stream=metadata.get("stream", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        stream: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        with self._lock:
            self._counters[stream] += 1
            counter = self._counters[stream]
        event_id = f"{stream}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body, default=str)
        record_metadata: dict[str, Any] = dict(metadata or {})
        record_metadata.update(
            {
                "stream": stream,
                "event_type": event_type,
                "timestamp": timestamp.isoformat(),
                "sequence": counter,
            }
        )
        record_metadata = _scalar_metadata(record_metadata)

        collection.add(documents=[document], metadatas=[record_metadata], ids=[event_id])

        return ChromaEvent(
            id=event_id,
            stream=stream,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_stream(self, stream: str, *, limit: int | None = None) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        result = collection.get(where={"stream": stream}, limit=limit)
        return self._convert_result(result)

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        where = filters
        if filters and len(filters) > 1:
            where = {"$and": [{key: value} for key, value in filters.items()]}
        result = collection.get(where=where)
        events = self._convert_result(result)
        if query:
            needle = query.lower()
            events = [
                event
                for event in events
                if needle in event.document.lower()
                or any(needle in str(value).lower() for value in event.metadata.values())
            ]
        return events[:limit] if limit else events

    def record_worktree(self, worktree: Worktree, *, status: str) -> WorktreeRecord:
        payload = {
            "task_id": worktree.task_id,
            "path": str(worktree.path),
            "branch": worktree.branch_name,
            "base_ref": worktree.base_ref,
            "created_at": worktree.created_at.isoformat(),
            "status": status,
        }
        event = self.record_event(
            stream=f"worktree::{worktree.task_id}",
            event_type="worktree_update",
            body=payload,
            metadata={"task_id": worktree.task_id, "status": status},
        )
        return WorktreeRecord(
            task_id=worktree.task_id,
            path=str(worktree.path),
            branch=worktree.branch_name,
            status=status,
            recorded_at=event.timestamp,
            metadata={"base_ref": worktree.base_ref},
        )

    def list_worktrees(self, task_id: str | None = None) -> list[WorktreeRecord]:
        filters: dict[str, Any] = {"event_type": "worktree_update"}
        if task_id:
            filters["task_id"] = task_id
        records: list[WorktreeRecord] = []
        for event in self.search_events(filters=filters):
            doc = json.loads(event.document)
            records.append(
                WorktreeRecord(
                    task_id=doc["task_id"],
                    path=doc["path"],
                    branch=doc.get("branch", ""),
                    status=doc.get("status", "unknown"),
                    recorded_at=event.timestamp,
                    metadata={k: v for k, v in doc.items() if k not in {"task_id", "path", "branch", "status"}},
                )
            )
        return records

    def record_collaboration(self, session_id: str, event: CollaborationEvent) -> ChromaEvent:
        return self.record_event(
            stream=f"session::{session_id}",
            event_type=f"collaboration_{event.event_type}",
            body=event.to_dict(),
            metadata={
                "session_id": session_id,
                "task_id": event.task_id,
                "from_agent_id": event.from_agent_id,
                "to_agent_id": event.to_agent_id,
            },
        )

    def list_collaboration(self, session_id: str, *, limit: int | None = None) -> list[CollaborationEvent]:
        events: list[CollaborationEvent] = []
        for stored in self.fetch_stream(f"session::{session_id}"):
            doc = json.loads(stored.document)
            events.append(
                CollaborationEvent(
                    from_agent_id=doc["from_agent_id"],
                    to_agent_id=doc["to_agent_id"],
                    event_type=doc["event_type"],
                    task_id=doc["task_id"],
                    content=doc["content"],
                    timestamp=datetime.fromisoformat(doc["timestamp"]),
                )
            )
        return events[-limit:] if limit else events


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError"]
