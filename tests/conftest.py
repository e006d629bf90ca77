from __future__ import annotations

import shutil
import subprocess
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from nightshift_mcp.git import GitRunner
from nightshift_mcp.storage import ChromaStore


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


@pytest.fixture
def runner() -> GitRunner:
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    return GitRunner()


@pytest.fixture
def git_repo(tmp_path: Path, runner: GitRunner) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.name", "Nightshift Tests")
    git(repo, "config", "user.email", "tests@nightshift.invalid")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# Sample project\n", encoding="utf-8")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "Initial commit")
    return repo


@pytest.fixture
def run_git():
    """Plain ``git`` invocation for arranging repository state in tests."""

    return git


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if ids is not None:
            filtered = [record for record in filtered if record.id in set(ids)]
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    """Clock that advances one second per call so orderings are deterministic."""

    def __init__(self, start: str = "2025-01-01T00:00:00+00:00") -> None:
        self.current = datetime.fromisoformat(start).astimezone(timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient()


@pytest.fixture
def chroma_store(tmp_path: Path, stub_client: StubClient) -> ChromaStore:
    return ChromaStore(tmp_path / "chroma", client_factory=lambda: stub_client, clock=TickingClock())


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()
