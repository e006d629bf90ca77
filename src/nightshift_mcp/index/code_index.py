"""Keyword and semantic index over a worktree's source files."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from pydantic import ValidationError

from ..config import DEFAULT_INDEX_EXTENSIONS
from ..git.runner import GitRunner
from .embeddings import EmbeddingProvider, EmbeddingUnavailable, IndexRebuildRequired, cosine_similarity
from .models import FileRecord, IndexEntry, IndexSnapshot, IndexStats, SemanticHit
from .parser import extract_elements, extract_keywords

logger = logging.getLogger(__name__)


class CodeIndex:
    """Searchable snapshot of the symbols under ``root``.

    Rebuilds produce a complete new snapshot, write it to disk and only then
    replace the in-memory reference, so searches always see either the old or
    the new snapshot in full. Rebuilds are serialized; searches never block.
    """

    def __init__(
        self,
        root: Path,
        *,
        runner: GitRunner,
        index_path: Path | None = None,
        extensions: Iterable[str] = DEFAULT_INDEX_EXTENSIONS,
        embedding_provider: EmbeddingProvider | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._runner = runner
        self._index_path = Path(index_path).expanduser().resolve() if index_path else None
        self._extensions = frozenset(ext.lower() for ext in extensions)
        self._provider = embedding_provider
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._rebuild_lock = threading.Lock()
        self._snapshot = self._load_snapshot()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def embedding_provider(self) -> EmbeddingProvider | None:
        return self._provider

    def index_project(self) -> IndexStats:
        """Rebuild the index from the files currently under the root."""

        with self._rebuild_lock:
            previous = self._snapshot
            provider_name = self._provider.name if self._provider else None
            reusable = previous.files if previous.provider == provider_name else {}

            files: dict[str, FileRecord] = {}
            reused = 0
            for relative in self._source_files():
                try:
                    raw = (self._root / relative).read_bytes()
                except FileNotFoundError:
                    continue
                content_hash = hashlib.sha256(raw).hexdigest()
                cached = reusable.get(relative)
                if cached is not None and cached.content_hash == content_hash:
                    files[relative] = cached
                    reused += 1
                    continue
                content = raw.decode("utf-8", errors="replace")
                files[relative] = FileRecord(content_hash=content_hash, entries=self._index_file(relative, content))

            snapshot = IndexSnapshot(last_indexed_at=self._clock(), provider=provider_name, files=files)
            self._persist(snapshot)
            self._snapshot = snapshot

        stats = self.get_index_stats()
        logger.info(
            "Indexed project",
            extra={
                "root": str(self._root),
                "file_count": stats.file_count,
                "entry_count": stats.entry_count,
                "reused_files": reused,
                "pruned_files": len(set(previous.files) - set(files)),
            },
        )
        return stats

    def search_by_keyword(self, term: str, *, limit: int | None = None) -> list[IndexEntry]:
        """Entries with a keyword equal to or containing ``term``, case-insensitively.

        Exact keyword matches rank first, then entries with more matching
        keywords; file path and line break ties.
        """

        needle = term.strip().lower()
        if not needle:
            return []

        scored: list[tuple[tuple[int, int, str, int, str], IndexEntry]] = []
        for entry in self._snapshot.entries():
            matches = sum(1 for keyword in entry.keywords if needle in keyword)
            if not matches:
                continue
            exact = needle in entry.keywords
            scored.append(((0 if exact else 1, -matches, entry.file_path, entry.line_start, entry.name), entry))
        scored.sort(key=lambda item: item[0])
        results = [entry for _, entry in scored]
        return results[:limit] if limit else results

    def search_by_embedding(self, query_text: str, *, limit: int | None = None) -> list[SemanticHit]:
        """Entries ranked by cosine similarity to ``query_text``."""

        if self._provider is None:
            raise EmbeddingUnavailable("No embedding provider configured; use keyword search instead")

        snapshot = self._snapshot
        if snapshot.last_indexed_at is None or snapshot.provider != self._provider.name:
            raise IndexRebuildRequired(self._provider.name, snapshot.provider)

        query_vector = self._provider.embed(query_text)
        hits = [
            SemanticHit(entry=entry, similarity=cosine_similarity(query_vector, entry.embedding))
            for entry in snapshot.entries()
            if entry.embedding is not None
        ]
        hits.sort(key=lambda hit: (-hit.similarity, hit.entry.file_path, hit.entry.line_start, hit.entry.name))
        return hits[:limit] if limit else hits

    def get_index_stats(self) -> IndexStats:
        snapshot = self._snapshot
        return IndexStats(
            file_count=len(snapshot.files),
            entry_count=sum(len(record.entries) for record in snapshot.files.values()),
            last_indexed_at=snapshot.last_indexed_at,
        )

    def _index_file(self, relative: str, content: str) -> list[IndexEntry]:
        entries: list[IndexEntry] = []
        for element in extract_elements(relative, content):
            embedding = tuple(self._provider.embed(element.text)) if self._provider else None
            entries.append(
                IndexEntry(
                    file_path=relative,
                    type=element.type,
                    name=element.name,
                    line_start=element.line_start,
                    line_end=element.line_end,
                    keywords=extract_keywords(element.text, extra=(element.name,)),
                    embedding=embedding,
                )
            )
        return entries

    def _source_files(self) -> list[str]:
        output = self._runner.check(
            "ls-files", "-z", "--cached", "--others", "--exclude-standard", cwd=self._root
        ).stdout
        excluded = self._excluded_path()
        files: set[str] = set()
        for name in output.split("\0"):
            if not name or name == excluded:
                continue
            if Path(name).suffix.lower() in self._extensions:
                files.add(name)
        return sorted(files)

    def _excluded_path(self) -> str | None:
        if self._index_path is None:
            return None
        try:
            return self._index_path.relative_to(self._root).as_posix()
        except ValueError:
            return None

    def _load_snapshot(self) -> IndexSnapshot:
        if self._index_path is None or not self._index_path.exists():
            return IndexSnapshot()
        try:
            return IndexSnapshot.model_validate_json(self._index_path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "Discarding unreadable index snapshot",
                extra={"index_path": str(self._index_path), "error": str(exc)},
            )
            return IndexSnapshot()

    def _persist(self, snapshot: IndexSnapshot) -> None:
        if self._index_path is None:
            return
        self._index_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".code-index-", suffix=".json", dir=str(self._index_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(snapshot.model_dump_json())
            os.replace(tmp_name, self._index_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


__all__ = ["CodeIndex"]
