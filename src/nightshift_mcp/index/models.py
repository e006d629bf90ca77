"""Index snapshot models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

EntryType = Literal["module", "function", "class", "interface"]


class IndexEntry(BaseModel):
    """A searchable symbol: a whole module, or a function, class or interface in it."""

    model_config = ConfigDict(frozen=True)

    file_path: str = Field(..., description="Path relative to the indexed root, '/' separated.")
    type: EntryType
    name: str
    line_start: int = Field(..., ge=1)
    line_end: int = Field(..., ge=1)
    keywords: frozenset[str] = Field(default_factory=frozenset)
    embedding: tuple[float, ...] | None = None

    @field_serializer("keywords")
    def _serialize_keywords(self, keywords: frozenset[str]) -> list[str]:
        return sorted(keywords)


class FileRecord(BaseModel):
    content_hash: str
    entries: list[IndexEntry] = Field(default_factory=list)


class IndexSnapshot(BaseModel):
    """Everything the index knows at one point in time; replaced wholesale on rebuild."""

    last_indexed_at: datetime | None = None
    provider: str | None = None
    files: dict[str, FileRecord] = Field(default_factory=dict)

    def entries(self) -> list[IndexEntry]:
        return [entry for path in sorted(self.files) for entry in self.files[path].entries]


@dataclass(slots=True, frozen=True)
class IndexStats:
    file_count: int
    entry_count: int
    last_indexed_at: datetime | None

    def to_dict(self) -> dict[str, object]:
        return {
            "file_count": self.file_count,
            "entry_count": self.entry_count,
            "last_indexed_at": self.last_indexed_at.isoformat() if self.last_indexed_at else None,
        }


@dataclass(slots=True, frozen=True)
class SemanticHit:
    entry: IndexEntry
    similarity: float


__all__ = ["EntryType", "FileRecord", "IndexEntry", "IndexSnapshot", "IndexStats", "SemanticHit"]
