"""Storage abstractions for Nightshift MCP."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .models import CollaborationEvent, WorktreeRecord

__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "CollaborationEvent",
    "WorktreeRecord",
]
