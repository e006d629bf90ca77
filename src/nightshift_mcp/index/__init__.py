"""Code index: keyword and semantic lookup over a worktree."""

from .code_index import CodeIndex
from .embeddings import (
    ChromaEmbeddingProvider,
    EmbeddingProvider,
    EmbeddingUnavailable,
    HashingEmbeddingProvider,
    IndexRebuildRequired,
    build_provider,
    cosine_similarity,
)
from .models import IndexEntry, IndexSnapshot, IndexStats, SemanticHit

__all__ = [
    "ChromaEmbeddingProvider",
    "CodeIndex",
    "EmbeddingProvider",
    "EmbeddingUnavailable",
    "HashingEmbeddingProvider",
    "IndexEntry",
    "IndexRebuildRequired",
    "IndexSnapshot",
    "IndexStats",
    "SemanticHit",
    "build_provider",
    "cosine_similarity",
]
