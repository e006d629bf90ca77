"""Embedding providers for semantic code search."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Any, Callable, Protocol, Sequence, runtime_checkable


class EmbeddingUnavailable(RuntimeError):
    """Raised when semantic search is requested without an embedding provider."""


class IndexRebuildRequired(EmbeddingUnavailable):
    """Raised when the index holds no vectors from the configured provider."""

    def __init__(self, provider: str, index_provider: str | None) -> None:
        self.provider = provider
        self.index_provider = index_provider
        super().__init__(
            f"Code index has no '{provider}' embeddings (index built with: {index_provider or 'none'}); "
            "run index_project"
        )


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Capability injected into the code index to turn text into vectors."""

    name: str

    def embed(self, text: str) -> list[float]:
        ...


_TOKEN = re.compile(r"[A-Za-z0-9_]+")


class HashingEmbeddingProvider:
    """Deterministic bag-of-words embedding using feature hashing.

    Needs no model download, so it is the default for local use; similarity
    reflects shared vocabulary rather than meaning.
    """

    def __init__(self, dimensions: int = 128) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be positive")
        self.dimensions = dimensions
        self.name = f"hashing-{dimensions}"

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest, "big") % self.dimensions] += 1.0
        magnitude = math.sqrt(sum(value * value for value in vector))
        if magnitude == 0:
            return vector
        return [value / magnitude for value in vector]


class ChromaEmbeddingProvider:
    """Adapter over a chromadb embedding function.

    Defaults to chromadb's bundled all-MiniLM-L6-v2 ONNX model, which is
    downloaded on first use.
    """

    def __init__(
        self,
        embedding_function: Callable[[list[str]], Sequence[Sequence[float]]] | None = None,
        *,
        name: str = "chroma-default",
    ) -> None:
        self.name = name
        self._function = embedding_function

    def _ensure_function(self) -> Callable[[list[str]], Sequence[Sequence[float]]]:
        if self._function is None:
            try:
                from chromadb.utils import embedding_functions
            except ImportError as exc:  # pragma: no cover - depends on environment
                raise EmbeddingUnavailable(
                    "chromadb package is not installed; install nightshift-mcp with the persistence extra"
                ) from exc
            self._function = embedding_functions.DefaultEmbeddingFunction()
        return self._function

    def embed(self, text: str) -> list[float]:
        vectors: Any = self._ensure_function()([text])
        return [float(value) for value in vectors[0]]


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 for mismatched or zero vectors."""

    if len(left) != len(right) or not left:
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if left_norm == 0 or right_norm == 0:
        return 0.0
    return dot / (left_norm * right_norm)


def build_provider(kind: str) -> EmbeddingProvider | None:
    """Return the provider named by configuration (``none``, ``hashing`` or ``chroma``)."""

    if kind == "none":
        return None
    if kind == "hashing":
        return HashingEmbeddingProvider()
    if kind == "chroma":
        return ChromaEmbeddingProvider()
    raise ValueError(f"Unknown embedding provider '{kind}'")


__all__ = [
    "ChromaEmbeddingProvider",
    "EmbeddingProvider",
    "EmbeddingUnavailable",
    "HashingEmbeddingProvider",
    "build_provider",
    "cosine_similarity",
]
