"""
In-memory embedding index over activity records.

Append-only: entries are never updated or removed during a process
lifetime, and the index is rebuilt by replaying persisted records at
startup. Queries are a brute-force cosine scan over every entry, which is
fine at single-user scale.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from .errors import EmbeddingFailure
from .providers.base import EmbeddingProvider
from .types import SearchHit

logger = logging.getLogger(__name__)

Predicate = Callable[[dict[str, Any]], bool]


def _norm(v: Sequence[float]) -> float:
    return math.sqrt(sum(x * x for x in v))


def _as_vector(v) -> tuple[float, ...]:
    """Plain float tuple from a list or array-like; None becomes empty."""
    if v is None:
        return ()
    return tuple(float(x) for x in v)


def _score(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> Optional[float]:
    """Cosine similarity, or None when the pair cannot be compared."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return None
    norm_a = _norm(a)
    norm_b = _norm(b)
    if norm_a == 0 or norm_b == 0:
        return None
    dot = sum(x * y for x, y in zip(a, b))
    return dot / (norm_a * norm_b)


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity of two equal-length vectors: (a·b) / (|a| |b|).

    Returns 0.0 if either vector is absent, empty or zero-norm, or if the
    lengths differ.
    """
    sim = _score(a, b)
    return 0.0 if sim is None else sim


@dataclass(frozen=True)
class IndexEntry:
    """One indexed record. Published only once its embedding is complete."""
    id: str
    embedding: tuple[float, ...]
    document: str
    attributes: dict[str, Any] = field(default_factory=dict)


class EmbeddingIndex:
    """
    Append-only collection of (id, embedding, document, attributes) entries.

    Identifier uniqueness is not enforced: inserting the same id twice keeps
    both entries, and both are eligible for retrieval.
    """

    def __init__(self, embedder: EmbeddingProvider):
        self._embedder = embedder
        self._entries: list[IndexEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def embedder(self) -> EmbeddingProvider:
        return self._embedder

    def entries(self) -> list[IndexEntry]:
        """Snapshot of the current entries, in insertion order."""
        with self._lock:
            return list(self._entries)

    def insert(self, identifier: str, document: str, attributes: dict[str, Any]) -> IndexEntry:
        """
        Embed a document and append it to the index.

        Args:
            identifier: Entry id (the record's canonical timestamp)
            document: Text to embed and return on retrieval
            attributes: Full record, used by query predicates

        Returns:
            The appended entry

        Raises:
            EmbeddingFailure: If the provider fails or returns no usable
                vector. Nothing is appended in that case.
        """
        try:
            embeddings = self._embedder.embed_batch([document])
            vector = _as_vector(embeddings[0]) if len(embeddings) else ()
        except Exception as e:
            raise EmbeddingFailure(f"Embedding failed for {identifier}: {e}") from e

        if len(vector) == 0:
            raise EmbeddingFailure(f"Embedding returned no vector for {identifier}")

        entry = IndexEntry(
            id=identifier,
            embedding=vector,
            document=document,
            attributes=dict(attributes),
        )
        with self._lock:
            self._entries.append(entry)
        logger.debug("Indexed %s (%d entries)", identifier, len(self._entries))
        return entry

    def query(
        self,
        query_text: str,
        result_count: int = 5,
        predicate: Optional[Predicate] = None,
    ) -> list[SearchHit]:
        """
        Rank entries by cosine similarity to the query text.

        Entries are sorted by descending similarity, then filtered by
        ``predicate`` (called with each entry's attributes), then truncated
        to ``result_count``. Entries whose vectors cannot be compared with
        the query vector are left out rather than scored as zero.

        Raises:
            EmbeddingFailure: If the query text cannot be embedded
        """
        if result_count <= 0:
            return []

        try:
            query_vec = _as_vector(self._embedder.embed(query_text))
        except Exception as e:
            raise EmbeddingFailure(f"Query embedding failed: {e}") from e
        if len(query_vec) == 0:
            raise EmbeddingFailure("Query embedding returned no vector")

        scored: list[tuple[float, IndexEntry]] = []
        for entry in self.entries():
            sim = _score(query_vec, entry.embedding)
            if sim is None:
                logger.debug("Skipping %s: embedding not comparable with query", entry.id)
                continue
            scored.append((sim, entry))

        # Stable sort: ties keep insertion order
        scored.sort(key=lambda t: t[0], reverse=True)

        hits: list[SearchHit] = []
        for sim, entry in scored:
            if predicate is not None and not predicate(entry.attributes):
                continue
            hits.append(SearchHit(document=entry.document, attributes=entry.attributes, score=sim))
            if len(hits) >= result_count:
                break
        return hits
