"""Similarity-searchable store of textual memories with temporal decay."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .schemas import VectorDocument, VectorSearchResult, now_ms
from .storage import CollectionStore, StorageQuotaError

logger = logging.getLogger(__name__)

VECTOR_COLLECTION = "vectors"
MIN_CONTENT_LENGTH = 5
DEFAULT_MAX_DOCUMENTS = 500
SIMILARITY_WEIGHT = 0.7
RECENCY_WEIGHT = 0.3
DECAY_RATE_PER_HOUR = 0.1
MIN_DECAY = 0.1
MS_PER_HOUR = 3600 * 1000.0


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    if not vec1 or not vec2:
        return 0.0
    dot = sum(a * b for a, b in zip(vec1, vec2))
    norm1 = sum(a * a for a in vec1) ** 0.5
    norm2 = sum(b * b for b in vec2) ** 0.5
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return dot / (norm1 * norm2)


def temporal_decay(age_hours: float) -> float:
    """Recency factor in ``[MIN_DECAY, 1.0]``; future timestamps count as fresh."""

    return max(MIN_DECAY, 1.0 - max(0.0, age_hours) * DECAY_RATE_PER_HOUR)


class VectorStore:
    """Durable cache of text snippets ranked by similarity and recency.

    ``embed`` converts text to a vector. It may return an empty sequence to
    signal failure or raise on backend errors; both cases are treated as
    "no embedding" and never propagate.

    A write rejected by the storage quota evicts the oldest documents and is
    retried once. Other persistence errors are logged and the write dropped.
    """

    def __init__(
        self,
        storage: CollectionStore,
        embed: Callable[[str], Sequence[float]],
        *,
        max_documents: int = DEFAULT_MAX_DOCUMENTS,
        clock: Callable[[], float] = now_ms,
        collection: str = VECTOR_COLLECTION,
    ) -> None:
        if max_documents < 1:
            raise ValueError("max_documents must be positive")
        self.storage = storage
        self.embed = embed
        self.max_documents = max_documents
        self.clock = clock
        self.collection = collection
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return self.storage.count(self.collection)

    def _safe_embed(self, text: str) -> List[float]:
        try:
            vector = self.embed(text)
        except Exception as exc:
            logger.warning("Embedding service unavailable: %s", exc)
            return []
        return [float(x) for x in vector or []]

    def add(
        self,
        content: str,
        metadata: Optional[Mapping[str, Any]] = None,
        sentiment: Optional[str] = None,
    ) -> Optional[str]:
        """Embed and store ``content``; returns the new id or ``None`` if skipped."""

        if not content or len(content.strip()) < MIN_CONTENT_LENGTH:
            return None

        embedding = self._safe_embed(content)
        if not embedding:
            logger.debug("Dropping write with empty embedding: %.40s", content)
            return None

        document = VectorDocument(
            id=str(uuid.uuid4()),
            content=content,
            embedding=embedding,
            metadata=dict(metadata or {}),
            timestamp=self.clock(),
            sentiment=sentiment,
        )
        with self._lock:
            try:
                self._persist(document)
            except StorageQuotaError as exc:
                logger.warning("Vector storage quota exceeded (%s); evicting oldest documents", exc)
                try:
                    self._evict_bytes(exc.size - exc.quota)
                    self._persist(document)
                except (StorageQuotaError, sqlite3.Error):
                    logger.exception("Failed to store vector document after eviction")
                    return None
            except sqlite3.Error:
                logger.exception("Failed to store vector document")
                return None
        return document.id

    def _persist(self, document: VectorDocument) -> None:
        self.storage.put(self.collection, document.id, document.to_payload())
        self._evict_overflow()

    def _evict_bytes(self, needed: int) -> None:
        freed = 0
        doomed: List[str] = []
        for document in sorted(self.get_all_documents(), key=lambda doc: doc.timestamp):
            if freed >= needed:
                break
            doomed.append(document.id)
            freed += len(json.dumps(document.to_payload(), ensure_ascii=False))
        self.storage.delete_many(self.collection, doomed)
        logger.info("Evicted %s vector documents to free %s bytes", len(doomed), freed)

    def _evict_overflow(self) -> None:
        overflow = self.storage.count(self.collection) - self.max_documents
        if overflow <= 0:
            return
        documents = self.get_all_documents()
        # sorted() is stable, so equal timestamps keep insertion order
        oldest = sorted(documents, key=lambda doc: doc.timestamp)[:overflow]
        self.storage.delete_many(self.collection, [doc.id for doc in oldest])
        logger.info("Evicted %s vector documents over capacity %s", len(oldest), self.max_documents)

    def search(self, query: str, top_k: int = 5) -> List[VectorSearchResult]:
        query_embedding = self._safe_embed(query)
        if not query_embedding:
            return []

        now = self.clock()
        scored: List[VectorSearchResult] = []
        for document in self.get_all_documents():
            similarity = cosine_similarity(query_embedding, document.embedding)
            decay = temporal_decay((now - document.timestamp) / MS_PER_HOUR)
            score = SIMILARITY_WEIGHT * similarity + RECENCY_WEIGHT * decay
            scored.append(
                VectorSearchResult(
                    document=document,
                    score=score,
                    similarity=similarity,
                    temporal_weight=decay,
                )
            )
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[: max(0, top_k)]

    def get_all_documents(self) -> List[VectorDocument]:
        return [VectorDocument.from_payload(row) for row in self.storage.get_all(self.collection)]

    def clear(self) -> None:
        with self._lock:
            try:
                self.storage.clear(self.collection)
            except sqlite3.Error:
                logger.exception("Failed to clear vector store")


__all__ = ["VectorStore", "cosine_similarity", "temporal_decay"]
