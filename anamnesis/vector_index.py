"""In-process vector index over stored memory records.

Embeddings are cached in the store keyed by (content hash, provider), so
a record is only re-embedded when its content changes. The in-memory
index is rebuilt from the store on first use and after bulk
consolidation via :meth:`VectorIndex.rebuild`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from anamnesis.errors import CollaboratorUnavailable
from anamnesis.storage.embeddings import (
    EmbeddingProvider,
    cosine_similarity,
    pack_embedding,
    unpack_embedding,
)
from anamnesis.storage.sqlite import SQLiteStorage
from anamnesis.types import MemoryRecord
from anamnesis.utils import compute_content_hash

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    vector: List[float]
    content_hash: str
    created_at: datetime
    last_accessed: datetime


class VectorIndex:
    """Cosine nearest-neighbour search over record embeddings."""

    def __init__(self, storage: SQLiteStorage, embedder: EmbeddingProvider):
        self.storage = storage
        self.embedder = embedder
        self._entries: Dict[str, _Entry] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.rebuild()

    # === Embedding ===

    def embed_text(self, text: str) -> List[float]:
        """Embed through the content-hash cache.

        Raises:
            CollaboratorUnavailable: the provider failed after its retry.
        """
        content_hash = compute_content_hash(text)
        provider = self.embedder.provider_id
        cached = self.storage.get_cached_embedding(content_hash, provider)
        if cached is not None:
            return cached
        try:
            vector = self.embedder.embed(text)
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            raise CollaboratorUnavailable(provider, str(e)) from e
        self.storage.put_cached_embedding(content_hash, provider, vector)
        # Hand back the stored float32 form so hits and misses agree
        return unpack_embedding(pack_embedding(vector))

    # === Maintenance ===

    def add(self, record: MemoryRecord, persist: bool = True) -> List[float]:
        """Index (or re-index) a record; skips the provider if content is unchanged."""
        self._ensure_loaded()
        content_hash = compute_content_hash(record.content)
        entry = self._entries.get(record.id)
        if entry is not None and entry.content_hash == content_hash:
            entry.last_accessed = record.last_accessed
            return entry.vector
        vector = self.embed_text(record.content)
        self._entries[record.id] = _Entry(
            vector=vector,
            content_hash=content_hash,
            created_at=record.created_at,
            last_accessed=record.last_accessed,
        )
        record.embedding = vector
        if persist:
            self.storage.set_embedding(record.id, vector)
        return vector

    def remove(self, memory_id: str) -> None:
        self._entries.pop(memory_id, None)

    def rebuild(self) -> int:
        """Reload every stored record. Returns the number of entries indexed.

        Records whose embedding could not be produced are left out and
        logged; they are retried on the next rebuild.
        """
        self._entries = {}
        self._loaded = True
        skipped = 0
        for record in self.storage.query():
            content_hash = compute_content_hash(record.content)
            vector = record.embedding
            if not vector or len(vector) != self.embedder.dimension:
                try:
                    vector = self.embed_text(record.content)
                except CollaboratorUnavailable as e:
                    skipped += 1
                    logger.debug(f"Not indexing {record.id}: {e}")
                    continue
                self.storage.set_embedding(record.id, vector)
            self._entries[record.id] = _Entry(
                vector=vector,
                content_hash=content_hash,
                created_at=record.created_at,
                last_accessed=record.last_accessed,
            )
        if skipped:
            logger.warning(f"Vector index rebuilt with {skipped} records unembedded")
        logger.debug(f"Vector index rebuilt: {len(self._entries)} entries")
        return len(self._entries)

    # === Search ===

    def search(
        self,
        vector: List[float],
        threshold: float = 0.5,
        top_k: int = 20,
        exclude: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        """(id, similarity) pairs at or above ``threshold``, best first.

        Equal similarities are ordered by most recent access, then creation.
        """
        self._ensure_loaded()
        scored = []
        for memory_id, entry in self._entries.items():
            if memory_id == exclude:
                continue
            similarity = cosine_similarity(vector, entry.vector)
            if similarity >= threshold:
                scored.append((memory_id, similarity, entry.last_accessed, entry.created_at))
        scored.sort(key=lambda item: (item[1], item[2], item[3]), reverse=True)
        return [(memory_id, similarity) for memory_id, similarity, _, _ in scored[:top_k]]

    def search_text(self, text: str, threshold: float = 0.5, top_k: int = 20) -> List[Tuple[str, float]]:
        return self.search(self.embed_text(text), threshold=threshold, top_k=top_k)

    def nearest_neighbors(self, memory_id: str, k: int = 5) -> List[Tuple[str, float]]:
        self._ensure_loaded()
        entry = self._entries.get(memory_id)
        if entry is None:
            return []
        return self.search(entry.vector, threshold=-1.0, top_k=k, exclude=memory_id)

    def max_similarity(self, vector: List[float], exclude: Optional[str] = None) -> List[float]:
        """Similarity to the single closest indexed record, as a 0-or-1 item list."""
        best = self.search(vector, threshold=-1.0, top_k=1, exclude=exclude)
        return [best[0][1]] if best else []

    def cluster(self, threshold: float = 0.8) -> List[List[str]]:
        """Greedy single-pass clusters of ids whose similarity to the seed exceeds ``threshold``."""
        self._ensure_loaded()
        remaining = list(self._entries.keys())
        clusters: List[List[str]] = []
        seen = set()
        for seed in remaining:
            if seed in seen:
                continue
            seen.add(seed)
            group = [seed]
            seed_vec = self._entries[seed].vector
            for other in remaining:
                if other in seen:
                    continue
                if cosine_similarity(seed_vec, self._entries[other].vector) > threshold:
                    group.append(other)
                    seen.add(other)
            if len(group) > 1:
                clusters.append(group)
        return clusters

    def stats(self) -> Dict[str, object]:
        self._ensure_loaded()
        return {
            "indexed": len(self._entries),
            "dimension": self.embedder.dimension,
            "provider": self.embedder.provider_id,
            "cached_embeddings": self.storage.embedding_cache_size(),
        }

    def __contains__(self, memory_id: str) -> bool:
        self._ensure_loaded()
        return memory_id in self._entries

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._entries)
