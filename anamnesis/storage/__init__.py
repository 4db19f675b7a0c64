"""anamnesis storage backends.

Local-first storage using SQLite, behind the ``MemoryStore`` and
``GraphStore`` interfaces.
"""

from .base import ConversationStore, GraphStore, MemoryStore, UserStore
from .embeddings import (
    HASH_EMBEDDING_DIM,
    EmbeddingProvider,
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    cosine_similarity,
    create_embedder,
)
from .sqlite import SQLiteStorage

__all__ = [
    "ConversationStore",
    "EmbeddingProvider",
    "GraphStore",
    "HASH_EMBEDDING_DIM",
    "HashEmbedder",
    "MemoryStore",
    "OllamaEmbedder",
    "OpenAIEmbedder",
    "SQLiteStorage",
    "UserStore",
    "cosine_similarity",
    "create_embedder",
]
