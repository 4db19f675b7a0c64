"""Embedding providers.

``HashEmbedder`` is a dependency-free character n-gram feature hasher and
the default. ``OpenAIEmbedder`` and ``OllamaEmbedder`` call remote models;
their clients are created lazily, every call carries a timeout, and a
failed call is retried once with backoff before
:class:`~anamnesis.errors.CollaboratorUnavailable` is raised.
"""

import hashlib
import logging
import math
import struct
import time
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import httpx

from anamnesis.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

HASH_EMBEDDING_DIM = 384

OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

T = TypeVar("T")


def pack_embedding(vector: Sequence[float]) -> bytes:
    """Serialize a vector to little-endian float32 bytes."""
    return struct.pack(f"<{len(vector)}f", *vector)


def unpack_embedding(blob: bytes) -> List[float]:
    count = len(blob) // 4
    return list(struct.unpack(f"<{count}f", blob[: count * 4]))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for mismatched lengths or zero vectors."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def call_with_retry(
    fn: Callable[[], T], collaborator: str, backoff: float = 0.5, retries: int = 1
) -> T:
    """Run ``fn``; on failure retry ``retries`` times with linear backoff.

    Raises:
        CollaboratorUnavailable: once the retries are spent.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            if attempt >= retries:
                logger.warning(f"{collaborator} failed after {attempt + 1} attempts: {e}")
                raise CollaboratorUnavailable(collaborator, str(e)) from e
            attempt += 1
            logger.debug(f"{collaborator} call failed ({e}), retrying in {backoff * attempt}s")
            time.sleep(backoff * attempt)


class EmbeddingProvider:
    """Base class: text in, fixed-length vector out."""

    @property
    def dimension(self) -> int:
        raise NotImplementedError

    @property
    def provider_id(self) -> str:
        return type(self).__name__.lower()

    def embed(self, text: str) -> List[float]:
        raise NotImplementedError

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]


class HashEmbedder(EmbeddingProvider):
    """Local feature-hashing embedder over character n-grams and words.

    Deterministic and offline. Similar strings share n-grams and land
    close together, which is all lexical-semantic recall needs.
    """

    def __init__(self, dim: int = HASH_EMBEDDING_DIM, ngram_range: Tuple[int, int] = (2, 4)):
        self._dim = dim
        self.ngram_range = ngram_range

    @property
    def dimension(self) -> int:
        return self._dim

    @property
    def provider_id(self) -> str:
        return f"hash-ngram-{self._dim}"

    def _get_ngrams(self, text: str) -> List[str]:
        text = text.lower().strip()
        if not text:
            return []
        features: List[str] = []
        low, high = self.ngram_range
        for n in range(low, high + 1):
            for i in range(len(text) - n + 1):
                features.append(text[i : i + n])
        features.extend(text.split())
        return features

    def embed(self, text: str) -> List[float]:
        vector = [0.0] * self._dim
        for feature in self._get_ngrams(text):
            digest = hashlib.md5(feature.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self._dim
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]


class OpenAIEmbedder(EmbeddingProvider):
    """Embeddings from the OpenAI API.

    Requires the ``openai`` package; the client is created on first use.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        backoff: float = 0.5,
    ):
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.backoff = backoff
        self._client = None

    @property
    def dimension(self) -> int:
        return OPENAI_DIMENSIONS.get(self.model, 1536)

    @property
    def provider_id(self) -> str:
        return f"openai-{self.model}"

    def _get_client(self):
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise RuntimeError("openai package not installed. Install with: pip install openai")
            kwargs = {"timeout": self.timeout, "max_retries": 0}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            self._client = openai.OpenAI(**kwargs)
        return self._client

    def embed(self, text: str) -> List[float]:
        client = self._get_client()

        def _call():
            response = client.embeddings.create(model=self.model, input=text)
            return list(response.data[0].embedding)

        return call_with_retry(_call, "openai-embeddings", backoff=self.backoff)

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        client = self._get_client()

        def _call():
            response = client.embeddings.create(model=self.model, input=texts)
            return [list(item.embedding) for item in response.data]

        return call_with_retry(_call, "openai-embeddings", backoff=self.backoff)


class OllamaEmbedder(EmbeddingProvider):
    """Embeddings from a local Ollama server (``/api/embeddings``)."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        dim: int = 768,
        timeout: float = 10.0,
        backoff: float = 0.5,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._dim = dim
        self.timeout = timeout
        self.backoff = backoff
        self._client: Optional[httpx.Client] = None

    @property
    def dimension(self) -> int:
        return self._dim

    @property
    def provider_id(self) -> str:
        return f"ollama-{self.model}"

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def embed(self, text: str) -> List[float]:
        client = self._get_client()

        def _call():
            response = client.post("/api/embeddings", json={"model": self.model, "prompt": text})
            response.raise_for_status()
            embedding = response.json().get("embedding")
            if not embedding:
                raise ValueError("Ollama returned no embedding")
            return [float(v) for v in embedding]

        return call_with_retry(_call, "ollama-embeddings", backoff=self.backoff)


def create_embedder(
    provider: str = "hash",
    model: Optional[str] = None,
    dimension: int = HASH_EMBEDDING_DIM,
    timeout: float = 10.0,
    backoff: float = 0.5,
) -> EmbeddingProvider:
    """Build an embedder by provider name (hash, openai, ollama)."""
    provider = provider.lower()
    if provider == "hash":
        return HashEmbedder(dim=dimension)
    if provider == "openai":
        return OpenAIEmbedder(
            model=model or "text-embedding-3-small", timeout=timeout, backoff=backoff
        )
    if provider == "ollama":
        return OllamaEmbedder(
            model=model or "nomic-embed-text", timeout=timeout, backoff=backoff
        )
    raise ValueError(f"Unknown embedding provider: {provider}")
