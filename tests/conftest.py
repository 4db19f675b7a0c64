"""
Pytest fixtures and test configuration for anamnesis tests.
"""

import logging
from datetime import timedelta
from typing import Iterable, Optional

import pytest

from anamnesis.config import MemoryConfig
from anamnesis.core import MemoryEngine
from anamnesis.storage import HashEmbedder, SQLiteStorage
from anamnesis.text import extract_keywords
from anamnesis.types import (
    MemoryContext,
    MemoryMetadata,
    MemoryRecord,
    MemorySource,
    MemoryType,
    new_id,
    utc_now,
)
from anamnesis.vector_index import VectorIndex


class FailingEmbedder(HashEmbedder):
    """Embedder whose backend is always down."""

    def embed(self, text):
        raise ConnectionError("embedding service unreachable")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point the data dir (database, logs) at a temp directory."""
    home = tmp_path / "anamnesis-home"
    monkeypatch.setenv("ANAMNESIS_DATA_DIR", str(home))
    for var in (
        "ANAMNESIS_USER_ID",
        "ANAMNESIS_DB_PATH",
        "ANAMNESIS_ENABLED",
        "ANAMNESIS_EMBEDDING_PROVIDER",
        "ANAMNESIS_MAX_RESULTS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield home
    # setup_anamnesis_logging attaches handlers to a process-wide logger
    logger = logging.getLogger("anamnesis")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def storage(tmp_path):
    return SQLiteStorage(tmp_path / "test.db")


@pytest.fixture
def embedder():
    return HashEmbedder(dim=128)


@pytest.fixture
def index(storage, embedder):
    return VectorIndex(storage, embedder)


@pytest.fixture
def engine(tmp_path):
    config = MemoryConfig(db_path=str(tmp_path / "engine.db"), embedding_dimension=128)
    memory_engine = MemoryEngine(config=config, user_id="test-user")
    yield memory_engine
    memory_engine.close()


@pytest.fixture
def failing_embedder():
    return FailingEmbedder()


@pytest.fixture
def failing_engine(tmp_path, failing_embedder):
    config = MemoryConfig(db_path=str(tmp_path / "failing.db"))
    memory_engine = MemoryEngine(config=config, embedder=failing_embedder, user_id="test-user")
    yield memory_engine
    memory_engine.close()


@pytest.fixture
def make_record():
    """Factory for MemoryRecords with extracted keywords and an adjustable age."""

    def _make(
        content: str,
        type: MemoryType = MemoryType.FACT,
        days_old: float = 0,
        importance: float = 0.5,
        access_count: int = 0,
        tags: Iterable[str] = (),
        relationships: Iterable[str] = (),
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> MemoryRecord:
        created = utc_now() - timedelta(days=days_old)
        return MemoryRecord(
            id=record_id or new_id(),
            type=type,
            content=content,
            importance=importance,
            tags=set(tags),
            relationships=set(relationships),
            created_at=created,
            access_count=access_count,
            source=MemorySource(type="user_input", reliability=0.8),
            context=MemoryContext(
                user_id=user_id, conversation_id=conversation_id, workspace_id=workspace_id
            ),
            metadata=MemoryMetadata(keywords=extract_keywords(content)),
        )

    return _make
