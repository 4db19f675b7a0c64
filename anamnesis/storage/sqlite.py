"""SQLite storage backend for anamnesis.

Implements :class:`~anamnesis.storage.base.MemoryStore`,
:class:`~anamnesis.storage.base.GraphStore` and the conversation / user
stores on a single database file. Connections are opened per operation
through :meth:`SQLiteStorage._connect`, which commits on success, rolls
back on error and always closes.
"""

import contextlib
import logging
import sqlite3
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from anamnesis.types import (
    ConversationMemory,
    ConversationMessage,
    KnowledgeNode,
    KnowledgeRelationship,
    MemoryFilter,
    MemoryRecord,
    MemoryType,
    PersonalityProfile,
    UserPreference,
    utc_now,
)
from anamnesis.utils import get_anamnesis_home

from . import conversation_crud, knowledge_crud
from .embeddings import pack_embedding, unpack_embedding
from .memory_crud import MEMORY_COLUMNS, _iso, build_filter_clause, record_to_row, row_to_record
from .schema import init_db

logger = logging.getLogger(__name__)


class SQLiteStorage:
    """Local SQLite store for records, concepts, conversations and users."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = self._validate_db_path(db_path)
        with self._connect() as conn:
            init_db(conn)
        logger.debug(f"SQLiteStorage ready at {self.db_path}")

    def _validate_db_path(self, db_path: Optional[Union[str, Path]]) -> Path:
        if db_path is None:
            db_path = get_anamnesis_home() / "memory.db"
        try:
            resolved_path = Path(db_path).expanduser().resolve()
            resolved_path.parent.mkdir(parents=True, exist_ok=True)
            return resolved_path
        except (OSError, ValueError) as e:
            logger.error(f"Invalid database path: {e}")
            raise ValueError(f"Invalid database path: {e}")

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions and closes the connection."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self):
        """Connections are per-operation; nothing persistent to release."""
        pass

    # === MemoryStore ===

    def store(self, record: MemoryRecord) -> str:
        placeholders = ",".join("?" for _ in MEMORY_COLUMNS.split(","))
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO memories ({MEMORY_COLUMNS}) VALUES ({placeholders})",
                record_to_row(record),
            )
        return record.id

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)).fetchone()
        return row_to_record(row) if row else None

    def get_many(self, memory_ids: List[str]) -> List[MemoryRecord]:
        if not memory_ids:
            return []
        ids = list(dict.fromkeys(memory_ids))
        placeholders = ",".join("?" for _ in ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM memories WHERE id IN ({placeholders})", ids
            ).fetchall()
        by_id = {row["id"]: row_to_record(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def query(self, flt: Optional[MemoryFilter] = None) -> List[MemoryRecord]:
        where, params = build_filter_clause(flt)
        sql = f"SELECT * FROM memories{where} ORDER BY created_at DESC"
        if flt is not None and flt.limit:
            sql += " LIMIT ?"
            params.append(int(flt.limit))
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row_to_record(r) for r in rows]

    def search_content(self, terms: List[str], limit: int = 50) -> List[MemoryRecord]:
        """Case-insensitive substring match on content for any of ``terms``."""
        terms = [t for t in terms if t]
        if not terms:
            return []
        clause = " OR ".join("instr(lower(content), ?) > 0" for _ in terms)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM memories WHERE {clause} ORDER BY importance DESC LIMIT ?",
                [t.lower() for t in terms] + [limit],
            ).fetchall()
        return [row_to_record(r) for r in rows]

    def update(self, record: MemoryRecord) -> bool:
        row = record_to_row(record)
        columns = [c.strip() for c in MEMORY_COLUMNS.split(",")][1:]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE memories SET {assignments} WHERE id = ?", (*row[1:], record.id)
            )
            return cur.rowcount > 0

    def delete(self, memory_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
            return cur.rowcount > 0

    def replace_with(self, replacement: MemoryRecord, removed_ids: List[str]) -> int:
        """Persist ``replacement`` and delete ``removed_ids`` in one transaction.

        The insert runs first, so a failure can never leave the removed
        records gone without their replacement.
        """
        placeholders = ",".join("?" for _ in MEMORY_COLUMNS.split(","))
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO memories ({MEMORY_COLUMNS}) VALUES ({placeholders})",
                record_to_row(replacement),
            )
            removed = 0
            for memory_id in removed_ids:
                if memory_id == replacement.id:
                    continue
                cur = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
                removed += cur.rowcount
        return removed

    def record_access(self, memory_ids: List[str], when: Optional[datetime] = None) -> int:
        if not memory_ids:
            return 0
        when_iso = _iso(when or utc_now())
        touched = 0
        with self._connect() as conn:
            for memory_id in memory_ids:
                cur = conn.execute(
                    """
                    UPDATE memories
                    SET access_count = access_count + 1,
                        last_accessed = MAX(last_accessed, ?)
                    WHERE id = ?
                    """,
                    (when_iso, memory_id),
                )
                touched += cur.rowcount
        return touched

    def count(self, flt: Optional[MemoryFilter] = None) -> int:
        where, params = build_filter_clause(flt)
        with self._connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM memories{where}", params).fetchone()[0]

    def count_by_type(self) -> Dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT type, COUNT(*) AS n FROM memories GROUP BY type").fetchall()
        return {row["type"]: row["n"] for row in rows}

    def memory_stats(self) -> Dict[str, float]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total, AVG(importance) AS avg_importance,
                       AVG(confidence) AS avg_confidence, SUM(access_count) AS accesses,
                       MIN(created_at) AS oldest, MAX(created_at) AS newest
                FROM memories
                """
            ).fetchone()
        return {
            "total": row["total"],
            "avg_importance": row["avg_importance"] or 0.0,
            "avg_confidence": row["avg_confidence"] or 0.0,
            "total_accesses": row["accesses"] or 0,
            "oldest": row["oldest"],
            "newest": row["newest"],
        }

    def compressed_count(self) -> int:
        return self.count(MemoryFilter(types=[MemoryType.SUMMARY, MemoryType.ARCHIVE]))

    # === Embedding cache ===

    def get_cached_embedding(self, content_hash: str, provider: str) -> Optional[List[float]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT vector FROM embedding_cache WHERE content_hash = ? AND provider = ?",
                (content_hash, provider),
            ).fetchone()
        return unpack_embedding(row["vector"]) if row else None

    def put_cached_embedding(self, content_hash: str, provider: str, vector: List[float]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO embedding_cache
                (content_hash, provider, dimension, vector, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (content_hash, provider, len(vector), pack_embedding(vector), _iso(utc_now())),
            )

    def embedding_cache_size(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    def set_embedding(self, memory_id: str, vector: Optional[List[float]]) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE memories SET embedding = ? WHERE id = ?",
                (pack_embedding(vector) if vector else None, memory_id),
            )

    # === GraphStore ===

    def get_node(self, concept: str) -> Optional[KnowledgeNode]:
        with self._connect() as conn:
            return knowledge_crud.get_node(conn, concept)

    def upsert_node(self, node: KnowledgeNode) -> KnowledgeNode:
        with self._connect() as conn:
            return knowledge_crud.upsert_node(conn, node)

    def link_edges(self, source: str, edges: List[KnowledgeRelationship]) -> None:
        with self._connect() as conn:
            node = knowledge_crud.get_node(conn, source)
            if node is None:
                raise KeyError(f"Unknown concept: {source}")
            merged = {(e.target, e.type): e for e in node.relationships}
            for edge in edges:
                merged[(edge.target, edge.type)] = edge
            knowledge_crud.write_edges(conn, source, list(merged.values()))

    def traverse(self, start: str, max_depth: int) -> List[KnowledgeNode]:
        """Breadth-first walk; each node is visited once, dangling edges skipped."""
        with self._connect() as conn:
            origin = knowledge_crud.get_node(conn, start)
            if origin is None:
                return []
            visited = {origin.concept}
            reached: List[KnowledgeNode] = []
            frontier = deque([(origin, 0)])
            while frontier:
                node, depth = frontier.popleft()
                if depth >= max_depth:
                    continue
                for edge in node.relationships:
                    if edge.target in visited:
                        continue
                    target = knowledge_crud.get_node(conn, edge.target)
                    if target is None:
                        logger.debug(f"Skipping dangling edge {node.concept} -> {edge.target}")
                        continue
                    visited.add(target.concept)
                    reached.append(target)
                    frontier.append((target, depth + 1))
        return reached

    def all_nodes(self) -> List[KnowledgeNode]:
        with self._connect() as conn:
            return knowledge_crud.all_nodes(conn)

    def set_confidence(self, concept: str, confidence: float) -> None:
        with self._connect() as conn:
            knowledge_crud.set_confidence(conn, concept, confidence)

    # === Conversations ===

    def get_conversation(self, conversation_id: str) -> Optional[ConversationMemory]:
        with self._connect() as conn:
            return conversation_crud.get_conversation(conn, conversation_id)

    def append_message(
        self,
        conversation_id: str,
        message: ConversationMessage,
        user_id: Optional[str] = None,
    ) -> ConversationMemory:
        """Append and read back the full ordered history in one transaction."""
        with self._connect() as conn:
            conversation_crud.append_message(conn, conversation_id, message, user_id)
            return conversation_crud.get_conversation(conn, conversation_id)

    def save_conversation_state(self, conversation: ConversationMemory) -> None:
        with self._connect() as conn:
            conversation_crud.save_state(conn, conversation)

    def conversation_count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM conversation_memories").fetchone()[0]

    # === Users ===

    def upsert_preference(self, preference: UserPreference) -> UserPreference:
        with self._connect() as conn:
            return knowledge_crud.upsert_preference(conn, preference)

    def get_preferences(self, user_id: str, category: Optional[str] = None) -> List[UserPreference]:
        with self._connect() as conn:
            return knowledge_crud.get_preferences(conn, user_id, category)

    def get_profile(self, user_id: str) -> Optional[PersonalityProfile]:
        with self._connect() as conn:
            return knowledge_crud.get_profile(conn, user_id)

    def save_profile(self, profile: PersonalityProfile) -> None:
        with self._connect() as conn:
            knowledge_crud.save_profile(conn, profile)
