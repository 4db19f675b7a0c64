"""Database schema for anamnesis SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "memories",
        "embedding_cache",
        "conversation_memories",
        "conversation_messages",
        "knowledge_nodes",
        "user_preferences",
        "user_profiles",
        "schema_version",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist.

    Raises:
        ValueError: If the table name is not allowed
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS memories (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    importance REAL NOT NULL DEFAULT 0.5,
    confidence REAL NOT NULL DEFAULT 0.8,
    embedding BLOB,
    tags TEXT NOT NULL DEFAULT '[]',
    relationships TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    last_accessed TEXT NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    source TEXT NOT NULL DEFAULT '{}',
    context TEXT NOT NULL DEFAULT '{}',
    metadata TEXT NOT NULL DEFAULT '{}',
    user_id TEXT,
    conversation_id TEXT,
    workspace_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_memories_type ON memories(type);
CREATE INDEX IF NOT EXISTS idx_memories_user ON memories(user_id);
CREATE INDEX IF NOT EXISTS idx_memories_conversation ON memories(conversation_id);
CREATE INDEX IF NOT EXISTS idx_memories_created ON memories(created_at);
CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance);

-- Embeddings keyed by content hash: identical content is embedded once
CREATE TABLE IF NOT EXISTS embedding_cache (
    content_hash TEXT NOT NULL,
    provider TEXT NOT NULL,
    dimension INTEGER NOT NULL,
    vector BLOB NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (content_hash, provider)
);

CREATE TABLE IF NOT EXISTS conversation_memories (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL UNIQUE,
    user_id TEXT,
    summary TEXT NOT NULL DEFAULT '',
    key_topics TEXT NOT NULL DEFAULT '[]',
    mood TEXT NOT NULL DEFAULT 'neutral',
    follow_up_needed TEXT NOT NULL DEFAULT '[]',
    messages_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_messages (
    id TEXT PRIMARY KEY,
    conversation_memory_id TEXT NOT NULL REFERENCES conversation_memories(id),
    seq INTEGER NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    importance REAL NOT NULL DEFAULT 0.5,
    sentiment REAL NOT NULL DEFAULT 0.0,
    extracted_info TEXT NOT NULL DEFAULT '{}',
    UNIQUE (conversation_memory_id, seq)
);

CREATE TABLE IF NOT EXISTS knowledge_nodes (
    id TEXT PRIMARY KEY,
    concept TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    confidence REAL NOT NULL DEFAULT 0.8,
    relationships TEXT NOT NULL DEFAULT '[]',
    sources TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    last_verified TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_preferences (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    category TEXT NOT NULL,
    preference TEXT NOT NULL,
    strength REAL NOT NULL DEFAULT 0.5,
    context TEXT,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, category, preference)
);

CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    profile TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables if needed and record the schema version."""
    conn.executescript(SCHEMA)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row else None
    if current is None:
        from datetime import datetime, timezone

        conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, datetime.now(timezone.utc).isoformat()),
        )
        logger.info(f"Initialized schema version {SCHEMA_VERSION}")
    elif current > SCHEMA_VERSION:
        logger.warning(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}"
        )
