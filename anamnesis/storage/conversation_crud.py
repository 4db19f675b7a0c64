"""Conversation memory persistence.

Messages carry a per-conversation sequence number assigned inside the
append transaction, so history always reads back in arrival order.
"""

import json
import logging
import sqlite3
import uuid
from typing import Optional

from anamnesis.types import ConversationMemory, ConversationMessage, parse_datetime, utc_now

from .memory_crud import _from_json

logger = logging.getLogger(__name__)


def _row_to_message(row: sqlite3.Row) -> ConversationMessage:
    return ConversationMessage(
        role=row["role"],
        content=row["content"],
        timestamp=parse_datetime(row["timestamp"]),
        importance=row["importance"],
        extracted_info=_from_json(row["extracted_info"], {}),
        sentiment=row["sentiment"],
    )


def get_conversation(conn: sqlite3.Connection, conversation_id: str) -> Optional[ConversationMemory]:
    row = conn.execute(
        "SELECT * FROM conversation_memories WHERE conversation_id = ?", (conversation_id,)
    ).fetchone()
    if row is None:
        return None
    messages = conn.execute(
        "SELECT * FROM conversation_messages WHERE conversation_memory_id = ? ORDER BY seq",
        (row["id"],),
    ).fetchall()
    return ConversationMemory(
        id=row["id"],
        conversation_id=row["conversation_id"],
        messages=[_row_to_message(m) for m in messages],
        summary=row["summary"],
        key_topics=_from_json(row["key_topics"], []),
        mood=row["mood"],
        follow_up_needed=_from_json(row["follow_up_needed"], []),
        created_at=parse_datetime(row["created_at"]),
        updated_at=parse_datetime(row["updated_at"]),
    )


def append_message(
    conn: sqlite3.Connection,
    conversation_id: str,
    message: ConversationMessage,
    user_id: Optional[str] = None,
) -> str:
    """Append one message, creating the conversation row on first use.

    Returns the conversation memory id.
    """
    row = conn.execute(
        "SELECT id FROM conversation_memories WHERE conversation_id = ?", (conversation_id,)
    ).fetchone()
    now = utc_now().isoformat()
    if row is None:
        memory_id = str(uuid.uuid4())
        conn.execute(
            """
            INSERT INTO conversation_memories
            (id, conversation_id, user_id, summary, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (memory_id, conversation_id, user_id, "New conversation started", now, now),
        )
        logger.debug(f"Created conversation memory for {conversation_id}")
    else:
        memory_id = row["id"]

    seq = conn.execute(
        "SELECT COALESCE(MAX(seq), 0) + 1 FROM conversation_messages "
        "WHERE conversation_memory_id = ?",
        (memory_id,),
    ).fetchone()[0]
    conn.execute(
        """
        INSERT INTO conversation_messages
        (id, conversation_memory_id, seq, role, content, timestamp, importance,
         sentiment, extracted_info)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            str(uuid.uuid4()),
            memory_id,
            seq,
            message.role,
            message.content,
            message.timestamp.isoformat(),
            message.importance,
            message.sentiment,
            json.dumps(message.extracted_info),
        ),
    )
    return memory_id


def save_state(conn: sqlite3.Connection, conversation: ConversationMemory) -> None:
    """Persist the derived fields recomputed after an append."""
    conn.execute(
        """
        UPDATE conversation_memories
        SET summary = ?, key_topics = ?, mood = ?, follow_up_needed = ?,
            messages_count = ?, updated_at = ?
        WHERE conversation_id = ?
        """,
        (
            conversation.summary,
            json.dumps(conversation.key_topics),
            conversation.mood,
            json.dumps(conversation.follow_up_needed),
            len(conversation.messages),
            conversation.updated_at.isoformat(),
            conversation.conversation_id,
        ),
    )
