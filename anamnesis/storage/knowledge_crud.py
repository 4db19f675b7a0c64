"""Knowledge node and user preference persistence.

All functions receive an open connection so ``SQLiteStorage`` can run
them inside its transaction context.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from anamnesis.types import (
    KnowledgeNode,
    KnowledgeRelationship,
    PersonalityProfile,
    UserPreference,
    parse_datetime,
    utc_now,
)

from .memory_crud import _from_json

logger = logging.getLogger(__name__)


def _edges_to_json(edges: List[KnowledgeRelationship]) -> str:
    return json.dumps(
        [
            {
                "target": e.target,
                "type": e.type.value,
                "strength": e.strength,
                "bidirectional": e.bidirectional,
                "penalized": e.penalized,
            }
            for e in edges
        ]
    )


def _edges_from_json(s: Optional[str]) -> List[KnowledgeRelationship]:
    edges = []
    for item in _from_json(s, []):
        try:
            edges.append(
                KnowledgeRelationship(
                    target=item["target"],
                    type=item["type"],
                    strength=item.get("strength", 0.5),
                    bidirectional=item.get("bidirectional", False),
                    penalized=item.get("penalized", False),
                )
            )
        except (KeyError, ValueError) as e:
            logger.debug(f"Skipping malformed knowledge edge {item!r}: {e}")
    return edges


def row_to_node(row: sqlite3.Row) -> KnowledgeNode:
    return KnowledgeNode(
        id=row["id"],
        concept=row["concept"],
        description=row["description"],
        confidence=row["confidence"],
        relationships=_edges_from_json(row["relationships"]),
        sources=list(_from_json(row["sources"], [])),
        created_at=parse_datetime(row["created_at"]),
        last_verified=parse_datetime(row["last_verified"]),
    )


def get_node(conn: sqlite3.Connection, concept: str) -> Optional[KnowledgeNode]:
    row = conn.execute("SELECT * FROM knowledge_nodes WHERE concept = ?", (concept,)).fetchone()
    return row_to_node(row) if row else None


def upsert_node(conn: sqlite3.Connection, node: KnowledgeNode) -> KnowledgeNode:
    """Insert by unique concept key; an existing row keeps its id and edges."""
    existing = get_node(conn, node.concept)
    if existing is None:
        conn.execute(
            """
            INSERT INTO knowledge_nodes
            (id, concept, description, confidence, relationships, sources,
             created_at, last_verified)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                node.id,
                node.concept,
                node.description,
                node.confidence,
                _edges_to_json(node.relationships),
                json.dumps(node.sources),
                node.created_at.isoformat(),
                node.last_verified.isoformat(),
            ),
        )
        return node

    sources = list(dict.fromkeys(existing.sources + node.sources))
    conn.execute(
        """
        UPDATE knowledge_nodes
        SET description = ?, sources = ?, last_verified = ?
        WHERE id = ?
        """,
        (
            node.description or existing.description,
            json.dumps(sources),
            node.last_verified.isoformat(),
            existing.id,
        ),
    )
    existing.description = node.description or existing.description
    existing.sources = sources
    existing.last_verified = node.last_verified
    return existing


def write_edges(conn: sqlite3.Connection, concept: str, edges: List[KnowledgeRelationship]) -> None:
    cur = conn.execute(
        "UPDATE knowledge_nodes SET relationships = ? WHERE concept = ?",
        (_edges_to_json(edges), concept),
    )
    if cur.rowcount == 0:
        raise KeyError(f"Unknown concept: {concept}")


def set_confidence(conn: sqlite3.Connection, concept: str, confidence: float) -> None:
    conn.execute(
        "UPDATE knowledge_nodes SET confidence = ? WHERE concept = ?",
        (max(0.0, min(1.0, confidence)), concept),
    )


def all_nodes(conn: sqlite3.Connection) -> List[KnowledgeNode]:
    rows = conn.execute("SELECT * FROM knowledge_nodes ORDER BY concept").fetchall()
    return [row_to_node(r) for r in rows]


# === User preferences and profiles ===


def upsert_preference(conn: sqlite3.Connection, pref: UserPreference) -> UserPreference:
    """Last write wins per (user_id, category, preference)."""
    conn.execute(
        """
        INSERT INTO user_preferences
        (id, user_id, category, preference, strength, context, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id, category, preference) DO UPDATE SET
            strength = excluded.strength,
            context = excluded.context,
            updated_at = excluded.updated_at
        """,
        (
            str(uuid.uuid4()),
            pref.user_id,
            pref.category,
            pref.preference,
            pref.strength,
            pref.context,
            pref.updated_at.isoformat(),
        ),
    )
    return pref


def get_preferences(
    conn: sqlite3.Connection, user_id: str, category: Optional[str] = None
) -> List[UserPreference]:
    sql = "SELECT * FROM user_preferences WHERE user_id = ?"
    params: List[Any] = [user_id]
    if category:
        sql += " AND category = ?"
        params.append(category)
    sql += " ORDER BY strength DESC, updated_at DESC"
    return [
        UserPreference(
            user_id=r["user_id"],
            category=r["category"],
            preference=r["preference"],
            strength=r["strength"],
            context=r["context"],
            updated_at=parse_datetime(r["updated_at"]),
        )
        for r in conn.execute(sql, params).fetchall()
    ]


def get_profile(conn: sqlite3.Connection, user_id: str) -> Optional[PersonalityProfile]:
    row = conn.execute("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    data: Dict[str, Any] = _from_json(row["profile"], {})
    return PersonalityProfile(
        user_id=user_id,
        traits={k: float(v) for k, v in data.get("traits", {}).items()},
        communication_style=dict(data.get("communication_style", {})),
        interests=list(data.get("interests", [])),
        expertise={k: float(v) for k, v in data.get("expertise", {}).items()},
        working_patterns=dict(data.get("working_patterns", {})),
        goals=list(data.get("goals", [])),
        motivations=list(data.get("motivations", [])),
        updated_at=parse_datetime(row["updated_at"]) or utc_now(),
    )


def save_profile(conn: sqlite3.Connection, profile: PersonalityProfile) -> None:
    data = asdict(profile)
    data.pop("updated_at", None)
    conn.execute(
        """
        INSERT INTO user_profiles (user_id, profile, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            profile = excluded.profile, updated_at = excluded.updated_at
        """,
        (profile.user_id, json.dumps(data, default=str), profile.updated_at.isoformat()),
    )
