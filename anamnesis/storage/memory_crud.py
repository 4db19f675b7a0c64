"""Memory record (de)serialization for anamnesis storage.

The only place typed record containers are turned into JSON columns and
back. ``SQLiteStorage`` keeps thin wrapper methods that delegate here.
"""

import json
import logging
import sqlite3
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from anamnesis.types import (
    MemoryContext,
    MemoryFilter,
    MemoryMetadata,
    MemoryRecord,
    MemorySource,
    MemoryType,
    NamedEntity,
    parse_datetime,
)
from anamnesis.utils import compute_content_hash

from .embeddings import pack_embedding, unpack_embedding

logger = logging.getLogger(__name__)

MEMORY_COLUMNS = (
    "id, type, content, content_hash, importance, confidence, embedding, tags, "
    "relationships, created_at, last_accessed, access_count, source, context, "
    "metadata, user_id, conversation_id, workspace_id"
)


def _from_json(s: Optional[str], default: Any = None) -> Any:
    """Parse JSON string."""
    if not s:
        return default
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        logger.debug(f"Discarding malformed JSON column: {s[:50]!r}")
        return default


def _iso(dt: datetime) -> str:
    """UTC ISO string; stored timestamps must compare lexicographically."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _to_json(value: Any) -> str:
    return json.dumps(value, default=str)


def _context_to_dict(context: MemoryContext) -> Dict[str, Any]:
    data = asdict(context)
    data["timestamp"] = _iso(context.timestamp)
    return data


def _context_from_dict(data: Dict[str, Any]) -> MemoryContext:
    return MemoryContext.from_dict(data)


def _metadata_to_dict(metadata: MemoryMetadata) -> Dict[str, Any]:
    return asdict(metadata)


def _metadata_from_dict(data: Dict[str, Any]) -> MemoryMetadata:
    entities = [
        NamedEntity(
            name=e.get("name", ""),
            type=e.get("type", "concept"),
            confidence=e.get("confidence", 0.7),
            mentions=e.get("mentions", 1),
        )
        for e in data.get("entities", [])
        if isinstance(e, dict)
    ]
    return MemoryMetadata(
        topics=list(data.get("topics", [])),
        entities=entities,
        keywords=list(data.get("keywords", [])),
        sentiment=float(data.get("sentiment", 0.0)),
        verified=bool(data.get("verified", False)),
        contradicts=list(data.get("contradicts", [])),
        extra=dict(data.get("extra", {})),
    )


def record_to_row(record: MemoryRecord) -> Tuple:
    """Flatten a record into the column order of ``MEMORY_COLUMNS``."""
    return (
        record.id,
        record.type.value,
        record.content,
        compute_content_hash(record.content),
        record.importance,
        record.confidence,
        pack_embedding(record.embedding) if record.embedding else None,
        _to_json(sorted(record.tags)),
        _to_json(sorted(record.relationships)),
        _iso(record.created_at),
        _iso(record.last_accessed),
        record.access_count,
        _to_json(asdict(record.source)),
        _to_json(_context_to_dict(record.context)),
        _to_json(_metadata_to_dict(record.metadata)),
        record.context.user_id,
        record.context.conversation_id,
        record.context.workspace_id,
    )


def row_to_record(row: sqlite3.Row) -> MemoryRecord:
    """Convert a row to a MemoryRecord."""
    source = _from_json(row["source"], {})
    return MemoryRecord(
        id=row["id"],
        type=MemoryType(row["type"]),
        content=row["content"],
        importance=row["importance"],
        confidence=row["confidence"],
        embedding=unpack_embedding(row["embedding"]) if row["embedding"] else None,
        tags=set(_from_json(row["tags"], [])),
        relationships=set(_from_json(row["relationships"], [])),
        created_at=parse_datetime(row["created_at"]),
        last_accessed=parse_datetime(row["last_accessed"]),
        access_count=row["access_count"],
        source=MemorySource(
            type=source.get("type", "chat"),
            identifier=source.get("identifier"),
            reliability=source.get("reliability", 0.8),
        ),
        context=_context_from_dict(_from_json(row["context"], {})),
        metadata=_metadata_from_dict(_from_json(row["metadata"], {})),
    )


def build_filter_clause(flt: Optional[MemoryFilter]) -> Tuple[str, List[Any]]:
    """Translate a MemoryFilter into a WHERE clause and parameters."""
    if flt is None:
        return "", []
    clauses: List[str] = []
    params: List[Any] = []
    if flt.types:
        placeholders = ",".join("?" for _ in flt.types)
        clauses.append(f"type IN ({placeholders})")
        params.extend(MemoryType(t).value for t in flt.types)
    if flt.since is not None:
        clauses.append("created_at >= ?")
        params.append(_iso(flt.since))
    if flt.until is not None:
        clauses.append("created_at <= ?")
        params.append(_iso(flt.until))
    if flt.min_importance is not None:
        clauses.append("importance >= ?")
        params.append(flt.min_importance)
    for column, value in (
        ("user_id", flt.user_id),
        ("conversation_id", flt.conversation_id),
        ("workspace_id", flt.workspace_id),
    ):
        if value is not None:
            clauses.append(f"{column} = ?")
            params.append(value)
    if flt.tags:
        # tags are stored as a sorted JSON array
        for tag in flt.tags:
            clauses.append("EXISTS (SELECT 1 FROM json_each(memories.tags) WHERE value = ?)")
            params.append(tag)
    if not clauses:
        return "", []
    return " WHERE " + " AND ".join(clauses), params
