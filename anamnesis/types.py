"""
Shared memory types for anamnesis.

All record dataclasses live here. Containers are typed (sets of tags, sets
of record ids, structured metadata); JSON (de)serialization happens only at
the storage boundary in ``anamnesis.storage``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

# === Shared Utility Functions ===


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string, assuming UTC for naive values."""
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def clamp01(value: float) -> float:
    """Clamp a score into [0, 1]."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


def new_id() -> str:
    return str(uuid.uuid4())


# === Enums ===


class MemoryType(str, Enum):
    """Kinds of memory record."""

    FACT = "fact"
    PREFERENCE = "preference"
    SKILL = "skill"
    EXPERIENCE = "experience"
    RELATIONSHIP = "relationship"
    GOAL = "goal"
    TASK = "task"
    KNOWLEDGE = "knowledge"
    OBSERVATION = "observation"
    CONVERSATION = "conversation"
    # Produced by consolidation and pattern extraction
    SUMMARY = "summary"
    ARCHIVE = "archive"
    PATTERN = "pattern"


class RelationshipType(str, Enum):
    """Typed edges between knowledge nodes."""

    IS_A = "is_a"
    PART_OF = "part_of"
    RELATED_TO = "related_to"
    CAUSES = "causes"
    IMPLIES = "implies"
    CONTRADICTS = "contradicts"


# === Memory records ===


@dataclass
class MemorySource:
    type: str = "chat"
    identifier: Optional[str] = None
    reliability: float = 0.8

    def __post_init__(self):
        self.reliability = clamp01(self.reliability)


@dataclass
class MemoryContext:
    """Where a memory came from, or where a query is being asked."""

    conversation_id: Optional[str] = None
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)
    relevant_entities: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MemoryContext":
        """Build a context from a loose dict, accepting camelCase keys too."""
        if not data:
            return cls()
        if isinstance(data, MemoryContext):
            return data

        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        timestamp = pick("timestamp")
        if isinstance(timestamp, str):
            timestamp = parse_datetime(timestamp)
        return cls(
            conversation_id=pick("conversation_id", "conversationId"),
            workspace_id=pick("workspace_id", "workspaceId"),
            user_id=pick("user_id", "userId"),
            session_id=pick("session_id", "sessionId"),
            timestamp=timestamp or utc_now(),
            relevant_entities=list(pick("relevant_entities", "relevantEntities") or []),
        )


@dataclass
class NamedEntity:
    name: str
    type: str
    confidence: float = 0.7
    mentions: int = 1


@dataclass
class MemoryMetadata:
    topics: List[str] = field(default_factory=list)
    entities: List[NamedEntity] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    sentiment: float = 0.0
    verified: bool = False
    contradicts: List[str] = field(default_factory=list)
    # Type-specific payload (episode details, archive criteria, ...)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MemoryRecord:
    """A stored unit of knowledge or experience."""

    id: str
    type: MemoryType
    content: str
    importance: float = 0.5
    confidence: float = 0.8
    embedding: Optional[List[float]] = None
    tags: Set[str] = field(default_factory=set)
    relationships: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utc_now)
    last_accessed: Optional[datetime] = None
    access_count: int = 0
    source: MemorySource = field(default_factory=MemorySource)
    context: MemoryContext = field(default_factory=MemoryContext)
    metadata: MemoryMetadata = field(default_factory=MemoryMetadata)

    def __post_init__(self):
        if not isinstance(self.type, MemoryType):
            self.type = MemoryType(self.type)
        self.importance = clamp01(self.importance)
        self.confidence = clamp01(self.confidence)
        self.tags = set(self.tags)
        self.relationships = set(self.relationships)
        if self.created_at.tzinfo is None:
            self.created_at = self.created_at.replace(tzinfo=timezone.utc)
        if self.last_accessed is not None and self.last_accessed.tzinfo is None:
            self.last_accessed = self.last_accessed.replace(tzinfo=timezone.utc)
        if self.last_accessed is None or self.last_accessed < self.created_at:
            self.last_accessed = self.created_at
        self.access_count = max(0, int(self.access_count))

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record an access."""
        now = now or utc_now()
        self.access_count += 1
        self.last_accessed = max(now, self.created_at)


@dataclass
class MemorySearchResult:
    record: MemoryRecord
    relevance_score: float
    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record.id,
            "type": self.record.type.value,
            "content": self.record.content,
            "importance": round(self.record.importance, 4),
            "relevance_score": round(self.relevance_score, 4),
            "explanation": self.explanation,
            "tags": sorted(self.record.tags),
        }


@dataclass
class MemoryQuery:
    query: str
    context: Optional[MemoryContext] = None
    types: Optional[List[MemoryType]] = None
    min_importance: Optional[float] = None
    time_range: Optional[Tuple[datetime, datetime]] = None
    max_results: int = 10
    include_related: bool = False


@dataclass
class MemoryFilter:
    """Predicate passed to the store's ``query``. All fields AND together."""

    types: Optional[List[MemoryType]] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    min_importance: Optional[float] = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    workspace_id: Optional[str] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = None


@dataclass
class ArchiveCriteria:
    age_days: float = 180
    importance: float = 0.3
    access_count: int = 2


# === Conversations ===


@dataclass
class ConversationMessage:
    role: str
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    importance: float = 0.5
    extracted_info: Dict[str, List[str]] = field(default_factory=dict)
    sentiment: float = 0.0


@dataclass
class ConversationMemory:
    id: str
    conversation_id: str
    messages: List[ConversationMessage] = field(default_factory=list)
    summary: str = ""
    key_topics: List[str] = field(default_factory=list)
    mood: str = "neutral"
    follow_up_needed: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


# === Knowledge graph ===


@dataclass
class KnowledgeRelationship:
    target: str  # concept key of the other node
    type: RelationshipType
    strength: float = 0.5
    bidirectional: bool = False
    penalized: bool = False

    def __post_init__(self):
        if not isinstance(self.type, RelationshipType):
            self.type = RelationshipType(self.type)
        self.strength = clamp01(self.strength)


@dataclass
class KnowledgeNode:
    id: str
    concept: str
    description: str = ""
    confidence: float = 0.7
    relationships: List[KnowledgeRelationship] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    last_verified: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.confidence = clamp01(self.confidence)

    def edge_to(self, target: str, rel_type: RelationshipType) -> Optional[KnowledgeRelationship]:
        for rel in self.relationships:
            if rel.target == target and rel.type == rel_type:
                return rel
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "concept": self.concept,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            "relationships": [
                {"target": r.target, "type": r.type.value, "strength": r.strength}
                for r in self.relationships
            ],
            "sources": list(self.sources),
        }


# === Users ===


@dataclass
class UserPreference:
    user_id: str
    category: str
    preference: str
    strength: float = 0.5
    context: Optional[str] = None
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.strength = clamp01(self.strength)


@dataclass
class PersonalityProfile:
    user_id: str
    traits: Dict[str, float] = field(default_factory=dict)
    communication_style: Dict[str, str] = field(default_factory=dict)
    interests: List[str] = field(default_factory=list)
    expertise: Dict[str, float] = field(default_factory=dict)
    working_patterns: Dict[str, Any] = field(default_factory=dict)
    goals: List[str] = field(default_factory=list)
    motivations: List[str] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utc_now)


# === Episodes ===


@dataclass
class EpisodicMemory:
    """An experience as recorded by :class:`~anamnesis.episodic.EpisodicMemoryService`."""

    id: str
    event: str
    outcome: str
    participants: List[str] = field(default_factory=list)
    location: Optional[str] = None
    duration: Optional[float] = None  # seconds
    emotions: List[str] = field(default_factory=list)
    success: bool = True
    lessons: List[str] = field(default_factory=list)
    related_episodes: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "outcome": self.outcome,
            "participants": list(self.participants),
            "location": self.location,
            "duration": self.duration,
            "emotions": list(self.emotions),
            "success": self.success,
            "lessons": list(self.lessons),
            "related_episodes": list(self.related_episodes),
            "created_at": self.created_at.isoformat(),
        }
