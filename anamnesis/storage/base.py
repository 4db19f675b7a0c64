"""Storage interfaces for anamnesis.

``MemoryStore`` is the durable CRUD + filter seam every component talks
to; ``GraphStore`` is the source of truth for the concept graph.
``SQLiteStorage`` implements both.
"""

from abc import abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Protocol, runtime_checkable

from anamnesis.types import (
    ConversationMemory,
    ConversationMessage,
    KnowledgeNode,
    KnowledgeRelationship,
    MemoryFilter,
    MemoryRecord,
    PersonalityProfile,
    UserPreference,
)


@runtime_checkable
class MemoryStore(Protocol):
    """Durable record storage."""

    @abstractmethod
    def store(self, record: MemoryRecord) -> str:
        """Insert a record. Returns its id."""
        ...

    @abstractmethod
    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        """Fetch a record, or None if it does not exist."""
        ...

    @abstractmethod
    def get_many(self, memory_ids: List[str]) -> List[MemoryRecord]:
        """Fetch the records that still exist, skipping missing ids."""
        ...

    @abstractmethod
    def query(self, flt: Optional[MemoryFilter] = None) -> List[MemoryRecord]:
        """Records matching every set field of the filter, newest first."""
        ...

    @abstractmethod
    def update(self, record: MemoryRecord) -> bool:
        """Overwrite a stored record. False if it no longer exists."""
        ...

    @abstractmethod
    def delete(self, memory_id: str) -> bool:
        """Remove a record. False if it did not exist."""
        ...

    @abstractmethod
    def record_access(self, memory_ids: List[str], when: Optional[datetime] = None) -> int:
        """Increment access counters. Returns the number of rows touched."""
        ...

    @abstractmethod
    def count(self, flt: Optional[MemoryFilter] = None) -> int: ...


@runtime_checkable
class GraphStore(Protocol):
    """Concept graph persistence: {get, upsert, link_edges, traverse}."""

    @abstractmethod
    def get_node(self, concept: str) -> Optional[KnowledgeNode]:
        """Fetch a node by normalized concept key."""
        ...

    @abstractmethod
    def upsert_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """Insert or update by concept key. Returns the stored node (stable id)."""
        ...

    @abstractmethod
    def link_edges(self, source: str, edges: List[KnowledgeRelationship]) -> None:
        """Replace-or-add edges on the ``source`` node, keyed by (target, type)."""
        ...

    @abstractmethod
    def traverse(self, start: str, max_depth: int) -> List[KnowledgeNode]:
        """Nodes reachable from ``start`` within ``max_depth`` hops, excluding it."""
        ...

    @abstractmethod
    def all_nodes(self) -> List[KnowledgeNode]: ...

    @abstractmethod
    def set_confidence(self, concept: str, confidence: float) -> None: ...


class ConversationStore(Protocol):
    def get_conversation(self, conversation_id: str) -> Optional[ConversationMemory]: ...

    def append_message(
        self,
        conversation_id: str,
        message: ConversationMessage,
        user_id: Optional[str] = None,
    ) -> ConversationMemory: ...

    def save_conversation_state(self, conversation: ConversationMemory) -> None: ...


class UserStore(Protocol):
    def upsert_preference(self, preference: UserPreference) -> UserPreference: ...

    def get_preferences(
        self, user_id: str, category: Optional[str] = None
    ) -> List[UserPreference]: ...

    def get_profile(self, user_id: str) -> Optional[PersonalityProfile]: ...

    def save_profile(self, profile: PersonalityProfile) -> None: ...


StatsDict = Dict[str, object]
