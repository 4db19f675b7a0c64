"""
MemoryEngine - the public facade over every memory component.

Every operation returns an envelope, ``{"success": True, "data": ...}`` or
``{"success": False, "error": "..."}``. Nothing raises across this
boundary; failures are logged here and reported in the envelope.

Usage:
    engine = MemoryEngine()
    engine.remember("User prefers dark mode interface", {"user_id": "u1"}, "preference", 0.8)
    engine.recall("dark mode", {"user_id": "u1"})
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from anamnesis import config as constants
from anamnesis.config import MemoryConfig
from anamnesis.consolidation import ConsolidationEngine
from anamnesis.conversation import ConversationMemoryService
from anamnesis.episodic import EpisodicMemoryService
from anamnesis.errors import AnamnesisError, CollaboratorUnavailable, NotFound, ValidationError
from anamnesis.importance import score_record, type_adjusted
from anamnesis.knowledge import KnowledgeGraph, normalize_concept
from anamnesis.logging_config import log_consolidation, log_recall, log_remember
from anamnesis.profile import UserProfileService
from anamnesis.retrieval import RetrievalEngine
from anamnesis.storage import SQLiteStorage
from anamnesis.storage.embeddings import EmbeddingProvider, create_embedder
from anamnesis.text import (
    analyze_sentiment,
    extract_entities,
    extract_keywords,
    extract_topics,
    tokenize,
)
from anamnesis.types import (
    ArchiveCriteria,
    MemoryContext,
    MemoryMetadata,
    MemoryQuery,
    MemoryRecord,
    MemorySearchResult,
    MemorySource,
    MemoryType,
    RelationshipType,
    new_id,
    parse_datetime,
)
from anamnesis.utils import MAX_CONTENT_LENGTH, resolve_user_id
from anamnesis.validation import (
    sanitize_content,
    sanitize_list,
    sanitize_number,
    sanitize_string,
    sanitize_tags,
    validate_enum,
)
from anamnesis.vector_index import VectorIndex

logger = logging.getLogger(__name__)

ContextArg = Optional[Union[MemoryContext, Dict[str, Any]]]

MEMORY_TYPES = [t.value for t in MemoryType]
RELATIONSHIP_TYPES = [t.value for t in RelationshipType]


def _as_datetime(value: Optional[Union[str, datetime]], field_name: str) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_datetime(value)
    except ValueError as e:
        raise ValidationError(f"{field_name} is not an ISO datetime: {value}") from e


class MemoryEngine:
    """Remember, recall, and maintain memories for one data directory.

    Args:
        config: Runtime configuration; defaults to ``MemoryConfig.from_env()``.
        storage: Store to use instead of the SQLite file named by ``config``.
        embedder: Embedding provider to use instead of the configured one.
        user_id: Owner used for the event log when a call has no user context.
    """

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        storage: Optional[SQLiteStorage] = None,
        embedder: Optional[EmbeddingProvider] = None,
        user_id: Optional[str] = None,
    ):
        self.config = config or MemoryConfig.from_env()
        self.user_id = resolve_user_id(user_id)
        self.storage = storage or SQLiteStorage(self.config.db_path)
        self.embedder = embedder or create_embedder(
            self.config.embedding_provider,
            model=self.config.embedding_model,
            dimension=self.config.embedding_dimension,
            timeout=self.config.embedding_timeout,
            backoff=self.config.embedding_retry_backoff,
        )
        self.index = VectorIndex(self.storage, self.embedder)
        self.retrieval = RetrievalEngine(
            self.storage,
            self.index,
            semantic_threshold=self.config.semantic_threshold,
            slow_query_seconds=self.config.search_timeout,
        )
        self.graph = KnowledgeGraph(self.storage, inline_discovery=False)
        self.consolidation = ConsolidationEngine(
            self.storage, self.index, retention_days=self.config.retention_days
        )
        self.conversations = ConversationMemoryService(self.storage)
        self.episodes = EpisodicMemoryService(self.storage, self.index)
        self.profiles = UserProfileService(self.storage)

    # === Envelope ===

    def _call(self, operation: str, fn: Callable[[], Any]) -> Dict[str, Any]:
        if not self.config.enabled:
            return {"success": False, "error": "Memory system is disabled"}
        try:
            return {"success": True, "data": fn()}
        except (AnamnesisError, ValueError) as e:
            logger.warning(f"{operation} rejected: {e}")
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            return {"success": False, "error": f"{operation} failed: {e}"}

    def _owner(self, context: Optional[MemoryContext]) -> str:
        if context is not None and context.user_id:
            return context.user_id
        return self.user_id

    # === Core ===

    def remember(
        self,
        content: str,
        context: ContextArg = None,
        type: Optional[Union[MemoryType, str]] = None,
        importance: Optional[float] = None,
        tags: Optional[List[str]] = None,
        source: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Store a memory. ``data`` is ``{"memory_id", "indexed"}``."""

        def run():
            text = sanitize_content(content)
            memory_type = MemoryType(
                validate_enum(
                    type.value if isinstance(type, MemoryType) else type,
                    "type",
                    MEMORY_TYPES,
                    default=MemoryType.OBSERVATION.value,
                )
            )
            source_type = validate_enum(
                source, "source", sorted(self.config.allowed_sources), default="user_input"
            )
            explicit = (
                sanitize_number(importance, "importance", 0.0, 1.0) if importance is not None else None
            )
            ctx = MemoryContext.from_dict(context)
            sentiment = analyze_sentiment(text)
            record = MemoryRecord(
                id=new_id(),
                type=memory_type,
                content=text,
                confidence=sanitize_number(
                    confidence, "confidence", 0.0, 1.0, constants.DEFAULT_CONFIDENCE
                ),
                tags=set(sanitize_tags(tags)),
                source=MemorySource(
                    type=source_type,
                    identifier=ctx.session_id or "unknown",
                    reliability=constants.DEFAULT_SOURCE_RELIABILITY,
                ),
                context=ctx,
                metadata=MemoryMetadata(
                    topics=extract_topics(text),
                    entities=extract_entities(text),
                    keywords=extract_keywords(text),
                    sentiment=sentiment,
                ),
            )

            try:
                vector: Optional[List[float]] = self.index.embed_text(text)
            except CollaboratorUnavailable as e:
                logger.warning(f"Storing memory without embedding: {e}")
                vector = None

            if explicit is not None:
                record.importance = explicit
                # Consolidation never rescores below a caller-supplied value
                record.metadata.extra["explicit_importance"] = explicit
            else:
                neighbours = self.index.max_similarity(vector) if vector is not None else []
                record.importance = type_adjusted(score_record(record, neighbours), memory_type.value)

            record.embedding = vector
            self.storage.store(record)
            indexed = False
            if vector is not None:
                self.index.add(record)
                indexed = True
            log_remember(self._owner(ctx), memory_type.value, record.id, text)
            logger.debug(f"Remembered {memory_type.value} {record.id}")
            return {"memory_id": record.id, "indexed": indexed}

        return self._call("remember", run)

    def recall(
        self,
        query: str,
        context: ContextArg = None,
        max_results: Optional[int] = None,
        include_context: bool = True,
    ) -> Dict[str, Any]:
        """Ranked memories for ``query``.

        ``data`` carries ``memories``, ``total_results``, ``degraded``,
        ``explanation`` and, when the context names a conversation, its
        ``conversation_context``.
        """

        def run():
            text = sanitize_string(query, "query", max_length=MAX_CONTENT_LENGTH)
            ctx = MemoryContext.from_dict(context) if context else None
            limit = int(
                sanitize_number(max_results, "max_results", 1, 100, self.config.max_results)
            )
            outcome = self.retrieval.search(MemoryQuery(query=text, context=ctx, max_results=limit))
            conversation_context = None
            if include_context and ctx is not None and ctx.conversation_id:
                conversation_context = self.conversations.get_summary(ctx.conversation_id)
            log_recall(self._owner(ctx), text, len(outcome.results), outcome.degraded)
            return {
                "memories": [r.to_dict() for r in outcome.results],
                "total_results": len(outcome.results),
                "degraded": outcome.degraded,
                "explanation": outcome.explanation,
                "conversation_context": conversation_context,
            }

        return self._call("recall", run)

    def forget(self, memory_id: str) -> Dict[str, Any]:
        """Hard-delete one record. The only path that deletes without a summary."""

        def run():
            key = sanitize_string(memory_id, "memory_id", max_length=100)
            if not self.storage.delete(key):
                raise NotFound(f"memory {key} not found")
            self.index.remove(key)
            logger.info(f"Forgot memory {key}")
            return {"memory_id": key, "deleted": True}

        return self._call("forget", run)

    def search_memories(
        self,
        query: str,
        types: Optional[List[str]] = None,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        min_importance: Optional[float] = None,
        max_results: int = 20,
        time_range: Optional[Dict[str, Any]] = None,
        include_related: bool = False,
    ) -> Dict[str, Any]:
        """Filtered search. ``time_range`` is ``{"start": ..., "end": ...}`` (ISO strings or datetimes)."""

        def run():
            text = sanitize_string(query, "query", max_length=MAX_CONTENT_LENGTH)
            memory_types = None
            if types:
                memory_types = [MemoryType(validate_enum(t, "types", MEMORY_TYPES)) for t in types]
            window = None
            if time_range:
                window = (
                    _as_datetime(time_range.get("start"), "time_range.start"),
                    _as_datetime(time_range.get("end"), "time_range.end"),
                )
            ctx = None
            if user_id or workspace_id or conversation_id:
                ctx = MemoryContext(
                    user_id=user_id, workspace_id=workspace_id, conversation_id=conversation_id
                )
            memory_query = MemoryQuery(
                query=text,
                context=ctx,
                types=memory_types,
                min_importance=(
                    sanitize_number(min_importance, "min_importance", 0.0, 1.0)
                    if min_importance is not None
                    else None
                ),
                time_range=window,
                max_results=int(sanitize_number(max_results, "max_results", 1, 100)),
                include_related=include_related,
            )
            outcome = self.retrieval.search(memory_query)
            return {
                "results": [r.to_dict() for r in outcome.results],
                "total_results": len(outcome.results),
                "degraded": outcome.degraded,
                "explanation": outcome.explanation,
            }

        return self._call("search_memories", run)

    def get_memory_context(
        self, query: Optional[str] = None, context: ContextArg = None, max_results: int = 5
    ) -> Dict[str, Any]:
        """Everything relevant to a turn, grouped for prompt assembly."""

        def run():
            ctx = MemoryContext.from_dict(context) if context else None
            relevant: List[MemorySearchResult] = []
            degraded = False
            if query and query.strip():
                outcome = self.retrieval.search(
                    MemoryQuery(query=query.strip(), context=ctx, max_results=max_results)
                )
                relevant = outcome.results
                degraded = outcome.degraded
            conversation = None
            if ctx is not None and ctx.conversation_id:
                conversation = self.conversations.get_summary(ctx.conversation_id)
            preferences = []
            if ctx is not None and ctx.user_id:
                preferences = [
                    {"category": p.category, "preference": p.preference, "strength": p.strength}
                    for p in self.profiles.get_preferences(ctx.user_id)[:10]
                ]
            concepts = []
            if query:
                seen = set()
                for token in tokenize(query):
                    node = self.graph.get(token)
                    if node is None or node.concept in seen:
                        continue
                    seen.add(node.concept)
                    concepts.append(node.to_dict())
                    for related in self.graph.find_related_concepts(node.concept, max_depth=1):
                        if related.concept not in seen:
                            seen.add(related.concept)
                            concepts.append(related.to_dict())
            return {
                "relevant_memories": [r.to_dict() for r in relevant],
                "conversation": conversation,
                "user_preferences": preferences,
                "related_concepts": concepts[:10],
                "degraded": degraded,
            }

        return self._call("get_memory_context", run)

    def find_similar_memories(
        self,
        content: Optional[str] = None,
        memory_id: Optional[str] = None,
        threshold: float = 0.7,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Nearest records to a piece of text or to an existing record."""

        def run():
            floor = sanitize_number(threshold, "threshold", -1.0, 1.0)
            top = int(sanitize_number(limit, "limit", 1, 100))
            if memory_id:
                results = self.retrieval.find_similar(memory_id, limit=top, threshold=floor)
            else:
                text = sanitize_string(content, "content", max_length=MAX_CONTENT_LENGTH)
                hits = self.index.search_text(text, threshold=floor, top_k=top)
                similarity = dict(hits)
                results = [
                    MemorySearchResult(
                        record=r,
                        relevance_score=similarity[r.id],
                        explanation=f"Vector similarity: {similarity[r.id] * 100:.1f}%",
                    )
                    for r in self.storage.get_many([i for i, _ in hits])
                ]
            return {
                "similar_memories": [r.to_dict() for r in results],
                "total_results": len(results),
            }

        return self._call("find_similar_memories", run)

    def get_memory_stats(self) -> Dict[str, Any]:
        def run():
            stats = self.storage.memory_stats()
            stats["by_type"] = self.storage.count_by_type()
            stats["vector_index"] = self.index.stats()
            stats["compression"] = self.consolidation.get_compression_stats()
            stats["knowledge_graph"] = self.graph.get_graph_stats()
            stats["conversations"] = self.storage.conversation_count()
            stats["system_status"] = "operational"
            return stats

        return self._call("get_memory_stats", run)

    def optimize_memory(self) -> Dict[str, Any]:
        """Consolidation sweep plus graph maintenance and an index rebuild."""

        def run():
            report = self.consolidation.optimize(self.graph)
            self.graph.invalidate()
            data = report.to_dict()
            data["patterns"] = len(self.episodes.save_patterns())
            log_consolidation(self.user_id, report.merged, report.compressed, report.archived)
            return data

        return self._call("optimize_memory", run)

    def archive_memories(
        self, age_days: float = 180, importance: float = 0.3, access_count: int = 2
    ) -> Dict[str, Any]:
        def run():
            criteria = ArchiveCriteria(
                age_days=sanitize_number(age_days, "age_days", 0),
                importance=sanitize_number(importance, "importance", 0.0, 1.0),
                access_count=int(sanitize_number(access_count, "access_count", 0)),
            )
            archive_id = self.consolidation.archive_memories(criteria)
            return {"archive_id": archive_id}

        return self._call("archive_memories", run)

    # === Conversations ===

    def add_conversation_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        timestamp: Optional[Union[str, datetime]] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        def run():
            conversation = self.conversations.add_message(
                sanitize_string(conversation_id, "conversation_id", max_length=200),
                validate_enum(role, "role", ["user", "assistant", "system"], required=True),
                sanitize_string(content, "content", max_length=MAX_CONTENT_LENGTH),
                timestamp=_as_datetime(timestamp, "timestamp"),
                user_id=user_id,
            )
            if role == "user" and user_id:
                self.profiles.update_user_model(user_id, content)
            return {
                "conversation_id": conversation.conversation_id,
                "message_count": len(conversation.messages),
                "mood": conversation.mood,
            }

        return self._call("add_conversation_message", run)

    def get_conversation_summary(self, conversation_id: str) -> Dict[str, Any]:
        def run():
            key = sanitize_string(conversation_id, "conversation_id", max_length=200)
            summary = self.conversations.get_summary(key)
            if summary is None:
                raise NotFound(f"conversation {key} not found")
            return summary

        return self._call("get_conversation_summary", run)

    # === Knowledge graph ===

    def add_concept(
        self, concept: str, description: str = "", sources: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        def run():
            node = self.graph.add_concept(
                sanitize_string(concept, "concept", max_length=200),
                sanitize_string(description, "description", max_length=2000, required=False),
                sources=sources,
            )
            return node.to_dict()

        return self._call("add_concept", run)

    def link_concepts(
        self,
        concept_a: str,
        concept_b: str,
        relationship: str = "related_to",
        strength: float = 0.5,
        bidirectional: bool = False,
    ) -> Dict[str, Any]:
        def run():
            rel = validate_enum(
                relationship.value if isinstance(relationship, RelationshipType) else relationship,
                "relationship",
                RELATIONSHIP_TYPES,
                required=True,
            )
            self.graph.link_concepts(
                sanitize_string(concept_a, "concept_a", max_length=200),
                sanitize_string(concept_b, "concept_b", max_length=200),
                rel,
                strength=sanitize_number(strength, "strength", 0.0, 1.0),
                bidirectional=bool(bidirectional),
            )
            return {
                "source": normalize_concept(concept_a),
                "target": normalize_concept(concept_b),
                "relationship": rel,
            }

        return self._call("link_concepts", run)

    def find_related_concepts(self, concept: str, max_depth: Optional[int] = None) -> Dict[str, Any]:
        def run():
            depth = int(
                sanitize_number(max_depth, "max_depth", 1, 5, constants.DEFAULT_TRAVERSAL_DEPTH)
            )
            related = self.graph.find_related_concepts(
                sanitize_string(concept, "concept", max_length=200), depth
            )
            return {"related_concepts": [n.to_dict() for n in related]}

        return self._call("find_related_concepts", run)

    def infer_knowledge(self, premise: str) -> Dict[str, Any]:
        def run():
            text = sanitize_string(premise, "premise", max_length=MAX_CONTENT_LENGTH)
            return {"inferences": self.graph.infer_knowledge(text)}

        return self._call("infer_knowledge", run)

    def verify_fact(self, statement: str) -> Dict[str, Any]:
        def run():
            return self.graph.verify_fact(
                sanitize_string(statement, "statement", max_length=MAX_CONTENT_LENGTH)
            )

        return self._call("verify_fact", run)

    # === Episodes ===

    def record_episode(
        self,
        event: str,
        outcome: str,
        participants: Optional[List[str]] = None,
        location: Optional[str] = None,
        duration: Optional[float] = None,
        emotions: Optional[List[str]] = None,
        success: bool = True,
        context: ContextArg = None,
    ) -> Dict[str, Any]:
        def run():
            episode = self.episodes.record_episode(
                sanitize_string(event, "event", max_length=2000),
                sanitize_string(outcome, "outcome", max_length=2000),
                participants=sanitize_list(participants, "participants"),
                location=location,
                duration=(
                    sanitize_number(duration, "duration", 0) if duration is not None else None
                ),
                emotions=sanitize_list(emotions, "emotions"),
                success=bool(success),
                context=MemoryContext.from_dict(context),
            )
            return episode.to_dict()

        return self._call("record_episode", run)

    def get_episodic_timeline(
        self,
        user_id: Optional[str] = None,
        start: Optional[Union[str, datetime]] = None,
        end: Optional[Union[str, datetime]] = None,
    ) -> Dict[str, Any]:
        def run():
            timeline = self.episodes.get_timeline(
                user_id, _as_datetime(start, "start"), _as_datetime(end, "end")
            )
            return {"timeline": [e.to_dict() for e in timeline]}

        return self._call("get_episodic_timeline", run)

    def predict_outcome(self, scenario: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        def run():
            text = sanitize_string(scenario, "scenario", max_length=MAX_CONTENT_LENGTH)
            return self.episodes.predict_outcome(text, user_id)

        return self._call("predict_outcome", run)

    # === Users ===

    def get_user_preferences(self, user_id: str, category: Optional[str] = None) -> Dict[str, Any]:
        def run():
            prefs = self.profiles.get_preferences(
                sanitize_string(user_id, "user_id", max_length=200), category
            )
            return {
                "preferences": [
                    {
                        "category": p.category,
                        "preference": p.preference,
                        "strength": p.strength,
                        "context": p.context,
                        "updated_at": p.updated_at.isoformat(),
                    }
                    for p in prefs
                ]
            }

        return self._call("get_user_preferences", run)

    def set_user_preference(
        self,
        user_id: str,
        category: str,
        preference: str,
        strength: float = 0.5,
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        def run():
            pref = self.profiles.learn_preference(
                sanitize_string(user_id, "user_id", max_length=200),
                sanitize_string(category, "category", max_length=100),
                sanitize_string(preference, "preference", max_length=500),
                sanitize_number(strength, "strength", 0.0, 1.0),
                context,
            )
            return {"category": pref.category, "preference": pref.preference, "strength": pref.strength}

        return self._call("set_user_preference", run)

    def adapt_to_user(self, user_id: str, interaction: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
        """``interaction`` is a message string or ``{"content", "feedback"}``."""

        def run():
            payload = {"content": interaction} if isinstance(interaction, str) else dict(interaction or {})
            return self.profiles.adapt_to_user(
                sanitize_string(user_id, "user_id", max_length=200), payload
            )

        return self._call("adapt_to_user", run)

    def get_user_insights(self, user_id: str) -> Dict[str, Any]:
        def run():
            return self.profiles.get_user_insights(sanitize_string(user_id, "user_id", max_length=200))

        return self._call("get_user_insights", run)

    def close(self) -> None:
        self.storage.close()
