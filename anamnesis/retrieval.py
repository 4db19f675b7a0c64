"""Hybrid memory retrieval.

Three independent candidate generators (keyword, semantic, entity) are
merged by record id with additive scores capped at 1.0, so agreement
between signals outranks any single strong signal. Hard filters are
applied next, then a context bonus, then truncation.

A generator that fails is logged and skipped; the query proceeds with
whatever signals remain.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from anamnesis import config
from anamnesis.errors import CollaboratorUnavailable, ValidationError
from anamnesis.importance import age_days
from anamnesis.storage.sqlite import SQLiteStorage
from anamnesis.text import STOP_WORDS, extract_entities, extract_keywords, tokenize
from anamnesis.types import (
    MemoryContext,
    MemoryQuery,
    MemoryRecord,
    MemorySearchResult,
    clamp01,
    utc_now,
)
from anamnesis.vector_index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    record: MemoryRecord
    score: float = 0.0
    reasons: List[str] = field(default_factory=list)

    def add(self, score: float, reason: str) -> None:
        self.score = min(1.0, self.score + score)
        self.reasons.append(reason)


@dataclass
class SearchOutcome:
    """Ranked results plus how they were produced."""

    results: List[MemorySearchResult]
    degraded: bool = False
    skipped_generators: List[str] = field(default_factory=list)
    explanation: str = ""


# === Pure scoring functions ===


def keyword_relevance(content: str, query: str, record_keywords: Optional[List[str]] = None) -> float:
    """0.9 for a case-insensitive substring hit, else keyword overlap x 0.7."""
    if query.lower().strip() and query.lower().strip() in content.lower():
        return config.KEYWORD_EXACT_SCORE
    query_keywords = extract_keywords(query)
    if not query_keywords:
        return 0.0
    content_keywords = set(extract_keywords(content, max_keywords=50))
    content_keywords.update(record_keywords or [])
    matched = sum(1 for k in query_keywords if k in content_keywords)
    return (matched / len(query_keywords)) * config.KEYWORD_OVERLAP_WEIGHT


def context_bonus(
    record: MemoryRecord, context: Optional[MemoryContext], now: Optional[datetime] = None
) -> float:
    """Recency, access and same-scope bonus added during final ranking."""
    bonus = max(0.0, 1.0 - age_days(record.created_at, now) / config.RECENCY_BONUS_HORIZON_DAYS)
    bonus *= config.RECENCY_BONUS_WEIGHT
    bonus += min(config.ACCESS_BONUS_CAP, record.access_count * config.ACCESS_BONUS_PER_HIT)
    if context is not None:
        if context.user_id and context.user_id == record.context.user_id:
            bonus += config.SAME_USER_BONUS
        if context.conversation_id and context.conversation_id == record.context.conversation_id:
            bonus += config.SAME_CONVERSATION_BONUS
        if context.workspace_id and context.workspace_id == record.context.workspace_id:
            bonus += config.SAME_WORKSPACE_BONUS
    return bonus


def matches_context(record: MemoryRecord, context: Optional[MemoryContext]) -> bool:
    if context is None:
        return True
    for wanted, actual in (
        (context.user_id, record.context.user_id),
        (context.conversation_id, record.context.conversation_id),
        (context.workspace_id, record.context.workspace_id),
    ):
        if wanted and wanted != actual:
            return False
    return True


def passes_filters(record: MemoryRecord, query: MemoryQuery) -> bool:
    if query.types and record.type not in query.types:
        return False
    if query.min_importance is not None and record.importance < query.min_importance:
        return False
    if query.time_range:
        start, end = query.time_range
        if start is not None and record.created_at < start:
            return False
        if end is not None and record.created_at > end:
            return False
    return matches_context(record, query.context)


class RetrievalEngine:
    """Hybrid keyword + semantic + entity search over a memory store."""

    EXACT_CANDIDATES = 200
    KEYWORD_CANDIDATES = 50
    ENTITY_CANDIDATES = 20

    def __init__(
        self,
        storage: SQLiteStorage,
        index: VectorIndex,
        semantic_threshold: float = config.SEMANTIC_THRESHOLD,
        slow_query_seconds: Optional[float] = None,
    ):
        self.storage = storage
        self.index = index
        self.semantic_threshold = semantic_threshold
        self.slow_query_seconds = slow_query_seconds

    # === Generators ===

    def _keyword_candidates(self, query: str) -> List[Tuple[MemoryRecord, float, str]]:
        # Whole-query hits are fetched on their own so common tokens cannot crowd them out
        records = self.storage.search_content([query.strip()], self.EXACT_CANDIDATES)
        seen = {record.id for record in records}
        terms = [t for t in tokenize(query) if len(t) > 2 and t not in STOP_WORDS]
        terms += extract_keywords(query)
        for record in self.storage.search_content(list(dict.fromkeys(terms)), self.KEYWORD_CANDIDATES):
            if record.id not in seen:
                seen.add(record.id)
                records.append(record)
        out = []
        for record in records:
            score = keyword_relevance(record.content, query, record.metadata.keywords)
            if score > 0:
                out.append((record, score, "Keyword match"))
        return out

    def _semantic_candidates(self, query: str) -> List[Tuple[MemoryRecord, float, str]]:
        hits = self.index.search_text(
            query, threshold=self.semantic_threshold, top_k=config.SEMANTIC_TOP_K
        )
        similarity = dict(hits)
        out = []
        # Ids deleted since indexing are simply absent here
        for record in self.storage.get_many([memory_id for memory_id, _ in hits]):
            sim = similarity[record.id]
            out.append(
                (record, sim * config.SEMANTIC_WEIGHT, f"Semantic similarity: {sim * 100:.1f}%")
            )
        return out

    def _entity_candidates(self, query: str) -> List[Tuple[MemoryRecord, float, str]]:
        out = []
        score = config.ENTITY_MATCH_SCORE * config.ENTITY_WEIGHT
        for entity in extract_entities(query):
            for record in self.storage.search_content([entity.name], self.ENTITY_CANDIDATES):
                out.append((record, score, f"Entity match: {entity.name}"))
        return out

    def _generators(self) -> List[Tuple[str, Callable[[str], List[Tuple[MemoryRecord, float, str]]]]]:
        return [
            ("keyword", self._keyword_candidates),
            ("semantic", self._semantic_candidates),
            ("entity", self._entity_candidates),
        ]

    # === Search ===

    def hybrid_search(self, query: str) -> Tuple[Dict[str, _Candidate], List[str]]:
        """Run every generator and merge by id. Returns (candidates, skipped generator names)."""
        merged: Dict[str, _Candidate] = {}
        skipped: List[str] = []
        for name, generator in self._generators():
            try:
                hits = generator(query)
            except CollaboratorUnavailable as e:
                logger.warning(f"{name} search skipped, collaborator unavailable: {e}")
                skipped.append(name)
                continue
            except Exception as e:
                logger.warning(f"{name} search failed: {e}", exc_info=True)
                skipped.append(name)
                continue
            for record, score, reason in hits:
                candidate = merged.setdefault(record.id, _Candidate(record=record))
                candidate.add(score, reason)
        return merged, skipped

    def search(self, query: MemoryQuery) -> SearchOutcome:
        """Rank memories for ``query``.

        Raises:
            ValidationError: the query text is empty.
        """
        if query is None or not isinstance(query.query, str) or not query.query.strip():
            raise ValidationError("query cannot be empty")
        text = query.query.strip()
        started = time.monotonic()
        candidates, skipped = self.hybrid_search(text)
        elapsed = time.monotonic() - started
        if self.slow_query_seconds is not None and elapsed > self.slow_query_seconds:
            logger.warning(f"Slow search ({elapsed:.2f}s) for {text[:40]!r}")

        filtered = [c for c in candidates.values() if passes_filters(c.record, query)]
        now = utc_now()
        for candidate in filtered:
            candidate.score = clamp01(candidate.score + context_bonus(candidate.record, query.context, now))

        filtered.sort(
            key=lambda c: (c.score, c.record.last_accessed, c.record.access_count),
            reverse=True,
        )
        top = filtered[: max(1, query.max_results)]
        results = [
            MemorySearchResult(record=c.record, relevance_score=c.score, explanation=" + ".join(c.reasons))
            for c in top
        ]
        if query.include_related:
            results = self._with_related(results, query)

        self.storage.record_access([r.record.id for r in results], now)
        for r in results:
            r.record.touch(now)

        degraded = bool(skipped)
        if len(skipped) == len(self._generators()):
            explanation = "All search strategies failed; no results available"
        elif degraded:
            explanation = f"Degraded search: skipped {', '.join(skipped)}"
        elif not results:
            explanation = "No memories matched the query"
        else:
            explanation = f"{len(results)} memories matched"
        logger.debug(f"search {text[:40]!r}: {explanation}")
        return SearchOutcome(
            results=results, degraded=degraded, skipped_generators=skipped, explanation=explanation
        )

    def _with_related(
        self, results: List[MemorySearchResult], query: MemoryQuery
    ) -> List[MemorySearchResult]:
        seen = {r.record.id for r in results}
        extra: List[MemorySearchResult] = []
        for result in results:
            related_ids = [i for i in result.record.relationships if i not in seen]
            for record in self.storage.get_many(related_ids):
                if not passes_filters(record, query):
                    continue
                seen.add(record.id)
                extra.append(
                    MemorySearchResult(
                        record=record,
                        relevance_score=result.relevance_score * 0.5,
                        explanation=f"Related to {result.record.id[:8]}",
                    )
                )
        return results + extra

    # === Record-centred lookups ===

    def find_similar(
        self, memory_id: str, limit: int = 5, threshold: float = 0.6
    ) -> List[MemorySearchResult]:
        """Records whose embeddings are closest to an existing record."""
        hits = [(i, s) for i, s in self.index.nearest_neighbors(memory_id, k=limit) if s >= threshold]
        similarity = dict(hits)
        return [
            MemorySearchResult(
                record=record,
                relevance_score=clamp01(similarity[record.id]),
                explanation=f"Vector similarity: {similarity[record.id] * 100:.1f}%",
            )
            for record in self.storage.get_many([i for i, _ in hits])
        ]
