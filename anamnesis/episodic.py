"""Episodic memory: experiences, their lessons, and outcome hints.

Episodes are stored as EXPERIENCE records whose metadata carries the
structured episode, so they take part in ordinary recall and
consolidation as well.
"""

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from anamnesis.errors import CollaboratorUnavailable, ValidationError
from anamnesis.storage.embeddings import cosine_similarity
from anamnesis.storage.sqlite import SQLiteStorage
from anamnesis.text import (
    analyze_sentiment,
    extract_entities,
    extract_keywords,
    extract_topics,
    overlap_ratio,
)
from anamnesis.types import (
    EpisodicMemory,
    MemoryContext,
    MemoryFilter,
    MemoryMetadata,
    MemoryRecord,
    MemorySource,
    MemoryType,
    clamp01,
    new_id,
    parse_datetime,
)
from anamnesis.vector_index import VectorIndex

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.3
MAX_SIMILAR = 10
MAX_RELATED = 5
NEGATIVE_EMOTIONS = ("frustration", "frustrated", "anger", "angry")


def normalize_event(event: str) -> str:
    collapsed = re.sub(r"[^\w\s]", "", event.lower())
    return re.sub(r"\s+", " ", collapsed).strip()


def extract_lessons(episode: EpisodicMemory) -> List[str]:
    lessons = []
    if episode.success:
        lessons.append(f"Successful approach: {episode.event} led to {episode.outcome}")
        if episode.participants:
            lessons.append(f"Effective collaboration with: {', '.join(episode.participants)}")
    else:
        lessons.append(f"Avoid: {episode.event} as it resulted in {episode.outcome}")
        if any(e.lower() in NEGATIVE_EMOTIONS for e in episode.emotions):
            lessons.append("Consider emotional management strategies for similar situations")
    if episode.duration and episode.duration > 3600:
        lessons.append("Consider breaking down similar tasks into smaller chunks")
    return lessons


def _episode_payload(episode: EpisodicMemory) -> Dict[str, object]:
    payload = episode.to_dict()
    payload.pop("id")
    payload.pop("created_at")
    return payload


def record_to_episode(record: MemoryRecord) -> Optional[EpisodicMemory]:
    data = record.metadata.extra.get("episode")
    if not isinstance(data, dict):
        return None
    return EpisodicMemory(
        id=record.id,
        event=data.get("event", ""),
        outcome=data.get("outcome", ""),
        participants=list(data.get("participants", [])),
        location=data.get("location"),
        duration=data.get("duration"),
        emotions=list(data.get("emotions", [])),
        success=bool(data.get("success", False)),
        lessons=list(data.get("lessons", [])),
        related_episodes=sorted(record.relationships),
        user_id=record.context.user_id,
        created_at=record.created_at,
    )


class EpisodicMemoryService:
    """Record episodes and reason over them."""

    def __init__(self, storage: SQLiteStorage, index: VectorIndex):
        self.storage = storage
        self.index = index

    def record_episode(
        self,
        event: str,
        outcome: str,
        *,
        participants: Optional[List[str]] = None,
        location: Optional[str] = None,
        duration: Optional[float] = None,
        emotions: Optional[List[str]] = None,
        success: bool = True,
        content: Optional[str] = None,
        context: Optional[MemoryContext] = None,
        importance: float = 0.6,
    ) -> EpisodicMemory:
        if not event or not event.strip():
            raise ValidationError("event cannot be empty")
        if not outcome or not outcome.strip():
            raise ValidationError("outcome cannot be empty")
        context = context or MemoryContext()
        episode = EpisodicMemory(
            id=new_id(),
            event=event.strip(),
            outcome=outcome.strip(),
            participants=list(participants or []),
            location=location,
            duration=duration,
            emotions=list(emotions or []),
            success=success,
            user_id=context.user_id,
        )
        episode.lessons = extract_lessons(episode)
        text = content or f"{episode.event}: {episode.outcome}"

        similar = self.find_similar_experiences(episode.event, user_id=context.user_id)
        episode.related_episodes = [e.id for e, _ in similar[:MAX_RELATED]]

        record = MemoryRecord(
            id=episode.id,
            type=MemoryType.EXPERIENCE,
            content=text,
            importance=importance,
            tags={"episode", "success" if success else "failure", *(e.lower() for e in episode.emotions)},
            relationships=set(episode.related_episodes),
            created_at=episode.created_at,
            source=MemorySource(type="system", identifier="episodic", reliability=0.8),
            context=context,
            metadata=MemoryMetadata(
                topics=extract_topics(text),
                entities=extract_entities(text),
                keywords=extract_keywords(text),
                sentiment=analyze_sentiment(f"{text} {' '.join(episode.emotions)}"),
                extra={"episode": _episode_payload(episode)},
            ),
        )
        self.storage.store(record)
        try:
            self.index.add(record)
        except CollaboratorUnavailable as e:
            logger.warning(f"Episode {record.id} stored without embedding: {e}")
        self._link_back(record.id, episode.related_episodes)
        return episode

    def _link_back(self, episode_id: str, related_ids: List[str]) -> None:
        for related in self.storage.get_many(related_ids):
            related.relationships.add(episode_id)
            self.storage.update(related)

    def _episodes(self, user_id: Optional[str] = None) -> List[Tuple[MemoryRecord, EpisodicMemory]]:
        records = self.storage.query(MemoryFilter(types=[MemoryType.EXPERIENCE], user_id=user_id))
        out = []
        for record in records:
            episode = record_to_episode(record)
            if episode is not None:
                out.append((record, episode))
        return out

    def get_episode(self, episode_id: str) -> Optional[EpisodicMemory]:
        record = self.storage.get(episode_id)
        return record_to_episode(record) if record else None

    def get_timeline(
        self,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[EpisodicMemory]:
        """Episodes for a user within [start, end], newest first."""
        if isinstance(start, str):
            start = parse_datetime(start)
        if isinstance(end, str):
            end = parse_datetime(end)
        records = self.storage.query(
            MemoryFilter(types=[MemoryType.EXPERIENCE], user_id=user_id, since=start, until=end)
        )
        episodes = [e for e in (record_to_episode(r) for r in records) if e is not None]
        episodes.sort(key=lambda e: e.created_at, reverse=True)
        return episodes[:limit]

    def find_similar_experiences(
        self, description: str, user_id: Optional[str] = None
    ) -> List[Tuple[EpisodicMemory, float]]:
        """Nearest past episodes by embedding, falling back to keyword overlap."""
        keywords = extract_keywords(description)
        try:
            query_vec: Optional[List[float]] = self.index.embed_text(description)
        except CollaboratorUnavailable as e:
            logger.warning(f"Episode similarity without embeddings: {e}")
            query_vec = None

        scored = []
        for record, episode in self._episodes(user_id):
            similarity = overlap_ratio(keywords, record.metadata.keywords or extract_keywords(record.content))
            if query_vec is not None and record.embedding:
                similarity = max(similarity, cosine_similarity(query_vec, record.embedding))
            if similarity >= SIMILARITY_THRESHOLD:
                scored.append((episode, similarity))
        scored.sort(key=lambda item: (item[1], item[0].created_at), reverse=True)
        return scored[:MAX_SIMILAR]

    def predict_outcome(self, scenario: str, user_id: Optional[str] = None) -> Dict[str, object]:
        """A hint from similar past episodes, not a guarantee."""
        if not scenario or not scenario.strip():
            raise ValidationError("scenario cannot be empty")
        similar = [e for e, _ in self.find_similar_experiences(scenario, user_id)]
        if not similar:
            return {
                "prediction": "No similar experiences found to predict outcome.",
                "similar_count": 0,
                "success_rate": None,
                "likely_outcomes": [],
                "challenges": [],
                "lessons": [],
            }
        successes = [e.outcome for e in similar if e.success]
        failures = [e.outcome for e in similar if not e.success]
        success_rate = len(successes) / len(similar)
        lessons = list(dict.fromkeys(lesson for e in similar for lesson in e.lessons))[:3]

        lines = [f"Based on {len(similar)} similar experiences:", f"Success rate: {success_rate * 100:.1f}%"]
        if successes:
            lines.append("Likely positive outcomes:")
            lines.extend(f"- {o}" for o in successes[:3])
        if failures:
            lines.append("Potential challenges:")
            lines.extend(f"- {o}" for o in failures[:3])
        if lessons:
            lines.append("Key lessons from past experiences:")
            lines.extend(f"- {lesson}" for lesson in lessons)
        return {
            "prediction": "\n".join(lines),
            "similar_count": len(similar),
            "success_rate": round(success_rate, 4),
            "likely_outcomes": successes[:3],
            "challenges": failures[:3],
            "lessons": lessons,
        }

    def extract_patterns(self, user_id: Optional[str] = None) -> List[Dict[str, object]]:
        """Events seen at least twice, with their success rate."""
        groups: Dict[str, List[EpisodicMemory]] = defaultdict(list)
        for _, episode in self._episodes(user_id):
            groups[normalize_event(episode.event)].append(episode)
        patterns = []
        for event_key, episodes in groups.items():
            if len(episodes) < 2:
                continue
            successes = sum(1 for e in episodes if e.success)
            patterns.append(
                {
                    "description": f"Pattern for: {event_key}",
                    "frequency": len(episodes),
                    "confidence": min(0.9, len(episodes) * 0.2),
                    "related_episodes": [e.id for e in episodes],
                    "predictive_value": successes / len(episodes),
                }
            )
        patterns.sort(key=lambda p: p["frequency"], reverse=True)
        return patterns

    def save_patterns(self, user_id: Optional[str] = None) -> List[str]:
        """Persist extracted patterns as PATTERN records, replacing earlier ones."""
        existing = {
            r.metadata.extra.get("pattern_key"): r
            for r in self.storage.query(MemoryFilter(types=[MemoryType.PATTERN], user_id=user_id))
        }
        ids = []
        for pattern in self.extract_patterns(user_id):
            key = pattern["description"]
            record = existing.get(key)
            if record is None:
                record = MemoryRecord(
                    id=new_id(),
                    type=MemoryType.PATTERN,
                    content=str(key),
                    tags={"pattern", "episodic"},
                    source=MemorySource(type="system", identifier="pattern-extraction"),
                    context=MemoryContext(user_id=user_id),
                )
            record.importance = clamp01(pattern["confidence"])
            record.confidence = clamp01(pattern["confidence"])
            record.relationships = set(pattern["related_episodes"])
            record.metadata.extra = {"pattern_key": key, "pattern": pattern}
            if key in existing:
                self.storage.update(record)
            else:
                self.storage.store(record)
            ids.append(record.id)
        return ids
