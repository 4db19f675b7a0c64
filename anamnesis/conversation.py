"""Per-conversation memory.

Every append persists the message and then recomputes the derived fields
(summary, key topics, mood, follow-ups) from the full ordered history.
The derived fields are never edited independently.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from anamnesis import config
from anamnesis.errors import ValidationError
from anamnesis.storage.sqlite import SQLiteStorage
from anamnesis.text import analyze_sentiment, analyze_text, extract_entities
from anamnesis.types import ConversationMemory, ConversationMessage, clamp01, utc_now

logger = logging.getLogger(__name__)

VALID_ROLES = ("user", "assistant", "system")


def message_importance(role: str, content: str, info: Dict[str, List[str]]) -> float:
    importance = config.DEFAULT_IMPORTANCE
    if role == "user":
        importance += 0.2
    if info.get("facts"):
        importance += 0.1 * min(len(info["facts"]), 3)
    if info.get("preferences"):
        importance += 0.3
    if info.get("questions"):
        importance += 0.15
    if info.get("requests"):
        importance += 0.2
    importance += 0.1 * len(info.get("emotions", []))
    importance += min(0.1, len(content) / 1000)
    return clamp01(importance)


def mood_of(messages: List[ConversationMessage]) -> str:
    """Average sentiment of the last MOOD_WINDOW messages, bucketed."""
    recent = messages[-config.MOOD_WINDOW :]
    if not recent:
        return "neutral"
    average = sum(m.sentiment for m in recent) / len(recent)
    if average > config.MOOD_THRESHOLD:
        return "positive"
    if average < -config.MOOD_THRESHOLD:
        return "negative"
    return "neutral"


def summarize(messages: List[ConversationMessage]) -> str:
    if not messages:
        return "No conversation to summarize"
    user_count = sum(1 for m in messages if m.role == "user")
    assistant_count = sum(1 for m in messages if m.role == "assistant")
    topics: Dict[str, None] = {}
    facts: Dict[str, None] = {}
    requests: Dict[str, None] = {}
    for message in messages:
        info = message.extracted_info
        topics.update(dict.fromkeys(info.get("entities", [])))
        facts.update(dict.fromkeys(info.get("facts", [])))
        requests.update(dict.fromkeys(info.get("requests", [])))

    parts = [
        f"Conversation with {user_count} user messages and {assistant_count} assistant responses."
    ]
    if topics:
        parts.append(f"Main topics: {', '.join(list(topics)[:5])}.")
    if facts:
        parts.append(f"Key facts discussed: {'; '.join(list(facts)[:3])}.")
    if requests:
        parts.append(f"User requests: {'; '.join(list(requests)[:3])}.")
    return " ".join(parts)


def follow_up_actions(messages: List[ConversationMessage], mood: str) -> List[str]:
    """Questions with no later assistant reply, requests not yet answered, and mood."""
    pending_questions: List[str] = []
    pending_requests: List[str] = []
    for i, message in enumerate(messages):
        if message.role != "user":
            continue
        answered = any(m.role == "assistant" for m in messages[i + 1 :])
        if answered:
            continue
        pending_questions.extend(q for q in message.extracted_info.get("questions", []) if q)
        pending_requests.extend(r for r in message.extracted_info.get("requests", []) if r)

    actions = []
    if pending_questions:
        actions.append(f"Answer pending questions: {', '.join(pending_questions[:2])}")
    if pending_requests:
        actions.append(f"Complete requests: {', '.join(pending_requests[:2])}")
    if mood == "negative":
        actions.append("Address user concerns or frustrations")
    return actions


def key_topics(messages: List[ConversationMessage]) -> List[str]:
    topics: Dict[str, None] = {}
    for message in messages:
        for entity in extract_entities(message.content):
            if entity.confidence >= 0.7:
                topics[entity.name] = None
    return list(topics)[:10]


class ConversationMemoryService:
    """Conversation history and its derived state."""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        timestamp: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> ConversationMemory:
        if not conversation_id or not conversation_id.strip():
            raise ValidationError("conversation_id cannot be empty")
        if role not in VALID_ROLES:
            raise ValidationError(f"role must be one of {', '.join(VALID_ROLES)}")
        if not content or not content.strip():
            raise ValidationError("content cannot be empty")

        info = analyze_text(content)
        message = ConversationMessage(
            role=role,
            content=content,
            timestamp=timestamp or utc_now(),
            importance=message_importance(role, content, info),
            extracted_info=info,
            sentiment=analyze_sentiment(content),
        )
        conversation = self.storage.append_message(conversation_id, message, user_id)
        self._recompute(conversation)
        self.storage.save_conversation_state(conversation)
        return conversation

    def _recompute(self, conversation: ConversationMemory) -> None:
        messages = conversation.messages
        conversation.summary = summarize(messages)
        conversation.key_topics = key_topics(messages)
        conversation.mood = mood_of(messages)
        conversation.follow_up_needed = follow_up_actions(messages, conversation.mood)
        conversation.updated_at = utc_now()

    def get_context(self, conversation_id: str) -> Optional[ConversationMemory]:
        return self.storage.get_conversation(conversation_id)

    def extract_important_messages(
        self, conversation_id: str, threshold: float = 0.6, limit: int = 10
    ) -> List[ConversationMessage]:
        conversation = self.get_context(conversation_id)
        if conversation is None:
            return []
        important = [m for m in conversation.messages if m.importance > threshold]
        important.sort(key=lambda m: m.importance, reverse=True)
        return important[:limit]

    def get_summary(self, conversation_id: str) -> Optional[Dict[str, object]]:
        """{summary, important_messages, follow_up_actions}, or None if unknown."""
        conversation = self.get_context(conversation_id)
        if conversation is None:
            return None
        return {
            "summary": conversation.summary,
            "important_messages": [
                {
                    "role": m.role,
                    "content": m.content,
                    "timestamp": m.timestamp.isoformat(),
                    "importance": round(m.importance, 4),
                }
                for m in self.extract_important_messages(conversation_id)
            ],
            "follow_up_actions": list(conversation.follow_up_needed),
            "mood": conversation.mood,
            "key_topics": list(conversation.key_topics),
            "message_count": len(conversation.messages),
        }
