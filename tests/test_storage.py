"""Tests for the SQLite storage backend."""

from datetime import timedelta

import pytest

from anamnesis.storage import GraphStore, MemoryStore, SQLiteStorage
from anamnesis.types import (
    ConversationMessage,
    KnowledgeNode,
    KnowledgeRelationship,
    MemoryFilter,
    MemoryType,
    NamedEntity,
    PersonalityProfile,
    RelationshipType,
    UserPreference,
    new_id,
    utc_now,
)


class TestMemoryStore:
    def test_implements_protocols(self, storage):
        assert isinstance(storage, MemoryStore)
        assert isinstance(storage, GraphStore)

    def test_store_and_get_roundtrip_keeps_typed_fields(self, storage, make_record):
        record = make_record("Alice works at Acme Corp", tags={"work", "people"}, user_id="u1")
        record.metadata.entities = [NamedEntity(name="Alice", type="person", mentions=2)]
        record.metadata.extra = {"episode": {"success": True}}
        storage.store(record)

        loaded = storage.get(record.id)
        assert loaded.content == record.content
        assert loaded.type == MemoryType.FACT
        assert loaded.tags == {"work", "people"}
        assert loaded.context.user_id == "u1"
        assert loaded.metadata.entities[0].mentions == 2
        assert loaded.metadata.extra["episode"]["success"] is True
        assert loaded.created_at == record.created_at

    def test_get_missing(self, storage):
        assert storage.get("nope") is None

    def test_get_many_skips_missing_and_keeps_order(self, storage, make_record):
        a = make_record("first")
        b = make_record("second")
        storage.store(a)
        storage.store(b)
        assert [r.id for r in storage.get_many([b.id, "missing", a.id])] == [b.id, a.id]

    def test_query_filters(self, storage, make_record):
        storage.store(make_record("old fact", days_old=40, importance=0.2, user_id="u1"))
        storage.store(make_record("new preference", type=MemoryType.PREFERENCE, importance=0.9, user_id="u1"))
        storage.store(make_record("other user", user_id="u2", tags={"x"}))

        assert len(storage.query()) == 3
        assert [r.content for r in storage.query(MemoryFilter(types=[MemoryType.PREFERENCE]))] == ["new preference"]
        assert len(storage.query(MemoryFilter(user_id="u1"))) == 2
        assert [r.content for r in storage.query(MemoryFilter(min_importance=0.8))] == ["new preference"]
        recent = storage.query(MemoryFilter(since=utc_now() - timedelta(days=1)))
        assert "old fact" not in [r.content for r in recent]
        assert [r.content for r in storage.query(MemoryFilter(tags=["x"]))] == ["other user"]
        assert len(storage.query(MemoryFilter(limit=1))) == 1

    def test_query_newest_first(self, storage, make_record):
        storage.store(make_record("older", days_old=5))
        storage.store(make_record("newer", days_old=1))
        assert [r.content for r in storage.query()] == ["newer", "older"]

    def test_update_and_delete(self, storage, make_record):
        record = make_record("draft")
        storage.store(record)
        record.content = "final"
        assert storage.update(record) is True
        assert storage.get(record.id).content == "final"
        assert storage.delete(record.id) is True
        assert storage.delete(record.id) is False
        assert storage.update(record) is False

    def test_record_access_never_moves_backwards(self, storage, make_record):
        record = make_record("accessed")
        storage.store(record)
        later = utc_now() + timedelta(hours=1)
        assert storage.record_access([record.id, "missing"], later) == 1
        storage.record_access([record.id], later - timedelta(days=1))
        loaded = storage.get(record.id)
        assert loaded.access_count == 2
        assert loaded.last_accessed == later

    def test_search_content_is_case_insensitive(self, storage, make_record):
        storage.store(make_record("User prefers Dark Mode"))
        storage.store(make_record("unrelated"))
        assert [r.content for r in storage.search_content(["dark mode"])] == ["User prefers Dark Mode"]
        assert storage.search_content([]) == []

    def test_replace_with_is_atomic_swap(self, storage, make_record):
        a, b = make_record("one"), make_record("two")
        storage.store(a)
        storage.store(b)
        summary = make_record("one and two", type=MemoryType.SUMMARY)
        assert storage.replace_with(summary, [a.id, b.id]) == 2
        assert storage.get(a.id) is None
        assert storage.get(summary.id) is not None
        assert storage.compressed_count() == 1

    def test_stats(self, storage, make_record):
        storage.store(make_record("a", importance=0.2))
        storage.store(make_record("b", importance=0.6, type=MemoryType.GOAL))
        stats = storage.memory_stats()
        assert stats["total"] == 2
        assert stats["avg_importance"] == pytest.approx(0.4)
        assert storage.count_by_type() == {"fact": 1, "goal": 1}
        assert storage.count(MemoryFilter(types=[MemoryType.GOAL])) == 1

    def test_embedding_cache(self, storage):
        assert storage.get_cached_embedding("h", "p") is None
        storage.put_cached_embedding("h", "p", [0.5, 0.25])
        assert storage.get_cached_embedding("h", "p") == [0.5, 0.25]
        assert storage.get_cached_embedding("h", "other") is None
        assert storage.embedding_cache_size() == 1

    def test_default_path_uses_data_dir(self, isolated_home):
        storage = SQLiteStorage()
        assert storage.db_path == (isolated_home / "memory.db").resolve()


class TestGraphStore:
    def _node(self, concept, **kwargs):
        return KnowledgeNode(id=new_id(), concept=concept, **kwargs)

    def test_upsert_keeps_id_and_confidence(self, storage):
        first = storage.upsert_node(self._node("python", description="a language", confidence=0.9))
        second = storage.upsert_node(self._node("python", description="a snake", sources=["web"], confidence=0.1))
        assert second.id == first.id
        assert second.confidence == pytest.approx(0.9)
        loaded = storage.get_node("python")
        assert loaded.description == "a snake"
        assert loaded.sources == ["web"]

    def test_link_edges_replaces_by_target_and_type(self, storage):
        storage.upsert_node(self._node("a"))
        storage.upsert_node(self._node("b"))
        storage.link_edges("a", [KnowledgeRelationship("b", RelationshipType.CAUSES, 0.3)])
        storage.link_edges("a", [KnowledgeRelationship("b", RelationshipType.CAUSES, 0.7)])
        edges = storage.get_node("a").relationships
        assert len(edges) == 1
        assert edges[0].strength == pytest.approx(0.7)

    def test_link_edges_unknown_source(self, storage):
        with pytest.raises(KeyError):
            storage.link_edges("ghost", [])

    def test_traverse_respects_depth_and_skips_dangling(self, storage):
        for concept in ("a", "b", "c"):
            storage.upsert_node(self._node(concept))
        storage.link_edges(
            "a",
            [
                KnowledgeRelationship("b", RelationshipType.RELATED_TO),
                KnowledgeRelationship("gone", RelationshipType.RELATED_TO),
            ],
        )
        storage.link_edges("b", [KnowledgeRelationship("c", RelationshipType.PART_OF)])
        storage.link_edges("c", [KnowledgeRelationship("a", RelationshipType.PART_OF)])

        assert [n.concept for n in storage.traverse("a", 1)] == ["b"]
        assert [n.concept for n in storage.traverse("a", 5)] == ["b", "c"]
        assert storage.traverse("missing", 2) == []

    def test_set_confidence_is_clamped(self, storage):
        storage.upsert_node(self._node("x"))
        storage.set_confidence("x", 1.7)
        assert storage.get_node("x").confidence == 1.0

    def test_penalized_flag_persists(self, storage):
        storage.upsert_node(self._node("a"))
        storage.upsert_node(self._node("b"))
        storage.link_edges("a", [KnowledgeRelationship("b", RelationshipType.CONTRADICTS, penalized=True)])
        assert storage.get_node("a").relationships[0].penalized is True


class TestConversationAndUserStores:
    def test_append_returns_ordered_history(self, storage):
        storage.append_message("c1", ConversationMessage(role="user", content="hi"), user_id="u1")
        conversation = storage.append_message("c1", ConversationMessage(role="assistant", content="hello"))
        assert [m.content for m in conversation.messages] == ["hi", "hello"]
        assert storage.conversation_count() == 1
        assert storage.get_conversation("nope") is None

    def test_save_state(self, storage):
        conversation = storage.append_message("c1", ConversationMessage(role="user", content="hi"))
        conversation.summary = "greeting"
        conversation.mood = "positive"
        conversation.key_topics = ["greeting"]
        storage.save_conversation_state(conversation)
        loaded = storage.get_conversation("c1")
        assert loaded.summary == "greeting"
        assert loaded.mood == "positive"
        assert loaded.key_topics == ["greeting"]

    def test_preference_last_write_wins(self, storage):
        storage.upsert_preference(UserPreference("u1", "technology", "dark mode", 0.4))
        storage.upsert_preference(UserPreference("u1", "technology", "dark mode", 0.9))
        storage.upsert_preference(UserPreference("u1", "food", "tea", 0.5))
        prefs = storage.get_preferences("u1")
        assert [(p.preference, p.strength) for p in prefs] == [("dark mode", 0.9), ("tea", 0.5)]
        assert len(storage.get_preferences("u1", "food")) == 1
        assert storage.get_preferences("u2") == []

    def test_profile_roundtrip(self, storage):
        assert storage.get_profile("u1") is None
        storage.save_profile(PersonalityProfile("u1", traits={"formality": 0.7}, interests=["music"]))
        profile = storage.get_profile("u1")
        assert profile.traits == {"formality": 0.7}
        assert profile.interests == ["music"]
