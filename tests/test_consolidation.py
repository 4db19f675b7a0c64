"""Tests for memory consolidation."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from anamnesis.consolidation import (
    ConsolidationEngine,
    are_similar,
    build_consolidated_record,
    compression_rank,
    merge_into,
    select_better,
    summarize_memory_cluster,
)
from anamnesis.knowledge import KnowledgeGraph
from anamnesis.types import ArchiveCriteria, MemoryType, utc_now


@pytest.fixture
def consolidation(storage, index):
    return ConsolidationEngine(storage, index)


def _store_all(storage, *records):
    for record in records:
        storage.store(record)
    return records


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_select_better_prefers_importance(self, make_record):
        low, high = make_record("a", importance=0.2), make_record("b", importance=0.9)
        assert select_better(low, high) is high

    def test_select_better_then_last_access(self, make_record):
        a, b = make_record("a"), make_record("b")
        b.last_accessed = a.last_accessed + timedelta(hours=1)
        assert select_better(a, b) is b

    def test_select_better_then_access_count(self, make_record):
        a, b = make_record("a"), make_record("b")
        b.last_accessed = a.last_accessed
        a.access_count = 4
        assert select_better(a, b) is a

    def test_merge_is_a_superset(self, make_record):
        survivor = make_record("x", tags={"a"}, access_count=2, relationships={"r1"}, importance=0.4)
        other = make_record("x", tags={"b"}, access_count=3, relationships={"r2"}, importance=0.6)
        merged = merge_into(survivor, other)
        assert merged.tags == {"a", "b"}
        assert merged.relationships == {"r1", "r2"}
        assert merged.access_count == 5
        assert merged.importance == pytest.approx(0.6)
        assert merged.metadata.extra["merged_from"] == [other.id]

    def test_are_similar_needs_time_window(self, make_record):
        a = make_record("release notes", tags={"release"}, days_old=40)
        b = make_record("release checklist", tags={"release"}, days_old=42)
        c = make_record("release retro", tags={"release"}, days_old=60)
        assert are_similar(a, b)
        assert not are_similar(a, c)

    def test_compression_rank(self):
        assert compression_rank(MemoryType.CONVERSATION) < compression_rank(MemoryType.PREFERENCE)
        assert compression_rank(MemoryType.SUMMARY) == compression_rank(MemoryType.PATTERN)

    def test_summary_sections(self, make_record):
        important = make_record("Launch is on Monday. Marketing is ready. Remember the press kit.", importance=0.9)
        regular = make_record("Bob asked about the Launch budget", importance=0.3, days_old=2)
        text = summarize_memory_cluster([important, regular])
        assert text.startswith("Summary of 2 related memories:")
        assert "Key Information:" in text
        assert "Additional Context:" in text
        assert "Keywords:" in text
        assert "Time period:" in text
        assert summarize_memory_cluster([]) == ""

    def test_consolidated_record_keeps_links(self, make_record):
        a = make_record("one", tags={"x"}, relationships={"ext-1"}, importance=0.4)
        b = make_record("two", tags={"y"}, relationships={"ext-2"}, importance=0.6)
        summary = build_consolidated_record(MemoryType.SUMMARY, [a, b], "text", {})
        assert summary.relationships == {"ext-1", "ext-2", a.id, b.id}
        assert summary.tags == {"x", "y", "compressed", "summary"}
        assert summary.importance == pytest.approx(0.6)
        assert summary.metadata.extra["original_memories"] == sorted([a.id, b.id])

    def test_summary_importance_is_capped(self, make_record):
        a, b = make_record("one", importance=0.9), make_record("two", importance=0.95)
        summary = build_consolidated_record(MemoryType.SUMMARY, [a, b], "text", {})
        assert summary.importance == pytest.approx(0.8)

    def test_archive_record_tags(self, make_record):
        archive = build_consolidated_record(MemoryType.ARCHIVE, [make_record("a")], "t", {}, importance=0.3)
        assert "archive" in archive.tags
        assert "summary" not in archive.tags


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestPrune:
    def test_merges_near_duplicates(self, consolidation, storage, make_record):
        a, b = _store_all(
            storage,
            make_record("User prefers dark mode", tags={"ui"}, access_count=1, importance=0.5),
            make_record("user prefers dark mode.", tags={"settings"}, access_count=2, importance=0.7),
        )
        assert consolidation.prune_redundant_memories() == 1
        assert storage.get(a.id) is None
        survivor = storage.get(b.id)
        assert survivor.tags == {"ui", "settings"}
        assert survivor.access_count == 3

    def test_distinct_records_untouched(self, consolidation, storage, make_record):
        _store_all(storage, make_record("alpha beta"), make_record("gamma delta"))
        assert consolidation.prune_redundant_memories() == 0
        assert storage.count() == 2


class TestCompression:
    def test_candidates(self, consolidation, storage, make_record):
        old_a, old_b, _, _, _ = _store_all(
            storage,
            make_record("deploy notes for billing", tags={"deploy"}, days_old=40, importance=0.3),
            make_record("deploy checklist billing", tags={"deploy"}, days_old=41, importance=0.3),
            make_record("grocery list eggs", tags={"home"}, days_old=45, importance=0.3),
            make_record("deploy notes recent", tags={"deploy"}, days_old=2, importance=0.3),
            make_record("deploy notes important", tags={"deploy"}, days_old=40, importance=0.9),
        )
        clusters = consolidation.identify_compression_candidates()
        assert len(clusters) == 1
        assert {m.id for m in clusters[0]} == {old_a.id, old_b.id}

    def test_compress_persists_reachable_summary(self, consolidation, storage, make_record):
        a, b = _store_all(
            storage,
            make_record("deploy notes for billing", tags={"deploy"}, days_old=40, importance=0.3,
                        relationships={"linked-elsewhere"}),
            make_record("deploy checklist billing", tags={"deploy"}, days_old=41, importance=0.4),
        )
        assert consolidation.compress_old_memories() == (2, 1)
        assert storage.get(a.id) is None
        assert storage.get(b.id) is None
        (summary,) = storage.query()
        assert summary.type == MemoryType.SUMMARY
        assert {a.id, b.id, "linked-elsewhere"} <= summary.relationships
        assert {"deploy", "compressed", "summary"} <= summary.tags
        assert summary.importance == pytest.approx(0.45)
        assert "Time period:" in summary.content

    def test_summaries_are_not_recompressed(self, consolidation, storage, make_record):
        _store_all(
            storage,
            make_record("old summary one", type=MemoryType.SUMMARY, tags={"s"}, days_old=40, importance=0.3),
            make_record("old summary two", type=MemoryType.SUMMARY, tags={"s"}, days_old=40, importance=0.3),
        )
        assert consolidation.compress_old_memories() == (0, 0)

    def test_failed_summary_write_keeps_originals(self, consolidation, storage, make_record):
        a, b = _store_all(
            storage,
            make_record("deploy notes", tags={"deploy"}, days_old=40, importance=0.3),
            make_record("deploy checklist", tags={"deploy"}, days_old=41, importance=0.3),
        )
        with patch.object(storage, "replace_with", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                consolidation.compress_old_memories()
        assert storage.get(a.id) is not None
        assert storage.get(b.id) is not None


class TestArchive:
    def test_archive_by_criteria(self, consolidation, storage, make_record):
        stale, _ = _store_all(
            storage,
            make_record("ancient trivia", days_old=200, importance=0.1),
            make_record("ancient but vital", days_old=200, importance=0.9),
        )
        archive_id = consolidation.archive_memories(ArchiveCriteria(age_days=180, importance=0.3, access_count=2))
        archive = storage.get(archive_id)
        assert archive.type == MemoryType.ARCHIVE
        assert stale.id in archive.relationships
        assert archive.metadata.extra["criteria"]["age_days"] == 180
        assert storage.get(stale.id) is None
        assert storage.count() == 2

    def test_nothing_to_archive(self, consolidation, storage, make_record):
        storage.store(make_record("fresh"))
        assert consolidation.archive_memories(ArchiveCriteria()) is None

    def test_archive_expired_uses_retention(self, consolidation, storage, make_record):
        expired, kept, summary = _store_all(
            storage,
            make_record("saw a bird", type=MemoryType.OBSERVATION, days_old=90, importance=0.3),
            make_record("likes jazz", type=MemoryType.PREFERENCE, days_old=90, importance=0.3),
            make_record("older summary", type=MemoryType.SUMMARY, days_old=900, importance=0.3),
        )
        archive_id = consolidation.archive_expired()
        assert storage.get(expired.id) is None
        assert storage.get(kept.id) is not None
        assert storage.get(summary.id) is not None
        assert expired.id in storage.get(archive_id).relationships

    def test_custom_retention(self, storage, index, make_record):
        storage.store(make_record("saw a bird", type=MemoryType.OBSERVATION, days_old=90, importance=0.3))
        engine = ConsolidationEngine(storage, index, retention_days={"observation": 365})
        assert engine.archive_expired() is None


class TestImportanceAndStats:
    def test_update_importance_scores(self, consolidation, storage, make_record):
        record = make_record("brand new", importance=0.1)
        storage.store(record)
        assert consolidation.update_importance_scores() == 1
        assert storage.get(record.id).importance == pytest.approx(0.72, abs=0.01)
        assert consolidation.update_importance_scores() == 0

    def test_rescoring_applies_type_adjustment(self, consolidation, storage, make_record):
        pref, task = _store_all(
            storage,
            make_record("likes green tea", type=MemoryType.PREFERENCE),
            make_record("water the plants", type=MemoryType.TASK),
        )
        consolidation.update_importance_scores()
        assert storage.get(pref.id).importance - storage.get(task.id).importance == pytest.approx(0.3, abs=0.01)

    def test_explicit_importance_is_a_floor(self, consolidation, storage, make_record):
        record = make_record("renew the passport", importance=0.95)
        record.metadata.extra["explicit_importance"] = 0.95
        storage.store(record)
        consolidation.update_importance_scores()
        assert storage.get(record.id).importance == pytest.approx(0.95)

    def test_older_records_score_lower(self, consolidation, storage, make_record):
        new, old = _store_all(storage, make_record("new thing"), make_record("old thing", days_old=90))
        consolidation.update_importance_scores()
        assert storage.get(new.id).importance > storage.get(old.id).importance

    def test_compression_stats(self, consolidation, storage, make_record):
        assert consolidation.get_compression_stats()["compression_ratio"] == 0.0
        _store_all(storage, make_record("a"), make_record("b", type=MemoryType.SUMMARY))
        stats = consolidation.get_compression_stats()
        assert stats == {"total_memories": 2, "compressed_memories": 1, "compression_ratio": 0.5}


class TestOptimize:
    def test_full_sweep(self, consolidation, storage, make_record):
        _store_all(
            storage,
            make_record("saw a bird", type=MemoryType.OBSERVATION, days_old=90, importance=0.3),
            make_record("dup entry here"),
            make_record("dup entry here"),
        )
        graph = KnowledgeGraph(storage)
        graph.link_concepts("x", "y", "contradicts")
        report = consolidation.optimize(graph)
        assert report.merged == 1
        assert report.archived == 1
        assert report.contradictions == 1
        assert report.indexed == storage.count()
        assert report.errors == []

    def test_failing_step_is_reported_and_sweep_continues(self, consolidation, storage, make_record):
        storage.store(make_record("something"))
        with patch.object(consolidation, "compress_old_memories", side_effect=RuntimeError("boom")):
            report = consolidation.optimize()
        assert report.errors == ["compress: boom"]
        assert report.indexed == 1
        assert set(report.to_dict()) >= {"merged", "compressed", "archived", "errors"}
