"""Tests for hybrid retrieval."""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from anamnesis.errors import ValidationError
from anamnesis.retrieval import (
    RetrievalEngine,
    context_bonus,
    keyword_relevance,
    matches_context,
)
from anamnesis.types import MemoryContext, MemoryQuery, MemoryType, utc_now
from anamnesis.vector_index import VectorIndex


@pytest.fixture
def retrieval(storage, index):
    return RetrievalEngine(storage, index)


@pytest.fixture
def add(storage, index, make_record):
    def _add(content, **kwargs):
        record = make_record(content, **kwargs)
        storage.store(record)
        index.add(record)
        return record

    return _add


# ---------------------------------------------------------------------------
# Scoring functions
# ---------------------------------------------------------------------------


class TestKeywordRelevance:
    def test_substring_hit(self):
        assert keyword_relevance("User prefers dark mode", "DARK MODE") == pytest.approx(0.9)

    def test_partial_overlap(self):
        # one of two query keywords present
        assert keyword_relevance("the garden needs water", "garden tools") == pytest.approx(0.35)

    def test_record_keywords_count(self):
        score = keyword_relevance("short text", "python", record_keywords=["python"])
        assert score == pytest.approx(0.7)

    def test_no_keywords_in_query(self):
        assert keyword_relevance("anything", "the of") == 0.0


class TestContextBonus:
    def test_new_record_without_context(self, make_record):
        assert context_bonus(make_record("x"), None) == pytest.approx(0.1, abs=1e-3)

    def test_old_record_gets_no_recency(self, make_record):
        assert context_bonus(make_record("x", days_old=400), None) == 0.0

    def test_access_bonus_is_capped(self, make_record):
        assert context_bonus(make_record("x", days_old=400, access_count=50), None) == pytest.approx(0.1)

    def test_scope_bonuses(self, make_record):
        record = make_record("x", days_old=400, user_id="u1", conversation_id="c1", workspace_id="w1")
        context = MemoryContext(user_id="u1", conversation_id="c1", workspace_id="w1")
        assert context_bonus(record, context) == pytest.approx(0.6)

    def test_matches_context(self, make_record):
        record = make_record("x", user_id="u1")
        assert matches_context(record, None)
        assert matches_context(record, MemoryContext(user_id="u1"))
        assert not matches_context(record, MemoryContext(user_id="u2"))
        assert not matches_context(record, MemoryContext(user_id="u1", conversation_id="c9"))


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    def test_dark_mode_example(self, retrieval, add):
        target = add("User prefers dark mode interface", type=MemoryType.PREFERENCE, importance=0.8)
        add("Meeting moved to Thursday")
        outcome = retrieval.search(MemoryQuery(query="dark mode"))
        top = outcome.results[0]
        assert top.record.id == target.id
        assert top.relevance_score > 0.8
        assert "Keyword match" in top.explanation
        assert outcome.degraded is False
        assert outcome.explanation == f"{len(outcome.results)} memories matched"

    def test_agreement_outranks_single_signal(self, retrieval, add):
        both = add("coffee brewing guide")
        add("notes about brewing")
        outcome = retrieval.search(MemoryQuery(query="coffee brewing guide"))
        assert outcome.results[0].record.id == both.id

    def test_empty_query_rejected(self, retrieval):
        with pytest.raises(ValidationError):
            retrieval.search(MemoryQuery(query="   "))

    def test_no_matches(self, retrieval, add):
        add("completely unrelated content")
        outcome = retrieval.search(MemoryQuery(query="xylophone"))
        assert outcome.results == []
        assert outcome.explanation == "No memories matched the query"

    def test_type_and_importance_filters(self, retrieval, add):
        add("project deadline is friday", type=MemoryType.TASK, importance=0.3)
        goal = add("project deadline goal", type=MemoryType.GOAL, importance=0.9)
        by_type = retrieval.search(MemoryQuery(query="project deadline", types=[MemoryType.GOAL]))
        assert [r.record.id for r in by_type.results] == [goal.id]
        by_importance = retrieval.search(MemoryQuery(query="project deadline", min_importance=0.5))
        assert [r.record.id for r in by_importance.results] == [goal.id]

    def test_time_range_filter(self, retrieval, add):
        add("weekly report draft", days_old=20)
        recent = add("weekly report final", days_old=1)
        window = (utc_now() - timedelta(days=7), utc_now())
        outcome = retrieval.search(MemoryQuery(query="weekly report", time_range=window))
        assert [r.record.id for r in outcome.results] == [recent.id]

    def test_context_is_a_hard_filter(self, retrieval, add):
        mine = add("favourite colour is green", user_id="u1")
        add("favourite colour is blue", user_id="u2")
        outcome = retrieval.search(
            MemoryQuery(query="favourite colour", context=MemoryContext(user_id="u1"))
        )
        assert [r.record.id for r in outcome.results] == [mine.id]

    def test_truncates_to_max_results(self, retrieval, add):
        for i in range(5):
            add(f"server log entry {i}")
        outcome = retrieval.search(MemoryQuery(query="server log", max_results=2))
        assert len(outcome.results) == 2

    def test_results_are_touched(self, retrieval, storage, add):
        record = add("remember the milk")
        retrieval.search(MemoryQuery(query="milk"))
        loaded = storage.get(record.id)
        assert loaded.access_count == 1
        assert loaded.last_accessed >= record.last_accessed

    def test_accessed_record_ranks_higher_on_tie(self, retrieval, storage, add):
        first = add("identical phrasing here")
        second = add("identical phrasing here")
        storage.record_access([second.id])
        outcome = retrieval.search(MemoryQuery(query="identical phrasing here"))
        assert outcome.results[0].record.id == second.id
        assert first.id in [r.record.id for r in outcome.results]

    def test_deleted_record_is_a_soft_miss(self, retrieval, storage, add):
        gone = add("temporary note about lunch")
        storage.delete(gone.id)
        outcome = retrieval.search(MemoryQuery(query="temporary note about lunch"))
        assert gone.id not in [r.record.id for r in outcome.results]

    def test_include_related(self, retrieval, add):
        budget = add("budget spreadsheet numbers")
        plan = add("alpha launch plan", relationships={budget.id})
        outcome = retrieval.search(MemoryQuery(query="alpha launch", include_related=True))
        ids = [r.record.id for r in outcome.results]
        assert ids[0] == plan.id
        related = next(r for r in outcome.results if r.record.id == budget.id)
        assert related.explanation == f"Related to {plan.id[:8]}"
        assert related.relevance_score == pytest.approx(outcome.results[0].relevance_score * 0.5)


class TestDegradedSearch:
    def test_embedding_failure_skips_semantic(self, storage, failing_embedder, make_record):
        storage.store(make_record("User prefers dark mode"))
        retrieval = RetrievalEngine(storage, VectorIndex(storage, failing_embedder))
        outcome = retrieval.search(MemoryQuery(query="dark mode"))
        assert outcome.degraded is True
        assert outcome.skipped_generators == ["semantic"]
        assert outcome.explanation == "Degraded search: skipped semantic"
        assert outcome.results[0].record.content == "User prefers dark mode"

    def test_stopwords_do_not_crowd_out_phrase_hits(self, storage, failing_embedder, make_record):
        for i in range(60):
            storage.store(make_record(f"notes from the meeting {i}", importance=0.9))
        target = make_record("what was said at the retro", importance=0.1)
        storage.store(target)
        retrieval = RetrievalEngine(storage, VectorIndex(storage, failing_embedder))
        outcome = retrieval.search(MemoryQuery(query="said at the retro", max_results=3))
        assert outcome.results[0].record.id == target.id

    def test_all_generators_failing(self, retrieval, add):
        add("anything at all")
        with patch.object(retrieval, "_keyword_candidates", side_effect=RuntimeError("db")), \
                patch.object(retrieval, "_semantic_candidates", side_effect=RuntimeError("vec")), \
                patch.object(retrieval, "_entity_candidates", side_effect=RuntimeError("ner")):
            outcome = retrieval.search(MemoryQuery(query="anything"))
        assert outcome.results == []
        assert outcome.degraded is True
        assert outcome.explanation == "All search strategies failed; no results available"

    def test_slow_search_is_logged(self, storage, index, caplog):
        retrieval = RetrievalEngine(storage, index, slow_query_seconds=1.0)
        ticks = iter([0.0, 10.0])
        with patch("anamnesis.retrieval.time.monotonic", side_effect=lambda: next(ticks, 10.0)):
            with caplog.at_level(logging.WARNING, logger="anamnesis.retrieval"):
                retrieval.search(MemoryQuery(query="slow"))
        assert "Slow search" in caplog.text


class TestFindSimilar:
    def test_neighbours_of_existing_record(self, retrieval, add):
        a = add("the quarterly sales report for europe")
        b = add("the quarterly sales report for asia")
        add("my cat likes tuna")
        results = retrieval.find_similar(a.id, threshold=0.5)
        assert [r.record.id for r in results] == [b.id]
        assert results[0].explanation.startswith("Vector similarity:")

    def test_unknown_record(self, retrieval):
        assert retrieval.find_similar("missing") == []
