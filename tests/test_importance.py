"""Tests for the importance model."""

import math
from datetime import timedelta

import pytest

from anamnesis.importance import (
    access_frequency_score,
    compute_importance,
    context_relevance,
    emotional_significance,
    recency_score,
    score_record,
    type_adjusted,
    uniqueness_score,
)
from anamnesis.types import MemoryContext, utc_now


class TestTerms:
    def test_recency_new_record_is_one(self):
        now = utc_now()
        assert recency_score(now, now) == pytest.approx(1.0)

    def test_recency_decays_to_one_over_e(self):
        now = utc_now()
        assert recency_score(now - timedelta(days=30), now) == pytest.approx(1 / math.e)

    def test_recency_future_timestamp_is_clamped(self):
        now = utc_now()
        assert recency_score(now + timedelta(days=3), now) == pytest.approx(1.0)

    def test_access_frequency(self):
        assert access_frequency_score(0) == 0.0
        assert access_frequency_score(100) == pytest.approx(1.0)
        assert access_frequency_score(5000) == 1.0
        assert 0 < access_frequency_score(3) < access_frequency_score(30) < 1

    def test_uniqueness(self):
        assert uniqueness_score([]) == 1.0
        assert uniqueness_score([0.2, 0.9]) == pytest.approx(0.1)
        assert uniqueness_score([1.2]) == 0.0

    def test_emotional_significance_uses_magnitude(self):
        assert emotional_significance(-0.6) == pytest.approx(0.6)


class TestContextRelevance:
    def test_no_active_context_is_neutral(self):
        assert context_relevance(MemoryContext(user_id="u1"), None) == 1.0

    def test_empty_active_context_is_neutral(self):
        assert context_relevance(MemoryContext(user_id="u1"), MemoryContext()) == 1.0

    def test_same_user(self):
        assert context_relevance(MemoryContext(user_id="u1"), MemoryContext(user_id="u1")) == pytest.approx(1.1)

    def test_boosts_multiply(self):
        record = MemoryContext(user_id="u1", conversation_id="c1")
        active = MemoryContext(user_id="u1", conversation_id="c1")
        assert context_relevance(record, active) == pytest.approx(1.1 * 1.2)

    def test_unrelated_context_is_penalised(self):
        assert context_relevance(MemoryContext(user_id="u1"), MemoryContext(user_id="u2")) == pytest.approx(0.9)


class TestCompute:
    def test_weighted_sum(self):
        value = compute_importance(
            recency=1.0, access_frequency=0.0, uniqueness=1.0, emotional=0.0, source_reliability=0.8
        )
        assert value == pytest.approx(0.62)

    def test_all_ones_is_one(self):
        value = compute_importance(
            recency=1, access_frequency=1, uniqueness=1, emotional=1, source_reliability=1
        )
        assert value == pytest.approx(1.0)

    def test_relevance_result_is_clamped(self):
        value = compute_importance(
            recency=1, access_frequency=1, uniqueness=1, emotional=1, source_reliability=1, relevance=1.32
        )
        assert value == 1.0

    def test_score_record_new_unique(self, make_record):
        record = make_record("A brand new observation")
        assert score_record(record) == pytest.approx(0.62, abs=1e-3)

    def test_score_record_near_duplicate_scores_lower(self, make_record):
        record = make_record("A brand new observation")
        assert score_record(record, [0.99]) < score_record(record, [])

    def test_type_adjusted(self):
        assert type_adjusted(0.5, "preference") == pytest.approx(0.7)
        assert type_adjusted(0.5, "task") == pytest.approx(0.4)
        assert type_adjusted(0.5, "observation") == 0.5
        assert type_adjusted(0.95, "preference") == 1.0
