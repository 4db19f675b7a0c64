"""Importance model.

Each term is a pure function so it can be unit tested on its own;
:func:`compute_importance` combines them with the weights from
:mod:`anamnesis.config`.
"""

import math
from datetime import datetime
from typing import Iterable, Optional

from anamnesis import config
from anamnesis.types import MemoryContext, MemoryRecord, clamp01, utc_now


def age_days(created_at: datetime, now: Optional[datetime] = None) -> float:
    now = now or utc_now()
    return max(0.0, (now - created_at).total_seconds() / 86400.0)


def recency_score(created_at: datetime, now: Optional[datetime] = None) -> float:
    """Exponential age decay: 1.0 for a new record, 1/e after RECENCY_DECAY_DAYS."""
    return math.exp(-age_days(created_at, now) / config.RECENCY_DECAY_DAYS)


def access_frequency_score(access_count: int) -> float:
    """log-scaled access count, saturating at ACCESS_SATURATION accesses."""
    if access_count <= 0:
        return 0.0
    return clamp01(math.log1p(access_count) / math.log1p(config.ACCESS_SATURATION))


def uniqueness_score(neighbor_similarities: Iterable[float]) -> float:
    """1 - similarity to the closest neighbour; 1.0 when there are none."""
    sims = list(neighbor_similarities)
    if not sims:
        return 1.0
    return clamp01(1.0 - max(sims))


def emotional_significance(sentiment: float) -> float:
    return clamp01(abs(sentiment))


def context_relevance(
    record_context: MemoryContext, active_context: Optional[MemoryContext]
) -> float:
    """Multiplier that favours records sharing the caller's scope.

    No active context (e.g. a consolidation sweep) is neutral.
    """
    if active_context is None:
        return 1.0
    factor = 1.0
    matched = False
    pairs = (
        (record_context.user_id, active_context.user_id, config.CONTEXT_BOOST_USER),
        (
            record_context.workspace_id,
            active_context.workspace_id,
            config.CONTEXT_BOOST_WORKSPACE,
        ),
        (
            record_context.conversation_id,
            active_context.conversation_id,
            config.CONTEXT_BOOST_CONVERSATION,
        ),
    )
    for mine, theirs, boost in pairs:
        if mine and theirs and mine == theirs:
            factor *= boost
            matched = True
    if not matched and any(theirs for _, theirs, _ in pairs):
        factor = config.CONTEXT_UNRELATED
    return factor


def compute_importance(
    *,
    recency: float,
    access_frequency: float,
    uniqueness: float,
    emotional: float,
    source_reliability: float,
    relevance: float = 1.0,
) -> float:
    base = (
        config.IMPORTANCE_WEIGHT_RECENCY * recency
        + config.IMPORTANCE_WEIGHT_ACCESS * access_frequency
        + config.IMPORTANCE_WEIGHT_UNIQUENESS * uniqueness
        + config.IMPORTANCE_WEIGHT_EMOTION * emotional
        + config.IMPORTANCE_WEIGHT_SOURCE * source_reliability
    )
    return clamp01(clamp01(base) * relevance)


def score_record(
    record: MemoryRecord,
    neighbor_similarities: Iterable[float] = (),
    active_context: Optional[MemoryContext] = None,
    now: Optional[datetime] = None,
) -> float:
    """Importance of an existing record under the model."""
    return compute_importance(
        recency=recency_score(record.created_at, now),
        access_frequency=access_frequency_score(record.access_count),
        uniqueness=uniqueness_score(neighbor_similarities),
        emotional=emotional_significance(record.metadata.sentiment),
        source_reliability=record.source.reliability,
        relevance=context_relevance(record.context, active_context),
    )


def type_adjusted(importance: float, memory_type: str) -> float:
    """Apply the per-type adjustment used for caller-less importance."""
    return clamp01(importance + config.TYPE_IMPORTANCE_ADJUSTMENT.get(memory_type, 0.0))
