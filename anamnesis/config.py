"""Tunable constants and runtime configuration.

Every weight and threshold used by the scoring functions lives here as a
named constant so the formulas in :mod:`anamnesis.importance` and
:mod:`anamnesis.retrieval` stay pure and independently testable.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Importance model
IMPORTANCE_WEIGHT_RECENCY = 0.3
IMPORTANCE_WEIGHT_ACCESS = 0.2
IMPORTANCE_WEIGHT_UNIQUENESS = 0.2
IMPORTANCE_WEIGHT_EMOTION = 0.15
IMPORTANCE_WEIGHT_SOURCE = 0.15
RECENCY_DECAY_DAYS = 30.0  # e-folding time of the recency term
ACCESS_SATURATION = 100  # access count at which the frequency term reaches 1.0
CONTEXT_BOOST_USER = 1.1
CONTEXT_BOOST_WORKSPACE = 1.1
CONTEXT_BOOST_CONVERSATION = 1.2
CONTEXT_UNRELATED = 0.9

DEFAULT_IMPORTANCE = 0.5
DEFAULT_CONFIDENCE = 0.8
DEFAULT_SOURCE_RELIABILITY = 0.8

# Adjustment applied when the caller does not supply an importance
TYPE_IMPORTANCE_ADJUSTMENT: Dict[str, float] = {
    "preference": 0.2,
    "goal": 0.15,
    "fact": 0.1,
    "task": -0.1,
}

# Retrieval
KEYWORD_EXACT_SCORE = 0.9
KEYWORD_OVERLAP_WEIGHT = 0.7
SEMANTIC_WEIGHT = 0.8
SEMANTIC_THRESHOLD = 0.5
SEMANTIC_TOP_K = 20
ENTITY_MATCH_SCORE = 0.6
ENTITY_WEIGHT = 0.3
RECENCY_BONUS_WEIGHT = 0.1
RECENCY_BONUS_HORIZON_DAYS = 365.0
ACCESS_BONUS_PER_HIT = 0.01
ACCESS_BONUS_CAP = 0.1
SAME_USER_BONUS = 0.2
SAME_CONVERSATION_BONUS = 0.3
SAME_WORKSPACE_BONUS = 0.1
DEFAULT_MAX_RESULTS = 10

# Knowledge graph
CONCEPT_SIMILARITY_THRESHOLD = 0.7
VERIFY_CONFIDENCE_THRESHOLD = 0.6
CONTRADICTION_PENALTY = 0.8
MAX_INFERENCES = 10
INFERENCE_DEPTH = 2
DEFAULT_TRAVERSAL_DEPTH = 2

# Consolidation
DUPLICATE_THRESHOLD = 0.95
COMPRESSION_MIN_AGE_DAYS = 30
COMPRESSION_MAX_ACCESS = 3
COMPRESSION_MAX_IMPORTANCE = 0.7
CLUSTER_TAG_OVERLAP = 0.3
CLUSTER_KEYWORD_OVERLAP = 0.4
CLUSTER_WINDOW_DAYS = 7
SUMMARY_IMPORTANT_THRESHOLD = 0.6
SUMMARY_SENTENCES = 2
SUMMARY_IMPORTANCE_BOOST = 0.1
SUMMARY_IMPORTANCE_CAP = 0.8

RETENTION_DAYS: Dict[str, int] = {
    "conversation": 90,
    "fact": 365,
    "preference": 730,
    "skill": 365,
    "experience": 180,
    "relationship": 365,
    "goal": 365,
    "task": 30,
    "knowledge": 730,
    "observation": 60,
}

# Lower index is compressed first
COMPRESSION_PRIORITY: Tuple[str, ...] = (
    "conversation",
    "observation",
    "task",
    "experience",
    "fact",
    "skill",
    "relationship",
    "goal",
    "knowledge",
    "preference",
)

ALLOWED_SOURCES = frozenset({"chat", "file", "web", "user_input", "system", "inference"})

# Conversation / profile
MOOD_WINDOW = 10
MOOD_THRESHOLD = 0.3
TRAIT_NUDGE_MIN = 0.02
TRAIT_NUDGE_MAX = 0.1


@dataclass
class MemoryConfig:
    """Runtime configuration for a :class:`~anamnesis.core.MemoryEngine`."""

    db_path: Optional[str] = None
    embedding_provider: str = "hash"  # hash | openai | ollama
    embedding_model: Optional[str] = None
    embedding_dimension: int = 384
    embedding_timeout: float = 10.0
    embedding_retry_backoff: float = 0.5
    search_timeout: float = 5.0
    max_results: int = DEFAULT_MAX_RESULTS
    semantic_threshold: float = SEMANTIC_THRESHOLD
    retention_days: Dict[str, int] = field(default_factory=lambda: dict(RETENTION_DAYS))
    log_level: str = "INFO"
    allowed_sources: frozenset = ALLOWED_SOURCES
    enabled: bool = True

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Build a config from ``ANAMNESIS_*`` environment variables."""
        config = cls()
        config.db_path = os.environ.get("ANAMNESIS_DB_PATH") or None
        config.embedding_provider = os.environ.get(
            "ANAMNESIS_EMBEDDING_PROVIDER", config.embedding_provider
        ).lower()
        config.embedding_model = os.environ.get("ANAMNESIS_EMBEDDING_MODEL") or None
        config.log_level = os.environ.get("ANAMNESIS_LOG_LEVEL", config.log_level)
        config.enabled = os.environ.get("ANAMNESIS_ENABLED", "true").lower() not in ("0", "false", "no")

        for attr, env, cast in (
            ("embedding_dimension", "ANAMNESIS_EMBEDDING_DIMENSION", int),
            ("embedding_timeout", "ANAMNESIS_EMBEDDING_TIMEOUT", float),
            ("search_timeout", "ANAMNESIS_SEARCH_TIMEOUT", float),
            ("max_results", "ANAMNESIS_MAX_RESULTS", int),
            ("semantic_threshold", "ANAMNESIS_SEMANTIC_THRESHOLD", float),
        ):
            raw = os.environ.get(env)
            if raw is None:
                continue
            try:
                setattr(config, attr, cast(raw))
            except ValueError:
                logger.warning(f"Ignoring invalid {env}={raw!r}")
        return config
