"""Shared utilities for anamnesis."""

import hashlib
import os
import re
from pathlib import Path
from typing import Optional

MAX_CONTENT_LENGTH = 10000


def get_anamnesis_home() -> Path:
    """Return the anamnesis data directory.

    Honors ``ANAMNESIS_DATA_DIR`` so tests and deployments can relocate
    the database and logs; defaults to ``~/.anamnesis``.
    """
    override = os.environ.get("ANAMNESIS_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".anamnesis"


def resolve_user_id(user_id: Optional[str] = None) -> str:
    """Resolve the owner id used for logs and default contexts.

    Priority: explicit argument, then ``ANAMNESIS_USER_ID``, then "default".
    """
    if user_id and user_id != "default":
        return user_id
    env_id = os.environ.get("ANAMNESIS_USER_ID")
    if env_id:
        return env_id
    return user_id or "default"


def normalize_content(content: str, max_length: Optional[int] = None) -> str:
    """Trim and collapse runs of whitespace, optionally capping the length."""
    collapsed = re.sub(r"\s+", " ", content.strip())
    return collapsed if max_length is None else collapsed[:max_length]


def compute_content_hash(content: str) -> str:
    """Stable short hash of normalized content, used as the embedding cache key."""
    normalized = normalize_content(content).lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
