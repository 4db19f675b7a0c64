"""Logging setup for anamnesis.

Two channels:
- the ``anamnesis`` logger, written to ``<data dir>/logs/local-<date>.log``
- a flat memory event log, ``<data dir>/logs/memory-events-<date>.log``,
  one line per remember/recall/consolidation so that memory activity can be
  audited without parsing debug output.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from anamnesis.utils import get_anamnesis_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir():
    log_dir = get_anamnesis_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_anamnesis_logging(user_id: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``anamnesis`` logger.

    Args:
        user_id: Owner the process is serving, recorded in the first log line.
        level: Level name (case-insensitive). Unknown names fall back to INFO.

    Returns:
        The configured ``anamnesis`` logger. Calling this again does not
        add duplicate handlers.
    """
    logger = logging.getLogger("anamnesis")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    has_file = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    if not has_file:
        log_file = _log_dir() / f"local-{_today()}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved == logging.DEBUG and not has_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    logger.debug(f"Logging initialised for user={user_id}")
    return logger


def log_memory_event(event_type: str, details: str, user_id: str = "default") -> None:
    """Append one line to the memory event log."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    line = f"{timestamp} | {event_type} | user={user_id} | {details}\n"
    event_file = _log_dir() / f"memory-events-{_today()}.log"
    with open(event_file, "a", encoding="utf-8") as fh:
        fh.write(line)


def log_remember(user_id: str, memory_type: str, memory_id: str, content: Optional[str] = None):
    details = f"type={memory_type}, id={memory_id[:8]}..."
    if content:
        details += f", content={content[:50]}"
    log_memory_event("remember", details, user_id=user_id)


def log_recall(user_id: str, query: str, results: int, degraded: bool = False):
    log_memory_event(
        "recall",
        f"query={query[:50]}, results={results}, degraded={degraded}",
        user_id=user_id,
    )


def log_consolidation(user_id: str, merged: int = 0, compressed: int = 0, archived: int = 0):
    log_memory_event(
        "consolidate",
        f"merged={merged}, compressed={compressed}, archived={archived}",
        user_id=user_id,
    )
