"""Argument checks for every way into the memory engine.

The engine facade, the CLI and the MCP handlers all run caller input
through these before anything reaches storage. Each check raises
:class:`~anamnesis.errors.ValidationError` (a ``ValueError``) whose
message starts with the offending field name, so the envelope and the
MCP error text can pass it through unchanged.

Memory content gets its own entry point, :func:`sanitize_content`: it
rejects text longer than ``MAX_CONTENT_LENGTH`` instead of cutting it,
so a stored memory is always exactly what the caller sent, modulo
whitespace.
"""

import logging
import math
import re
from typing import Any, Iterable, List, Optional

from anamnesis.errors import ValidationError
from anamnesis.utils import MAX_CONTENT_LENGTH, normalize_content

logger = logging.getLogger(__name__)

# Everything below 0x20 except tab, newline and carriage return, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


def _reject(field: str, problem: str) -> ValidationError:
    logger.debug(f"Rejected {field}: {problem}")
    return ValidationError(f"{field} {problem}")


def _kind(value: Any) -> str:
    return type(value).__name__


def sanitize_string(
    value: Any, field: str, max_length: Optional[int] = 1000, required: bool = True
) -> str:
    """Return ``value`` with control characters removed.

    ``None`` is accepted (as ``""``) only when ``required`` is False. A
    ``max_length`` of None disables the length check.
    """
    if value is None and not required:
        return ""
    if not isinstance(value, str):
        raise _reject(field, f"must be a string, got {_kind(value)}")
    if required and not value.strip():
        raise _reject(field, "cannot be empty")
    if max_length is not None and len(value) > max_length:
        raise _reject(field, f"too long (max {max_length} characters, got {len(value)})")
    return _CONTROL_CHARS.sub("", value)


def sanitize_content(value: Any, field: str = "content", max_length: int = MAX_CONTENT_LENGTH) -> str:
    """Memory text as it will be stored: cleaned, whitespace-collapsed, never truncated."""
    text = normalize_content(sanitize_string(value, field, max_length=None))
    if not text:
        raise _reject(field, "cannot be empty")
    if len(text) > max_length:
        raise _reject(field, f"too long (max {max_length} characters, got {len(text)})")
    return text


def sanitize_number(
    value: Any,
    field: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    default: Optional[float] = None,
) -> float:
    """Check a score, weight or count and return it as a float.

    Booleans are refused even though Python treats them as ints, and
    NaN or infinite values never get past this point.
    """
    if value is None:
        if default is None:
            raise _reject(field, "is required")
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _reject(field, f"must be a number, got {_kind(value)}")
    if not math.isfinite(value):
        raise _reject(field, f"must be a finite number, got {value}")
    if min_val is not None and value < min_val:
        raise _reject(field, f"must be >= {min_val}, got {value}")
    if max_val is not None and value > max_val:
        raise _reject(field, f"must be <= {max_val}, got {value}")
    return float(value)


def sanitize_list(
    value: Any,
    field: str,
    item_max_length: int = 500,
    max_items: int = 100,
) -> List[str]:
    """Strings from a participant, emotion or tag list, blanks dropped."""
    if value is None:
        return []
    if not isinstance(value, _SEQUENCE_TYPES):
        raise _reject(field, f"must be an array, got {_kind(value)}")
    if len(value) > max_items:
        raise _reject(field, f"has too many items (max {max_items}, got {len(value)})")
    if None in value:
        raise _reject(field, "must not contain null items")

    items = (
        sanitize_string(item, f"{field}[{i}]", item_max_length, required=False).strip()
        for i, item in enumerate(value)
    )
    return [item for item in items if item]


def sanitize_tags(value: Any, field: str = "tags", max_items: int = 50) -> List[str]:
    """Lowercased, de-duplicated tags in first-seen order."""
    tags = sanitize_list(value, field, item_max_length=100, max_items=max_items)
    return list(dict.fromkeys(t.lower() for t in tags))


def validate_enum(
    value: Any,
    field: str,
    valid_values: Iterable[str],
    default: Optional[str] = None,
    required: bool = False,
) -> str:
    """Check a memory type, role, source or relationship name against its allowed set."""
    allowed = list(valid_values)
    if value is None:
        if required or default is None:
            raise _reject(field, "is required")
        return default
    if not isinstance(value, str):
        raise _reject(field, f"must be a string, got {_kind(value)}")
    if value not in allowed:
        raise _reject(field, f"must be one of {allowed}, got '{value}'")
    return value
