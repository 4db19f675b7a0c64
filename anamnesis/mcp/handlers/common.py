"""Helpers shared by the MCP handler modules."""

from typing import Any, Dict, Optional

from anamnesis.errors import AnamnesisError
from anamnesis.validation import sanitize_string


def unwrap(envelope: Dict[str, Any]) -> Any:
    """Return ``data`` from an engine envelope, raising on failure."""
    if not envelope.get("success"):
        raise AnamnesisError(envelope.get("error") or "operation failed")
    return envelope.get("data")


def sanitize_context(value: Any) -> Optional[Dict[str, str]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"context must be an object, got {type(value).__name__}")
    context = {}
    for key in ("user_id", "conversation_id", "workspace_id", "session_id"):
        if value.get(key) is not None:
            context[key] = sanitize_string(value[key], f"context.{key}", 200)
    return context or None
