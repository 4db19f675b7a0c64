"""Handlers for memory and conversation tools."""

import json
from typing import Any, Dict

from anamnesis.core import MemoryEngine
from anamnesis.mcp.handlers.common import sanitize_context, unwrap
from anamnesis.mcp.tool_definitions import VALID_MEMORY_TYPES, VALID_SOURCE_TYPES
from anamnesis.validation import sanitize_number, sanitize_string, sanitize_tags, validate_enum

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_memory_remember(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["content"] = sanitize_string(arguments.get("content"), "content", 10000, required=True)
    sanitized["type"] = validate_enum(arguments.get("type"), "type", VALID_MEMORY_TYPES, "observation")
    if arguments.get("importance") is not None:
        sanitized["importance"] = sanitize_number(arguments["importance"], "importance", 0.0, 1.0)
    sanitized["tags"] = sanitize_tags(arguments.get("tags"), max_items=20)
    sanitized["source"] = validate_enum(arguments.get("source"), "source", VALID_SOURCE_TYPES, "user_input")
    sanitized["context"] = sanitize_context(arguments.get("context"))
    return sanitized


def validate_memory_recall(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["query"] = sanitize_string(arguments.get("query"), "query", 1000, required=True)
    sanitized["max_results"] = int(sanitize_number(arguments.get("max_results"), "max_results", 1, 100, 10))
    sanitized["context"] = sanitize_context(arguments.get("context"))
    return sanitized


def validate_memory_forget(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"memory_id": sanitize_string(arguments.get("memory_id"), "memory_id", 100, required=True)}


def validate_no_arguments(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def validate_conversation_add_message(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["conversation_id"] = sanitize_string(
        arguments.get("conversation_id"), "conversation_id", 200, required=True
    )
    sanitized["role"] = validate_enum(
        arguments.get("role"), "role", ["user", "assistant", "system"], required=True
    )
    sanitized["content"] = sanitize_string(arguments.get("content"), "content", 10000, required=True)
    user_id = sanitize_string(arguments.get("user_id"), "user_id", 200, required=False)
    sanitized["user_id"] = user_id or None
    return sanitized


def validate_conversation_summary(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "conversation_id": sanitize_string(
            arguments.get("conversation_id"), "conversation_id", 200, required=True
        )
    }


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_memory_remember(args: Dict[str, Any], engine: MemoryEngine) -> str:
    data = unwrap(
        engine.remember(
            args["content"],
            args.get("context"),
            type=args.get("type"),
            importance=args.get("importance"),
            tags=args.get("tags"),
            source=args.get("source"),
        )
    )
    note = "" if data["indexed"] else " (not indexed yet: embedding unavailable)"
    return f"Remembered {args.get('type', 'observation')} {data['memory_id'][:8]}...{note}"


def handle_memory_recall(args: Dict[str, Any], engine: MemoryEngine) -> str:
    data = unwrap(engine.recall(args["query"], args.get("context"), args.get("max_results")))
    memories = data["memories"]
    if not memories:
        return f"No memories for '{args['query']}'. {data['explanation']}"
    lines = [f"Found {len(memories)} memory(ies):"]
    if data["degraded"]:
        lines.append(f"({data['explanation']})")
    lines.append("")
    for i, m in enumerate(memories, 1):
        lines.append(f"{i}. [{m['type']}] {m['content'][:120]} (score {m['relevance_score']:.2f})")
        lines.append(f"   {m['explanation']}")
    return "\n".join(lines)


def handle_memory_forget(args: Dict[str, Any], engine: MemoryEngine) -> str:
    unwrap(engine.forget(args["memory_id"]))
    return f"Forgot memory {args['memory_id'][:8]}..."


def handle_memory_stats(args: Dict[str, Any], engine: MemoryEngine) -> str:
    stats = unwrap(engine.get_memory_stats())
    by_type = ", ".join(f"{k}={v}" for k, v in sorted(stats["by_type"].items())) or "none"
    return f"""Memory Status
=====================================
Memories:      {stats["total"]} ({by_type})
Avg importance: {stats["avg_importance"]:.2f}
Indexed:       {stats["vector_index"]["indexed"]}
Concepts:      {stats["knowledge_graph"]["total_concepts"]}
Conversations: {stats["conversations"]}"""


def handle_memory_optimize(args: Dict[str, Any], engine: MemoryEngine) -> str:
    return json.dumps(unwrap(engine.optimize_memory()), indent=2, default=str)


def handle_conversation_add_message(args: Dict[str, Any], engine: MemoryEngine) -> str:
    data = unwrap(
        engine.add_conversation_message(
            args["conversation_id"], args["role"], args["content"], user_id=args.get("user_id")
        )
    )
    return f"Added message {data['message_count']} to {data['conversation_id']} (mood: {data['mood']})"


def handle_conversation_summary(args: Dict[str, Any], engine: MemoryEngine) -> str:
    return json.dumps(unwrap(engine.get_conversation_summary(args["conversation_id"])), indent=2, default=str)


VALIDATORS = {
    "memory_remember": validate_memory_remember,
    "memory_recall": validate_memory_recall,
    "memory_forget": validate_memory_forget,
    "memory_stats": validate_no_arguments,
    "memory_optimize": validate_no_arguments,
    "conversation_add_message": validate_conversation_add_message,
    "conversation_summary": validate_conversation_summary,
}

HANDLERS = {
    "memory_remember": handle_memory_remember,
    "memory_recall": handle_memory_recall,
    "memory_forget": handle_memory_forget,
    "memory_stats": handle_memory_stats,
    "memory_optimize": handle_memory_optimize,
    "conversation_add_message": handle_conversation_add_message,
    "conversation_summary": handle_conversation_summary,
}
