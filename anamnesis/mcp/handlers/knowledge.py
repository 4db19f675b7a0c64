"""Handlers for knowledge graph and episode tools."""

import json
from typing import Any, Dict

from anamnesis.core import MemoryEngine
from anamnesis.mcp.handlers.common import sanitize_context, unwrap
from anamnesis.mcp.tool_definitions import VALID_RELATIONSHIP_TYPES
from anamnesis.validation import sanitize_list, sanitize_number, sanitize_string, validate_enum

# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_concept_add(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "concept": sanitize_string(arguments.get("concept"), "concept", 200, required=True),
        "description": sanitize_string(arguments.get("description"), "description", 2000, required=False),
    }


def validate_concept_link(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["concept_a"] = sanitize_string(arguments.get("concept_a"), "concept_a", 200, required=True)
    sanitized["concept_b"] = sanitize_string(arguments.get("concept_b"), "concept_b", 200, required=True)
    sanitized["relationship"] = validate_enum(
        arguments.get("relationship"), "relationship", VALID_RELATIONSHIP_TYPES, required=True
    )
    sanitized["strength"] = sanitize_number(arguments.get("strength"), "strength", 0.0, 1.0, 0.5)
    bidirectional = arguments.get("bidirectional", False)
    sanitized["bidirectional"] = bidirectional if isinstance(bidirectional, bool) else False
    return sanitized


def validate_concept_related(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "concept": sanitize_string(arguments.get("concept"), "concept", 200, required=True),
        "max_depth": int(sanitize_number(arguments.get("max_depth"), "max_depth", 1, 5, 2)),
    }


def validate_fact_verify(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"statement": sanitize_string(arguments.get("statement"), "statement", 2000, required=True)}


def validate_episode_record(arguments: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    sanitized["event"] = sanitize_string(arguments.get("event"), "event", 2000, required=True)
    sanitized["outcome"] = sanitize_string(arguments.get("outcome"), "outcome", 2000, required=True)
    success = arguments.get("success", True)
    sanitized["success"] = success if isinstance(success, bool) else True
    sanitized["participants"] = sanitize_list(arguments.get("participants"), "participants", 200, 20)
    sanitized["emotions"] = sanitize_list(arguments.get("emotions"), "emotions", 50, 10)
    location = sanitize_string(arguments.get("location"), "location", 200, required=False)
    sanitized["location"] = location or None
    if arguments.get("duration") is not None:
        sanitized["duration"] = sanitize_number(arguments["duration"], "duration", 0)
    sanitized["context"] = sanitize_context(arguments.get("context"))
    return sanitized


def validate_episode_predict(arguments: Dict[str, Any]) -> Dict[str, Any]:
    user_id = sanitize_string(arguments.get("user_id"), "user_id", 200, required=False)
    return {
        "scenario": sanitize_string(arguments.get("scenario"), "scenario", 2000, required=True),
        "user_id": user_id or None,
    }


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_concept_add(args: Dict[str, Any], engine: MemoryEngine) -> str:
    node = unwrap(engine.add_concept(args["concept"], args.get("description", "")))
    return f"Concept '{node['concept']}' stored (confidence {node['confidence']:.2f})"


def handle_concept_link(args: Dict[str, Any], engine: MemoryEngine) -> str:
    data = unwrap(
        engine.link_concepts(
            args["concept_a"],
            args["concept_b"],
            args["relationship"],
            strength=args.get("strength", 0.5),
            bidirectional=args.get("bidirectional", False),
        )
    )
    arrow = "<->" if args.get("bidirectional") else "->"
    return f"Linked {data['source']} {arrow} {data['target']} ({data['relationship']})"


def handle_concept_related(args: Dict[str, Any], engine: MemoryEngine) -> str:
    related = unwrap(engine.find_related_concepts(args["concept"], args.get("max_depth")))["related_concepts"]
    if not related:
        return f"No concepts related to '{args['concept']}'"
    lines = [f"{len(related)} related concept(s):"]
    for node in related:
        lines.append(f"- {node['concept']} (confidence {node['confidence']:.2f})")
    return "\n".join(lines)


def handle_fact_verify(args: Dict[str, Any], engine: MemoryEngine) -> str:
    return json.dumps(unwrap(engine.verify_fact(args["statement"])), indent=2)


def handle_episode_record(args: Dict[str, Any], engine: MemoryEngine) -> str:
    episode = unwrap(
        engine.record_episode(
            args["event"],
            args["outcome"],
            participants=args.get("participants"),
            location=args.get("location"),
            duration=args.get("duration"),
            emotions=args.get("emotions"),
            success=args.get("success", True),
            context=args.get("context"),
        )
    )
    lines = [f"Episode {episode['id'][:8]}... recorded"]
    for lesson in episode["lessons"]:
        lines.append(f"  - {lesson}")
    if episode["related_episodes"]:
        lines.append(f"Linked to {len(episode['related_episodes'])} similar episode(s)")
    return "\n".join(lines)


def handle_episode_predict(args: Dict[str, Any], engine: MemoryEngine) -> str:
    return unwrap(engine.predict_outcome(args["scenario"], args.get("user_id")))["prediction"]


VALIDATORS = {
    "concept_add": validate_concept_add,
    "concept_link": validate_concept_link,
    "concept_related": validate_concept_related,
    "fact_verify": validate_fact_verify,
    "episode_record": validate_episode_record,
    "episode_predict": validate_episode_predict,
}

HANDLERS = {
    "concept_add": handle_concept_add,
    "concept_link": handle_concept_link,
    "concept_related": handle_concept_related,
    "fact_verify": handle_fact_verify,
    "episode_record": handle_episode_record,
    "episode_predict": handle_episode_predict,
}
