"""
Anamnesis CLI - Command-line interface for the memory engine.

Usage:
    anamnesis remember CONTENT [--type TYPE] [--importance N] [--tag T]...
    anamnesis recall QUERY [--limit N] [--json]
    anamnesis forget MEMORY_ID
    anamnesis stats [--json]
    anamnesis optimize [--json]
    anamnesis archive [--age-days N] [--importance N] [--access-count N]
    anamnesis concept add|link|related|infer ...
    anamnesis verify STATEMENT
    anamnesis episode record|predict|timeline ...
    anamnesis pref set|list|insights ...
    anamnesis mcp
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict

from anamnesis.core import MEMORY_TYPES, RELATIONSHIP_TYPES, MemoryEngine
from anamnesis.logging_config import setup_anamnesis_logging
from anamnesis.utils import resolve_user_id

logger = logging.getLogger(__name__)


class CommandFailed(Exception):
    """An engine operation returned a failure envelope."""


def _data(result: Dict[str, Any]) -> Any:
    if not result.get("success"):
        raise CommandFailed(result.get("error") or "operation failed")
    return result["data"]


def _context(args) -> Dict[str, str]:
    ctx = {"user_id": args.user}
    if getattr(args, "conversation", None):
        ctx["conversation_id"] = args.conversation
    if getattr(args, "workspace", None):
        ctx["workspace_id"] = args.workspace
    return ctx


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_remember(args, engine: MemoryEngine):
    """Store a memory."""
    data = _data(
        engine.remember(
            args.content,
            _context(args),
            type=args.type,
            importance=args.importance,
            tags=args.tag,
            source=args.source,
        )
    )
    print(f"✓ Remembered {args.type}: {data['memory_id'][:8]}...")
    if not data["indexed"]:
        print("  ⚠ Embedding unavailable; it will be indexed on the next optimize")


def cmd_recall(args, engine: MemoryEngine):
    """Search memories."""
    data = _data(engine.recall(args.query, _context(args), args.limit))
    if args.json:
        _print_json(data)
        return
    memories = data["memories"]
    if not memories:
        print(f"No memories for '{args.query}'")
        return

    print(f"Found {len(memories)} memory(ies) for '{args.query}':\n")
    if data["degraded"]:
        print(f"  ⚠ {data['explanation']}\n")
    for i, m in enumerate(memories, 1):
        print(f"{i}. [{m['type']}] {m['content'][:80]}")
        print(f"     score: {m['relevance_score']:.2f}  importance: {m['importance']:.2f}")
        print(f"     {m['explanation']}")
        if m.get("tags"):
            print(f"     tags: {', '.join(m['tags'])}")
        print()


def cmd_forget(args, engine: MemoryEngine):
    """Delete one memory."""
    _data(engine.forget(args.memory_id))
    print(f"✓ Forgot {args.memory_id}")


def cmd_stats(args, engine: MemoryEngine):
    """Show memory statistics."""
    stats = _data(engine.get_memory_stats())
    if args.json:
        _print_json(stats)
        return
    print("Memory Status")
    print("=" * 40)
    print(f"Memories:      {stats['total']}")
    for memory_type, count in sorted(stats["by_type"].items()):
        print(f"  {memory_type:<12} {count}")
    print(f"Importance:    {stats['avg_importance']:.2f} avg")
    print(f"Indexed:       {stats['vector_index']['indexed']} ({stats['vector_index']['provider']})")
    print(f"Compressed:    {stats['compression']['compressed_memories']}")
    print(f"Concepts:      {stats['knowledge_graph']['total_concepts']}")
    print(f"Conversations: {stats['conversations']}")


def cmd_optimize(args, engine: MemoryEngine):
    """Run a consolidation sweep."""
    report = _data(engine.optimize_memory())
    if args.json:
        _print_json(report)
        return
    print("✓ Optimization complete")
    print(f"  merged:        {report['merged']}")
    print(f"  compressed:    {report['compressed']} into {report['summaries_created']} summaries")
    print(f"  archived:      {report['archived']}")
    print(f"  re-scored:     {report['importance_updated']}")
    print(f"  contradictions resolved: {report['contradictions']}")
    print(f"  relationships found:     {report['relationships_discovered']}")
    print(f"  patterns:      {report['patterns']}")
    print(f"  indexed:       {report['indexed']}")
    for error in report["errors"]:
        print(f"  ⚠ {error}")


def cmd_archive(args, engine: MemoryEngine):
    """Archive old, unimportant, rarely used memories."""
    data = _data(engine.archive_memories(args.age_days, args.importance, args.access_count))
    if data["archive_id"]:
        print(f"✓ Archived into {data['archive_id'][:8]}...")
    else:
        print("Nothing matched the archive criteria.")


def cmd_concept(args, engine: MemoryEngine):
    """Knowledge graph operations."""
    if args.concept_action == "add":
        node = _data(engine.add_concept(args.concept, args.description or ""))
        print(f"✓ Concept '{node['concept']}' (confidence {node['confidence']:.2f})")

    elif args.concept_action == "link":
        data = _data(
            engine.link_concepts(
                args.source,
                args.target,
                args.relationship,
                strength=args.strength,
                bidirectional=args.bidirectional,
            )
        )
        arrow = "<->" if args.bidirectional else "->"
        print(f"✓ {data['source']} {arrow} {data['target']} ({data['relationship']})")

    elif args.concept_action == "related":
        related = _data(engine.find_related_concepts(args.concept, args.depth))["related_concepts"]
        if args.json:
            _print_json(related)
            return
        if not related:
            print(f"No concepts related to '{args.concept}'")
            return
        print(f"Related to '{args.concept}':")
        for node in related:
            print(f"  - {node['concept']} ({node['confidence']:.2f})")

    elif args.concept_action == "infer":
        inferences = _data(engine.infer_knowledge(args.premise))["inferences"]
        if not inferences:
            print("No inferences.")
        for inference in inferences:
            print(f"  → {inference}")


def cmd_verify(args, engine: MemoryEngine):
    """Check a statement against known concepts."""
    result = _data(engine.verify_fact(args.statement))
    if args.json:
        _print_json(result)
        return
    verdict = "✓ verified" if result["verified"] else "✗ not verified"
    print(f"{verdict} (confidence {result['confidence']:.2f})")
    for source in result.get("sources", []):
        print(f"  source: {source}")


def cmd_episode(args, engine: MemoryEngine):
    """Episodic memory operations."""
    if args.episode_action == "record":
        episode = _data(
            engine.record_episode(
                args.event,
                args.outcome,
                participants=args.participant,
                location=args.location,
                duration=args.duration,
                emotions=args.emotion,
                success=not args.failed,
                context=_context(args),
            )
        )
        print(f"✓ Episode recorded: {episode['id'][:8]}...")
        for lesson in episode["lessons"]:
            print(f"     → {lesson}")

    elif args.episode_action == "predict":
        result = _data(engine.predict_outcome(args.scenario, args.user))
        if args.json:
            _print_json(result)
        else:
            print(result["prediction"])

    elif args.episode_action == "timeline":
        timeline = _data(engine.get_episodic_timeline(args.user))["timeline"]
        if args.json:
            _print_json(timeline)
            return
        if not timeline:
            print("No episodes recorded yet.")
            return
        for episode in timeline[: args.limit]:
            mark = "✓" if episode["success"] else "✗"
            print(f"{episode['created_at'][:10]} {mark} {episode['event'][:60]} → {episode['outcome'][:40]}")


def cmd_pref(args, engine: MemoryEngine):
    """User preference and profile operations."""
    if args.pref_action == "set":
        pref = _data(
            engine.set_user_preference(args.user, args.category, args.preference, args.strength)
        )
        print(f"✓ {pref['category']}: {pref['preference']} ({pref['strength']:.2f})")

    elif args.pref_action == "list":
        prefs = _data(engine.get_user_preferences(args.user, args.category))["preferences"]
        if args.json:
            _print_json(prefs)
            return
        if not prefs:
            print(f"No preferences recorded for {args.user}.")
            return
        for p in prefs:
            print(f"  {p['category']:<16} {p['preference']} ({p['strength']:.2f})")

    elif args.pref_action == "insights":
        insights = _data(engine.get_user_insights(args.user))
        if args.json:
            _print_json(insights)
            return
        for line in insights["insights"]:
            print(f"  • {line}")
        if insights["interests"]:
            print(f"  interests: {', '.join(insights['interests'])}")


def cmd_mcp(args):
    """Start MCP server."""
    try:
        from anamnesis.mcp.server import main as mcp_main

        mcp_main(user_id=args.user)
    except ImportError as e:
        logger.error("MCP dependencies not installed. Run: pip install mcp")
        logger.error(f"Error: {e}")
        sys.exit(1)


COMMANDS = {
    "remember": cmd_remember,
    "recall": cmd_recall,
    "forget": cmd_forget,
    "stats": cmd_stats,
    "optimize": cmd_optimize,
    "archive": cmd_archive,
    "concept": cmd_concept,
    "verify": cmd_verify,
    "episode": cmd_episode,
    "pref": cmd_pref,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anamnesis",
        description="Memory retrieval and consolidation engine",
    )
    parser.add_argument("--user", "-u", help="User ID", default=None)
    parser.add_argument("--log-level", default="WARNING", help="Log level for the anamnesis logger")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # remember
    p_remember = subparsers.add_parser("remember", help="Store a memory")
    p_remember.add_argument("content", help="What to remember")
    p_remember.add_argument("--type", "-t", choices=MEMORY_TYPES, default="observation")
    p_remember.add_argument("--importance", "-i", type=float, help="Explicit importance (0.0-1.0)")
    p_remember.add_argument("--tag", action="append", help="Tag (repeatable)")
    p_remember.add_argument("--source", "-s", help="Source type (default: user_input)")
    p_remember.add_argument("--conversation", "-c", help="Conversation ID")
    p_remember.add_argument("--workspace", "-w", help="Workspace ID")

    # recall
    p_recall = subparsers.add_parser("recall", help="Search memories")
    p_recall.add_argument("query", help="Search query")
    p_recall.add_argument("--limit", "-l", type=int, default=None)
    p_recall.add_argument("--conversation", "-c", help="Conversation ID")
    p_recall.add_argument("--workspace", "-w", help="Workspace ID")
    p_recall.add_argument("--json", "-j", action="store_true")

    # forget
    p_forget = subparsers.add_parser("forget", help="Delete a memory permanently")
    p_forget.add_argument("memory_id", help="Memory ID")

    # stats
    p_stats = subparsers.add_parser("stats", help="Show memory statistics")
    p_stats.add_argument("--json", "-j", action="store_true")

    # optimize
    p_optimize = subparsers.add_parser("optimize", help="Run consolidation")
    p_optimize.add_argument("--json", "-j", action="store_true")

    # archive
    p_archive = subparsers.add_parser("archive", help="Archive old, low-value memories")
    p_archive.add_argument("--age-days", type=float, default=180)
    p_archive.add_argument("--importance", type=float, default=0.3)
    p_archive.add_argument("--access-count", type=int, default=2)

    # concept
    p_concept = subparsers.add_parser("concept", help="Knowledge graph operations")
    concept_sub = p_concept.add_subparsers(dest="concept_action", required=True)

    concept_add = concept_sub.add_parser("add", help="Add a concept")
    concept_add.add_argument("concept")
    concept_add.add_argument("--description", "-d")

    concept_link = concept_sub.add_parser("link", help="Link two concepts")
    concept_link.add_argument("source")
    concept_link.add_argument("target")
    concept_link.add_argument("--relationship", "-r", choices=RELATIONSHIP_TYPES, default="related_to")
    concept_link.add_argument("--strength", type=float, default=0.5)
    concept_link.add_argument("--bidirectional", "-b", action="store_true")

    concept_related = concept_sub.add_parser("related", help="Find related concepts")
    concept_related.add_argument("concept")
    concept_related.add_argument("--depth", type=int, default=None)
    concept_related.add_argument("--json", "-j", action="store_true")

    concept_infer = concept_sub.add_parser("infer", help="Infer from a premise")
    concept_infer.add_argument("premise")

    # verify
    p_verify = subparsers.add_parser("verify", help="Verify a statement")
    p_verify.add_argument("statement")
    p_verify.add_argument("--json", "-j", action="store_true")

    # episode
    p_episode = subparsers.add_parser("episode", help="Episodic memory")
    episode_sub = p_episode.add_subparsers(dest="episode_action", required=True)

    episode_record = episode_sub.add_parser("record", help="Record an episode")
    episode_record.add_argument("event", help="What happened")
    episode_record.add_argument("outcome", help="How it turned out")
    episode_record.add_argument("--failed", action="store_true", help="Mark the episode unsuccessful")
    episode_record.add_argument("--participant", "-p", action="append")
    episode_record.add_argument("--emotion", "-e", action="append")
    episode_record.add_argument("--location")
    episode_record.add_argument("--duration", type=float, help="Seconds")
    episode_record.add_argument("--conversation", "-c", help="Conversation ID")

    episode_predict = episode_sub.add_parser("predict", help="Predict an outcome")
    episode_predict.add_argument("scenario")
    episode_predict.add_argument("--json", "-j", action="store_true")

    episode_timeline = episode_sub.add_parser("timeline", help="List episodes, newest first")
    episode_timeline.add_argument("--limit", "-l", type=int, default=20)
    episode_timeline.add_argument("--json", "-j", action="store_true")

    # pref
    p_pref = subparsers.add_parser("pref", help="User preferences")
    pref_sub = p_pref.add_subparsers(dest="pref_action", required=True)

    pref_set = pref_sub.add_parser("set", help="Set a preference")
    pref_set.add_argument("category")
    pref_set.add_argument("preference")
    pref_set.add_argument("--strength", type=float, default=0.5)

    pref_list = pref_sub.add_parser("list", help="List preferences")
    pref_list.add_argument("--category")
    pref_list.add_argument("--json", "-j", action="store_true")

    pref_insights = pref_sub.add_parser("insights", help="Summarize what is known about the user")
    pref_insights.add_argument("--json", "-j", action="store_true")

    # mcp
    subparsers.add_parser("mcp", help="Start MCP server (stdio transport)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    args.user = resolve_user_id(args.user)
    setup_anamnesis_logging(args.user, args.log_level)

    if args.command == "mcp":
        cmd_mcp(args)
        return

    try:
        engine = MemoryEngine(user_id=args.user)
    except (ValueError, TypeError) as e:
        logger.error(f"Failed to initialize anamnesis: {e}")
        sys.exit(1)

    try:
        COMMANDS[args.command](args, engine)
    except CommandFailed as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    finally:
        engine.close()


if __name__ == "__main__":
    main()
