"""MCP tool schema definitions for anamnesis memory operations.

Each Tool() defines the name, description, and JSON Schema for one MCP tool.
Validators and handlers live in anamnesis.mcp.handlers.
"""

from mcp.types import Tool

from anamnesis.config import ALLOWED_SOURCES
from anamnesis.types import MemoryType, RelationshipType

VALID_MEMORY_TYPES = [t.value for t in MemoryType]
VALID_RELATIONSHIP_TYPES = [t.value for t in RelationshipType]
VALID_SOURCE_TYPES = sorted(ALLOWED_SOURCES)

_CONTEXT_SCHEMA = {
    "type": "object",
    "description": "Scope of the memory or query",
    "properties": {
        "user_id": {"type": "string"},
        "conversation_id": {"type": "string"},
        "workspace_id": {"type": "string"},
        "session_id": {"type": "string"},
    },
}

TOOLS = [
    Tool(
        name="memory_remember",
        description="Store a memory. Importance is computed from recency, uniqueness, sentiment and source when not given.",
        inputSchema={
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "What to remember"},
                "type": {
                    "type": "string",
                    "enum": VALID_MEMORY_TYPES,
                    "description": "Memory type (default: observation)",
                    "default": "observation",
                },
                "importance": {
                    "type": "number",
                    "description": "Explicit importance (0.0-1.0)",
                    "minimum": 0.0,
                    "maximum": 1.0,
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Tags for filtering and clustering",
                },
                "source": {
                    "type": "string",
                    "enum": VALID_SOURCE_TYPES,
                    "description": "Where the memory came from (default: user_input)",
                },
                "context": _CONTEXT_SCHEMA,
            },
            "required": ["content"],
        },
    ),
    Tool(
        name="memory_recall",
        description="Hybrid keyword, semantic and entity search over stored memories.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "max_results": {
                    "type": "integer",
                    "description": "Maximum results (default: 10)",
                    "default": 10,
                    "minimum": 1,
                    "maximum": 100,
                },
                "context": _CONTEXT_SCHEMA,
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="memory_forget",
        description="Permanently delete one memory by id.",
        inputSchema={
            "type": "object",
            "properties": {"memory_id": {"type": "string", "description": "Memory id"}},
            "required": ["memory_id"],
        },
    ),
    Tool(
        name="memory_stats",
        description="Counts by type, index and graph statistics.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="memory_optimize",
        description="Run consolidation: merge duplicates, compress old memories, refresh importance, sweep the knowledge graph and rebuild the index.",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="conversation_add_message",
        description="Append a message to a conversation and refresh its summary, mood and follow-ups.",
        inputSchema={
            "type": "object",
            "properties": {
                "conversation_id": {"type": "string"},
                "role": {"type": "string", "enum": ["user", "assistant", "system"]},
                "content": {"type": "string"},
                "user_id": {"type": "string", "description": "Owner, used to learn preferences"},
            },
            "required": ["conversation_id", "role", "content"],
        },
    ),
    Tool(
        name="conversation_summary",
        description="Summary, important messages and follow-up actions for a conversation.",
        inputSchema={
            "type": "object",
            "properties": {"conversation_id": {"type": "string"}},
            "required": ["conversation_id"],
        },
    ),
    Tool(
        name="concept_add",
        description="Add or refresh a concept in the knowledge graph.",
        inputSchema={
            "type": "object",
            "properties": {
                "concept": {"type": "string"},
                "description": {"type": "string"},
            },
            "required": ["concept"],
        },
    ),
    Tool(
        name="concept_link",
        description="Create a typed relationship between two concepts.",
        inputSchema={
            "type": "object",
            "properties": {
                "concept_a": {"type": "string"},
                "concept_b": {"type": "string"},
                "relationship": {"type": "string", "enum": VALID_RELATIONSHIP_TYPES},
                "strength": {"type": "number", "minimum": 0.0, "maximum": 1.0, "default": 0.5},
                "bidirectional": {"type": "boolean", "default": False},
            },
            "required": ["concept_a", "concept_b", "relationship"],
        },
    ),
    Tool(
        name="concept_related",
        description="Concepts reachable from a concept within max_depth hops.",
        inputSchema={
            "type": "object",
            "properties": {
                "concept": {"type": "string"},
                "max_depth": {"type": "integer", "minimum": 1, "maximum": 5, "default": 2},
            },
            "required": ["concept"],
        },
    ),
    Tool(
        name="fact_verify",
        description="Check a statement against the confidence of the concepts it mentions.",
        inputSchema={
            "type": "object",
            "properties": {"statement": {"type": "string"}},
            "required": ["statement"],
        },
    ),
    Tool(
        name="episode_record",
        description="Record an experience; lessons are derived and similar episodes linked.",
        inputSchema={
            "type": "object",
            "properties": {
                "event": {"type": "string"},
                "outcome": {"type": "string"},
                "success": {"type": "boolean", "default": True},
                "participants": {"type": "array", "items": {"type": "string"}},
                "emotions": {"type": "array", "items": {"type": "string"}},
                "location": {"type": "string"},
                "duration": {"type": "number", "description": "Seconds", "minimum": 0},
                "context": _CONTEXT_SCHEMA,
            },
            "required": ["event", "outcome"],
        },
    ),
    Tool(
        name="episode_predict",
        description="Predict how a scenario may go from similar past episodes.",
        inputSchema={
            "type": "object",
            "properties": {
                "scenario": {"type": "string"},
                "user_id": {"type": "string"},
            },
            "required": ["scenario"],
        },
    ),
]
