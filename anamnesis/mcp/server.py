"""
Anamnesis MCP Server - memory operations for MCP clients.

Exposes remember/recall, consolidation, the knowledge graph and episodic
memory as MCP tools over stdio.

Usage:
    anamnesis mcp  # Start MCP server (stdio transport)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from anamnesis.core import MemoryEngine
from anamnesis.errors import AnamnesisError, NotFound
from anamnesis.mcp.handlers import HANDLERS, VALIDATORS
from anamnesis.mcp.tool_definitions import TOOLS

logger = logging.getLogger(__name__)

mcp = Server("anamnesis")

# Owner used for every call in this MCP session
_mcp_user_id: str = "default"


def set_user_id(user_id: str) -> None:
    """Set the owner for this MCP session."""
    global _mcp_user_id
    _mcp_user_id = user_id
    # Drop the cached engine so the next call picks up the new owner
    if hasattr(get_engine, "_instance"):
        get_engine._instance.close()  # type: ignore[attr-defined]
        delattr(get_engine, "_instance")


def get_engine() -> MemoryEngine:
    """Get or create the MemoryEngine instance."""
    if not hasattr(get_engine, "_instance"):
        get_engine._instance = MemoryEngine(user_id=_mcp_user_id)  # type: ignore[attr-defined]
    return get_engine._instance  # type: ignore[attr-defined]


# =============================================================================
# INPUT VALIDATION
# =============================================================================


def validate_tool_input(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Check the tool name and run its argument validator.

    Raises:
        ValueError: prefixed with "Invalid input:" for any rejected call.
    """
    try:
        if not isinstance(name, str) or not name:
            raise ValueError(f"tool name must be a non-empty string, got {name!r}")
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments must be an object, got {type(arguments).__name__}")
        if name not in VALIDATORS:
            raise ValueError(f"Unknown tool: {name}")
        return VALIDATORS[name](arguments)
    except (ValueError, TypeError) as e:
        logger.warning(f"Rejected {name!r} call: {e}")
        raise ValueError(f"Invalid input: {e}") from e


def _error_text(e: Exception) -> Optional[str]:
    """Client-facing text for an expected failure, None for an internal one."""
    if isinstance(e, ValueError):
        message = str(e)
        return message if message.startswith("Invalid input") else f"Invalid input: {message}"
    if isinstance(e, NotFound):
        return f"Not found: {e}"
    if isinstance(e, AnamnesisError):
        return f"Error: {e}"
    if isinstance(e, ConnectionError):
        return "Service temporarily unavailable"
    return None


def handle_tool_error(e: Exception, tool_name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    """Turn an exception into a tool response without leaking internals."""
    text = _error_text(e)
    if text is not None:
        # Engine envelopes were already logged by MemoryEngine
        logger.info(f"{tool_name}: {text}")
        return [TextContent(type="text", text=text)]

    logger.error(
        f"Tool {tool_name} crashed with {type(e).__name__}",
        extra={"tool_name": tool_name, "argument_names": sorted(arguments) if isinstance(arguments, dict) else []},
        exc_info=True,
    )
    return [TextContent(type="text", text="Internal server error")]


# =============================================================================
# MCP PROTOCOL HANDLERS
# =============================================================================


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List available memory tools."""
    return list(TOOLS)


@mcp.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Validate, dispatch and format one tool call."""
    try:
        args = validate_tool_input(name, arguments)
        text = HANDLERS[name](args, get_engine())
    except Exception as e:
        return handle_tool_error(e, name, arguments)
    return [TextContent(type="text", text=text)]


async def run_server():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(
            read_stream,
            write_stream,
            mcp.create_initialization_options(),
        )


def main(user_id: str = "default"):
    """Entry point for MCP server.

    User ID resolution (in order):
    1. Explicit user_id argument (if not "default")
    2. ANAMNESIS_USER_ID environment variable
    3. "default"
    """
    from anamnesis.utils import resolve_user_id

    set_user_id(resolve_user_id(user_id if user_id != "default" else None))
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
