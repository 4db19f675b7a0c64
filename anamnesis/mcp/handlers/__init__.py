"""Handler registry for MCP tools.

Merges HANDLERS and VALIDATORS from all sub-modules into unified dicts.
"""

from typing import Callable, Dict

from anamnesis.mcp.handlers.knowledge import HANDLERS as _KNOWLEDGE_H
from anamnesis.mcp.handlers.knowledge import VALIDATORS as _KNOWLEDGE_V
from anamnesis.mcp.handlers.memory import HANDLERS as _MEMORY_H
from anamnesis.mcp.handlers.memory import VALIDATORS as _MEMORY_V

HANDLERS: Dict[str, Callable] = {
    **_MEMORY_H,
    **_KNOWLEDGE_H,
}

VALIDATORS: Dict[str, Callable] = {
    **_MEMORY_V,
    **_KNOWLEDGE_V,
}
