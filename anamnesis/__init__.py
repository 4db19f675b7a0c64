"""
Anamnesis - memory retrieval and consolidation for conversational agents.

Remember, recall, and keep memory small: hybrid search, importance
scoring, duplicate merging and compression over a local SQLite store.
"""

from importlib.metadata import PackageNotFoundError, version

from .config import MemoryConfig
from .core import MemoryEngine

try:
    __version__ = version("anamnesis")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["MemoryEngine", "MemoryConfig"]
