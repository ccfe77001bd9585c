"""
Hybrid memory graph engine.

Per-entity memory nodes indexed by embedding and linked into a directed
graph, retrievable by similarity and by traversal, and mutable through an
agent-facing tool handler that keeps the graph's invariants.
"""

from .engine import MemoryEngine
from .models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode

__version__ = "0.1.0"

__all__ = ["MemoryEngine", "MemoryNode", "MemoryNodeUpdate", "NewMemoryNode", "__version__"]
