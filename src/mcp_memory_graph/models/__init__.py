"""Data models for memory nodes, tool inputs, and results."""

from .memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode
from .responses import AugmentationData, DeleteOutcome, MemoryContext, ToolResult

__all__ = [
    "AugmentationData",
    "DeleteOutcome",
    "MemoryContext",
    "MemoryNode",
    "MemoryNodeUpdate",
    "NewMemoryNode",
    "ToolResult",
]
