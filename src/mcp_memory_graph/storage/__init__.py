"""Storage backends for memory nodes."""

from .base import MemoryStorage
from .memory_storage import InMemoryStorage
from .qdrant_storage import QdrantStorage

__all__ = ["InMemoryStorage", "MemoryStorage", "QdrantStorage"]
