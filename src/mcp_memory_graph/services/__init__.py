"""Service layer: orchestration, tool handling, and context assembly."""

from .context import ConnectorConfig, ConversationAdapter, ConversationContext, MemoryConnector, collect_augmentation
from .memory_service import MemoryService
from .tool_handler import TOOL_DEFINITIONS, MemoryToolHandler

__all__ = [
    "TOOL_DEFINITIONS",
    "ConnectorConfig",
    "ConversationAdapter",
    "ConversationContext",
    "MemoryConnector",
    "MemoryService",
    "MemoryToolHandler",
    "collect_augmentation",
]
