"""
Context assembly for conversations.

Two-phase retrieval: vector search over an entity's memories, then a
multi-source graph expansion from the hits. Phase-1 hits always come first,
so expansion can never push them out of the result.

``MemoryConnector`` binds retrieval to one entity and plugs into a
conversation loop through an explicit ``ConversationAdapter`` or a plain
callback.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..config import ContextSettings
from ..errors import ReadOnlyError
from ..models.memory import MemoryNode
from ..models.responses import AugmentationData, DeleteOutcome, MemoryContext, ToolResult
from ..models.validators import ConnectorMode, EntityId, NonNegativeInt, UnitFloat
from .memory_service import MemoryService
from .tool_handler import MemoryToolHandler

logger = logging.getLogger(__name__)

AUGMENTATION_THRESHOLD = 0.5


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ConversationContext(BaseModel):
    """Snapshot of a conversation handed to adapters."""

    messages: list[ConversationMessage] = Field(default_factory=list)
    entity_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectorConfig(BaseModel):
    """Per-entity retrieval and mutation settings."""

    entity_id: EntityId
    chain_depth: NonNegativeInt = 2
    mode: ConnectorMode = "read-write"
    max_memory_count: int = Field(default=50, ge=1)
    similarity_threshold: UnitFloat = 0.5
    auto_generate: bool = True

    @classmethod
    def from_settings(cls, entity_id: str, config: ContextSettings, **overrides) -> "ConnectorConfig":
        values = {
            "chain_depth": config.chain_depth,
            "max_memory_count": config.max_memory_count,
            "similarity_threshold": config.similarity_threshold,
        }
        values.update(overrides)
        return cls(entity_id=entity_id, **values)


class ConversationAdapter(ABC):
    """
    Explicit integration point for a conversation manager.

    Subclass and register with ``MemoryConnector.connect``. Only
    ``on_context_change`` is required.
    """

    @abstractmethod
    async def on_context_change(self, context: ConversationContext) -> None:
        """Called when the conversation context changes."""

    async def prepare_context(self, query: str) -> MemoryContext | None:
        """Return a custom context, or None to use the connector's retrieval."""
        return None

    async def on_after_response(self, context: ConversationContext) -> None:  # noqa: B027
        """Called after a response has been produced."""


ContextCallback = Callable[[ConversationContext], Any]


def render_template(memories: list[MemoryNode]) -> str:
    """Human-readable summary of retrieved memories for a system prompt."""
    if not memories:
        return "# Memories\n(No memories stored yet)"

    lines = []
    for index, memory in enumerate(memories, start=1):
        similarity = f" (similarity: {memory.similarity * 100:.1f}%)" if memory.similarity is not None else ""
        lines.append(f"[Memory #{index}{similarity}] {memory.content}")
    return f"# Memories\n{len(memories)} related memories found.\n\n" + "\n".join(lines)


async def collect_augmentation(
    service: MemoryService,
    query: str,
    entity_id: str,
    max_depth: int = 2,
    limit: int = 50,
) -> AugmentationData:
    """
    Related memories for ``query``, split into vector hits and graph expansion.

    The graph list only fills what the vector list leaves of ``limit``.
    """
    vector_memories = await service.search_by_query(query, entity_id, limit=limit, threshold=AUGMENTATION_THRESHOLD)
    vector_ids = [memory.id for memory in vector_memories]

    graph_memories: list[MemoryNode] = []
    if vector_ids:
        seen = set(vector_ids)
        connected = await service.get_connected_memories_from_many(vector_ids, max_depth)
        graph_memories = [memory for memory in connected if memory.id not in seen]

    vector_memories = vector_memories[:limit]
    return AugmentationData(
        vector_memories=vector_memories,
        graph_memories=graph_memories[: max(0, limit - len(vector_memories))],
    )


class MemoryConnector:
    """Entity-scoped retrieval plus guarded mutations for a conversation."""

    def __init__(self, service: MemoryService, config: ConnectorConfig, handler: MemoryToolHandler | None = None):
        self.service = service
        self.config = config
        self.handler = handler or MemoryToolHandler(service)
        self._adapter: ConversationAdapter | None = None
        self._callback: ContextCallback | None = None

    # ── Conversation integration ─────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._adapter is not None or self._callback is not None

    def connect(self, target: ConversationAdapter | ContextCallback) -> None:
        """
        Attach a conversation adapter or a context-change callback.

        Raises:
            RuntimeError: already connected
            TypeError: target is neither a ConversationAdapter nor callable
        """
        if self.is_connected:
            raise RuntimeError("Memory connector is already connected")
        if isinstance(target, ConversationAdapter):
            self._adapter = target
        elif callable(target):
            self._callback = target
        else:
            raise TypeError(f"Expected a ConversationAdapter or a callable, got {type(target).__name__}")
        logger.debug(f"Connector for {self.config.entity_id} connected to {type(target).__name__}")

    def disconnect(self) -> None:
        self._adapter = None
        self._callback = None

    async def handle_context_change(self, context: ConversationContext) -> bool:
        """
        Forward a context change to the connected listener.

        Returns:
            True if a listener was notified
        """
        if not self.is_connected or not self.config.auto_generate:
            return False
        if self._callback is not None:
            result = self._callback(context)
            if inspect.isawaitable(result):
                await result
        if self._adapter is not None:
            await self._adapter.on_context_change(context)
        return True

    async def handle_after_response(self, context: ConversationContext) -> None:
        if not self.is_connected or not self.config.auto_generate:
            return
        if self._adapter is not None:
            await self._adapter.on_after_response(context)

    async def prepare_context(self, query: str) -> MemoryContext:
        """Context for the next turn, from the adapter if it supplies one."""
        if self._adapter is not None:
            custom = await self._adapter.prepare_context(query)
            if custom is not None:
                return custom
        return await self.get_context(query)

    # ── Retrieval ────────────────────────────────────────────────────────

    async def get_context(self, query: str) -> MemoryContext:
        """
        Two-phase retrieval for ``query``.

        Phase 1 is a vector search capped at ``max_memory_count`` above
        ``similarity_threshold``. Phase 2 expands from every phase-1 hit up to
        ``chain_depth`` hops. The merged list keeps phase 1 first and is
        truncated to ``max_memory_count``.
        """
        limit = self.config.max_memory_count
        vector_memories = await self.service.search_by_query(
            query,
            self.config.entity_id,
            limit=limit,
            threshold=self.config.similarity_threshold,
        )

        memories = list(vector_memories)
        if vector_memories and self.config.chain_depth > 0 and len(memories) < limit:
            vector_ids = [memory.id for memory in vector_memories]
            seen = set(vector_ids)
            connected = await self.service.get_connected_memories_from_many(vector_ids, self.config.chain_depth)
            memories.extend(memory for memory in connected if memory.id not in seen)

        memories = memories[:limit]
        logger.debug(
            f"Context for {self.config.entity_id}: {len(memories)} memories ({len(vector_memories)} by vector)"
        )
        return MemoryContext(memories=memories, template=render_template(memories))

    async def collect_augmentation(self, query: str, max_depth: int = 2, limit: int = 50) -> AugmentationData:
        return await collect_augmentation(self.service, query, self.config.entity_id, max_depth=max_depth, limit=limit)

    # ── Manual mutations ─────────────────────────────────────────────────

    def _ensure_writable(self, action: str) -> None:
        if self.config.mode == "read-only":
            raise ReadOnlyError(f"Cannot {action} memory in read-only mode")

    async def create_memory(self, content: str, related_memory_ids: list[str] | None = None) -> ToolResult[MemoryNode]:
        self._ensure_writable("create")
        return await self.handler.create_memory(content, self.config.entity_id, related_memory_ids)

    async def update_memory(self, memory_id: str, content: str) -> ToolResult[MemoryNode]:
        self._ensure_writable("update")
        return await self.handler.update_memory(memory_id, content)

    async def delete_memory(self, memory_id: str) -> ToolResult[DeleteOutcome]:
        self._ensure_writable("delete")
        return await self.handler.delete_memory(memory_id)
