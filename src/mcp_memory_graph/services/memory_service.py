"""
Memory Service - orchestration of embedding generation and persistence.

Couples the embedding service to the storage backend: nodes are embedded
before they are written, content edits re-embed, and text queries are
embedded before vector search. Everything else passes straight through to
storage. Errors propagate to the caller.
"""

import logging

from ..embeddings.service import EmbeddingService
from ..errors import ConfigurationError
from ..models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode
from ..storage.base import MemoryStorage

logger = logging.getLogger(__name__)


class MemoryService:
    """
    Shared service for memory node operations.

    The embedding service is optional; without it nodes are stored as given
    and only vector queries can be searched.
    """

    def __init__(self, storage: MemoryStorage, embedding_service: EmbeddingService | None = None):
        self.storage = storage
        self.embedding_service = embedding_service

    async def create_memory(self, node: NewMemoryNode, auto_generate_embedding: bool = True) -> MemoryNode:
        """
        Persist a new node, embedding its content first when needed.

        Args:
            node: Node to create
            auto_generate_embedding: Embed ``content`` when ``node.embedding``
                is absent and an embedding service is configured

        Returns:
            The stored node
        """
        if node.embedding is None and auto_generate_embedding and self.embedding_service is not None:
            embedding = await self.embedding_service.generate(node.content)
            node = node.model_copy(update={"embedding": embedding})
            logger.debug(f"Generated embedding for new memory of entity {node.entity_id}")
        return await self.storage.create(node)

    async def update_memory(self, node_id: str, updates: MemoryNodeUpdate) -> MemoryNode:
        """Apply a partial update, re-embedding when content changes without a new vector."""
        changes = updates.changes()
        if (
            changes.get("content") is not None
            and "embedding" not in changes
            and self.embedding_service is not None
        ):
            embedding = await self.embedding_service.generate(changes["content"])
            updates = MemoryNodeUpdate(**changes, embedding=embedding)
            logger.debug(f"Regenerated embedding for memory {node_id}")
        return await self.storage.update(node_id, updates)

    async def search_by_query(
        self,
        query: str | list[float],
        entity_id: str,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[MemoryNode]:
        """
        Vector search by text or by a precomputed vector.

        Raises:
            ConfigurationError: text query with no embedding service (before any I/O)
        """
        if isinstance(query, str):
            if self.embedding_service is None:
                raise ConfigurationError("Embedding service is required for text search")
            embedding = await self.embedding_service.generate_query(query)
        else:
            embedding = list(query)
        return await self.storage.search_by_vector(embedding, entity_id, limit=limit, threshold=threshold)

    async def get_memory(self, node_id: str) -> MemoryNode | None:
        return await self.storage.get(node_id)

    async def get_memories(self, node_ids: list[str]) -> list[MemoryNode]:
        return await self.storage.get_many(node_ids)

    async def delete_memory(self, node_id: str) -> None:
        await self.storage.delete(node_id)

    async def list_memories(self, entity_id: str) -> list[MemoryNode]:
        return await self.storage.list_by_entity(entity_id)

    async def get_connected_memories(self, node_id: str, depth: int = 1) -> list[MemoryNode]:
        return await self.storage.get_connected(node_id, depth)

    async def get_connected_memories_from_many(self, node_ids: list[str], depth: int = 1) -> list[MemoryNode]:
        return await self.storage.get_connected_from_many(node_ids, depth)

    async def update_outgoing_edges(self, node_id: str, edges: list[str]) -> MemoryNode:
        return await self.storage.update_outgoing_edges(node_id, edges)

    async def update_embedding(self, node_id: str, embedding: list[float]) -> MemoryNode:
        return await self.storage.update_embedding(node_id, embedding)
