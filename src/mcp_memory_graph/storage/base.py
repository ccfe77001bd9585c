# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Abstract base class for memory graph storage backends.

Every backend must uphold:
    - Entity isolation: reads and searches never return nodes of another
      entity.
    - Similarity is cosine similarity rescaled to [0, 1] as (cos + 1) / 2;
      the threshold is inclusive, results are ordered by descending
      similarity, and nodes without an embedding never match.
    - Traversal semantics are those of ``graph.traversal.traverse``.

Backends raise ``NotFoundError`` on update/delete of a missing id and
``ProviderError`` on backend failure. Storage never retries.
"""

from abc import ABC, abstractmethod

from ..graph.traversal import traverse
from ..models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode


def rescale_cosine(cosine: float) -> float:
    """Map raw cosine similarity in [-1, 1] to [0, 1]."""
    return max(0.0, min(1.0, (cosine + 1.0) / 2.0))


def cosine_threshold(threshold: float) -> float:
    """Inverse of ``rescale_cosine`` for server-side score filters."""
    return 2.0 * threshold - 1.0


class MemoryStorage(ABC):
    """Abstract base class for memory node storage backends."""

    async def initialize(self) -> None:  # noqa: B027
        """Prepare the backend (connections, collections). Idempotent."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""

    @abstractmethod
    async def create(self, node: NewMemoryNode) -> MemoryNode:
        """Persist a new node, assigning its id and timestamps."""

    @abstractmethod
    async def get(self, node_id: str) -> MemoryNode | None:
        """Return the node, or None when it does not exist."""

    async def get_many(self, node_ids: list[str]) -> list[MemoryNode]:
        """
        Return the existing nodes for ``node_ids`` in input order.

        Missing ids are skipped. Backends override this with a batched read.
        """
        nodes = []
        for node_id in dict.fromkeys(node_ids):
            node = await self.get(node_id)
            if node is not None:
                nodes.append(node)
        return nodes

    @abstractmethod
    async def update(self, node_id: str, updates: MemoryNodeUpdate) -> MemoryNode:
        """Apply a partial update. Raises NotFoundError for a missing id."""

    @abstractmethod
    async def delete(self, node_id: str) -> None:
        """Delete the node. Raises NotFoundError for a missing id."""

    @abstractmethod
    async def list_by_entity(self, entity_id: str) -> list[MemoryNode]:
        """All nodes of an entity, newest first."""

    @abstractmethod
    async def search_by_vector(
        self,
        embedding: list[float],
        entity_id: str,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[MemoryNode]:
        """
        Nearest nodes of ``entity_id`` by cosine similarity.

        Args:
            embedding: Query vector
            entity_id: Entity scope
            limit: Maximum number of results
            threshold: Minimum rescaled similarity (inclusive)

        Returns:
            Nodes carrying ``similarity``, ordered by descending similarity
        """

    async def get_connected(self, from_id: str, depth: int = 1) -> list[MemoryNode]:
        """Nodes reachable from ``from_id`` within ``depth`` hops."""
        return await self.get_connected_from_many([from_id], depth)

    async def get_connected_from_many(self, from_ids: list[str], depth: int = 1) -> list[MemoryNode]:
        """Nodes reachable from any of ``from_ids`` within ``depth`` hops."""
        return await traverse(from_ids, depth, self.get_many)

    async def update_outgoing_edges(self, node_id: str, edges: list[str]) -> MemoryNode:
        """Replace the node's outgoing edge list."""
        return await self.update(node_id, MemoryNodeUpdate(outgoing_edges=list(edges)))

    async def update_embedding(self, node_id: str, embedding: list[float]) -> MemoryNode:
        """Replace the node's embedding."""
        return await self.update(node_id, MemoryNodeUpdate(embedding=list(embedding)))
