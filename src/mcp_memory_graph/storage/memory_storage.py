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
In-process storage backend.

Dictionary-backed implementation of ``MemoryStorage`` for tests and embedded
use. Similarity search is a brute-force numpy cosine scan over the entity's
nodes.
"""

import asyncio
import logging
import uuid

import numpy as np

from ..errors import NotFoundError
from ..models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode, utc_now
from .base import MemoryStorage, rescale_cosine

logger = logging.getLogger(__name__)


class InMemoryStorage(MemoryStorage):
    """Volatile storage keeping nodes in a dict keyed by id."""

    def __init__(self):
        self._nodes: dict[str, MemoryNode] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._nodes)

    async def create(self, node: NewMemoryNode) -> MemoryNode:
        now = utc_now()
        stored = MemoryNode(
            id=str(uuid.uuid4()),
            entity_id=node.entity_id,
            content=node.content,
            embedding=list(node.embedding) if node.embedding is not None else None,
            outgoing_edges=list(node.outgoing_edges),
            metadata=dict(node.metadata),
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._nodes[stored.id] = stored
        logger.debug(f"Created memory {stored.id} for entity {stored.entity_id}")
        return stored.model_copy(deep=True)

    async def get(self, node_id: str) -> MemoryNode | None:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node is not None else None

    async def get_many(self, node_ids: list[str]) -> list[MemoryNode]:
        return [
            self._nodes[node_id].model_copy(deep=True) for node_id in dict.fromkeys(node_ids) if node_id in self._nodes
        ]

    async def update(self, node_id: str, updates: MemoryNodeUpdate) -> MemoryNode:
        async with self._lock:
            current = self._nodes.get(node_id)
            if current is None:
                raise NotFoundError(node_id)
            changes = updates.changes()
            changes["updated_at"] = utc_now()
            updated = current.model_copy(update=changes, deep=True)
            self._nodes[node_id] = updated
        logger.debug(f"Updated memory {node_id}: {sorted(changes)}")
        return updated.model_copy(deep=True)

    async def delete(self, node_id: str) -> None:
        async with self._lock:
            if self._nodes.pop(node_id, None) is None:
                raise NotFoundError(node_id)
        logger.debug(f"Deleted memory {node_id}")

    async def list_by_entity(self, entity_id: str) -> list[MemoryNode]:
        nodes = [node for node in self._nodes.values() if node.entity_id == entity_id]
        nodes.sort(key=lambda n: n.created_at, reverse=True)
        return [node.model_copy(deep=True) for node in nodes]

    async def search_by_vector(
        self,
        embedding: list[float],
        entity_id: str,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[MemoryNode]:
        if limit <= 0:
            return []

        candidates = [
            node
            for node in self._nodes.values()
            if node.entity_id == entity_id and node.embedding and len(node.embedding) == len(embedding)
        ]
        if not candidates:
            return []

        query = np.asarray(embedding, dtype=np.float64)
        query_norm = np.linalg.norm(query)
        if query_norm == 0:
            return []

        matrix = np.asarray([node.embedding for node in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        # Zero vectors have no direction and never match
        valid = norms > 0
        cosines = np.zeros(len(candidates))
        cosines[valid] = (matrix[valid] @ query) / (norms[valid] * query_norm)

        scored = []
        for cos, ok, node in zip(cosines, valid, candidates):
            similarity = rescale_cosine(float(cos))
            if ok and similarity >= threshold:
                scored.append((similarity, node))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [node.with_similarity(score) for score, node in scored[:limit]]
