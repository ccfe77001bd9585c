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
Qdrant storage backend for the memory graph engine.

Nodes are Qdrant points keyed by their UUID. The embedding lives in the named
vector ``content`` so nodes without an embedding can still be stored; the
rest of the node is payload. Edges can optionally be mirrored into FalkorDB,
in which case multi-hop traversal fetches its candidate subgraph from the
graph database and replays the BFS over it.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    HnswConfigDiff,
    MatchValue,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    PointVectors,
    VectorParams,
)

from ..config import QdrantSettings
from ..errors import NotFoundError, ProviderError, ValidationError
from ..graph.client import GraphClient
from ..graph.traversal import traverse
from ..models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode, utc_now
from .base import MemoryStorage, cosine_threshold, rescale_cosine

logger = logging.getLogger(__name__)

T = TypeVar("T")

VECTOR_NAME = "content"


class QdrantStorage(MemoryStorage):
    """
    Qdrant storage implementation with circuit breaker fault tolerance.

    Runs in embedded mode (``storage_path``) or server mode (``url``). The
    synchronous qdrant-client API is driven through the default executor.
    """

    def __init__(
        self,
        vector_size: int,
        collection_name: str = "memory_nodes",
        storage_path: str | None = None,
        url: str | None = None,
        config: QdrantSettings | None = None,
        graph: GraphClient | None = None,
    ):
        """
        Initialize Qdrant storage backend in embedded or server mode.

        Args:
            vector_size: Dimension of the embeddings stored in ``content``
            collection_name: Qdrant collection name
            storage_path: Path to Qdrant storage directory (embedded mode)
            url: Qdrant server URL (server mode, e.g., "http://localhost:6333")
            config: HNSW tuning; defaults to environment settings
            graph: Optional FalkorDB edge mirror used for traversal pushdown
        """
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        if not url and not storage_path:
            raise ValueError("Must specify either url (server mode) or storage_path (embedded mode).")

        self.url = url
        self.storage_path = storage_path
        self.vector_size = vector_size
        self.collection_name = collection_name
        self.config = config or QdrantSettings()
        self.graph = graph

        # Circuit breaker state
        self._failure_count = 0
        self._circuit_open_until: datetime | None = None
        self._failure_threshold = 5  # Open circuit after 5 consecutive failures
        self._circuit_timeout = 60  # Reclose circuit after 60 seconds

        self.client: QdrantClient | None = None
        self._initialized = False

        mode = "server" if self.url else "embedded"
        location = self.url if self.url else self.storage_path
        logger.info(
            f"Initializing QdrantStorage: mode={mode}, location={location}, "
            f"collection={collection_name}, vector_size={vector_size}"
        )

    async def initialize(self) -> None:
        """Connect, create the collection if missing, and ensure payload indexes."""
        if self._initialized:
            logger.debug("QdrantStorage already initialized")
            return

        loop = asyncio.get_running_loop()
        if self.url:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(url=self.url))
            logger.info(f"Connected to Qdrant server at {self.url}")
        else:
            self.client = await loop.run_in_executor(None, lambda: QdrantClient(path=self.storage_path))
            logger.info(f"Initialized Qdrant embedded storage at {self.storage_path}")

        exists = await loop.run_in_executor(None, self.client.collection_exists, self.collection_name)
        if not exists:
            logger.info(f"Creating collection '{self.collection_name}' with vector size {self.vector_size}")
            await self._create_collection()

        await self._ensure_payload_indexes()

        self._initialized = True
        logger.info("QdrantStorage initialization complete")

    async def _create_collection(self) -> None:
        loop = asyncio.get_running_loop()
        hnsw_config = HnswConfigDiff(
            m=self.config.HNSW_M,
            ef_construct=self.config.HNSW_EF_CONSTRUCT,
            full_scan_threshold=self.config.HNSW_FULL_SCAN_THRESHOLD,
        )
        await loop.run_in_executor(
            None,
            lambda: self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config={VECTOR_NAME: VectorParams(size=self.vector_size, distance=Distance.COSINE)},
                hnsw_config=hnsw_config,
            ),
        )

    async def _ensure_payload_indexes(self) -> None:
        """
        Ensure required payload indexes exist on the collection.

        Idempotent: Qdrant ignores create_payload_index for an existing index
        with the same schema.
        """
        loop = asyncio.get_running_loop()
        for field_name, schema in (
            ("entity_id", PayloadSchemaType.KEYWORD),
            ("created_at", PayloadSchemaType.FLOAT),
        ):
            await loop.run_in_executor(
                None,
                lambda field_name=field_name, schema=schema: self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=schema,
                ),
            )
            logger.info(f"Ensured payload index on '{field_name}' ({schema})")

    # ── Circuit breaker ──────────────────────────────────────────────────

    def _check_circuit_breaker(self) -> None:
        """
        Check if circuit breaker is open and fail fast if so.

        Raises:
            ProviderError: If circuit breaker is open with retry timestamp
        """
        if self._circuit_open_until is not None:
            if datetime.now() < self._circuit_open_until:
                retry_time = self._circuit_open_until.strftime("%Y-%m-%d %H:%M:%S")
                raise ProviderError(f"Circuit breaker is open until {retry_time}. Service temporarily unavailable.")
            logger.info("Circuit breaker timeout expired, resetting to closed state")
            self._circuit_open_until = None
            self._failure_count = 0

    def _record_failure(self) -> None:
        """Record a failure and open circuit breaker if threshold reached."""
        self._failure_count += 1
        logger.warning(f"Recorded failure #{self._failure_count}")

        if self._failure_count >= self._failure_threshold:
            self._circuit_open_until = datetime.now() + timedelta(seconds=self._circuit_timeout)
            logger.error(
                f"Circuit breaker opened after {self._failure_count} consecutive failures. "
                f"Will retry at {self._circuit_open_until.strftime('%Y-%m-%d %H:%M:%S')}"
            )

    def _record_success(self) -> None:
        """Reset failure count and close circuit if it was in failure state."""
        if self._failure_count > 0:
            logger.info(f"Operation successful, resetting circuit breaker (was at {self._failure_count} failures)")
            self._failure_count = 0
            self._circuit_open_until = None

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        """Run a blocking client call behind the circuit breaker."""
        if self.client is None:
            raise ProviderError("QdrantStorage not initialized. Call initialize() first.")
        self._check_circuit_breaker()
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, fn)
        except Exception as e:
            self._record_failure()
            logger.error(f"Qdrant {operation} failed: {e}")
            raise ProviderError(f"Qdrant {operation} failed: {e}") from e
        self._record_success()
        return result

    # ── Point conversion ─────────────────────────────────────────────────

    def _to_point(self, node: MemoryNode) -> PointStruct:
        vector: dict[str, list[float]] = {}
        if node.embedding is not None:
            if len(node.embedding) != self.vector_size:
                raise ValidationError(
                    f"Embedding dimension mismatch: expected {self.vector_size}, got {len(node.embedding)}"
                )
            vector[VECTOR_NAME] = list(node.embedding)
        return PointStruct(id=node.id, vector=vector, payload=node.to_payload())

    @staticmethod
    def _from_record(record: Any) -> MemoryNode:
        vector = record.vector
        embedding = vector.get(VECTOR_NAME) if isinstance(vector, dict) else vector
        return MemoryNode.from_payload(record.payload, embedding=embedding)

    @staticmethod
    def _entity_filter(entity_id: str) -> Filter:
        return Filter(must=[FieldCondition(key="entity_id", match=MatchValue(value=entity_id))])

    # ── Graph mirror (non-fatal) ─────────────────────────────────────────

    async def _mirror_edges(self, node: MemoryNode) -> None:
        if self.graph is None:
            return
        try:
            await self.graph.set_edges(node.id, node.entity_id, node.outgoing_edges)
        except Exception as e:
            logger.warning(f"Graph mirror update failed for {node.id} (non-fatal): {e}")

    async def _mirror_delete(self, node_id: str) -> None:
        if self.graph is None:
            return
        try:
            await self.graph.delete_node(node_id)
        except Exception as e:
            logger.warning(f"Graph mirror delete failed for {node_id} (non-fatal): {e}")

    # ── MemoryStorage ────────────────────────────────────────────────────

    async def create(self, node: NewMemoryNode) -> MemoryNode:
        now = utc_now()
        stored = MemoryNode(
            id=str(uuid.uuid4()),
            entity_id=node.entity_id,
            content=node.content,
            embedding=node.embedding,
            outgoing_edges=list(node.outgoing_edges),
            metadata=dict(node.metadata),
            created_at=now,
            updated_at=now,
        )
        point = self._to_point(stored)
        await self._call(
            "create",
            lambda: self.client.upsert(collection_name=self.collection_name, points=[point]),
        )
        await self._mirror_edges(stored)
        logger.debug(f"Stored memory {stored.id} for entity {stored.entity_id}")
        return stored

    async def get(self, node_id: str) -> MemoryNode | None:
        nodes = await self.get_many([node_id])
        return nodes[0] if nodes else None

    async def get_many(self, node_ids: list[str]) -> list[MemoryNode]:
        ids = list(dict.fromkeys(node_ids))
        if not ids:
            return []
        # Qdrant rejects ids that are not UUIDs or unsigned ints
        valid_ids = [node_id for node_id in ids if _is_uuid(node_id)]
        if not valid_ids:
            return []

        records = await self._call(
            "retrieve",
            lambda: self.client.retrieve(
                collection_name=self.collection_name,
                ids=valid_ids,
                with_payload=True,
                with_vectors=True,
            ),
        )
        by_id = {node.id: node for node in (self._from_record(record) for record in records)}
        return [by_id[node_id] for node_id in ids if node_id in by_id]

    async def update(self, node_id: str, updates: MemoryNodeUpdate) -> MemoryNode:
        current = await self.get(node_id)
        if current is None:
            raise NotFoundError(node_id)

        changes = updates.changes()
        changes["updated_at"] = utc_now()
        updated = current.model_copy(update=changes, deep=True)

        # Partial write: untouched payload keys and vectors are left as stored
        point = self._to_point(updated)
        payload = {key: point.payload[key] for key in changes if key in point.payload}
        await self._call(
            "update",
            lambda: self.client.set_payload(collection_name=self.collection_name, payload=payload, points=[node_id]),
        )
        if "embedding" in changes:
            if updated.embedding is None:
                await self._call(
                    "update",
                    lambda: self.client.delete_vectors(
                        collection_name=self.collection_name, vectors=[VECTOR_NAME], points=[node_id]
                    ),
                )
            else:
                await self._call(
                    "update",
                    lambda: self.client.update_vectors(
                        collection_name=self.collection_name,
                        points=[PointVectors(id=node_id, vector=point.vector)],
                    ),
                )
        if "outgoing_edges" in changes:
            await self._mirror_edges(updated)
        logger.debug(f"Updated memory {node_id}: {sorted(changes)}")
        return updated

    async def delete(self, node_id: str) -> None:
        if await self.get(node_id) is None:
            raise NotFoundError(node_id)
        await self._call(
            "delete",
            lambda: self.client.delete(
                collection_name=self.collection_name,
                points_selector=PointIdsList(points=[node_id]),
            ),
        )
        await self._mirror_delete(node_id)
        logger.debug(f"Deleted memory {node_id}")

    async def list_by_entity(self, entity_id: str) -> list[MemoryNode]:
        entity_filter = self._entity_filter(entity_id)
        nodes: list[MemoryNode] = []
        offset = None

        while True:
            points, next_offset = await self._call(
                "scroll",
                lambda offset=offset: self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=entity_filter,
                    limit=256,
                    offset=offset,
                    with_payload=True,
                    with_vectors=True,
                ),
            )
            nodes.extend(self._from_record(point) for point in points)
            if next_offset is None:
                break
            offset = next_offset

        nodes.sort(key=lambda n: n.created_at, reverse=True)
        return nodes

    async def search_by_vector(
        self,
        embedding: list[float],
        entity_id: str,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[MemoryNode]:
        if limit <= 0:
            return []

        entity_filter = self._entity_filter(entity_id)
        response = await self._call(
            "query_points",
            lambda: self.client.query_points(
                collection_name=self.collection_name,
                query=list(embedding),
                using=VECTOR_NAME,
                query_filter=entity_filter,
                limit=limit,
                score_threshold=cosine_threshold(threshold),
                with_payload=True,
                with_vectors=True,
            ),
        )

        results = []
        for scored_point in response.points:
            similarity = rescale_cosine(float(scored_point.score))
            if similarity < threshold:
                continue
            node = self._from_record(scored_point)
            if node.entity_id != entity_id:
                continue
            results.append(node.with_similarity(similarity))

        results.sort(key=lambda n: n.similarity, reverse=True)
        return results

    async def get_connected_from_many(self, from_ids: list[str], depth: int = 1) -> list[MemoryNode]:
        """
        Multi-source traversal, pushed down to the graph mirror when present.

        The mirror only supplies candidate ids. Candidates are fetched in one
        batch and the BFS is replayed over them, falling back to storage
        reads for anything the mirror missed.
        """
        if self.graph is None or depth <= 0 or not from_ids:
            return await super().get_connected_from_many(from_ids, depth)

        try:
            candidates = await self.graph.candidate_ids(list(from_ids), depth)
        except Exception as e:
            logger.warning(f"Graph traversal pushdown failed, using storage BFS: {e}")
            return await super().get_connected_from_many(from_ids, depth)

        preloaded = {node.id: node for node in await self.get_many([*from_ids, *candidates])}

        async def fetch_many(node_ids: list[str]) -> list[MemoryNode]:
            missing = [node_id for node_id in node_ids if node_id not in preloaded]
            if missing:
                preloaded.update((node.id, node) for node in await self.get_many(missing))
            return [preloaded[node_id] for node_id in node_ids if node_id in preloaded]

        return await traverse(from_ids, depth, fetch_many)

    async def close(self) -> None:
        """Close the Qdrant client connection. Idempotent."""
        if self.client is not None:
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.client.close)
                logger.info("Qdrant client closed successfully")
            except Exception as e:
                logger.warning(f"Error closing Qdrant client: {e}")
            finally:
                self.client = None
                self._initialized = False
        if self.graph is not None:
            await self.graph.close()


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True
