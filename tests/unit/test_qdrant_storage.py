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
Unit tests for QdrantStorage with a mocked qdrant-client.

Covers point conversion, score rescaling, the circuit breaker, and the
graph-mirror traversal pushdown.
"""

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_memory_graph.errors import NotFoundError, ProviderError, ValidationError
from mcp_memory_graph.models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode
from mcp_memory_graph.storage.qdrant_storage import VECTOR_NAME, QdrantStorage

VECTOR_SIZE = 3


def make_storage(graph=None) -> QdrantStorage:
    storage = QdrantStorage(vector_size=VECTOR_SIZE, storage_path="/tmp/unused", graph=graph)
    storage.client = MagicMock()
    storage._initialized = True
    return storage


def make_node(content: str, edges=None, entity_id: str = "e1", embedding=None, age: int = 0) -> MemoryNode:
    created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=age)
    return MemoryNode(
        id=str(uuid.uuid4()),
        entity_id=entity_id,
        content=content,
        embedding=embedding or [1.0, 0.0, 0.0],
        outgoing_edges=edges or [],
        created_at=created,
        updated_at=created,
    )


def record(node: MemoryNode, score: float | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        id=node.id,
        vector={VECTOR_NAME: node.embedding},
        payload=node.to_payload(),
        score=score,
    )


def serve(storage: QdrantStorage, *nodes: MemoryNode) -> dict[str, MemoryNode]:
    """Make ``client.retrieve`` answer from ``nodes``."""
    by_id = {node.id: node for node in nodes}

    def retrieve(collection_name, ids, with_payload, with_vectors):
        return [record(by_id[node_id]) for node_id in ids if node_id in by_id]

    storage.client.retrieve.side_effect = retrieve
    return by_id


class TestConstruction:
    def test_requires_exactly_one_location(self):
        with pytest.raises(ValueError, match="Cannot specify both"):
            QdrantStorage(vector_size=3, url="http://localhost:6333", storage_path="/tmp/q")
        with pytest.raises(ValueError, match="Must specify either"):
            QdrantStorage(vector_size=3)

    async def test_calls_before_initialize_fail(self):
        storage = QdrantStorage(vector_size=3, url="http://localhost:6333")
        with pytest.raises(ProviderError, match="not initialized"):
            await storage.list_by_entity("e1")


class TestWrites:
    async def test_create_upserts_named_vector_and_payload(self):
        graph = MagicMock(set_edges=AsyncMock())
        storage = make_storage(graph)

        node = await storage.create(NewMemoryNode(entity_id="e1", content="likes tea", embedding=[0.1, 0.2, 0.3]))

        point = storage.client.upsert.call_args.kwargs["points"][0]
        assert point.id == node.id
        assert point.vector == {VECTOR_NAME: [0.1, 0.2, 0.3]}
        assert point.payload["entity_id"] == "e1"
        assert point.payload["content"] == "likes tea"
        graph.set_edges.assert_awaited_once_with(node.id, "e1", [])

    async def test_create_without_embedding_stores_no_vector(self):
        storage = make_storage()

        await storage.create(NewMemoryNode(entity_id="e1", content="likes tea"))

        point = storage.client.upsert.call_args.kwargs["points"][0]
        assert point.vector == {}

    async def test_create_rejects_wrong_dimension(self):
        storage = make_storage()

        with pytest.raises(ValidationError, match="dimension mismatch"):
            await storage.create(NewMemoryNode(entity_id="e1", content="x", embedding=[1.0]))
        storage.client.upsert.assert_not_called()

    async def test_graph_mirror_failure_is_not_fatal(self):
        graph = MagicMock(set_edges=AsyncMock(side_effect=RuntimeError("graph down")))
        storage = make_storage(graph)

        node = await storage.create(NewMemoryNode(entity_id="e1", content="likes tea"))
        assert node.content == "likes tea"

    async def test_update_missing_raises_not_found(self):
        storage = make_storage()
        serve(storage)

        with pytest.raises(NotFoundError):
            await storage.update(str(uuid.uuid4()), MemoryNodeUpdate(content="x"))
        storage.client.set_payload.assert_not_called()

    async def test_update_edges_mirrors(self):
        graph = MagicMock(set_edges=AsyncMock())
        storage = make_storage(graph)
        node = make_node("a")
        serve(storage, node)

        updated = await storage.update(node.id, MemoryNodeUpdate(outgoing_edges=["x"]))

        assert updated.outgoing_edges == ["x"]
        assert updated.content == "a"
        graph.set_edges.assert_awaited_once_with(node.id, "e1", ["x"])

    async def test_update_writes_only_changed_payload_keys(self):
        storage = make_storage()
        node = make_node("a", edges=["x"])
        serve(storage, node)

        await storage.update(node.id, MemoryNodeUpdate(content="a v2"))

        kwargs = storage.client.set_payload.call_args.kwargs
        assert kwargs["points"] == [node.id]
        assert set(kwargs["payload"]) == {"content", "updated_at"}
        assert kwargs["payload"]["content"] == "a v2"
        storage.client.upsert.assert_not_called()
        storage.client.update_vectors.assert_not_called()

    async def test_update_embedding_replaces_named_vector(self):
        storage = make_storage()
        node = make_node("a")
        serve(storage, node)

        await storage.update(node.id, MemoryNodeUpdate(content="b", embedding=[0.0, 1.0, 0.0]))

        [point] = storage.client.update_vectors.call_args.kwargs["points"]
        assert point.id == node.id
        assert point.vector == {VECTOR_NAME: [0.0, 1.0, 0.0]}
        assert "outgoing_edges" not in storage.client.set_payload.call_args.kwargs["payload"]

    async def test_update_embedding_dimension_mismatch_writes_nothing(self):
        storage = make_storage()
        node = make_node("a")
        serve(storage, node)

        with pytest.raises(ValidationError, match="dimension mismatch"):
            await storage.update(node.id, MemoryNodeUpdate(embedding=[1.0]))
        storage.client.set_payload.assert_not_called()

    async def test_delete_missing_raises_not_found(self):
        storage = make_storage()
        serve(storage)

        with pytest.raises(NotFoundError):
            await storage.delete(str(uuid.uuid4()))
        storage.client.delete.assert_not_called()

    async def test_delete_removes_point_and_mirror(self):
        graph = MagicMock(delete_node=AsyncMock())
        storage = make_storage(graph)
        node = make_node("a")
        serve(storage, node)

        await storage.delete(node.id)

        selector = storage.client.delete.call_args.kwargs["points_selector"]
        assert selector.points == [node.id]
        graph.delete_node.assert_awaited_once_with(node.id)


class TestReads:
    async def test_get_many_keeps_order_and_skips_non_uuid(self):
        storage = make_storage()
        a, b = make_node("a"), make_node("b")
        serve(storage, a, b)

        nodes = await storage.get_many([b.id, "not-a-uuid", a.id])

        assert [n.id for n in nodes] == [b.id, a.id]
        assert storage.client.retrieve.call_args.kwargs["ids"] == [b.id, a.id]

    async def test_get_many_with_only_invalid_ids_skips_client(self):
        storage = make_storage()
        assert await storage.get_many(["nope"]) == []
        storage.client.retrieve.assert_not_called()

    async def test_list_by_entity_pages_and_sorts_newest_first(self):
        storage = make_storage()
        old, new = make_node("old", age=0), make_node("new", age=10)
        storage.client.scroll.side_effect = [([record(old)], "page-2"), ([record(new)], None)]

        nodes = await storage.list_by_entity("e1")

        assert [n.content for n in nodes] == ["new", "old"]
        assert storage.client.scroll.call_args_list[1].kwargs["offset"] == "page-2"

    async def test_search_rescales_scores_and_converts_threshold(self):
        storage = make_storage()
        close, far = make_node("close"), make_node("far")
        storage.client.query_points.return_value = SimpleNamespace(
            points=[record(far, score=0.0), record(close, score=0.8)]
        )

        results = await storage.search_by_vector([1.0, 0.0, 0.0], "e1", limit=5, threshold=0.75)

        kwargs = storage.client.query_points.call_args.kwargs
        assert kwargs["using"] == VECTOR_NAME
        assert kwargs["score_threshold"] == pytest.approx(0.5)
        assert kwargs["limit"] == 5
        assert [n.content for n in results] == ["close"]
        assert results[0].similarity == pytest.approx(0.9)

    async def test_search_drops_other_entities(self):
        storage = make_storage()
        other = make_node("theirs", entity_id="e2")
        storage.client.query_points.return_value = SimpleNamespace(points=[record(other, score=1.0)])

        assert await storage.search_by_vector([1.0, 0.0, 0.0], "e1", threshold=0.0) == []


class TestCircuitBreaker:
    async def test_opens_after_consecutive_failures(self):
        storage = make_storage()
        storage.client.upsert.side_effect = ConnectionError("qdrant unreachable")

        for _ in range(5):
            with pytest.raises(ProviderError, match="Qdrant create failed"):
                await storage.create(NewMemoryNode(entity_id="e1", content="x"))

        with pytest.raises(ProviderError, match="Circuit breaker is open"):
            await storage.create(NewMemoryNode(entity_id="e1", content="x"))
        assert storage.client.upsert.call_count == 5

    async def test_success_resets_failure_count(self):
        storage = make_storage()
        storage.client.upsert.side_effect = [ConnectionError("blip"), None]

        with pytest.raises(ProviderError):
            await storage.create(NewMemoryNode(entity_id="e1", content="x"))
        await storage.create(NewMemoryNode(entity_id="e1", content="x"))

        assert storage._failure_count == 0

    async def test_expired_circuit_closes(self):
        storage = make_storage()
        storage._failure_count = 5
        storage._circuit_open_until = datetime.now() - timedelta(seconds=1)
        serve(storage)

        assert await storage.get(str(uuid.uuid4())) is None
        assert storage._circuit_open_until is None


class TestTraversalPushdown:
    async def test_candidates_prefetched_and_bfs_replayed(self):
        c = make_node("c")
        b = make_node("b", edges=[c.id])
        a = make_node("a", edges=[b.id])
        graph = MagicMock(candidate_ids=AsyncMock(return_value=[b.id, c.id]))
        storage = make_storage(graph)
        serve(storage, a, b, c)

        nodes = await storage.get_connected_from_many([a.id], 2)

        assert [n.id for n in nodes] == [b.id, c.id]
        graph.candidate_ids.assert_awaited_once_with([a.id], 2)
        assert storage.client.retrieve.call_count == 1

    async def test_stale_mirror_falls_back_to_storage_reads(self):
        c = make_node("c")
        b = make_node("b", edges=[c.id])
        a = make_node("a", edges=[b.id])
        graph = MagicMock(candidate_ids=AsyncMock(return_value=[b.id]))
        storage = make_storage(graph)
        serve(storage, a, b, c)

        nodes = await storage.get_connected_from_many([a.id], 2)

        assert [n.id for n in nodes] == [b.id, c.id]
        assert storage.client.retrieve.call_count == 2

    async def test_mirror_failure_uses_plain_bfs(self):
        b = make_node("b")
        a = make_node("a", edges=[b.id])
        graph = MagicMock(candidate_ids=AsyncMock(side_effect=RuntimeError("graph down")))
        storage = make_storage(graph)
        serve(storage, a, b)

        nodes = await storage.get_connected(a.id, 3)

        assert [n.id for n in nodes] == [b.id]
