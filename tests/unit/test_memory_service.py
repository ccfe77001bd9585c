"""
Unit tests for MemoryService orchestration.

Embedding generation on create/update and text-query search; storage
pass-throughs are covered by the storage tests.
"""

from unittest.mock import AsyncMock

import pytest

from mcp_memory_graph.errors import ConfigurationError
from mcp_memory_graph.models.memory import MemoryNodeUpdate, NewMemoryNode
from mcp_memory_graph.services.memory_service import MemoryService
from mcp_memory_graph.storage.base import MemoryStorage


class TestCreate:
    async def test_embeds_content_when_missing(self, memory_service, provider):
        node = await memory_service.create_memory(NewMemoryNode(entity_id="e1", content="likes tea"))

        assert node.embedding == await provider.embed("likes tea")
        assert provider.calls[0] == ["likes tea"]

    async def test_explicit_embedding_kept(self, memory_service, provider):
        node = await memory_service.create_memory(
            NewMemoryNode(entity_id="e1", content="likes tea", embedding=[1.0, 0.0])
        )

        assert node.embedding == [1.0, 0.0]
        assert provider.calls == []

    async def test_auto_generate_disabled(self, memory_service, provider):
        node = await memory_service.create_memory(
            NewMemoryNode(entity_id="e1", content="likes tea"), auto_generate_embedding=False
        )

        assert node.embedding is None
        assert provider.calls == []

    async def test_without_embedding_service_stores_as_given(self, storage):
        service = MemoryService(storage)
        node = await service.create_memory(NewMemoryNode(entity_id="e1", content="likes tea"))
        assert node.embedding is None


class TestUpdate:
    async def test_content_change_regenerates_embedding(self, memory_service, provider):
        node = await memory_service.create_memory(NewMemoryNode(entity_id="e1", content="likes tea"))

        updated = await memory_service.update_memory(node.id, MemoryNodeUpdate(content="likes coffee"))

        assert updated.content == "likes coffee"
        assert updated.embedding == await provider.embed("likes coffee")
        assert updated.embedding != node.embedding

    async def test_explicit_embedding_not_overwritten(self, memory_service, provider):
        node = await memory_service.create_memory(NewMemoryNode(entity_id="e1", content="likes tea"))
        provider.calls.clear()

        updated = await memory_service.update_memory(
            node.id, MemoryNodeUpdate(content="likes coffee", embedding=[0.5, 0.5])
        )

        assert updated.embedding == [0.5, 0.5]
        assert provider.calls == []

    async def test_edge_only_update_does_not_embed(self, memory_service, provider):
        node = await memory_service.create_memory(NewMemoryNode(entity_id="e1", content="likes tea"))
        provider.calls.clear()

        updated = await memory_service.update_memory(node.id, MemoryNodeUpdate(outgoing_edges=["x"]))

        assert updated.outgoing_edges == ["x"]
        assert updated.embedding == node.embedding
        assert provider.calls == []


class TestSearch:
    async def test_text_query_is_embedded(self, memory_service, provider):
        provider.overrides["tea"] = [1.0, 0.0]
        provider.overrides["hot drinks"] = [1.0, 0.1]
        await memory_service.create_memory(NewMemoryNode(entity_id="e1", content="tea"))

        results = await memory_service.search_by_query("hot drinks", "e1", threshold=0.9)

        assert [n.content for n in results] == ["tea"]
        assert results[0].similarity > 0.9

    async def test_vector_query_skips_embedding(self, memory_service, provider):
        await memory_service.create_memory(NewMemoryNode(entity_id="e1", content="tea", embedding=[1.0, 0.0]))

        results = await memory_service.search_by_query([1.0, 0.0], "e1")

        assert len(results) == 1
        assert provider.calls == []

    async def test_text_query_without_embedding_service_fails_before_io(self):
        storage = AsyncMock(spec=MemoryStorage)
        service = MemoryService(storage)

        with pytest.raises(ConfigurationError):
            await service.search_by_query("tea", "e1")
        storage.search_by_vector.assert_not_awaited()

    async def test_search_passes_limit_and_threshold(self):
        storage = AsyncMock(spec=MemoryStorage)
        storage.search_by_vector.return_value = []
        service = MemoryService(storage)

        await service.search_by_query([0.1, 0.2], "e1", limit=3, threshold=0.25)

        storage.search_by_vector.assert_awaited_once_with([0.1, 0.2], "e1", limit=3, threshold=0.25)
