"""Unit tests for embedding providers and the provider factory."""

import json
from unittest.mock import MagicMock

import httpx
import numpy as np
import pytest

from mcp_memory_graph.config import EmbeddingSettings
from mcp_memory_graph.embeddings.providers import (
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    create_embedding_provider,
)
from mcp_memory_graph.errors import ConfigurationError, ProviderError


def openai_provider(handler) -> OpenAIEmbeddingProvider:
    return OpenAIEmbeddingProvider(
        api_key="sk-test",
        base_url="https://embeddings.example/v1/",
        transport=httpx.MockTransport(handler),
    )


class TestOpenAIProvider:
    async def test_request_shape_and_index_ordering(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]},
            )

        provider = openai_provider(handler)
        vectors = await provider.embed_batch(["first", "second"])
        await provider.close()

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert seen["url"] == "https://embeddings.example/v1/embeddings"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {"model": "text-embedding-3-small", "input": ["first", "second"]}

    async def test_single_embed(self):
        body = {"data": [{"index": 0, "embedding": [3.0]}]}
        provider = openai_provider(lambda request: httpx.Response(200, json=body))
        assert await provider.embed("text") == [3.0]

    async def test_length_mismatch_is_provider_error(self):
        provider = openai_provider(lambda request: httpx.Response(200, json={"data": []}))
        with pytest.raises(ProviderError, match="Invalid response"):
            await provider.embed_batch(["a"])

    async def test_malformed_item_is_provider_error(self):
        provider = openai_provider(lambda request: httpx.Response(200, json={"data": [{"index": 0}]}))
        with pytest.raises(ProviderError, match="Invalid response"):
            await provider.embed_batch(["a"])

    async def test_http_error_status(self):
        provider = openai_provider(lambda request: httpx.Response(429, text="rate limited"))
        with pytest.raises(ProviderError, match="status 429"):
            await provider.embed("a")

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = openai_provider(handler)
        with pytest.raises(ProviderError, match="ConnectError"):
            await provider.embed("a")

    async def test_empty_batch_makes_no_request(self):
        handler = MagicMock()
        provider = openai_provider(handler)
        assert await provider.embed_batch([]) == []
        handler.assert_not_called()

    def test_missing_api_key(self):
        with pytest.raises(ConfigurationError, match="OpenAI API key is required"):
            OpenAIEmbeddingProvider(api_key=None)


class TestSentenceTransformerProvider:
    async def test_encode_converts_arrays(self):
        provider = SentenceTransformerProvider("test-model")
        model = MagicMock()
        model.encode.return_value = np.array([[1.0, 2.0], [3.0, 4.0]])
        provider._model = model

        vectors = await provider.embed_batch(["a", "b"])

        assert vectors == [[1.0, 2.0], [3.0, 4.0]]
        model.encode.assert_called_once_with(["a", "b"], convert_to_tensor=False)

    def test_model_not_loaded_at_construction(self):
        provider = SentenceTransformerProvider("test-model")
        assert provider._model is None


class TestFactory:
    def test_none_provider(self):
        assert create_embedding_provider(EmbeddingSettings(provider="none")) is None

    def test_sentence_transformers_provider(self):
        provider = create_embedding_provider(EmbeddingSettings(provider="sentence_transformers", model="m"))
        assert isinstance(provider, SentenceTransformerProvider)
        assert provider.model_name == "m"

    def test_openai_uses_openai_default_model(self):
        provider = create_embedding_provider(EmbeddingSettings(provider="openai", api_key="sk-test"))
        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.model == "text-embedding-3-small"

    def test_openai_without_key(self):
        with pytest.raises(ConfigurationError):
            create_embedding_provider(EmbeddingSettings(provider="openai", api_key=None))
