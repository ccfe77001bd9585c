"""
Embedding providers.

A provider turns text into vectors and nothing else: no retries, no input
normalisation. Those live in ``EmbeddingService``. Two variants ship:

- ``SentenceTransformerProvider``: local model, loaded lazily on first use
- ``OpenAIEmbeddingProvider``: any OpenAI-compatible ``/embeddings`` endpoint
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..config import EmbeddingSettings
from ..errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


class EmbeddingProvider(ABC):
    """Capability to embed text."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts, returning vectors in input order."""

    async def close(self) -> None:  # noqa: B027
        """Release provider resources."""


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model, encoded in the default executor."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str | None = None):
        self.model_name = model_name
        self.device = device
        self._model = None
        self._model_lock = threading.Lock()

    def _load_model(self):
        # Double-checked so concurrent first calls load the model once
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    from sentence_transformers import SentenceTransformer

                    logger.info(f"Loading embedding model: {self.model_name}")
                    self._model = SentenceTransformer(self.model_name, device=self.device)
                    logger.info(f"Loaded model: {self.model_name}")
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        embeddings = self._load_model().encode(texts, convert_to_tensor=False)
        return [e.tolist() if hasattr(e, "tolist") else list(e) for e in embeddings]

    async def embed(self, text: str) -> list[float]:
        [embedding] = await self.embed_batch([text])
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, texts)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI-compatible embedding endpoint over httpx.

    POSTs ``{"model": ..., "input": [...]}`` to ``{base_url}/embeddings`` and
    returns the vectors ordered by the response's ``index`` field.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigurationError("OpenAI API key is required")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def embed(self, text: str) -> list[float]:
        [embedding] = await self.embed_batch([text])
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self._client.post(
                f"{self.base_url}/embeddings",
                json={"model": self.model, "input": texts},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"OpenAI embedding failed (status {e.response.status_code}): {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI embedding request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ProviderError("Invalid response from OpenAI embedding API") from e

        return self._parse_embeddings(data, len(texts))

    @staticmethod
    def _parse_embeddings(data: Any, expected: int) -> list[list[float]]:
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list) or len(items) != expected:
            raise ProviderError("Invalid response from OpenAI embedding API")
        try:
            items = sorted(items, key=lambda item: item.get("index", 0))
            return [list(item["embedding"]) for item in items]
        except (AttributeError, KeyError, TypeError) as e:
            raise ProviderError("Invalid response from OpenAI embedding API") from e

    async def close(self) -> None:
        await self._client.aclose()


def create_embedding_provider(config: EmbeddingSettings) -> EmbeddingProvider | None:
    """
    Build the provider named by ``config.provider``.

    Returns None for ``"none"``: the engine then runs without embeddings and
    text search raises ``ConfigurationError``.
    """
    if config.provider == "none":
        logger.info("Embedding provider disabled")
        return None
    if config.provider == "sentence_transformers":
        return SentenceTransformerProvider(model_name=config.model)
    if config.provider == "openai":
        api_key = config.api_key.get_secret_value() if config.api_key else None
        model = config.model
        if model == EmbeddingSettings.model_fields["model"].default:
            model = DEFAULT_OPENAI_MODEL
        return OpenAIEmbeddingProvider(
            api_key=api_key,
            model=model,
            base_url=config.base_url,
            timeout=config.timeout,
        )
    raise ConfigurationError(f"Unknown embedding provider: {config.provider}")
