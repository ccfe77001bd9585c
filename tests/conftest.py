import hashlib
import os
import random

import pytest

# Force CPU-only mode for tests (avoids CUDA compatibility issues)
os.environ["CUDA_VISIBLE_DEVICES"] = ""

from mcp_memory_graph.embeddings.providers import EmbeddingProvider  # noqa: E402
from mcp_memory_graph.embeddings.service import EmbeddingService  # noqa: E402
from mcp_memory_graph.services.memory_service import MemoryService  # noqa: E402
from mcp_memory_graph.services.tool_handler import MemoryToolHandler  # noqa: E402
from mcp_memory_graph.storage.memory_storage import InMemoryStorage  # noqa: E402

VECTOR_SIZE = 16


def deterministic_embedding(text: str, vector_size: int = VECTOR_SIZE) -> list[float]:
    """Create a deterministic embedding from the text hash."""
    seed = int(hashlib.sha256(text.encode()).hexdigest(), 16) % (2**32)
    rng = random.Random(seed)
    return [rng.random() * 2 - 1 for _ in range(vector_size)]


class DeterministicProvider(EmbeddingProvider):
    """Hash-seeded embeddings; ``overrides`` pins vectors for specific texts."""

    def __init__(self, overrides: dict[str, list[float]] | None = None):
        self.overrides = overrides or {}
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        return list(self.overrides.get(text, deterministic_embedding(text)))

    async def embed(self, text: str) -> list[float]:
        self.calls.append([text])
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(text) for text in texts]


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def provider():
    return DeterministicProvider()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def embedding_service(provider, sleep_recorder):
    return EmbeddingService(provider, sleep=sleep_recorder)


@pytest.fixture
def memory_service(storage, embedding_service):
    return MemoryService(storage, embedding_service)


@pytest.fixture
def handler(memory_service):
    return MemoryToolHandler(memory_service)
