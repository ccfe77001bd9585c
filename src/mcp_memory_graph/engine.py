"""
Engine assembly.

``MemoryEngine`` wires storage, embeddings, the orchestration service and the
tool handler together. It is constructed and owned by the caller; there is no
process-wide instance.
"""

import logging

from .config import Settings
from .embeddings.providers import EmbeddingProvider, create_embedding_provider
from .embeddings.service import EmbeddingService
from .services.context import ConnectorConfig, MemoryConnector
from .services.memory_service import MemoryService
from .services.tool_handler import MemoryToolHandler
from .storage.base import MemoryStorage
from .storage.factory import create_storage_instance

logger = logging.getLogger(__name__)


class MemoryEngine:
    """Caller-owned bundle of the engine's collaborators."""

    def __init__(
        self,
        storage: MemoryStorage,
        embedding_service: EmbeddingService | None = None,
        settings: Settings | None = None,
    ):
        self.storage = storage
        self.embedding_service = embedding_service
        self.settings = settings or Settings()
        self.service = MemoryService(storage, embedding_service)
        self.handler = MemoryToolHandler(self.service)

    @classmethod
    async def from_settings(cls, settings: Settings | None = None) -> "MemoryEngine":
        """Build and initialize an engine from configuration."""
        settings = settings or Settings()
        # Built before storage so a bad provider config leaves no open connections
        provider: EmbeddingProvider | None = create_embedding_provider(settings.embedding)
        try:
            storage = await create_storage_instance(settings)
        except Exception:
            if provider is not None:
                await provider.close()
            raise

        embedding_service = EmbeddingService.from_settings(provider, settings.embedding) if provider else None

        logger.info(
            f"Memory engine ready: storage={settings.storage.backend}, embedding={settings.embedding.provider}"
        )
        return cls(storage, embedding_service, settings)

    def connector(self, entity_id: str, **overrides) -> MemoryConnector:
        """Connector for one entity, defaults taken from context settings."""
        config = ConnectorConfig.from_settings(entity_id, self.settings.context, **overrides)
        return MemoryConnector(self.service, config, handler=self.handler)

    async def close(self) -> None:
        """Release storage and provider resources."""
        if self.embedding_service is not None:
            await self.embedding_service.provider.close()
        await self.storage.close()
        logger.info("Memory engine closed")
