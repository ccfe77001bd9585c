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
Storage backend factory for the memory graph engine.

Creates and initializes the backend named by ``settings.storage.backend``.
"""

import logging

from ..config import Settings
from ..errors import ConfigurationError
from ..graph.factory import create_graph_client
from .base import MemoryStorage
from .memory_storage import InMemoryStorage
from .qdrant_storage import QdrantStorage

logger = logging.getLogger(__name__)


async def create_storage_instance(settings: Settings) -> MemoryStorage:
    """
    Create and initialize the configured storage backend.

    Returns:
        Initialized MemoryStorage instance
    """
    backend = settings.storage.backend
    logger.info(f"Creating {backend} storage backend instance...")

    if backend == "memory":
        storage: MemoryStorage = InMemoryStorage()
    elif backend == "qdrant":
        qdrant = settings.qdrant
        if not qdrant.url and not qdrant.storage_path:
            raise ConfigurationError("Qdrant backend requires MCP_QDRANT_URL or MCP_QDRANT_STORAGE_PATH")
        graph = await create_graph_client(settings.falkordb)
        storage = QdrantStorage(
            vector_size=qdrant.vector_size,
            collection_name=qdrant.collection_name,
            storage_path=None if qdrant.url else qdrant.storage_path,
            url=qdrant.url,
            config=qdrant,
            graph=graph,
        )
    else:
        raise ConfigurationError(f"Unknown storage backend: {backend}")

    try:
        await storage.initialize()
    except Exception:
        await storage.close()
        raise
    logger.info(f"{type(storage).__name__} initialized successfully")
    return storage
