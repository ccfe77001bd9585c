"""Embedding providers and the retrying embedding service."""

from .providers import (
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    create_embedding_provider,
)
from .service import EmbeddingService

__all__ = [
    "EmbeddingProvider",
    "EmbeddingService",
    "OpenAIEmbeddingProvider",
    "SentenceTransformerProvider",
    "create_embedding_provider",
]
