"""
Configuration for the memory graph engine.

Settings are grouped by concern and loaded from environment variables via
pydantic-settings. Each group has its own ``MCP_<GROUP>_`` prefix, e.g.
``MCP_QDRANT_URL`` or ``MCP_EMBEDDING_PROVIDER``.
"""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Storage backend selection."""

    model_config = SettingsConfigDict(env_prefix="MCP_STORAGE_", extra="ignore")

    backend: Literal["memory", "qdrant"] = "memory"


class QdrantSettings(BaseSettings):
    """Qdrant vector store settings."""

    model_config = SettingsConfigDict(env_prefix="MCP_QDRANT_", extra="ignore")

    url: str | None = None
    storage_path: str | None = None
    collection_name: str = "memory_nodes"
    vector_size: int = Field(default=384, ge=1)

    # HNSW index tuning
    HNSW_M: int = 16
    HNSW_EF_CONSTRUCT: int = 100
    HNSW_FULL_SCAN_THRESHOLD: int = 10000


class FalkorDBSettings(BaseSettings):
    """FalkorDB graph mirror settings (traversal pushdown, optional)."""

    model_config = SettingsConfigDict(env_prefix="MCP_FALKORDB_", extra="ignore")

    enabled: bool = False
    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: SecretStr | None = None
    graph_name: str = "memory_graph"
    max_connections: int = Field(default=16, ge=1)


class EmbeddingSettings(BaseSettings):
    """Embedding provider and retry policy."""

    model_config = SettingsConfigDict(env_prefix="MCP_EMBEDDING_", extra="ignore")

    provider: Literal["sentence_transformers", "openai", "none"] = "sentence_transformers"
    model: str = "all-MiniLM-L6-v2"
    api_key: SecretStr | None = None
    base_url: str = "https://api.openai.com/v1"
    timeout: float = Field(default=30.0, gt=0)

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: float = Field(default=500.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)


class ContextSettings(BaseSettings):
    """Defaults for conversational context assembly."""

    model_config = SettingsConfigDict(env_prefix="MCP_CONTEXT_", extra="ignore")

    chain_depth: int = Field(default=2, ge=0)
    max_memory_count: int = Field(default=50, ge=1)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


class ServerSettings(BaseSettings):
    """MCP server transport settings."""

    model_config = SettingsConfigDict(env_prefix="MCP_SERVER_", extra="ignore")

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    transport: Literal["http", "stdio"] = "http"


class Settings(BaseSettings):
    """Root settings object composing every group."""

    model_config = SettingsConfigDict(extra="ignore")

    storage: StorageSettings = Field(default_factory=StorageSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    falkordb: FalkorDBSettings = Field(default_factory=FalkorDBSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


settings = Settings()
