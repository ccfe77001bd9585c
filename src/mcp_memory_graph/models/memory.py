"""Memory node data models.

``MemoryNode`` is the single persisted entity. ``NewMemoryNode`` and
``MemoryNodeUpdate`` are the creation and partial-update inputs accepted by
storage backends.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .validators import EntityId, NodeId


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class NewMemoryNode(BaseModel):
    """Input for creating a memory node; the backend assigns id and timestamps."""

    entity_id: EntityId
    content: str = Field(min_length=1)
    embedding: list[float] | None = None
    outgoing_edges: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class MemoryNodeUpdate(BaseModel):
    """Partial update. Only fields explicitly set are applied."""

    content: str | None = Field(default=None, min_length=1)
    embedding: list[float] | None = None
    outgoing_edges: list[str] | None = None
    metadata: dict[str, Any] | None = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller set."""
        return self.model_dump(exclude_unset=True)


class MemoryNode(BaseModel):
    """A stored memory fragment with its embedding and outgoing edges."""

    model_config = ConfigDict(populate_by_name=True)

    id: NodeId
    entity_id: EntityId
    content: str = Field(min_length=1)
    embedding: list[float] | None = None
    outgoing_edges: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Ephemeral: populated on search results only, never persisted
    similarity: float | None = Field(default=None, exclude=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def with_similarity(self, similarity: float) -> "MemoryNode":
        """Return a copy carrying a search similarity score."""
        node = self.model_copy(deep=True)
        node.similarity = similarity
        return node

    def to_payload(self) -> dict[str, Any]:
        """Storage payload (no embedding, no similarity, timestamps as floats)."""
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "content": self.content,
            "outgoing_edges": list(self.outgoing_edges),
            "metadata": self.metadata,
            "created_at": self.created_at.timestamp(),
            "updated_at": self.updated_at.timestamp(),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any], embedding: list[float] | None = None) -> "MemoryNode":
        """Create a node from a storage payload written by ``to_payload``."""
        created_at = payload.get("created_at")
        updated_at = payload.get("updated_at")
        return cls(
            id=payload["id"],
            entity_id=payload["entity_id"],
            content=payload["content"],
            embedding=embedding,
            outgoing_edges=payload.get("outgoing_edges") or [],
            metadata=payload.get("metadata") or {},
            created_at=datetime.fromtimestamp(created_at, timezone.utc) if created_at is not None else utc_now(),
            updated_at=datetime.fromtimestamp(updated_at, timezone.utc) if updated_at is not None else utc_now(),
        )

    def to_dict(self, include_embedding: bool = False) -> dict[str, Any]:
        """Response-shaped dictionary; embeddings are omitted unless requested."""
        data = {
            "id": self.id,
            "entity_id": self.entity_id,
            "content": self.content,
            "outgoing_edges": list(self.outgoing_edges),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.similarity is not None:
            data["similarity"] = self.similarity
        if include_embedding:
            data["embedding"] = self.embedding
        return data
