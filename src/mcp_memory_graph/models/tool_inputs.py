"""Tool input models.

Pydantic models for the four graph-mutation tools and the context read tool.
Each tool validates its flat argument record by constructing the
corresponding model; required-field and enum checks live here as
declarative constraints.
"""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, Field, model_validator

from .validators import Content, EntityId, LinkAction, NodeId, NodeIds, NonNegativeInt, UnitFloat


class CreateMemoryParams(BaseModel):
    """Validated input for the ``create_memory`` tool."""

    content: Content = Field(
        description="Memory content: a personal fact, experience, preference, or view of this entity."
    )
    entity_id: EntityId = Field(description="Entity this memory belongs to (e.g. persona, user, or workspace id).")
    related_memory_ids: NodeIds = Field(
        default_factory=list,
        description="Ids of existing memories of the same entity to link with (bidirectional).",
    )


class UpdateMemoryParams(BaseModel):
    """Validated input for the ``update_memory`` tool."""

    memory_id: NodeId = Field(description="Id of the memory to update.")
    content: Content = Field(description="Replacement content. The embedding is regenerated.")


class UpdateMemoryLinkParams(BaseModel):
    """Validated input for the ``update_memory_link`` tool."""

    from_memory_id: NodeId = Field(description="Source memory id.")
    to_memory_id: NodeId = Field(description="Target memory id.")
    action: LinkAction = Field(description="'add' to create the edge, 'remove' to delete it.")

    @model_validator(mode="after")
    def distinct_endpoints(self) -> Self:
        """A memory cannot link to itself."""
        if self.from_memory_id == self.to_memory_id:
            raise ValueError("Cannot link memory to itself")
        return self


class DeleteMemoryParams(BaseModel):
    """Validated input for the ``delete_memory`` tool."""

    memory_id: NodeId = Field(description="Id of the memory to delete. Edges pointing at it are removed.")


class MemoryContextParams(BaseModel):
    """Validated input for the ``get_memory_context`` tool."""

    query: Content
    entity_id: EntityId
    limit: int = Field(default=50, ge=1, le=500)
    depth: NonNegativeInt = 2
    threshold: UnitFloat = 0.5
