"""Service-layer response models.

Typed Pydantic models for what the tool boundary and the context layer hand
back to callers. Tool results are tagged success/failure values so an
automated caller can branch without exception handling.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, computed_field

from .memory import MemoryNode

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Tool results
# ---------------------------------------------------------------------------


class ToolResult(BaseModel, Generic[T]):
    """Outcome of a tool-boundary operation."""

    success: bool = True
    data: T | None = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> ToolResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_type: str = "error", data: Any = None) -> ToolResult[T]:
        return cls(success=False, error=error, error_type=error_type, data=data)

    def to_wire(self) -> dict[str, Any]:
        """Flat ``{success, data?, error?}`` dictionary for tool callers."""
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            data = self.data
            if isinstance(data, MemoryNode):
                result["data"] = data.to_dict()
            elif isinstance(data, BaseModel):
                result["data"] = data.model_dump(mode="json")
            else:
                result["data"] = data
        if self.error is not None:
            result["error"] = self.error
            result["error_type"] = self.error_type
        return result


class DeleteOutcome(BaseModel):
    """Result of a delete with its cascading edge cleanup.

    ``partial`` is True when the node was removed but some referencing nodes
    could not be rewritten and still hold a stale edge.
    """

    deleted_id: str
    cleaned_ids: list[str] = Field(default_factory=list)
    failed_cleanup_ids: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def partial(self) -> bool:
        return bool(self.failed_cleanup_ids)


# ---------------------------------------------------------------------------
# Context assembly
# ---------------------------------------------------------------------------


class MemoryContext(BaseModel):
    """Memories retrieved for a conversation plus their prompt rendering."""

    memories: list[MemoryNode] = Field(default_factory=list)
    template: str = ""


class AugmentationData(BaseModel):
    """Related memories split by how they were found."""

    vector_memories: list[MemoryNode] = Field(default_factory=list)
    graph_memories: list[MemoryNode] = Field(default_factory=list)

    @property
    def memories(self) -> list[MemoryNode]:
        return [*self.vector_memories, *self.graph_memories]
