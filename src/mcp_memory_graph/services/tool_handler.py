"""
Memory tool handler: graph mutations issued by an agent.

Every operation validates its flat argument record, enforces the graph
invariants (same-entity links, no self-links, strict link add/remove,
bidirectional links on create, edge cleanup on delete) and returns a
``ToolResult``. Nothing here raises for validation, invariant, or backend
failures.

Edge lists are read-modify-write. Writes to one node's edges go through a
per-node ``asyncio.Lock`` held by this handler, with the node re-read inside
the lock. This serializes concurrent mutations within one process only.
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import (
    CrossEntityError,
    DuplicateLinkError,
    MemoryGraphError,
    MissingLinkError,
    NotFoundError,
    ProviderError,
    SelfLinkError,
    ValidationError,
)
from ..models.memory import MemoryNode, MemoryNodeUpdate, NewMemoryNode
from ..models.responses import DeleteOutcome, ToolResult
from ..models.tool_inputs import CreateMemoryParams, DeleteMemoryParams, UpdateMemoryLinkParams, UpdateMemoryParams
from .memory_service import MemoryService

logger = logging.getLogger(__name__)

# Messages reported for a missing or invalid field, keyed by field name
_FIELD_MESSAGES = {
    "content": "Memory content is required and cannot be empty",
    "entity_id": "Entity ID is required",
    "memory_id": "Memory UUID is required",
    "from_memory_id": "From memory UUID is required",
    "to_memory_id": "To memory UUID is required",
    "action": "Action must be either 'add' or 'remove'",
    "related_memory_ids": "Related memory ids must be a list of UUIDs",
}


def _validation_message(exc: PydanticValidationError) -> str:
    for error in exc.errors():
        if error.get("loc"):
            message = _FIELD_MESSAGES.get(str(error["loc"][0]))
            if message:
                return message
    first = exc.errors()[0] if exc.errors() else {}
    return str(first.get("msg", exc)).removeprefix("Value error, ")


def _same_id(a: Any, b: Any) -> bool:
    return isinstance(a, str) and isinstance(b, str) and bool(a.strip()) and a.strip() == b.strip()


def _tool(name: str, description: str, params: type[BaseModel]) -> dict[str, Any]:
    schema = params.model_json_schema()
    schema.pop("title", None)
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": schema},
    }


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    _tool(
        "create_memory",
        "Store a new memory: a personal fact, experience, preference, or view of this entity. "
        "Do not store general knowledge or summarised answers. Link related existing memories "
        "through related_memory_ids; links are created in both directions.",
        CreateMemoryParams,
    ),
    _tool(
        "update_memory",
        "Replace the content of an existing memory when the information it holds has changed. "
        "Prefer this over creating a new memory for the same fact.",
        UpdateMemoryParams,
    ),
    _tool(
        "update_memory_link",
        "Add or remove a directed link between two memories of the same entity, so memories "
        "that belong together are retrieved together. Call once per direction.",
        UpdateMemoryLinkParams,
    ),
    _tool(
        "delete_memory",
        "Delete a memory that is wrong or no longer relevant. Links pointing at it are removed.",
        DeleteMemoryParams,
    ),
]


class MemoryToolHandler:
    """Processes agent tool calls against a ``MemoryService``."""

    def __init__(self, service: MemoryService):
        self.service = service
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, node_id: str) -> asyncio.Lock:
        lock = self._locks.get(node_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[node_id] = lock
        return lock

    async def _run(self, operation: str, call: Callable[[], Awaitable[ToolResult]]) -> ToolResult:
        try:
            return await call()
        except PydanticValidationError as e:
            return ToolResult.fail(_validation_message(e), ValidationError.code)
        except MemoryGraphError as e:
            logger.info(f"{operation} rejected: {e}")
            return ToolResult.fail(str(e), e.code)
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            return ToolResult.fail(str(e) or type(e).__name__, ProviderError.code)

    # ── Edge helpers (serialized per node) ───────────────────────────────

    async def _add_edge(self, node_id: str, target_id: str, strict: bool) -> MemoryNode | None:
        async with self._lock_for(node_id):
            node = await self.service.get_memory(node_id)
            if node is None:
                raise NotFoundError(node_id)
            if target_id in node.outgoing_edges:
                if strict:
                    raise DuplicateLinkError("Link already exists")
                return None
            return await self.service.update_outgoing_edges(node_id, [*node.outgoing_edges, target_id])

    async def _remove_edge(self, node_id: str, target_id: str, strict: bool) -> MemoryNode | None:
        async with self._lock_for(node_id):
            node = await self.service.get_memory(node_id)
            if node is None:
                raise NotFoundError(node_id)
            if target_id not in node.outgoing_edges:
                if strict:
                    raise MissingLinkError("Link does not exist")
                return None
            edges = [edge for edge in node.outgoing_edges if edge != target_id]
            return await self.service.update_outgoing_edges(node_id, edges)

    async def _require(self, node_id: str) -> MemoryNode:
        node = await self.service.get_memory(node_id)
        if node is None:
            raise NotFoundError(node_id)
        return node

    # ── Tool operations ──────────────────────────────────────────────────

    async def create_memory(
        self,
        content: str,
        entity_id: str,
        related_memory_ids: list[str] | None = None,
    ) -> ToolResult[MemoryNode]:
        """
        Create a memory linked both ways to ``related_memory_ids``.

        Related ids must exist and belong to ``entity_id``. The new node's
        outgoing edges are the related ids; each related node then gets an
        edge back to the new node (added concurrently, skipped if present).
        """

        async def call() -> ToolResult:
            params = CreateMemoryParams(content=content, entity_id=entity_id, related_memory_ids=related_memory_ids)
            related = {node.id: node for node in await self.service.get_memories(params.related_memory_ids)}
            for related_id in params.related_memory_ids:
                node = related.get(related_id)
                if node is None:
                    raise NotFoundError(related_id, f"Related memory with UUID {related_id} not found")
                if node.entity_id != params.entity_id:
                    raise CrossEntityError(f"Related memory {related_id} belongs to a different entity")

            memory = await self.service.create_memory(
                NewMemoryNode(
                    entity_id=params.entity_id,
                    content=params.content,
                    outgoing_edges=params.related_memory_ids,
                )
            )

            if params.related_memory_ids:
                results = await asyncio.gather(
                    *(self._add_edge(rid, memory.id, strict=False) for rid in params.related_memory_ids),
                    return_exceptions=True,
                )
                for rid, result in zip(params.related_memory_ids, results):
                    if isinstance(result, Exception):
                        logger.warning(f"Back-reference {rid} -> {memory.id} failed: {result}")

            logger.info(f"Created memory {memory.id} for entity {memory.entity_id}")
            return ToolResult.ok(memory)

        return await self._run("create_memory", call)

    async def update_memory(self, memory_id: str, content: str) -> ToolResult[MemoryNode]:
        """Replace a memory's content; the embedding is regenerated."""

        async def call() -> ToolResult:
            params = UpdateMemoryParams(memory_id=memory_id, content=content)
            async with self._lock_for(params.memory_id):
                await self._require(params.memory_id)
                updated = await self.service.update_memory(params.memory_id, MemoryNodeUpdate(content=params.content))
            return ToolResult.ok(updated)

        return await self._run("update_memory", call)

    async def update_memory_link(self, from_memory_id: str, to_memory_id: str, action: str) -> ToolResult[MemoryNode]:
        """
        Add or remove the edge ``from_memory_id -> to_memory_id``.

        Strict: adding an existing edge or removing a missing one fails.
        """

        async def call() -> ToolResult:
            if _same_id(from_memory_id, to_memory_id):
                raise SelfLinkError("Cannot link memory to itself")
            params = UpdateMemoryLinkParams(from_memory_id=from_memory_id, to_memory_id=to_memory_id, action=action)

            source = await self._require(params.from_memory_id)
            target = await self._require(params.to_memory_id)
            if source.entity_id != target.entity_id:
                raise CrossEntityError("Cannot link memories from different entities")

            if params.action == "add":
                updated = await self._add_edge(params.from_memory_id, params.to_memory_id, strict=True)
            else:
                updated = await self._remove_edge(params.from_memory_id, params.to_memory_id, strict=True)
            logger.debug(f"Link {params.action}: {params.from_memory_id} -> {params.to_memory_id}")
            return ToolResult.ok(updated)

        return await self._run("update_memory_link", call)

    async def delete_memory(self, memory_id: str) -> ToolResult[DeleteOutcome]:
        """
        Delete a memory after removing every edge that points at it.

        Cleanup is best-effort: the node is deleted even when some referencing
        nodes could not be rewritten, and those are listed in
        ``failed_cleanup_ids`` with ``partial`` set. If the node delete itself
        fails, the failure's ``data`` lists the inbound edges already removed.
        """

        async def call() -> ToolResult:
            params = DeleteMemoryParams(memory_id=memory_id)
            memory = await self._require(params.memory_id)

            referencing = [
                node.id
                for node in await self.service.list_memories(memory.entity_id)
                if node.id != memory.id and memory.id in node.outgoing_edges
            ]
            results = await asyncio.gather(
                *(self._remove_edge(node_id, memory.id, strict=False) for node_id in referencing),
                return_exceptions=True,
            )
            cleaned, failed = [], []
            for node_id, result in zip(referencing, results):
                if isinstance(result, Exception):
                    logger.warning(f"Edge cleanup {node_id} -> {memory.id} failed: {result}")
                    failed.append(node_id)
                else:
                    cleaned.append(node_id)

            try:
                await self.service.delete_memory(memory.id)
            except MemoryGraphError as e:
                logger.warning(f"Delete of {memory.id} failed after edge cleanup of {cleaned}: {e}")
                return ToolResult.fail(
                    f"Failed to delete memory: {e}",
                    e.code,
                    data={"memory_id": memory.id, "cleaned_ids": cleaned, "failed_cleanup_ids": failed},
                )

            outcome = DeleteOutcome(deleted_id=memory.id, cleaned_ids=cleaned, failed_cleanup_ids=failed)
            if outcome.partial:
                logger.warning(f"Deleted memory {memory.id} with {len(failed)} stale inbound edge(s)")
            else:
                logger.info(f"Deleted memory {memory.id}")
            return ToolResult.ok(outcome)

        return await self._run("delete_memory", call)
