#!/usr/bin/env python3
"""MCP server for the memory graph engine.

Native MCP protocol implementation using FastMCP. Tool arguments are
validated by the tool handler's Pydantic input models; every tool returns a
``{success, data?, error?, error_type?}`` dictionary.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .config import settings
from .engine import MemoryEngine
from .errors import MemoryGraphError
from .models.responses import MemoryContext, ToolResult
from .models.tool_inputs import MemoryContextParams
from .services.context import ConnectorConfig, MemoryConnector

logger = logging.getLogger(__name__)


@dataclass
class MCPServerContext:
    """Application context for the MCP server."""

    engine: MemoryEngine


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Build the engine on startup and release it on shutdown."""
    engine = await MemoryEngine.from_settings(settings)
    try:
        yield MCPServerContext(engine=engine)
    finally:
        logger.info("Shutting down memory graph engine...")
        await engine.close()


mcp = FastMCP("MCP Memory Graph", lifespan=mcp_server_lifespan)


def _engine(ctx: Context) -> MemoryEngine:
    return ctx.request_context.lifespan_context.engine


# =============================================================================
# GRAPH MUTATIONS
# =============================================================================


@mcp.tool()
async def create_memory(
    content: str,
    entity_id: str,
    ctx: Context,
    related_memory_ids: list[str] | str | None = None,
) -> dict[str, Any]:
    """Store a new memory for an entity, optionally linked to existing memories.

    Store personal facts, experiences, preferences, or views of the entity.
    Do not store general knowledge or summarised answers.

    Args:
        content: Memory text
        entity_id: Entity (persona, user, organisation) the memory belongs to
        related_memory_ids: Ids of existing memories of the same entity to link.
            Links are created in both directions.

    Returns:
        {success, data: memory} or {success: false, error, error_type}
    """
    result = await _engine(ctx).handler.create_memory(content, entity_id, related_memory_ids)
    return result.to_wire()


@mcp.tool()
async def update_memory(memory_id: str, content: str, ctx: Context) -> dict[str, Any]:
    """Replace the content of an existing memory. Its embedding is regenerated.

    Use when a stored fact has changed instead of creating a new memory.

    Args:
        memory_id: Id of the memory to update
        content: New memory text
    """
    result = await _engine(ctx).handler.update_memory(memory_id, content)
    return result.to_wire()


@mcp.tool()
async def update_memory_link(from_memory_id: str, to_memory_id: str, action: str, ctx: Context) -> dict[str, Any]:
    """Add or remove a directed link between two memories of the same entity.

    Adding an existing link or removing a missing one fails. Call once per
    direction for a two-way link.

    Args:
        from_memory_id: Source memory id
        to_memory_id: Target memory id
        action: "add" or "remove"
    """
    result = await _engine(ctx).handler.update_memory_link(from_memory_id, to_memory_id, action)
    return result.to_wire()


@mcp.tool()
async def delete_memory(memory_id: str, ctx: Context) -> dict[str, Any]:
    """Permanently delete a memory and every link pointing at it.

    Args:
        memory_id: Id of the memory to delete

    Returns:
        {success, data: {deleted_id, cleaned_ids, failed_cleanup_ids, partial}}
    """
    result = await _engine(ctx).handler.delete_memory(memory_id)
    return result.to_wire()


# =============================================================================
# CONTEXT RETRIEVAL
# =============================================================================


@mcp.tool()
async def get_memory_context(
    query: str,
    entity_id: str,
    ctx: Context,
    limit: int = 50,
    depth: int = 2,
    threshold: float = 0.5,
) -> dict[str, Any]:
    """Retrieve memories relevant to a query: vector matches first, then linked memories.

    Args:
        query: Conversation text to match against
        entity_id: Entity whose memories are searched
        limit: Maximum number of memories returned (1-500)
        depth: How many links to follow from each vector match
        threshold: Minimum similarity (0.0-1.0) for vector matches

    Returns:
        {success, data: {memories, template}}
    """
    try:
        params = MemoryContextParams(query=query, entity_id=entity_id, limit=limit, depth=depth, threshold=threshold)
    except ValidationError as e:
        return ToolResult.fail(str(e), "validation_error").to_wire()

    engine = _engine(ctx)
    connector = MemoryConnector(
        engine.service,
        ConnectorConfig(
            entity_id=params.entity_id,
            chain_depth=params.depth,
            max_memory_count=params.limit,
            similarity_threshold=params.threshold,
            mode="read-only",
        ),
        handler=engine.handler,
    )
    try:
        context: MemoryContext = await connector.get_context(params.query)
    except MemoryGraphError as e:
        return ToolResult.fail(str(e), e.code).to_wire()
    except Exception as e:
        logger.error(f"get_memory_context failed: {e}")
        return ToolResult.fail(str(e), "provider_error").to_wire()

    return ToolResult.ok(
        {"memories": [memory.to_dict() for memory in context.memories], "template": context.template}
    ).to_wire()


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Main entry point for the MCP memory graph server."""
    logging.basicConfig(level=logging.INFO)
    server = settings.server

    logger.info(f"Starting MCP Memory Graph server ({server.transport})")
    logger.info(f"Storage backend: {settings.storage.backend}")

    if server.transport == "stdio":
        mcp.run(transport="stdio")
    else:
        mcp.run(transport="http", host=server.host, port=server.port, stateless_http=True)


if __name__ == "__main__":
    main()
