"""
Bounded-depth, multi-source breadth-first traversal over memory edges.

This is the single implementation of graph reachability. Storage backends
either call it directly over their own lookups, or pre-fetch a candidate
subgraph (e.g. from FalkorDB) and replay it here so the output is identical.

Semantics:
    - Depth 1 = direct successors of any start id.
    - A node is emitted once, at the minimum depth it is discovered, ordered
      by depth then discovery order.
    - Start ids are never emitted, even when re-reachable.
    - One visited set is shared by all sources; membership is checked before
      enqueueing, which also terminates cycles.
    - Dangling edge targets and nodes of an entity other than the start
      nodes' entities are skipped.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import NamedTuple

from ..models.memory import MemoryNode

logger = logging.getLogger(__name__)

FetchMany = Callable[[list[str]], Awaitable[list[MemoryNode]]]


class TraversalHit(NamedTuple):
    node: MemoryNode
    depth: int


async def traverse_with_depth(start_ids: Iterable[str], depth: int, fetch_many: FetchMany) -> list[TraversalHit]:
    """
    Expand from ``start_ids`` up to ``depth`` hops along outgoing edges.

    Args:
        start_ids: Ids to start from (order defines discovery order)
        depth: Maximum number of hops; ``<= 0`` yields nothing
        fetch_many: Async lookup returning the nodes that exist for a list of
            ids (missing ids are simply absent)

    Returns:
        TraversalHit records ordered by depth, then discovery order
    """
    starts = list(dict.fromkeys(start_ids))
    if depth <= 0 or not starts:
        return []

    start_nodes = await fetch_many(starts)
    entities = {node.entity_id for node in start_nodes}
    visited: set[str] = set(starts)
    frontier = start_nodes
    hits: list[TraversalHit] = []

    for level in range(1, depth + 1):
        next_ids: list[str] = []
        for node in frontier:
            for edge_id in node.outgoing_edges:
                if edge_id in visited:
                    continue
                visited.add(edge_id)
                next_ids.append(edge_id)

        if not next_ids:
            break

        fetched = {node.id: node for node in await fetch_many(next_ids)}
        frontier = []
        for node_id in next_ids:
            node = fetched.get(node_id)
            if node is None:
                logger.debug(f"Skipping dangling edge target {node_id}")
                continue
            if node.entity_id not in entities:
                logger.warning(f"Skipping cross-entity edge target {node_id} ({node.entity_id})")
                continue
            hits.append(TraversalHit(node, level))
            frontier.append(node)

    return hits


async def traverse(start_ids: Iterable[str], depth: int, fetch_many: FetchMany) -> list[MemoryNode]:
    """Same as ``traverse_with_depth`` but returns the nodes only."""
    return [hit.node for hit in await traverse_with_depth(start_ids, depth, fetch_many)]


def lookup_from(nodes: Mapping[str, MemoryNode]) -> FetchMany:
    """Build a ``fetch_many`` over an already-loaded id → node mapping."""

    async def fetch_many(node_ids: list[str]) -> list[MemoryNode]:
        return [nodes[node_id] for node_id in node_ids if node_id in nodes]

    return fetch_many
