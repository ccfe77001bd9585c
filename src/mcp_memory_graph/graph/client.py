"""
FalkorDB graph client mirroring memory edges.

The vector store stays the source of truth for nodes and their
``outgoing_edges``. This client keeps a lightweight copy of the edge
structure so multi-hop candidate discovery can run inside the graph
database instead of one storage round-trip per BFS level.

Writes performed:
- ensure_node(): idempotent MERGE on memory creation
- set_edges(): replace a node's outgoing :LINKS edges
- delete_node(): DETACH DELETE on memory deletion
- Schema initialization on startup
"""

import logging
from collections.abc import Iterable

from falkordb.asyncio import FalkorDB
from redis.asyncio import BlockingConnectionPool

from .schema import EDGE_TYPE, SCHEMA_STATEMENTS

logger = logging.getLogger(__name__)


class GraphClient:
    """
    Async FalkorDB client for the memory edge mirror.

    Manages a Redis connection pool against the FalkorDB instance.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: str | None = None,
        graph_name: str = "memory_graph",
        max_connections: int = 16,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.graph_name = graph_name
        self.max_connections = max_connections

        self._pool: BlockingConnectionPool | None = None
        self._db: FalkorDB | None = None
        self._graph = None
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize connection pool, select graph, and apply schema."""
        if self._initialized:
            return

        self._pool = BlockingConnectionPool(
            host=self.host,
            port=self.port,
            password=self.password,
            max_connections=self.max_connections,
            timeout=None,
            decode_responses=True,
        )

        self._db = FalkorDB(connection_pool=self._pool)
        self._graph = self._db.select_graph(self.graph_name)

        for stmt in SCHEMA_STATEMENTS:
            try:
                await self._graph.query(stmt)
            except Exception as e:
                if "already indexed" not in str(e).lower():
                    logger.warning(f"Schema statement warning: {stmt} -> {e}")

        self._initialized = True
        logger.info(f"GraphClient initialized: {self.host}:{self.port}/{self.graph_name}")

    @property
    def graph(self):
        """Expose graph for direct query access."""
        if self._graph is None:
            raise RuntimeError("GraphClient not initialized. Call initialize() first.")
        return self._graph

    # ── Node operations (idempotent) ─────────────────────────────────────

    async def ensure_node(self, node_id: str, entity_id: str) -> None:
        """Create a :Memory node if it doesn't exist (MERGE = idempotent)."""
        await self.graph.query(
            "MERGE (m:Memory {id: $id}) ON CREATE SET m.entity_id = $entity",
            params={"id": node_id, "entity": entity_id},
        )

    async def set_edges(self, node_id: str, entity_id: str, targets: Iterable[str]) -> None:
        """
        Replace the outgoing edges of ``node_id`` with ``targets``.

        Target nodes are MERGEd so edges written before their target's own
        ``ensure_node`` call still resolve once it arrives.
        """
        await self.ensure_node(node_id, entity_id)
        await self.graph.query(
            f"MATCH (src:Memory {{id: $id}})-[e:{EDGE_TYPE}]->() DELETE e",
            params={"id": node_id},
        )
        target_ids = list(dict.fromkeys(targets))
        if not target_ids:
            return
        await self.graph.query(
            "MATCH (src:Memory {id: $id}) "
            "UNWIND $targets AS tid "
            "MERGE (dst:Memory {id: tid}) "
            "ON CREATE SET dst.entity_id = $entity "
            f"MERGE (src)-[:{EDGE_TYPE}]->(dst)",
            params={"id": node_id, "targets": target_ids, "entity": entity_id},
        )

    async def delete_node(self, node_id: str) -> None:
        """Delete a :Memory node and all its edges."""
        await self.graph.query(
            "MATCH (m:Memory {id: $id}) DETACH DELETE m",
            params={"id": node_id},
        )

    # ── Read operations ──────────────────────────────────────────────────

    async def candidate_ids(self, start_ids: list[str], depth: int) -> list[str]:
        """
        Ids reachable from any of ``start_ids`` within ``depth`` hops.

        This is a superset-style candidate set for prefetching; ordering,
        entity filtering and de-duplication are left to the BFS replay.
        """
        if not start_ids or depth <= 0:
            return []

        hops = int(depth)
        result = await self.graph.query(
            "MATCH (src:Memory)"
            f"-[:{EDGE_TYPE}*1..{hops}]->"
            "(dst:Memory) "
            "WHERE src.id IN $ids "
            "RETURN DISTINCT dst.id",
            params={"ids": start_ids},
        )
        return [row[0] for row in result.result_set]

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            try:
                await self._pool.aclose()
                logger.info("GraphClient connection pool closed")
            except Exception as e:
                logger.warning(f"Error closing GraphClient pool: {e}")
            finally:
                self._pool = None
                self._db = None
                self._graph = None
                self._initialized = False
