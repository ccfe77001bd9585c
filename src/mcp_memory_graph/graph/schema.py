"""
Graph schema for the memory edge mirror.

Defines the Cypher schema for FalkorDB. Schema is applied idempotently on
startup.

Node Labels:
    :Memory  - A memory node (keyed by id, carries entity_id)

Relationship Types:
    :LINKS   - Directed association edge, mirrors ``outgoing_edges``.

Indices:
    Memory(id)        - Unique lookup for memory nodes
    Memory(entity_id) - Entity-scoped scans
"""

# Relationship type used for mirrored outgoing edges.
EDGE_TYPE = "LINKS"

# Cypher statements executed idempotently on graph initialization.
SCHEMA_STATEMENTS: list[str] = [
    "CREATE INDEX IF NOT EXISTS FOR (m:Memory) ON (m.id)",
    "CREATE INDEX IF NOT EXISTS FOR (m:Memory) ON (m.entity_id)",
]
