"""
Graph layer for the memory graph engine.

- ``traverse``: bounded-depth multi-source BFS, the single reachability
  implementation used by every storage backend
- ``GraphClient``: optional FalkorDB mirror of outgoing edges used to push
  candidate discovery down to the graph database
"""

from .client import GraphClient
from .schema import EDGE_TYPE
from .traversal import TraversalHit, lookup_from, traverse, traverse_with_depth

__all__ = [
    "EDGE_TYPE",
    "GraphClient",
    "TraversalHit",
    "lookup_from",
    "traverse",
    "traverse_with_depth",
]
