"""
Factory for creating and initializing the graph mirror.

Returns None if the graph layer is disabled (MCP_FALKORDB_ENABLED=false).
"""

import logging

from ..config import FalkorDBSettings
from .client import GraphClient

logger = logging.getLogger(__name__)


async def create_graph_client(config: FalkorDBSettings) -> GraphClient | None:
    """
    Create and initialize the FalkorDB edge mirror if enabled.

    Returns:
        An initialized GraphClient if enabled, None otherwise.
    """
    if not config.enabled:
        logger.info("FalkorDB graph mirror disabled (MCP_FALKORDB_ENABLED=false)")
        return None

    password = config.password.get_secret_value() if config.password else None

    client = GraphClient(
        host=config.host,
        port=config.port,
        password=password,
        graph_name=config.graph_name,
        max_connections=config.max_connections,
    )

    await client.initialize()

    logger.info(f"Graph mirror initialized: {config.host}:{config.port}/{config.graph_name}")
    return client
