"""Error taxonomy for the memory graph engine.

Layers below the tool boundary raise these; ``MemoryToolHandler`` converts
them into ``ToolResult`` failures using ``code`` as the ``error_type``.
"""


class MemoryGraphError(Exception):
    """Base class for all engine errors."""

    code = "error"


class ValidationError(MemoryGraphError):
    """A required field is missing or empty."""

    code = "validation_error"


class NotFoundError(MemoryGraphError):
    """No memory node exists with the given id."""

    code = "not_found"

    def __init__(self, node_id: str, message: str | None = None):
        self.node_id = node_id
        super().__init__(message or f"Memory with UUID {node_id} not found")


class CrossEntityError(MemoryGraphError):
    """The operation would span two entities."""

    code = "cross_entity"


class SelfLinkError(MemoryGraphError):
    """A node cannot link to itself."""

    code = "self_link"


class DuplicateLinkError(MemoryGraphError):
    """The edge being added already exists."""

    code = "duplicate_link"


class MissingLinkError(MemoryGraphError):
    """The edge being removed does not exist."""

    code = "missing_link"


class ConfigurationError(MemoryGraphError):
    """A required collaborator is absent or misconfigured."""

    code = "configuration_error"


class ProviderError(MemoryGraphError):
    """Storage backend or embedding provider failure."""

    code = "provider_error"


class AbortError(MemoryGraphError):
    """The operation was cancelled between retry attempts."""

    code = "aborted"


class ReadOnlyError(MemoryGraphError):
    """A mutation was attempted through a read-only connector."""

    code = "read_only"
