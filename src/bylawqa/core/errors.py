"""Exception hierarchy for bylawqa."""

from typing import Any


class BylawQAError(Exception):
    """Base exception for the bylaw retrieval pipeline."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(BylawQAError):
    """Missing credentials, unknown backend, or a mismatched index shape. Never retried."""


class EmbeddingDimensionError(ConfigurationError):
    """The embedding provider returned vectors of the wrong size for the index."""


class VectorStoreError(BylawQAError):
    """The vector store could not be reached or rejected the request."""


class EmptyVectorResponse(VectorStoreError):
    """The vector store answered with no matches at all."""
