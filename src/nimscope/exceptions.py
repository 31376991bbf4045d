"""Custom exception hierarchy for nimscope.

These are raised inside the engine and converted to data (result flags,
``-1`` ids, ``None``, empty vectors) before reaching public callers.
"""


class NimscopeError(Exception):
    """Base exception for all nimscope errors."""


class ExtractionError(NimscopeError):
    """Raised when a single declaration cannot be parsed."""

    def __init__(self, message: str, line: int = 0) -> None:
        super().__init__(message)
        self.line = line


class ProjectNotFoundError(NimscopeError):
    """Raised when a project path does not exist or is not a readable directory."""


class EmbeddingInputEmpty(NimscopeError):
    """Raised when an embedding strategy receives blank input."""


class EmbeddingProviderError(NimscopeError):
    """Raised when the embedding provider is unreachable or returns an error."""


class StorageError(NimscopeError):
    """Raised on storage backend failures (DB connection, malformed query, etc.)."""


class SerializationError(NimscopeError):
    """Raised when vector text cannot be decoded."""
