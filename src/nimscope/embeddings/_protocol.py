"""EmbeddingProvider protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding providers.

    Implementations convert text into fixed-dimension float vectors
    suitable for similarity search.  Failures raise; the
    :class:`~nimscope.embeddings.EmbeddingGenerator` turns them into
    unsuccessful results.
    """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors, in input order."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class SupportsModelManagement(Protocol):
    """Providers that can check their server and fetch models on demand."""

    async def health(self) -> bool:
        """Return whether the provider's server answers."""
        ...

    async def has_model(self, name: str) -> bool:
        """Return whether *name* is present on the server."""
        ...

    async def pull_model(self, name: str) -> bool:
        """Ask the server to fetch *name*; return whether it succeeded."""
        ...
