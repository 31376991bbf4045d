"""OllamaEmbedding — async embedding provider backed by an Ollama server."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from nimscope.config import DEFAULT_EMBEDDING_MODEL, DEFAULT_OLLAMA_HOST
from nimscope.exceptions import EmbeddingProviderError

logger = logging.getLogger(__name__)


class OllamaEmbedding:
    """Async embedding provider speaking Ollama's native HTTP API.

    Uses ``/api/embed`` (batch input) for vectors, ``/api/tags`` to list
    local models and ``/api/pull`` to fetch a missing one.  Large batches
    are chunked at *batch_size* texts per request.

    The provider owns a single ``httpx.AsyncClient``; it is not meant to be
    shared across concurrently running indexing calls.
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_OLLAMA_HOST,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int | None = None,
        timeout: float = 30.0,
        batch_size: int = 32,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)
        self._host = host.rstrip("/")
        self._model = model
        self._dimensions = dimensions
        self._batch_size = batch_size
        self._client = client or httpx.AsyncClient(base_url=self._host, timeout=timeout)

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string."""
        vectors = await self._call_api([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts, chunking at *batch_size* per request."""
        if not texts:
            return []
        all_vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            chunk = texts[start : start + self._batch_size]
            all_vectors.extend(await self._call_api(chunk))
        return all_vectors

    @property
    def dimensions(self) -> int:
        """Return the embedding dimensionality.

        Taken from the constructor, or learned from the first response.
        """
        if self._dimensions is None:
            msg = f"Dimensions for {self._model!r} are unknown until the first embedding call"
            raise ValueError(msg)
        return self._dimensions

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self._model

    @property
    def host(self) -> str:
        return self._host

    # ------------------------------------------------------------------
    # Model management
    # ------------------------------------------------------------------

    async def health(self) -> bool:
        """Return ``True`` if the server answers ``GET /`` with 200."""
        try:
            response = await self._client.get("/")
        except httpx.HTTPError as e:
            logger.debug("Ollama health check failed at %s: %s", self._host, e)
            return False
        return response.status_code == httpx.codes.OK

    async def list_models(self) -> list[str]:
        """Return the names of models available on the server."""
        data = await self._request("GET", "/api/tags")
        models = data.get("models") or []
        return [m.get("name", "") for m in models if isinstance(m, dict)]

    async def has_model(self, name: str) -> bool:
        """Return whether a model whose name starts with *name* is present."""
        return any(model.startswith(name) for model in await self.list_models())

    async def pull_model(self, name: str) -> bool:
        """Pull *name* (blocking until the server reports completion)."""
        data = await self._request("POST", "/api/pull", json={"model": name, "stream": False})
        status = data.get("status", "")
        return status in ("", "success")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call_api(self, texts: list[str]) -> list[list[float]]:
        """Call ``/api/embed`` and return vectors in input order."""
        data = await self._request("POST", "/api/embed", json={"model": self._model, "input": texts})
        vectors = data.get("embeddings")
        if not isinstance(vectors, list) or len(vectors) != len(texts):
            msg = "No embedding in response"
            raise EmbeddingProviderError(msg)
        result = [[float(v) for v in vector] for vector in vectors]
        if self._dimensions is None and result and result[0]:
            self._dimensions = len(result[0])
        return result

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            msg = f"Ollama request to {self._host}{url} failed: {e}"
            raise EmbeddingProviderError(msg) from e
        if response.status_code != httpx.codes.OK:
            msg = f"HTTP {response.status_code}: {response.text}"
            raise EmbeddingProviderError(msg)
        try:
            data = response.json()
        except ValueError as e:
            msg = f"Invalid JSON from {url}: {e}"
            raise EmbeddingProviderError(msg) from e
        if not isinstance(data, dict):
            msg = f"Unexpected response shape from {url}"
            raise EmbeddingProviderError(msg)
        return data
