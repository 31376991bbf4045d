"""OpenAIEmbedding — provider for OpenAI-compatible ``/v1/embeddings`` endpoints.

Defaults to Ollama's ``/v1`` compatibility layer on the configured host, so
the same local model server can be reached through the ``openai`` SDK.
Point *base_url* at ``https://api.openai.com/v1`` (with an API key) to use
OpenAI itself.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from nimscope.config import DEFAULT_EMBEDDING_MODEL, DEFAULT_OLLAMA_HOST
from nimscope.exceptions import EmbeddingProviderError

try:
    import openai
    from openai import AsyncOpenAI

    _HAS_OPENAI = True
except ImportError:  # pragma: no cover
    _HAS_OPENAI = False

if TYPE_CHECKING:
    from openai import AsyncOpenAI as AsyncOpenAIType

    from nimscope.config import Config

logger = logging.getLogger(__name__)

# Compatible local servers accept any key.
_LOCAL_API_KEY = "ollama"


def _compat_url(host: str) -> str:
    return host.rstrip("/") + "/v1"


class OpenAIEmbedding:
    """Async embedding provider speaking the OpenAI embeddings protocol.

    Inputs are sent in chunks of at most *batch_size* texts.  Transport
    errors, API errors and responses whose vector count does not match the
    input raise :class:`~nimscope.exceptions.EmbeddingProviderError`.
    Requires the ``openai`` package::

        pip install nimscope[openai]
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        max_retries: int = 2,
        timeout: float = 30.0,
        batch_size: int = 32,
    ) -> None:
        if not _HAS_OPENAI:
            msg = (
                "openai is required for OpenAIEmbedding. "
                "Install it with: pip install nimscope[openai]"
            )
            raise ImportError(msg)
        if batch_size < 1:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)

        self._model = model
        self._dimensions = dimensions
        self._requested_dimensions = dimensions
        self._batch_size = batch_size
        self._base_url = base_url or _compat_url(DEFAULT_OLLAMA_HOST)
        self._client: AsyncOpenAIType = AsyncOpenAI(
            api_key=api_key or os.environ.get("OPENAI_API_KEY") or _LOCAL_API_KEY,
            base_url=self._base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    @classmethod
    def from_config(cls, config: Config, *, api_key: str | None = None) -> OpenAIEmbedding:
        """Build a provider for ``{config.ollama_host}/v1`` with the configured model and limits."""
        return cls(
            model=config.embedding_model,
            api_key=api_key,
            base_url=_compat_url(config.ollama_host),
            timeout=config.embedding_timeout,
            batch_size=config.embedding_batch_size,
        )

    # ------------------------------------------------------------------
    # EmbeddingProvider protocol
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string."""
        vectors = await self._call_api([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in order, one API call per *batch_size* chunk."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(await self._call_api(texts[start : start + self._batch_size]))
        return vectors

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
        return self._model

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call_api(self, texts: list[str]) -> list[list[float]]:
        kwargs: dict[str, Any] = {"input": texts, "model": self._model}
        if self._requested_dimensions is not None:
            kwargs["dimensions"] = self._requested_dimensions
        try:
            response = await self._client.embeddings.create(**kwargs)
        except openai.OpenAIError as e:
            msg = f"Embedding request to {self._base_url} failed: {e}"
            raise EmbeddingProviderError(msg) from e

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            msg = f"Expected {len(texts)} embedding(s) from {self._base_url}, got {len(data)}"
            raise EmbeddingProviderError(msg)
        vectors = [[float(v) for v in item.embedding] for item in data]
        if self._dimensions is None and vectors and vectors[0]:
            self._dimensions = len(vectors[0])
            logger.debug("Learned embedding dimensions %d for %s", self._dimensions, self._model)
        return vectors
