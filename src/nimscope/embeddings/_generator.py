"""EmbeddingGenerator — embedding strategies over a provider, failures as data."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from nimscope.config import Config
from nimscope.embeddings._protocol import SupportsModelManagement
from nimscope.embeddings.ollama import OllamaEmbedding
from nimscope.exceptions import EmbeddingInputEmpty, EmbeddingProviderError

if TYPE_CHECKING:
    from nimscope.embeddings._protocol import EmbeddingProvider

logger = logging.getLogger(__name__)

EMBEDDING_VERSION = "1.0"
"""Version tag stored next to vectors; bump to invalidate stored embeddings."""

_CAMEL_RE = re.compile(r"([a-z])([A-Z])")
_WS_RE = re.compile(r"\s+")
_DOC_MARKERS = ("##*", "*##", "##")


@dataclass(frozen=True, slots=True)
class EmbeddingResult:
    """Outcome of one embedding call.

    Attributes:
        success: Whether a vector was produced.
        embedding: The vector (empty on failure).
        error: Failure description ("" on success).
    """

    success: bool
    embedding: list[float] = field(default_factory=list)
    error: str = ""

    @classmethod
    def failure(cls, error: str) -> EmbeddingResult:
        return cls(success=False, error=error)


@dataclass(frozen=True, slots=True)
class SymbolEmbeddings:
    """The four per-symbol embeddings plus the model/version that produced them."""

    name: EmbeddingResult
    signature: EmbeddingResult
    documentation: EmbeddingResult
    combined: EmbeddingResult
    model: str
    version: str = EMBEDDING_VERSION

    @property
    def any_success(self) -> bool:
        return any(r.success for r in (self.name, self.signature, self.documentation, self.combined))

    def vector(self, kind: str) -> list[float] | None:
        """Return the vector for *kind* (``"name"``, ``"combined"``...) or None if it failed."""
        result: EmbeddingResult = getattr(self, kind)
        return result.embedding if result.success else None


# ---------------------------------------------------------------------------
# Text shaping
# ---------------------------------------------------------------------------


def clean_documentation(doc: str) -> str:
    """Strip doc-comment artifacts and collapse whitespace."""
    for marker in _DOC_MARKERS:
        doc = doc.replace(marker, "")
    return _WS_RE.sub(" ", doc).strip()


def name_text(name: str, module: str = "") -> str:
    """Split camelCase into words and add module context.

    >>> name_text("parseJsonNode", "json")
    'Function: parse json node in module json'
    """
    if not name.strip():
        raise EmbeddingInputEmpty("Empty name")
    words = _CAMEL_RE.sub(r"\1 \2", name.strip()).lower()
    if module.strip():
        return f"Function: {words} in module {module.strip()}"
    return f"Function: {words}"


def signature_text(signature: str) -> str:
    if not signature.strip():
        raise EmbeddingInputEmpty("Empty signature")
    return f"Function signature: {_WS_RE.sub(' ', signature).strip()}"


def documentation_text(doc: str) -> str:
    cleaned = clean_documentation(doc) if doc.strip() else ""
    if not cleaned:
        raise EmbeddingInputEmpty("Empty documentation")
    return cleaned


def combined_text(name: str, signature: str, documentation: str) -> str:
    """Join the non-empty parts as ``Name: ... . Signature: ... . Description: ...``."""
    parts: list[str] = []
    if name.strip():
        parts.append(f"Name: {name.strip()}")
    if signature.strip():
        parts.append(f"Signature: {_WS_RE.sub(' ', signature).strip()}")
    cleaned = clean_documentation(documentation) if documentation.strip() else ""
    if cleaned:
        parts.append(f"Description: {cleaned}")
    if not parts:
        raise EmbeddingInputEmpty("No content to embed")
    return ". ".join(parts)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


def provider_from_config(config: Config) -> EmbeddingProvider:
    """Build the provider named by ``config.embedding_provider``.

    ``"openai"`` needs the ``openai`` extra; an unknown name raises
    ``ValueError``.
    """
    if config.embedding_provider == "ollama":
        return OllamaEmbedding(
            host=config.ollama_host,
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            timeout=config.embedding_timeout,
            batch_size=config.embedding_batch_size,
        )
    if config.embedding_provider == "openai":
        from nimscope.embeddings.openai import OpenAIEmbedding

        return OpenAIEmbedding.from_config(config)
    msg = f"Unknown embedding provider: {config.embedding_provider!r}"
    raise ValueError(msg)


class EmbeddingGenerator:
    """Turns symbol text into vectors through an :class:`EmbeddingProvider`.

    Every strategy returns an :class:`EmbeddingResult`; blank input fails
    fast without contacting the provider, and provider errors come back as
    ``success=False`` with the provider's message.

    One generator is meant to be owned by one orchestration call; it holds
    a single provider client and does no locking of its own.
    """

    def __init__(
        self,
        config: Config | None = None,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self._config = config or Config()
        self._provider = provider if provider is not None else provider_from_config(self._config)
        self._available = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    @property
    def version(self) -> str:
        return EMBEDDING_VERSION

    @property
    def batch_size(self) -> int:
        return self._config.embedding_batch_size

    @property
    def available(self) -> bool:
        """Result of the last :meth:`check_health` call (``False`` before any check)."""
        return self._available

    def is_stale(self, model: str, version: str) -> bool:
        """Return whether vectors tagged ``(model, version)`` came from another model/version."""
        return model != self.model_name or version != self.version

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def check_health(self) -> bool:
        """Probe the provider and remember the outcome in :attr:`available`.

        Providers without a health endpoint are assumed reachable.
        """
        if isinstance(self._provider, SupportsModelManagement):
            try:
                self._available = await self._provider.health()
            except Exception as e:
                logger.debug("Embedding provider health check failed: %s", e)
                self._available = False
        else:
            self._available = True
        return self._available

    async def ensure_model(self, model: str | None = None) -> bool:
        """Best effort: make sure *model* is present on the provider, pulling it if needed."""
        name = model or self.model_name
        if not isinstance(self._provider, SupportsModelManagement):
            return True
        try:
            if await self._provider.has_model(name):
                return True
            logger.info("Embedding model %s not present; pulling", name)
            return await self._provider.pull_model(name)
        except Exception as e:
            logger.warning("Error ensuring model %s is available: %s", name, e)
            return False

    async def close(self) -> None:
        """Release the provider's client, if it has one."""
        close = getattr(self._provider, "close", None)
        if close is not None:
            await close()

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def embed_text(self, text: str) -> EmbeddingResult:
        """Embed arbitrary *text*."""
        if not text.strip():
            return EmbeddingResult.failure("Empty text")
        return await self._embed(text)

    async def embed_name(self, name: str, module: str = "") -> EmbeddingResult:
        """Embed a symbol name, with its module as context."""
        return await self._embed_shaped(name_text, name, module)

    async def embed_signature(self, signature: str) -> EmbeddingResult:
        """Embed a signature with whitespace normalized."""
        return await self._embed_shaped(signature_text, signature)

    async def embed_documentation(self, documentation: str) -> EmbeddingResult:
        """Embed documentation with comment markers removed."""
        return await self._embed_shaped(documentation_text, documentation)

    async def embed_combined(self, name: str, signature: str, documentation: str) -> EmbeddingResult:
        """Embed name, signature and documentation together."""
        return await self._embed_shaped(combined_text, name, signature, documentation)

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed *texts* in provider batches; one result per input, in order.

        Blank entries fail individually.  A failing batch, or one that comes
        back with the wrong number of vectors, marks each of its entries as
        failed with the provider's message.
        """
        results: list[EmbeddingResult | None] = [None] * len(texts)
        pending = [i for i, text in enumerate(texts) if text.strip()]
        for i, text in enumerate(texts):
            if not text.strip():
                results[i] = EmbeddingResult.failure("Empty text")

        size = max(self.batch_size, 1)
        for start in range(0, len(pending), size):
            indices = pending[start : start + size]
            try:
                vectors = await self._provider.embed_batch([texts[i] for i in indices])
                if len(vectors) != len(indices):
                    msg = f"Provider returned {len(vectors)} vector(s) for {len(indices)} text(s)"
                    raise EmbeddingProviderError(msg)
                chunk = [_result_from_vector(vector) for vector in vectors]
            except Exception as e:
                logger.debug("Embedding batch of %d failed: %s", len(indices), e)
                for i in indices:
                    results[i] = EmbeddingResult.failure(str(e) or type(e).__name__)
                continue
            for i, result in zip(indices, chunk, strict=True):
                results[i] = result

        return [r if r is not None else EmbeddingResult.failure("Not embedded") for r in results]

    async def embed_symbol(
        self,
        name: str,
        module: str,
        signature: str,
        documentation: str,
    ) -> SymbolEmbeddings:
        """Produce all four embeddings for one symbol in a single provider batch."""
        shapers = (
            (name_text, (name, module)),
            (signature_text, (signature,)),
            (documentation_text, (documentation,)),
            (combined_text, (name, signature, documentation)),
        )
        texts: list[str] = []
        failures: dict[int, EmbeddingResult] = {}
        for i, (shape, args) in enumerate(shapers):
            try:
                texts.append(shape(*args))
            except EmbeddingInputEmpty as e:
                failures[i] = EmbeddingResult.failure(str(e))
                texts.append("")

        embedded = await self.embed_batch(texts)
        results = [failures.get(i, embedded[i]) for i in range(len(shapers))]
        return SymbolEmbeddings(
            name=results[0],
            signature=results[1],
            documentation=results[2],
            combined=results[3],
            model=self.model_name,
            version=self.version,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _embed_shaped(self, shape, *args: str) -> EmbeddingResult:  # noqa: ANN001
        try:
            text = shape(*args)
        except EmbeddingInputEmpty as e:
            return EmbeddingResult.failure(str(e))
        return await self._embed(text)

    async def _embed(self, text: str) -> EmbeddingResult:
        try:
            vector = await self._provider.embed(text)
        except Exception as e:
            logger.debug("Embedding call failed: %s", e)
            return EmbeddingResult.failure(str(e) or type(e).__name__)
        return _result_from_vector(vector)


def _result_from_vector(vector: list[float]) -> EmbeddingResult:
    if not vector:
        return EmbeddingResult.failure("No embedding in response")
    return EmbeddingResult(success=True, embedding=[float(v) for v in vector])
