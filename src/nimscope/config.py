"""Runtime configuration — database, pool, and embedding provider settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import create_async_engine

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

_ENV_PREFIX = "NIMSCOPE_"

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///nimscope.db"
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"


@dataclass(frozen=True, slots=True)
class Config:
    """Settings consumed by the store, the embedding generator, and the indexer.

    Attributes:
        database_url: SQLAlchemy async URL for the symbol store.
        pool_size: Connection pool size for pooled backends.
        ollama_host: Base URL of the embedding provider.
        embedding_provider: ``"ollama"`` (native API) or ``"openai"``
            (OpenAI-compatible ``/v1`` API on the same host).
        embedding_model: Embedding model name.
        embedding_batch_size: Texts per provider round trip.
        embedding_dimensions: Expected vector dimensionality.
        embedding_timeout: Provider request timeout in seconds.
        similarity_threshold: Advisory minimum score for callers; the
            ranking itself does not enforce it.
    """

    database_url: str = DEFAULT_DATABASE_URL
    pool_size: int = 10
    ollama_host: str = DEFAULT_OLLAMA_HOST
    embedding_provider: str = "ollama"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_batch_size: int = 32
    embedding_dimensions: int = 768
    embedding_timeout: float = 30.0
    similarity_threshold: float = 0.5

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Config:
        """Build a config from ``NIMSCOPE_*`` environment variables.

        Unset variables keep their defaults.  Malformed numbers raise
        ``ValueError`` naming the offending variable.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, caster in _FIELDS.items():
            key = _ENV_PREFIX + name.upper()
            raw = env.get(key)
            if raw is None or raw == "":
                continue
            try:
                overrides[name] = caster(raw)
            except ValueError:
                msg = f"Invalid value for {key}: {raw!r}"
                raise ValueError(msg) from None
        return cls(**overrides)

    def with_overrides(self, **changes: Any) -> Config:
        """Return a copy with *changes* applied."""
        return replace(self, **changes)


_FIELDS: dict[str, Any] = {
    "database_url": str,
    "pool_size": int,
    "ollama_host": str,
    "embedding_provider": str,
    "embedding_model": str,
    "embedding_batch_size": int,
    "embedding_dimensions": int,
    "embedding_timeout": float,
    "similarity_threshold": float,
}


def _is_memory_sqlite(url: str) -> bool:
    if not url.startswith("sqlite"):
        return False
    _, _, rest = url.partition("://")
    return rest in ("", "/", "/:memory:") or "mode=memory" in rest


def create_engine(config: Config, **kwargs: Any) -> AsyncEngine:
    """Create the async engine described by *config*.

    In-memory SQLite uses a single static connection, so ``pool_size`` is
    only applied to pooled backends.
    """
    if not _is_memory_sqlite(config.database_url):
        kwargs.setdefault("pool_size", config.pool_size)
    return create_async_engine(config.database_url, **kwargs)
