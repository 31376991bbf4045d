"""NimscopeAsync — primary async class wiring store, embeddings and indexer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from nimscope.config import Config, create_engine
from nimscope.embeddings import EmbeddingGenerator
from nimscope.indexer import Indexer
from nimscope.store import SemanticQueryResult, SymbolStore

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from nimscope.embeddings import EmbeddingProvider
    from nimscope.indexer import IndexResult, ProgressCallback
    from nimscope.store import (
        EmbeddingStats,
        ModuleInfo,
        ModuleListResult,
        ProjectStats,
        SymbolInfo,
        SymbolQueryResult,
    )

logger = logging.getLogger(__name__)


class NimscopeAsync:
    """Async facade over the symbol store, embedding generator and indexer.

    Usage::

        async with NimscopeAsync(Config.from_env()) as ns:
            await ns.index_project("/path/to/nim/project")
            hits = await ns.semantic_search("parse a json document")

    An *engine* passed in is borrowed and left open on :meth:`close`; one
    created from *config* is disposed.  Pass ``embeddings=False`` to index
    metadata only.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        engine: AsyncEngine | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        embeddings: bool = True,
    ) -> None:
        self._config = config or Config()
        self._owns_engine = engine is None
        self._engine = engine if engine is not None else create_engine(self._config)
        self._store = SymbolStore(self._engine)
        self._generator: EmbeddingGenerator | None = None
        if embeddings or embedding_provider is not None:
            self._generator = EmbeddingGenerator(self._config, embedding_provider)
        self._indexer = Indexer(self._store, self._generator)
        self._opened = False
        self._closed = False

    async def __aenter__(self) -> NimscopeAsync:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the tables if needed. Called implicitly by every operation."""
        if self._opened:
            return
        await self._store.create_tables()
        self._opened = True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._generator is not None:
            await self._generator.close()
        if self._owns_engine:
            await self._store.close()

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_project(
        self,
        path: str | Path,
        *,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        await self.open()
        return await self._indexer.index_project(path, progress=progress)

    async def update_index(
        self,
        path: str | Path,
        files: list[str | Path] | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        """Re-index only the files under *path* that are new or changed since the last run."""
        await self.open()
        return await self._indexer.update_index(path, files, progress=progress)

    async def index_file(self, path: str | Path, project_root: str | Path | None = None) -> IndexResult:
        await self.open()
        return await self._indexer.index_file(path, project_root)

    async def clear(self, module: str = "") -> int:
        """Delete the symbols of *module* (all symbols if empty); return the count."""
        await self.open()
        return await self._store.clear_symbols(module)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search(
        self,
        name_pattern: str = "",
        kind: str = "",
        module: str = "",
        limit: int = 100,
    ) -> SymbolQueryResult:
        await self.open()
        return await self._store.search_symbols(name_pattern, kind, module, limit)

    async def semantic_search(
        self,
        query: str,
        *,
        name_pattern: str = "",
        kind: str = "",
        module: str = "",
        limit: int = 10,
    ) -> SemanticQueryResult:
        """Embed *query* and rank stored symbols against it.

        Only vectors tagged with the current embedding model and version
        are ranked.
        """
        await self.open()
        if self._generator is None:
            return SemanticQueryResult(success=False, message="Semantic search is disabled: no embedding provider")
        embedded = await self._generator.embed_text(query)
        if not embedded.success:
            return SemanticQueryResult(success=False, message=f"Could not embed query: {embedded.error}")
        return await self._store.semantic_search_symbols(
            embedded.embedding,
            name_pattern,
            kind,
            module,
            limit,
            model=self._generator.model_name,
            version=self._generator.version,
        )

    async def similar_to(self, symbol_id: int, limit: int = 10) -> SemanticQueryResult:
        """Rank other symbols by similarity to the stored combined embedding of *symbol_id*.

        With an embedding provider configured, a symbol whose vectors came
        from another model or version is refused, and only current vectors
        are ranked.
        """
        await self.open()
        symbol = await self._store.get_symbol_by_id(symbol_id)
        vector = await self._store.get_symbol_embedding(symbol_id, "combined") if symbol is not None else []
        if symbol is None or not vector:
            return SemanticQueryResult(success=False, message=f"Symbol {symbol_id} has no combined embedding")
        if self._generator is None:
            return await self._store.find_similar_symbols(vector, exclude_id=symbol_id, limit=limit)
        if self._generator.is_stale(symbol.embedding_model, symbol.embedding_version):
            msg = (
                f"Symbol {symbol_id} has stale embeddings "
                f"({symbol.embedding_model or 'unknown'} {symbol.embedding_version or '?'}); re-index to refresh"
            )
            return SemanticQueryResult(success=False, message=msg)
        return await self._store.find_similar_symbols(
            vector,
            exclude_id=symbol_id,
            limit=limit,
            model=self._generator.model_name,
            version=self._generator.version,
        )

    async def get_symbol(self, symbol_id: int) -> SymbolInfo | None:
        await self.open()
        return await self._store.get_symbol_by_id(symbol_id)

    async def symbol_info(self, name: str, module: str = "") -> SymbolQueryResult:
        await self.open()
        return await self._store.get_symbol_info(name, module)

    async def find_module(self, name: str) -> ModuleInfo | None:
        await self.open()
        return await self._store.find_module(name)

    async def modules(self) -> ModuleListResult:
        await self.open()
        return await self._store.get_modules()

    async def embedding_stats(self) -> EmbeddingStats:
        await self.open()
        return await self._store.get_embedding_stats()

    async def project_stats(self) -> ProjectStats:
        await self.open()
        return await self._store.get_project_stats()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> Config:
        return self._config

    @property
    def store(self) -> SymbolStore:
        return self._store

    @property
    def generator(self) -> EmbeddingGenerator | None:
        return self._generator

    @property
    def indexer(self) -> Indexer:
        return self._indexer
