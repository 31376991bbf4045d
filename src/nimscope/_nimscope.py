"""Nimscope — synchronous wrapper around NimscopeAsync."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from nimscope._nimscope_async import NimscopeAsync

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

    from nimscope.config import Config
    from nimscope.embeddings import EmbeddingProvider
    from nimscope.indexer import IndexResult, ProgressCallback
    from nimscope.store import (
        EmbeddingStats,
        ModuleInfo,
        ModuleListResult,
        ProjectStats,
        SemanticQueryResult,
        SymbolInfo,
        SymbolQueryResult,
    )

logger = logging.getLogger(__name__)


class Nimscope:
    """Synchronous facade backed by a private event loop in a background thread.

    Callers can use it from plain sync code or from inside an already
    running event loop.

    Usage::

        with Nimscope() as ns:
            ns.index_project("/path/to/nim/project")
            for hit in ns.search("parse").symbols:
                print(hit.module, hit.name)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        engine: AsyncEngine | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        embeddings: bool = True,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        self._async = self._run(
            self._async_init(config, engine, embedding_provider, embeddings)
        )

    async def _async_init(
        self,
        config: Config | None,
        engine: AsyncEngine | None,
        embedding_provider: EmbeddingProvider | None,
        embeddings: bool,
    ) -> NimscopeAsync:
        # engine and httpx client must be created on the loop that will use them
        ns = NimscopeAsync(
            config,
            engine=engine,
            embedding_provider=embedding_provider,
            embeddings=embeddings,
        )
        await ns.open()
        return ns

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def __enter__(self) -> Nimscope:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index_project(self, path: str | Path, *, progress: ProgressCallback | None = None) -> IndexResult:
        return self._run(self._async.index_project(path, progress=progress))

    def update_index(
        self,
        path: str | Path,
        files: list[str | Path] | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        return self._run(self._async.update_index(path, files, progress=progress))

    def index_file(self, path: str | Path, project_root: str | Path | None = None) -> IndexResult:
        return self._run(self._async.index_file(path, project_root))

    def clear(self, module: str = "") -> int:
        return self._run(self._async.clear(module))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(self, name_pattern: str = "", kind: str = "", module: str = "", limit: int = 100) -> SymbolQueryResult:
        return self._run(self._async.search(name_pattern, kind, module, limit))

    def semantic_search(
        self,
        query: str,
        *,
        name_pattern: str = "",
        kind: str = "",
        module: str = "",
        limit: int = 10,
    ) -> SemanticQueryResult:
        return self._run(
            self._async.semantic_search(query, name_pattern=name_pattern, kind=kind, module=module, limit=limit)
        )

    def similar_to(self, symbol_id: int, limit: int = 10) -> SemanticQueryResult:
        return self._run(self._async.similar_to(symbol_id, limit))

    def get_symbol(self, symbol_id: int) -> SymbolInfo | None:
        return self._run(self._async.get_symbol(symbol_id))

    def symbol_info(self, name: str, module: str = "") -> SymbolQueryResult:
        return self._run(self._async.symbol_info(name, module))

    def find_module(self, name: str) -> ModuleInfo | None:
        return self._run(self._async.find_module(name))

    def modules(self) -> ModuleListResult:
        return self._run(self._async.modules())

    def embedding_stats(self) -> EmbeddingStats:
        return self._run(self._async.embedding_stats())

    def project_stats(self) -> ProjectStats:
        return self._run(self._async.project_stats())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the async facade, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._async.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)

    @property
    def async_api(self) -> NimscopeAsync:
        return self._async
