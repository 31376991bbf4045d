"""SymbolStore — persistence and lexical/semantic queries over symbols and modules."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from nimscope.embeddings.serialization import coerce_embedding, embedding_to_json, json_to_embedding
from nimscope.exceptions import StorageError
from nimscope.models import EMBEDDING_FIELDS, Module, Symbol
from nimscope.store._ranking import cosine_similarities, distance_and_score
from nimscope.store.dialect import get_dialect, substring_match
from nimscope.store.types import (
    EmbeddingStats,
    ModuleInfo,
    ModuleListResult,
    ProjectStats,
    SearchResult,
    SemanticQueryResult,
    SymbolInfo,
    SymbolQueryResult,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from nimscope.embeddings.serialization import VectorLike

logger = logging.getLogger(__name__)

# Storage failures the store converts to data.
_STORAGE_ERRORS = (SQLAlchemyError, OSError, StorageError)


def _has_value(column: Any) -> Any:
    return (column.is_not(None)) & (column != "")


class SymbolStore:
    """Async store for symbols and modules on one SQLAlchemy engine.

    Nothing here raises on storage failure: inserts return ``-1``, updates
    return ``False``, lookups return ``None`` and queries return a result
    with ``success=False``.  Every failure is logged.

    Ids come from an autoincrement key and are never reused.  Symbols are
    replaced per file by delete-then-insert; module rows are refreshed in
    place with :meth:`update_module`.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._dialect = get_dialect(engine)
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect(self) -> str:
        return self._dialect

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_tables(self) -> None:
        """Create the symbol and module tables if they do not exist."""
        tables = [Symbol.__table__, Module.__table__]  # type: ignore[attr-defined]
        async with self._engine.begin() as conn:
            await conn.run_sync(lambda c: SQLModel.metadata.create_all(c, tables=tables))

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except BaseException:
                await session.rollback()
                raise

    # ------------------------------------------------------------------
    # Symbols: writes
    # ------------------------------------------------------------------

    async def insert_symbol(
        self,
        name: str,
        kind: str,
        module: str,
        file_path: str,
        line: int,
        col: int,
        signature: str = "",
        documentation: str = "",
        visibility: str = "",
        *,
        name_embedding: VectorLike = None,
        signature_embedding: VectorLike = None,
        documentation_embedding: VectorLike = None,
        combined_embedding: VectorLike = None,
        embedding_model: str = "",
        embedding_version: str = "",
    ) -> int:
        """Insert a new symbol row and return its id (``-1`` on failure).

        Always appends: identical arguments produce distinct rows.
        Embeddings may be given as vectors, JSON text or native blobs.
        """
        if not name or not kind:
            logger.warning("Refusing to insert symbol with empty name or kind (%r, %r)", name, kind)
            return -1
        row = Symbol(
            name=name,
            kind=kind,
            module=module,
            file_path=file_path,
            line=line,
            col=col,
            signature=signature or "",
            documentation=documentation or "",
            visibility=visibility or "",
            embedding_model=embedding_model,
            embedding_version=embedding_version,
        )
        vectors = (name_embedding, signature_embedding, documentation_embedding, combined_embedding)
        for field_name, value in zip(EMBEDDING_FIELDS, vectors, strict=True):
            _set_vector(row, field_name, coerce_embedding(value))
        try:
            async with self._session() as session:
                session.add(row)
                await session.flush()
                symbol_id = row.id
                await session.commit()
        except _STORAGE_ERRORS as e:
            logger.error("Failed to insert symbol %s (%s): %s", name, file_path, e)
            return -1
        return symbol_id if symbol_id is not None else -1

    async def update_symbol_embeddings(
        self,
        symbol_id: int,
        name_embedding: VectorLike = None,
        signature_embedding: VectorLike = None,
        documentation_embedding: VectorLike = None,
        combined_embedding: VectorLike = None,
        model: str = "",
        version: str = "",
    ) -> bool:
        """Backfill vectors on an existing symbol.

        Empty arguments (``None``, ``""``, ``[]``) leave that vector
        unchanged.  Returns ``False`` if the row is missing or the update
        fails.  Concurrent updates are last-write-wins.
        """
        vectors = (name_embedding, signature_embedding, documentation_embedding, combined_embedding)
        try:
            async with self._session() as session:
                row = await session.get(Symbol, symbol_id)
                if row is None:
                    logger.debug("No symbol %d to update", symbol_id)
                    return False
                for field_name, value in zip(EMBEDDING_FIELDS, vectors, strict=True):
                    vector = coerce_embedding(value)
                    if vector:
                        _set_vector(row, field_name, vector)
                if model:
                    row.embedding_model = model
                if version:
                    row.embedding_version = version
                await session.commit()
        except _STORAGE_ERRORS as e:
            logger.error("Failed to update embeddings for symbol %d: %s", symbol_id, e)
            return False
        return True

    async def delete_symbols_for_file(self, file_path: str) -> int:
        """Delete every symbol recorded for *file_path*; return the count (``-1`` on failure)."""
        return await self._delete_symbols(Symbol.file_path == file_path, f"file {file_path}")  # type: ignore[arg-type]

    async def clear_symbols(self, module: str = "") -> int:
        """Delete the symbols of *module*, or all symbols when *module* is empty."""
        if module:
            return await self._delete_symbols(Symbol.module == module, f"module {module}")  # type: ignore[arg-type]
        return await self._delete_symbols(None, "all modules")

    async def _delete_symbols(self, condition: Any, label: str) -> int:
        stmt = sa_delete(Symbol)
        if condition is not None:
            stmt = stmt.where(condition)
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                await session.commit()
        except _STORAGE_ERRORS as e:
            logger.error("Failed to delete symbols for %s: %s", label, e)
            return -1
        deleted = result.rowcount or 0  # type: ignore[attr-defined]
        logger.debug("Deleted %d symbols for %s", deleted, label)
        return deleted

    # ------------------------------------------------------------------
    # Symbols: reads
    # ------------------------------------------------------------------

    async def get_symbol_by_id(self, symbol_id: int) -> SymbolInfo | None:
        """Return the symbol with *symbol_id*, or ``None`` if absent."""
        try:
            async with self._session() as session:
                row = await session.get(Symbol, symbol_id)
        except _STORAGE_ERRORS as e:
            logger.error("Failed to load symbol %d: %s", symbol_id, e)
            return None
        return SymbolInfo.from_row(row) if row is not None else None

    async def get_symbol_embedding(self, symbol_id: int, kind: str = "combined") -> list[float]:
        """Return one stored vector of a symbol (``[]`` if absent).

        *kind* is one of ``name``, ``signature``, ``documentation``,
        ``combined``; any other kind yields ``[]``.  The native column is
        read first; the JSON column is the fallback.
        """
        if kind not in EMBEDDING_FIELDS:
            logger.warning("Unknown embedding kind %r requested for symbol %d", kind, symbol_id)
            return []
        try:
            async with self._session() as session:
                row = await session.get(Symbol, symbol_id)
        except _STORAGE_ERRORS as e:
            logger.error("Failed to load embedding for symbol %d: %s", symbol_id, e)
            return []
        if row is None:
            return []
        return _row_vector(row, kind)

    async def search_symbols(
        self,
        name_pattern: str = "",
        kind: str = "",
        module: str = "",
        limit: int = 100,
    ) -> SymbolQueryResult:
        """Lexical search; every non-empty filter must match.

        *name_pattern* is a substring of ``name``; *kind* and
        *module* match exactly.  No filters means no filtering.  Rows come
        back in id order; ``limit <= 0`` means unlimited.
        """
        stmt = select(Symbol).where(*self._filters(name_pattern, kind, module)).order_by(Symbol.id)  # type: ignore[arg-type]
        if limit > 0:
            stmt = stmt.limit(limit)
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except _STORAGE_ERRORS as e:
            logger.error("Symbol search failed: %s", e)
            return SymbolQueryResult(success=False, message=f"Symbol search failed: {e}")
        symbols = [SymbolInfo.from_row(r) for r in rows]
        return SymbolQueryResult(success=True, message=f"Found {len(symbols)} symbol(s)", symbols=symbols)

    async def get_symbol_info(self, name: str, module: str = "") -> SymbolQueryResult:
        """Exact-name lookup, optionally restricted to *module*."""
        conditions = [Symbol.name == name]
        if module:
            conditions.append(Symbol.module == module)
        stmt = select(Symbol).where(*conditions).order_by(Symbol.id)  # type: ignore[arg-type]
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except _STORAGE_ERRORS as e:
            logger.error("Symbol lookup for %s failed: %s", name, e)
            return SymbolQueryResult(success=False, message=f"Symbol lookup failed: {e}")
        if not rows:
            return SymbolQueryResult(success=True, message=f"No symbol named {name!r}")
        symbols = [SymbolInfo.from_row(r) for r in rows]
        return SymbolQueryResult(success=True, message=f"Found {len(symbols)} symbol(s)", symbols=symbols)

    async def semantic_search_symbols(
        self,
        query_vector: VectorLike,
        name_pattern: str = "",
        kind: str = "",
        module: str = "",
        limit: int = 10,
        *,
        model: str = "",
        version: str = "",
    ) -> SemanticQueryResult:
        """Rank symbols by cosine similarity of their combined embedding to *query_vector*.

        Rows without a combined embedding, or whose vector dimension differs
        from the query's, are excluded.  A non-empty *model* / *version*
        keeps only vectors tagged with that embedding model / version, so
        vectors from a retired model are never ranked against a new query.
        Results are ordered by descending ``similarity_score`` with ties
        broken by ascending id.
        """
        conditions = self._filters(name_pattern, kind, module) + _tag_filters(model, version)
        return await self._rank(query_vector, conditions, limit=limit, label="Semantic search")

    async def find_similar_symbols(
        self,
        vector: VectorLike,
        exclude_id: int | None = None,
        limit: int = 10,
        *,
        model: str = "",
        version: str = "",
    ) -> SemanticQueryResult:
        """Rank embedded symbols against *vector*, optionally excluding one id."""
        conditions = _tag_filters(model, version)
        if exclude_id is not None:
            conditions.append(Symbol.id != exclude_id)
        return await self._rank(vector, conditions, limit=limit, label="Similarity search")

    async def _rank(
        self,
        query_vector: VectorLike,
        conditions: list[Any],
        *,
        limit: int,
        label: str,
    ) -> SemanticQueryResult:
        query = coerce_embedding(query_vector)
        if not query:
            return SemanticQueryResult(success=False, message=f"{label} failed: empty query vector")

        # Score on (id, vector) pairs only; full rows are loaded for the hits.
        candidates_stmt = select(Symbol.id, Symbol.combined_embedding_vec).where(
            Symbol.combined_embedding_vec.is_not(None),  # type: ignore[union-attr]
            *conditions,
        )
        try:
            async with self._session() as session:
                candidates = (await session.execute(candidates_stmt)).all()
                scored = sorted(
                    ((sid, *distance_and_score(s)) for sid, s in cosine_similarities(query, candidates)),
                    key=lambda hit: (-hit[2], hit[0]),
                )
                if limit > 0:
                    scored = scored[:limit]
                rows: dict[int, Symbol] = {}
                if scored:
                    hits_stmt = select(Symbol).where(Symbol.id.in_([sid for sid, _, _ in scored]))  # type: ignore[union-attr]
                    rows = {r.id: r for r in (await session.execute(hits_stmt)).scalars().all()}
        except _STORAGE_ERRORS as e:
            logger.error("%s failed: %s", label, e)
            return SemanticQueryResult(success=False, message=f"{label} failed: {e}")

        ranked = [
            SearchResult(symbol=SymbolInfo.from_row(rows[sid]), distance=distance, similarity_score=score)
            for sid, distance, score in scored
            if sid in rows
        ]
        return SemanticQueryResult(success=True, message=f"Found {len(ranked)} result(s)", results=ranked)

    def _filters(self, name_pattern: str, kind: str, module: str) -> list[Any]:
        conditions: list[Any] = []
        if name_pattern:
            conditions.append(substring_match(Symbol.name, name_pattern, self._dialect))
        if kind:
            conditions.append(Symbol.kind == kind)
        if module:
            conditions.append(Symbol.module == module)
        return conditions

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    async def insert_module(
        self,
        name: str,
        file_path: str = "",
        last_modified: datetime | None = None,
        documentation: str = "",
        imports: list[str] | None = None,
    ) -> int:
        """Insert a module row and return its id (``-1`` on failure). No dedup by name."""
        if not name:
            logger.warning("Refusing to insert module with empty name")
            return -1
        row = Module(
            name=name,
            file_path=file_path,
            last_modified=last_modified,
            documentation=documentation or "",
            imports_json=json.dumps(list(imports or [])),
        )
        try:
            async with self._session() as session:
                session.add(row)
                await session.flush()
                module_id = row.id
                await session.commit()
        except _STORAGE_ERRORS as e:
            logger.error("Failed to insert module %s: %s", name, e)
            return -1
        return module_id if module_id is not None else -1

    async def update_module(
        self,
        module_id: int,
        last_modified: datetime | None = None,
        documentation: str | None = None,
        imports: list[str] | None = None,
    ) -> bool:
        """Refresh a module row after its file was re-indexed.

        ``None`` arguments leave that column unchanged.  Returns ``False`` if
        the row is missing or the update fails.
        """
        try:
            async with self._session() as session:
                row = await session.get(Module, module_id)
                if row is None:
                    logger.debug("No module %d to update", module_id)
                    return False
                if last_modified is not None:
                    row.last_modified = last_modified
                if documentation is not None:
                    row.documentation = documentation
                if imports is not None:
                    row.imports_json = json.dumps(list(imports))
                await session.commit()
        except _STORAGE_ERRORS as e:
            logger.error("Failed to update module %d: %s", module_id, e)
            return False
        return True

    async def find_module(self, name: str) -> ModuleInfo | None:
        """Return one module named *name* (the earliest inserted), or ``None``."""
        return await self._first_module([Module.name == name], name)

    async def find_module_by_path(self, name: str, file_path: str) -> ModuleInfo | None:
        """Return the module matching both *name* and *file_path*, or ``None``."""
        return await self._first_module([Module.name == name, Module.file_path == file_path], name)

    async def _first_module(self, conditions: list[Any], label: str) -> ModuleInfo | None:
        stmt = select(Module).where(*conditions).order_by(Module.id).limit(1)  # type: ignore[arg-type]
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                row = result.scalars().first()
        except _STORAGE_ERRORS as e:
            logger.error("Module lookup for %s failed: %s", label, e)
            return None
        return ModuleInfo.from_row(row) if row is not None else None

    async def get_modules(self) -> ModuleListResult:
        """List every module row, ordered by name then id."""
        stmt = select(Module).order_by(Module.name, Module.id)  # type: ignore[arg-type]
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except _STORAGE_ERRORS as e:
            logger.error("Module listing failed: %s", e)
            return ModuleListResult(success=False, message=f"Module listing failed: {e}")
        modules = [ModuleInfo.from_row(r) for r in rows]
        return ModuleListResult(success=True, message=f"Found {len(modules)} module(s)", modules=modules)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_embedding_stats(self) -> EmbeddingStats:
        """Count symbols overall, with any embedding, and per embedding kind."""
        columns = [getattr(Symbol, f"{f}_embedding") for f in EMBEDDING_FIELDS]
        counts = [func.count().filter(_has_value(c)) for c in columns]
        any_embedding = func.count().filter(or_(*(_has_value(c) for c in columns)))
        try:
            async with self._session() as session:
                result = await session.execute(select(func.count(), any_embedding, *counts).select_from(Symbol))
                total, with_any, *per_kind = result.one()
                models_result = await session.execute(
                    select(Symbol.embedding_model)
                    .where(_has_value(Symbol.embedding_model))
                    .distinct()
                    .order_by(Symbol.embedding_model)
                )
                models = [m for (m,) in models_result.all()]
        except _STORAGE_ERRORS as e:
            logger.error("Embedding stats failed: %s", e)
            return EmbeddingStats(success=False, message=f"Embedding stats failed: {e}")
        return EmbeddingStats(
            success=True,
            message=f"{with_any} of {total} symbol(s) have embeddings",
            total_symbols=total,
            symbols_with_embeddings=with_any,
            name_embeddings=per_kind[0],
            signature_embeddings=per_kind[1],
            documentation_embeddings=per_kind[2],
            combined_embeddings=per_kind[3],
            models=models,
        )

    async def get_project_stats(self) -> ProjectStats:
        """Total symbols and modules, plus symbol counts per kind."""
        try:
            async with self._session() as session:
                total_symbols = (await session.execute(select(func.count()).select_from(Symbol))).scalar_one()
                total_modules = (await session.execute(select(func.count()).select_from(Module))).scalar_one()
                kind_rows = await session.execute(
                    select(Symbol.kind, func.count()).group_by(Symbol.kind).order_by(Symbol.kind)
                )
                kinds = {k: n for k, n in kind_rows.all()}
        except _STORAGE_ERRORS as e:
            logger.error("Project stats failed: %s", e)
            return ProjectStats(success=False, message=f"Project stats failed: {e}")
        return ProjectStats(
            success=True,
            message=f"{total_symbols} symbol(s) in {total_modules} module(s)",
            total_symbols=total_symbols,
            total_modules=total_modules,
            kinds=kinds,
        )


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def _tag_filters(model: str, version: str) -> list[Any]:
    conditions: list[Any] = []
    if model:
        conditions.append(Symbol.embedding_model == model)
    if version:
        conditions.append(Symbol.embedding_version == version)
    return conditions


def _set_vector(row: Symbol, field_name: str, vector: list[float] | None) -> None:
    """Write *vector* to both the JSON and the native column of *field_name*."""
    if vector:
        setattr(row, f"{field_name}_embedding", embedding_to_json(vector))
        setattr(row, f"{field_name}_embedding_vec", vector)
    else:
        setattr(row, f"{field_name}_embedding", None)
        setattr(row, f"{field_name}_embedding_vec", None)


def _row_vector(row: Symbol, field_name: str) -> list[float]:
    native = getattr(row, f"{field_name}_embedding_vec")
    if native:
        return list(native)
    text = getattr(row, f"{field_name}_embedding")
    return json_to_embedding(text) if text else []
