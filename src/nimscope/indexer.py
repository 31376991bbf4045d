"""Indexer — walk a Nim project and persist its declarations, optionally with embeddings."""

from __future__ import annotations

import inspect
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeAlias

from nimscope.analyzers import AnalyzerRegistry
from nimscope.exceptions import ProjectNotFoundError
from nimscope.resolver import SOURCE_SUFFIX, ModuleResolver

if TYPE_CHECKING:
    from collections.abc import Callable

    from nimscope.analyzers import Declaration
    from nimscope.embeddings import EmbeddingGenerator, SymbolEmbeddings
    from nimscope.store import SymbolStore

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset({"nimcache", ".git", "htmldocs", "docs"})
"""Directory names never descended into (hidden directories are skipped too)."""


class IndexState(Enum):
    """Phases of one indexing run."""

    NOT_STARTED = "not_started"
    DISCOVERING = "discovering"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class IndexProgress:
    """Progress notification passed to the ``progress`` callback.

    Attributes:
        state: Phase the run just entered.
        file: File being processed ("" outside per-file phases).
        index: 1-based position of *file* in discovery order (0 if none).
        total: Number of files discovered so far.
        message: Human-readable detail.
    """

    state: IndexState
    file: str = ""
    index: int = 0
    total: int = 0
    message: str = ""


ProgressCallback: TypeAlias = "Callable[[IndexProgress], Any]"


@dataclass
class IndexResult:
    """Result of indexing a project or a single file."""

    success: bool
    message: str
    symbols_indexed: int = 0
    modules_indexed: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    embeddings_generated: int = 0
    state: IndexState = IndexState.NOT_STARTED
    errors: list[str] = field(default_factory=list)

    def merge(self, other: IndexResult) -> None:
        self.symbols_indexed += other.symbols_indexed
        self.modules_indexed += other.modules_indexed
        self.files_failed += other.files_failed
        self.files_skipped += other.files_skipped
        self.embeddings_generated += other.embeddings_generated
        self.errors.extend(other.errors)


def discover_sources(root: Path, extensions: frozenset[str] = frozenset({SOURCE_SUFFIX})) -> list[Path]:
    """Return every file under *root* with one of *extensions*, in sorted, depth-first order."""
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS and not d.startswith("."))
        found.extend(
            Path(dirpath) / name for name in sorted(filenames) if os.path.splitext(name)[1].lower() in extensions
        )
    return found


def _check_project(root: Path) -> None:
    if not root.exists():
        msg = f"Project path does not exist: {root}"
        raise ProjectNotFoundError(msg)
    if not root.is_dir():
        msg = f"Project path is not a directory: {root}"
        raise ProjectNotFoundError(msg)
    if not os.access(root, os.R_OK | os.X_OK):
        msg = f"Project path is not readable: {root}"
        raise ProjectNotFoundError(msg)


class Indexer:
    """Drives extraction, module resolution, embedding and persistence.

    Files are processed sequentially in discovery order, each through the
    analyzer the registry holds for its extension.  A file's old symbol
    rows are deleted before its new ones are written, so re-indexing does
    not accumulate stale declarations.  Module rows are reused, and
    refreshed, when a row with the same name and file path exists.

    Embeddings are generated only when a generator is configured and its
    health check succeeds; otherwise the run indexes metadata only and
    still succeeds.  An unexpected error while indexing one file fails
    that file only.
    """

    def __init__(
        self,
        store: SymbolStore,
        generator: EmbeddingGenerator | None = None,
        resolver: ModuleResolver | None = None,
        registry: AnalyzerRegistry | None = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._resolver = resolver
        self._registry = registry or AnalyzerRegistry()

    @property
    def store(self) -> SymbolStore:
        return self._store

    @property
    def generator(self) -> EmbeddingGenerator | None:
        return self._generator

    @property
    def registry(self) -> AnalyzerRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def index_project(
        self,
        path: str | Path,
        *,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        """Index every supported source file below *path*.

        A missing or unreadable *path* yields ``success=False`` with zero
        counts and ``state=FAILED``; nothing is raised.
        """
        root = Path(path).expanduser()
        await _notify(progress, IndexProgress(IndexState.DISCOVERING, message=str(root)))
        try:
            root = self._open_project(root)
            files = discover_sources(root, self._registry.supported_extensions())
        except (ProjectNotFoundError, OSError) as e:
            return await _failed(e, progress)

        logger.info("Indexing %d file(s) under %s", len(files), root)
        resolver = self._resolver or ModuleResolver(root)
        generator = await self._active_generator()

        total = IndexResult(success=True, message="")
        for i, file_path in enumerate(files, start=1):
            total.merge(await self._index_guarded(file_path, resolver, generator, progress, i, len(files)))
        return await _completed(total, len(files), progress)

    async def update_index(
        self,
        path: str | Path,
        files: list[str | Path] | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        """Re-index the files below *path* that are new or changed.

        A file is changed when its modification time is newer than the
        ``last_modified`` stored on its module row; unchanged files are
        counted in ``files_skipped``.  *files* narrows the candidates to
        the given paths (relative to *path* or absolute).  Modules that
        import a changed file are not re-indexed.
        """
        root = Path(path).expanduser()
        await _notify(progress, IndexProgress(IndexState.DISCOVERING, message=str(root)))
        try:
            root = self._open_project(root)
            if files is None:
                candidates = discover_sources(root, self._registry.supported_extensions())
            else:
                candidates = [(root / Path(f).expanduser()).resolve() for f in files]
        except (ProjectNotFoundError, OSError) as e:
            return await _failed(e, progress)

        resolver = self._resolver or ModuleResolver(root)
        changed: list[Path] = []
        total = IndexResult(success=True, message="")
        for file_path in candidates:
            if not file_path.is_file():
                logger.warning("File does not exist: %s", file_path)
                total.files_failed += 1
                total.errors.append(f"{file_path}: file does not exist")
            elif await self._needs_update(file_path, resolver):
                changed.append(file_path)
            else:
                total.files_skipped += 1
        logger.info("Updating %d of %d file(s) under %s", len(changed), len(candidates), root)

        generator = await self._active_generator() if changed else None
        for i, file_path in enumerate(changed, start=1):
            total.merge(await self._index_guarded(file_path, resolver, generator, progress, i, len(changed)))
        return await _completed(total, len(candidates), progress)

    async def index_file(
        self,
        path: str | Path,
        project_root: str | Path | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> IndexResult:
        """Index a single file, naming its module relative to *project_root*.

        Without *project_root* the indexer's resolver is used, or the file's
        own directory when none was configured.
        """
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            msg = f"File does not exist: {file_path}"
            logger.warning(msg)
            return IndexResult(success=False, message=msg, state=IndexState.FAILED)
        file_path = file_path.resolve()
        if project_root is not None:
            resolver = ModuleResolver(project_root)
        else:
            resolver = self._resolver or ModuleResolver(file_path.parent)

        generator = await self._active_generator()
        result = await self._index_guarded(file_path, resolver, generator, progress, 1, 1)
        result.success = result.files_failed == 0
        result.state = IndexState.COMPLETED if result.success else IndexState.FAILED
        result.message = _summary(result, 1) if result.success else "; ".join(result.errors)
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _open_project(root: Path) -> Path:
        _check_project(root)
        return root.resolve()

    async def _active_generator(self) -> EmbeddingGenerator | None:
        """Return the generator when it is healthy and its model is present, else ``None``."""
        if self._generator is None:
            return None
        if not await self._generator.check_health():
            logger.info("Embedding provider unavailable; indexing metadata only")
            return None
        if not await self._generator.ensure_model():
            logger.info("Embedding model %s unavailable; indexing metadata only", self._generator.model_name)
            return None
        return self._generator

    async def _needs_update(self, file_path: Path, resolver: ModuleResolver) -> bool:
        existing = await self._store.find_module_by_path(resolver.module_name(file_path), str(file_path))
        if existing is None or existing.last_modified is None:
            return True
        try:
            mtime = datetime.fromtimestamp(file_path.stat().st_mtime, tz=UTC)
        except OSError:
            return True
        return mtime > _as_utc(existing.last_modified)

    async def _index_guarded(
        self,
        file_path: Path,
        resolver: ModuleResolver,
        generator: EmbeddingGenerator | None,
        progress: ProgressCallback | None,
        index: int,
        total: int,
    ) -> IndexResult:
        try:
            return await self._index_one(file_path, resolver, generator, progress, index, total)
        except Exception as e:
            logger.warning("Indexing %s failed: %s", file_path, e, exc_info=True)
            return IndexResult(
                success=False,
                message=str(e),
                files_failed=1,
                errors=[f"{file_path}: {str(e) or type(e).__name__}"],
            )

    async def _index_one(
        self,
        file_path: Path,
        resolver: ModuleResolver,
        generator: EmbeddingGenerator | None,
        progress: ProgressCallback | None,
        index: int,
        total: int,
    ) -> IndexResult:
        result = IndexResult(success=True, message="")
        path_str = str(file_path)

        await _notify(progress, IndexProgress(IndexState.EXTRACTING, path_str, index, total))
        analyzer = self._registry.get(path_str)
        if analyzer is None:
            result.files_failed = 1
            result.errors.append(f"{path_str}: no analyzer for {file_path.suffix or 'this file'}")
            return result
        try:
            content = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read %s: %s", file_path, e)
            result.files_failed = 1
            result.errors.append(f"{path_str}: {e}")
            return result

        declarations, errors = analyzer.analyze_file(path_str, content)
        for error in errors:
            result.errors.append(f"{path_str}:{error.line}: {error}")
        if errors:
            logger.debug("Skipped %d unparsable declaration(s) in %s", len(errors), file_path)
        module = resolver.resolve(file_path, content)

        vectors: list[SymbolEmbeddings | None] = [None] * len(declarations)
        if generator is not None and declarations:
            await _notify(progress, IndexProgress(IndexState.EMBEDDING, path_str, index, total))
            vectors = [await _embed(generator, decl, module.name) for decl in declarations]

        await _notify(progress, IndexProgress(IndexState.PERSISTING, path_str, index, total))
        if await self._store.delete_symbols_for_file(path_str) < 0:
            logger.warning("Could not clear previous symbols for %s", file_path)

        existing = await self._store.find_module_by_path(module.name, path_str)
        if existing is None:
            module_id = await self._store.insert_module(
                module.name,
                path_str,
                last_modified=module.last_modified,
                documentation=module.documentation,
                imports=module.imports,
            )
            if module_id < 0:
                result.files_failed = 1
                result.errors.append(f"{path_str}: could not store module {module.name}")
                return result
        elif not await self._store.update_module(
            existing.id,
            last_modified=module.last_modified,
            documentation=module.documentation,
            imports=module.imports,
        ):
            logger.warning("Could not refresh module %s for %s", module.name, file_path)
        result.modules_indexed = 1

        for decl, bundle in zip(declarations, vectors, strict=True):
            symbol_id = await self._persist(decl, module.name, path_str, bundle)
            if symbol_id < 0:
                result.errors.append(f"{path_str}:{decl.line}: could not store {decl.name}")
                continue
            result.symbols_indexed += 1
            if bundle is not None and bundle.any_success:
                result.embeddings_generated += 1
        return result

    async def _persist(
        self,
        decl: Declaration,
        module: str,
        file_path: str,
        bundle: SymbolEmbeddings | None,
    ) -> int:
        embeddings: dict[str, Any] = {}
        if bundle is not None:
            embeddings = {
                "name_embedding": bundle.vector("name"),
                "signature_embedding": bundle.vector("signature"),
                "documentation_embedding": bundle.vector("documentation"),
                "combined_embedding": bundle.vector("combined"),
                "embedding_model": bundle.model,
                "embedding_version": bundle.version,
            }
        return await self._store.insert_symbol(
            decl.name,
            decl.kind.value,
            module,
            file_path,
            decl.line,
            decl.col,
            decl.signature,
            decl.documentation,
            decl.visibility,
            **embeddings,
        )


async def _embed(generator: EmbeddingGenerator, decl: Declaration, module: str) -> SymbolEmbeddings | None:
    bundle = await generator.embed_symbol(decl.name, module, decl.signature, decl.documentation)
    return bundle if bundle.any_success else None


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; stored values are always UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


async def _failed(error: Exception, progress: ProgressCallback | None) -> IndexResult:
    logger.warning("Indexing failed: %s", error)
    await _notify(progress, IndexProgress(IndexState.FAILED, message=str(error)))
    return IndexResult(success=False, message=str(error), state=IndexState.FAILED)


async def _completed(result: IndexResult, files: int, progress: ProgressCallback | None) -> IndexResult:
    result.state = IndexState.COMPLETED
    result.message = _summary(result, files)
    logger.info(result.message)
    await _notify(progress, IndexProgress(IndexState.COMPLETED, total=files, message=result.message))
    return result


def _summary(result: IndexResult, files: int) -> str:
    message = (
        f"Indexed {result.symbols_indexed} symbol(s) in {result.modules_indexed} module(s) "
        f"from {files} file(s)"
    )
    if result.embeddings_generated:
        message += f", {result.embeddings_generated} with embeddings"
    if result.files_failed:
        message += f"; {result.files_failed} file(s) failed"
    if result.files_skipped:
        message += f"; {result.files_skipped} unchanged file(s) skipped"
    return message


async def _notify(callback: ProgressCallback | None, event: IndexProgress) -> None:
    """Deliver *event*; a failing callback is logged, never propagated."""
    if callback is None:
        return
    try:
        outcome = callback(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        logger.warning("Progress callback %r failed for %s", callback, event.state.value, exc_info=True)
