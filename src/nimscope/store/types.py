"""Result types: SymbolInfo, SearchResult, SymbolQueryResult, etc."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from nimscope.models import Module, Symbol


@dataclass
class SymbolInfo:
    """Scalar fields of one stored symbol.

    ``has_embeddings`` tells whether any of the four vectors is set; the
    vectors themselves stay in the store.
    """

    id: int
    name: str
    kind: str
    module: str
    file_path: str
    line: int
    col: int
    signature: str = ""
    documentation: str = ""
    visibility: str = ""
    embedding_model: str = ""
    embedding_version: str = ""
    has_embeddings: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Symbol) -> SymbolInfo:
        return cls(
            id=row.id or 0,
            name=row.name,
            kind=row.kind,
            module=row.module,
            file_path=row.file_path,
            line=row.line,
            col=row.col,
            signature=row.signature or "",
            documentation=row.documentation or "",
            visibility=row.visibility or "",
            embedding_model=row.embedding_model or "",
            embedding_version=row.embedding_version or "",
            has_embeddings=any(
                bool(getattr(row, f"{kind}_embedding"))
                for kind in ("name", "signature", "documentation", "combined")
            ),
            created_at=row.created_at,
        )


@dataclass
class ModuleInfo:
    """One stored module row."""

    id: int
    name: str
    file_path: str = ""
    last_modified: datetime | None = None
    documentation: str = ""
    imports: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Module) -> ModuleInfo:
        try:
            imports = json.loads(row.imports_json or "[]")
        except ValueError:
            imports = []
        return cls(
            id=row.id or 0,
            name=row.name,
            file_path=row.file_path or "",
            last_modified=row.last_modified,
            documentation=row.documentation or "",
            imports=[str(i) for i in imports] if isinstance(imports, list) else [],
            created_at=row.created_at,
        )


@dataclass
class SearchResult:
    """A symbol ranked against a query vector.

    Attributes:
        symbol: The matching symbol.
        distance: ``1 - cosine``, in ``[0, 2]``.
        similarity_score: ``(1 + cosine) / 2`` clamped to ``[0, 1]``.
    """

    symbol: SymbolInfo
    distance: float
    similarity_score: float


@dataclass
class SymbolQueryResult:
    """Result of a lexical symbol query."""

    success: bool
    message: str
    symbols: list[SymbolInfo] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.symbols)


@dataclass
class SemanticQueryResult:
    """Result of a vector-similarity query, best match first."""

    success: bool
    message: str
    results: list[SearchResult] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.results)


@dataclass
class ModuleListResult:
    """Result of listing modules."""

    success: bool
    message: str
    modules: list[ModuleInfo] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.modules)


@dataclass
class EmbeddingStats:
    """Embedding coverage across the symbol table."""

    success: bool
    message: str
    total_symbols: int = 0
    symbols_with_embeddings: int = 0
    name_embeddings: int = 0
    signature_embeddings: int = 0
    documentation_embeddings: int = 0
    combined_embeddings: int = 0
    models: list[str] = field(default_factory=list)

    @property
    def coverage(self) -> float:
        if self.total_symbols == 0:
            return 0.0
        return self.symbols_with_embeddings / self.total_symbols


@dataclass
class ProjectStats:
    """Symbol and module totals with per-kind counts."""

    success: bool
    message: str
    total_symbols: int = 0
    total_modules: int = 0
    kinds: dict[str, int] = field(default_factory=dict)
