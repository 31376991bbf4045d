"""Symbol store — SQL persistence with lexical and semantic queries."""

from nimscope.store._store import SymbolStore
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

__all__ = [
    "EmbeddingStats",
    "ModuleInfo",
    "ModuleListResult",
    "ProjectStats",
    "SearchResult",
    "SemanticQueryResult",
    "SymbolInfo",
    "SymbolQueryResult",
    "SymbolStore",
    "get_dialect",
    "substring_match",
]
