"""Declaration analyzers — extract symbols from source files."""

from __future__ import annotations

import logging
import posixpath

from nimscope.analyzers._base import (
    PRIVATE,
    PUBLIC,
    AnalysisResult,
    Analyzer,
    Declaration,
    SymbolKind,
    clean_doc_lines,
)
from nimscope.analyzers.nim import NimAnalyzer

logger = logging.getLogger(__name__)


class AnalyzerRegistry:
    """Maps file extensions to language-specific analyzers."""

    def __init__(self) -> None:
        self._ext_map: dict[str, Analyzer] = {}
        self.register(NimAnalyzer())

    def register(self, analyzer: Analyzer) -> None:
        """Register an analyzer for each of its extensions."""
        for ext in analyzer.extensions:
            self._ext_map[ext.lower()] = analyzer

    def get(self, path: str) -> Analyzer | None:
        """Look up an analyzer by file path extension (case-insensitive)."""
        ext = posixpath.splitext(path)[1].lower()
        return self._ext_map.get(ext)

    def supported_extensions(self) -> frozenset[str]:
        """Return all registered extensions."""
        return frozenset(self._ext_map.keys())

    def analyze_file(self, path: str, content: str) -> AnalysisResult | None:
        """Convenience: look up analyzer and run it. Returns ``None`` if unsupported."""
        analyzer = self.get(path)
        if analyzer is None:
            return None
        return analyzer.analyze_file(path, content)


__all__ = [
    "PRIVATE",
    "PUBLIC",
    "AnalysisResult",
    "Analyzer",
    "AnalyzerRegistry",
    "Declaration",
    "NimAnalyzer",
    "SymbolKind",
    "clean_doc_lines",
]
