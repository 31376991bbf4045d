"""Analyzer protocol and shared types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from nimscope.exceptions import ExtractionError


class SymbolKind(str, Enum):
    """Declaration kinds recognised by the extractor.

    The value is the Nim keyword and is what the store persists as ``kind``.
    """

    PROC = "proc"
    FUNC = "func"
    METHOD = "method"
    ITERATOR = "iterator"
    CONVERTER = "converter"
    TEMPLATE = "template"
    MACRO = "macro"
    TYPE = "type"
    CONST = "const"
    LET = "let"
    VAR = "var"

    @property
    def is_routine(self) -> bool:
        return self not in _SECTION_KINDS


_SECTION_KINDS = frozenset({SymbolKind.TYPE, SymbolKind.CONST, SymbolKind.LET, SymbolKind.VAR})

PUBLIC = "public"
PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class Declaration:
    """One declaration found in a source file.

    Attributes:
        name: Identifier, verbatim (quoted operators without backticks).
        kind: Declaration kind.
        line: 1-indexed line of the identifier.
        col: 1-indexed column of the identifier.
        signature: Header text up to the body.
        documentation: Doc comment text, markers stripped ("" if none).
        visibility: ``"public"`` when export-marked, else ``"private"``.
    """

    name: str
    kind: SymbolKind
    line: int
    col: int
    signature: str = ""
    documentation: str = ""
    visibility: str = PRIVATE

    @property
    def exported(self) -> bool:
        return self.visibility == PUBLIC


AnalysisResult: TypeAlias = "tuple[list[Declaration], list[ExtractionError]]"


@runtime_checkable
class Analyzer(Protocol):
    """Protocol for language-specific declaration extractors.

    Analyzers are pure functions: they receive a file path and its content
    and return the declarations found plus the per-declaration errors that
    were skipped, without mutating any state.
    """

    @property
    def extensions(self) -> frozenset[str]:
        """File extensions this analyzer handles (e.g. ``{".nim"}``)."""
        ...

    def analyze_file(self, path: str, content: str) -> AnalysisResult:
        """Analyze *content* of the file at *path*.

        Returns ``(declarations, errors)`` — never raises on malformed input.
        """
        ...


def clean_doc_lines(lines: list[str]) -> str:
    """Join doc comment bodies, dropping one leading space from each line."""
    cleaned = [line[1:] if line.startswith(" ") else line for line in lines]
    return "\n".join(cleaned).strip()
