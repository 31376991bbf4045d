"""NimAnalyzer — lexical declaration extraction for Nim sources.

This is a line-oriented scanner, not a parser: it recognises routine
headers (``proc``, ``func``, ...) and the entries of ``type``/``const``/
``let``/``var`` sections, and skips routine bodies by indentation.  A
declaration it cannot make sense of is recorded as an
:class:`~nimscope.exceptions.ExtractionError` and skipped; the rest of the
file is still scanned.
"""

from __future__ import annotations

import logging
import re

from nimscope.analyzers._base import (
    PRIVATE,
    PUBLIC,
    AnalysisResult,
    Declaration,
    SymbolKind,
    clean_doc_lines,
)
from nimscope.exceptions import ExtractionError

logger = logging.getLogger(__name__)

_ROUTINE_KEYWORDS = ("proc", "func", "method", "iterator", "converter", "template", "macro")

_IDENT = r"(?:`[^`\n]+`|[^\W\d]\w*)"

_ROUTINE_RE = re.compile(
    rf"^(?P<indent>\s*)(?P<kind>{'|'.join(_ROUTINE_KEYWORDS)})\s+(?P<name>{_IDENT})(?P<export>\*?)"
)
_SECTION_RE = re.compile(r"^(?P<indent>\s*)(?P<kind>type|const|let|var)\b(?P<rest>.*)$")
_NAME_RE = re.compile(rf"\s*(?P<name>{_IDENT})(?P<export>\*?)\s*(?P<pragma>\{{\..*?\.?\}})?\s*")
_DECL_START_RE = re.compile(
    rf"^\s*(?:{'|'.join(_ROUTINE_KEYWORDS)})\s+{_IDENT}|^\s*(?:type|const|let|var)\b"
)
_MAIN_BLOCK_RE = re.compile(r"^when\s+isMainModule\s*:")
_WS_RE = re.compile(r"\s+")

_OPENERS = "([{"
_CLOSERS = ")]}"
_ASSIGN_NEIGHBOURS = set("=<>!:+-*/%&|^~.@$?")


# ---------------------------------------------------------------------------
# Line helpers
# ---------------------------------------------------------------------------


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _collapse(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _unquote(name: str) -> str:
    if len(name) >= 2 and name.startswith("`") and name.endswith("`"):
        return name[1:-1]
    return name


def _split_code(line: str) -> tuple[str, str, str]:
    """Split *line* into ``(code, masked, comment)``.

    *code* is the line up to any ``#`` comment.  *masked* has the same
    length but with string, char-literal and backtick contents blanked so
    brackets and ``=`` inside them are ignored.  *comment* is the raw
    comment text (starting at ``#``), or ``""``.
    """
    masked: list[str] = []
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == "#":
            return line[:i], "".join(masked), line[i:]
        if ch in ('"', "`"):
            end = i + 1
            while end < n and line[end] != ch:
                end += 2 if ch == '"' and line[end] == "\\" else 1
            end = min(end, n - 1)
            masked.append(ch)
            masked.append(" " * (end - i - 1))
            if end > i:
                masked.append(line[end])
            i = end + 1
            continue
        if ch == "'" and i + 2 < n and (line[i + 2] == "'" or (line[i + 1] == "\\" and i + 3 < n)):
            end = i + 2 if line[i + 2] == "'" else line.find("'", i + 2)
            if end != -1:
                masked.append("'" + " " * (end - i - 1) + "'")
                i = end + 1
                continue
        masked.append(ch)
        i += 1
    return line, "".join(masked), ""


def _depth(masked: str) -> int:
    depth = 0
    for ch in masked:
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
    return depth


def _body_eq(masked: str) -> int:
    """Index of the top-level ``=`` that opens a routine body, or -1."""
    depth = 0
    for i, ch in enumerate(masked):
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
        elif ch == "=" and depth == 0:
            prev = masked[i - 1] if i else ""
            nxt = masked[i + 1] if i + 1 < len(masked) else ""
            if prev not in _ASSIGN_NEIGHBOURS and nxt not in _ASSIGN_NEIGHBOURS:
                return i
    return -1


def _check_params(masked: str, name_end: int) -> None:
    """Raise if the parameter list after *name_end* has an empty parameter name."""
    pos = name_end
    # skip generic parameters
    if pos < len(masked) and masked[pos] == "[":
        depth = 0
        for k in range(pos, len(masked)):
            if masked[k] == "[":
                depth += 1
            elif masked[k] == "]":
                depth -= 1
                if depth == 0:
                    pos = k + 1
                    break
    while pos < len(masked) and masked[pos] == " ":
        pos += 1
    if pos >= len(masked) or masked[pos] != "(":
        return

    segments: list[str] = []
    current: list[str] = []
    depth = 0
    for ch in masked[pos + 1 :]:
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            if depth == 0:
                break
            depth -= 1
        if depth == 0 and ch in ",;":
            segments.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        segments.append(tail)

    for segment in segments:
        if not segment:
            msg = "empty parameter in parameter list"
            raise ExtractionError(msg)
        if segment.startswith((":", "=")):
            msg = f"missing parameter name before {segment[:12]!r}"
            raise ExtractionError(msg)


def _doc_block(lines: list[str], start: int) -> tuple[list[str], int]:
    """Read a ``##[ ... ]##`` block starting at *start*; return its lines and next index.

    Raises ExtractionError when the block is never closed.
    """
    first = lines[start].strip()[3:]
    body: list[str] = []
    if "]##" in first:
        body.append(first.split("]##", 1)[0].strip())
        return body, start + 1
    if first.strip():
        body.append(first.strip())
    i = start + 1
    while i < len(lines):
        text = lines[i].strip()
        if "]##" in text:
            rest = text.split("]##", 1)[0].strip()
            if rest:
                body.append(rest)
            return body, i + 1
        body.append(text)
        i += 1
    msg = "unterminated ##[ documentation block"
    raise ExtractionError(msg, line=start + 1)


def _skip_block_comment(lines: list[str], start: int) -> int:
    """Skip a ``#[ ... ]#`` comment starting at *start*; return next index."""
    i = start
    while i < len(lines):
        if "]#" in lines[i]:
            return i + 1
        i += 1
    return i


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class _Scanner:
    """Single-pass scanner over one file's lines."""

    def __init__(self, path: str, content: str) -> None:
        self.path = path
        self.lines = content.splitlines()
        self.declarations: list[Declaration] = []
        self.errors: list[ExtractionError] = []

    def run(self) -> AnalysisResult:
        lines = self.lines
        pending: list[str] = []
        i = 0
        while i < len(lines):
            line = lines[i]
            stripped = line.strip()

            if not stripped:
                pending = []
                i += 1
                continue
            if stripped.startswith("##["):
                pending, i = self._doc_block(i)
                continue
            if stripped.startswith("##"):
                pending.append(stripped[2:])
                i += 1
                continue
            if stripped.startswith("#["):
                pending = []
                i = _skip_block_comment(lines, i)
                continue
            if stripped.startswith("#"):
                pending = []
                i += 1
                continue
            if _MAIN_BLOCK_RE.match(line):
                i = self._skip_deeper(i + 1, _indent(line))
                pending = []
                continue

            routine = _ROUTINE_RE.match(line)
            if routine:
                i = self._routine(i, routine, clean_doc_lines(pending))
                pending = []
                continue

            section = _SECTION_RE.match(line)
            if section:
                i = self._section(i, section, clean_doc_lines(pending))
                pending = []
                continue

            pending = []
            i += 1

        return self.declarations, self.errors

    # -- helpers ----------------------------------------------------------

    def _skip_deeper(self, start: int, indent: int) -> int:
        """Return the first index at or after *start* indented <= *indent*."""
        i = start
        while i < len(self.lines):
            line = self.lines[i]
            if line.strip() and _indent(line) <= indent:
                break
            i += 1
        return i

    def _doc_after(self, start: int, indent: int) -> str:
        """Collect ``##`` lines directly after a header, indented deeper than *indent*."""
        body: list[str] = []
        i = start
        while i < len(self.lines):
            line = self.lines[i]
            stripped = line.strip()
            if not stripped or _indent(line) <= indent:
                break
            if stripped.startswith("##["):
                block, _ = self._doc_block(i)
                body.extend(block)
                break
            if not stripped.startswith("##"):
                break
            body.append(stripped[2:])
            i += 1
        return clean_doc_lines(body)

    def _record_error(self, error: ExtractionError) -> None:
        logger.debug("%s:%d: skipping declaration: %s", self.path, error.line, error)
        self.errors.append(error)

    def _doc_block(self, start: int) -> tuple[list[str], int]:
        """Read a doc block; an unclosed one is recorded and only its opening line is consumed."""
        try:
            return _doc_block(self.lines, start)
        except ExtractionError as e:
            self._record_error(e)
            return [], start + 1

    # -- routines ----------------------------------------------------------

    def _routine(self, start: int, match: re.Match[str], doc: str) -> int:
        indent = len(match.group("indent"))
        try:
            signature, header_end = self._read_header(start, match)
        except ExtractionError as e:
            self._record_error(e)
            return self._resume_after_error(start, indent)

        if not doc:
            doc = self._doc_after(header_end + 1, indent)

        name = match.group("name")
        self.declarations.append(
            Declaration(
                name=_unquote(name),
                kind=SymbolKind(match.group("kind")),
                line=start + 1,
                col=match.start("name") + 1,
                signature=signature,
                documentation=doc,
                visibility=PUBLIC if match.group("export") else PRIVATE,
            )
        )
        return self._skip_deeper(header_end + 1, indent)

    def _read_header(self, start: int, match: re.Match[str]) -> tuple[str, int]:
        """Accumulate a routine header; return ``(signature, last_line)``."""
        lines = self.lines
        indent = len(match.group("indent"))
        offset = match.start("kind")
        code, masked, _ = _split_code(lines[start])
        text = code[offset:]
        mask = masked[offset:]
        name_end = match.end("export") - offset

        depth = _depth(mask)
        j = start
        while True:
            while depth > 0:
                j += 1
                if j >= len(lines):
                    msg = f"unterminated header for {match.group('name')!r} at end of file"
                    raise ExtractionError(msg, line=start + 1)
                nxt = lines[j]
                if nxt.strip() and _indent(nxt) <= indent and _DECL_START_RE.match(nxt):
                    msg = f"unterminated header for {match.group('name')!r}"
                    raise ExtractionError(msg, line=start + 1)
                code, masked, _ = _split_code(nxt)
                text += " " + code.strip()
                mask += " " + masked.strip()
                depth += _depth(masked)
            if depth < 0:
                msg = f"unbalanced brackets in header for {match.group('name')!r}"
                raise ExtractionError(msg, line=start + 1)
            if _body_eq(mask) != -1:
                break
            # pragma or return type continued on a deeper line
            k = j + 1
            if k < len(lines) and lines[k].strip() and _indent(lines[k]) > indent:
                code, masked, _ = _split_code(lines[k])
                if masked.strip().startswith(("{.", ":", "=")):
                    j = k
                    text += " " + code.strip()
                    mask += " " + masked.strip()
                    depth += _depth(masked)
                    continue
            break

        _check_params(mask, name_end)
        eq = _body_eq(mask)
        signature = _collapse(text[:eq] if eq != -1 else text)
        return signature, j

    def _resume_after_error(self, start: int, indent: int) -> int:
        """Skip to the next line that can start a declaration at *indent* or shallower."""
        i = start + 1
        while i < len(self.lines):
            line = self.lines[i]
            if line.strip() and _indent(line) <= indent and _DECL_START_RE.match(line):
                break
            i += 1
        return i

    # -- sections ----------------------------------------------------------

    def _section(self, start: int, match: re.Match[str], doc: str) -> int:
        kind = SymbolKind(match.group("kind"))
        indent = len(match.group("indent"))
        rest_code, _, _ = _split_code(match.group("rest"))

        if rest_code.strip():
            # inline form: ``const X* = 1`` / ``type Foo* = object``
            self._entry(kind, start, match.start("rest"), doc, indent)
            return self._skip_deeper(start + 1, indent)

        lines = self.lines
        entry_indent: int | None = None
        pending: list[str] = []
        i = start + 1
        while i < len(lines):
            line = lines[i]
            stripped = line.strip()
            if not stripped:
                pending = []
                i += 1
                continue
            current = _indent(line)
            if current <= indent:
                break
            if entry_indent is None:
                entry_indent = current
            if current < entry_indent:
                break
            if current > entry_indent:
                i += 1
                continue
            if stripped.startswith("##["):
                pending, i = self._doc_block(i)
                continue
            if stripped.startswith("##"):
                pending.append(stripped[2:])
                i += 1
                continue
            if stripped.startswith("#"):
                pending = []
                i += 1
                continue
            self._entry(kind, i, current, clean_doc_lines(pending), current)
            pending = []
            i += 1
        return i

    def _entry(self, kind: SymbolKind, index: int, col: int, doc: str, indent: int) -> None:
        """Parse one section entry on line *index* starting at column *col* (0-based)."""
        line = self.lines[index]
        code, _, comment = _split_code(line)
        text = code[col:]

        names: list[tuple[str, bool, int]] = []
        pos = 0
        while True:
            m = _NAME_RE.match(text, pos)
            if not m:
                break
            names.append((_unquote(m.group("name")), bool(m.group("export")), col + m.start("name")))
            pos = m.end()
            if pos < len(text) and text[pos] == ",":
                pos += 1
                continue
            break

        remainder = text[pos:].strip()
        allowed = ("=", "[") if kind is SymbolKind.TYPE else (":", "=")
        if not names or (remainder and not remainder.startswith(allowed)):
            error = ExtractionError(f"unrecognised {kind.value} entry: {text.strip()[:40]!r}", line=index + 1)
            self._record_error(error)
            return
        if kind is SymbolKind.TYPE and not remainder:
            error = ExtractionError(f"type entry without definition: {text.strip()[:40]!r}", line=index + 1)
            self._record_error(error)
            return

        if not doc and comment.startswith("##"):
            doc = clean_doc_lines([comment[2:]])
        if not doc:
            doc = self._doc_after(index + 1, indent)

        signature = _collapse(f"{kind.value} {text}")
        for name, exported, name_col in names:
            self.declarations.append(
                Declaration(
                    name=name,
                    kind=kind,
                    line=index + 1,
                    col=name_col + 1,
                    signature=signature,
                    documentation=doc,
                    visibility=PUBLIC if exported else PRIVATE,
                )
            )


class NimAnalyzer:
    """Extracts declarations from Nim source files."""

    @property
    def extensions(self) -> frozenset[str]:
        return frozenset({".nim"})

    def analyze_file(self, path: str, content: str) -> AnalysisResult:
        """Scan *content* and return ``(declarations, errors)``."""
        if not content.strip():
            return [], []
        return _Scanner(path, content).run()

    def extract(self, content: str, path: str = "<string>") -> list[Declaration]:
        """Return only the declarations found in *content*."""
        declarations, _ = self.analyze_file(path, content)
        return declarations
