"""ModuleResolver — map files to logical module names and gather module docs."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePath

logger = logging.getLogger(__name__)

SOURCE_SUFFIX = ".nim"
SOURCE_ROOT = "src"

_IMPORT_RE = re.compile(r"^\s*(?P<kw>import|include)\s+(?P<body>.+)$")
_FROM_RE = re.compile(r"^\s*from\s+(?P<module>\S+)\s+import\b")


@dataclass(frozen=True, slots=True)
class ResolvedModule:
    """Logical identity of one source file.

    Attributes:
        name: Module name relative to the source root, ``/``-separated,
            without the ``.nim`` suffix.
        file_path: Absolute path of the file.
        documentation: The ``##`` block at the top of the file.
        imports: Module names referenced by ``import``/``from``/``include``.
        last_modified: File modification time (UTC), if known.
    """

    name: str
    file_path: str
    documentation: str = ""
    imports: list[str] = field(default_factory=list)
    last_modified: datetime | None = None


class ModuleResolver:
    """Computes module identities for files under *project_root*.

    Files below ``<project_root>/src`` are named relative to ``src``;
    everything else is named relative to the project root.
    """

    def __init__(self, project_root: str | Path) -> None:
        self._root = Path(project_root).resolve()

    @property
    def project_root(self) -> Path:
        return self._root

    def module_name(self, file_path: str | Path) -> str:
        """Return the logical module name for *file_path*.

        >>> ModuleResolver("/proj").module_name("/proj/src/net/http.nim")
        'net/http'
        """
        path = Path(file_path)
        if not path.is_absolute():
            path = self._root / path
        source_root = self._root / SOURCE_ROOT
        for base in (source_root, self._root):
            try:
                relative = path.relative_to(base)
            except ValueError:
                continue
            return _strip_suffix(PurePath(relative).as_posix())
        # outside the project: fall back to the bare stem
        return _strip_suffix(path.name)

    def resolve(self, file_path: str | Path, content: str | None = None) -> ResolvedModule:
        """Resolve *file_path*, reading it when *content* is not supplied."""
        path = Path(file_path)
        if not path.is_absolute():
            path = self._root / path
        last_modified: datetime | None = None
        try:
            last_modified = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
        except OSError:
            logger.debug("No mtime for %s", path)
        if content is None:
            content = path.read_text(encoding="utf-8", errors="replace")
        return ResolvedModule(
            name=self.module_name(path),
            file_path=str(path),
            documentation=module_documentation(content),
            imports=parse_imports(content),
            last_modified=last_modified,
        )


def _strip_suffix(name: str) -> str:
    if name.endswith(SOURCE_SUFFIX):
        return name[: -len(SOURCE_SUFFIX)]
    return name


def module_documentation(content: str) -> str:
    """Return the leading ``##`` comment block of a file ("" if none).

    Blank lines and plain ``#`` comments (e.g. a license header) before the
    block are skipped; the block ends at the first non-doc line.  A ``##[``
    block that is never closed contributes only its opening line.
    """
    body: list[str] = []
    in_block = False
    block_start = 0
    for line in content.splitlines():
        stripped = line.strip()
        if in_block:
            if "]##" in stripped:
                body.append(stripped.split("]##", 1)[0].strip())
                in_block = False
                break
            body.append(stripped)
            continue
        if stripped.startswith("##["):
            rest = stripped[3:]
            if "]##" in rest:
                body.append(rest.split("]##", 1)[0].strip())
                break
            block_start = len(body)
            body.append(rest.strip())
            in_block = True
            continue
        if stripped.startswith("##"):
            text = stripped[2:]
            body.append(text[1:] if text.startswith(" ") else text)
            continue
        if body:
            break
        if not stripped or stripped.startswith("#"):
            continue
        break
    if in_block:
        del body[block_start + 1 :]
    return "\n".join(body).strip()


def _split_top_level(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def _expand(item: str) -> list[str]:
    """Expand one import item: ``std/[os, strutils]`` → ``std/os``, ``std/strutils``."""
    item = item.split(" except ", 1)[0]
    item = re.split(r"\s+as\s+", item, maxsplit=1)[0].strip().strip('"')
    if "[" in item and item.endswith("]"):
        prefix, _, group = item.partition("[")
        return [f"{prefix}{name.strip()}" for name in group[:-1].split(",") if name.strip()]
    return [item] if item else []


def parse_imports(content: str) -> list[str]:
    """Collect module references from ``import``, ``from ... import`` and ``include``.

    Order of first appearance is kept; duplicates are dropped.
    """
    seen: dict[str, None] = {}
    lines = content.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i].split("#", 1)[0]
        from_match = _FROM_RE.match(line)
        if from_match:
            for name in _expand(from_match.group("module")):
                seen.setdefault(name, None)
            i += 1
            continue
        match = _IMPORT_RE.match(line)
        if not match:
            i += 1
            continue
        body = match.group("body").rstrip()
        # continuation: trailing comma or an open bracket group
        while (body.endswith(",") or body.count("[") > body.count("]")) and i + 1 < len(lines):
            i += 1
            body += " " + lines[i].split("#", 1)[0].strip()
        if " except " in body:
            body = body.split(" except ", 1)[0]
        for item in _split_top_level(body):
            for name in _expand(item):
                seen.setdefault(name, None)
        i += 1
    return list(seen)
