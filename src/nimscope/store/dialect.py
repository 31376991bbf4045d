"""Dialect-aware SQL helpers — backend name and substring match."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', 'mssql', or the raw dialect name."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name == "sqlite":
        return "sqlite"
    if name in ("postgresql", "postgres"):
        return "postgresql"
    if name in ("mssql", "pyodbc"):
        return "mssql"
    return name


def substring_match(column: Any, pattern: str, dialect: str) -> Any:
    """Return a "*column* contains *pattern*, ignoring case" expression.

    Both sides are lower-cased by the database so folding is consistent.
    SQLite uses ``instr`` and PostgreSQL ``strpos``, which treat ``%`` and
    ``_`` literally; other backends use ``LIKE`` with those escaped.
    """
    if dialect == "sqlite":
        return func.instr(func.lower(column), func.lower(pattern)) > 0
    if dialect == "postgresql":
        return func.strpos(func.lower(column), func.lower(pattern)) > 0
    return func.lower(column).contains(pattern.lower(), autoescape=True)
