"""Symbol model — one indexed declaration occurrence.

Each of the four embeddings is stored twice: as JSON text (``*_embedding``)
and as a native float32 blob (``*_embedding_vec``).  A row without any
embeddings is valid; vectors are attached later via
``SymbolStore.update_symbol_embeddings``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Text
from sqlmodel import Field, SQLModel

from nimscope.models._vector import VectorType

EMBEDDING_FIELDS: tuple[str, ...] = ("name", "signature", "documentation", "combined")
"""Embedding strategies, in the order used by ``update_symbol_embeddings``."""


class SymbolBase(SQLModel):
    """Base fields for a symbol. Subclass with ``table=True`` for a concrete table."""

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    kind: str = Field(index=True)
    module: str = Field(index=True)
    file_path: str = Field(index=True)
    line: int = Field(default=0)
    col: int = Field(default=0)
    signature: str = Field(default="", sa_type=Text)
    documentation: str = Field(default="", sa_type=Text)
    visibility: str = Field(default="")

    name_embedding: str | None = Field(default=None, sa_type=Text)
    signature_embedding: str | None = Field(default=None, sa_type=Text)
    documentation_embedding: str | None = Field(default=None, sa_type=Text)
    combined_embedding: str | None = Field(default=None, sa_type=Text)

    name_embedding_vec: list[float] | None = Field(default=None, sa_type=VectorType)
    signature_embedding_vec: list[float] | None = Field(default=None, sa_type=VectorType)
    documentation_embedding_vec: list[float] | None = Field(default=None, sa_type=VectorType)
    combined_embedding_vec: list[float] | None = Field(default=None, sa_type=VectorType)

    embedding_model: str = Field(default="")
    embedding_version: str = Field(default="")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Symbol(SymbolBase, table=True):
    """Default symbol table — ``nimscope_symbols``.

    ``sqlite_autoincrement`` keeps ids from being reused after deletes.
    """

    __tablename__ = "nimscope_symbols"
    __table_args__ = {"sqlite_autoincrement": True}
