"""Module model — one logical compilation unit (a ``.nim`` file)."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Text
from sqlmodel import Field, SQLModel


class ModuleBase(SQLModel):
    """Base fields for a module. Subclass with ``table=True`` for a concrete table.

    Names are not unique: several rows may share one.
    """

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    file_path: str = Field(default="", index=True)
    last_modified: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    documentation: str = Field(default="", sa_type=Text)
    imports_json: str = Field(default="[]", sa_type=Text)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Module(ModuleBase, table=True):
    """Default module table — ``nimscope_modules``."""

    __tablename__ = "nimscope_modules"
    __table_args__ = {"sqlite_autoincrement": True}
