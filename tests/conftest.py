"""Shared fixtures for nimscope tests."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from nimscope.store import SymbolStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def store(async_engine: AsyncEngine) -> SymbolStore:
    """SymbolStore on the in-memory engine."""
    return SymbolStore(async_engine)


class FakeProvider:
    """Deterministic in-process embedding provider.

    Vectors are looked up in *table* by substring of the input text; texts
    matching nothing get *default*.
    """

    def __init__(
        self,
        table: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
        *,
        healthy: bool = True,
    ) -> None:
        self.table = table or {}
        self.default = default or [1.0, 0.0, 0.0]
        self.healthy = healthy
        self.calls: list[list[str]] = []

    def _vector(self, text: str) -> list[float]:
        for key, vector in self.table.items():
            if key in text:
                return vector
        return self.default

    async def embed(self, text: str) -> list[float]:
        self.calls.append([text])
        return self._vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._vector(t) for t in texts]

    @property
    def dimensions(self) -> int:
        return len(self.default)

    @property
    def model_name(self) -> str:
        return "fake-embed"

    async def health(self) -> bool:
        return self.healthy

    async def has_model(self, name: str) -> bool:
        return True

    async def pull_model(self, name: str) -> bool:
        return True


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    """The FakeProvider class, for tests that need custom vectors."""
    return FakeProvider


@pytest.fixture
def write_nim() -> Callable[[Path, str, str], Path]:
    """Write dedented Nim source to ``root/relpath`` and return the path."""

    def _write(root: Path, relpath: str, source: str) -> Path:
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write
