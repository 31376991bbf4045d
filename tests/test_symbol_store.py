"""Tests for SymbolStore: inserts, lookups, lexical search, modules and stats."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import create_async_engine

from nimscope.embeddings.serialization import embedding_to_json, embedding_to_native
from nimscope.store import SymbolInfo, SymbolStore


async def _insert(store: SymbolStore, name: str, kind: str = "proc", module: str = "core", **kwargs) -> int:
    path = kwargs.pop("file_path", f"/proj/src/{module}.nim")
    return await store.insert_symbol(name, kind, module, path, kwargs.pop("line", 1), kwargs.pop("col", 6), **kwargs)


# ===================================================================
# Inserts and lookups
# ===================================================================


class TestInsertSymbol:
    @pytest.mark.asyncio
    async def test_returns_positive_id(self, store):
        sid = await _insert(store, "add", signature="proc add(a, b: int): int", visibility="public")
        assert sid > 0

        info = await store.get_symbol_by_id(sid)
        assert isinstance(info, SymbolInfo)
        assert info.name == "add"
        assert info.kind == "proc"
        assert info.module == "core"
        assert info.file_path == "/proj/src/core.nim"
        assert (info.line, info.col) == (1, 6)
        assert info.signature == "proc add(a, b: int): int"
        assert info.visibility == "public"
        assert info.has_embeddings is False

    @pytest.mark.asyncio
    async def test_identical_inserts_get_distinct_ids(self, store):
        first = await _insert(store, "dup")
        second = await _insert(store, "dup")
        assert first > 0
        assert second > 0
        assert first != second

    @pytest.mark.asyncio
    async def test_ids_not_reused_after_delete(self, store):
        first = await _insert(store, "gone", file_path="/tmp/a.nim")
        await store.delete_symbols_for_file("/tmp/a.nim")
        second = await _insert(store, "gone", file_path="/tmp/a.nim")
        assert second > first

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, store):
        assert await _insert(store, "") == -1

    @pytest.mark.asyncio
    async def test_with_embeddings_in_any_form(self, store):
        sid = await _insert(
            store,
            "emb",
            name_embedding=[0.1, 0.2],
            signature_embedding=embedding_to_json([0.3, 0.4]),
            combined_embedding=embedding_to_native([0.5, 0.5]),
            embedding_model="nomic-embed-text",
            embedding_version="1.0",
        )
        info = await store.get_symbol_by_id(sid)
        assert info.has_embeddings
        assert info.embedding_model == "nomic-embed-text"
        assert await store.get_symbol_embedding(sid, "combined") == [0.5, 0.5]
        sig = await store.get_symbol_embedding(sid, "signature")
        assert sig == pytest.approx([0.3, 0.4], abs=1e-6)
        assert await store.get_symbol_embedding(sid, "documentation") == []

    @pytest.mark.asyncio
    async def test_storage_failure_returns_minus_one(self):
        engine = create_async_engine("sqlite+aiosqlite://")
        try:
            store = SymbolStore(engine)  # tables never created
            assert await _insert(store, "f") == -1
            assert await store.insert_module("m") == -1
        finally:
            await engine.dispose()


class TestGetSymbolById:
    @pytest.mark.asyncio
    async def test_absent_id(self, store):
        assert await store.get_symbol_by_id(99999) is None

    @pytest.mark.asyncio
    async def test_negative_id(self, store):
        assert await store.get_symbol_by_id(-5) is None

    @pytest.mark.asyncio
    async def test_unknown_embedding_kind_is_empty(self, store, caplog):
        sid = await store.insert_symbol("f", "proc", "m", "/m.nim", 1, 6, combined_embedding=[1.0, 0.0])

        with caplog.at_level(logging.WARNING, logger="nimscope.store._store"):
            assert await store.get_symbol_embedding(sid, "body") == []
        assert "Unknown embedding kind" in caplog.text
        assert await store.get_symbol_embedding(sid, "combined") == [1.0, 0.0]


class TestUpdateSymbolEmbeddings:
    @pytest.mark.asyncio
    async def test_backfill(self, store):
        sid = await _insert(store, "late")

        ok = await store.update_symbol_embeddings(
            sid,
            name_embedding=[1.0, 0.0],
            combined_embedding=embedding_to_json([0.0, 1.0]),
            model="nomic-embed-text",
            version="1.0",
        )

        assert ok is True
        info = await store.get_symbol_by_id(sid)
        assert info.has_embeddings
        assert info.embedding_model == "nomic-embed-text"
        assert info.embedding_version == "1.0"
        assert await store.get_symbol_embedding(sid, "combined") == [0.0, 1.0]

    @pytest.mark.asyncio
    async def test_empty_string_leaves_field_unchanged(self, store):
        sid = await _insert(store, "keep", combined_embedding=[0.6, 0.8], embedding_model="a")

        ok = await store.update_symbol_embeddings(sid, "", "", "", "", model="", version="")

        assert ok is True
        assert await store.get_symbol_embedding(sid, "combined") == pytest.approx([0.6, 0.8], abs=1e-6)
        assert (await store.get_symbol_by_id(sid)).embedding_model == "a"

    @pytest.mark.asyncio
    async def test_missing_row(self, store):
        assert await store.update_symbol_embeddings(424242, [1.0]) is False


# ===================================================================
# Lexical search
# ===================================================================


class TestSearchSymbols:
    @pytest.fixture
    async def populated(self, store):
        for name in ("findMe", "findMeAlso", "notMatching", "anotherFindMe"):
            await _insert(store, name, kind="proc", module="alpha")
        await _insert(store, "Config", kind="type", module="beta")
        await _insert(store, "MaxSize", kind="const", module="beta")
        return store

    @pytest.mark.asyncio
    async def test_substring_match(self, populated):
        result = await populated.search_symbols("findMe", "", "")
        assert result.success
        assert [s.name for s in result.symbols] == ["findMe", "findMeAlso", "anotherFindMe"]

    @pytest.mark.asyncio
    async def test_substring_ignores_case(self, populated):
        result = await populated.search_symbols("MAXSIZE")
        assert [s.name for s in result.symbols] == ["MaxSize"]

    @pytest.mark.asyncio
    async def test_kind_filter_exact(self, populated):
        result = await populated.search_symbols("", "proc", "")
        assert result.success
        assert len(result) == 4
        assert all(s.kind == "proc" for s in result.symbols)

    @pytest.mark.asyncio
    async def test_module_filter(self, populated):
        result = await populated.search_symbols(module="beta")
        assert {s.name for s in result.symbols} == {"Config", "MaxSize"}

    @pytest.mark.asyncio
    async def test_all_filters_combined(self, populated):
        result = await populated.search_symbols("Max", "const", "beta")
        assert [s.name for s in result.symbols] == ["MaxSize"]
        assert (await populated.search_symbols("Max", "proc", "beta")).symbols == []

    @pytest.mark.asyncio
    async def test_no_filters_is_wildcard(self, populated):
        result = await populated.search_symbols()
        assert result.success
        assert len(result) == 6

    @pytest.mark.asyncio
    async def test_limit(self, populated):
        result = await populated.search_symbols(limit=2)
        assert len(result) == 2
        assert [s.name for s in result.symbols] == ["findMe", "findMeAlso"]

    @pytest.mark.asyncio
    async def test_wildcard_characters_are_literal(self, store):
        await _insert(store, "a_b")
        await _insert(store, "axb")
        result = await store.search_symbols("a_b")
        assert [s.name for s in result.symbols] == ["a_b"]

    @pytest.mark.asyncio
    async def test_storage_failure_is_reported(self, store):
        with patch.object(store, "_session_factory", side_effect=OperationalError("SELECT", {}, Exception("db gone"))):
            result = await store.search_symbols("x")
        assert result.success is False
        assert "db gone" in result.message


class TestGetSymbolInfo:
    @pytest.mark.asyncio
    async def test_exact_name(self, store):
        await _insert(store, "open", module="io")
        await _insert(store, "openFile", module="io")
        await _insert(store, "open", module="net")

        result = await store.get_symbol_info("open")
        assert result.success
        assert [s.module for s in result.symbols] == ["io", "net"]

        scoped = await store.get_symbol_info("open", module="net")
        assert len(scoped) == 1

    @pytest.mark.asyncio
    async def test_missing_is_empty_success(self, store):
        result = await store.get_symbol_info("nothing")
        assert result.success
        assert result.symbols == []


class TestDeletion:
    @pytest.mark.asyncio
    async def test_delete_symbols_for_file(self, store):
        await _insert(store, "a", file_path="/p/x.nim")
        await _insert(store, "b", file_path="/p/x.nim")
        await _insert(store, "c", file_path="/p/y.nim")

        assert await store.delete_symbols_for_file("/p/x.nim") == 2
        assert [s.name for s in (await store.search_symbols()).symbols] == ["c"]

    @pytest.mark.asyncio
    async def test_clear_module_and_all(self, store):
        await _insert(store, "a", module="m1")
        await _insert(store, "b", module="m2")

        assert await store.clear_symbols("m1") == 1
        assert await store.clear_symbols() == 1
        assert len(await store.search_symbols()) == 0


# ===================================================================
# Modules
# ===================================================================


class TestModules:
    @pytest.mark.asyncio
    async def test_insert_and_find(self, store):
        ts = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        mid = await store.insert_module("net/http", "/p/src/net/http.nim", ts, "HTTP client.", ["std/net"])
        assert mid > 0

        module = await store.find_module("net/http")
        assert module is not None
        assert module.id == mid
        assert module.file_path == "/p/src/net/http.nim"
        assert module.documentation == "HTTP client."
        assert module.imports == ["std/net"]
        assert module.last_modified is not None

    @pytest.mark.asyncio
    async def test_no_dedup_by_name(self, store):
        first = await store.insert_module("dup", "/a.nim")
        second = await store.insert_module("dup", "/b.nim")
        assert first != second
        assert (await store.find_module("dup")).id == first
        assert len(await store.get_modules()) == 2

    @pytest.mark.asyncio
    async def test_find_module_by_path(self, store):
        await store.insert_module("dup", "/a.nim")
        second = await store.insert_module("dup", "/b.nim")
        found = await store.find_module_by_path("dup", "/b.nim")
        assert found is not None
        assert found.id == second
        assert await store.find_module_by_path("dup", "/c.nim") is None

    @pytest.mark.asyncio
    async def test_find_missing(self, store):
        assert await store.find_module("nope") is None

    @pytest.mark.asyncio
    async def test_get_modules_sorted(self, store):
        await store.insert_module("zeta")
        await store.insert_module("alpha")
        result = await store.get_modules()
        assert result.success
        assert [m.name for m in result.modules] == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_update_module(self, store):
        old = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        new = datetime(2024, 6, 1, 8, 30, tzinfo=UTC)
        mid = await store.insert_module("net/http", "/p/src/net/http.nim", old, "HTTP client.", ["std/net"])

        assert await store.update_module(mid, last_modified=new, imports=["std/net", "std/uri"])

        module = await store.find_module("net/http")
        assert module.last_modified.replace(tzinfo=UTC) == new
        assert module.imports == ["std/net", "std/uri"]
        assert module.documentation == "HTTP client."

    @pytest.mark.asyncio
    async def test_update_missing_module(self, store):
        assert await store.update_module(404, documentation="x") is False


# ===================================================================
# Statistics and lifecycle
# ===================================================================


class TestStats:
    @pytest.mark.asyncio
    async def test_embedding_stats(self, store):
        await _insert(store, "plain")
        await _insert(store, "named", name_embedding=[1.0, 0.0], embedding_model="m1")
        await _insert(store, "full", name_embedding=[1.0], combined_embedding=[1.0], embedding_model="m2")

        stats = await store.get_embedding_stats()

        assert stats.success
        assert stats.total_symbols == 3
        assert stats.symbols_with_embeddings == 2
        assert stats.name_embeddings == 2
        assert stats.combined_embeddings == 1
        assert stats.signature_embeddings == 0
        assert stats.models == ["m1", "m2"]
        assert stats.coverage == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_embedding_stats_empty(self, store):
        stats = await store.get_embedding_stats()
        assert stats.success
        assert stats.total_symbols == 0
        assert stats.coverage == 0.0

    @pytest.mark.asyncio
    async def test_project_stats(self, store):
        await _insert(store, "a", kind="proc")
        await _insert(store, "b", kind="proc")
        await _insert(store, "T", kind="type")
        await store.insert_module("core")

        stats = await store.get_project_stats()

        assert stats.success
        assert stats.total_symbols == 3
        assert stats.total_modules == 1
        assert stats.kinds == {"proc": 2, "type": 1}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_tables_idempotent(self):
        engine = create_async_engine("sqlite+aiosqlite://")
        store = SymbolStore(engine)
        await store.create_tables()
        await store.create_tables()
        assert await _insert(store, "f") > 0
        assert store.dialect == "sqlite"
        await store.close()
