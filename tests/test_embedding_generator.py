"""Tests for EmbeddingGenerator strategies, text shaping and failure handling."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from nimscope.config import Config
from nimscope.embeddings import (
    EMBEDDING_VERSION,
    EmbeddingGenerator,
    EmbeddingResult,
    OllamaEmbedding,
    clean_documentation,
    combined_text,
    documentation_text,
    name_text,
    provider_from_config,
    signature_text,
)
from nimscope.exceptions import EmbeddingInputEmpty, EmbeddingProviderError


def _mock_provider(vector: list[float] | None = None) -> MagicMock:
    provider = MagicMock(spec=["embed", "embed_batch", "dimensions", "model_name"])
    provider.embed = AsyncMock(return_value=vector or [0.1, 0.2, 0.3])
    provider.embed_batch = AsyncMock(side_effect=lambda texts: [vector or [0.1, 0.2, 0.3] for _ in texts])
    provider.model_name = "mock-model"
    provider.dimensions = 3
    return provider


# ===================================================================
# Text shaping
# ===================================================================


class TestTextShaping:
    def test_name_splits_camel_case(self):
        assert name_text("parseJsonNode", "json") == "Function: parse json node in module json"

    def test_name_without_module(self):
        assert name_text("open") == "Function: open"

    def test_signature_collapses_whitespace(self):
        assert signature_text("proc f(a: int,\n       b: int)") == "Function signature: proc f(a: int, b: int)"

    def test_documentation_strips_markers(self):
        assert documentation_text("## Opens  a\n##* file *##") == "Opens a file"

    def test_clean_documentation(self):
        assert clean_documentation("  ## x  ") == "x"

    def test_combined_uses_non_empty_parts(self):
        assert combined_text("open", "", "Opens a file.") == "Name: open. Description: Opens a file."
        assert combined_text("open", "proc open()", "") == "Name: open. Signature: proc open()"

    @pytest.mark.parametrize(
        ("shape", "args", "message"),
        [
            (name_text, ("  ",), "Empty name"),
            (signature_text, ("",), "Empty signature"),
            (documentation_text, ("##",), "Empty documentation"),
            (combined_text, ("", " ", ""), "No content to embed"),
        ],
    )
    def test_empty_input_raises(self, shape, args, message):
        with pytest.raises(EmbeddingInputEmpty, match=message):
            shape(*args)


# ===================================================================
# Strategies
# ===================================================================


class TestStrategies:
    @pytest.mark.asyncio
    async def test_embed_name(self):
        provider = _mock_provider()
        gen = EmbeddingGenerator(provider=provider)

        result = await gen.embed_name("readFile", "io")

        assert result == EmbeddingResult(success=True, embedding=[0.1, 0.2, 0.3])
        provider.embed.assert_awaited_once_with("Function: read file in module io")

    @pytest.mark.asyncio
    async def test_embed_signature_and_documentation(self):
        provider = _mock_provider()
        gen = EmbeddingGenerator(provider=provider)

        assert (await gen.embed_signature("proc f()")).success
        assert (await gen.embed_documentation("## Does f.")).success
        assert provider.embed.await_count == 2

    @pytest.mark.asyncio
    async def test_embed_combined(self):
        provider = _mock_provider()
        gen = EmbeddingGenerator(provider=provider)

        result = await gen.embed_combined("f", "proc f()", "Does f.")

        assert result.success
        provider.embed.assert_awaited_once_with("Name: f. Signature: proc f(). Description: Does f.")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "args", "message"),
        [
            ("embed_name", ("",), "Empty name"),
            ("embed_signature", ("   ",), "Empty signature"),
            ("embed_documentation", ("",), "Empty documentation"),
            ("embed_combined", ("", "", ""), "No content to embed"),
            ("embed_text", ("\n",), "Empty text"),
        ],
    )
    async def test_empty_input_fails_fast(self, method, args, message):
        provider = _mock_provider()
        gen = EmbeddingGenerator(provider=provider)

        result = await getattr(gen, method)(*args)

        assert result.success is False
        assert result.error == message
        assert result.embedding == []
        provider.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error_becomes_failed_result(self):
        provider = _mock_provider()
        provider.embed = AsyncMock(side_effect=EmbeddingProviderError("HTTP 500: boom"))
        gen = EmbeddingGenerator(provider=provider)

        result = await gen.embed_text("hello")

        assert result.success is False
        assert result.error == "HTTP 500: boom"

    @pytest.mark.asyncio
    async def test_empty_vector_is_failure(self):
        provider = _mock_provider()
        provider.embed = AsyncMock(return_value=[])
        gen = EmbeddingGenerator(provider=provider)

        result = await gen.embed_text("hello")

        assert result.success is False
        assert result.error == "No embedding in response"


# ===================================================================
# Batches and symbols
# ===================================================================


class TestBatches:
    @pytest.mark.asyncio
    async def test_embed_batch_chunks_by_config(self):
        provider = _mock_provider()
        gen = EmbeddingGenerator(Config(embedding_batch_size=2), provider=provider)

        results = await gen.embed_batch(["a", "", "b", "c"])

        assert [r.success for r in results] == [True, False, True, True]
        assert results[1].error == "Empty text"
        sent = [call.args[0] for call in provider.embed_batch.await_args_list]
        assert sent == [["a", "b"], ["c"]]

    @pytest.mark.asyncio
    async def test_embed_batch_failure_marks_chunk(self):
        provider = _mock_provider()
        provider.embed_batch = AsyncMock(side_effect=EmbeddingProviderError("down"))
        gen = EmbeddingGenerator(provider=provider)

        results = await gen.embed_batch(["a", "b"])

        assert all(not r.success and r.error == "down" for r in results)

    @pytest.mark.asyncio
    async def test_embed_batch_short_response_marks_chunk(self):
        provider = _mock_provider()
        provider.embed_batch = AsyncMock(side_effect=lambda texts: [[0.1, 0.2]] * (len(texts) - 1))
        gen = EmbeddingGenerator(provider=provider)

        results = await gen.embed_batch(["a", "b", "c"])

        assert [r.success for r in results] == [False, False, False]
        assert "returned 2 vector(s) for 3 text(s)" in results[0].error

    @pytest.mark.asyncio
    async def test_embed_symbol_short_response_is_failure(self):
        provider = _mock_provider()
        provider.embed_batch = AsyncMock(return_value=[])
        gen = EmbeddingGenerator(provider=provider)

        bundle = await gen.embed_symbol("open", "io", "proc open*()", "Opens.")

        assert not bundle.any_success

    @pytest.mark.asyncio
    async def test_embed_symbol(self):
        provider = _mock_provider()
        gen = EmbeddingGenerator(provider=provider)

        bundle = await gen.embed_symbol("open", "io", "proc open*(path: string): File", "")

        assert bundle.name.success
        assert bundle.signature.success
        assert bundle.documentation.success is False
        assert bundle.documentation.error == "Empty documentation"
        assert bundle.combined.success
        assert bundle.any_success
        assert bundle.model == "mock-model"
        assert bundle.version == EMBEDDING_VERSION
        assert bundle.vector("documentation") is None
        assert bundle.vector("combined") == [0.1, 0.2, 0.3]
        provider.embed_batch.assert_awaited_once()
        assert len(provider.embed_batch.await_args.args[0]) == 3


# ===================================================================
# Lifecycle
# ===================================================================


class TestLifecycle:
    def test_default_provider_is_ollama(self):
        gen = EmbeddingGenerator(Config(ollama_host="http://gpu:11434", embedding_model="m"))
        assert isinstance(gen.provider, OllamaEmbedding)
        assert gen.provider.host == "http://gpu:11434"
        assert gen.model_name == "m"
        assert gen.provider.dimensions == 768

    def test_openai_provider_from_config(self):
        from nimscope.embeddings.openai import OpenAIEmbedding

        gen = EmbeddingGenerator(Config(embedding_provider="openai", ollama_host="http://gpu:11434"))
        assert isinstance(gen.provider, OpenAIEmbedding)
        assert gen.provider.base_url == "http://gpu:11434/v1"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            provider_from_config(Config(embedding_provider="nope"))

    def test_is_stale(self):
        gen = EmbeddingGenerator(provider=_mock_provider())
        assert not gen.is_stale("mock-model", EMBEDDING_VERSION)
        assert gen.is_stale("other-model", EMBEDDING_VERSION)
        assert gen.is_stale("mock-model", "0.9")

    @pytest.mark.asyncio
    async def test_check_health_without_management_is_available(self):
        gen = EmbeddingGenerator(provider=_mock_provider())
        assert gen.available is False
        assert await gen.check_health() is True
        assert gen.available is True

    @pytest.mark.asyncio
    async def test_check_health_unhealthy(self, make_provider):
        gen = EmbeddingGenerator(provider=make_provider(healthy=False))
        assert await gen.check_health() is False
        assert gen.available is False

    @pytest.mark.asyncio
    async def test_ensure_model_pulls_missing(self, make_provider):
        provider = make_provider()
        provider.has_model = AsyncMock(return_value=False)
        provider.pull_model = AsyncMock(return_value=True)
        gen = EmbeddingGenerator(provider=provider)

        assert await gen.ensure_model() is True
        provider.pull_model.assert_awaited_once_with("fake-embed")

    @pytest.mark.asyncio
    async def test_ensure_model_failure_is_false(self, make_provider):
        provider = make_provider()
        provider.has_model = AsyncMock(side_effect=EmbeddingProviderError("down"))
        gen = EmbeddingGenerator(provider=provider)

        assert await gen.ensure_model("x") is False

    @pytest.mark.asyncio
    async def test_close_delegates(self):
        provider = _mock_provider()
        provider.close = AsyncMock()
        gen = EmbeddingGenerator(provider=provider)
        await gen.close()
        provider.close.assert_awaited_once()
