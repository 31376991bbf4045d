"""Embedding providers, the generator that drives them, and vector codecs."""

from nimscope.embeddings._generator import (
    EMBEDDING_VERSION,
    EmbeddingGenerator,
    EmbeddingResult,
    SymbolEmbeddings,
    clean_documentation,
    combined_text,
    documentation_text,
    name_text,
    provider_from_config,
    signature_text,
)
from nimscope.embeddings._protocol import EmbeddingProvider, SupportsModelManagement
from nimscope.embeddings.ollama import OllamaEmbedding

__all__ = [
    "EMBEDDING_VERSION",
    "EmbeddingGenerator",
    "EmbeddingProvider",
    "EmbeddingResult",
    "OllamaEmbedding",
    "SupportsModelManagement",
    "SymbolEmbeddings",
    "clean_documentation",
    "combined_text",
    "documentation_text",
    "name_text",
    "provider_from_config",
    "signature_text",
]

# Optional providers: import-guarded, available only when deps are installed.
try:
    from nimscope.embeddings.openai import OpenAIEmbedding

    __all__.append("OpenAIEmbedding")
except ImportError:  # pragma: no cover
    pass
