"""nimscope: code intelligence for Nim projects.

Declaration indexing, module bookkeeping, and lexical plus semantic symbol
search over a SQL store.
"""

__version__ = "0.1.0"

from nimscope._nimscope import Nimscope
from nimscope._nimscope_async import NimscopeAsync
from nimscope.analyzers import AnalyzerRegistry, Declaration, NimAnalyzer, SymbolKind
from nimscope.config import Config, create_engine
from nimscope.embeddings import (
    EMBEDDING_VERSION,
    EmbeddingGenerator,
    EmbeddingProvider,
    EmbeddingResult,
    OllamaEmbedding,
    SymbolEmbeddings,
)
from nimscope.embeddings.serialization import (
    embedding_to_json,
    embedding_to_native,
    json_to_embedding,
    native_to_embedding,
)
from nimscope.exceptions import (
    EmbeddingInputEmpty,
    EmbeddingProviderError,
    ExtractionError,
    NimscopeError,
    ProjectNotFoundError,
    SerializationError,
    StorageError,
)
from nimscope.indexer import IndexProgress, IndexResult, IndexState, Indexer
from nimscope.resolver import ModuleResolver, ResolvedModule
from nimscope.store import (
    EmbeddingStats,
    ModuleInfo,
    ModuleListResult,
    ProjectStats,
    SearchResult,
    SemanticQueryResult,
    SymbolInfo,
    SymbolQueryResult,
    SymbolStore,
)

__all__ = [
    "EMBEDDING_VERSION",
    "AnalyzerRegistry",
    "Config",
    "Declaration",
    "EmbeddingGenerator",
    "EmbeddingInputEmpty",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingResult",
    "EmbeddingStats",
    "ExtractionError",
    "IndexProgress",
    "IndexResult",
    "IndexState",
    "Indexer",
    "ModuleInfo",
    "ModuleListResult",
    "ModuleResolver",
    "NimAnalyzer",
    "Nimscope",
    "NimscopeAsync",
    "NimscopeError",
    "OllamaEmbedding",
    "ProjectNotFoundError",
    "ProjectStats",
    "ResolvedModule",
    "SearchResult",
    "SemanticQueryResult",
    "SerializationError",
    "StorageError",
    "SymbolEmbeddings",
    "SymbolInfo",
    "SymbolKind",
    "SymbolQueryResult",
    "SymbolStore",
    "__version__",
    "create_engine",
    "embedding_to_json",
    "embedding_to_native",
    "json_to_embedding",
    "native_to_embedding",
]
