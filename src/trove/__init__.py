"""Trove: retrieval over code, docs and issue trackers.

Document-aware chunking, pluggable embeddings and vector stores, and
incremental indexing behind one search API.
"""

__version__ = "0.1.0"

from trove._trove import Trove
from trove._trove_async import (
    ComponentHealth,
    EngineStats,
    HealthReport,
    HealthStatus,
    TroveAsync,
)
from trove.chunking import Chunk, Chunker, ChunkType, DocumentInput, DocumentKind
from trove.config import (
    ChunkingConfig,
    EmbeddingConfig,
    EngineConfig,
    FailedEmbeddingPolicy,
    IndexingConfig,
    ProviderPreference,
    RetryPolicy,
    ScoringWeights,
    SearchConfig,
    VectorStoreConfig,
)
from trove.exceptions import (
    ConfigError,
    FileSystemError,
    IndexingCancelledError,
    InvalidInputError,
    NotInitializedError,
    ParseError,
    ProviderError,
    TroveError,
    VectorStoreError,
)
from trove.index import (
    DocumentIndexEntry,
    IndexingError,
    IndexingProgress,
    IndexingResult,
    IndexManager,
    IndexMetadata,
    IndexStatus,
)
from trove.search import (
    EmbeddingProvider,
    ProviderManager,
    ProviderProfile,
    SearchEngine,
    SearchFilters,
    SearchQuery,
    SearchResult,
    VectorStore,
)
from trove.search.filters import (
    FilterExpression,
    and_,
    eq,
    exists,
    gt,
    gte,
    in_,
    lt,
    lte,
    ne,
    not_in,
    or_,
)

__all__ = [
    "Chunk",
    "ChunkType",
    "Chunker",
    "ChunkingConfig",
    "ComponentHealth",
    "ConfigError",
    "DocumentIndexEntry",
    "DocumentInput",
    "DocumentKind",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "EngineConfig",
    "EngineStats",
    "FailedEmbeddingPolicy",
    "FileSystemError",
    "FilterExpression",
    "HealthReport",
    "HealthStatus",
    "IndexManager",
    "IndexMetadata",
    "IndexStatus",
    "IndexingCancelledError",
    "IndexingConfig",
    "IndexingError",
    "IndexingProgress",
    "IndexingResult",
    "InvalidInputError",
    "NotInitializedError",
    "ParseError",
    "ProviderError",
    "ProviderManager",
    "ProviderPreference",
    "ProviderProfile",
    "RetryPolicy",
    "ScoringWeights",
    "SearchConfig",
    "SearchEngine",
    "SearchFilters",
    "SearchQuery",
    "SearchResult",
    "Trove",
    "TroveAsync",
    "TroveError",
    "VectorStore",
    "VectorStoreConfig",
    "VectorStoreError",
    "__version__",
    "and_",
    "eq",
    "exists",
    "gt",
    "gte",
    "in_",
    "lt",
    "lte",
    "ne",
    "not_in",
    "or_",
]
