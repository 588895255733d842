"""Vector search layer — engine, stores, embedding providers, filters."""

from trove.search._engine import SearchEngine, SearchPerformance
from trove.search.filters import FilterExpression
from trove.search.protocols import EmbeddingProvider, SupportsPersistence, VectorStore
from trove.search.providers.manager import BatchEmbedding, ProviderManager, ProviderProfile
from trove.search.stores.local import LocalVectorStore
from trove.search.types import (
    ChunkDescriptor,
    CollectionInfo,
    ScoreBreakdown,
    SearchFilters,
    SearchQuery,
    SearchResult,
    VectorPayload,
    VectorRecord,
    VectorSearchResult,
)

__all__ = [
    "BatchEmbedding",
    "ChunkDescriptor",
    "CollectionInfo",
    "EmbeddingProvider",
    "FilterExpression",
    "LocalVectorStore",
    "ProviderManager",
    "ProviderProfile",
    "ScoreBreakdown",
    "SearchEngine",
    "SearchFilters",
    "SearchPerformance",
    "SearchQuery",
    "SearchResult",
    "SupportsPersistence",
    "VectorPayload",
    "VectorRecord",
    "VectorSearchResult",
    "VectorStore",
]
