"""Embedding providers and the manager that fails over between them."""

from trove.search.protocols import EmbeddingProvider
from trove.search.providers.manager import (
    BatchEmbedding,
    EmbeddingStats,
    ProviderManager,
    ProviderProfile,
)
from trove.search.providers.openai import OpenAIEmbedding
from trove.search.providers.sentence_transformers import SentenceTransformerEmbedding

__all__ = [
    "BatchEmbedding",
    "EmbeddingProvider",
    "EmbeddingStats",
    "OpenAIEmbedding",
    "ProviderManager",
    "ProviderProfile",
    "SentenceTransformerEmbedding",
]
