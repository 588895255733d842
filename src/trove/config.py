"""Engine configuration — immutable value objects injected into each component.

A single :class:`EngineConfig` is built once by the caller and handed to the
engine, which passes the relevant section to the chunker, the provider
manager, the vector store, the index manager and the search engine.  Loading
configuration from files or the environment is left to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from trove.exceptions import ConfigError

# ------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------


class ProviderPreference(Enum):
    """What the provider manager optimizes for when several providers are available."""

    COST = "cost"
    LATENCY = "latency"
    QUALITY = "quality"


class FailedEmbeddingPolicy(Enum):
    """What happens to a text that cannot be embedded after all retries.

    ``EXCLUDE`` drops the item (its chunk is not written to the store).
    ``ZERO_VECTOR`` substitutes an all-zero vector so the item is still
    written, at the cost of a degenerate point in the similarity space.
    """

    EXCLUDE = "exclude"
    ZERO_VECTOR = "zero_vector"


# ------------------------------------------------------------------
# Sections
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Per-call retry budget for network calls.

    Attributes:
        max_attempts: Total attempts including the first call.
        base_delay: Initial backoff in seconds (doubles each attempt).
        max_delay: Cap on a single backoff sleep.
        timeout: Per-call timeout in seconds; ``None`` disables it.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float | None = 30.0


@dataclass(frozen=True, slots=True)
class EmbeddingConfig:
    """Embedding provider selection and batching."""

    provider: str = "sentence-transformers"
    model: str = "all-MiniLM-L6-v2"
    dimensions: int | None = None
    api_key: str | None = None
    batch_size: int = 32
    max_concurrency: int = 4
    cooldown: float = 60.0
    preference: ProviderPreference = ProviderPreference.QUALITY
    failed_embedding_policy: FailedEmbeddingPolicy = FailedEmbeddingPolicy.EXCLUDE
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True, slots=True)
class VectorStoreConfig:
    """Vector backend endpoint and collection."""

    backend: str = "local"
    collection: str = "trove"
    url: str | None = None
    api_key: str | None = None
    metric: str = "cosine"
    batch_size: int = 100
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True, slots=True)
class ChunkingConfig:
    """Chunking thresholds and heuristics."""

    section_max_tokens: int = 1024
    min_comment_length: int = 200
    resolution_keywords: tuple[str, ...] = (
        "fixed",
        "resolved",
        "solved",
        "solution",
        "workaround",
        "root cause",
        "closing",
        "merged",
    )


_DEFAULT_INCLUDE = (
    "**/*.ts",
    "**/*.tsx",
    "**/*.js",
    "**/*.jsx",
    "**/*.mjs",
    "**/*.go",
    "**/*.md",
    "**/*.markdown",
    "**/*.txt",
    "**/*.json",
)

_DEFAULT_EXCLUDE = (
    "node_modules/**",
    "dist/**",
    "build/**",
    ".git/**",
    "**/*.test.*",
    "**/*.spec.*",
    "package-lock.json",
)


@dataclass(frozen=True, slots=True)
class IndexingConfig:
    """Discovery and incremental indexing."""

    base_paths: tuple[str, ...] = (".",)
    include_patterns: tuple[str, ...] = _DEFAULT_INCLUDE
    exclude_patterns: tuple[str, ...] = _DEFAULT_EXCLUDE
    max_file_size: int = 1024 * 1024
    incremental: bool = True
    workers: int = 4
    registry_url: str = "sqlite+aiosqlite://"


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Blend weights for the final search score."""

    similarity: float = 0.7
    recency: float = 0.1
    affinity: float = 0.15
    usage: float = 0.05


@dataclass(frozen=True, slots=True)
class SearchConfig:
    """Search defaults and ranking."""

    default_limit: int = 20
    threshold: float = 0.7
    recency_max_age_days: float = 180.0
    highlight_count: int = 3
    weights: ScoringWeights = field(default_factory=ScoringWeights)


# ------------------------------------------------------------------
# Root
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        data_dir: Directory for local persistence (local vector store files).
            ``None`` keeps everything in memory.
    """

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    data_dir: Path | None = None

    def validate(self) -> None:
        """Raise :class:`ConfigError` listing every invalid value."""
        errors: list[str] = []

        if self.embedding.batch_size <= 0:
            errors.append(f"embedding.batch_size must be positive, got {self.embedding.batch_size}")
        if self.embedding.max_concurrency <= 0:
            errors.append(
                f"embedding.max_concurrency must be positive, got {self.embedding.max_concurrency}"
            )
        if self.embedding.dimensions is not None and self.embedding.dimensions <= 0:
            errors.append(f"embedding.dimensions must be positive, got {self.embedding.dimensions}")
        if not 0 < self.vector_store.batch_size <= 1000:
            errors.append(
                f"vector_store.batch_size must be between 1 and 1000, "
                f"got {self.vector_store.batch_size}"
            )
        if not self.vector_store.collection:
            errors.append("vector_store.collection must not be empty")
        if not 0.0 <= self.search.threshold <= 1.0:
            errors.append(f"search.threshold must be between 0 and 1, got {self.search.threshold}")
        if self.search.default_limit <= 0:
            errors.append(
                f"search.default_limit must be positive, got {self.search.default_limit}"
            )
        if self.indexing.max_file_size <= 0:
            errors.append(
                f"indexing.max_file_size must be positive, got {self.indexing.max_file_size}"
            )
        if self.indexing.workers <= 0:
            errors.append(f"indexing.workers must be positive, got {self.indexing.workers}")
        for policy_name, policy in (
            ("embedding.retry", self.embedding.retry),
            ("vector_store.retry", self.vector_store.retry),
        ):
            if policy.max_attempts < 1:
                errors.append(f"{policy_name}.max_attempts must be at least 1")

        if errors:
            raise ConfigError("; ".join(errors))
