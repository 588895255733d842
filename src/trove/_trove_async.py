"""TroveAsync — async facade composing the index manager and the search engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from trove.chunking import Chunker
from trove.config import EngineConfig
from trove.exceptions import ConfigError, NotInitializedError, TroveError, VectorStoreError
from trove.index import IndexManager, IndexRegistry, IndexStatus
from trove.search._engine import SearchEngine
from trove.search.protocols import EmbeddingProvider, SupportsPersistence
from trove.search.providers.manager import ProviderManager

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Iterable
    from pathlib import Path

    from trove.index import DocumentIndexEntry, IndexingResult, ProgressCallback
    from trove.search.protocols import VectorStore
    from trove.search.types import SearchQuery, SearchResult

logger = logging.getLogger(__name__)

_DEFAULT_REGISTRY_URL = "sqlite+aiosqlite://"


# ------------------------------------------------------------------
# Reports
# ------------------------------------------------------------------


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ComponentHealth:
    status: HealthStatus
    detail: str = ""


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Overall status is the worst component status."""

    status: HealthStatus
    components: dict[str, ComponentHealth] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EngineStats:
    """Index totals plus running performance counters."""

    documents: int
    chunks: int
    vectors: int
    index_size: int
    performance: dict[str, float] = field(default_factory=dict)


# ------------------------------------------------------------------
# Factories
# ------------------------------------------------------------------


def build_provider(config: EngineConfig) -> EmbeddingProvider:
    """Instantiate the embedding provider named by ``config.embedding.provider``."""
    embedding = config.embedding
    match embedding.provider:
        case "sentence-transformers":
            from trove.search.providers.sentence_transformers import SentenceTransformerEmbedding

            return SentenceTransformerEmbedding(embedding.model)
        case "openai":
            from trove.search.providers.openai import OpenAIEmbedding

            return OpenAIEmbedding(
                model=embedding.model,
                dimensions=embedding.dimensions,
                api_key=embedding.api_key,
                batch_size=embedding.batch_size,
            )
        case other:
            msg = f"Unknown embedding provider {other!r}"
            raise ConfigError(msg)


def build_store(config: EngineConfig) -> VectorStore:
    """Instantiate the vector store named by ``config.vector_store.backend``."""
    vs = config.vector_store
    match vs.backend:
        case "local":
            from trove.search.stores.local import LocalVectorStore

            return LocalVectorStore(metric=vs.metric)
        case "pinecone":
            from trove.search.stores.pinecone import PineconeVectorStore

            return PineconeVectorStore(api_key=vs.api_key, metric=vs.metric, retry=vs.retry)
        case "qdrant":
            from trove.search.stores.qdrant import QdrantVectorStore

            return QdrantVectorStore(url=vs.url, api_key=vs.api_key, metric=vs.metric, retry=vs.retry)
        case other:
            msg = f"Unknown vector store backend {other!r}"
            raise ConfigError(msg)


def _registry_url(config: EngineConfig) -> str:
    url = config.indexing.registry_url
    if url == _DEFAULT_REGISTRY_URL and config.data_dir is not None:
        return f"sqlite+aiosqlite:///{config.data_dir / 'registry.db'}"
    return url


# ------------------------------------------------------------------
# Facade
# ------------------------------------------------------------------


class TroveAsync:
    """Async retrieval engine: index documents, search them, report health.

    Built from one :class:`~trove.config.EngineConfig`; components not
    passed explicitly are constructed from it.  Call :meth:`initialize`
    (or use ``async with``) before anything else.

    Usage::

        async with TroveAsync(EngineConfig(indexing=IndexingConfig(base_paths=("docs",)))) as t:
            await t.index_documents()
            results = await t.search("how is the cache invalidated?")
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        embedding_provider: EmbeddingProvider | ProviderManager | None = None,
        store: VectorStore | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._config.validate()
        self._closed = False
        self._initialized = False

        if isinstance(embedding_provider, ProviderManager):
            self._providers = embedding_provider
        else:
            self._providers = ProviderManager(self._config.embedding)
            provider = embedding_provider or build_provider(self._config)
            self._providers.register("default", provider, primary=True)

        self._store = store if store is not None else build_store(self._config)
        collection = self._config.vector_store.collection
        self._index = IndexManager(
            chunker=Chunker(self._config.chunking),
            providers=self._providers,
            store=self._store,
            registry=IndexRegistry(_registry_url(self._config)),
            collection=collection,
            config=self._config.indexing,
        )
        self._search = SearchEngine(
            self._store,
            self._providers,
            collection=collection,
            config=self._config.search,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Probe the providers, connect the store and open the registry.

        Raises:
            ProviderError: No embedding provider is available.
            VectorStoreError: The store is unreachable.
            ConfigError: Dimensionality disagreement between provider,
                configuration and an existing collection.
        """
        if self._initialized:
            return
        await self._providers.initialize()
        await self._store.connect()
        if self._config.data_dir is not None:
            self._config.data_dir.mkdir(parents=True, exist_ok=True)
            if isinstance(self._store, SupportsPersistence):
                self._store.load(str(self._vectors_dir()))
        await self._index.initialize()
        self._initialized = True
        logger.info(
            "Trove ready: collection %s, %d dimensions",
            self._config.vector_store.collection,
            self._providers.dimensions,
        )

    async def save(self) -> None:
        """Persist a local store under ``config.data_dir`` (no-op otherwise)."""
        if self._config.data_dir is not None and isinstance(self._store, SupportsPersistence):
            self._store.save(str(self._vectors_dir()))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._initialized:
            await self.save()
        await self._index.close()
        await self._store.close()
        await self._providers.close()

    async def __aenter__(self) -> TroveAsync:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_documents(
        self,
        paths: Iterable[str | Path] | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> IndexingResult:
        """Index *paths*, or every file discovered under the base paths."""
        self._require_initialized()
        return await self._index.index_documents(paths, on_progress=on_progress, cancel=cancel)

    async def index_document(self, path: str | Path, *, force: bool = False) -> DocumentIndexEntry:
        self._require_initialized()
        return await self._index.index_document(path, force=force)

    async def delete_document(self, path: str | Path) -> None:
        """Remove *path* and all of its vectors from the index."""
        self._require_initialized()
        entry = await self._index.delete_document(path)
        if entry is not None:
            self._search.forget(entry.vector_ids)

    async def rebuild(
        self,
        *,
        full: bool = True,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> IndexingResult:
        self._require_initialized()
        return await self._index.rebuild(full=full, on_progress=on_progress, cancel=cancel)

    async def find_outdated_documents(self) -> list[DocumentIndexEntry]:
        self._require_initialized()
        return await self._index.find_outdated_documents()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: SearchQuery | str) -> list[SearchResult]:
        self._require_initialized()
        return await self._search.search(query)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_stats(self) -> EngineStats:
        self._require_initialized()
        meta = await self._index.get_metadata()
        perf = self._search.performance
        embedding = self._providers.stats
        return EngineStats(
            documents=meta.document_count,
            chunks=meta.chunk_count,
            vectors=meta.vector_count,
            index_size=meta.total_size,
            performance={
                "searches": float(perf.searches),
                "average_search_ms": perf.average_ms,
                "last_search_ms": perf.last_ms,
                "embedding_requests": float(embedding.requests),
                "embedded_texts": float(embedding.texts),
                "failed_embeddings": float(embedding.failed),
                "degraded_embeddings": float(embedding.degraded),
            },
        )

    async def health_check(self) -> HealthReport:
        """Check each component; never raises for a component failure."""
        components = {
            "embedding": await self._embedding_health(),
            "vector_store": await self._store_health(),
            "index_manager": await self._index_health(),
        }
        statuses = {c.status for c in components.values()}
        if HealthStatus.ERROR in statuses:
            overall = HealthStatus.ERROR
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY
        return HealthReport(status=overall, components=components)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def providers(self) -> ProviderManager:
        return self._providers

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def index_manager(self) -> IndexManager:
        return self._index

    @property
    def search_engine(self) -> SearchEngine:
        return self._search

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_initialized(self) -> None:
        if self._closed:
            msg = "Trove has been closed"
            raise NotInitializedError(msg)
        if not self._initialized:
            msg = "Call initialize() before using Trove"
            raise NotInitializedError(msg)

    def _vectors_dir(self) -> Path:
        assert self._config.data_dir is not None
        return self._config.data_dir / "vectors"

    async def _embedding_health(self) -> ComponentHealth:
        if not self._providers.initialized:
            return ComponentHealth(HealthStatus.ERROR, "not initialized")
        if not await self._providers.is_available():
            return ComponentHealth(HealthStatus.ERROR, "no embedding provider available")
        status = self._providers.provider_status()
        benched = [name for name, state in status.items() if state != "available"]
        if benched:
            return ComponentHealth(HealthStatus.DEGRADED, f"in cooldown: {', '.join(benched)}")
        return ComponentHealth(HealthStatus.HEALTHY, f"model {self._providers.model_name}")

    async def _store_health(self) -> ComponentHealth:
        try:
            info = await self._store.collection_info(self._config.vector_store.collection)
        except VectorStoreError as exc:
            return ComponentHealth(HealthStatus.ERROR, str(exc))
        match info.status:
            case "ready":
                return ComponentHealth(HealthStatus.HEALTHY, f"{info.count} vectors")
            case "indexing":
                return ComponentHealth(HealthStatus.DEGRADED, "collection is indexing")
            case other:
                return ComponentHealth(HealthStatus.ERROR, f"collection status {other}")

    async def _index_health(self) -> ComponentHealth:
        registry = self._index.registry
        if not registry.is_open:
            return ComponentHealth(HealthStatus.ERROR, "registry not open")
        try:
            failing = await registry.list_entries(IndexStatus.ERROR)
            outdated = await registry.list_entries(IndexStatus.OUTDATED)
        except TroveError as exc:
            return ComponentHealth(HealthStatus.ERROR, str(exc))
        if failing or outdated:
            return ComponentHealth(
                HealthStatus.DEGRADED,
                f"{len(failing)} in error, {len(outdated)} outdated",
            )
        return ComponentHealth(HealthStatus.HEALTHY)
