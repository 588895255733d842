"""PineconeVectorStore — Pinecone vector database backend."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, TypeVar

from trove.config import RetryPolicy
from trove.exceptions import ConfigError, VectorStoreError
from trove.search._retry import retry_call
from trove.search.filters import FilterExpression, compile_pinecone
from trove.search.types import (
    CollectionInfo,
    DeleteResult,
    UpsertResult,
    VectorRecord,
    VectorSearchResult,
)

try:
    from pinecone import PineconeAsyncio, ServerlessSpec
    from pinecone.exceptions import PineconeException

    _HAS_PINECONE = True
except ImportError:  # pragma: no cover
    PineconeAsyncio = None  # type: ignore[assignment,misc]
    ServerlessSpec = None  # type: ignore[assignment,misc]
    PineconeException = None  # type: ignore[assignment,misc]
    _HAS_PINECONE = False

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UPSERT_BATCH_SIZE = 1000
_DELETE_BATCH_SIZE = 1000


def _timeout_error(message: str) -> VectorStoreError:
    return VectorStoreError(message, transient=True)


def _status(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def _is_not_found(exc: BaseException) -> bool:
    return _status(exc) == 404


class PineconeVectorStore:
    """Pinecone vector store.

    Each collection is a Pinecone serverless index; ``create_collection``
    creates the index when it does not exist and verifies its dimension
    when it does.  Every API call runs under the configured
    :class:`~trove.config.RetryPolicy`; rate limits, 5xx responses and
    connection failures are retried, anything else surfaces immediately
    as :class:`VectorStoreError`.

    Usage::

        store = PineconeVectorStore(api_key="...")
        await store.connect()
        await store.create_collection("docs", 384)
        await store.upsert("docs", [VectorRecord(id="...", vector=[0.1, ...])])
        results = await store.search("docs", [0.1, ...], limit=5)
        await store.close()
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        namespace: str = "",
        metric: str = "cosine",
        cloud: str = "aws",
        region: str = "us-east-1",
        retry: RetryPolicy | None = None,
        client: Any = None,
    ) -> None:
        if not _HAS_PINECONE:
            msg = (
                "pinecone is required for PineconeVectorStore. "
                "Install it with: pip install trove[pinecone]"
            )
            raise ImportError(msg)

        self._api_key = api_key or os.environ.get("PINECONE_API_KEY", "")
        self._namespace = namespace
        self._metric = metric
        self._cloud = cloud
        self._region = region
        self._retry = retry or RetryPolicy()
        self._client: Any = client
        self._owns_client = client is None
        self._indexes: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    async def create_collection(self, name: str, dimension: int) -> None:
        """Create the index *name* if missing and open a handle to it."""
        client = self._require_client()
        desc = await self._describe(name)
        if desc is None:
            logger.info("Creating Pinecone index %s (%d dimensions)", name, dimension)
            await self._call(
                lambda: client.create_index(
                    name=name,
                    dimension=dimension,
                    metric=self._metric,
                    spec=ServerlessSpec(cloud=self._cloud, region=self._region),
                ),
                f"create index {name}",
            )
            desc = await self._describe(name)
            if desc is None:
                msg = f"Pinecone index {name!r} was not found after creation"
                raise VectorStoreError(msg, transient=True)
        elif int(desc.dimension) != dimension:
            msg = f"Pinecone index {name!r} has dimension {desc.dimension}, requested {dimension}"
            raise ConfigError(msg)

        self._indexes[name] = client.IndexAsyncio(host=desc.host)

    async def delete_collection(self, name: str) -> None:
        """Delete the index *name* (no-op if it does not exist)."""
        client = self._require_client()
        handle = self._indexes.pop(name, None)
        if handle is not None:
            await handle.close()
        try:
            await self._call(lambda: client.delete_index(name), f"delete index {name}")
        except VectorStoreError as exc:
            if not _is_not_found(exc.__cause__ or exc):
                raise

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> UpsertResult:
        """Write *records* in requests of at most 1000 vectors."""
        idx = self._require_index(collection)

        total = 0
        for i in range(0, len(records), _UPSERT_BATCH_SIZE):
            batch = records[i : i + _UPSERT_BATCH_SIZE]
            vectors = [{"id": r.id, "values": r.vector, "metadata": r.metadata} for r in batch]
            resp = await self._call(
                lambda vectors=vectors: idx.upsert(vectors=vectors, namespace=self._namespace),
                f"upsert into {collection}",
            )
            total += getattr(resp, "upserted_count", len(batch))

        return UpsertResult(upserted_count=total)

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        limit: int = 10,
        threshold: float | None = None,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[VectorSearchResult]:
        """Nearest neighbours of *vector*, dropping matches below *threshold*."""
        idx = self._require_index(collection)

        kwargs: dict[str, Any] = {
            "vector": vector,
            "top_k": limit,
            "namespace": self._namespace,
            "include_metadata": True,
            "include_values": False,
        }
        if filter is not None:
            kwargs["filter"] = compile_pinecone(filter)

        resp = await self._call(lambda: idx.query(**kwargs), f"query {collection}")

        results: list[VectorSearchResult] = []
        for match in resp.matches:
            score = match.score
            if threshold is not None and score < threshold:
                continue
            results.append(
                VectorSearchResult(
                    id=match.id,
                    score=score,
                    metadata=dict(match.metadata) if match.metadata else {},
                )
            )
        return results

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorRecord | None]:
        """Records for *ids* in order, ``None`` where an id is unknown."""
        idx = self._require_index(collection)
        if not ids:
            return []
        resp = await self._call(
            lambda: idx.fetch(ids=ids, namespace=self._namespace),
            f"fetch from {collection}",
        )

        results: list[VectorRecord | None] = []
        vectors_map = resp.vectors if resp.vectors else {}
        for record_id in ids:
            vec = vectors_map.get(record_id)
            if vec is None:
                results.append(None)
            else:
                results.append(
                    VectorRecord(
                        id=vec.id,
                        vector=list(vec.values) if vec.values else [],
                        metadata=dict(vec.metadata) if vec.metadata else {},
                    )
                )
        return results

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete *ids*; unknown ids are ignored by Pinecone."""
        idx = self._require_index(collection)
        for i in range(0, len(ids), _DELETE_BATCH_SIZE):
            batch = ids[i : i + _DELETE_BATCH_SIZE]
            await self._call(
                lambda batch=batch: idx.delete(ids=batch, namespace=self._namespace),
                f"delete from {collection}",
            )
        # The API does not report how many ids existed.
        return DeleteResult(deleted_count=len(ids))

    async def collection_info(self, collection: str) -> CollectionInfo:
        """Return vector count and dimension from the index stats."""
        idx = self._indexes.get(collection)
        if idx is None:
            return CollectionInfo(name=collection, count=0, dimension=0, status="missing")
        stats = await self._call(idx.describe_index_stats, f"describe {collection}")
        namespaces = getattr(stats, "namespaces", None) or {}
        ns_stats = namespaces.get(self._namespace)
        if ns_stats is not None:
            count = int(getattr(ns_stats, "vector_count", 0) or 0)
        else:
            count = int(getattr(stats, "total_vector_count", 0) or 0)
        return CollectionInfo(
            name=collection,
            count=count,
            dimension=int(getattr(stats, "dimension", 0) or 0),
            metadata={"namespace": self._namespace, "backend": "pinecone"},
        )

    async def connect(self) -> None:
        """Create the async client (unless one was injected) and list indexes as a probe."""
        if self._client is None:
            self._client = PineconeAsyncio(api_key=self._api_key)
        client = self._client
        await self._call(client.list_indexes, "list indexes")

    async def close(self) -> None:
        """Close index handles and the async client."""
        for handle in self._indexes.values():
            await handle.close()
        self._indexes.clear()
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _describe(self, name: str) -> Any:
        client = self._require_client()
        try:
            return await self._call(lambda: client.describe_index(name), f"describe index {name}")
        except VectorStoreError as exc:
            if _is_not_found(exc.__cause__ or exc):
                return None
            raise

    async def _call(self, fn: Callable[[], Awaitable[T]], operation: str) -> T:
        async def translated() -> T:
            try:
                return await fn()
            except (PineconeException, OSError) as exc:
                status = _status(exc)
                transient = isinstance(exc, OSError) or status == 429 or (
                    status is not None and status >= 500
                )
                msg = f"Pinecone {operation} failed: {exc}"
                raise VectorStoreError(msg, transient=transient) from exc

        return await retry_call(
            translated,
            self._retry,
            operation=f"Pinecone {operation}",
            on_timeout=_timeout_error,
        )

    def _require_index(self, collection: str) -> Any:
        idx = self._indexes.get(collection)
        if idx is None:
            msg = f"Collection {collection!r} is not open. Call create_collection() first."
            raise VectorStoreError(msg)
        return idx

    def _require_client(self) -> Any:
        if self._client is None:
            msg = "Not connected. Call connect() first."
            raise VectorStoreError(msg)
        return self._client
