"""QdrantVectorStore — Qdrant vector database backend."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from trove.config import RetryPolicy
from trove.exceptions import ConfigError, VectorStoreError
from trove.search._retry import retry_call
from trove.search.filters import FilterExpression, compile_qdrant
from trove.search.types import (
    CollectionInfo,
    DeleteResult,
    UpsertResult,
    VectorRecord,
    VectorSearchResult,
)

try:
    from qdrant_client import AsyncQdrantClient
    from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
    from qdrant_client.models import Distance, PointIdsList, PointStruct, VectorParams

    _HAS_QDRANT = True
except ImportError:  # pragma: no cover
    _HAS_QDRANT = False

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UPSERT_BATCH_SIZE = 100


def _timeout_error(message: str) -> VectorStoreError:
    return VectorStoreError(message, transient=True)


def _distance(metric: str) -> Distance:
    distances = {
        "cosine": Distance.COSINE,
        "dot": Distance.DOT,
        "euclidean": Distance.EUCLID,
        "manhattan": Distance.MANHATTAN,
    }
    try:
        return distances[metric]
    except KeyError:
        msg = f"Unsupported Qdrant metric {metric!r}"
        raise ConfigError(msg) from None


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code == 429 or exc.status_code >= 500
    return isinstance(exc, ResponseHandlingException | OSError)


class QdrantVectorStore:
    """Qdrant vector store over ``AsyncQdrantClient``.

    Collections map one-to-one onto Qdrant collections.  Point ids must be
    UUIDs or unsigned integers, which the deterministic chunk vector ids
    satisfy.  Filters compile to native Qdrant ``Filter`` objects so list
    payload fields match any-of.

    Requires the ``qdrant-client`` package::

        pip install trove[qdrant]
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        api_key: str | None = None,
        metric: str = "cosine",
        retry: RetryPolicy | None = None,
        client: Any = None,
    ) -> None:
        if not _HAS_QDRANT:
            msg = (
                "qdrant-client is required for QdrantVectorStore. "
                "Install it with: pip install trove[qdrant]"
            )
            raise ImportError(msg)

        self._url = url or "http://localhost:6333"
        self._api_key = api_key
        self._metric = metric
        self._retry = retry or RetryPolicy()
        self._client: Any = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    async def create_collection(self, name: str, dimension: int) -> None:
        """Create *name* if missing; verify its vector size otherwise."""
        client = self._require_client()
        exists = await self._call(lambda: client.collection_exists(name), f"check {name}")
        if exists:
            info = await self._call(lambda: client.get_collection(name), f"describe {name}")
            existing = _vector_size(info)
            if existing != dimension:
                msg = f"Qdrant collection {name!r} has dimension {existing}, requested {dimension}"
                raise ConfigError(msg)
            return

        logger.info("Creating Qdrant collection %s (%d dimensions)", name, dimension)
        await self._call(
            lambda: client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=dimension, distance=_distance(self._metric)),
            ),
            f"create {name}",
        )

    async def delete_collection(self, name: str) -> None:
        """Drop *name* (no-op if missing)."""
        client = self._require_client()
        exists = await self._call(lambda: client.collection_exists(name), f"check {name}")
        if exists:
            await self._call(lambda: client.delete_collection(name), f"delete {name}")

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> UpsertResult:
        """Upsert points in batches of 100."""
        client = self._require_client()

        total = 0
        for i in range(0, len(records), _UPSERT_BATCH_SIZE):
            batch = records[i : i + _UPSERT_BATCH_SIZE]
            points = [PointStruct(id=r.id, vector=r.vector, payload=r.metadata) for r in batch]
            await self._call(
                lambda points=points: client.upsert(
                    collection_name=collection, points=points, wait=True
                ),
                f"upsert into {collection}",
            )
            total += len(batch)
            logger.debug("Upserted %d points into %s", total, collection)

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
        """Query the collection for nearest points."""
        client = self._require_client()
        query_filter = compile_qdrant(filter) if filter is not None else None

        resp = await self._call(
            lambda: client.query_points(
                collection_name=collection,
                query=vector,
                limit=limit,
                query_filter=query_filter,
                score_threshold=threshold,
                with_payload=True,
                with_vectors=False,
            ),
            f"query {collection}",
        )
        return [
            VectorSearchResult(id=str(point.id), score=point.score, metadata=dict(point.payload or {}))
            for point in resp.points
        ]

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorRecord | None]:
        """Retrieve points by id, preserving the order of *ids*."""
        client = self._require_client()
        if not ids:
            return []
        points = await self._call(
            lambda: client.retrieve(
                collection_name=collection, ids=ids, with_payload=True, with_vectors=True
            ),
            f"retrieve from {collection}",
        )
        by_id = {str(p.id): p for p in points}

        results: list[VectorRecord | None] = []
        for record_id in ids:
            point = by_id.get(record_id)
            if point is None:
                results.append(None)
                continue
            vector = point.vector if isinstance(point.vector, list) else []
            results.append(
                VectorRecord(id=record_id, vector=list(vector), metadata=dict(point.payload or {}))
            )
        return results

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete points by id."""
        client = self._require_client()
        if not ids:
            return DeleteResult(deleted_count=0)
        await self._call(
            lambda: client.delete(
                collection_name=collection,
                points_selector=PointIdsList(points=ids),
                wait=True,
            ),
            f"delete from {collection}",
        )
        return DeleteResult(deleted_count=len(ids))

    async def collection_info(self, collection: str) -> CollectionInfo:
        """Return point count, vector size and status of *collection*."""
        client = self._require_client()
        exists = await self._call(
            lambda: client.collection_exists(collection), f"check {collection}"
        )
        if not exists:
            return CollectionInfo(name=collection, count=0, dimension=0, status="missing")
        info = await self._call(lambda: client.get_collection(collection), f"describe {collection}")
        status = str(getattr(info.status, "value", info.status))
        return CollectionInfo(
            name=collection,
            count=int(info.points_count or 0),
            dimension=_vector_size(info),
            status="ready" if status == "green" else "indexing" if status == "yellow" else "error",
            metadata={"qdrant_status": status, "backend": "qdrant"},
        )

    async def connect(self) -> None:
        """Create the async client and verify the server is reachable."""
        if self._client is None:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        client = self._client
        await self._call(client.get_collections, "list collections")

    async def close(self) -> None:
        """Close the async client."""
        if self._client is not None and self._owns_client:
            await self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call(self, fn: Callable[[], Awaitable[T]], operation: str) -> T:
        async def translated() -> T:
            try:
                return await fn()
            except (UnexpectedResponse, ResponseHandlingException, OSError) as exc:
                msg = f"Qdrant {operation} failed: {exc}"
                raise VectorStoreError(msg, transient=_is_transient(exc)) from exc

        return await retry_call(
            translated,
            self._retry,
            operation=f"Qdrant {operation}",
            on_timeout=_timeout_error,
        )

    def _require_client(self) -> Any:
        if self._client is None:
            msg = "Not connected. Call connect() first."
            raise VectorStoreError(msg)
        return self._client


def _vector_size(info: Any) -> int:
    vectors = info.config.params.vectors
    return int(vectors.size)
