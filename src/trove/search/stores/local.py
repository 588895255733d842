"""LocalVectorStore — in-process usearch HNSW vector store."""

from __future__ import annotations

import json
import logging
import math
import threading
from pathlib import Path
from typing import Any

import numpy as np
from usearch.index import Index

from trove.exceptions import ConfigError, VectorStoreError
from trove.search.filters import FilterExpression, matches
from trove.search.types import (
    CollectionInfo,
    DeleteResult,
    UpsertResult,
    VectorRecord,
    VectorSearchResult,
)

logger = logging.getLogger(__name__)

_MANIFEST_FILE = "collections.json"
_INDEX_SUFFIX = ".usearch"
_META_SUFFIX = ".meta.json"


class _Collection:
    """One usearch index plus the id/key/metadata maps that sit beside it."""

    def __init__(self, name: str, dimension: int, metric: str) -> None:
        self.name = name
        self.dimension = dimension
        self.index = Index(ndim=dimension, metric=metric, dtype="f32")
        self.next_key = 0
        # key → metadata (includes "id" and "vector" plus the record metadata)
        self.key_to_meta: dict[int, dict[str, Any]] = {}
        self.id_to_key: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.key_to_meta)

    def remove(self, record_id: str) -> bool:
        key = self.id_to_key.pop(record_id, None)
        if key is None:
            return False
        self.key_to_meta.pop(key, None)
        self.index.remove(key)
        return True


class LocalVectorStore:
    """In-process vector store backed by usearch HNSW indexes.

    Implements the ``VectorStore`` protocol for local development and
    single-process deployments.  Each collection is a separate usearch
    index.  Metadata filters are evaluated in-process; a filtered search
    scans the whole collection so that selective filters still return
    *limit* hits.

    Thread-safe via :class:`threading.Lock`.
    """

    def __init__(self, *, metric: str = "cosine") -> None:
        self._metric = metric
        self._usearch_metric = "cos" if metric == "cosine" else metric
        self._collections: dict[str, _Collection] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    async def create_collection(self, name: str, dimension: int) -> None:
        """Create *name* with *dimension*; a no-op if it already matches."""
        existing = self._collections.get(name)
        if existing is not None:
            if existing.dimension != dimension:
                msg = (
                    f"Collection {name!r} has dimension {existing.dimension}, "
                    f"requested {dimension}"
                )
                raise ConfigError(msg)
            return
        with self._lock:
            self._collections[name] = _Collection(name, dimension, self._usearch_metric)
        logger.debug("Created local collection %s (%d dimensions)", name, dimension)

    async def delete_collection(self, name: str) -> None:
        """Drop *name* and all of its vectors."""
        with self._lock:
            self._collections.pop(name, None)

    # ------------------------------------------------------------------
    # VectorStore protocol
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> UpsertResult:
        """Insert or overwrite vector records."""
        coll = self._get(collection)

        count = 0
        for record in records:
            if len(record.vector) != coll.dimension:
                msg = (
                    f"Vector {record.id!r} has {len(record.vector)} dimensions, "
                    f"collection {collection!r} expects {coll.dimension}"
                )
                raise VectorStoreError(msg)

            vector = np.array(record.vector, dtype=np.float32)
            with self._lock:
                # Remove old entry if it exists (deduplication)
                coll.remove(record.id)
                key = coll.next_key
                coll.next_key += 1
                coll.index.add(key, vector)
                coll.key_to_meta[key] = {
                    "id": record.id,
                    "vector": list(record.vector),
                    **record.metadata,
                }
                coll.id_to_key[record.id] = key
            count += 1

        return UpsertResult(upserted_count=count)

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        limit: int = 10,
        threshold: float | None = None,
        filter: FilterExpression | None = None,  # noqa: A002
    ) -> list[VectorSearchResult]:
        """Search for the *limit* nearest vectors scoring at least *threshold*.

        Candidates that are skipped (zero vectors, sub-threshold scores)
        do not count towards *limit*: the candidate pool doubles until
        *limit* hits qualify or the collection is exhausted.
        """
        coll = self._get(collection)
        if len(coll) == 0 or limit <= 0:
            return []

        query = np.array(vector, dtype=np.float32)
        k = len(coll) if filter is not None else min(limit, len(coll))
        while True:
            with self._lock:
                found = coll.index.search(query, k)
            results = self._collect(coll, found, threshold, filter)
            if len(results) >= limit or k >= len(coll):
                break
            k = min(k * 2, len(coll))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorRecord | None]:
        """Fetch vectors by their IDs."""
        coll = self._get(collection)

        results: list[VectorRecord | None] = []
        for record_id in ids:
            key = coll.id_to_key.get(record_id)
            meta = coll.key_to_meta.get(key) if key is not None else None
            if meta is None:
                results.append(None)
                continue
            user_meta = {mk: mv for mk, mv in meta.items() if mk not in ("id", "vector")}
            results.append(VectorRecord(id=meta["id"], vector=meta["vector"], metadata=user_meta))
        return results

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete vectors by their IDs."""
        coll = self._get(collection)

        count = 0
        with self._lock:
            for record_id in ids:
                if coll.remove(record_id):
                    count += 1
        return DeleteResult(deleted_count=count)

    async def collection_info(self, collection: str) -> CollectionInfo:
        """Return count and dimension of *collection*."""
        coll = self._collections.get(collection)
        if coll is None:
            return CollectionInfo(name=collection, count=0, dimension=0, status="missing")
        return CollectionInfo(
            name=collection,
            count=len(coll),
            dimension=coll.dimension,
            metadata={"metric": self._metric, "backend": "usearch"},
        )

    async def connect(self) -> None:
        """No-op for local store."""

    async def close(self) -> None:
        """No-op for local store."""

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: str) -> None:
        """Persist every collection to *directory*."""
        dir_path = Path(directory)
        dir_path.mkdir(parents=True, exist_ok=True)

        manifest: dict[str, dict[str, Any]] = {}
        with self._lock:
            for name, coll in self._collections.items():
                coll.index.save(str(dir_path / f"{name}{_INDEX_SUFFIX}"))

                # Strip vectors from the sidecar (they're in usearch)
                serializable_meta = {
                    str(k): {mk: mv for mk, mv in v.items() if mk != "vector"}
                    for k, v in coll.key_to_meta.items()
                }
                sidecar = {"next_key": coll.next_key, "key_to_meta": serializable_meta}
                with (dir_path / f"{name}{_META_SUFFIX}").open("w") as f:
                    json.dump(sidecar, f)
                manifest[name] = {"dimension": coll.dimension}

        with (dir_path / _MANIFEST_FILE).open("w") as f:
            json.dump({"metric": self._metric, "collections": manifest}, f)
        logger.debug("Saved %d local collections to %s", len(manifest), directory)

    def load(self, directory: str) -> None:
        """Load collections previously saved to *directory*.

        A directory without a manifest is treated as empty.
        """
        dir_path = Path(directory)
        manifest_path = dir_path / _MANIFEST_FILE
        if not manifest_path.exists():
            return

        with manifest_path.open() as f:
            manifest = json.load(f)

        collections: dict[str, _Collection] = {}
        for name, info in manifest.get("collections", {}).items():
            coll = _Collection(name, int(info["dimension"]), self._usearch_metric)
            coll.index.load(str(dir_path / f"{name}{_INDEX_SUFFIX}"))
            with (dir_path / f"{name}{_META_SUFFIX}").open() as f:
                sidecar = json.load(f)

            coll.next_key = sidecar["next_key"]
            for k_str, meta in sidecar.get("key_to_meta", {}).items():
                key = int(k_str)
                meta["vector"] = np.asarray(coll.index.get(key), dtype=np.float32).tolist()
                coll.key_to_meta[key] = meta
                coll.id_to_key[meta["id"]] = key
            collections[name] = coll

        with self._lock:
            self._collections = collections
        logger.debug("Loaded %d local collections from %s", len(collections), directory)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get(self, name: str) -> _Collection:
        coll = self._collections.get(name)
        if coll is None:
            msg = f"Collection {name!r} does not exist"
            raise VectorStoreError(msg)
        return coll

    def _collect(
        self,
        coll: _Collection,
        found: Any,
        threshold: float | None,
        filter: FilterExpression | None,  # noqa: A002
    ) -> list[VectorSearchResult]:
        results: list[VectorSearchResult] = []
        for match_key, distance in zip(found.keys.tolist(), found.distances.tolist(), strict=True):
            meta = coll.key_to_meta.get(int(match_key))
            if meta is None:
                continue

            score = 1.0 - float(distance)
            # Zero vectors have no direction; cosine similarity is undefined for them.
            if math.isnan(score) or (self._metric == "cosine" and not any(meta["vector"])):
                continue
            if threshold is not None and score < threshold:
                continue

            result_meta = {mk: mv for mk, mv in meta.items() if mk not in ("id", "vector")}
            if filter is not None and not matches(filter, result_meta):
                continue

            results.append(VectorSearchResult(id=meta["id"], score=score, metadata=result_meta))
        return results
