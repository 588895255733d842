"""IndexManager — discovery, change detection, chunking, embedding and store writes."""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import os
import time
import uuid
import weakref
from pathlib import Path
from typing import TYPE_CHECKING

from trove.chunking import Chunk, DocumentInput, detect_document
from trove.config import IndexingConfig
from trove.exceptions import (
    FileSystemError,
    IndexingCancelledError,
    InvalidInputError,
    TroveError,
    VectorStoreError,
)
from trove.index.discovery import discover_files
from trove.index.models import DocumentIndexEntry, IndexMetadata, IndexStatus
from trove.index.types import (
    DocumentState,
    IndexingError,
    IndexingProgress,
    IndexingResult,
    ProgressCallback,
)
from trove.search.types import ChunkDescriptor, VectorPayload, VectorRecord, category_for_kind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from trove.chunking import Chunker
    from trove.index.registry import IndexRegistry
    from trove.search.protocols import VectorStore
    from trove.search.providers.manager import ProviderManager

logger = logging.getLogger(__name__)

_VECTOR_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "trove.vector")


# ------------------------------------------------------------------
# Identifiers
# ------------------------------------------------------------------


def normalize_path(path: str | Path) -> str:
    """Absolute, resolved form of *path* used as the registry key."""
    return str(Path(path).resolve())


def document_id_for(path: str) -> str:
    """Stable document id derived from the normalized path."""
    return hashlib.sha256(path.encode()).hexdigest()[:16]


def vector_id_for(chunk_id: str) -> str:
    """Deterministic UUIDv5 for a chunk, accepted by every backend."""
    return str(uuid.uuid5(_VECTOR_ID_NAMESPACE, chunk_id))


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def _stat_source(path: str) -> os.stat_result:
    source = Path(path)
    try:
        stat = source.stat()
    except FileNotFoundError:
        msg = f"File not found: {path}"
        raise FileSystemError(msg, path=path) from None
    except OSError as exc:
        msg = f"Cannot stat {path}: {exc}"
        raise FileSystemError(msg, path=path) from exc
    if not source.is_file():
        msg = f"Not a regular file: {path}"
        raise FileSystemError(msg, path=path)
    return stat


def _read_source(path: str, max_size: int) -> tuple[str, int, float]:
    """Return ``(content, size, mtime)`` or raise :class:`FileSystemError`."""
    source = Path(path)
    stat = _stat_source(path)
    if stat.st_size > max_size:
        msg = f"File {path} is {stat.st_size} bytes, over the {max_size} byte limit"
        raise FileSystemError(msg, path=path)
    try:
        content = source.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        msg = f"File {path} is not valid UTF-8"
        raise FileSystemError(msg, path=path) from exc
    except OSError as exc:
        msg = f"Cannot read {path}: {exc}"
        raise FileSystemError(msg, path=path) from exc
    return content, stat.st_size, stat.st_mtime


class IndexManager:
    """Keeps the vector store and the index registry in step with source files.

    For each path the registry entry's ``vector_ids`` equal the ids stored
    for that document after every successful index, re-index or delete.
    Writes to one path are serialized by a per-path lock; up to
    ``config.workers`` files are indexed concurrently.  Searches never
    take these locks.
    """

    def __init__(
        self,
        *,
        chunker: Chunker,
        providers: ProviderManager,
        store: VectorStore,
        registry: IndexRegistry,
        collection: str,
        config: IndexingConfig | None = None,
    ) -> None:
        self._chunker = chunker
        self._providers = providers
        self._store = store
        self._registry = registry
        self._collection = collection
        self._config = config or IndexingConfig()
        self._path_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._states: dict[str, DocumentState] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the registry and make sure the collection exists."""
        await self._registry.open()
        await self._store.create_collection(self._collection, self._providers.dimensions)
        if await self._registry.get_metadata(self._collection) is None:
            await self._registry.save_metadata(IndexMetadata(collection=self._collection))

    async def close(self) -> None:
        await self._registry.close()

    # ------------------------------------------------------------------
    # Single document
    # ------------------------------------------------------------------

    async def index_document(self, path: str | Path, *, force: bool = False) -> DocumentIndexEntry:
        """Index one file and return its registry entry.

        Under incremental mode an ``indexed`` entry whose content hash is
        unchanged is returned as is, without chunking or embedding.  If some
        chunks could not be embedded the vectors that were produced are
        stored and the entry is left ``outdated`` with the reason in
        ``error``.

        Raises:
            FileSystemError: The file is missing, oversized or unreadable.
            VectorStoreError: The store rejected the write; the entry is
                left in ``error`` with no vectors.
        """
        return await self._index_path(normalize_path(path), force=force, cancel=None)

    async def delete_document(self, path: str | Path) -> DocumentIndexEntry | None:
        """Remove every vector of *path*, then its entry.  Returns the removed entry."""
        key = normalize_path(path)
        async with self._lock_for(key):
            entry = await self._registry.get(key)
            if entry is None:
                logger.debug("delete_document: %s is not indexed", key)
                return None
            if entry.vector_ids:
                await self._store.delete(self._collection, entry.vector_ids)
            await self._registry.delete(key)
        logger.info("Deleted %s (%d vectors)", key, len(entry.vector_ids))
        await self.refresh_metadata()
        return entry

    def document_state(self, path: str | Path) -> DocumentState:
        """Whether a write to *path* is in flight right now."""
        return self._states.get(normalize_path(path), DocumentState.IDLE)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def index_documents(
        self,
        paths: Iterable[str | Path] | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
        force: bool = False,
    ) -> IndexingResult:
        """Index *paths* (or every discovered file) and collect per-file failures.

        *cancel* is checked before each file starts; files already running
        finish.  The result reports ``cancelled=True`` if it was set.
        """
        if paths is None:
            discovered = await asyncio.to_thread(discover_files, self._config)
            keys = [str(p) for p in discovered]
        else:
            keys = list(dict.fromkeys(normalize_path(p) for p in paths))

        total = len(keys)
        semaphore = asyncio.Semaphore(self._config.workers)
        counter_lock = asyncio.Lock()
        started = time.monotonic()
        errors: list[IndexingError] = []
        counts = {"processed": 0, "successful": 0, "failed": 0}
        logger.info("Indexing %d files", total)

        async def run(key: str) -> None:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    return
                failure: IndexingError | None = None
                try:
                    entry = await self._index_path(key, force=force, cancel=cancel)
                except IndexingCancelledError:
                    return
                except TroveError as exc:
                    logger.warning("Failed to index %s: %s", key, exc)
                    failure = IndexingError(path=key, error=str(exc))
                else:
                    if entry.status != IndexStatus.INDEXED.value:
                        failure = IndexingError(path=key, error=entry.error or entry.status)

                async with counter_lock:
                    counts["processed"] += 1
                    if failure is None:
                        counts["successful"] += 1
                    else:
                        counts["failed"] += 1
                        errors.append(failure)
                    progress = self._progress(total, counts, key, started)

            if on_progress is not None:
                outcome = on_progress(progress)
                if inspect.isawaitable(outcome):
                    await outcome

        await asyncio.gather(*(run(key) for key in keys))

        cancelled = cancel is not None and cancel.is_set()
        if cancelled:
            logger.warning("Indexing cancelled after %d of %d files", counts["processed"], total)
        await self.refresh_metadata()
        return IndexingResult(
            total=total,
            successful=counts["successful"],
            failed=counts["failed"],
            errors=sorted(errors, key=lambda e: e.path),
            cancelled=cancelled,
        )

    async def rebuild(
        self,
        *,
        full: bool = True,
        on_progress: ProgressCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> IndexingResult:
        """Rebuild the index from the configured base paths.

        A full rebuild drops and recreates the collection, clears the
        registry and re-indexes every discovered file; an incremental one
        re-runs batch indexing.  If the rebuild raises or is cancelled, the
        registry snapshot taken beforehand is restored and reconciled with
        the store.

        Raises:
            IndexingCancelledError: *cancel* was set during the rebuild.
        """
        snapshot = await self._registry.snapshot()
        logger.info("Starting %s rebuild (%d documents)", "full" if full else "incremental", len(snapshot))
        try:
            if full:
                await self._store.delete_collection(self._collection)
                await self._store.create_collection(self._collection, self._providers.dimensions)
                await self._registry.clear()
            result = await self.index_documents(on_progress=on_progress, cancel=cancel, force=full)
            if result.cancelled:
                msg = "Rebuild cancelled"
                raise IndexingCancelledError(msg)
        except TroveError as exc:
            logger.error("Rebuild failed (%s); restoring registry snapshot", exc)
            await self._restore(snapshot)
            raise
        return result

    async def find_outdated_documents(self) -> list[DocumentIndexEntry]:
        """Mark entries whose source changed as ``outdated`` and return them.

        An ``indexed`` entry is only read when the file's modified time is
        newer than the one recorded when it was indexed, and it becomes
        ``outdated`` only if its content hash differs as well.  Entries whose
        source no longer exists are marked ``error``.
        """
        outdated: list[DocumentIndexEntry] = []
        for entry in await self._registry.list_entries():
            async with self._lock_for(entry.path):
                current = await self._registry.get(entry.path)
                if current is None:
                    continue
                try:
                    stat = await asyncio.to_thread(_stat_source, current.path)
                    if (
                        current.status == IndexStatus.INDEXED.value
                        and stat.st_mtime <= current.modified_time
                    ):
                        continue
                    content, _, _ = await asyncio.to_thread(
                        _read_source, current.path, self._config.max_file_size
                    )
                except FileSystemError as exc:
                    current.status = IndexStatus.ERROR.value
                    current.error = str(exc)
                    await self._registry.put(current)
                    continue

                if current.status == IndexStatus.INDEXED.value:
                    if current.content_hash != content_hash(content):
                        current.status = IndexStatus.OUTDATED.value
                    else:
                        # Touched but unchanged
                        current.modified_time = stat.st_mtime
                    await self._registry.put(current)
                if current.status == IndexStatus.OUTDATED.value:
                    outdated.append(current)

        logger.info("Found %d outdated documents", len(outdated))
        return outdated

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_metadata(self) -> IndexMetadata:
        meta = await self._registry.get_metadata(self._collection)
        return meta if meta is not None else await self.refresh_metadata()

    async def refresh_metadata(self) -> IndexMetadata:
        """Recompute the collection totals from the registry."""
        documents, chunks, size = await self._registry.totals()
        vectors = await self._registry.vector_count()
        meta = await self._registry.get_metadata(self._collection) or IndexMetadata(
            collection=self._collection
        )
        meta.document_count = documents
        meta.chunk_count = chunks
        meta.vector_count = vectors
        meta.total_size = size
        return await self._registry.save_metadata(meta)

    @property
    def registry(self) -> IndexRegistry:
        return self._registry

    @property
    def collection(self) -> str:
        return self._collection

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._path_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._path_locks[key] = lock
        return lock

    async def _index_path(
        self,
        key: str,
        *,
        force: bool,
        cancel: asyncio.Event | None,
    ) -> DocumentIndexEntry:
        async with self._lock_for(key):
            existing = await self._registry.get(key)
            try:
                content, size, mtime = await asyncio.to_thread(
                    _read_source, key, self._config.max_file_size
                )
            except FileSystemError as exc:
                if existing is not None:
                    existing.status = IndexStatus.ERROR.value
                    existing.error = str(exc)
                    await self._registry.put(existing)
                raise

            digest = content_hash(content)
            if (
                not force
                and self._config.incremental
                and existing is not None
                and existing.status == IndexStatus.INDEXED.value
                and existing.content_hash == digest
            ):
                logger.debug("Unchanged, skipping %s", key)
                return existing

            self._states[key] = DocumentState.REINDEXING if existing else DocumentState.INDEXING
            try:
                return await self._write(key, content, digest, size, mtime, existing, cancel)
            finally:
                self._states.pop(key, None)

    async def _write(
        self,
        key: str,
        content: str,
        digest: str,
        size: int,
        mtime: float,
        existing: DocumentIndexEntry | None,
        cancel: asyncio.Event | None,
    ) -> DocumentIndexEntry:
        kind, language = detect_document(content, key)
        document = DocumentInput(
            content=content,
            kind=kind,
            document_id=document_id_for(key),
            source_path=key,
            language=language,
        )
        chunked = self._chunker.chunk(document)
        chunks = [c for c in chunked.chunks if c.text.strip()]
        embedded = await self._providers.embed_batch([c.text for c in chunks], cancel=cancel)

        records = [
            VectorRecord.from_payload(vector_id_for(chunk.id), vector, self._payload(chunk, document, size, mtime))
            for chunk, vector in zip(chunks, embedded.vectors, strict=True)
            if vector is not None
        ]
        new_ids = [r.id for r in records]
        old_ids = existing.vector_ids if existing is not None else []

        entry = DocumentIndexEntry(
            path=key,
            document_id=document.document_id,
            content_hash=digest,
            file_size=size,
            modified_time=mtime,
            kind=kind.value,
            language=language,
        )
        try:
            if old_ids:
                await self._store.delete(self._collection, old_ids)
            if records:
                await self._store.upsert(self._collection, records)
        except (VectorStoreError, InvalidInputError) as exc:
            await self._cleanup(key, [*old_ids, *new_ids])
            entry.status = IndexStatus.ERROR.value
            entry.error = str(exc)
            await self._registry.put(entry)
            raise

        entry.chunk_count = len(records)
        entry.vector_ids = new_ids
        incomplete = len(embedded.failed) + len(embedded.degraded)
        if incomplete:
            # Not INDEXED, so the next incremental run embeds it again
            entry.status = IndexStatus.OUTDATED.value
            entry.error = f"{incomplete} of {len(chunks)} chunks could not be embedded"
            logger.warning("Partially indexed %s: %s", key, entry.error)
        await self._registry.put(entry)
        logger.debug(
            "Indexed %s: %d chunks, %d excluded, %d degraded, %d warnings",
            key,
            len(records),
            len(embedded.failed),
            len(embedded.degraded),
            len(chunked.warnings),
        )
        return entry

    async def _cleanup(self, key: str, ids: list[str]) -> None:
        if not ids:
            return
        try:
            await self._store.delete(self._collection, ids)
        except VectorStoreError as exc:
            logger.warning("Cleanup of %d vectors for %s failed: %s", len(ids), key, exc)

    def _payload(self, chunk: Chunk, document: DocumentInput, size: int, mtime: float) -> VectorPayload:
        meta = chunk.metadata
        assert document.source_path is not None
        return VectorPayload(
            content=chunk.text,
            source=document.source_path,
            document_id=document.document_id,
            kind=document.kind.value,
            category=category_for_kind(document.kind.value),
            language=meta.language or document.language,
            file_type=Path(document.source_path).suffix.lstrip(".") or None,
            size=size,
            modified_time=mtime,
            tags=meta.tags,
            chunk=ChunkDescriptor(
                chunk_id=chunk.id,
                chunk_type=chunk.chunk_type.value,
                index=meta.index,
                title=meta.title,
                line_start=meta.line_start,
                line_end=meta.line_end,
                symbols=meta.symbols,
                section_path=meta.section_path,
                parent_id=meta.parent_id,
                context=meta.context,
            ),
        )

    async def _restore(self, snapshot: list[DocumentIndexEntry]) -> None:
        """Restore *snapshot*, keeping entries the failed rebuild did finish.

        A snapshot entry keeps only the vector ids still present in the
        store; one that lost vectors becomes ``outdated``.
        """
        current = {e.path: e for e in await self._registry.list_entries()}
        try:
            await self._store.create_collection(self._collection, self._providers.dimensions)
        except VectorStoreError as exc:
            logger.warning("Cannot reopen collection %s during restore: %s", self._collection, exc)

        restored: list[DocumentIndexEntry] = []
        for entry in snapshot:
            fresh = current.pop(entry.path, None)
            if fresh is not None and fresh.status != IndexStatus.ERROR.value:
                restored.append(fresh)
                continue
            restored.append(await self._reconcile(entry))
        restored.extend(current.values())
        await self._registry.restore(restored)
        await self.refresh_metadata()

    async def _reconcile(self, entry: DocumentIndexEntry) -> DocumentIndexEntry:
        if not entry.vector_ids:
            return entry
        try:
            fetched = await self._store.fetch(self._collection, entry.vector_ids)
        except VectorStoreError as exc:
            logger.warning("Cannot verify vectors of %s: %s", entry.path, exc)
            entry.status = IndexStatus.OUTDATED.value
            return entry
        present = [vid for vid, record in zip(entry.vector_ids, fetched, strict=True) if record is not None]
        if len(present) != len(entry.vector_ids):
            entry.vector_ids = present
            entry.chunk_count = len(present)
            entry.status = IndexStatus.OUTDATED.value
        return entry

    @staticmethod
    def _progress(
        total: int,
        counts: dict[str, int],
        current: str,
        started: float,
    ) -> IndexingProgress:
        processed = counts["processed"]
        remaining: float | None = None
        if processed:
            rate = (time.monotonic() - started) / processed
            remaining = rate * (total - processed)
        return IndexingProgress(
            total=total,
            processed=processed,
            successful=counts["successful"],
            failed=counts["failed"],
            current_file=current,
            estimated_remaining=remaining,
        )
