"""IndexRegistry — persistent document index on an async SQLAlchemy engine."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import select

from trove.exceptions import NotInitializedError
from trove.index.models import DocumentIndexEntry, IndexMetadata, IndexStatus

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (url.endswith("://") or ":memory:" in url)


class IndexRegistry:
    """Stores one :class:`DocumentIndexEntry` per indexed path.

    Every read returns detached copies, so callers may hold entries across
    later writes.  Writes are serialized by a single :class:`asyncio.Lock`;
    an in-memory SQLite URL shares one connection through ``StaticPool``.
    """

    def __init__(self, url: str = "sqlite+aiosqlite://") -> None:
        self._url = url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Create the engine and tables if needed."""
        if self._engine is not None:
            return
        if _is_memory_sqlite(self._url):
            engine = create_async_engine(
                self._url,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_async_engine(self._url, echo=False)

        async with engine.begin() as conn:
            doc_table = DocumentIndexEntry.__table__  # type: ignore[attr-defined]
            meta_table = IndexMetadata.__table__  # type: ignore[attr-defined]
            await conn.run_sync(lambda c: doc_table.create(c, checkfirst=True))
            await conn.run_sync(lambda c: meta_table.create(c, checkfirst=True))

        self._engine = engine
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        logger.debug("Index registry open at %s", self._url)

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def get(self, path: str) -> DocumentIndexEntry | None:
        """Return the entry for *path*, or ``None``."""
        async with self._lock, self._session() as session:
            entry = await session.get(DocumentIndexEntry, path)
            return entry.detached_copy() if entry is not None else None

    async def put(self, entry: DocumentIndexEntry) -> DocumentIndexEntry:
        """Insert or replace the entry for ``entry.path``."""
        async with self._lock, self._session() as session:
            await session.merge(entry.detached_copy())
            await session.commit()
        return entry

    async def delete(self, path: str) -> bool:
        """Remove the entry for *path*.  Returns whether one existed."""
        async with self._lock, self._session() as session:
            entry = await session.get(DocumentIndexEntry, path)
            if entry is None:
                return False
            await session.delete(entry)
            await session.commit()
            return True

    async def list_entries(self, status: IndexStatus | None = None) -> list[DocumentIndexEntry]:
        """All entries ordered by path, optionally only those in *status*."""
        query = select(DocumentIndexEntry).order_by(DocumentIndexEntry.path)
        if status is not None:
            query = query.where(DocumentIndexEntry.status == status.value)
        async with self._lock, self._session() as session:
            result = await session.execute(query)
            return [e.detached_copy() for e in result.scalars().all()]

    async def clear(self) -> None:
        """Remove every entry."""
        async with self._lock, self._session() as session:
            await session.execute(delete(DocumentIndexEntry))
            await session.commit()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def snapshot(self) -> list[DocumentIndexEntry]:
        """Detached copies of every entry, for :meth:`restore`."""
        return await self.list_entries()

    async def restore(self, entries: list[DocumentIndexEntry]) -> None:
        """Replace the registry contents with *entries*."""
        async with self._lock, self._session() as session:
            await session.execute(delete(DocumentIndexEntry))
            for entry in entries:
                session.add(entry.detached_copy())
            await session.commit()
        logger.info("Restored %d registry entries from snapshot", len(entries))

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def totals(self) -> tuple[int, int, int]:
        """``(documents, chunks, total_size)`` over indexed entries."""
        query = select(
            func.count(),
            func.coalesce(func.sum(DocumentIndexEntry.chunk_count), 0),
            func.coalesce(func.sum(DocumentIndexEntry.file_size), 0),
        ).where(DocumentIndexEntry.status == IndexStatus.INDEXED.value)
        async with self._lock, self._session() as session:
            result = await session.execute(query)
            documents, chunks, size = result.one()
            return int(documents), int(chunks), int(size)

    async def vector_count(self) -> int:
        """Number of vector ids owned by all entries."""
        entries = await self.list_entries()
        return sum(len(e.vector_ids) for e in entries)

    async def get_metadata(self, collection: str) -> IndexMetadata | None:
        async with self._lock, self._session() as session:
            meta = await session.get(IndexMetadata, collection)
            return IndexMetadata.model_validate(meta.model_dump()) if meta is not None else None

    async def save_metadata(self, metadata: IndexMetadata) -> IndexMetadata:
        """Insert or replace *metadata*, stamping ``updated_at``."""
        metadata.updated_at = datetime.now(UTC)
        async with self._lock, self._session() as session:
            await session.merge(IndexMetadata.model_validate(metadata.model_dump()))
            await session.commit()
        return metadata

    async def delete_metadata(self, collection: str) -> None:
        async with self._lock, self._session() as session:
            await session.execute(delete(IndexMetadata).where(IndexMetadata.collection == collection))
            await session.commit()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _session(self) -> AsyncSession:
        if self._session_factory is None:
            msg = "IndexRegistry.open() has not been called"
            raise NotInitializedError(msg)
        return self._session_factory()
