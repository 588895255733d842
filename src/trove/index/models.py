"""Document index registry tables.

``DocumentIndexEntry`` records what was indexed for each source path and
which vector ids it owns; ``IndexMetadata`` holds per-collection totals.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class IndexStatus(StrEnum):
    """Lifecycle state of a registry entry."""

    INDEXED = "indexed"
    ERROR = "error"
    OUTDATED = "outdated"


def _now() -> datetime:
    return datetime.now(UTC)


class DocumentIndexEntry(SQLModel, table=True):
    """One indexed source document — ``trove_documents``.

    ``vector_ids`` is exactly the set of ids this document owns in the
    vector store; it is empty for an entry in ``error``.
    """

    __tablename__ = "trove_documents"

    path: str = Field(primary_key=True)
    document_id: str = Field(index=True)
    content_hash: str = Field(default="")
    file_size: int = Field(default=0)
    modified_time: float = Field(default=0.0)
    indexed_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))
    kind: str = Field(default="text")
    language: str | None = Field(default=None)
    chunk_count: int = Field(default=0)
    vector_ids: list[str] = Field(default_factory=list, sa_type=JSON)
    status: str = Field(default=IndexStatus.INDEXED.value, index=True)
    error: str | None = Field(default=None)

    def detached_copy(self) -> DocumentIndexEntry:
        """A session-free copy, safe to hold across registry rewrites."""
        return DocumentIndexEntry.model_validate(self.model_dump())


class IndexMetadata(SQLModel, table=True):
    """Aggregate counters for one collection — ``trove_index_metadata``."""

    __tablename__ = "trove_index_metadata"

    collection: str = Field(primary_key=True)
    document_count: int = Field(default=0)
    chunk_count: int = Field(default=0)
    vector_count: int = Field(default=0)
    total_size: int = Field(default=0)
    created_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_now, sa_type=DateTime(timezone=True))
