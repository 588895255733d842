"""Search layer protocols — async-first interfaces for embedding and vector storage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from trove.search.filters import FilterExpression
    from trove.search.types import (
        CollectionInfo,
        DeleteResult,
        UpsertResult,
        VectorRecord,
        VectorSearchResult,
    )


# ------------------------------------------------------------------
# Core protocols
# ------------------------------------------------------------------


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Async-first protocol for text-to-vector embedding.

    Implementations convert text into fixed-dimension float vectors
    suitable for similarity search.  ``embed`` rejects empty text with
    :class:`~trove.exceptions.InvalidInputError` and raises a non-transient
    :class:`~trove.exceptions.ProviderError` when the backend returns a
    vector whose length differs from :attr:`dimensions`.  Backend faults
    surface as :class:`~trove.exceptions.ProviderError` with ``transient``
    set for retryable conditions.
    """

    async def embed(self, text: str) -> list[float]:
        """Embed a single text string into a vector."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts into vectors, preserving order."""
        ...

    async def is_available(self) -> bool:
        """Probe the backend; never raises."""
        ...

    @property
    def dimensions(self) -> int:
        """Number of dimensions in the embedding vectors."""
        ...

    @property
    def max_tokens(self) -> int:
        """Largest input the model accepts, in tokens."""
        ...

    @property
    def model_name(self) -> str:
        """Name of the embedding model."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Async-first protocol for collection-scoped vector storage and search.

    ``upsert`` is idempotent: writing an existing id overwrites it.
    Transient backend faults are retried inside the store; what escapes is a
    :class:`~trove.exceptions.VectorStoreError`, or a
    :class:`~trove.exceptions.ConfigError` for a dimensionality conflict.
    """

    async def create_collection(self, name: str, dimension: int) -> None:
        """Create *name* if missing; raise ``ConfigError`` on a dimension conflict."""
        ...

    async def delete_collection(self, name: str) -> None:
        """Drop *name* and all of its vectors (no-op if missing)."""
        ...

    async def upsert(self, collection: str, records: list[VectorRecord]) -> UpsertResult:
        """Insert or overwrite vector records."""
        ...

    async def search(
        self,
        collection: str,
        vector: list[float],
        *,
        limit: int = 10,
        threshold: float | None = None,
        filter: FilterExpression | None = None,
    ) -> list[VectorSearchResult]:
        """Return up to *limit* hits scoring at least *threshold*, best first."""
        ...

    async def fetch(self, collection: str, ids: list[str]) -> list[VectorRecord | None]:
        """Fetch records by id.  Missing ids return ``None``."""
        ...

    async def delete(self, collection: str, ids: list[str]) -> DeleteResult:
        """Delete vectors by id."""
        ...

    async def collection_info(self, collection: str) -> CollectionInfo:
        """Return count, dimension and status of *collection*."""
        ...

    async def connect(self) -> None:
        """Open connection / initialize resources."""
        ...

    async def close(self) -> None:
        """Release connection / clean up resources."""
        ...


# ------------------------------------------------------------------
# Optional capabilities, checked with isinstance() at runtime
# ------------------------------------------------------------------


@runtime_checkable
class SupportsPersistence(Protocol):
    """Store can persist its contents to a local directory."""

    def save(self, directory: str) -> None:
        """Persist the store to *directory*."""
        ...

    def load(self, directory: str) -> None:
        """Load a previously saved store from *directory*."""
        ...
