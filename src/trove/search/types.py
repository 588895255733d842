"""Search layer data types — value objects for vectors, payloads, queries and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from trove.exceptions import InvalidInputError
from trove.search.filters import FilterExpression, and_, gte, in_, lte

# ------------------------------------------------------------------
# Payload
# ------------------------------------------------------------------

CATEGORY_CODE = "code"
CATEGORY_DOCUMENTATION = "documentation"
CATEGORY_ISSUE = "issue"
CATEGORY_TEXT = "text"

_CATEGORIES_BY_KIND = {
    "code": CATEGORY_CODE,
    "markdown": CATEGORY_DOCUMENTATION,
    "issue": CATEGORY_ISSUE,
    "pull_request": CATEGORY_ISSUE,
    "text": CATEGORY_TEXT,
}


def category_for_kind(kind: str) -> str:
    """Map a document kind value to its search category."""
    return _CATEGORIES_BY_KIND.get(kind, CATEGORY_TEXT)


@dataclass(frozen=True, slots=True)
class ChunkDescriptor:
    """The originating chunk of a vector, as stored in the payload."""

    chunk_id: str
    chunk_type: str
    index: int
    title: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    symbols: tuple[str, ...] = ()
    section_path: tuple[str, ...] = ()
    parent_id: str | None = None
    context: str | None = None


@dataclass(frozen=True, slots=True)
class VectorPayload:
    """Structured payload stored alongside each vector.

    :meth:`to_metadata` validates the payload and flattens it into the
    primitive key/value form every backend accepts (strings, numbers,
    booleans and lists of strings; ``None`` values are omitted).

    Attributes:
        content: Chunk text.
        source: Source path of the document.
        document_id: Id of the document the chunk belongs to.
        kind: Document kind value (``"code"``, ``"markdown"``, ...).
        category: Search category (``"code"``, ``"documentation"``, ...).
        language: Detected language.
        file_type: File extension without the dot.
        size: Size of the source file in bytes.
        modified_time: Source modification time (POSIX seconds).
        tags: Free-form labels.
        chunk: Descriptor of the originating chunk.
    """

    content: str
    source: str
    document_id: str
    kind: str
    category: str
    chunk: ChunkDescriptor
    language: str | None = None
    file_type: str | None = None
    size: int = 0
    modified_time: float = 0.0
    tags: tuple[str, ...] = ()

    def validate(self) -> None:
        """Raise :class:`InvalidInputError` if the payload is not storable."""
        problems: list[str] = []
        if not isinstance(self.content, str):
            problems.append("content must be a string")
        if not self.source:
            problems.append("source must be a non-empty string")
        if not self.document_id:
            problems.append("document_id must be a non-empty string")
        if not self.chunk.chunk_id:
            problems.append("chunk.chunk_id must be a non-empty string")
        if not isinstance(self.size, int) or self.size < 0:
            problems.append(f"size must be a non-negative int, got {self.size!r}")
        if not isinstance(self.modified_time, int | float) or self.modified_time < 0:
            problems.append(f"modified_time must be a non-negative number, got {self.modified_time!r}")
        for name, values in (
            ("tags", self.tags),
            ("chunk.symbols", self.chunk.symbols),
            ("chunk.section_path", self.chunk.section_path),
        ):
            if not all(isinstance(v, str) for v in values):
                problems.append(f"{name} must contain only strings")
        if problems:
            raise InvalidInputError("invalid vector payload: " + "; ".join(problems))

    def to_metadata(self) -> dict[str, Any]:
        """Validate and flatten into backend metadata."""
        self.validate()
        raw: dict[str, Any] = {
            "content": self.content,
            "source": self.source,
            "document_id": self.document_id,
            "kind": self.kind,
            "category": self.category,
            "language": self.language,
            "file_type": self.file_type,
            "size": self.size,
            "modified_time": float(self.modified_time),
            "tags": list(self.tags),
            "chunk_id": self.chunk.chunk_id,
            "chunk_type": self.chunk.chunk_type,
            "chunk_index": self.chunk.index,
            "title": self.chunk.title,
            "line_start": self.chunk.line_start,
            "line_end": self.chunk.line_end,
            "symbols": list(self.chunk.symbols),
            "section_path": list(self.chunk.section_path),
            "parent_id": self.chunk.parent_id,
            "context": self.chunk.context,
        }
        return {k: v for k, v in raw.items() if v is not None}

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> VectorPayload:
        """Rebuild a payload from flattened backend metadata."""
        return cls(
            content=str(metadata.get("content", "")),
            source=str(metadata.get("source", "")),
            document_id=str(metadata.get("document_id", "")),
            kind=str(metadata.get("kind", "text")),
            category=str(metadata.get("category", CATEGORY_TEXT)),
            language=metadata.get("language"),
            file_type=metadata.get("file_type"),
            size=int(metadata.get("size", 0) or 0),
            modified_time=float(metadata.get("modified_time", 0.0) or 0.0),
            tags=tuple(metadata.get("tags") or ()),
            chunk=ChunkDescriptor(
                chunk_id=str(metadata.get("chunk_id", "")),
                chunk_type=str(metadata.get("chunk_type", "paragraph")),
                index=int(metadata.get("chunk_index", 0) or 0),
                title=metadata.get("title"),
                line_start=_opt_int(metadata.get("line_start")),
                line_end=_opt_int(metadata.get("line_end")),
                symbols=tuple(metadata.get("symbols") or ()),
                section_path=tuple(metadata.get("section_path") or ()),
                parent_id=metadata.get("parent_id"),
                context=metadata.get("context"),
            ),
        )


def _opt_int(value: Any) -> int | None:
    return None if value is None else int(value)


# ------------------------------------------------------------------
# Vector data
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorRecord:
    """A vector with its ID and flattened metadata, ready for storage.

    Attributes:
        id: Unique identifier (a UUID string, accepted by every backend).
        vector: Embedding vector.
        metadata: Flattened payload (see :meth:`VectorPayload.to_metadata`).
    """

    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, record_id: str, vector: list[float], payload: VectorPayload) -> VectorRecord:
        """Build a record, validating *payload* on the way in."""
        return cls(id=record_id, vector=vector, metadata=payload.to_metadata())


# ------------------------------------------------------------------
# Store results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VectorSearchResult:
    """A single result from a VectorStore search.

    Attributes:
        id: Identifier of the matched entry.
        score: Similarity score (higher is more similar).
        metadata: Metadata stored with the vector.
        vector: The vector itself, if requested.
    """

    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    vector: list[float] | None = None


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Result of a vector upsert operation."""

    upserted_count: int
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Result of a vector delete operation."""

    deleted_count: int


@dataclass(frozen=True, slots=True)
class CollectionInfo:
    """Information about a collection.

    Attributes:
        name: Collection name.
        count: Number of vectors stored.
        dimension: Vector dimensionality.
        status: ``"ready"``, ``"indexing"``, ``"missing"`` or ``"error"``.
        metadata: Additional backend-specific info.
    """

    name: str
    count: int
    dimension: int
    status: str = "ready"
    metadata: dict[str, Any] = field(default_factory=dict)


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """Metadata filters, AND-combined.  Each list field matches any of its values.

    Attributes:
        categories: ``"code"``, ``"documentation"``, ``"issue"``, ``"text"``.
        file_types: Extensions without the dot (``"ts"``, ``"md"``).
        languages: Detected languages.
        tags: Labels; a hit needs at least one of them.
        modified_after: Inclusive lower bound on source modification time.
        modified_before: Inclusive upper bound on source modification time.
    """

    categories: tuple[str, ...] = ()
    file_types: tuple[str, ...] = ()
    languages: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    modified_after: datetime | None = None
    modified_before: datetime | None = None

    def to_expression(self) -> FilterExpression | None:
        """Translate into a store-agnostic filter expression (``None`` if empty)."""
        parts: list[FilterExpression] = []
        for field_name, values in (
            ("category", self.categories),
            ("file_type", self.file_types),
            ("language", self.languages),
            ("tags", self.tags),
        ):
            if values:
                parts.append(in_(field_name, list(values)))
        if self.modified_after is not None:
            parts.append(gte("modified_time", _timestamp(self.modified_after)))
        if self.modified_before is not None:
            parts.append(lte("modified_time", _timestamp(self.modified_before)))

        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]
        return and_(*parts)


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.timestamp()


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """A search request.

    ``limit`` and ``threshold`` fall back to the engine's configured
    defaults when ``None``.
    """

    query: str
    limit: int | None = None
    threshold: float | None = None
    filters: SearchFilters = field(default_factory=SearchFilters)
    include_content: bool = True
    include_highlights: bool = True


# ------------------------------------------------------------------
# User-facing results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """The normalized components blended into :attr:`SearchResult.score`."""

    similarity: float
    recency: float
    affinity: float
    usage: float


@dataclass(frozen=True, slots=True)
class SearchResult:
    """A single search result.

    Attributes:
        id: Vector id of the matched chunk.
        score: Final blended score (0-1, higher is better).
        metadata: Payload stored with the vector.
        content: Chunk text, unless the query disabled it.
        highlights: Lines of the chunk that mention query terms.
        breakdown: Score components.
    """

    id: str
    score: float
    metadata: VectorPayload
    content: str | None = None
    highlights: tuple[str, ...] = ()
    breakdown: ScoreBreakdown | None = None

    @property
    def source(self) -> str:
        return self.metadata.source

    @property
    def chunk(self) -> ChunkDescriptor:
        return self.metadata.chunk
