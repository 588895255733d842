"""Chunking data types and shared helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class DocumentKind(Enum):
    """Closed set of document kinds — one chunking strategy per member."""

    CODE = "code"
    MARKDOWN = "markdown"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    TEXT = "text"


class ChunkType(Enum):
    """Semantic type of a chunk."""

    FUNCTION = "function"
    CLASS = "class"
    TYPE = "type"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    ISSUE = "issue"
    COMMENT = "comment"


@dataclass(frozen=True, slots=True)
class DocumentInput:
    """A raw document ready for chunking.

    Attributes:
        content: Full text of the document.
        kind: Detected document kind.
        document_id: Stable identifier used to derive chunk ids.
        source_path: Path the content was read from, if any.
        language: Detected language (``"typescript"``, ``"markdown"``, ...).
    """

    content: str
    kind: DocumentKind
    document_id: str = "doc"
    source_path: str | None = None
    language: str | None = None


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    """Structured metadata attached to a chunk.

    Attributes:
        index: Position of the chunk within its document (0-based).
        title: Human-readable title (symbol name, heading, ...).
        line_start: 1-indexed first line, when known.
        line_end: 1-indexed last line, when known.
        symbols: Symbol names defined by the chunk (a class lists its methods).
        section_path: Heading ancestry for prose sections, outermost first.
        parent_id: Chunk id of the enclosing chunk, if any.
        language: Language of the chunk text.
        context: Shared context such as the file's import statements.
        tags: Free-form labels (issue labels, ...).
    """

    index: int
    title: str | None = None
    line_start: int | None = None
    line_end: int | None = None
    symbols: tuple[str, ...] = ()
    section_path: tuple[str, ...] = ()
    parent_id: str | None = None
    language: str | None = None
    context: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Chunk:
    """A semantically bounded segment of a document."""

    id: str
    chunk_type: ChunkType
    text: str
    metadata: ChunkMetadata


@dataclass(frozen=True, slots=True)
class ChunkResult:
    """Output of :meth:`Chunker.chunk` — chunks plus non-fatal warnings."""

    chunks: list[Chunk]
    warnings: list[str] = field(default_factory=list)


_SLUG_RE = re.compile(r"[^a-z0-9_.#-]+")


def slugify(value: str) -> str:
    """Lowercase *value* and collapse anything unsafe into ``-``.

    >>> slugify("Getting Started!")
    'getting-started'
    """
    slug = _SLUG_RE.sub("-", value.lower()).strip("-")
    return slug or "untitled"


def build_chunk_id(document_id: str, index: int, label: str | None = None) -> str:
    """Build the deterministic chunk id for the *index*-th chunk of a document.

    >>> build_chunk_id("src/app.ts", 0, "add")
    'src/app.ts#0:add'
    """
    return f"{document_id}#{index}:{slugify(label or 'chunk')}"


def extract_lines(content: str, line_start: int, line_end: int) -> str:
    """Extract lines from *content* (1-indexed, inclusive).

    Clamps bounds to actual content length.
    """
    lines = content.splitlines(keepends=True)
    start = max(line_start - 1, 0)
    end = min(line_end, len(lines))
    return "".join(lines[start:end])


def estimate_tokens(text: str) -> int:
    """Approximate the token count of *text* (about four characters per token)."""
    return -(-len(text) // 4)
