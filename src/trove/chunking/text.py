"""Plain-text strategy — blank-line-delimited paragraphs."""

from __future__ import annotations

import re

from trove.chunking._base import (
    Chunk,
    ChunkMetadata,
    ChunkType,
    DocumentInput,
    build_chunk_id,
)

_BLANK_LINE_RE = re.compile(r"^\s*$")


def split_paragraphs(content: str) -> list[tuple[str, int, int]]:
    """Split *content* into ``(text, line_start, line_end)`` paragraphs.

    Paragraphs are separated by one or more blank lines.  Whitespace-only
    paragraphs are dropped.
    """
    paragraphs: list[tuple[str, int, int]] = []
    current: list[str] = []
    start = 0

    for lineno, line in enumerate(content.splitlines(), start=1):
        if _BLANK_LINE_RE.match(line):
            if current:
                paragraphs.append(("\n".join(current).strip(), start, lineno - 1))
                current = []
            continue
        if not current:
            start = lineno
        current.append(line)

    if current:
        paragraphs.append(("\n".join(current).strip(), start, start + len(current) - 1))

    return [p for p in paragraphs if p[0]]


def chunk_text(document: DocumentInput) -> list[Chunk]:
    """Chunk *document* by paragraph.

    Always returns at least one chunk: an empty document yields a single
    empty paragraph chunk.
    """
    paragraphs = split_paragraphs(document.content)
    if not paragraphs:
        return [
            Chunk(
                id=build_chunk_id(document.document_id, 0, "empty"),
                chunk_type=ChunkType.PARAGRAPH,
                text="",
                metadata=ChunkMetadata(index=0, title="Empty document", language=document.language),
            )
        ]

    chunks: list[Chunk] = []
    for index, (text, line_start, line_end) in enumerate(paragraphs):
        title = f"Paragraph {index + 1}"
        chunks.append(
            Chunk(
                id=build_chunk_id(document.document_id, index, title),
                chunk_type=ChunkType.PARAGRAPH,
                text=text,
                metadata=ChunkMetadata(
                    index=index,
                    title=title,
                    line_start=line_start,
                    line_end=line_end,
                    language=document.language,
                ),
            )
        )
    return chunks
