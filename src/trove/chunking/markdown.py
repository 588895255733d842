"""Structured-heading prose strategy — one chunk per heading, with ancestry."""

from __future__ import annotations

import re
from dataclasses import dataclass

from trove.chunking._base import (
    Chunk,
    ChunkMetadata,
    ChunkType,
    DocumentInput,
    build_chunk_id,
    estimate_tokens,
)
from trove.chunking.text import split_paragraphs

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")

DOCUMENT_HEADER_TITLE = "Document Header"


@dataclass(frozen=True, slots=True)
class _Heading:
    line: int  # 0-indexed
    level: int
    title: str


def find_headings(lines: list[str]) -> list[_Heading]:
    """Return ATX headings in *lines*, skipping fenced code blocks."""
    headings: list[_Heading] = []
    fence: str | None = None
    for i, line in enumerate(lines):
        fence_match = _FENCE_RE.match(line)
        if fence_match:
            marker = fence_match.group(1)
            if fence is None:
                fence = marker
            elif marker == fence:
                fence = None
            continue
        if fence is not None:
            continue
        match = _HEADING_RE.match(line)
        if match:
            headings.append(_Heading(line=i, level=len(match.group(1)), title=match.group(2)))
    return headings


class _Builder:
    """Accumulates section chunks with running indices."""

    def __init__(self, document: DocumentInput, max_tokens: int) -> None:
        self.document = document
        self.max_tokens = max_tokens
        self.chunks: list[Chunk] = []

    def add_section(
        self,
        title: str,
        heading_line: str | None,
        body: list[str],
        first_line: int,
        section_path: tuple[str, ...],
        parent_id: str | None,
    ) -> str | None:
        """Emit one or more chunks for a section; return the first chunk's id."""
        head = [heading_line] if heading_line is not None else []
        text = "\n".join([*head, *body]).strip()
        if not text:
            return None

        if estimate_tokens(text) <= self.max_tokens:
            last_line = first_line + len(head) + len(body) - 1
            return self._emit(title, text, first_line, last_line, section_path, parent_id)

        # Oversized section body: split by paragraph into parts.
        body_start = first_line + len(head)
        parts = self._group_paragraphs(split_paragraphs("\n".join(body)))
        if len(parts) <= 1:
            last_line = first_line + len(head) + len(body) - 1
            return self._emit(title, text, first_line, last_line, section_path, parent_id)
        first_id: str | None = None
        for part_no, (part_text, start, end) in enumerate(parts, start=1):
            if part_no == 1 and heading_line is not None:
                part_text = f"{heading_line}\n\n{part_text}"
                start = 1 - len(head)
            part_title = title if part_no == 1 else f"{title} (part {part_no})"
            chunk_id = self._emit(
                part_title,
                part_text,
                body_start + start - 1,
                body_start + end - 1,
                section_path,
                parent_id,
            )
            if first_id is None:
                first_id = chunk_id
        return first_id

    def _group_paragraphs(
        self, paragraphs: list[tuple[str, int, int]]
    ) -> list[tuple[str, int, int]]:
        """Greedily merge consecutive paragraphs while they fit under the limit."""
        groups: list[tuple[str, int, int]] = []
        for text, start, end in paragraphs:
            if groups:
                prev_text, prev_start, _ = groups[-1]
                merged = f"{prev_text}\n\n{text}"
                if estimate_tokens(merged) <= self.max_tokens:
                    groups[-1] = (merged, prev_start, end)
                    continue
            groups.append((text, start, end))
        return groups

    def _emit(
        self,
        title: str,
        text: str,
        line_start: int,
        line_end: int,
        section_path: tuple[str, ...],
        parent_id: str | None,
    ) -> str:
        index = len(self.chunks)
        chunk_id = build_chunk_id(self.document.document_id, index, title)
        self.chunks.append(
            Chunk(
                id=chunk_id,
                chunk_type=ChunkType.SECTION,
                text=text,
                metadata=ChunkMetadata(
                    index=index,
                    title=title,
                    line_start=line_start,
                    line_end=max(line_start, line_end),
                    section_path=section_path,
                    parent_id=parent_id,
                    language=self.document.language or "markdown",
                ),
            )
        )
        return chunk_id


def chunk_markdown(document: DocumentInput, *, max_tokens: int = 1024) -> list[Chunk]:
    """Chunk *document* by heading.

    Each heading yields a section chunk holding the heading line and the body
    up to the next heading, so sub-headings always subdivide their parent.
    ``section_path`` carries the heading ancestry and ``parent_id`` points at
    the enclosing section's chunk.  Text before the first heading becomes a
    ``"Document Header"`` chunk.
    """
    lines = document.content.splitlines()
    headings = find_headings(lines)
    builder = _Builder(document, max_tokens)

    first_heading = headings[0].line if headings else len(lines)
    builder.add_section(
        DOCUMENT_HEADER_TITLE,
        None,
        lines[:first_heading],
        1,
        (),
        None,
    )

    # Stack of (level, title, chunk_id) for the open ancestors.
    stack: list[tuple[int, str, str | None]] = []
    for i, heading in enumerate(headings):
        end = headings[i + 1].line if i + 1 < len(headings) else len(lines)
        while stack and stack[-1][0] >= heading.level:
            stack.pop()

        section_path = (*(title for _, title, _ in stack), heading.title)
        parent_id = stack[-1][2] if stack else None
        chunk_id = builder.add_section(
            heading.title,
            lines[heading.line],
            lines[heading.line + 1 : end],
            heading.line + 1,
            section_path,
            parent_id,
        )
        stack.append((heading.level, heading.title, chunk_id))

    return builder.chunks
