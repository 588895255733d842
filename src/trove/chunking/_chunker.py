"""Chunker — dispatches a document to the strategy for its kind."""

from __future__ import annotations

import logging
from typing import assert_never

from trove.chunking._base import Chunk, ChunkResult, DocumentInput, DocumentKind
from trove.chunking.code import chunk_code
from trove.chunking.markdown import chunk_markdown
from trove.chunking.records import chunk_record
from trove.chunking.text import chunk_text
from trove.config import ChunkingConfig
from trove.exceptions import ParseError

logger = logging.getLogger(__name__)


class Chunker:
    """Splits documents into ordered, typed chunks.

    :meth:`chunk` never raises for malformed content: a :class:`ParseError`
    from the kind-specific strategy degrades to a paragraph split and the
    failure is reported in :attr:`ChunkResult.warnings`.  Every document
    yields at least one chunk.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def chunk(self, document: DocumentInput) -> ChunkResult:
        """Chunk *document* with the strategy selected by ``document.kind``."""
        warnings: list[str] = []
        try:
            chunks = self._dispatch(document)
        except ParseError as exc:
            label = document.source_path or document.document_id
            message = f"{document.kind.value} parsing failed for {label}: {exc}"
            logger.warning("%s; falling back to paragraph split", message)
            warnings.append(message)
            chunks = chunk_text(document)

        if not chunks:
            chunks = chunk_text(document)
        return ChunkResult(chunks=chunks, warnings=warnings)

    def _dispatch(self, document: DocumentInput) -> list[Chunk]:
        match document.kind:
            case DocumentKind.CODE:
                return chunk_code(document)
            case DocumentKind.MARKDOWN:
                return chunk_markdown(document, max_tokens=self._config.section_max_tokens)
            case DocumentKind.ISSUE:
                return self._chunk_record(document, pull_request=False)
            case DocumentKind.PULL_REQUEST:
                return self._chunk_record(document, pull_request=True)
            case DocumentKind.TEXT:
                return chunk_text(document)
            case _:
                assert_never(document.kind)

    def _chunk_record(self, document: DocumentInput, *, pull_request: bool) -> list[Chunk]:
        return chunk_record(
            document,
            pull_request=pull_request,
            min_comment_length=self._config.min_comment_length,
            resolution_keywords=self._config.resolution_keywords,
        )
