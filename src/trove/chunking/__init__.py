"""Document-kind-aware chunking."""

from trove.chunking._base import (
    Chunk,
    ChunkMetadata,
    ChunkResult,
    ChunkType,
    DocumentInput,
    DocumentKind,
    build_chunk_id,
    estimate_tokens,
    extract_lines,
)
from trove.chunking._chunker import Chunker
from trove.chunking.detect import detect_document, detect_language
from trove.chunking.records import is_important_comment

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "ChunkResult",
    "ChunkType",
    "Chunker",
    "DocumentInput",
    "DocumentKind",
    "build_chunk_id",
    "detect_document",
    "detect_language",
    "estimate_tokens",
    "extract_lines",
    "is_important_comment",
]
