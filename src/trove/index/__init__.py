"""Incremental indexing — registry, discovery and the index manager."""

from trove.index._manager import (
    IndexManager,
    content_hash,
    document_id_for,
    normalize_path,
    vector_id_for,
)
from trove.index.discovery import discover_files
from trove.index.models import DocumentIndexEntry, IndexMetadata, IndexStatus
from trove.index.registry import IndexRegistry
from trove.index.types import (
    DocumentState,
    IndexingError,
    IndexingProgress,
    IndexingResult,
    ProgressCallback,
)

__all__ = [
    "DocumentIndexEntry",
    "DocumentState",
    "IndexManager",
    "IndexMetadata",
    "IndexRegistry",
    "IndexStatus",
    "IndexingError",
    "IndexingProgress",
    "IndexingResult",
    "ProgressCallback",
    "content_hash",
    "discover_files",
    "document_id_for",
    "normalize_path",
    "vector_id_for",
]
