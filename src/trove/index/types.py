"""Indexing result and progress types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TypeAlias


class DocumentState(StrEnum):
    """Transient per-path state while a write is in flight."""

    IDLE = "idle"
    INDEXING = "indexing"
    REINDEXING = "reindexing"


@dataclass(frozen=True, slots=True)
class IndexingError:
    """A single file that failed during batch indexing."""

    path: str
    error: str


@dataclass(frozen=True, slots=True)
class IndexingProgress:
    """Snapshot passed to progress callbacks after each file.

    Attributes:
        estimated_remaining: Seconds left at the average rate so far, or
            ``None`` before the first file completes.
    """

    total: int
    processed: int
    successful: int
    failed: int
    current_file: str | None = None
    estimated_remaining: float | None = None


@dataclass(frozen=True, slots=True)
class IndexingResult:
    """Outcome of a batch indexing run."""

    total: int
    successful: int
    failed: int
    errors: list[IndexingError] = field(default_factory=list)
    cancelled: bool = False


ProgressCallback: TypeAlias = Callable[[IndexingProgress], Awaitable[None] | None]
