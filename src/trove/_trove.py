"""Trove — synchronous facade over :class:`TroveAsync`."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from trove._trove_async import TroveAsync

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from trove._trove_async import EngineStats, HealthReport
    from trove.config import EngineConfig
    from trove.index import DocumentIndexEntry, IndexingProgress, IndexingResult
    from trove.search.protocols import EmbeddingProvider, VectorStore
    from trove.search.providers.manager import ProviderManager
    from trove.search.types import SearchQuery, SearchResult

logger = logging.getLogger(__name__)


class Trove:
    """Retrieval engine with a synchronous API.

    Runs a :class:`TroveAsync` on a private event loop in a background
    thread, so it can be used from plain sync code, notebooks, or inside an
    already running event loop.

    Usage::

        with Trove(config) as t:
            t.index_documents()
            for hit in t.search("where are retries configured?"):
                print(hit.source, hit.score)
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        embedding_provider: EmbeddingProvider | ProviderManager | None = None,
        store: VectorStore | None = None,
    ) -> None:
        self._closed = False

        # Private event loop in a daemon thread
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

        try:
            self._engine = TroveAsync(config, embedding_provider=embedding_provider, store=store)
            self._run(self._engine.initialize())
        except BaseException:
            self._stop_loop()
            raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def index_documents(
        self,
        paths: Iterable[str | Path] | None = None,
        *,
        on_progress: Callable[[IndexingProgress], None] | None = None,
    ) -> IndexingResult:
        """Index *paths*, or every file discovered under the base paths.

        *on_progress* runs on the engine's loop thread.
        """
        return self._run(self._engine.index_documents(paths, on_progress=on_progress))

    def index_document(self, path: str | Path, *, force: bool = False) -> DocumentIndexEntry:
        return self._run(self._engine.index_document(path, force=force))

    def search(self, query: SearchQuery | str) -> list[SearchResult]:
        return self._run(self._engine.search(query))

    def delete_document(self, path: str | Path) -> None:
        self._run(self._engine.delete_document(path))

    def rebuild(self, *, full: bool = True) -> IndexingResult:
        return self._run(self._engine.rebuild(full=full))

    def find_outdated_documents(self) -> list[DocumentIndexEntry]:
        return self._run(self._engine.find_outdated_documents())

    def get_stats(self) -> EngineStats:
        return self._run(self._engine.get_stats())

    def health_check(self) -> HealthReport:
        return self._run(self._engine.health_check())

    def save(self) -> None:
        self._run(self._engine.save())

    @property
    def engine(self) -> TroveAsync:
        """The underlying async engine (bound to the private loop)."""
        return self._engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the engine, stop the event loop and join the thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._run(self._engine.close())
        finally:
            self._stop_loop()

    def __enter__(self) -> Trove:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self, coro: Any) -> Any:
        """Submit *coro* to the private loop and block for the result."""
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        if not self._thread.is_alive():
            self._loop.close()
