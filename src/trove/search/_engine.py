"""SearchEngine — query embedding, filtered vector search and result ranking."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from trove.config import SearchConfig
from trove.exceptions import InvalidInputError
from trove.search.ranking import (
    UsageTracker,
    affinity_score,
    blend,
    extract_highlights,
    infer_category,
    normalize_similarity,
    query_terms,
    recency_score,
)
from trove.search.types import ScoreBreakdown, SearchQuery, SearchResult, VectorPayload

if TYPE_CHECKING:
    from collections.abc import Callable

    from trove.search.protocols import VectorStore
    from trove.search.providers.manager import ProviderManager
    from trove.search.types import VectorSearchResult

logger = logging.getLogger(__name__)

# Candidates fetched per requested result, so re-ranking can promote hits
# the raw similarity order would have cut.
_RERANK_FACTOR = 2


@dataclass(slots=True)
class SearchPerformance:
    """Running query latency counters."""

    searches: int = 0
    total_ms: float = 0.0
    last_ms: float = 0.0

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.searches if self.searches else 0.0


class SearchEngine:
    """Orchestrates the :class:`ProviderManager` and a :class:`VectorStore`.

    The engine is the read side of :class:`~trove.TroveAsync`: it embeds
    the query, runs a thresholded and filtered vector search, blends the
    raw similarity with recency, category affinity and usage into a final
    score, and converts store-level hits (``VectorSearchResult``) into
    user-facing :class:`SearchResult` objects.  It never touches the index
    registry or its locks.
    """

    def __init__(
        self,
        store: VectorStore,
        providers: ProviderManager,
        *,
        collection: str,
        config: SearchConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._providers = providers
        self._collection = collection
        self._config = config or SearchConfig()
        self._clock = clock
        self._usage = UsageTracker()
        self._performance = SearchPerformance()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: SearchQuery | str) -> list[SearchResult]:
        """Embed *query*, search the store and return ranked results.

        Raises:
            InvalidInputError: Empty query text or a non-positive limit.
            ProviderError: The query could not be embedded.
            VectorStoreError: The store rejected the search.
        """
        if isinstance(query, str):
            query = SearchQuery(query=query)
        limit = query.limit if query.limit is not None else self._config.default_limit
        threshold = query.threshold if query.threshold is not None else self._config.threshold
        if limit <= 0:
            msg = f"limit must be positive, got {limit}"
            raise InvalidInputError(msg)
        if not query.query.strip():
            msg = "Search query must not be empty"
            raise InvalidInputError(msg)

        started = time.perf_counter()
        vector = await self._providers.embed(query.query)
        hits = await self._store.search(
            self._collection,
            vector,
            limit=limit * _RERANK_FACTOR,
            threshold=threshold,
            filter=query.filters.to_expression(),
        )

        results = self._rank(query, hits)[:limit]
        self._usage.record([r.id for r in results])

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._performance.searches += 1
        self._performance.total_ms += elapsed_ms
        self._performance.last_ms = elapsed_ms
        logger.debug(
            "Search %r returned %d of %d hits in %.1fms",
            query.query,
            len(results),
            len(hits),
            elapsed_ms,
        )
        return results

    def forget(self, ids: list[str]) -> None:
        """Drop usage history for deleted vector ids."""
        self._usage.forget(ids)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def store(self) -> VectorStore:
        """Return the underlying :class:`VectorStore`."""
        return self._store

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def performance(self) -> SearchPerformance:
        return self._performance

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _rank(self, query: SearchQuery, hits: list[VectorSearchResult]) -> list[SearchResult]:
        if not hits:
            return []

        now = self._clock()
        preferred = infer_category(query.query)
        terms = query_terms(query.query)
        weights = self._config.weights

        results: list[SearchResult] = []
        for hit in hits:
            payload = VectorPayload.from_metadata(hit.metadata)
            breakdown = ScoreBreakdown(
                similarity=normalize_similarity(hit.score),
                recency=recency_score(
                    payload.modified_time, now, self._config.recency_max_age_days
                ),
                affinity=affinity_score(payload.category, preferred),
                usage=self._usage.score(hit.id),
            )
            highlights = (
                extract_highlights(payload.content, terms, self._config.highlight_count)
                if query.include_highlights
                else ()
            )
            results.append(
                SearchResult(
                    id=hit.id,
                    score=blend(breakdown, weights),
                    metadata=payload,
                    content=payload.content if query.include_content else None,
                    highlights=highlights,
                    breakdown=breakdown,
                )
            )

        results.sort(key=lambda r: r.score, reverse=True)
        return results
