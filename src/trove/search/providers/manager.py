"""ProviderManager — provider selection, batching, retries and failover."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from trove.config import EmbeddingConfig, FailedEmbeddingPolicy, ProviderPreference
from trove.exceptions import (
    ConfigError,
    IndexingCancelledError,
    InvalidInputError,
    NotInitializedError,
    ProviderError,
)
from trove.search._retry import retry_call
from trove.search.providers._validation import check_dimensions, require_text

if TYPE_CHECKING:
    from collections.abc import Callable

    from trove.search.protocols import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProviderProfile:
    """Relative ranks used to order providers.

    Lower ``cost`` and ``latency`` are better; higher ``quality`` is better.
    """

    cost: int = 0
    latency: int = 0
    quality: int = 0


@dataclass(frozen=True, slots=True)
class BatchEmbedding:
    """Outcome of :meth:`ProviderManager.embed_batch`.

    ``vectors`` is aligned with the input texts.  Under
    :attr:`FailedEmbeddingPolicy.EXCLUDE` an item that could not be embedded
    holds ``None`` and its index is listed in ``failed``; under
    :attr:`FailedEmbeddingPolicy.ZERO_VECTOR` it holds an all-zero vector and
    its index is listed in ``degraded``.
    """

    vectors: list[list[float] | None]
    failed: tuple[int, ...] = ()
    degraded: tuple[int, ...] = ()

    @property
    def embedded_count(self) -> int:
        return len(self.vectors) - len(self.failed)


@dataclass(slots=True)
class EmbeddingStats:
    """Running counters kept by the manager."""

    requests: int = 0
    texts: int = 0
    failed: int = 0
    degraded: int = 0
    batch_fallbacks: int = 0
    provider_failures: int = 0


@dataclass(slots=True)
class _Registration:
    name: str
    provider: EmbeddingProvider
    profile: ProviderProfile
    order: int
    unavailable_until: float | None = None
    dimensions: int | None = field(default=None)


def _timeout_error(message: str) -> ProviderError:
    return ProviderError(message, transient=True)


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        msg = "Embedding cancelled"
        raise IndexingCancelledError(msg)


class ProviderManager:
    """Owns the registered embedding providers and every call made to them.

    Providers are ranked by an explicit primary, then by the configured
    :class:`~trove.config.ProviderPreference`, then by registration order.
    The first available provider is active; calls fail over to the next
    available provider of the same dimensionality.  A provider whose
    transient retries are exhausted is benched for ``config.cooldown``
    seconds and re-probed with ``is_available()`` once the window expires.

    Batch embedding never aborts on provider errors.  Sub-batches run
    concurrently under a semaphore.  A sub-batch that fails on a provider
    is embedded item by item on that same provider, and only an item that
    exhausts its transient retries benches the provider and moves the rest
    of the sub-batch to the next candidate.  Items that still fail are
    handled by ``config.failed_embedding_policy``.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or EmbeddingConfig()
        self._clock = clock
        self._registrations: dict[str, _Registration] = {}
        self._primary: str | None = None
        self._dimensions: int | None = None
        self._semaphore = asyncio.Semaphore(self._config.max_concurrency)
        self._stats = EmbeddingStats()

    # ------------------------------------------------------------------
    # Registration and lifecycle
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        provider: EmbeddingProvider,
        profile: ProviderProfile | None = None,
        *,
        primary: bool = False,
    ) -> None:
        """Register *provider* under *name*."""
        if name in self._registrations:
            msg = f"Embedding provider {name!r} is already registered"
            raise ConfigError(msg)
        self._registrations[name] = _Registration(
            name=name,
            provider=provider,
            profile=profile or ProviderProfile(),
            order=len(self._registrations),
        )
        if primary:
            self._primary = name

    async def initialize(self) -> None:
        """Probe every provider and fix the active dimensionality.

        Raises:
            ConfigError: No provider registered, or the active provider's
                dimensionality disagrees with ``config.dimensions``.
            ProviderError: No registered provider is available.
        """
        if not self._registrations:
            msg = "No embedding providers registered"
            raise ConfigError(msg)

        for reg in self._ranked():
            if await reg.provider.is_available():
                reg.unavailable_until = None
                reg.dimensions = reg.provider.dimensions
            else:
                self._bench(reg, "availability probe failed")

        available = [reg for reg in self._ranked() if reg.unavailable_until is None]
        if not available:
            msg = "No embedding provider is available"
            raise ProviderError(msg, transient=True)

        active = available[0]
        expected = self._config.dimensions
        if expected is not None and active.dimensions != expected:
            msg = (
                f"Embedding provider {active.name!r} produces {active.dimensions}-dimensional "
                f"vectors but {expected} were configured"
            )
            raise ConfigError(msg)
        self._dimensions = active.dimensions
        logger.info(
            "Embedding provider %s active (%s, %d dimensions)",
            active.name,
            active.provider.model_name,
            self._dimensions,
        )

    async def close(self) -> None:
        """Close providers that hold connections."""
        for reg in self._registrations.values():
            close_fn = getattr(reg.provider, "close", None)
            if close_fn is not None:
                result = close_fn()
                if inspect.isawaitable(result):
                    await result

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed a single query text with retries and failover."""
        self._require_initialized()
        require_text(text)
        self._stats.requests += 1
        self._stats.texts += 1
        return await self._embed_one(text)

    async def embed_batch(
        self,
        texts: list[str],
        *,
        cancel: asyncio.Event | None = None,
    ) -> BatchEmbedding:
        """Embed *texts*, returning vectors aligned with the input.

        If any sub-batch raises, the sub-batches still running are cancelled
        and awaited before the error propagates.

        Raises:
            IndexingCancelledError: *cancel* was set before a sub-batch or
                one of its per-item requests started.
        """
        self._require_initialized()
        if not texts:
            return BatchEmbedding(vectors=[])
        self._stats.requests += 1
        self._stats.texts += len(texts)

        size = self._config.batch_size
        tasks = [
            asyncio.create_task(self._embed_sub_batch(start, texts[start : start + size], cancel))
            for start in range(0, len(texts), size)
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        vectors: list[list[float] | None] = [None] * len(texts)
        for start, batch_vectors in results:
            vectors[start : start + len(batch_vectors)] = batch_vectors

        missing = [i for i, vector in enumerate(vectors) if vector is None]
        if not missing:
            return BatchEmbedding(vectors=vectors)

        if self._config.failed_embedding_policy is FailedEmbeddingPolicy.ZERO_VECTOR:
            assert self._dimensions is not None
            for i in missing:
                vectors[i] = [0.0] * self._dimensions
            self._stats.degraded += len(missing)
            logger.warning("Substituted zero vectors for %d unembeddable texts", len(missing))
            return BatchEmbedding(vectors=vectors, degraded=tuple(missing))

        self._stats.failed += len(missing)
        logger.warning("Excluded %d unembeddable texts from batch of %d", len(missing), len(texts))
        return BatchEmbedding(vectors=vectors, failed=tuple(missing))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def dimensions(self) -> int:
        """Dimensionality of the active provider."""
        self._require_initialized()
        assert self._dimensions is not None
        return self._dimensions

    @property
    def active_name(self) -> str | None:
        """Name of the highest-ranked provider not in cooldown."""
        for reg in self._ranked():
            if reg.unavailable_until is None and reg.dimensions == self._dimensions:
                return reg.name
        return None

    @property
    def model_name(self) -> str | None:
        name = self.active_name
        return None if name is None else self._registrations[name].provider.model_name

    @property
    def stats(self) -> EmbeddingStats:
        return self._stats

    @property
    def initialized(self) -> bool:
        return self._dimensions is not None

    def provider_status(self) -> dict[str, str]:
        """Map each provider name to ``"available"`` or ``"cooldown"``."""
        return {
            reg.name: "available" if reg.unavailable_until is None else "cooldown"
            for reg in self._ranked()
        }

    async def is_available(self) -> bool:
        """Return whether any provider of the active dimensionality can serve calls."""
        if self._dimensions is None:
            return False
        return bool(await self._candidates())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_initialized(self) -> None:
        if self._dimensions is None:
            msg = "ProviderManager.initialize() has not been called"
            raise NotInitializedError(msg)

    def _ranked(self) -> list[_Registration]:
        preference = self._config.preference

        def key(reg: _Registration) -> tuple[int, int, int]:
            match preference:
                case ProviderPreference.COST:
                    rank = reg.profile.cost
                case ProviderPreference.LATENCY:
                    rank = reg.profile.latency
                case ProviderPreference.QUALITY:
                    rank = -reg.profile.quality
            return (0 if reg.name == self._primary else 1, rank, reg.order)

        return sorted(self._registrations.values(), key=key)

    def _bench(self, reg: _Registration, reason: str) -> None:
        reg.unavailable_until = self._clock() + self._config.cooldown
        logger.warning(
            "Embedding provider %s unavailable for %.0fs: %s",
            reg.name,
            self._config.cooldown,
            reason,
        )

    async def _usable(self, reg: _Registration) -> bool:
        if reg.unavailable_until is not None:
            if self._clock() < reg.unavailable_until:
                return False
            if not await reg.provider.is_available():
                self._bench(reg, "re-probe failed")
                return False
            reg.unavailable_until = None
            logger.info("Embedding provider %s is available again", reg.name)
        if reg.dimensions is None:
            reg.dimensions = reg.provider.dimensions
        return reg.dimensions == self._dimensions

    async def _candidates(self) -> list[_Registration]:
        return [reg for reg in self._ranked() if await self._usable(reg)]

    async def _embed_one(self, text: str) -> list[float]:
        last_error: ProviderError | None = None
        for reg in await self._candidates():
            try:
                return await self._call_embed(reg, text)
            except ProviderError as exc:
                if not exc.transient:
                    raise
                self._stats.provider_failures += 1
                self._bench(reg, str(exc))
                last_error = exc

        if last_error is not None:
            raise last_error
        msg = "No embedding provider is available"
        raise ProviderError(msg, transient=True)

    async def _embed_sub_batch(
        self,
        start: int,
        batch: list[str],
        cancel: asyncio.Event | None,
    ) -> tuple[int, list[list[float] | None]]:
        async with self._semaphore:
            _check_cancel(cancel)
            vectors: list[list[float] | None] = [None] * len(batch)
            pending = list(range(len(batch)))
            for reg in await self._candidates():
                pending = await self._embed_on(reg, start, batch, vectors, pending, cancel)
                if not pending:
                    break
            if pending:
                logger.debug(
                    "No provider could embed items %s",
                    [start + i for i in pending],
                )
            return start, vectors

    async def _embed_on(
        self,
        reg: _Registration,
        start: int,
        batch: list[str],
        vectors: list[list[float] | None],
        pending: list[int],
        cancel: asyncio.Event | None,
    ) -> list[int]:
        """Embed the *pending* items of *batch* with *reg* and return those left over.

        The items are sent as one request first.  If that fails they are
        sent one at a time to the same provider.  An item that exhausts its
        transient retries benches *reg* and is left over together with every
        item after it; an item the provider rejects outright stays ``None``.
        """
        texts = [batch[i] for i in pending]
        try:
            embedded = await self._call_embed_batch(reg, texts)
        except (ProviderError, InvalidInputError) as exc:
            self._stats.batch_fallbacks += 1
            logger.warning(
                "Sub-batch at offset %d failed on %s (%s); embedding %d items individually",
                start,
                reg.name,
                exc,
                len(texts),
            )
        else:
            for i, vector in zip(pending, embedded, strict=True):
                vectors[i] = vector
            return []

        for position, i in enumerate(pending):
            _check_cancel(cancel)
            try:
                require_text(batch[i])
                vectors[i] = await self._call_embed(reg, batch[i])
            except InvalidInputError as exc:
                logger.debug("Item %d could not be embedded: %s", start + i, exc)
            except ProviderError as exc:
                if not exc.transient:
                    logger.debug("Item %d rejected by %s: %s", start + i, reg.name, exc)
                    continue
                self._stats.provider_failures += 1
                self._bench(reg, str(exc))
                return pending[position:]
        return []

    async def _call_embed(self, reg: _Registration, text: str) -> list[float]:
        vector = await retry_call(
            functools.partial(reg.provider.embed, text),
            self._config.retry,
            operation=f"embed via {reg.name}",
            on_timeout=_timeout_error,
        )
        return check_dimensions([vector], self.dimensions, reg.provider.model_name)[0]

    async def _call_embed_batch(self, reg: _Registration, batch: list[str]) -> list[list[float]]:
        vectors = await retry_call(
            functools.partial(reg.provider.embed_batch, batch),
            self._config.retry,
            operation=f"embed_batch via {reg.name}",
            on_timeout=_timeout_error,
        )
        if len(vectors) != len(batch):
            msg = f"Provider {reg.name!r} returned {len(vectors)} vectors for {len(batch)} texts"
            raise ProviderError(msg)
        return check_dimensions(vectors, self.dimensions, reg.provider.model_name)
