"""OpenAI embeddings through the async SDK."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from trove.exceptions import ProviderError
from trove.search.providers._validation import check_dimensions, require_text

try:
    import openai
    from openai import AsyncOpenAI

    _HAS_OPENAI = True
except ImportError:  # pragma: no cover
    _HAS_OPENAI = False

if TYPE_CHECKING:
    from collections.abc import Iterator

    from openai import AsyncOpenAI as AsyncOpenAIType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _ModelSpec:
    dimensions: int
    max_tokens: int = 8191


_KNOWN_MODELS: dict[str, _ModelSpec] = {
    "text-embedding-3-small": _ModelSpec(1536),
    "text-embedding-3-large": _ModelSpec(3072),
    "text-embedding-ada-002": _ModelSpec(1536),
}
_FALLBACK_MAX_TOKENS = 8191


class OpenAIEmbedding:
    """Embedding provider for the OpenAI Embeddings API.

    Inputs longer than *batch_size* texts are split across requests.  The
    SDK's built-in retries default to off: the provider manager owns the
    retry budget, and every SDK failure reaches it as a
    :class:`ProviderError` whose ``transient`` flag is set for rate limits,
    connection failures, timeouts and 5xx responses.

    Requires the ``openai`` extra::

        pip install trove[openai]
    """

    def __init__(
        self,
        *,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        api_key: str | None = None,
        max_retries: int = 0,
        timeout: float = 60.0,
        batch_size: int = 512,
        client: Any = None,
    ) -> None:
        if not _HAS_OPENAI:
            msg = "OpenAIEmbedding needs the openai package: pip install trove[openai]"
            raise ImportError(msg)

        self._model = model
        self._spec = _KNOWN_MODELS.get(model)
        self._requested_dimensions = dimensions
        self._batch_size = max(1, batch_size)

        if client is None:
            key = api_key or os.environ.get("OPENAI_API_KEY")
            if not key:
                msg = "No OpenAI API key: pass api_key= or set OPENAI_API_KEY"
                raise ValueError(msg)
            client = AsyncOpenAI(api_key=key, max_retries=max_retries, timeout=timeout)
        self._client: AsyncOpenAIType = client

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        if self._requested_dimensions is not None:
            return self._requested_dimensions
        if self._spec is None:
            msg = f"Unknown default dimensions for model {self._model!r}; pass dimensions="
            raise ValueError(msg)
        return self._spec.dimensions

    @property
    def max_tokens(self) -> int:
        return self._spec.max_tokens if self._spec is not None else _FALLBACK_MAX_TOKENS

    async def embed(self, text: str) -> list[float]:
        require_text(text)
        (vector,) = await self._request([text])
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        for text in texts:
            require_text(text)
        vectors: list[list[float]] = []
        for batch in self._batches(texts):
            vectors.extend(await self._request(batch))
        return vectors

    async def is_available(self) -> bool:
        """Whether the configured model can be looked up with these credentials."""
        try:
            await self._client.models.retrieve(self._model)
        except openai.OpenAIError as exc:
            logger.warning("OpenAI model %s is not reachable: %s", self._model, exc)
            return False
        return True

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _batches(self, texts: list[str]) -> Iterator[list[str]]:
        for start in range(0, len(texts), self._batch_size):
            yield texts[start : start + self._batch_size]

    async def _request(self, texts: list[str]) -> list[list[float]]:
        params: dict[str, Any] = {"model": self._model, "input": texts}
        if self._requested_dimensions is not None:
            params["dimensions"] = self._requested_dimensions

        try:
            response = await self._client.embeddings.create(**params)
        except openai.OpenAIError as exc:
            raise ProviderError(
                f"OpenAI embedding request failed: {exc}",
                transient=_is_retryable(exc),
            ) from exc

        # The API may return items out of input order.
        by_index = {item.index: item.embedding for item in response.data}
        if sorted(by_index) != list(range(len(texts))):
            msg = f"OpenAI returned {len(by_index)} embeddings for {len(texts)} inputs"
            raise ProviderError(msg, transient=True)
        return check_dimensions([by_index[i] for i in range(len(texts))], self.dimensions, self._model)


def _is_retryable(exc: Exception) -> bool:
    # APITimeoutError is a subclass of APIConnectionError.
    return isinstance(
        exc,
        openai.RateLimitError | openai.APIConnectionError | openai.InternalServerError,
    )
