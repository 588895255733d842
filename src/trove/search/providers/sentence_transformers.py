"""Local embeddings with sentence-transformers (default model all-MiniLM-L6-v2)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from trove.exceptions import ProviderError
from trove.search.providers._validation import check_dimensions, require_text

try:
    from sentence_transformers import SentenceTransformer

    _HAS_SENTENCE_TRANSFORMERS = True
except ImportError:  # pragma: no cover
    _HAS_SENTENCE_TRANSFORMERS = False

logger = logging.getLogger(__name__)

_DEFAULT_MAX_SEQ_LENGTH = 256


class SentenceTransformerEmbedding:
    """In-process embedding model.

    Loading is deferred until the model is first needed and inference runs
    in a worker thread (:func:`asyncio.to_thread`), so neither blocks the
    event loop.  A model that cannot be loaded surfaces as a permanent
    :class:`ProviderError` and makes :meth:`is_available` false.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2") -> None:
        if not _HAS_SENTENCE_TRANSFORMERS:
            msg = "SentenceTransformerEmbedding needs the sentence-transformers package"
            raise ImportError(msg)
        self._model_name = model_name
        self._model: SentenceTransformer | None = None

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        dim = self._loaded().get_sentence_embedding_dimension()
        if dim is None:
            msg = f"Model {self._model_name!r} does not report its embedding size"
            raise ProviderError(msg)
        return dim

    @property
    def max_tokens(self) -> int:
        return int(getattr(self._loaded(), "max_seq_length", None) or _DEFAULT_MAX_SEQ_LENGTH)

    # Blocking API, also used from notebooks and scripts.

    def embed_sync(self, text: str) -> list[float]:
        require_text(text)
        return self._encode([text])[0]

    def embed_batch_sync(self, texts: list[str]) -> list[list[float]]:
        for text in texts:
            require_text(text)
        return self._encode(texts) if texts else []

    # EmbeddingProvider protocol

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self.embed_sync, text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self.embed_batch_sync, texts)

    async def is_available(self) -> bool:
        try:
            await asyncio.to_thread(self._loaded)
        except ProviderError as exc:
            logger.warning("%s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _loaded(self) -> SentenceTransformer:
        if self._model is not None:
            return self._model
        try:
            self._model = SentenceTransformer(self._model_name)
        except (OSError, ValueError) as exc:
            msg = f"Cannot load sentence-transformers model {self._model_name!r}: {exc}"
            raise ProviderError(msg) from exc
        logger.debug("Loaded sentence-transformers model %s", self._model_name)
        return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        matrix: Any = self._loaded().encode(texts)
        return check_dimensions([row.tolist() for row in matrix], self.dimensions, self._model_name)
