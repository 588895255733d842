"""Shared fixtures for Trove tests."""

from __future__ import annotations

import hashlib
import json
import math
import re
from typing import TYPE_CHECKING

import pytest

from trove import TroveAsync
from trove.config import (
    EmbeddingConfig,
    EngineConfig,
    IndexingConfig,
    RetryPolicy,
    SearchConfig,
    VectorStoreConfig,
)
from trove.exceptions import ProviderError
from trove.search.providers._validation import require_text
from trove.search.stores.local import LocalVectorStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, timeout=5.0)

_WORD = re.compile(r"[a-z0-9]+")


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embeddings.

    Each word is hashed into one of ``dimensions - 1`` buckets; bucket 0
    holds a small constant so no text maps to the zero vector.  Texts that
    share words are therefore similar, texts that share none are nearly
    orthogonal.
    """

    def __init__(self, dimensions: int = 256, *, model: str = "fake-bow") -> None:
        self._dimensions = dimensions
        self._model = model
        self.available = True
        self.embed_calls = 0
        self.batch_calls = 0
        self.embedded_texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        require_text(text)
        self.embed_calls += 1
        self.embedded_texts.append(text)
        return self.vector_for(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        for text in texts:
            require_text(text)
        self.batch_calls += 1
        self.embedded_texts.extend(texts)
        return [self.vector_for(t) for t in texts]

    async def is_available(self) -> bool:
        return self.available

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def max_tokens(self) -> int:
        return 512

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def total_calls(self) -> int:
        return self.embed_calls + self.batch_calls

    def vector_for(self, text: str) -> list[float]:
        vec = [0.0] * self._dimensions
        vec[0] = 0.1
        for word in _WORD.findall(text.lower()):
            digest = hashlib.md5(word.encode()).hexdigest()  # noqa: S324
            vec[1 + int(digest, 16) % (self._dimensions - 1)] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        return [v / norm for v in vec]


class FlakyEmbeddingProvider(FakeEmbeddingProvider):
    """Raises a transient :class:`ProviderError` for the first *failures* calls."""

    def __init__(self, failures: int, dimensions: int = 256, *, model: str = "flaky") -> None:
        super().__init__(dimensions, model=model)
        self.failures = failures
        self.attempts = 0

    async def embed(self, text: str) -> list[float]:
        self._maybe_fail()
        return await super().embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self._maybe_fail()
        return await super().embed_batch(texts)

    def _maybe_fail(self) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            msg = f"simulated outage (attempt {self.attempts})"
            raise ProviderError(msg, transient=True)


# ------------------------------------------------------------------
# Corpus
# ------------------------------------------------------------------

APP_TS = """\
import { helper } from "./helper";

export function add(a: number, b: number): number {
  return a + b;
}
"""

README_MD = """\
# Installation

Run the installer and point it at your workspace.

## Configuration

Set the cache directory before the first start.
"""

NOTES_TXT = """\
Retry backoff doubles after each failure.

Quarterly planning happens in the spring.
"""

ISSUE = {
    "number": 42,
    "title": "Crash on startup",
    "body": "The app crashes when the settings file is missing.",
    "user": {"login": "alice"},
    "labels": [{"name": "bug"}],
    "comments": [
        {"user": {"login": "bob"}, "body": "Fixed by shipping default settings."},
        {"user": {"login": "carol"}, "body": "+1"},
    ],
}


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    """A small mixed corpus: TypeScript, markdown, plain text and an issue record."""
    root = tmp_path / "corpus"
    (root / "src").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "node_modules" / "dep").mkdir(parents=True)

    (root / "src" / "app.ts").write_text(APP_TS)
    (root / "docs" / "README.md").write_text(README_MD)
    (root / "notes.txt").write_text(NOTES_TXT)
    (root / "issue.json").write_text(json.dumps(ISSUE))
    # Excluded by the default patterns
    (root / "node_modules" / "dep" / "index.js").write_text("export function dep() {}\n")
    (root / "src" / "app.test.ts").write_text("export function testAdd() {}\n")
    return root


@pytest.fixture
def engine_config(corpus: Path) -> EngineConfig:
    """Engine config over the corpus with fast retries and no score threshold."""
    return EngineConfig(
        embedding=EmbeddingConfig(retry=FAST_RETRY),
        vector_store=VectorStoreConfig(retry=FAST_RETRY),
        indexing=IndexingConfig(base_paths=(str(corpus),)),
        search=SearchConfig(threshold=0.0),
    )


@pytest.fixture
async def trove(
    engine_config: EngineConfig, fake_provider: FakeEmbeddingProvider
) -> AsyncIterator[TroveAsync]:
    """An initialized in-memory TroveAsync backed by the fake provider."""
    engine = TroveAsync(engine_config, embedding_provider=fake_provider, store=LocalVectorStore())
    await engine.initialize()
    yield engine
    await engine.close()
