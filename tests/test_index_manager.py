"""Tests for IndexManager — incremental indexing, deletion, batches and rebuilds."""

from __future__ import annotations

import asyncio
import os

import pytest

from conftest import FAST_RETRY, FakeEmbeddingProvider
from trove.chunking import Chunker
from trove.config import EmbeddingConfig, IndexingConfig
from trove.exceptions import (
    FileSystemError,
    IndexingCancelledError,
    ProviderError,
    VectorStoreError,
)
from trove.index import (
    DocumentState,
    IndexManager,
    IndexRegistry,
    IndexStatus,
    content_hash,
    document_id_for,
    normalize_path,
    vector_id_for,
)
from trove.search.providers.manager import ProviderManager
from trove.search.stores.local import LocalVectorStore

_COLL = "trove"

# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


class FailingUpsertStore(LocalVectorStore):
    """Rejects every upsert once ``fail`` is set."""

    fail = False

    async def upsert(self, collection, records):
        if self.fail:
            msg = "store unavailable"
            raise VectorStoreError(msg, transient=True)
        return await super().upsert(collection, records)


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def store() -> FailingUpsertStore:
    return FailingUpsertStore()


class OutageProvider(FakeEmbeddingProvider):
    """Fails every request with a transient error while ``down`` is set."""

    down = False

    async def embed(self, text: str) -> list[float]:
        self._check()
        return await super().embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self._check()
        return await super().embed_batch(texts)

    def _check(self) -> None:
        if self.down:
            msg = "service unavailable"
            raise ProviderError(msg, transient=True)


class RejectingProvider(FakeEmbeddingProvider):
    """Permanently rejects texts mentioning ``planning``."""

    async def embed(self, text: str) -> list[float]:
        if "planning" in text:
            msg = "content rejected"
            raise ProviderError(msg)
        return await super().embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if any("planning" in t for t in texts):
            msg = "content rejected"
            raise ProviderError(msg)
        return await super().embed_batch(texts)


class HeldProvider(FakeEmbeddingProvider):
    """Parks ``embed_batch`` calls on ``release`` while ``hold`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.hold = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self.hold:
            self.entered.set()
            await self.release.wait()
        return await super().embed_batch(texts)


async def _build(corpus, provider, store, embedding: EmbeddingConfig | None = None) -> IndexManager:
    providers = ProviderManager(embedding or EmbeddingConfig(retry=FAST_RETRY))
    providers.register("fake", provider)
    await providers.initialize()
    mgr = IndexManager(
        chunker=Chunker(),
        providers=providers,
        store=store,
        registry=IndexRegistry(),
        collection=_COLL,
        config=IndexingConfig(base_paths=(str(corpus),), workers=2),
    )
    await mgr.initialize()
    return mgr


@pytest.fixture
async def manager(corpus, provider, store):
    mgr = await _build(corpus, provider, store)
    yield mgr
    await mgr.close()


async def _stored_ids(store: LocalVectorStore, ids: list[str]) -> list[str]:
    fetched = await store.fetch(_COLL, ids)
    return [r.id for r in fetched if r is not None]


def _rewrite(path, text: str) -> None:
    """Write *text* and move the modified time clearly past the indexed one."""
    path.write_text(text)
    stamp = path.stat().st_mtime + 10
    os.utime(path, (stamp, stamp))


# ==================================================================
# Identifiers
# ==================================================================


class TestIdentifiers:
    def test_vector_ids_are_deterministic_uuids(self):
        first = vector_id_for("doc:0:abc")
        assert first == vector_id_for("doc:0:abc")
        assert first != vector_id_for("doc:1:abc")
        assert len(first) == 36

    def test_document_id_from_path(self):
        assert document_id_for("/a/b.md") == document_id_for("/a/b.md")
        assert len(document_id_for("/a/b.md")) == 16

    def test_normalize_path(self, tmp_path):
        assert normalize_path(tmp_path / "x" / ".." / "y.md") == str((tmp_path / "y.md").resolve())

    def test_content_hash(self):
        assert content_hash("a") != content_hash("b")


# ==================================================================
# Single documents
# ==================================================================


class TestIndexDocument:
    async def test_index_new_document(self, manager, store, corpus):
        path = corpus / "docs" / "README.md"

        entry = await manager.index_document(path)

        assert entry.status == IndexStatus.INDEXED
        assert entry.path == normalize_path(path)
        assert entry.document_id == document_id_for(entry.path)
        assert entry.kind == "markdown"
        assert entry.chunk_count == len(entry.vector_ids) > 0
        assert await _stored_ids(store, entry.vector_ids) == entry.vector_ids

    async def test_registry_and_store_hold_the_same_ids(self, manager, store):
        await manager.index_documents()

        entries = await manager.registry.list_entries()
        owned = {vid for e in entries for vid in e.vector_ids}
        info = await store.collection_info(_COLL)

        assert info.count == len(owned)
        assert set(await _stored_ids(store, sorted(owned))) == owned

    async def test_unchanged_reindex_skips_embedding(self, manager, provider, corpus):
        path = corpus / "notes.txt"
        first = await manager.index_document(path)
        calls = provider.total_calls

        second = await manager.index_document(path)

        assert provider.total_calls == calls
        assert second.vector_ids == first.vector_ids
        assert second.chunk_count == first.chunk_count

    async def test_force_reembeds(self, manager, provider, corpus):
        path = corpus / "notes.txt"
        first = await manager.index_document(path)
        calls = provider.total_calls

        second = await manager.index_document(path, force=True)

        assert provider.total_calls > calls
        assert second.vector_ids == first.vector_ids

    async def test_changed_content_replaces_vectors(self, manager, store, corpus):
        path = corpus / "notes.txt"
        first = await manager.index_document(path)

        path.write_text("A single new paragraph about telemetry.\n")
        second = await manager.index_document(path)

        assert second.content_hash != first.content_hash
        stale = set(first.vector_ids) - set(second.vector_ids)
        assert stale
        assert await _stored_ids(store, sorted(stale)) == []
        assert await _stored_ids(store, second.vector_ids) == second.vector_ids

    async def test_missing_file(self, manager, tmp_path):
        with pytest.raises(FileSystemError, match="not found"):
            await manager.index_document(tmp_path / "missing.md")

    async def test_deleted_source_marks_entry_error(self, manager, corpus):
        path = corpus / "notes.txt"
        await manager.index_document(path)
        path.unlink()

        with pytest.raises(FileSystemError):
            await manager.index_document(path)

        entry = await manager.registry.get(normalize_path(path))
        assert entry.status == IndexStatus.ERROR

    async def test_oversized_file(self, manager, corpus):
        manager._config = IndexingConfig(base_paths=(str(corpus),), max_file_size=10)
        with pytest.raises(FileSystemError, match="byte limit"):
            await manager.index_document(corpus / "notes.txt")

    async def test_store_failure_leaves_error_entry_without_vectors(self, manager, store, corpus):
        path = corpus / "notes.txt"
        first = await manager.index_document(path)
        path.write_text("Changed content that needs a write.\n")
        store.fail = True

        with pytest.raises(VectorStoreError):
            await manager.index_document(path)

        entry = await manager.registry.get(normalize_path(path))
        assert entry.status == IndexStatus.ERROR
        assert entry.vector_ids == []
        assert entry.chunk_count == 0
        assert await _stored_ids(store, first.vector_ids) == []

    async def test_state_is_idle_after_write(self, manager, corpus):
        path = corpus / "notes.txt"
        await manager.index_document(path)
        assert manager.document_state(path) == DocumentState.IDLE


# ==================================================================
# Embedding failures
# ==================================================================


class TestEmbeddingFailures:
    async def test_outage_leaves_entry_outdated_until_reembedded(self, corpus, store):
        provider = OutageProvider()
        mgr = await _build(corpus, provider, store, EmbeddingConfig(retry=FAST_RETRY, cooldown=0.0))
        path = corpus / "notes.txt"
        try:
            provider.down = True
            result = await mgr.index_documents([path])

            assert (result.successful, result.failed) == (0, 1)
            assert "could not be embedded" in result.errors[0].error
            entry = await mgr.registry.get(normalize_path(path))
            assert entry.status == IndexStatus.OUTDATED
            assert entry.vector_ids == []

            provider.down = False
            calls = provider.total_calls
            entry = await mgr.index_document(path)

            assert provider.total_calls > calls
            assert entry.status == IndexStatus.INDEXED
            assert entry.error is None
            assert entry.vector_ids
            assert await _stored_ids(store, entry.vector_ids) == entry.vector_ids
        finally:
            await mgr.close()

    async def test_rejected_chunk_leaves_partial_entry_outdated(self, corpus, store):
        mgr = await _build(corpus, RejectingProvider(), store)
        path = corpus / "notes.txt"
        try:
            entry = await mgr.index_document(path)

            assert entry.status == IndexStatus.OUTDATED
            assert entry.error == "1 of 2 chunks could not be embedded"
            assert entry.chunk_count == len(entry.vector_ids) == 1
            assert await _stored_ids(store, entry.vector_ids) == entry.vector_ids
            assert (await store.collection_info(_COLL)).count == 1
        finally:
            await mgr.close()


# ==================================================================
# Concurrent writes to one path
# ==================================================================


class TestSerializedWrites:
    async def test_reindex_waits_for_running_write(self, corpus, store):
        provider = HeldProvider()
        mgr = await _build(corpus, provider, store)
        path = corpus / "notes.txt"
        try:
            await mgr.index_document(path)
            provider.hold = True

            first = asyncio.create_task(mgr.index_document(path, force=True))
            await provider.entered.wait()
            path.write_text("Completely new notes about deployment.\n")
            second = asyncio.create_task(mgr.index_document(path))
            await asyncio.sleep(0)
            assert mgr.document_state(path) == DocumentState.REINDEXING

            provider.release.set()
            await asyncio.gather(first, second)

            entry = await mgr.registry.get(normalize_path(path))
            assert entry.content_hash == content_hash(path.read_text())
            assert await _stored_ids(store, entry.vector_ids) == entry.vector_ids
            assert (await store.collection_info(_COLL)).count == len(entry.vector_ids)
        finally:
            await mgr.close()

    async def test_interleaved_index_and_delete_leave_no_orphans(self, corpus, store):
        provider = HeldProvider()
        mgr = await _build(corpus, provider, store)
        path = corpus / "notes.txt"
        try:
            await mgr.index_document(path)
            provider.hold = True

            tasks = [
                asyncio.create_task(mgr.index_document(path, force=True)),
                asyncio.create_task(mgr.delete_document(path)),
                asyncio.create_task(mgr.index_document(path, force=True)),
            ]
            await provider.entered.wait()
            provider.release.set()
            await asyncio.gather(*tasks)

            entry = await mgr.registry.get(normalize_path(path))
            assert entry is not None
            assert await _stored_ids(store, entry.vector_ids) == entry.vector_ids
            assert (await store.collection_info(_COLL)).count == len(entry.vector_ids)
        finally:
            await mgr.close()


# ==================================================================
# Deletion
# ==================================================================


class TestDeleteDocument:
    async def test_removes_only_that_documents_vectors(self, manager, store, corpus):
        notes = await manager.index_document(corpus / "notes.txt")
        readme = await manager.index_document(corpus / "docs" / "README.md")

        removed = await manager.delete_document(corpus / "notes.txt")

        assert removed.vector_ids == notes.vector_ids
        assert await _stored_ids(store, notes.vector_ids) == []
        assert await _stored_ids(store, readme.vector_ids) == readme.vector_ids
        assert await manager.registry.get(notes.path) is None

    async def test_unknown_path(self, manager, tmp_path):
        assert await manager.delete_document(tmp_path / "never-indexed.md") is None

    async def test_metadata_follows_deletes(self, manager, corpus):
        await manager.index_documents()
        before = await manager.get_metadata()

        await manager.delete_document(corpus / "notes.txt")
        after = await manager.get_metadata()

        assert after.document_count == before.document_count - 1
        assert after.vector_count < before.vector_count


# ==================================================================
# Batches
# ==================================================================


class TestIndexDocuments:
    async def test_discovers_and_indexes_corpus(self, manager):
        result = await manager.index_documents()

        assert (result.total, result.successful, result.failed) == (4, 4, 0)
        meta = await manager.get_metadata()
        assert meta.document_count == 4
        assert meta.chunk_count > 4
        assert meta.vector_count == meta.chunk_count

    async def test_one_bad_file_does_not_stop_the_batch(self, manager, corpus):
        bad = corpus / "bad.txt"
        bad.write_bytes(b"valid start \xff\xfe invalid utf-8")
        paths = [corpus / "notes.txt", corpus / "docs" / "README.md", corpus / "src" / "app.ts", bad]

        result = await manager.index_documents(paths)

        assert (result.total, result.successful, result.failed) == (4, 3, 1)
        assert result.errors[0].path == normalize_path(bad)
        assert "UTF-8" in result.errors[0].error

    async def test_duplicate_paths_are_indexed_once(self, manager, corpus):
        notes = corpus / "notes.txt"
        result = await manager.index_documents([notes, str(notes)])
        assert result.total == 1

    async def test_progress_callbacks(self, manager):
        seen = []

        async def on_progress(progress):
            seen.append(progress)

        result = await manager.index_documents(on_progress=on_progress)

        assert len(seen) == result.total
        assert [p.processed for p in seen] == [1, 2, 3, 4]
        assert seen[-1].successful == 4
        assert seen[-1].estimated_remaining == pytest.approx(0.0)

    async def test_sync_progress_callback(self, manager):
        seen = []
        await manager.index_documents(on_progress=seen.append)
        assert len(seen) == 4

    async def test_cancel_before_start(self, manager, provider):
        cancel = asyncio.Event()
        cancel.set()

        result = await manager.index_documents(cancel=cancel)

        assert result.cancelled
        assert result.successful == 0
        assert provider.total_calls == 0


# ==================================================================
# Outdated detection
# ==================================================================


class TestFindOutdated:
    async def test_changed_and_missing_sources(self, manager, corpus):
        await manager.index_documents()
        _rewrite(corpus / "notes.txt", "Entirely different notes.\n")
        (corpus / "issue.json").unlink()

        outdated = await manager.find_outdated_documents()

        assert [e.path for e in outdated] == [normalize_path(corpus / "notes.txt")]
        missing = await manager.registry.get(normalize_path(corpus / "issue.json"))
        assert missing.status == IndexStatus.ERROR

    async def test_unmodified_time_skips_the_file(self, manager, corpus):
        path = corpus / "notes.txt"
        await manager.index_documents()
        before = path.stat().st_mtime_ns
        path.write_text("Entirely different notes.\n")
        os.utime(path, ns=(before, before))

        assert await manager.find_outdated_documents() == []

    async def test_touched_but_unchanged_is_not_outdated(self, manager, corpus):
        path = corpus / "notes.txt"
        await manager.index_documents()
        _rewrite(path, path.read_text())

        assert await manager.find_outdated_documents() == []
        entry = await manager.registry.get(normalize_path(path))
        assert entry.status == IndexStatus.INDEXED
        assert entry.modified_time == path.stat().st_mtime

    async def test_outdated_entries_are_reindexed(self, manager, provider, corpus):
        await manager.index_documents()
        _rewrite(corpus / "notes.txt", "Entirely different notes.\n")
        await manager.find_outdated_documents()
        calls = provider.total_calls

        entry = await manager.index_document(corpus / "notes.txt")

        assert entry.status == IndexStatus.INDEXED
        assert provider.total_calls == calls + 1


# ==================================================================
# Rebuild
# ==================================================================


class TestRebuild:
    async def test_full_rebuild(self, manager, store, provider):
        await manager.index_documents()
        before = {e.path: e.vector_ids for e in await manager.registry.list_entries()}
        calls = provider.total_calls

        result = await manager.rebuild()

        assert result.successful == 4
        assert provider.total_calls == calls + 4
        after = {e.path: e.vector_ids for e in await manager.registry.list_entries()}
        assert after == before
        assert (await store.collection_info(_COLL)).count == sum(len(v) for v in after.values())

    async def test_incremental_rebuild_skips_unchanged(self, manager, provider):
        await manager.index_documents()
        calls = provider.total_calls

        result = await manager.rebuild(full=False)

        assert result.successful == 4
        assert provider.total_calls == calls

    async def test_cancelled_rebuild_restores_snapshot(self, manager):
        await manager.index_documents()
        paths = [e.path for e in await manager.registry.list_entries()]
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(IndexingCancelledError):
            await manager.rebuild(cancel=cancel)

        entries = await manager.registry.list_entries()
        assert [e.path for e in entries] == paths
        # The collection was dropped, so every restored entry lost its vectors.
        assert all(e.status == IndexStatus.OUTDATED for e in entries)
        assert all(e.vector_ids == [] for e in entries)

    async def test_failed_rebuild_restores_snapshot(self, manager, store, corpus):
        await manager.index_document(corpus / "notes.txt")
        original_delete = store.delete_collection

        async def broken_delete(name):
            msg = "cannot drop collection"
            raise VectorStoreError(msg)

        store.delete_collection = broken_delete
        try:
            with pytest.raises(VectorStoreError, match="cannot drop"):
                await manager.rebuild()
        finally:
            store.delete_collection = original_delete

        entry = await manager.registry.get(normalize_path(corpus / "notes.txt"))
        assert entry.status == IndexStatus.INDEXED
        assert await _stored_ids(store, entry.vector_ids) == entry.vector_ids
