"""Tests for LocalVectorStore — in-process usearch HNSW vector store."""

from __future__ import annotations

from pathlib import Path

import pytest

from trove.exceptions import ConfigError, VectorStoreError
from trove.search.filters import eq, in_
from trove.search.protocols import SupportsPersistence, VectorStore
from trove.search.stores.local import LocalVectorStore
from trove.search.types import DeleteResult, UpsertResult, VectorRecord

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

_DIM = 8
_COLL = "docs"


def _axis(i: int, dim: int = _DIM) -> list[float]:
    """Unit vector along axis *i*."""
    vec = [0.0] * dim
    vec[i] = 1.0
    return vec


def _blend(i: int, j: int, weight: float) -> list[float]:
    vec = [0.0] * _DIM
    vec[i] = 1.0
    vec[j] = weight
    return vec


def _record(record_id: str, vector: list[float], **metadata) -> VectorRecord:
    return VectorRecord(id=record_id, vector=vector, metadata={"content": record_id, **metadata})


@pytest.fixture
async def store() -> LocalVectorStore:
    s = LocalVectorStore()
    await s.create_collection(_COLL, _DIM)
    return s


# ==================================================================
# Collections
# ==================================================================


class TestCollections:
    def test_implements_protocols(self):
        s = LocalVectorStore()
        assert isinstance(s, VectorStore)
        assert isinstance(s, SupportsPersistence)

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("a", _axis(0))])
        await store.create_collection(_COLL, _DIM)
        assert (await store.collection_info(_COLL)).count == 1

    @pytest.mark.asyncio
    async def test_dimension_conflict(self, store: LocalVectorStore):
        with pytest.raises(ConfigError, match="dimension 8"):
            await store.create_collection(_COLL, 16)

    @pytest.mark.asyncio
    async def test_unknown_collection(self, store: LocalVectorStore):
        with pytest.raises(VectorStoreError, match="does not exist"):
            await store.upsert("nope", [_record("a", _axis(0))])

    @pytest.mark.asyncio
    async def test_delete_collection(self, store: LocalVectorStore):
        await store.delete_collection(_COLL)
        info = await store.collection_info(_COLL)
        assert info.status == "missing"
        assert info.count == 0

    @pytest.mark.asyncio
    async def test_collection_info(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("a", _axis(0)), _record("b", _axis(1))])
        info = await store.collection_info(_COLL)
        assert info.count == 2
        assert info.dimension == _DIM
        assert info.status == "ready"
        assert info.metadata["metric"] == "cosine"


# ==================================================================
# Upsert / fetch / delete
# ==================================================================


class TestWrites:
    @pytest.mark.asyncio
    async def test_upsert_batch(self, store: LocalVectorStore):
        result = await store.upsert(_COLL, [_record(f"r{i}", _axis(i)) for i in range(5)])
        assert isinstance(result, UpsertResult)
        assert result.upserted_count == 5

    @pytest.mark.asyncio
    async def test_upsert_overwrites_same_id(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("a", _axis(0), version=1)])
        await store.upsert(_COLL, [_record("a", _axis(1), version=2)])

        info = await store.collection_info(_COLL)
        assert info.count == 1
        [fetched] = await store.fetch(_COLL, ["a"])
        assert fetched is not None
        assert fetched.metadata["version"] == 2
        assert fetched.vector == _axis(1)

    @pytest.mark.asyncio
    async def test_wrong_dimension_rejected(self, store: LocalVectorStore):
        with pytest.raises(VectorStoreError, match="expects 8"):
            await store.upsert(_COLL, [_record("a", [1.0, 0.0])])

    @pytest.mark.asyncio
    async def test_fetch_preserves_order_and_missing(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("a", _axis(0)), _record("b", _axis(1))])
        fetched = await store.fetch(_COLL, ["b", "missing", "a"])
        assert [r.id if r else None for r in fetched] == ["b", None, "a"]

    @pytest.mark.asyncio
    async def test_delete(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("a", _axis(0)), _record("b", _axis(1))])
        result = await store.delete(_COLL, ["a", "missing"])
        assert isinstance(result, DeleteResult)
        assert result.deleted_count == 1
        assert await store.fetch(_COLL, ["a"]) == [None]
        hits = await store.search(_COLL, _axis(0), limit=5)
        assert [h.id for h in hits] == ["b"]


# ==================================================================
# Search
# ==================================================================


class TestSearch:
    @pytest.mark.asyncio
    async def test_nearest_first(self, store: LocalVectorStore):
        await store.upsert(
            _COLL,
            [
                _record("exact", _axis(0)),
                _record("close", _blend(0, 1, 0.5)),
                _record("far", _axis(2)),
            ],
        )
        hits = await store.search(_COLL, _axis(0), limit=2)

        assert [h.id for h in hits] == ["exact", "close"]
        assert hits[0].score == pytest.approx(1.0, abs=1e-5)
        assert "id" not in hits[0].metadata
        assert hits[0].metadata["content"] == "exact"

    @pytest.mark.asyncio
    async def test_threshold(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("exact", _axis(0)), _record("far", _axis(2))])
        hits = await store.search(_COLL, _axis(0), limit=5, threshold=0.9)
        assert [h.id for h in hits] == ["exact"]

    @pytest.mark.asyncio
    async def test_threshold_with_no_hits(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("far", _axis(2))])
        assert await store.search(_COLL, _axis(0), limit=5, threshold=0.9) == []

    @pytest.mark.asyncio
    async def test_filter_scans_beyond_limit(self, store: LocalVectorStore):
        records = [_record(f"doc{i}", _blend(0, i, 0.1), category="documentation") for i in range(1, 7)]
        records.append(_record("code", _axis(7), category="code"))
        await store.upsert(_COLL, records)

        hits = await store.search(_COLL, _axis(0), limit=1, filter=eq("category", "code"))
        assert [h.id for h in hits] == ["code"]

    @pytest.mark.asyncio
    async def test_filter_on_list_metadata(self, store: LocalVectorStore):
        await store.upsert(
            _COLL,
            [_record("a", _axis(0), tags=["bug"]), _record("b", _axis(0), tags=["perf"])],
        )
        hits = await store.search(_COLL, _axis(0), limit=5, filter=in_("tags", ["bug"]))
        assert [h.id for h in hits] == ["a"]

    @pytest.mark.asyncio
    async def test_zero_vectors_are_never_returned(self, store: LocalVectorStore):
        await store.upsert(_COLL, [_record("zero", [0.0] * _DIM), _record("a", _axis(0))])
        hits = await store.search(_COLL, _axis(0), limit=5)
        assert [h.id for h in hits] == ["a"]

    @pytest.mark.asyncio
    async def test_skipped_zero_vectors_do_not_use_up_limit(self, store: LocalVectorStore):
        zeros = [_record(f"zero-{i}", [0.0] * _DIM) for i in range(4)]
        opposite = [
            _record("b", [-1.0, 0.2] + [0.0] * (_DIM - 2)),
            _record("c", [-1.0] + [0.0] * (_DIM - 1)),
        ]
        await store.upsert(_COLL, [*zeros, *opposite])

        hits = await store.search(_COLL, _axis(0), limit=2)

        assert sorted(h.id for h in hits) == ["b", "c"]

    @pytest.mark.asyncio
    async def test_skipped_low_scores_do_not_use_up_limit(self, store: LocalVectorStore):
        await store.upsert(
            _COLL,
            [
                _record("a", _axis(0)),
                _record("b", _blend(0, 1, 0.5)),
                _record("c", _axis(1)),
                _record("d", _axis(2)),
            ],
        )

        hits = await store.search(_COLL, _axis(0), limit=3, threshold=0.5)

        assert [h.id for h in hits] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_collection(self, store: LocalVectorStore):
        assert await store.search(_COLL, _axis(0), limit=5) == []


# ==================================================================
# Persistence
# ==================================================================


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_load_round_trip(self, store: LocalVectorStore, tmp_path: Path):
        await store.upsert(_COLL, [_record("a", _axis(0), category="code"), _record("b", _axis(1))])
        await store.delete(_COLL, ["b"])
        store.save(str(tmp_path))

        assert (tmp_path / "collections.json").exists()
        assert (tmp_path / "docs.usearch").exists()

        restored = LocalVectorStore()
        restored.load(str(tmp_path))

        info = await restored.collection_info(_COLL)
        assert info.count == 1
        assert info.dimension == _DIM
        [fetched] = await restored.fetch(_COLL, ["a"])
        assert fetched is not None
        assert fetched.vector == pytest.approx(_axis(0))
        hits = await restored.search(_COLL, _axis(0), limit=1)
        assert hits[0].id == "a"
        assert hits[0].metadata["category"] == "code"

    @pytest.mark.asyncio
    async def test_writes_continue_after_load(self, store: LocalVectorStore, tmp_path: Path):
        await store.upsert(_COLL, [_record("a", _axis(0))])
        store.save(str(tmp_path))

        restored = LocalVectorStore()
        restored.load(str(tmp_path))
        await restored.upsert(_COLL, [_record("c", _axis(2))])

        assert (await restored.collection_info(_COLL)).count == 2
        hits = await restored.search(_COLL, _axis(2), limit=1)
        assert hits[0].id == "c"

    def test_load_without_manifest_is_empty(self, tmp_path: Path):
        s = LocalVectorStore()
        s.load(str(tmp_path))
        assert s._collections == {}
