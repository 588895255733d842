"""Tests for PineconeVectorStore — all operations mock the Pinecone SDK."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

pytest.importorskip("pinecone")

from pinecone.exceptions import PineconeException  # noqa: E402

from conftest import FAST_RETRY  # noqa: E402
from trove.exceptions import ConfigError, VectorStoreError  # noqa: E402
from trove.search.filters import and_, eq, gte  # noqa: E402
from trove.search.stores.pinecone import PineconeVectorStore  # noqa: E402
from trove.search.types import VectorRecord, VectorSearchResult  # noqa: E402

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


class _ApiError(PineconeException):
    """A Pinecone error carrying an HTTP status, like the SDK's OpenAPI errors."""

    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status


def _make_match(match_id: str, score: float, metadata: dict | None = None):
    """Create a mock Pinecone match object."""
    m = SimpleNamespace()
    m.id = match_id
    m.score = score
    m.metadata = metadata or {}
    return m


def _make_index_model(dimension: int = 4, host: str = "docs-host.pinecone.io"):
    """Create a mock Pinecone IndexModel."""
    return SimpleNamespace(name="docs", dimension=dimension, host=host, metric="cosine")


def _make_fetch_vector(vec_id: str, values: list[float], metadata: dict | None = None):
    """Create a mock Pinecone fetched vector."""
    return SimpleNamespace(id=vec_id, values=values, metadata=metadata or {})


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def mock_index():
    """A mock IndexAsyncio."""
    idx = AsyncMock()
    idx.upsert = AsyncMock(return_value=SimpleNamespace(upserted_count=1))
    idx.query = AsyncMock(return_value=SimpleNamespace(matches=[]))
    idx.delete = AsyncMock()
    idx.fetch = AsyncMock(return_value=SimpleNamespace(vectors={}))
    idx.describe_index_stats = AsyncMock()
    idx.close = AsyncMock()
    return idx


@pytest.fixture
def mock_client(mock_index):
    """A mock PineconeAsyncio client."""
    client = AsyncMock()
    client.describe_index = AsyncMock(return_value=_make_index_model())
    client.IndexAsyncio = MagicMock(return_value=mock_index)
    client.create_index = AsyncMock()
    client.delete_index = AsyncMock()
    client.list_indexes = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


@pytest.fixture
async def store(mock_client, mock_index):
    """A connected PineconeVectorStore with the ``docs`` collection open."""
    with patch("trove.search.stores.pinecone.PineconeAsyncio", return_value=mock_client):
        s = PineconeVectorStore(api_key="fake-key", retry=FAST_RETRY)
        await s.connect()
        await s.create_collection("docs", 4)
        yield s
        await s.close()


# ==================================================================
# Connect / Close
# ==================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_creates_client(self, mock_client):
        with patch(
            "trove.search.stores.pinecone.PineconeAsyncio", return_value=mock_client
        ) as factory:
            s = PineconeVectorStore(api_key="fake-key")
            await s.connect()
            factory.assert_called_once_with(api_key="fake-key")
            mock_client.list_indexes.assert_called_once()
            await s.close()
        mock_client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_releases_index_handles(self, store, mock_index):
        await store.close()
        mock_index.close.assert_called()

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, mock_client):
        s = PineconeVectorStore(api_key="k", client=mock_client)
        await s.connect()
        await s.close()
        mock_client.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_operations_before_connect_raise(self):
        s = PineconeVectorStore(api_key="k")
        with pytest.raises(VectorStoreError, match="Not connected"):
            await s.create_collection("docs", 4)

    @pytest.mark.asyncio
    async def test_operations_before_create_collection_raise(self, mock_client):
        s = PineconeVectorStore(api_key="k", client=mock_client)
        with pytest.raises(VectorStoreError, match="not open"):
            await s.upsert("docs", [VectorRecord(id="a", vector=[0.1] * 4)])

    def test_missing_sdk(self):
        with (
            patch("trove.search.stores.pinecone._HAS_PINECONE", False),
            pytest.raises(ImportError, match="pinecone is required"),
        ):
            PineconeVectorStore(api_key="k")


# ==================================================================
# Collections
# ==================================================================


class TestCollections:
    @pytest.mark.asyncio
    async def test_existing_index_is_opened(self, store, mock_client):
        mock_client.describe_index.assert_called_with("docs")
        mock_client.create_index.assert_not_called()
        mock_client.IndexAsyncio.assert_called_once_with(host="docs-host.pinecone.io")

    @pytest.mark.asyncio
    async def test_missing_index_is_created(self, mock_client):
        mock_client.describe_index.side_effect = [_ApiError(404), _make_index_model(dimension=8)]
        s = PineconeVectorStore(api_key="k", metric="dotproduct", retry=FAST_RETRY, client=mock_client)

        await s.create_collection("docs", 8)

        kwargs = mock_client.create_index.call_args.kwargs
        assert kwargs["name"] == "docs"
        assert kwargs["dimension"] == 8
        assert kwargs["metric"] == "dotproduct"
        assert mock_client.describe_index.call_count == 2

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, mock_client):
        s = PineconeVectorStore(api_key="k", retry=FAST_RETRY, client=mock_client)
        with pytest.raises(ConfigError, match="dimension 4"):
            await s.create_collection("docs", 16)

    @pytest.mark.asyncio
    async def test_delete_collection(self, store, mock_client, mock_index):
        await store.delete_collection("docs")
        mock_index.close.assert_called_once()
        mock_client.delete_index.assert_called_once_with("docs")

    @pytest.mark.asyncio
    async def test_delete_missing_collection_is_noop(self, store, mock_client):
        mock_client.delete_index.side_effect = _ApiError(404)
        await store.delete_collection("other")

    @pytest.mark.asyncio
    async def test_collection_info_uses_namespace_stats(self, store, mock_index):
        mock_index.describe_index_stats.return_value = SimpleNamespace(
            namespaces={"": SimpleNamespace(vector_count=5)},
            dimension=4,
            total_vector_count=9,
        )
        info = await store.collection_info("docs")
        assert info.count == 5
        assert info.dimension == 4
        assert info.status == "ready"

    @pytest.mark.asyncio
    async def test_collection_info_for_unopened_collection(self, store):
        info = await store.collection_info("other")
        assert info.status == "missing"


# ==================================================================
# Upsert / Search / Fetch / Delete
# ==================================================================


class TestUpsert:
    @pytest.mark.asyncio
    async def test_upsert_single(self, store, mock_index):
        record = VectorRecord(id="v1", vector=[0.1, 0.2, 0.3, 0.4], metadata={"source": "a.ts"})
        result = await store.upsert("docs", [record])

        assert result.upserted_count == 1
        vectors = mock_index.upsert.call_args.kwargs["vectors"]
        assert vectors == [{"id": "v1", "values": [0.1, 0.2, 0.3, 0.4], "metadata": {"source": "a.ts"}}]
        assert mock_index.upsert.call_args.kwargs["namespace"] == ""

    @pytest.mark.asyncio
    async def test_upsert_batch_chunks_at_1000(self, store, mock_index):
        mock_index.upsert.return_value = SimpleNamespace(upserted_count=1000)
        records = [VectorRecord(id=f"v{i}", vector=[0.1] * 4) for i in range(2500)]
        result = await store.upsert("docs", records)

        assert mock_index.upsert.call_count == 3
        assert result.upserted_count == 3000  # 1000 * 3 (mocked return)


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_basic(self, store, mock_index):
        mock_index.query.return_value = SimpleNamespace(
            matches=[
                _make_match("a", 0.95, {"content": "hello"}),
                _make_match("b", 0.80, {"content": "world"}),
            ]
        )
        results = await store.search("docs", [0.1] * 4, limit=5)

        assert all(isinstance(r, VectorSearchResult) for r in results)
        assert [(r.id, r.score) for r in results] == [("a", 0.95), ("b", 0.80)]
        kwargs = mock_index.query.call_args.kwargs
        assert kwargs["top_k"] == 5
        assert kwargs["include_metadata"] is True
        assert "filter" not in kwargs

    @pytest.mark.asyncio
    async def test_search_with_filter(self, store, mock_index):
        await store.search(
            "docs", [0.1] * 4, limit=5, filter=and_(eq("category", "code"), gte("modified_time", 10))
        )
        assert mock_index.query.call_args.kwargs["filter"] == {
            "$and": [{"category": {"$eq": "code"}}, {"modified_time": {"$gte": 10}}]
        }

    @pytest.mark.asyncio
    async def test_search_applies_threshold(self, store, mock_index):
        mock_index.query.return_value = SimpleNamespace(
            matches=[_make_match("a", 0.95), _make_match("b", 0.30)]
        )
        results = await store.search("docs", [0.1] * 4, limit=5, threshold=0.5)
        assert [r.id for r in results] == ["a"]


class TestFetchAndDelete:
    @pytest.mark.asyncio
    async def test_fetch_mixed(self, store, mock_index):
        mock_index.fetch.return_value = SimpleNamespace(
            vectors={"a": _make_fetch_vector("a", [0.1, 0.2, 0.3, 0.4], {"content": "hello"})}
        )
        results = await store.fetch("docs", ["a", "missing"])

        assert results[0] is not None
        assert results[0].vector == [0.1, 0.2, 0.3, 0.4]
        assert results[0].metadata == {"content": "hello"}
        assert results[1] is None

    @pytest.mark.asyncio
    async def test_fetch_empty_ids_skips_api(self, store, mock_index):
        assert await store.fetch("docs", []) == []
        mock_index.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_by_ids(self, store, mock_index):
        result = await store.delete("docs", ["a", "b"])
        assert result.deleted_count == 2
        mock_index.delete.assert_called_once_with(ids=["a", "b"], namespace="")


# ==================================================================
# Error translation and retries
# ==================================================================


class TestErrors:
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, store, mock_index):
        mock_index.query.side_effect = [_ApiError(503), SimpleNamespace(matches=[_make_match("a", 0.9)])]

        results = await store.search("docs", [0.1] * 4, limit=1)

        assert [r.id for r in results] == ["a"]
        assert mock_index.query.call_count == 2

    @pytest.mark.asyncio
    async def test_rate_limits_are_retried_until_budget_is_spent(self, store, mock_index):
        mock_index.query.side_effect = _ApiError(429)

        with pytest.raises(VectorStoreError) as exc_info:
            await store.search("docs", [0.1] * 4, limit=1)

        assert exc_info.value.transient
        assert mock_index.query.call_count == FAST_RETRY.max_attempts

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, store, mock_index):
        mock_index.upsert.side_effect = _ApiError(400)

        with pytest.raises(VectorStoreError, match="upsert into docs failed") as exc_info:
            await store.upsert("docs", [VectorRecord(id="a", vector=[0.1] * 4)])

        assert not exc_info.value.transient
        assert mock_index.upsert.call_count == 1

    @pytest.mark.asyncio
    async def test_connection_errors_are_transient(self, store, mock_index):
        mock_index.delete.side_effect = [ConnectionRefusedError("refused"), None]
        result = await store.delete("docs", ["a"])
        assert result.deleted_count == 1
        assert mock_index.delete.call_count == 2
