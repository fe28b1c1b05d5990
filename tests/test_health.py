import pytest

from knowledge_index.core.errors import BlobStoreError, ProviderError
from knowledge_index.core.health import (
    HEALTH_PROBE_TEXT,
    HealthCheck,
    HealthDetails,
    determine_overall_status,
)
from knowledge_index.embeddings.index import VectorIndexCache
from knowledge_index.embeddings.store import INDEX_KEY, VectorRecordStore
from knowledge_index.storage.blob_store import InMemoryBlobStore

from conftest import make_record


class UnreachableBlobStore(InMemoryBlobStore):
    async def ping(self):
        raise BlobStoreError("unreachable")

    async def read_json(self, key):
        raise BlobStoreError("unreachable")


@pytest.mark.parametrize(
    "details, expected",
    [
        (HealthDetails(store="ok", index="ok", provider="ok"), "ok"),
        (HealthDetails(store="ok", index="empty", provider="ok"), "degraded"),
        (HealthDetails(store="ok", index="ok", provider="error"), "degraded"),
        (HealthDetails(store="error", index="ok", provider="ok"), "error"),
        (HealthDetails(store="ok", index="error", provider="ok"), "error"),
    ],
)
def test_overall_status_aggregation(details, expected):
    assert determine_overall_status(details) == expected


@pytest.mark.asyncio
async def test_all_components_healthy(blob_store, index, embedder):
    await index.upsert(make_record("a", [1.0, 0.0, 0.0]))
    check = HealthCheck(blob_store, index, embedder)

    report = await check.run()

    assert report.status == "ok"
    assert report.http_status == 200
    assert report.model == "test-embedding-model"
    assert report.details.model_dump() == {
        "config": "ok",
        "store": "ok",
        "index": "ok",
        "provider": "ok",
    }
    assert embedder.calls == [[HEALTH_PROBE_TEXT]]


@pytest.mark.asyncio
async def test_empty_index_is_degraded(blob_store, index, embedder):
    report = await HealthCheck(blob_store, index, embedder).run()

    assert report.status == "degraded"
    assert report.details.index == "empty"
    assert report.http_status == 200


@pytest.mark.asyncio
async def test_provider_failure_is_degraded(blob_store, index, embedder):
    await index.upsert(make_record("a", [1.0, 0.0, 0.0]))
    embedder.error = ProviderError("HTTP 503", attempts=4, retryable=True)

    report = await HealthCheck(blob_store, index, embedder).run()

    assert report.status == "degraded"
    assert report.details.provider == "error"


@pytest.mark.asyncio
async def test_provider_check_can_be_disabled(blob_store, index, embedder):
    await index.upsert(make_record("a", [1.0, 0.0, 0.0]))

    report = await HealthCheck(blob_store, index, embedder, check_provider=False).run()

    assert report.details.provider == "ok"
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_corrupt_index_is_error(embedder):
    blobs = InMemoryBlobStore({INDEX_KEY: {"records": "nope"}})
    index = VectorIndexCache(VectorRecordStore(blobs))

    report = await HealthCheck(blobs, index, embedder).run()

    assert report.status == "error"
    assert report.details.index == "error"
    assert report.http_status == 500


@pytest.mark.asyncio
async def test_unreachable_store_is_error(embedder):
    blobs = UnreachableBlobStore()
    index = VectorIndexCache(VectorRecordStore(blobs))

    report = await HealthCheck(blobs, index, embedder).run()

    assert report.status == "error"
    assert report.details.store == "error"
    assert report.details.index == "error"
