"""
Unit tests for the OpenSearch BulkStore adapter (client mocked).
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from opensearchpy import exceptions as os_exc

from bulk_ingest import IngestClient, TransportError
from bulk_ingest.settings import OpenSearchSettings
from bulk_ingest.stores import OpenSearchStore, map_transport_error


def _client() -> MagicMock:
    client = MagicMock()
    client.bulk = AsyncMock(return_value={"errors": False, "items": []})
    client.info = AsyncMock(return_value={"version": {"distribution": "opensearch", "number": "2.11.0"}})
    client.close = AsyncMock()
    client.indices.exists = AsyncMock(return_value=False)
    client.indices.create = AsyncMock()
    client.indices.delete = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_bulk_passes_payload_and_refresh():
    client = _client()
    store = OpenSearchStore(client, refresh="wait_for")

    await store.bulk(b'{"delete":{"_index":"i","_id":"1"}}\n')

    client.bulk.assert_awaited_once_with(
        body=b'{"delete":{"_index":"i","_id":"1"}}\n', params={"refresh": "wait_for"}
    )


@pytest.mark.asyncio
async def test_bulk_connection_error_becomes_transport_error():
    client = _client()
    client.bulk.side_effect = os_exc.ConnectionError("N/A", "refused", Exception("refused"))
    store = OpenSearchStore(client)

    with pytest.raises(TransportError) as ei:
        await store.bulk(b"x\n")
    assert ei.value.status_code is None


@pytest.mark.asyncio
async def test_bulk_http_error_keeps_status():
    client = _client()
    client.bulk.side_effect = os_exc.TransportError(429, "too_many_requests", {})
    store = OpenSearchStore(client)

    with pytest.raises(TransportError) as ei:
        await store.bulk(b"x\n")
    assert ei.value.status_code == 429


def test_map_transport_error_variants():
    assert "timeout" in str(map_transport_error(os_exc.ConnectionTimeout("TIMEOUT", "slow", Exception())))
    assert map_transport_error(os_exc.TransportError(503, "unavailable", {})).status_code == 503
    assert isinstance(map_transport_error(ValueError("x")), TransportError)


@pytest.mark.asyncio
async def test_ensure_index_creates_when_missing():
    client = _client()
    store = OpenSearchStore(client)

    created = await store.ensure_index(
        "my-index",
        settings={"number_of_shards": 2, "number_of_replicas": 1},
        mappings={"properties": {"age": {"type": "integer"}}},
    )

    assert created
    client.indices.create.assert_awaited_once_with(
        index="my-index",
        body={
            "settings": {"number_of_shards": 2, "number_of_replicas": 1},
            "mappings": {"properties": {"age": {"type": "integer"}}},
        },
    )


@pytest.mark.asyncio
async def test_ensure_index_skips_existing():
    client = _client()
    client.indices.exists.return_value = True
    store = OpenSearchStore(client)

    assert not await store.ensure_index("my-index")
    client.indices.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_index_missing_ok():
    client = _client()
    client.indices.delete.side_effect = os_exc.NotFoundError(404, "index_not_found_exception", {})
    store = OpenSearchStore(client)

    assert await store.delete_index("gone") is False
    with pytest.raises(os_exc.NotFoundError):
        await store.delete_index("gone", missing_ok=False)


def test_from_settings_builds_async_client():
    store = OpenSearchStore.from_settings(
        OpenSearchSettings(_env_file=None, hosts="http://localhost:9200", use_ssl=False, refresh="true")
    )
    assert store.client is not None
    assert store._refresh == "true"


@pytest.mark.asyncio
async def test_ingest_client_over_opensearch_store():
    client = _client()

    async def _bulk(body, params):
        lines = body.decode().splitlines()
        return {
            "errors": False,
            "items": [{"index": {"_index": "my-index", "_id": f"id{i}", "status": 201}} for i in range(len(lines) // 2)],
        }

    client.bulk.side_effect = _bulk
    store = OpenSearchStore(client)

    async with IngestClient(store, client_id="os-test") as ingest:
        handles = [ingest.submit("index", "my-index", {"n": i}, doc_id=f"id{i}") for i in range(3)]

    assert all(h.result().ok for h in handles)
    client.bulk.assert_awaited_once()
