"""
Unit tests for Dead Letter Queue (DLQ).
"""

import asyncio

import pytest

from bulk_ingest import DeadLetterQueue, Mutation
from bulk_ingest.errors import DocumentError


def _m(seq: int, body: bytes = b'{"n":1}') -> Mutation:
    return Mutation.create("index", "my-index", seq, body=body, doc_id=f"id{seq}")


@pytest.mark.asyncio
async def test_file_dlq_save_and_replay(tmp_path):
    p = tmp_path / "dlq.ndjson"
    dlq = DeadLetterQueue(p)

    await dlq.save([_m(1), _m(2)], RuntimeError("boom"), {"k": "v"})
    await dlq.save([_m(3)], DocumentError(400, "mapper_parsing_exception"), {})

    recs = await dlq.replay(10)
    assert len(recs) == 2
    assert recs[0].metadata.get("k") == "v"
    assert len(recs[0].items) == 2
    assert "boom" in recs[0].error.lower()
    assert recs[1].error.startswith("DocumentError")


@pytest.mark.asyncio
async def test_submissions_round_trip_binary_bodies(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    raw = b'{"bin":"\xff\xfe"}'
    delete = Mutation.create("delete", "my-index", 9, doc_id="gone")

    await dlq.save([_m(1, raw), delete], RuntimeError("x"))

    (rec,) = await dlq.replay()
    first, second = rec.submissions()
    assert first == {"operation": "index", "index": "my-index", "doc_id": "id1", "body": raw}
    assert second == {"operation": "delete", "index": "my-index", "doc_id": "gone", "body": None}


@pytest.mark.asyncio
async def test_dlq_replay_limit(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    for i in range(10):
        await dlq.save([_m(i)], RuntimeError(f"error-{i}"))

    recs = await dlq.replay(5)
    assert len(recs) == 5


@pytest.mark.asyncio
async def test_dlq_replay_empty(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "nonexistent.ndjson", mkdirs=False)
    assert await dlq.replay(10) == []


@pytest.mark.asyncio
async def test_dlq_concurrent_writes(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "nested" / "dlq.ndjson")

    await asyncio.gather(*[dlq.save([_m(i)], RuntimeError(f"error-{i}")) for i in range(20)])

    recs = await dlq.replay(100)
    assert len(recs) == 20
