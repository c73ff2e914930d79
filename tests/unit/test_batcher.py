"""
Unit tests for Batcher thresholds, interval flushes and ownership swaps.
"""

import asyncio

import pytest

from bulk_ingest import Batcher, ClosedError, Mutation


def _m(seq: int, size: int = 10) -> Mutation:
    return Mutation.create("index", "my-index", seq, body=b"x" * size, doc_id=f"id{seq}")


@pytest.mark.asyncio
async def test_count_threshold_cuts_batch():
    batches = []
    b = Batcher(batches.append, max_items=3, flush_interval=10)

    for i in range(3):
        b.add(_m(i))

    assert [len(x) for x in batches] == [3]
    assert b.buffered == 0


@pytest.mark.asyncio
async def test_byte_threshold_cuts_batch():
    batches = []
    one = _m(0, size=100).nbytes
    b = Batcher(batches.append, max_items=1000, max_bytes=one * 2, flush_interval=10)

    b.add(_m(0, size=100))
    assert batches == []
    assert b.buffered_bytes == one
    b.add(_m(1, size=100))
    assert [len(x) for x in batches] == [2]
    assert b.buffered_bytes == 0


@pytest.mark.asyncio
async def test_oversized_mutation_goes_alone():
    batches = []
    b = Batcher(batches.append, max_items=1000, max_bytes=50, flush_interval=10)
    b.add(_m(0, size=500))
    assert [len(x) for x in batches] == [1]


@pytest.mark.asyncio
async def test_interval_flush_without_explicit_cut():
    batches = []
    b = Batcher(batches.append, max_items=3, flush_interval=0.1)

    b.add(_m(0))
    await asyncio.sleep(0.03)
    assert batches == []

    await asyncio.sleep(0.15)
    assert [len(x) for x in batches] == [1]


@pytest.mark.asyncio
async def test_stale_timer_does_not_cut_next_batch_early():
    batches = []
    b = Batcher(batches.append, max_items=100, flush_interval=0.2)

    b.add(_m(0))
    await asyncio.sleep(0.1)
    assert b.cut() == 1
    b.add(_m(1))

    await asyncio.sleep(0.15)  # first batch's timer would have fired here
    assert [len(x) for x in batches] == [1]

    await asyncio.sleep(0.15)
    assert [len(x) for x in batches] == [1, 1]


@pytest.mark.asyncio
async def test_cut_on_empty_batch_hands_nothing_over():
    batches = []
    b = Batcher(batches.append, flush_interval=10)
    assert b.cut() == 0
    assert batches == []


@pytest.mark.asyncio
async def test_closed_rejects_fresh_but_accepts_retries():
    batches = []
    b = Batcher(batches.append, max_items=2, flush_interval=10)
    b.close()

    with pytest.raises(ClosedError):
        b.add(_m(0))

    b.add(_m(1), retry=True)
    assert b.buffered == 1


@pytest.mark.asyncio
async def test_batches_keep_input_order():
    batches = []
    b = Batcher(batches.append, max_items=4, flush_interval=10)
    for i in range(8):
        b.add(_m(i))
    assert [[m.sequence for m in x] for x in batches] == [[0, 1, 2, 3], [4, 5, 6, 7]]


def test_invalid_thresholds():
    with pytest.raises(ValueError):
        Batcher(lambda _: None, max_items=0)
    with pytest.raises(ValueError):
        Batcher(lambda _: None, max_bytes=0)
    with pytest.raises(ValueError):
        Batcher(lambda _: None, flush_interval=0)


@pytest.mark.asyncio
async def test_multi_item_batches_never_exceed_max_bytes():
    batches = []
    one = _m(0, size=60).nbytes
    max_bytes = one + one // 2
    b = Batcher(batches.append, max_items=1000, max_bytes=max_bytes, flush_interval=10)

    for i in range(5):
        b.add(_m(i, size=60))
    b.cut()

    assert [len(x) for x in batches] == [1, 1, 1, 1, 1]
    assert all(sum(m.nbytes for m in x) <= max_bytes for x in batches)
    assert [m.sequence for x in batches for m in x] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_mutation_that_would_overflow_starts_next_batch():
    batches = []
    small, big = _m(0, size=10), _m(1, size=80)
    b = Batcher(batches.append, max_items=1000, max_bytes=small.nbytes + big.nbytes - 1, flush_interval=10)

    b.add(small)
    b.add(big)

    assert [[m.sequence for m in x] for x in batches] == [[0]]
    assert b.buffered == 1
    assert b.buffered_bytes == big.nbytes
