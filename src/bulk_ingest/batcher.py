from __future__ import annotations

import asyncio
import threading
from typing import Callable, List, Optional

from loguru import logger

from .errors import ClosedError
from .types import Mutation

BatchHandler = Callable[[List[Mutation]], None]


class Batcher:
    """
    Accumulates mutations into bounded batches.

    A batch is cut when it reaches ``max_items`` mutations, when its
    accumulated ``nbytes`` reaches ``max_bytes``, or ``flush_interval``
    seconds after its first mutation arrived. The open batch is the only
    state shared between callers and the flush timer; it is replaced by a
    fresh list under ``_lock`` and the old list is handed to ``on_batch``.

    Usage:
        batcher = Batcher(queue.put_nowait, max_items=500, max_bytes=5_000_000, flush_interval=1.0)
        batcher.add(mutation)   # never waits on I/O
        batcher.cut()           # force a cutover
    """

    def __init__(
        self,
        on_batch: BatchHandler,
        *,
        max_items: int = 1000,
        max_bytes: int = 5 * 1024 * 1024,
        flush_interval: float = 1.0,
    ):
        if max_items <= 0:
            raise ValueError("max_items must be > 0")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")

        self._on_batch = on_batch
        self._max_items = max_items
        self._max_bytes = max_bytes
        self._flush_interval = flush_interval

        self._lock = threading.Lock()
        self._current: List[Mutation] = []
        self._bytes = 0
        self._generation = 0  # bumps on every swap so stale timers do nothing
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed = False

    # --------------------------- public API

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def buffered(self) -> int:
        return len(self._current)

    @property
    def buffered_bytes(self) -> int:
        return self._bytes

    def add(self, mutation: Mutation, *, retry: bool = False) -> None:
        """Append to the open batch; cut it if a threshold is reached.

        A mutation that would push a non-empty batch past ``max_bytes`` starts
        the next batch instead. A single mutation larger than ``max_bytes``
        goes out alone. Retried mutations are accepted after close() so the
        client can drain.
        """
        ready: List[List[Mutation]] = []
        with self._lock:
            if self._closed and not retry:
                raise ClosedError("ingest client is closed")
            if self._current and self._bytes + mutation.nbytes > self._max_bytes:
                ready.append(self._swap_locked())
            if not self._current:
                self._arm_timer_locked()
            self._current.append(mutation)
            self._bytes += mutation.nbytes
            if len(self._current) >= self._max_items or self._bytes >= self._max_bytes:
                ready.append(self._swap_locked())
        for batch in ready:
            self._hand_off(batch, "threshold")

    def cut(self) -> int:
        """Hand over the open batch now. Returns the number of mutations handed over."""
        with self._lock:
            batch = self._swap_locked()
        if batch:
            self._hand_off(batch, "forced")
        return len(batch)

    def close(self) -> None:
        """Stop accepting fresh mutations."""
        with self._lock:
            self._closed = True

    def discard(self) -> List[Mutation]:
        """Drop whatever is buffered without handing it over."""
        with self._lock:
            return self._swap_locked()

    # --------------------------- internals

    def _swap_locked(self) -> List[Mutation]:
        batch, self._current = self._current, []
        self._bytes = 0
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return batch

    def _arm_timer_locked(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._flush_interval, self._on_timer, self._generation)

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._current:
                return
            self._timer = None
            batch = self._swap_locked()
        self._hand_off(batch, "interval")

    def _hand_off(self, batch: List[Mutation], reason: str) -> None:
        logger.debug(f"Batch cut ({reason}): {len(batch)} mutations")
        self._on_batch(batch)
