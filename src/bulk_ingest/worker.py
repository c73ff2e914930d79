from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from loguru import logger

from .errors import TransportError
from .submitter import Submitter
from .types import ItemResult, ItemStatus, Mutation

ResultsHandler = Callable[[Sequence[Mutation], Sequence[ItemResult]], None]
TakenCallback = Callable[[], Awaitable[None]]


class SubmitWorker:
    """Drains ready batches from the queue and feeds results back to the client."""

    def __init__(
        self,
        worker_id: int,
        queue: "asyncio.Queue[List[Mutation]]",
        submitter: Submitter,
        on_results: ResultsHandler,
        on_taken: Optional[TakenCallback] = None,
    ):
        self.worker_id = worker_id
        self._queue = queue
        self._submitter = submitter
        self._on_results = on_results
        self._on_taken = on_taken
        self._task: Optional[asyncio.Task] = None

    @property
    def alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"ingest-worker-{self.worker_id}")

    async def stop(self) -> None:
        """Cancel the worker; an in-flight bulk call is abandoned."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        logger.debug(f"Worker {self.worker_id} started")
        while True:
            batch = await self._queue.get()
            try:
                results = await self._submit(batch)
                try:
                    self._on_results(batch, results)
                except Exception:
                    logger.exception(f"Worker {self.worker_id} failed routing results for {len(batch)} mutations")
            finally:
                self._queue.task_done()

    async def _submit(self, batch: List[Mutation]) -> List[ItemResult]:
        try:
            if self._on_taken is not None:
                await self._on_taken()
            return await self._submitter.submit(batch)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(f"Worker {self.worker_id} failed submitting a batch of {len(batch)}")
            error = TransportError(f"{type(exc).__name__}: {exc}")
            return [
                ItemResult(m.sequence, ItemStatus.RETRYABLE_FAILURE, error, doc_id=m.doc_id)
                for m in batch
            ]
