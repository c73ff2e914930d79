"""
IngestClient: the public facade over Batcher -> SubmitWorker pool -> Submitter
-> RetryCoordinator.

Usage:
    store = OpenSearchStore.from_settings(get_opensearch_settings())
    async with IngestClient(store, IngestSettings(max_batch_items=500)) as client:
        handle = client.submit("index", "my-index", {"title": "Document 1"}, doc_id="id1")
        result = await handle
        result.raise_for_error()
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Dict, Generator, List, Optional, Sequence, Set, Tuple, Union

from loguru import logger

from .batcher import Batcher
from .dlq import DeadLetterQueue
from .errors import ClosedError, ShutdownTimeoutError
from .metrics import INGEST_ITEMS_TOTAL, INGEST_PENDING
from .policy import ItemClassifier
from .retry import RetryCoordinator
from .settings import IngestSettings
from .submitter import Submitter
from .types import Body, BulkStore, ItemResult, ItemStatus, Mutation, OperationType
from .worker import SubmitWorker


class ResultHandle:
    """Resolved exactly once with the mutation's final ItemResult.

    Awaiting the handle never raises for store-side failures; inspect
    ``result.ok`` or call ``result.raise_for_error()``.
    """

    __slots__ = ("_mutation", "_future")

    def __init__(self, mutation: Mutation, future: "asyncio.Future[ItemResult]"):
        self._mutation = mutation
        self._future = future

    @property
    def sequence(self) -> int:
        return self._mutation.sequence

    @property
    def mutation(self) -> Mutation:
        return self._mutation

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> ItemResult:
        """Final result; raises asyncio.InvalidStateError if still pending."""
        return self._future.result()

    async def wait(self, timeout: Optional[float] = None) -> ItemResult:
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)

    def __await__(self) -> Generator[Any, None, ItemResult]:
        return asyncio.shield(self._future).__await__()

    def __repr__(self) -> str:
        state = self._future.result().status.value if self._future.done() else "pending"
        return f"ResultHandle(seq={self.sequence}, {state})"


@dataclass(frozen=True)
class IngestStats:
    """Point-in-time counters; cheap to take at any moment."""

    submitted: int
    succeeded: int
    failed: int
    pending: int
    retrying: int
    buffered: int
    batches_sent: int
    workers_alive: int
    closed: bool


class IngestClient:
    """
    Accepts document mutations one at a time and ingests them in bulk.

    ``submit`` only touches the Batcher and returns a ResultHandle right
    away. A fixed pool of SubmitWorker tasks drains ready batches, and the
    RetryCoordinator either resolves each item or schedules it for another
    batch. Each instance owns its pipeline; nothing is shared across clients.
    """

    def __init__(
        self,
        store: BulkStore,
        settings: Optional[IngestSettings] = None,
        *,
        classify_retryable: Optional[ItemClassifier] = None,
        dead_letter: Optional[DeadLetterQueue] = None,
        client_id: str = "ingest",
    ):
        self._settings = settings or IngestSettings()
        self._client_id = client_id
        self._dlq = dead_letter

        self._queue: "asyncio.Queue[List[Mutation]]" = asyncio.Queue()
        self._batcher = Batcher(
            self._enqueue_batch,
            max_items=self._settings.max_batch_items,
            max_bytes=self._settings.max_batch_bytes,
            flush_interval=self._settings.flush_interval,
        )
        self._submitter = Submitter(store, classify=classify_retryable, client_id=client_id)
        self._retry = RetryCoordinator(
            self._settings.retry_policy(),
            requeue=self._requeue,
            resolve=self._resolve,
            client_id=client_id,
        )
        self._workers = [
            SubmitWorker(
                i,
                self._queue,
                self._submitter,
                self._on_results,
                on_taken=self._mark_taken,
            )
            for i in range(self._settings.workers)
        ]

        self._seq = itertools.count(1)
        self._pending: Dict[int, Tuple[Mutation, "asyncio.Future[ItemResult]"]] = {}
        self._background: Set[asyncio.Task] = set()

        self._submitted = 0
        self._succeeded = 0
        self._failed = 0
        self._batches_enqueued = 0
        self._batches_taken = 0
        self._taken_cond: Optional[asyncio.Condition] = None

        self._started = False
        self._closing = False
        self._closed = False

    # --------------------------- lifecycle

    async def __aenter__(self) -> "IngestClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._taken_cond = asyncio.Condition()
        for w in self._workers:
            w.start()
        logger.info(
            f"IngestClient '{self._client_id}' started: workers={len(self._workers)} "
            f"max_items={self._settings.max_batch_items} "
            f"flush_interval={self._settings.flush_interval}s"
        )

    # --------------------------- public API

    @property
    def settings(self) -> IngestSettings:
        return self._settings

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(
        self,
        operation: Union[OperationType, str],
        index: str,
        body: Optional[Body] = None,
        doc_id: Optional[str] = None,
    ) -> ResultHandle:
        """Queue one mutation. Never waits on I/O.

        Raises:
            ClosedError: close() has been called
            ValueError: body missing for index/update, or doc_id missing for update/delete
        """
        if self._closing:
            raise ClosedError("ingest client is closed")
        if not self._started:
            raise RuntimeError("IngestClient.start() must be awaited before submit()")
        mutation = Mutation.create(operation, index, next(self._seq), body=body, doc_id=doc_id)
        future: "asyncio.Future[ItemResult]" = asyncio.get_running_loop().create_future()
        self._batcher.add(mutation)
        self._pending[mutation.sequence] = (mutation, future)
        self._submitted += 1
        INGEST_PENDING.labels(self._client_id).set(len(self._pending))
        return ResultHandle(mutation, future)

    async def flush(self) -> None:
        """Cut the open batch and wait until every queued batch has reached the Submitter.

        Raises:
            ClosedError: close() has been called
        """
        if self._closing:
            raise ClosedError("ingest client is closed")
        if not self._started or self._taken_cond is None:
            raise RuntimeError("IngestClient.start() must be awaited before flush()")
        self._batcher.cut()
        target = self._batches_enqueued
        async with self._taken_cond:
            await self._taken_cond.wait_for(lambda: self._batches_taken >= target)

    async def close(self, timeout: Optional[float] = None) -> None:
        """Flush, wait for every pending mutation to resolve, then stop the workers.

        Mutations still unresolved after ``timeout`` (default
        ``settings.shutdown_timeout``) resolve with ShutdownTimeoutError.
        Safe to call more than once.
        """
        if self._closing:
            return
        self._closing = True
        self._batcher.close()
        timeout = self._settings.shutdown_timeout if timeout is None else timeout
        logger.info(f"IngestClient '{self._client_id}' closing: {len(self._pending)} pending")

        if self._started:
            self._batcher.cut()
            futures = [f for _, f in self._pending.values()]
            if futures:
                _, not_done = await asyncio.wait(futures, timeout=timeout)
                if not_done:
                    self._expire_pending()

            for w in self._workers:
                await w.stop()
            if self._background:
                await asyncio.gather(*self._background, return_exceptions=True)

        self._closed = True
        stats = self.stats()
        logger.info(
            f"IngestClient '{self._client_id}' closed: succeeded={stats.succeeded} "
            f"failed={stats.failed} batches={stats.batches_sent}"
        )

    def stats(self) -> IngestStats:
        return IngestStats(
            submitted=self._submitted,
            succeeded=self._succeeded,
            failed=self._failed,
            pending=len(self._pending),
            retrying=self._retry.waiting,
            buffered=self._batcher.buffered,
            batches_sent=self._batches_taken,
            workers_alive=sum(1 for w in self._workers if w.alive),
            closed=self._closed,
        )

    # --------------------------- pipeline callbacks

    def _enqueue_batch(self, batch: List[Mutation]) -> None:
        self._batches_enqueued += 1
        self._queue.put_nowait(batch)

    async def _mark_taken(self) -> None:
        assert self._taken_cond is not None
        async with self._taken_cond:
            self._batches_taken += 1
            self._taken_cond.notify_all()

    def _on_results(self, batch: Sequence[Mutation], results: Sequence[ItemResult]) -> None:
        for mutation, result in zip(batch, results):
            if mutation.sequence not in self._pending:
                # already expired by close()
                continue
            self._retry.handle(result, mutation)

    def _requeue(self, mutation: Mutation) -> None:
        if mutation.sequence in self._pending:
            self._batcher.add(mutation, retry=True)

    def _resolve(self, mutation: Mutation, result: ItemResult) -> None:
        entry = self._pending.pop(mutation.sequence, None)
        if entry is None:
            return
        _, future = entry
        INGEST_PENDING.labels(self._client_id).set(len(self._pending))

        if result.ok:
            self._succeeded += 1
            INGEST_ITEMS_TOTAL.labels(self._client_id, "success").inc()
        else:
            self._failed += 1
            INGEST_ITEMS_TOTAL.labels(self._client_id, "failure").inc()
            logger.debug(f"Mutation seq={mutation.sequence} failed terminally: {result.error}")
            if self._dlq is not None and result.error is not None:
                self._spawn(self._dead_letter(mutation, result))

        if not future.done():
            future.set_result(result)

    def _expire_pending(self) -> None:
        expired = [(m, self._retry.attempts(m.sequence)) for m, _ in self._pending.values()]
        self._retry.cancel_all()
        self._batcher.discard()
        logger.warning(
            f"IngestClient '{self._client_id}' shutdown timeout: "
            f"{len(expired)} mutations left unresolved"
        )
        for mutation, attempts in expired:
            self._resolve(
                mutation,
                ItemResult(
                    mutation.sequence,
                    ItemStatus.TERMINAL_FAILURE,
                    ShutdownTimeoutError(f"seq={mutation.sequence} unresolved at shutdown"),
                    attempts=attempts,
                    doc_id=mutation.doc_id,
                ),
            )

    async def _dead_letter(self, mutation: Mutation, result: ItemResult) -> None:
        assert self._dlq is not None and result.error is not None
        try:
            await self._dlq.save(
                [mutation],
                result.error,
                {"client": self._client_id, "attempts": result.attempts},
            )
        except OSError as exc:
            logger.error(f"DLQ write failed for seq={mutation.sequence}: {exc}")

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
