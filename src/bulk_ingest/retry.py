from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from time import monotonic
from typing import Callable, Dict, List, Optional

from loguru import logger

from .errors import IngestError, RetryExhaustedError
from .metrics import INGEST_RETRIES_TOTAL
from .policy import RetryPolicy
from .types import ItemResult, ItemStatus, Mutation

Requeue = Callable[[Mutation], None]
Resolve = Callable[[Mutation, ItemResult], None]


@dataclass
class RetryState:
    """Attempt bookkeeping for one mutation between its failed attempts."""

    sequence: int
    attempts: int = 0
    next_eligible_at: float = 0.0
    last_error: Optional[IngestError] = None
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def waiting(self) -> bool:
        return self.timer is not None


class RetryCoordinator:
    """
    Routes each ItemResult to its final state or back into the Batcher.

    RetryState records live in a map keyed by sequence number and are dropped
    as soon as the mutation resolves. A retried mutation is re-added through
    ``requeue`` once its backoff delay has elapsed; ordering relative to fresh
    mutations is not preserved.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        requeue: Requeue,
        resolve: Resolve,
        client_id: str = "default",
    ):
        self._policy = policy
        self._requeue = requeue
        self._resolve = resolve
        self._client_id = client_id
        self._states: Dict[int, RetryState] = {}

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def waiting(self) -> int:
        """Mutations sitting out a backoff delay."""
        return sum(1 for s in self._states.values() if s.waiting)

    def attempts(self, sequence: int) -> int:
        state = self._states.get(sequence)
        return state.attempts if state else 0

    def handle(self, result: ItemResult, mutation: Mutation) -> None:
        if result.status is ItemStatus.RETRYABLE_FAILURE:
            self._on_retryable(result, mutation)
            return

        state = self._states.pop(mutation.sequence, None)
        attempts = (state.attempts if state else 0) + 1
        self._resolve(mutation, replace(result, attempts=attempts))

    def cancel_all(self) -> List[int]:
        """Cancel every scheduled retry and forget all state; returns the affected sequences."""
        cancelled = []
        for seq, state in self._states.items():
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
                cancelled.append(seq)
        self._states.clear()
        return cancelled

    # --------------------------- internals

    def _on_retryable(self, result: ItemResult, mutation: Mutation) -> None:
        state = self._states.get(mutation.sequence)
        if state is None:
            state = self._states[mutation.sequence] = RetryState(mutation.sequence)
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        state.attempts += 1
        state.last_error = result.error

        if self._policy.exhausted(state.attempts):
            del self._states[mutation.sequence]
            logger.warning(
                f"Mutation seq={mutation.sequence} exhausted {state.attempts} attempts: {result.error}"
            )
            self._resolve(
                mutation,
                replace(
                    result,
                    status=ItemStatus.TERMINAL_FAILURE,
                    error=RetryExhaustedError(state.attempts, result.error),
                    attempts=state.attempts,
                ),
            )
            return

        delay = self._policy.next_backoff(state.attempts)
        state.next_eligible_at = monotonic() + delay
        state.timer = asyncio.get_running_loop().call_later(delay, self._release, mutation)
        INGEST_RETRIES_TOTAL.labels(self._client_id).inc()
        logger.debug(
            f"Retrying seq={mutation.sequence} in {delay * 1000:.0f}ms "
            f"(attempt {state.attempts + 1}/{self._policy.max_attempts}): {result.error}"
        )

    def _release(self, mutation: Mutation) -> None:
        state = self._states.get(mutation.sequence)
        if state is None:
            return
        state.timer = None
        self._requeue(mutation)
