from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from .errors import DocumentError

ItemClassifier = Callable[[DocumentError], bool]

RETRYABLE_STATUSES = frozenset({409, 429, 500, 502, 503, 504})
RETRYABLE_ERROR_TYPES = ("rejected_execution", "circuit_breaking", "unavailable_shards", "timeout")


def default_retry_classifier(error: DocumentError) -> bool:
    """Heuristic retryable classifier for per-item bulk errors.

    Version conflicts, throttling and shard unavailability are worth another
    attempt; mapping/parse failures and missing documents are not.
    """
    if error.status in RETRYABLE_STATUSES:
        return True
    kind = (error.error_type or "").lower()
    return any(token in kind for token in RETRYABLE_ERROR_TYPES)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with symmetric jitter.

    ``max_attempts`` counts every submission of a mutation, the first one
    included. ``jitter`` is a fraction: 0.2 spreads each delay over +/-20%.
    """

    max_attempts: int = 5
    initial_backoff_ms: int = 100
    max_backoff_ms: int = 10_000
    backoff_multiplier: float = 2.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")

    def next_backoff_ms(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number ``attempt`` (1-based)."""
        exp = max(0, attempt - 1)
        raw = min(self.initial_backoff_ms * (self.backoff_multiplier**exp), self.max_backoff_ms)
        if self.jitter:
            raw *= 1.0 + self.rng.uniform(-self.jitter, self.jitter)
        return max(0.0, min(raw, float(self.max_backoff_ms)))

    def next_backoff(self, attempt: int) -> float:
        """Same as next_backoff_ms, in seconds."""
        return self.next_backoff_ms(attempt) / 1000.0

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
