"""
Custom exceptions for the bulk ingestion client.

Every caller-visible failure is scoped to one mutation and travels on that
mutation's ItemResult; none of these are raised out of the worker pool.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class IngestError(Exception):
    """Base error for the ingestion client."""

    pass


class TransportError(IngestError):
    """Whole-request failure talking to the store (connection, timeout, 5xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DocumentError(IngestError):
    """Per-item failure reported inside a bulk response."""

    def __init__(
        self,
        status: int,
        error_type: Optional[str] = None,
        reason: Optional[str] = None,
        *,
        index: Optional[str] = None,
        doc_id: Optional[str] = None,
    ):
        self.status = status
        self.error_type = error_type
        self.reason = reason
        self.index = index
        self.doc_id = doc_id
        detail = error_type or "error"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(f"[{status}] {detail} (index={index}, id={doc_id})")

    @classmethod
    def from_item(cls, details: Mapping[str, Any]) -> "DocumentError":
        """Build from one bulk response item (``{"status": ..., "error": ...}``)."""
        error = details.get("error")
        if isinstance(error, Mapping):
            error_type = error.get("type")
            reason = error.get("reason")
        else:
            error_type = None
            reason = str(error) if error is not None else details.get("result")
        return cls(
            _status_code(details.get("status")),
            error_type,
            reason,
            index=details.get("_index"),
            doc_id=details.get("_id"),
        )


class ClosedError(IngestError):
    """Submit after the client started shutting down."""

    pass


class ShutdownTimeoutError(IngestError):
    """Mutation still unresolved when the shutdown deadline expired."""

    pass


class RetryExhaustedError(IngestError):
    """Mutation failed with retryable errors on every allowed attempt."""

    def __init__(self, attempts: int, last_error: Optional[IngestError] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempts: {last_error}")


def _status_code(value: Any) -> int:
    """HTTP status from a bulk item; 0 when absent or not a number."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
