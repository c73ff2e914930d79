from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Union

from .errors import IngestError

Body = Union[bytes, str, Mapping[str, Any]]


class OperationType(str, Enum):
    """Bulk operation kinds; values match the bulk API action names."""

    INDEX = "index"
    UPDATE = "update"
    DELETE = "delete"


class ItemStatus(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    TERMINAL_FAILURE = "terminal_failure"


def encode_body(body: Body) -> bytes:
    """Serialize a document body once, at intake."""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, separators=(",", ":"), default=str).encode("utf-8")


@dataclass(frozen=True)
class Mutation:
    """One caller-requested document change.

    Immutable once created; retries re-batch the same instance so the
    sequence number stays stable for caller correlation.

    Attributes:
        operation: index, update or delete
        index: Target index name
        doc_id: Document id (optional for index, store assigns one)
        body: Serialized JSON document (None for delete)
        sequence: Intake sequence number, unique per client
    """

    operation: OperationType
    index: str
    doc_id: Optional[str]
    body: Optional[bytes]
    sequence: int
    nbytes: int = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        size = len(self.action_line()) + 1
        if self.operation is not OperationType.DELETE and self.body is not None:
            size += len(self.source_line()) + 1
        object.__setattr__(self, "nbytes", size)

    @classmethod
    def create(
        cls,
        operation: Union[OperationType, str],
        index: str,
        sequence: int,
        body: Optional[Body] = None,
        doc_id: Optional[str] = None,
    ) -> "Mutation":
        """Validate caller input and build a Mutation."""
        op = OperationType(operation)
        if not index:
            raise ValueError("index is required")
        if op is not OperationType.INDEX and not doc_id:
            raise ValueError(f"doc_id is required for {op.value}")
        if op is OperationType.DELETE:
            encoded = None
        elif body is None:
            raise ValueError(f"body is required for {op.value}")
        else:
            encoded = encode_body(body)
        return cls(op, index, doc_id, encoded, sequence)

    def action_line(self) -> bytes:
        meta: dict[str, Any] = {"_index": self.index}
        if self.doc_id is not None:
            meta["_id"] = self.doc_id
        return json.dumps({self.operation.value: meta}, separators=(",", ":")).encode("utf-8")

    def source_line(self) -> bytes:
        """Document line for index/update; delete carries none."""
        if self.body is None:
            raise ValueError(f"{self.operation.value} mutation seq={self.sequence} has no source line")
        if self.operation is OperationType.UPDATE:
            return b'{"doc":' + self.body + b"}"
        return self.body

    def bulk_lines(self) -> List[bytes]:
        lines = [self.action_line()]
        if self.operation is not OperationType.DELETE:
            lines.append(self.source_line())
        return lines


@dataclass(frozen=True)
class ItemResult:
    """Per-mutation outcome of a bulk submission.

    ``attempts`` is 0 when produced by the Submitter and is filled in by the
    RetryCoordinator once the mutation reaches a final state.
    """

    sequence: int
    status: ItemStatus
    error: Optional[IngestError] = None
    attempts: int = 0
    doc_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ItemStatus.SUCCESS

    def raise_for_error(self) -> None:
        if self.error is not None and not self.ok:
            raise self.error


class BulkStore(Protocol):
    """Document store with a bulk endpoint.

    ``bulk`` receives a complete NDJSON request body and returns the decoded
    bulk response (``{"errors": bool, "items": [...]}``). Any exception it
    raises is treated as a whole-request transport failure.
    """

    async def bulk(self, payload: bytes) -> Mapping[str, Any]:
        ...
