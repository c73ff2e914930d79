from __future__ import annotations

from time import perf_counter
from typing import Any, List, Mapping, Optional, Sequence

from loguru import logger

from .errors import DocumentError, IngestError, TransportError
from .metrics import INGEST_BATCH_SECONDS, INGEST_BATCHES_TOTAL
from .policy import ItemClassifier, default_retry_classifier
from .types import BulkStore, ItemResult, ItemStatus, Mutation


def encode_batch(batch: Sequence[Mutation]) -> bytes:
    """NDJSON bulk body: action line per mutation, source line for index/update."""
    lines: List[bytes] = []
    for mutation in batch:
        lines.extend(mutation.bulk_lines())
    return b"\n".join(lines) + b"\n"


class Submitter:
    """
    Sends one batch per call to the store's bulk endpoint.

    The returned ItemResult list always matches the batch 1:1 and in order:
    a failed request marks every item retryable, a short response marks the
    missing tail retryable, and per-item errors go through ``classify``.
    """

    def __init__(
        self,
        store: BulkStore,
        *,
        classify: Optional[ItemClassifier] = None,
        client_id: str = "default",
    ):
        self._store = store
        self._classify = classify or default_retry_classifier
        self._client_id = client_id

    async def submit(self, batch: Sequence[Mutation]) -> List[ItemResult]:
        if not batch:
            return []

        payload = encode_batch(batch)
        t0 = perf_counter()
        try:
            response = await self._store.bulk(payload)
        except Exception as exc:
            err = exc if isinstance(exc, TransportError) else TransportError(f"{type(exc).__name__}: {exc}")
            logger.warning(f"Bulk request of {len(batch)} items failed: {err}")
            INGEST_BATCHES_TOTAL.labels(self._client_id, "transport_error").inc()
            return [_retryable(m, err) for m in batch]
        finally:
            INGEST_BATCH_SECONDS.labels(self._client_id).observe(perf_counter() - t0)

        results = self._parse(batch, response)
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning(f"Bulk request partially failed: {failed}/{len(batch)} items")
            INGEST_BATCHES_TOTAL.labels(self._client_id, "partial").inc()
        else:
            logger.debug(f"Bulk request ok: {len(batch)} items")
            INGEST_BATCHES_TOTAL.labels(self._client_id, "ok").inc()
        return results

    # --------------------------- internals

    def _parse(self, batch: Sequence[Mutation], response: Mapping[str, Any]) -> List[ItemResult]:
        items = response.get("items") if isinstance(response, Mapping) else None
        items = list(items or [])
        if len(items) != len(batch):
            logger.warning(f"Bulk response has {len(items)} items for a batch of {len(batch)}")

        results: List[ItemResult] = []
        for pos, mutation in enumerate(batch):
            if pos >= len(items):
                results.append(_retryable(mutation, TransportError("item missing from bulk response")))
                continue
            results.append(self._item_result(mutation, items[pos]))
        return results

    def _item_result(self, mutation: Mutation, item: Any) -> ItemResult:
        details = _item_details(item)
        status = details.get("status")
        if not isinstance(status, int) or isinstance(status, bool):
            error = DocumentError(
                0,
                "malformed_response",
                f"status {status!r}",
                index=details.get("_index", mutation.index),
                doc_id=details.get("_id", mutation.doc_id),
            )
            return _terminal(mutation, error)
        if "error" not in details and 200 <= status < 300:
            return ItemResult(
                mutation.sequence,
                ItemStatus.SUCCESS,
                doc_id=details.get("_id", mutation.doc_id),
            )

        error = DocumentError.from_item(details)
        try:
            retryable = self._classify(error)
        except Exception:
            logger.exception(f"Retry classifier failed for seq={mutation.sequence}; treating as terminal")
            return _terminal(mutation, error)
        if retryable:
            return _retryable(mutation, error)
        return _terminal(mutation, error)


def _item_details(item: Any) -> Mapping[str, Any]:
    # each response item is keyed by its action name: {"index": {...}}
    if isinstance(item, Mapping) and len(item) == 1:
        (details,) = item.values()
        if isinstance(details, Mapping):
            return details
    return {"status": 0, "error": {"type": "malformed_response", "reason": repr(item)}}


def _retryable(mutation: Mutation, error: IngestError) -> ItemResult:
    return ItemResult(mutation.sequence, ItemStatus.RETRYABLE_FAILURE, error, doc_id=mutation.doc_id)


def _terminal(mutation: Mutation, error: IngestError) -> ItemResult:
    return ItemResult(mutation.sequence, ItemStatus.TERMINAL_FAILURE, error, doc_id=mutation.doc_id)
