"""
Bulk document ingestion client.

Batches index/update/delete mutations, submits them to a store's bulk
endpoint, retries retryable item failures with backoff and resolves one
result handle per mutation.

Usage:
    from bulk_ingest import IngestClient, IngestSettings, OpenSearchSettings
    from bulk_ingest.stores import OpenSearchStore

    store = OpenSearchStore.from_settings(OpenSearchSettings())
    async with IngestClient(store, IngestSettings(max_batch_items=500)) as client:
        handle = client.submit("index", "my-index", {"title": "Document 1"}, doc_id="id1")
    print((await handle).status)
"""

from .batcher import Batcher
from .client import IngestClient, IngestStats, ResultHandle
from .dlq import DeadLetterQueue, DLQRecord
from .errors import (
    ClosedError,
    DocumentError,
    IngestError,
    RetryExhaustedError,
    ShutdownTimeoutError,
    TransportError,
)
from .policy import RetryPolicy, default_retry_classifier
from .retry import RetryCoordinator, RetryState
from .settings import IngestSettings, OpenSearchSettings, get_settings
from .submitter import Submitter
from .types import BulkStore, ItemResult, ItemStatus, Mutation, OperationType

__version__ = "0.1.0"
__all__ = [
    # types
    "BulkStore",
    "ItemResult",
    "ItemStatus",
    "Mutation",
    "OperationType",
    "IngestStats",
    "DLQRecord",
    # errors
    "IngestError",
    "TransportError",
    "DocumentError",
    "ClosedError",
    "ShutdownTimeoutError",
    "RetryExhaustedError",
    # pipeline
    "Batcher",
    "Submitter",
    "RetryPolicy",
    "RetryState",
    "RetryCoordinator",
    "default_retry_classifier",
    "IngestClient",
    "ResultHandle",
    # config / tooling
    "IngestSettings",
    "OpenSearchSettings",
    "get_settings",
    "DeadLetterQueue",
]
