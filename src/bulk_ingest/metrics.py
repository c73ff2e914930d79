"""
Prometheus metrics for the ingestion client.

Registered on the global REGISTRY at import time; every series carries a
``client`` label so several IngestClient instances can share a process.
"""

from prometheus_client import Counter, Gauge, Histogram

INGEST_ITEMS_TOTAL = Counter(
    "ingest_items_total",
    "Mutations resolved, by final outcome",
    ["client", "outcome"],
)

INGEST_RETRIES_TOTAL = Counter(
    "ingest_retries_total",
    "Mutations re-enqueued after a retryable failure",
    ["client"],
)

INGEST_BATCHES_TOTAL = Counter(
    "ingest_batches_total",
    "Bulk requests sent, by outcome (ok|partial|transport_error)",
    ["client", "outcome"],
)

INGEST_BATCH_SECONDS = Histogram(
    "ingest_batch_seconds",
    "Bulk request latency in seconds",
    ["client"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

INGEST_PENDING = Gauge(
    "ingest_pending",
    "Mutations submitted but not yet resolved",
    ["client"],
)
