"""
Pytest configuration and fixtures for bulk-ingest.

Provides cross-platform event loop configuration and fast client settings.
"""

import asyncio
import os
import sys

import pytest

from bulk_ingest import IngestSettings

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep developer INGEST_* / OPENSEARCH_* variables out of the tests."""
    for key in list(os.environ):
        if key.startswith(("INGEST_", "OPENSEARCH_")):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def fast_settings():
    """Factory for IngestSettings tuned for millisecond-scale tests."""

    def _make(**overrides) -> IngestSettings:
        values = dict(
            max_batch_items=10,
            max_batch_bytes=1_000_000,
            flush_interval=0.05,
            workers=2,
            max_attempts=5,
            initial_backoff_ms=1,
            max_backoff_ms=5,
            jitter=0.0,
            shutdown_timeout=2.0,
        )
        values.update(overrides)
        return IngestSettings(_env_file=None, **values)

    return _make
