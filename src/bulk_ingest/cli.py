from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any, Deque, Dict, Optional

import typer
from loguru import logger

from .client import IngestClient, ResultHandle
from .dlq import DeadLetterQueue
from .settings import IngestSettings, OpenSearchSettings
from .stores.opensearch import OpenSearchStore
from .types import OperationType
from .utils import extract_id, iter_ndjson

app = typer.Typer(help="bulk_ingest operational CLI")

# outstanding handles before submit() waits for the oldest one
SUBMIT_WINDOW = 10_000

# ---------------------------
# Common options
# ---------------------------


def hosts_opt() -> Optional[str]:
    return typer.Option(
        None, "--hosts", envvar="OPENSEARCH_HOSTS", help="Comma-separated OpenSearch URLs"
    )


def _make_store(hosts: Optional[str]) -> OpenSearchStore:
    settings = OpenSearchSettings(hosts=hosts) if hosts else OpenSearchSettings()
    return OpenSearchStore.from_settings(settings)


def _ingest_settings(**overrides: Any) -> IngestSettings:
    return IngestSettings(**{k: v for k, v in overrides.items() if v is not None})


# ---------------------------
# Index admin
# ---------------------------


@app.command("create-index")
def create_index(
    name: str = typer.Argument(..., help="Index name"),
    shards: int = typer.Option(1, "--shards"),
    replicas: int = typer.Option(0, "--replicas"),
    mappings: Optional[str] = typer.Option(None, "--mappings", help="Mappings as a JSON string"),
    hosts: Optional[str] = hosts_opt(),
):
    """Create an index unless it already exists."""

    async def _run() -> bool:
        store = _make_store(hosts)
        try:
            return await store.ensure_index(
                name,
                settings={"number_of_shards": shards, "number_of_replicas": replicas},
                mappings=json.loads(mappings) if mappings else None,
            )
        finally:
            await store.close()

    created = asyncio.run(_run())
    typer.echo(json.dumps({"index": name, "created": created}, indent=2))


@app.command("delete-index")
def delete_index(
    name: str = typer.Argument(..., help="Index name"),
    hosts: Optional[str] = hosts_opt(),
):
    async def _run() -> bool:
        store = _make_store(hosts)
        try:
            return await store.delete_index(name)
        finally:
            await store.close()

    deleted = asyncio.run(_run())
    typer.echo(json.dumps({"index": name, "deleted": deleted}, indent=2))


# ---------------------------
# Ingest
# ---------------------------


@app.command("ingest-ndjson")
def ingest_ndjson(
    index: str = typer.Argument(..., help="Target index"),
    path: str = typer.Argument(..., help="File path or '-' for stdin (.gz ok)"),
    op: str = typer.Option("index", "--op", help="index|update|delete"),
    id_field: Optional[str] = typer.Option(None, "--id-field", help="Document field holding the id"),
    max_items: Optional[int] = typer.Option(None, "--max-items", help="Flush after N mutations"),
    max_bytes: Optional[int] = typer.Option(None, "--max-bytes", help="Flush after N payload bytes"),
    flush_ms: Optional[int] = typer.Option(None, "--flush-ms", help="Flush N ms after first buffered item"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts"),
    workers: Optional[int] = typer.Option(None, "--workers"),
    dlq: Optional[str] = typer.Option(None, "--dlq", help="NDJSON file for terminal failures"),
    hosts: Optional[str] = hosts_opt(),
):
    """Stream an NDJSON file into an index through the bulk ingestion client."""
    try:
        operation = OperationType(op.lower())
    except ValueError:
        raise typer.BadParameter("op must be one of: index, update, delete")

    settings = _ingest_settings(
        max_batch_items=max_items,
        max_batch_bytes=max_bytes,
        flush_interval=flush_ms / 1000.0 if flush_ms else None,
        max_attempts=max_attempts,
        workers=workers,
    )
    summary = asyncio.run(
        _ingest_ndjson(
            _make_store(hosts),
            index,
            path,
            operation,
            id_field,
            settings,
            DeadLetterQueue(dlq) if dlq else None,
        )
    )
    typer.echo(json.dumps(summary, default=str, indent=2))
    if summary["failed"]:
        raise typer.Exit(code=1)


async def _ingest_ndjson(
    store: OpenSearchStore,
    index: str,
    path: str,
    operation: OperationType,
    id_field: Optional[str],
    settings: IngestSettings,
    dead_letter: Optional[DeadLetterQueue],
) -> Dict[str, Any]:
    errors: Dict[str, int] = {}
    window: Deque[ResultHandle] = deque()
    n = 0

    def _tally(handle: ResultHandle) -> None:
        result = handle.result()
        if not result.ok:
            key = type(result.error).__name__
            errors[key] = errors.get(key, 0) + 1

    try:
        async with IngestClient(store, settings, dead_letter=dead_letter, client_id="cli") as client:
            for doc in iter_ndjson(path):
                doc_id = extract_id(doc, id_field)
                body = None if operation is OperationType.DELETE else doc
                window.append(client.submit(operation, index, body, doc_id=doc_id))
                n += 1
                if len(window) >= SUBMIT_WINDOW:
                    oldest = window.popleft()
                    await oldest
                    _tally(oldest)
        for handle in window:
            _tally(handle)
        stats = client.stats()
    finally:
        await store.close()

    logger.info(f"Ingested {n} documents into {index}: ok={stats.succeeded} failed={stats.failed}")
    return {
        "ingested": n,
        "succeeded": stats.succeeded,
        "failed": stats.failed,
        "batches": stats.batches_sent,
        "errors": errors,
    }


@app.command("replay-dlq")
def replay_dlq(
    path: str = typer.Argument(..., help="DLQ NDJSON file"),
    max_records: int = typer.Option(1000, "--max-records"),
    hosts: Optional[str] = hosts_opt(),
):
    """Re-submit mutations saved in a dead letter file."""

    async def _run() -> Dict[str, Any]:
        records = await DeadLetterQueue(path, mkdirs=False).replay(max_records)
        store = _make_store(hosts)
        handles = []
        try:
            async with IngestClient(store, _ingest_settings(), client_id="dlq-replay") as client:
                for rec in records:
                    for kwargs in rec.submissions():
                        handles.append(client.submit(**kwargs))
        finally:
            await store.close()
        ok = sum(1 for h in handles if h.result().ok)
        return {"records": len(records), "resubmitted": len(handles), "succeeded": ok}

    summary = asyncio.run(_run())
    typer.echo(json.dumps(summary, indent=2))


if __name__ == "__main__":
    app()
