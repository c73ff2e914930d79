"""
File-based dead letter queue (NDJSON) for terminally failed mutations.

One line per save() call. Bodies are base64 encoded so arbitrary bytes
survive the round trip; replayed records can be fed straight back into
IngestClient.submit().
"""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from loguru import logger

from .types import Mutation


@dataclass(frozen=True)
class DLQRecord:
    ts: str
    error: str
    items: List[Dict[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def submissions(self) -> Iterator[Dict[str, Any]]:
        """Yield keyword arguments for IngestClient.submit(), one per saved mutation."""
        for item in self.items:
            body = item.get("body")
            yield {
                "operation": item["operation"],
                "index": item["index"],
                "doc_id": item.get("doc_id"),
                "body": base64.b64decode(body) if body is not None else None,
            }


def _encode_mutation(m: Mutation) -> Dict[str, Any]:
    return {
        "sequence": m.sequence,
        "operation": m.operation.value,
        "index": m.index,
        "doc_id": m.doc_id,
        "body": base64.b64encode(m.body).decode("ascii") if m.body is not None else None,
    }


class DeadLetterQueue:
    """Append-only NDJSON file; writes run off the event loop."""

    def __init__(self, path: Union[str, Path], *, mkdirs: bool = True):
        self._path = Path(path)
        if mkdirs:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def save(
        self,
        mutations: Sequence[Mutation],
        error: BaseException,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "error": f"{type(error).__name__}: {error}",
            "items": [_encode_mutation(m) for m in mutations],
            "metadata": metadata or {},
        }
        line = json.dumps(record, default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.debug(f"DLQ saved {len(mutations)} mutations to {self._path}")

    async def replay(self, max_records: int = 1000) -> List[DLQRecord]:
        if not self._path.exists():
            return []
        async with self._lock:
            lines = await asyncio.to_thread(self._read_lines, max_records)
        out = []
        for line in lines:
            data = json.loads(line)
            out.append(
                DLQRecord(
                    ts=data["ts"],
                    error=data["error"],
                    items=data.get("items", []),
                    metadata=data.get("metadata") or {},
                )
            )
        return out

    def _append(self, line: str) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line)

    def _read_lines(self, max_records: int) -> List[str]:
        lines: List[str] = []
        with self._path.open("r", encoding="utf-8") as fh:
            for line in fh:
                if not line.strip():
                    continue
                lines.append(line)
                if len(lines) >= max_records:
                    break
        return lines
