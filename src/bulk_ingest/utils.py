"""
Utility functions for the ingestion CLI.
"""

import gzip
import io
import json
import sys
from typing import Any, Dict, Iterator, Optional


def iter_ndjson(path: str) -> Iterator[Dict[str, Any]]:
    """Yield one JSON object per non-blank line. ``-`` reads stdin; ``.gz`` is decompressed."""
    if path == "-":
        stream = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8")
        yield from _iter_lines(stream)
        return
    opener = gzip.open if path.endswith(".gz") else open
    with opener(path, "rt", encoding="utf-8") as fh:
        yield from _iter_lines(fh)


def _iter_lines(stream) -> Iterator[Dict[str, Any]]:
    for lineno, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"line {lineno}: invalid JSON ({e.msg})") from e
        if not isinstance(obj, dict):
            raise ValueError(f"line {lineno}: expected a JSON object")
        yield obj


def extract_id(doc: Dict[str, Any], id_field: Optional[str], *, pop: bool = False) -> Optional[str]:
    """Read (and optionally remove) the document id field; ids are always strings."""
    if not id_field or id_field not in doc:
        return None
    value = doc.pop(id_field) if pop else doc[id_field]
    return None if value is None else str(value)
