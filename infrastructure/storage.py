"""JSON file helpers shared by the cache snapshot and the attempt ledger.

Both stores rewrite their whole file on every change. Writing to a sibling
temp file and swapping it in with ``os.replace`` means a reader (or a crash)
sees either the previous file or the new one, never a truncated mix.

These are blocking functions; async callers run them via ``asyncio.to_thread``.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` as pretty-printed JSON to ``path`` atomically.

    Raises:
        OSError: If the directory or file cannot be written.
        TypeError: If ``payload`` is not JSON-serializable.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def read_json_list(path: Path) -> list[Any]:
    """Read a JSON array from ``path``.

    Returns:
        The decoded list, or ``[]`` when the file is missing or empty.

    Raises:
        OSError: If the file exists but cannot be read.
        ValueError: If the content is not valid JSON or not an array.
    """
    if not path.exists():
        return []
    raw = path.read_text(encoding="utf-8")
    if not raw.strip():
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a JSON array")
    return data
