"""In-process response cache with a JSON snapshot mirror.

Identical questions to the same model are answered once per process: the
first successful completion is stored under a fingerprint and served from
memory afterwards.

Cache key = SHA-256(normalized question + "_" + model), see ``make_fingerprint``.

Persistence model:
    - The in-memory dict is the source of truth for ``get``/``put``.
    - Every ``put`` rewrites a full snapshot of the cache to ``cache.json``
      (JSON array of ``{fingerprint, result, timestamp}``), via a temp file and
      ``os.replace`` so readers never see a half-written file.
    - The snapshot is deleted when the cache is constructed. It is never
      loaded back: deduplication is per process lifetime, and the file is an
      audit trail of what this process served.

Caching is a side channel. Snapshot I/O failures are logged and swallowed;
neither ``get`` nor ``put`` ever raises because of them.

Usage::

    from infrastructure.cache import ResponseCache, make_fingerprint

    cache = ResponseCache(Path("cache/cache.json"))
    fp = make_fingerprint(question, model)
    hit = cache.get(fp)
    if hit is None:
        result = ...  # call upstream
        await cache.put(fp, result)
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from infrastructure.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_persistence_failure,
)
from infrastructure.storage import write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_CACHE_FILE = Path("cache") / "cache.json"


def make_fingerprint(question: str, model: str) -> str:
    """Deterministic cache key for a (question, model) pair.

    The question is case-folded and trimmed so casing and surrounding
    whitespace variants of the same question share an entry.

    Args:
        question: The (sanitized) user question.
        model: Model identifier the answer was produced with.

    Returns:
        64-character hex SHA-256 digest.
    """
    raw = f"{question.lower().strip()}_{model}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResponseCache:
    """Fingerprint-keyed cache of completed answers.

    Entries are immutable: ``put`` stores a copy of the result, ``get`` hands
    out copies, and once a fingerprint is stored later ``put`` calls
    for it keep the original entry.

    Args:
        path: Snapshot file location (default: ``cache/cache.json``).
            Deleted on construction.
        max_entries: Optional bound on the number of entries. When exceeded,
            the oldest entry is evicted. ``None`` (default) means unbounded.
    """

    def __init__(
        self,
        path: Path = DEFAULT_CACHE_FILE,
        *,
        max_entries: int | None = None,
    ) -> None:
        """Initialize an empty cache and delete any previous snapshot."""
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self._path = Path(path)
        self._max_entries = max_entries
        self._entries: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._write_lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._clear_snapshot()

    @property
    def path(self) -> Path:
        """Location of the JSON snapshot."""
        return self._path

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _clear_snapshot(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            logger.info("ResponseCache: cleared snapshot at %s", self._path)
        except OSError as exc:
            logger.error("ResponseCache: failed to clear snapshot %s: %s", self._path, exc)

    def get(self, fingerprint: str) -> dict[str, Any] | None:
        """Return the cached result for ``fingerprint`` or None on miss.

        Args:
            fingerprint: Key from ``make_fingerprint``.

        Returns:
            A copy of the cached result dict, or None.
        """
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1

        if entry is None:
            record_cache_miss()
            logger.debug("ResponseCache MISS: %s", fingerprint[:12])
            return None
        record_cache_hit()
        logger.debug("ResponseCache HIT: %s", fingerprint[:12])
        return copy.deepcopy(entry["result"])

    async def put(self, fingerprint: str, result: dict[str, Any]) -> bool:
        """Store ``result`` under ``fingerprint`` and persist a snapshot.

        Args:
            fingerprint: Key from ``make_fingerprint``.
            result: JSON-serializable result dict.

        Returns:
            True if the snapshot was written, False if persistence failed.
            The in-memory entry is stored either way.
        """
        with self._lock:
            if fingerprint not in self._entries:
                self._entries[fingerprint] = {
                    "fingerprint": fingerprint,
                    "result": copy.deepcopy(result),
                    "timestamp": _utcnow_iso(),
                }
                self._evict_overflow()

        ok = await self._persist()
        if ok:
            logger.debug("ResponseCache SET: %s", fingerprint[:12])
        return ok

    def _evict_overflow(self) -> None:
        """Drop oldest entries beyond ``max_entries``. Lock held."""
        if self._max_entries is None:
            return
        while len(self._entries) > self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("ResponseCache EVICT: %s", oldest[:12])

    async def _persist(self) -> bool:
        """Write the full snapshot. Serialized per cache; never raises."""
        async with self._write_lock:
            with self._lock:
                snapshot = list(self._entries.values())
            try:
                await asyncio.to_thread(write_json_atomic, self._path, snapshot)
                return True
            except (OSError, TypeError, ValueError) as exc:
                record_persistence_failure("cache")
                logger.error("ResponseCache: failed to persist snapshot: %s", exc)
                return False

    def stats(self) -> dict[str, Any]:
        """Return basic cache statistics.

        Returns:
            Dict with keys: entries, max_entries, hits, misses, path.
        """
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "path": str(self._path),
            }

