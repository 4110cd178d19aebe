"""Append-only ledger of upstream call attempts.

Every completed attempt sequence against the upstream — success or failure —
appends one ``AttemptRecord``. The ledger answers ``GET /metrics`` with an
aggregate ``LedgerSummary`` plus a few rule-based insights.

Persistence model:
    - Records live in an in-memory list that is only ever appended to.
    - After each append the full list is written to ``metrics.json`` (JSON
      array), atomically and serialized per ledger. This keeps the file
      format a plain array at the cost of O(N) work per record; fine for the
      request volumes this service sees, worth revisiting past ~100k records.
    - Existing records are loaded at construction, so history survives
      restarts (unlike the response cache). Rows that cannot be rebuilt are
      skipped, and the file they came from is kept as ``metrics.json.corrupt``.

Recording is best-effort: write failures are logged and swallowed.

Usage::

    from infrastructure.ledger import AttemptRecord, MetricsLedger

    ledger = MetricsLedger(Path("metrics/metrics.json"))
    await ledger.record(AttemptRecord(latency_ms=420.0, success=True, tokens=150))
    summary = ledger.summarize()
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import statistics
import threading
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from infrastructure.metrics import record_persistence_failure
from infrastructure.storage import read_json_list, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILE = Path("metrics") / "metrics.json"

RECENT_LIMIT = 50
SNIPPET_LENGTH = 120

INSIGHT_ERROR_RATE = "Error rate over 5% — investigate upstream LLM or network issues"
INSIGHT_LATENCY = "Average latency over 2s — consider increasing timeouts or switching models"
INSIGHT_CONFIDENCE = "Low average confidence — calibrate prompt or investigate model quality"

ERROR_RATE_LIMIT = 0.05
LATENCY_LIMIT_MS = 2000.0
CONFIDENCE_FLOOR = 0.5


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class AttemptError:
    """Structured error details of a failed attempt sequence."""

    message: str
    status: int | None = None


@dataclass(frozen=True)
class AttemptRecord:
    """One ledger entry per completed upstream attempt sequence.

    Attributes:
        latency_ms: Wall-clock duration of the attempt sequence (0 on failure).
        tokens: Total tokens billed.
        prompt_tokens: Input tokens.
        completion_tokens: Output tokens.
        cost_usd: Estimated cost.
        success: Whether the sequence produced a result.
        error: Error details when ``success`` is False.
        confidence: Model-reported confidence in [0, 1], if any.
        model: Model identifier the call was routed to.
        question_snippet: First characters of the question, for debugging.
        timestamp: ISO-8601 UTC time the record was created.
    """

    latency_ms: float
    success: bool
    tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0
    error: AttemptError | None = None
    confidence: float | None = None
    model: str | None = None
    question_snippet: str | None = None
    timestamp: str = field(default_factory=_utcnow_iso)

    @staticmethod
    def snippet(question: str) -> str:
        """Truncate a question to ``SNIPPET_LENGTH`` characters."""
        return question[:SNIPPET_LENGTH]

    @classmethod
    def failure_record(
        cls,
        message: str,
        *,
        status: int | None = None,
        model: str | None = None,
        question: str | None = None,
    ) -> AttemptRecord:
        """Failure entry: zero latency, tokens and cost, error populated."""
        return cls(
            latency_ms=0.0,
            success=False,
            error=AttemptError(message=message, status=status),
            model=model,
            question_snippet=cls.snippet(question) if question else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttemptRecord:
        """Rebuild a record from its JSON form. Missing numeric fields default to 0."""
        error = data.get("error")
        return cls(
            latency_ms=float(data.get("latency_ms") or 0.0),
            success=bool(data.get("success", False)),
            tokens=int(data.get("tokens") or 0),
            prompt_tokens=int(data.get("prompt_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or 0),
            cost_usd=float(data.get("cost_usd") or 0.0),
            error=AttemptError(error.get("message", ""), error.get("status"))
            if isinstance(error, dict)
            else None,
            confidence=data.get("confidence"),
            model=data.get("model"),
            question_snippet=data.get("question_snippet"),
            timestamp=data.get("timestamp") or _utcnow_iso(),
        )


@dataclass(frozen=True)
class LedgerSummary:
    """Aggregate view over every record in the ledger."""

    total_requests: int
    successes: int
    failures: int
    error_rate: float
    avg_latency: float
    median_latency: float
    total_tokens: int
    total_prompt: int
    total_completion: int
    total_cost: float
    avg_confidence: float | None
    insights: list[str]
    recent: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_insights(
    error_rate: float, avg_latency: float, avg_confidence: float | None
) -> list[str]:
    """Advisory strings, in fixed order, for aggregates that cross a limit."""
    insights: list[str] = []
    if error_rate > ERROR_RATE_LIMIT:
        insights.append(INSIGHT_ERROR_RATE)
    if avg_latency > LATENCY_LIMIT_MS:
        insights.append(INSIGHT_LATENCY)
    if avg_confidence is not None and avg_confidence < CONFIDENCE_FLOOR:
        insights.append(INSIGHT_CONFIDENCE)
    return insights


def summarize_records(records: Sequence[AttemptRecord]) -> LedgerSummary:
    """Compute the ledger summary for a record set.

    Pure function — no I/O. Records are assumed to be in append order.

    Args:
        records: Every record to aggregate, oldest first.

    Returns:
        ``LedgerSummary`` with counts, latency mean/median, token and cost
        sums, mean confidence (None when no record has one), insights and
        the 50 most recent records newest first.
    """
    total = len(records)
    successes = sum(1 for r in records if r.success)
    failures = total - successes
    error_rate = failures / total if total else 0.0

    latencies = [r.latency_ms for r in records]
    avg_latency = statistics.fmean(latencies) if latencies else 0.0
    median_latency = float(statistics.median(latencies)) if latencies else 0.0

    confidences = [r.confidence for r in records if isinstance(r.confidence, (int, float))]
    avg_confidence = statistics.fmean(confidences) if confidences else None

    return LedgerSummary(
        total_requests=total,
        successes=successes,
        failures=failures,
        error_rate=error_rate,
        avg_latency=avg_latency,
        median_latency=median_latency,
        total_tokens=sum(r.tokens for r in records),
        total_prompt=sum(r.prompt_tokens for r in records),
        total_completion=sum(r.completion_tokens for r in records),
        total_cost=sum(r.cost_usd for r in records),
        avg_confidence=avg_confidence,
        insights=build_insights(error_rate, avg_latency, avg_confidence),
        recent=[r.to_dict() for r in reversed(records[-RECENT_LIMIT:])],
    )


class MetricsLedger:
    """Append-only store of ``AttemptRecord`` entries with a JSON mirror.

    Args:
        path: Ledger file location (default: ``metrics/metrics.json``).
            Loaded on construction if present.
    """

    def __init__(self, path: Path = DEFAULT_LEDGER_FILE) -> None:
        """Initialize the ledger, loading any existing records."""
        self._path = Path(path)
        self._lock = threading.Lock()
        self._write_lock = asyncio.Lock()
        self._records: list[AttemptRecord] = self._load()

    @property
    def path(self) -> Path:
        """Location of the ledger file."""
        return self._path

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _load(self) -> list[AttemptRecord]:
        """Load existing records, skipping rows that cannot be rebuilt.

        Whenever something is skipped, the file is kept as ``<name>.corrupt``
        before the first rewrite can replace it.
        """
        try:
            raw = read_json_list(self._path)
        except (OSError, ValueError) as exc:
            logger.warning("MetricsLedger: failed to read %s (%s), starting empty", self._path, exc)
            self._preserve_unreadable(move=True)
            return []

        records: list[AttemptRecord] = []
        skipped = 0
        for index, item in enumerate(raw):
            try:
                if not isinstance(item, dict):
                    raise TypeError(f"expected an object, got {type(item).__name__}")
                records.append(AttemptRecord.from_dict(item))
            except (ValueError, TypeError) as exc:
                skipped += 1
                logger.warning("MetricsLedger: skipping record %d of %s: %s", index, self._path, exc)
        if skipped:
            self._preserve_unreadable(move=False)
        if records:
            logger.info("MetricsLedger: loaded %d records from %s", len(records), self._path)
        return records

    def _preserve_unreadable(self, *, move: bool) -> None:
        backup = self._path.with_name(self._path.name + ".corrupt")
        try:
            if move:
                self._path.replace(backup)
            else:
                shutil.copyfile(self._path, backup)
        except OSError as exc:
            logger.error("MetricsLedger: failed to preserve %s: %s", self._path, exc)
            return
        logger.warning("MetricsLedger: original ledger kept at %s", backup)

    def records(self) -> list[AttemptRecord]:
        """Snapshot copy of every record, oldest first."""
        with self._lock:
            return list(self._records)

    async def record(self, entry: AttemptRecord) -> None:
        """Append ``entry`` and persist the full ledger. Never raises."""
        with self._lock:
            self._records.append(entry)

        async with self._write_lock:
            with self._lock:
                payload = [r.to_dict() for r in self._records]
            try:
                await asyncio.to_thread(write_json_atomic, self._path, payload)
            except (OSError, TypeError, ValueError) as exc:
                record_persistence_failure("ledger")
                logger.error("MetricsLedger: failed to write %s: %s", self._path, exc)

    def summarize(self) -> LedgerSummary:
        """Aggregate summary over a consistent snapshot of the ledger."""
        return summarize_records(self.records())
