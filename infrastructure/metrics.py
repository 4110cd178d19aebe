"""Prometheus telemetry for the completion assistant.

This is the operational sink for the request-execution core: breaker
transitions and rejections, retries, cache hits and persistence failures are
counted here. It is separate from the attempt ledger (``infrastructure.ledger``),
which is the durable business record behind ``GET /metrics``.

Metrics:
    assistant_query_requests_total            Counter by outcome (success/cache_hit/rate_limited/unavailable/failed)
    assistant_query_latency_seconds           Histogram of end-to-end executor latency
    assistant_cache_hits_total                Counter of response cache hits
    assistant_cache_misses_total              Counter of response cache misses
    assistant_upstream_retries_total          Retries scheduled by the backoff retrier
    assistant_circuit_breaker_transitions_total  State transitions by breaker and target state
    assistant_circuit_breaker_trips_total     Times a breaker tripped to OPEN
    assistant_circuit_breaker_rejected_total  Calls rejected while OPEN / probing
    assistant_circuit_breaker_timeouts_total  Calls that exceeded the breaker time budget
    assistant_persistence_failures_total      Snapshot / ledger write failures by store

Usage::

    from infrastructure.metrics import record_cache_hit, record_circuit_trip
"""

from __future__ import annotations

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

_REGISTRY = CollectorRegistry()

query_requests_total = Counter(
    "assistant_query_requests_total",
    "Total executor runs by outcome",
    ["outcome"],
    registry=_REGISTRY,
)

query_latency_seconds = Histogram(
    "assistant_query_latency_seconds",
    "End-to-end executor latency in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=_REGISTRY,
)

cache_hits_total = Counter(
    "assistant_cache_hits_total",
    "Response cache hits",
    registry=_REGISTRY,
)

cache_misses_total = Counter(
    "assistant_cache_misses_total",
    "Response cache misses",
    registry=_REGISTRY,
)

upstream_retries_total = Counter(
    "assistant_upstream_retries_total",
    "Retries scheduled after a transient upstream failure",
    ["kind"],
    registry=_REGISTRY,
)

circuit_breaker_transitions_total = Counter(
    "assistant_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["breaker_name", "to_state"],
    registry=_REGISTRY,
)

circuit_breaker_trips_total = Counter(
    "assistant_circuit_breaker_trips_total",
    "Number of times a circuit breaker tripped to OPEN state",
    ["breaker_name"],
    registry=_REGISTRY,
)

circuit_breaker_rejected_total = Counter(
    "assistant_circuit_breaker_rejected_total",
    "Requests rejected because circuit was OPEN (short-circuited)",
    ["breaker_name"],
    registry=_REGISTRY,
)

circuit_breaker_timeouts_total = Counter(
    "assistant_circuit_breaker_timeouts_total",
    "Calls that exceeded the circuit breaker time budget",
    ["breaker_name"],
    registry=_REGISTRY,
)

persistence_failures_total = Counter(
    "assistant_persistence_failures_total",
    "Durable write failures (swallowed) by store",
    ["store"],
    registry=_REGISTRY,
)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def record_query(*, outcome: str, latency_seconds: float) -> None:
    """Record a completed executor run.

    Args:
        outcome: One of "success", "cache_hit", "rate_limited", "unavailable", "failed".
        latency_seconds: End-to-end wall-clock time in seconds.
    """
    query_requests_total.labels(outcome=outcome).inc()
    query_latency_seconds.observe(latency_seconds)


def record_cache_hit() -> None:
    """Increment response cache hit counter."""
    cache_hits_total.inc()


def record_cache_miss() -> None:
    """Increment response cache miss counter."""
    cache_misses_total.inc()


def record_retry(kind: str) -> None:
    """Increment the retry counter for a transient failure kind."""
    upstream_retries_total.labels(kind=kind).inc()


def record_circuit_transition(breaker_name: str, to_state: str) -> None:
    """Count a breaker state transition; transitions to ``open`` also count as a trip.

    Args:
        breaker_name: Name of the circuit breaker.
        to_state: Target state value (``closed``, ``open``, ``half_open``).
    """
    circuit_breaker_transitions_total.labels(breaker_name=breaker_name, to_state=to_state).inc()
    if to_state == "open":
        record_circuit_trip(breaker_name)


def record_circuit_trip(breaker_name: str) -> None:
    """Increment circuit breaker trip counter.

    Args:
        breaker_name: Name of the circuit breaker that tripped.
    """
    circuit_breaker_trips_total.labels(breaker_name=breaker_name).inc()


def record_circuit_rejected(breaker_name: str) -> None:
    """Increment circuit breaker rejected-call counter.

    Args:
        breaker_name: Name of the circuit breaker that rejected the call.
    """
    circuit_breaker_rejected_total.labels(breaker_name=breaker_name).inc()


def record_circuit_timeout(breaker_name: str) -> None:
    """Increment circuit breaker timeout counter."""
    circuit_breaker_timeouts_total.labels(breaker_name=breaker_name).inc()


def record_persistence_failure(store: str) -> None:
    """Increment the swallowed-write counter for ``"cache"`` or ``"ledger"``."""
    persistence_failures_total.labels(store=store).inc()


def get_metrics_response() -> tuple[bytes, str]:
    """Generate Prometheus text exposition format.

    Returns:
        Tuple of (body_bytes, content_type_string).
    """
    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


class LatencyTimer:
    """Context manager for measuring latency.

    Usage::

        with LatencyTimer() as t:
            result = await provider.complete(request)
        record_query(outcome="success", latency_seconds=t.elapsed)
    """

    def __init__(self) -> None:
        """Initialize timer."""
        self._start: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> LatencyTimer:
        """Start timing."""
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: object) -> None:
        """Stop timing and record elapsed."""
        self.elapsed = time.perf_counter() - self._start

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds, rounded to 0.1 ms."""
        return round(self.elapsed * 1000, 1)
