"""Tests for infrastructure/metrics.py — Prometheus counter recording.

Verifies that:
- All public record_*() helpers increment the correct counter
- record_query() increments both the outcome counter and the latency histogram
- record_circuit_transition() to "open" also counts a trip
- Breaker, retrier and cache report into the registry when they run
- LatencyTimer measures elapsed time correctly
- get_metrics_response() renders the text exposition format

Counters are cumulative for the process, so every assertion compares the
value before and after the action instead of absolute values.
"""

from __future__ import annotations

import time

import pytest

from conftest import FakeClock, no_sleep, unavailable
from core.config import BreakerConfig, RetryConfig
from core.errors import UpstreamError
from infrastructure import metrics as metrics_module
from infrastructure.cache import ResponseCache
from infrastructure.circuit_breaker import CircuitBreaker, CircuitOpenError
from infrastructure.retry import BackoffRetrier

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sample(name: str, **labels: str) -> float:
    """Current value of a sample in the module registry (0.0 if never set)."""
    value = metrics_module._REGISTRY.get_sample_value(name, labels or None)
    return value or 0.0


# ---------------------------------------------------------------------------
# record_* helpers
# ---------------------------------------------------------------------------


class TestRecordHelpers:
    def test_record_query_counts_outcome_and_latency(self) -> None:
        before = _sample("assistant_query_requests_total", outcome="success")
        before_hist = _sample("assistant_query_latency_seconds_count")
        metrics_module.record_query(outcome="success", latency_seconds=0.4)
        assert _sample("assistant_query_requests_total", outcome="success") == before + 1
        assert _sample("assistant_query_latency_seconds_count") == before_hist + 1

    def test_cache_hit_and_miss(self) -> None:
        hits = _sample("assistant_cache_hits_total")
        misses = _sample("assistant_cache_misses_total")
        metrics_module.record_cache_hit()
        metrics_module.record_cache_miss()
        metrics_module.record_cache_miss()
        assert _sample("assistant_cache_hits_total") == hits + 1
        assert _sample("assistant_cache_misses_total") == misses + 2

    def test_record_retry_by_kind(self) -> None:
        before = _sample("assistant_upstream_retries_total", kind="rate_limited")
        metrics_module.record_retry("rate_limited")
        assert _sample("assistant_upstream_retries_total", kind="rate_limited") == before + 1

    def test_transition_to_open_counts_trip(self) -> None:
        trips = _sample("assistant_circuit_breaker_trips_total", breaker_name="unit")
        metrics_module.record_circuit_transition("unit", "open")
        metrics_module.record_circuit_transition("unit", "half_open")
        assert _sample("assistant_circuit_breaker_trips_total", breaker_name="unit") == trips + 1
        assert (
            _sample(
                "assistant_circuit_breaker_transitions_total",
                breaker_name="unit",
                to_state="half_open",
            )
            >= 1
        )

    def test_persistence_failure_by_store(self) -> None:
        before = _sample("assistant_persistence_failures_total", store="ledger")
        metrics_module.record_persistence_failure("ledger")
        assert _sample("assistant_persistence_failures_total", store="ledger") == before + 1


# ---------------------------------------------------------------------------
# Components report into the registry
# ---------------------------------------------------------------------------


class TestComponentReporting:
    @pytest.mark.asyncio
    async def test_breaker_rejection_counted(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker("metrics-reject", BreakerConfig(volume_threshold=1), clock=clock)

        async def _fail() -> None:
            raise RuntimeError("down")

        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
        before = _sample("assistant_circuit_breaker_rejected_total", breaker_name="metrics-reject")
        with pytest.raises(CircuitOpenError):
            await breaker.call(_fail)
        assert (
            _sample("assistant_circuit_breaker_rejected_total", breaker_name="metrics-reject")
            == before + 1
        )
        assert _sample("assistant_circuit_breaker_trips_total", breaker_name="metrics-reject") == 1

    @pytest.mark.asyncio
    async def test_retrier_counts_each_retry(self) -> None:
        before = _sample("assistant_upstream_retries_total", kind="unavailable")
        retrier = BackoffRetrier(RetryConfig(max_retries=2), sleep=no_sleep)

        async def _down() -> None:
            raise unavailable()

        with pytest.raises(UpstreamError):
            await retrier.execute(_down)
        assert _sample("assistant_upstream_retries_total", kind="unavailable") == before + 2

    def test_cache_get_counts_miss(self, tmp_path) -> None:
        before = _sample("assistant_cache_misses_total")
        ResponseCache(tmp_path / "cache.json").get("0" * 64)
        assert _sample("assistant_cache_misses_total") == before + 1


# ---------------------------------------------------------------------------
# LatencyTimer and exposition
# ---------------------------------------------------------------------------


class TestLatencyTimer:
    def test_measures_elapsed(self) -> None:
        with metrics_module.LatencyTimer() as t:
            time.sleep(0.01)
        assert t.elapsed >= 0.01
        assert t.elapsed_ms >= 10.0

    def test_zero_before_use(self) -> None:
        assert metrics_module.LatencyTimer().elapsed_ms == 0.0


class TestExposition:
    def test_text_format(self) -> None:
        metrics_module.record_cache_hit()
        body, content_type = metrics_module.get_metrics_response()
        assert content_type.startswith("text/plain")
        assert b"assistant_cache_hits_total" in body
