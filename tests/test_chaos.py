"""Chaos tests — intentional upstream and storage failures, graceful degradation.

Chaos engineering principle: inject failures in controlled tests to verify
the system degrades gracefully rather than crashing catastrophically.

Scenarios covered
-----------------
  Upstream LLM failures:
    - Flapping upstream (429, 503, ok) → one successful answer, one ledger record
    - Sustained outage trips the breaker → later calls fail fast, upstream untouched
    - Outage ends → after the reset timeout a single probe closes the breaker
    - Probe fails → breaker re-opens for another full reset timeout
    - Hanging upstream → breaker timeout, classified as a generic failure

  Storage failures:
    - Cache snapshot write raises → answer still returned, still served from memory
    - Ledger write raises → answer still returned, record kept in memory
    - Corrupt ledger file at startup → service starts with an empty ledger

  Concurrent failure injection:
    - Many concurrent requests against a failing upstream → every caller gets a
      classified ExecutionError, one ledger record per request, no stray exceptions

Why these scenarios matter
--------------------------
A support assistant sitting in front of a third-party LLM API sees rate
limits and brown-outs daily. These tests enforce the contract: "upstream
trouble surfaces as a clean 429/503/500, never as a hang or a crash, and
bookkeeping failures never cost the customer an answer."

Run only chaos tests:
    pytest -q -m chaos tests/test_chaos.py
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import (
    FakeClock,
    FakeProvider,
    build_executor,
    make_response,
    rate_limited,
    unavailable,
)
from core.config import BreakerConfig
from core.errors import ErrorKind
from core.generation.base import CompletionRequest, CompletionResponse
from infrastructure.circuit_breaker import CircuitState
from infrastructure.executor import ExecutionError, ExecutionKind
from infrastructure.ledger import MetricsLedger

pytestmark = pytest.mark.chaos

SYSTEM = "<system-rules>Answer as JSON.</system-rules>"

_TRIP_FAST = BreakerConfig(volume_threshold=3, reset_timeout_seconds=30.0)


class _HangingProvider:
    """Upstream that accepts the connection and never answers."""

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.calls += 1
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Upstream LLM failures
# ---------------------------------------------------------------------------


class TestUpstreamChaos:
    @pytest.mark.asyncio
    async def test_flapping_upstream_recovers_transparently(
        self, cache_path: Path, ledger_path: Path
    ) -> None:
        provider = FakeProvider(rate_limited(), unavailable(), make_response())
        executor = build_executor(provider, cache_path=cache_path, ledger_path=ledger_path)

        result = await executor.run("Why is my withdrawal pending?", system_prompt=SYSTEM)

        assert result["answer"]
        assert len(provider.calls) == 3
        assert [r.success for r in executor._ledger.records()] == [True]

    @pytest.mark.asyncio
    async def test_sustained_outage_trips_breaker_and_fails_fast(
        self, cache_path: Path, ledger_path: Path, clock: FakeClock
    ) -> None:
        provider = FakeProvider(unavailable())
        executor = build_executor(
            provider,
            cache_path=cache_path,
            ledger_path=ledger_path,
            clock=clock,
            breaker_config=_TRIP_FAST,
        )

        for i in range(3):
            with pytest.raises(ExecutionError):
                await executor.run(f"outage question {i}", system_prompt=SYSTEM)
        assert executor.breaker.state == CircuitState.OPEN
        upstream_calls = len(provider.calls)

        for i in range(5):
            with pytest.raises(ExecutionError) as exc_info:
                await executor.run(f"during outage {i}", system_prompt=SYSTEM)
            assert exc_info.value.cause_kind == ErrorKind.CIRCUIT_OPEN

        assert len(provider.calls) == upstream_calls
        assert executor.breaker.stats.rejected_calls == 5

    @pytest.mark.asyncio
    async def test_outage_ends_probe_closes_breaker(
        self, cache_path: Path, ledger_path: Path, clock: FakeClock
    ) -> None:
        provider = FakeProvider(*[unavailable()] * 12, make_response())
        executor = build_executor(
            provider,
            cache_path=cache_path,
            ledger_path=ledger_path,
            clock=clock,
            breaker_config=_TRIP_FAST,
        )
        for i in range(3):
            with pytest.raises(ExecutionError):
                await executor.run(f"outage question {i}", system_prompt=SYSTEM)
        assert executor.breaker.is_open

        clock.advance(30)
        result = await executor.run("are you back?", system_prompt=SYSTEM)

        assert result["answer"]
        assert executor.breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_probe_reopens_breaker(
        self, cache_path: Path, ledger_path: Path, clock: FakeClock
    ) -> None:
        provider = FakeProvider(unavailable())
        executor = build_executor(
            provider,
            cache_path=cache_path,
            ledger_path=ledger_path,
            clock=clock,
            breaker_config=_TRIP_FAST,
        )
        for i in range(3):
            with pytest.raises(ExecutionError):
                await executor.run(f"outage question {i}", system_prompt=SYSTEM)

        clock.advance(30)
        with pytest.raises(ExecutionError) as exc_info:
            await executor.run("still down?", system_prompt=SYSTEM)
        assert exc_info.value.kind == ExecutionKind.UNAVAILABLE
        assert executor.breaker.state == CircuitState.OPEN

        clock.advance(29)
        assert executor.breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_hanging_upstream_times_out(self, cache_path: Path, ledger_path: Path) -> None:
        provider = _HangingProvider()
        executor = build_executor(
            provider,  # type: ignore[arg-type]
            cache_path=cache_path,
            ledger_path=ledger_path,
            breaker_config=BreakerConfig(timeout_seconds=0.05),
        )

        with pytest.raises(ExecutionError) as exc_info:
            await executor.run("hello?", system_prompt=SYSTEM)

        assert exc_info.value.kind == ExecutionKind.FAILED
        assert exc_info.value.cause_kind == ErrorKind.TIMEOUT
        assert provider.calls == 1
        assert executor.breaker.stats.timed_out_calls == 1


# ---------------------------------------------------------------------------
# Storage failures
# ---------------------------------------------------------------------------


class TestStorageChaos:
    @pytest.mark.asyncio
    async def test_cache_write_failure_still_answers(
        self, cache_path: Path, ledger_path: Path
    ) -> None:
        provider = FakeProvider()
        executor = build_executor(provider, cache_path=cache_path, ledger_path=ledger_path)

        with patch("infrastructure.cache.write_json_atomic", side_effect=OSError("disk full")):
            first = await executor.run("How do I transfer USDT?", system_prompt=SYSTEM)
            second = await executor.run("How do I transfer USDT?", system_prompt=SYSTEM)

        assert first["answer"]
        assert second == first
        assert len(provider.calls) == 1
        assert not cache_path.exists()

    @pytest.mark.asyncio
    async def test_ledger_write_failure_still_answers(
        self, cache_path: Path, ledger_path: Path
    ) -> None:
        executor = build_executor(
            FakeProvider(), cache_path=cache_path, ledger_path=ledger_path
        )

        with patch("infrastructure.ledger.write_json_atomic", side_effect=PermissionError("ro")):
            result = await executor.run("How do I transfer USDT?", system_prompt=SYSTEM)

        assert result["answer"]
        assert len(executor._ledger.records()) == 1

    def test_corrupt_ledger_file_at_startup(self, ledger_path: Path) -> None:
        ledger_path.parent.mkdir(parents=True)
        ledger_path.write_bytes(b"\x00\x01 truncated [{")
        ledger = MetricsLedger(ledger_path)
        assert ledger.summarize().total_requests == 0


# ---------------------------------------------------------------------------
# Concurrent failure injection
# ---------------------------------------------------------------------------


class TestConcurrentChaos:
    @pytest.mark.asyncio
    async def test_concurrent_requests_against_failing_upstream(
        self, cache_path: Path, ledger_path: Path, clock: FakeClock
    ) -> None:
        executor = build_executor(
            FakeProvider(rate_limited()),
            cache_path=cache_path,
            ledger_path=ledger_path,
            clock=clock,
        )

        results = await asyncio.gather(
            *(executor.run(f"question {i}", system_prompt=SYSTEM) for i in range(20)),
            return_exceptions=True,
        )

        assert all(isinstance(r, ExecutionError) for r in results)
        assert {r.kind for r in results} <= {  # type: ignore[union-attr]
            ExecutionKind.RATE_LIMITED,
            ExecutionKind.UNAVAILABLE,
        }
        assert len(executor._ledger.records()) == 20

    @pytest.mark.asyncio
    async def test_concurrent_identical_successes_cache_one_entry(
        self, cache_path: Path, ledger_path: Path
    ) -> None:
        executor = build_executor(
            FakeProvider(), cache_path=cache_path, ledger_path=ledger_path
        )

        results = await asyncio.gather(
            *(executor.run("How do I transfer USDT?", system_prompt=SYSTEM) for _ in range(5))
        )

        assert all(r["answer"] == results[0]["answer"] for r in results)
        assert len(executor._cache) == 1
