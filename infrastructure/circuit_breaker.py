"""Circuit breaker for the upstream completion API.

Prevents cascading failures when the upstream is degraded. The breaker has
three states:

    CLOSED    — Normal operation. Calls pass through and their outcomes are
                kept in a rolling window.
    OPEN      — Upstream is failing. Calls are rejected immediately without
                touching the upstream (or the retry budget) for
                ``reset_timeout_seconds``.
    HALF-OPEN — Testing recovery. Exactly one probe call is allowed through.
                If it succeeds → CLOSED. If it fails → back to OPEN.

State machine::

    CLOSED ──(≥volume calls, ≥threshold% failed)──→ OPEN ──(reset timeout)──→ HALF-OPEN
      ↑                                                                         │
      └──────────────────────────────(probe success)────────────────────────────┘
                                      └──(probe failure)──→ OPEN

Every call also runs under a time budget (``timeout_seconds``). A call that
exceeds it counts as a failure and raises ``CircuitTimeoutError``.

Breakers are created through a ``BreakerRegistry`` so that every caller
naming the same upstream shares one state machine.

Usage::

    from infrastructure.circuit_breaker import BreakerRegistry, CircuitOpenError

    registry = BreakerRegistry()
    breaker = registry.get("llm-service")

    try:
        response = await breaker.call(lambda: provider.complete(request))
    except CircuitOpenError:
        # Upstream is known to be down, fail fast
        raise
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from core.config import DEFAULT_BREAKER_CONFIG, BreakerConfig
from core.errors import ErrorKind
from infrastructure.metrics import (
    record_circuit_rejected,
    record_circuit_timeout,
    record_circuit_transition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(Enum):
    """Circuit breaker state machine states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised when a call is attempted while the circuit is OPEN.

    This is NOT an upstream error — it means the breaker short-circuited the
    call. No upstream request was made and no retry budget was spent.

    Args:
        name: Circuit breaker name for context.
        reset_in_seconds: Approximate seconds until the circuit will probe again.
    """

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, name: str, reset_in_seconds: float) -> None:
        """Initialize with breaker name and time-to-reset."""
        self.name = name
        self.reset_in_seconds = reset_in_seconds
        super().__init__(
            f"Circuit '{name}' is OPEN — service unavailable. "
            f"Will probe again in ~{reset_in_seconds:.0f}s."
        )


class CircuitTimeoutError(Exception):
    """Raised when the wrapped call exceeds the breaker's time budget.

    Args:
        name: Circuit breaker name for context.
        timeout_seconds: The budget that was exceeded.
    """

    kind = ErrorKind.TIMEOUT

    def __init__(self, name: str, timeout_seconds: float) -> None:
        self.name = name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Circuit '{name}': call timed out after {timeout_seconds:g}s")


@dataclass
class CircuitStats:
    """Lifetime statistics for a circuit breaker instance."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0  # calls rejected because circuit was OPEN or probing
    timed_out_calls: int = 0
    state_changes: list[tuple[str, float]] = field(default_factory=list)

    def record_state_change(self, new_state: CircuitState) -> None:
        """Record a state transition with timestamp."""
        self.state_changes.append((new_state.value, time.time()))


class CircuitBreaker:
    """Named circuit breaker with a rolling error-rate window.

    State is mutated only inside short ``threading.Lock`` sections that never
    span an ``await``, so the breaker is safe from the event loop and from
    worker threads alike.

    Args:
        name: Human-readable name for logging and error messages.
        config: Thresholds and timeouts (default: 10s call timeout, 50% errors
            over at least 10 calls, 30s reset).
        clock: Monotonic clock in seconds. Injected in tests.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig = DEFAULT_BREAKER_CONFIG,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the circuit breaker in CLOSED state."""
        self.name = name
        self.config = config
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._window: deque[tuple[float, bool]] = deque()
        self._opened_at: float = 0.0
        self._last_transition_at: float = clock()
        self._probe_in_flight = False
        self._lock = threading.Lock()
        self.stats = CircuitStats()

        logger.info(
            "CircuitBreaker '%s' initialized (threshold=%.0f%% over %d calls, timeout=%.1fs, reset=%.0fs)",
            name,
            config.error_threshold,
            config.volume_threshold,
            config.timeout_seconds,
            config.reset_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # State inspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current circuit state. An expired OPEN state reads as HALF_OPEN."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def is_open(self) -> bool:
        """True if circuit is OPEN (rejecting calls)."""
        return self.state == CircuitState.OPEN

    def _maybe_half_open(self) -> None:
        """OPEN → HALF-OPEN once the reset timeout has elapsed. Lock held."""
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.config.reset_timeout_seconds
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state and report it. Lock held."""
        old_state = self._state
        self._state = new_state
        self._last_transition_at = self._clock()
        if new_state == CircuitState.OPEN:
            self._opened_at = self._last_transition_at
        elif new_state == CircuitState.CLOSED:
            self._window.clear()
        self.stats.record_state_change(new_state)
        record_circuit_transition(self.name, new_state.value)
        logger.warning(
            "CircuitBreaker '%s': %s → %s",
            self.name,
            old_state.value.upper(),
            new_state.value.upper(),
        )

    def _prune(self, now: float) -> None:
        """Drop window entries older than the rolling window. Lock held."""
        horizon = now - self.config.rolling_window_seconds
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _error_percentage(self) -> float:
        """Failure percentage over the current window. Lock held."""
        if not self._window:
            return 0.0
        failures = sum(1 for _, ok in self._window if not ok)
        return failures / len(self._window) * 100

    # ------------------------------------------------------------------
    # Call bookkeeping
    # ------------------------------------------------------------------

    def _admit(self) -> bool:
        """Admit or reject a call. Returns True if the call is the HALF-OPEN probe."""
        with self._lock:
            self.stats.total_calls += 1
            self._maybe_half_open()

            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                logger.info("CircuitBreaker '%s': probe call allowed", self.name)
                return True

            self.stats.rejected_calls += 1
            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._opened_at
                reset_in = max(0.0, self.config.reset_timeout_seconds - elapsed)
            else:
                reset_in = 0.0

        record_circuit_rejected(self.name)
        logger.warning("CircuitBreaker '%s' rejected request", self.name)
        raise CircuitOpenError(self.name, reset_in)

    def _on_success(self, is_probe: bool) -> None:
        with self._lock:
            self.stats.successful_calls += 1
            if is_probe:
                self._probe_in_flight = False
                if self._state == CircuitState.HALF_OPEN:
                    self._transition_to(CircuitState.CLOSED)
                    logger.info("CircuitBreaker '%s': service recovered", self.name)
                return
            if self._state == CircuitState.CLOSED:
                now = self._clock()
                self._window.append((now, True))
                self._prune(now)

    def _on_failure(self, is_probe: bool, exc: BaseException) -> None:
        with self._lock:
            self.stats.failed_calls += 1
            if is_probe:
                self._probe_in_flight = False
                if self._state == CircuitState.HALF_OPEN:
                    self._transition_to(CircuitState.OPEN)
                return
            if self._state != CircuitState.CLOSED:
                return

            now = self._clock()
            self._window.append((now, False))
            self._prune(now)
            volume = len(self._window)
            if volume < self.config.volume_threshold:
                return
            error_pct = self._error_percentage()
            if error_pct >= self.config.error_threshold:
                self._transition_to(CircuitState.OPEN)
                logger.error(
                    "CircuitBreaker '%s': TRIPPED at %.0f%% errors over %d calls. Last: %s",
                    self.name,
                    error_pct,
                    volume,
                    exc,
                )

    def _release_probe(self, is_probe: bool) -> None:
        if is_probe:
            with self._lock:
                self._probe_in_flight = False

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute an async operation through the circuit breaker.

        Args:
            operation: Zero-argument callable returning the awaitable to run.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: If circuit is OPEN or a probe is already in flight.
            CircuitTimeoutError: If the operation exceeded ``timeout_seconds``
                (recorded as failure).
            Exception: Any exception raised by the operation (recorded as failure).
        """
        is_probe = self._admit()

        try:
            result = await asyncio.wait_for(operation(), timeout=self.config.timeout_seconds)
        except asyncio.TimeoutError as exc:
            with self._lock:
                self.stats.timed_out_calls += 1
            record_circuit_timeout(self.name)
            self._on_failure(is_probe, exc)
            raise CircuitTimeoutError(self.name, self.config.timeout_seconds) from None
        except asyncio.CancelledError:
            self._release_probe(is_probe)
            raise
        except Exception as exc:
            self._on_failure(is_probe, exc)
            raise

        self._on_success(is_probe)
        return result

    def reset(self) -> None:
        """Manually force circuit to CLOSED state (e.g. after maintenance).

        Useful in tests and admin endpoints.
        """
        with self._lock:
            self._probe_in_flight = False
            self._transition_to(CircuitState.CLOSED)

    def status(self) -> dict[str, Any]:
        """Return a snapshot of the circuit breaker status.

        Returns:
            Dict with state, window counters, stats, and config.
        """
        with self._lock:
            self._maybe_half_open()
            now = self._clock()
            self._prune(now)
            return {
                "name": self.name,
                "state": self._state.value,
                "window_calls": len(self._window),
                "window_error_pct": round(self._error_percentage(), 1),
                "error_threshold": self.config.error_threshold,
                "volume_threshold": self.config.volume_threshold,
                "reset_timeout_seconds": self.config.reset_timeout_seconds,
                "timeout_seconds": self.config.timeout_seconds,
                "last_transition_ago_seconds": round(now - self._last_transition_at, 1),
                "stats": {
                    "total": self.stats.total_calls,
                    "success": self.stats.successful_calls,
                    "failed": self.stats.failed_calls,
                    "rejected": self.stats.rejected_calls,
                    "timed_out": self.stats.timed_out_calls,
                },
            }


class BreakerRegistry:
    """Lazily creates and memoizes one ``CircuitBreaker`` per name.

    Lookup is by exact string match. Creation happens under a lock, so two
    concurrent first uses of a name still share a single breaker.

    Args:
        default_config: Config for breakers created without an explicit one.
        clock: Monotonic clock handed to every breaker. Injected in tests.
    """

    def __init__(
        self,
        default_config: BreakerConfig = DEFAULT_BREAKER_CONFIG,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self._default_config = default_config
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str, config: BreakerConfig | None = None) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use.

        ``config`` only applies when the breaker is created; later lookups
        return the existing instance unchanged.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name, config or self._default_config, clock=self._clock
                )
                self._breakers[name] = breaker
            return breaker

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def statuses(self) -> list[dict[str, Any]]:
        """Status snapshots of every breaker, sorted by name."""
        with self._lock:
            breakers = sorted(self._breakers.values(), key=lambda b: b.name)
        return [b.status() for b in breakers]
