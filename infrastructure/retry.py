"""Exponential backoff retrier for upstream completion calls.

A transient upstream failure (HTTP 429, 5xx, or a dropped connection) must
not surface to the user if a second attempt a moment later would succeed.
``BackoffRetrier`` runs an async operation and retries it with jittered
exponential backoff while the failure stays transient and the retry budget
lasts.

Retry decisions go through ``core.errors.classify_error``; the retrier never
inspects exception types directly and never wraps the error it gives up on.

Usage::

    from infrastructure.retry import BackoffRetrier

    retrier = BackoffRetrier(RetryConfig(max_retries=3))
    response = await retrier.execute(lambda: provider.complete(request))
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from core.config import DEFAULT_RETRY_CONFIG, RetryConfig
from core.errors import classify_error, is_transient
from infrastructure.metrics import record_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def compute_delay(
    retry_number: int,
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds before retry ``retry_number`` (1-based).

    ``min(max_delay, base * 2**n + U(0, jitter * base * 2**n))``

    Args:
        retry_number: 1 for the first retry, 2 for the second, ...
        config: Backoff policy.
        rand: Source of uniform [0, 1) samples.

    Returns:
        Seconds to sleep before the retry.
    """
    if retry_number < 1:
        raise ValueError(f"retry_number must be >= 1, got {retry_number}")
    exponential = config.base_delay_seconds * (2**retry_number)
    jitter = rand() * config.jitter_factor * exponential
    return min(exponential + jitter, config.max_delay_seconds)


class BackoffRetrier:
    """Retry transient failures of an async operation with exponential backoff.

    The instance holds only configuration; every ``execute`` call keeps its
    own attempt counter, so one retrier can serve concurrent calls.

    Args:
        config: Backoff policy (default: 3 retries, 1s base, 10s cap, 25% jitter).
        sleep: Awaitable sleep function. Injected in tests to skip wall time.
        rand: Source of uniform [0, 1) samples for jitter.
    """

    def __init__(
        self,
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
        *,
        sleep: Sleep = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._rand = rand

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds, fails permanently, or exhausts retries.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt.

        Returns:
            The operation's result.

        Raises:
            Exception: The first non-transient error, or the last transient
                error once ``max_retries`` retries have been spent.
        """
        retries = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                kind = classify_error(exc)
                if not is_transient(kind) or retries >= self.config.max_retries:
                    raise
                retries += 1
                delay = compute_delay(retries, self.config, self._rand)
                record_retry(kind.value)
                logger.warning(
                    "retry: attempt %d/%d failed (%s: %s) — retrying in %.2fs",
                    retries,
                    self.config.max_retries + 1,
                    kind.value,
                    exc,
                    delay,
                )
                await self._sleep(delay)
