"""Request executor — the orchestration seam of the completion assistant.

Pipeline for ``RequestExecutor.run``:
    1. Fingerprint (moderated question, model).
    2. Cache hit → return the cached answer. No breaker, retrier or ledger
       involvement; the hit is only visible in the Prometheus cache counter.
    3. Cache miss → ``breaker.call(retrier.execute(provider.complete))``. A
       reply without a string ``answer`` fails inside the breaker, like any
       other malformed reply.
    4. Success → build the answer, append a success ``AttemptRecord``,
       store the answer in the cache, return it.
    5. Failure → classify, append a failure ``AttemptRecord`` (zero latency,
       tokens and cost), raise ``ExecutionError``. Nothing is cached.

Only upstream-path failures reach the caller, always as ``ExecutionError``
with one of three public kinds. Cache and ledger persistence failures are
absorbed by those components.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from core.config import DEFAULT_RETRY_CONFIG, RetryConfig
from core.costs import DEFAULT_USD_PER_TOKEN, estimate_cost
from core.errors import ErrorKind, UpstreamError, classify_error, status_of
from core.generation.base import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
    Message,
)
from infrastructure.cache import ResponseCache, make_fingerprint
from infrastructure.circuit_breaker import BreakerRegistry, CircuitBreaker
from infrastructure.ledger import AttemptRecord, MetricsLedger
from infrastructure.metrics import LatencyTimer, record_query
from infrastructure.retry import BackoffRetrier

logger = logging.getLogger(__name__)

DEFAULT_BREAKER_NAME = "llm-service"
DEFAULT_CONFIDENCE = 0.5


class ExecutionKind(Enum):
    """Externally visible failure classes."""

    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


PUBLIC_MESSAGES: dict[ExecutionKind, str] = {
    ExecutionKind.RATE_LIMITED: "Rate limit exceeded. Please try again later.",
    ExecutionKind.UNAVAILABLE: "LLM service temporarily unavailable. Please try again later.",
    ExecutionKind.FAILED: "Failed to process LLM request. Please try again.",
}


class ExecutionError(Exception):
    """Classified failure of ``RequestExecutor.run``.

    The message is safe to show to end users; the internal cause is kept in
    ``cause_kind`` and ``__cause__``.

    Args:
        kind: Public failure class.
        cause_kind: Internal ``ErrorKind`` the failure was classified as.
        reset_in_seconds: Seconds until the breaker probes again, when the
            failure was a breaker rejection.
    """

    def __init__(
        self,
        kind: ExecutionKind,
        cause_kind: ErrorKind,
        *,
        reset_in_seconds: float | None = None,
    ) -> None:
        self.kind = kind
        self.cause_kind = cause_kind
        self.reset_in_seconds = reset_in_seconds
        super().__init__(PUBLIC_MESSAGES[kind])


def execution_kind_for(kind: ErrorKind) -> ExecutionKind:
    """Collapse an internal ``ErrorKind`` into a public ``ExecutionKind``."""
    if kind == ErrorKind.RATE_LIMITED:
        return ExecutionKind.RATE_LIMITED
    if kind in (ErrorKind.UNAVAILABLE, ErrorKind.CIRCUIT_OPEN):
        return ExecutionKind.UNAVAILABLE
    return ExecutionKind.FAILED


def _coerce_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def _coerce_actions(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [a for a in value if isinstance(a, dict) and isinstance(a.get("type"), str)]


class RequestExecutor:
    """Runs one-shot completions through cache, breaker, retrier and ledger.

    Args:
        provider: Upstream completion provider.
        cache: Response cache shared by every request of the process.
        ledger: Attempt ledger.
        breakers: Registry the upstream breaker is looked up in.
        default_model: Model used when ``run`` is not given one.
        breaker_name: Name of the upstream's breaker (default ``"llm-service"``).
        retrier: Backoff retrier. Built from ``retry_config`` when omitted.
        retry_config: Policy for the default retrier.
        usd_per_token: Flat cost estimate per total token.
        temperature: Sampling temperature sent upstream.
        max_tokens: Completion token cap sent upstream.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        cache: ResponseCache,
        ledger: MetricsLedger,
        breakers: BreakerRegistry,
        default_model: str,
        breaker_name: str = DEFAULT_BREAKER_NAME,
        retrier: BackoffRetrier | None = None,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        usd_per_token: float = DEFAULT_USD_PER_TOKEN,
        temperature: float = 0.7,
        max_tokens: int = 250,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._ledger = ledger
        self._breakers = breakers
        self._breaker_name = breaker_name
        self._retrier = retrier or BackoffRetrier(retry_config)
        self.default_model = default_model
        self._usd_per_token = usd_per_token
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def breaker(self) -> CircuitBreaker:
        """The breaker guarding the upstream (created on first access)."""
        return self._breakers.get(self._breaker_name)

    async def run(
        self,
        question: str,
        *,
        system_prompt: str,
        model: str | None = None,
        user_content: str | None = None,
    ) -> dict[str, Any]:
        """Answer ``question``, from cache when possible.

        Args:
            question: Moderated user question. Keys the cache and is the
                source of the ledger snippet.
            system_prompt: System prompt sent ahead of the question.
            model: Model override; defaults to ``default_model``.
            user_content: User message sent upstream, when it differs from
                ``question`` (e.g. wrapped in ``<user-query>`` tags).

        Returns:
            Answer dict: ``answer``, ``confidence``, ``recommendedActions``,
            ``metrics`` (``tokens``, ``latencyMs``, ``estimatedUsd``), ``timestamp``.

        Raises:
            ExecutionError: If the upstream call path failed.
        """
        model = model or self.default_model
        fingerprint = make_fingerprint(question, model)

        cached = self._cache.get(fingerprint)
        if cached is not None:
            record_query(outcome="cache_hit", latency_seconds=0.0)
            return cached

        request = CompletionRequest(
            messages=(
                Message(role="system", content=system_prompt),
                Message(role="user", content=user_content or question),
            ),
            model=model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )

        timer = LatencyTimer()
        try:
            with timer:
                response = await self.breaker.call(
                    lambda: self._retrier.execute(lambda: self._complete(request))
                )
        except Exception as exc:
            error = await self._fail(exc, question=question, model=model)
            record_query(outcome=error.kind.value, latency_seconds=timer.elapsed)
            raise error from exc

        result = self._build_result(response, timer.elapsed_ms)
        await self._ledger.record(
            AttemptRecord(
                latency_ms=result["metrics"]["latencyMs"],
                success=True,
                tokens=response.total_tokens,
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
                cost_usd=result["metrics"]["estimatedUsd"],
                confidence=result["confidence"],
                model=response.model or model,
                question_snippet=AttemptRecord.snippet(question),
            )
        )
        await self._cache.put(fingerprint, result)
        record_query(outcome="success", latency_seconds=timer.elapsed)
        return result

    async def _complete(self, request: CompletionRequest) -> CompletionResponse:
        """One upstream attempt; a reply without a string ``answer`` is malformed."""
        response = await self._provider.complete(request)
        if not isinstance(response.content.get("answer"), str):
            raise UpstreamError(
                "completion JSON has no string 'answer' field", kind=ErrorKind.MALFORMED
            )
        return response

    def _build_result(self, response: CompletionResponse, latency_ms: float) -> dict[str, Any]:
        """Shape a validated upstream reply into the answer contract."""
        content = response.content
        return {
            "answer": content["answer"],
            "confidence": _coerce_confidence(content.get("confidence")),
            "recommendedActions": _coerce_actions(content.get("recommendedActions")),
            "metrics": {
                "tokens": response.total_tokens,
                "latencyMs": latency_ms,
                "estimatedUsd": estimate_cost(response.total_tokens, self._usd_per_token),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def _fail(self, exc: Exception, *, question: str, model: str) -> ExecutionError:
        """Record a failure entry and build the classified error."""
        cause_kind = classify_error(exc)
        kind = execution_kind_for(cause_kind)
        logger.error(
            "RequestExecutor: upstream call failed (%s → %s): %s",
            cause_kind.value,
            kind.value,
            exc,
        )
        await self._ledger.record(
            AttemptRecord.failure_record(
                str(exc) or type(exc).__name__,
                status=status_of(exc),
                model=model,
                question=question,
            )
        )
        return ExecutionError(
            kind,
            cause_kind,
            reset_in_seconds=getattr(exc, "reset_in_seconds", None),
        )
