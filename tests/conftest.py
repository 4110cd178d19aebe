"""
Shared fixtures for the test suite.

Centralizes reusable test infrastructure so individual test files
don't need to repeat fake-provider / executor wiring boilerplate.
"""

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import api.deps as deps
from api.main import app
from core.config import BreakerConfig, RetryConfig, Settings
from core.errors import UpstreamError
from core.generation.base import CompletionRequest, CompletionResponse
from infrastructure.cache import ResponseCache
from infrastructure.circuit_breaker import BreakerRegistry
from infrastructure.executor import RequestExecutor
from infrastructure.ledger import MetricsLedger
from infrastructure.retry import BackoffRetrier

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CONTENT: dict = {
    "answer": "Use the Polygon bridge, then withdraw to BSC.",
    "confidence": 0.9,
    "recommendedActions": [
        {"type": "reply", "payload": {"suggestedReply": "Bridge first, then withdraw."}}
    ],
}
"""Well-formed completion content the fake provider returns by default."""


def make_response(**overrides: object) -> CompletionResponse:
    """Build a ``CompletionResponse`` with sensible usage numbers."""
    defaults: dict[str, object] = {
        "content": dict(DEFAULT_CONTENT),
        "model": "m1",
        "prompt_tokens": 120,
        "completion_tokens": 30,
        "total_tokens": 150,
        "latency_ms": 42.0,
    }
    defaults.update(overrides)
    return CompletionResponse(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProvider:
    """Scripted completion provider — no network.

    Each call consumes the next outcome; the last outcome repeats once the
    script is exhausted. An outcome is either a ``CompletionResponse`` to
    return or an exception to raise.
    """

    def __init__(self, *outcomes: CompletionResponse | Exception) -> None:
        self._outcomes = list(outcomes) or [make_response()]
        self.calls: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.calls.append(request)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_: float) -> None:
    """Stand-in for ``asyncio.sleep`` that returns immediately."""
    return None


def rate_limited() -> UpstreamError:
    return UpstreamError("429 Too Many Requests", status=429)


def unavailable() -> UpstreamError:
    return UpstreamError("503 Service Unavailable", status=503)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "cache" / "cache.json"


@pytest.fixture()
def ledger_path(tmp_path: Path) -> Path:
    return tmp_path / "metrics" / "metrics.json"


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def build_executor(
    provider: FakeProvider,
    *,
    cache_path: Path,
    ledger_path: Path,
    clock: FakeClock | None = None,
    breaker_config: BreakerConfig | None = None,
    retry_config: RetryConfig | None = None,
) -> RequestExecutor:
    """Wire a ``RequestExecutor`` around fakes with instant backoff."""
    registry = BreakerRegistry(breaker_config or BreakerConfig(), clock=clock or FakeClock())
    return RequestExecutor(
        provider,
        cache=ResponseCache(cache_path),
        ledger=MetricsLedger(ledger_path),
        breakers=registry,
        default_model="m1",
        retrier=BackoffRetrier(retry_config or RetryConfig(), sleep=no_sleep),
    )


# ---------------------------------------------------------------------------
# FastAPI test client fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    prompts_dir = tmp_path / "prompts"
    prompts_dir.mkdir()
    (prompts_dir / "customer-support.prompt.txt").write_text(
        "Answer as JSON.", encoding="utf-8"
    )
    return Settings(
        model="m1",
        cache_dir=tmp_path / "cache",
        metrics_dir=tmp_path / "metrics",
        prompts_dir=prompts_dir,
    )


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def api_client(
    test_settings: Settings,
    fake_provider: FakeProvider,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[TestClient]:
    """FastAPI ``TestClient`` with every core singleton rebuilt on tmp paths.

    The provider is a ``FakeProvider``; access it as ``client.provider``.
    """
    monkeypatch.setattr(deps, "_settings", test_settings)
    monkeypatch.setattr(deps, "_breaker_registry", BreakerRegistry())
    monkeypatch.setattr(deps, "_response_cache", None)
    monkeypatch.setattr(deps, "_metrics_ledger", None)
    monkeypatch.setattr(deps, "_completion_provider", fake_provider)
    executor = RequestExecutor(
        fake_provider,
        cache=deps.get_response_cache(),
        ledger=deps.get_metrics_ledger(),
        breakers=deps.get_breaker_registry(),
        default_model=test_settings.model,
        retrier=BackoffRetrier(RetryConfig(), sleep=no_sleep),
    )
    monkeypatch.setattr(deps, "_request_executor", executor)

    with TestClient(app) as c:
        c.provider = fake_provider  # type: ignore[attr-defined]
        yield c
