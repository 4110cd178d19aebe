"""
FastAPI dependency providers.

Every stateful component of the request-execution core is a process-wide
singleton created on first use: breaker state, cache contents and ledger
records must be shared by all requests to mean anything. Tests replace the
module-level instances before the first request.
"""

from core.config import Settings
from core.generation.base import CompletionProvider
from infrastructure.cache import ResponseCache
from infrastructure.circuit_breaker import BreakerRegistry
from infrastructure.executor import RequestExecutor
from infrastructure.ledger import MetricsLedger
from ingestion.generation import create_completion_provider

_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the settings singleton, read from the environment on first call."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


_breaker_registry: BreakerRegistry | None = None


def get_breaker_registry() -> BreakerRegistry:
    """Return the breaker registry singleton.

    Shared across all requests so failure counts accumulate correctly
    across the lifetime of the server process.
    """
    global _breaker_registry  # noqa: PLW0603
    if _breaker_registry is None:
        _breaker_registry = BreakerRegistry()
    return _breaker_registry


_response_cache: ResponseCache | None = None


def get_response_cache() -> ResponseCache:
    """Return the response cache singleton.

    Creating it deletes the previous process's snapshot, so the app calls
    this once at startup.
    """
    global _response_cache  # noqa: PLW0603
    if _response_cache is None:
        _response_cache = ResponseCache(get_settings().cache_file)
    return _response_cache


_metrics_ledger: MetricsLedger | None = None


def get_metrics_ledger() -> MetricsLedger:
    """Return the attempt ledger singleton (loads existing records on first call)."""
    global _metrics_ledger  # noqa: PLW0603
    if _metrics_ledger is None:
        _metrics_ledger = MetricsLedger(get_settings().metrics_file)
    return _metrics_ledger


_completion_provider: CompletionProvider | None = None


def get_completion_provider() -> CompletionProvider:
    """
    Return a cached completion provider singleton.

    Reads ``LLM_PROVIDER`` from the environment on first call to decide
    between OpenAI-compatible (OpenRouter) and Anthropic.
    """
    global _completion_provider  # noqa: PLW0603
    if _completion_provider is None:
        _completion_provider = create_completion_provider(get_settings().provider)
    return _completion_provider


_request_executor: RequestExecutor | None = None


def get_request_executor() -> RequestExecutor:
    """Return the request executor singleton wired to the other singletons."""
    global _request_executor  # noqa: PLW0603
    if _request_executor is None:
        settings = get_settings()
        _request_executor = RequestExecutor(
            get_completion_provider(),
            cache=get_response_cache(),
            ledger=get_metrics_ledger(),
            breakers=get_breaker_registry(),
            default_model=settings.model,
            breaker_name=settings.breaker_name,
            usd_per_token=settings.usd_per_token,
        )
    return _request_executor
