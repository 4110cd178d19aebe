"""
Configuration dataclasses for the request-execution core.

These immutable config objects decouple tuning parameters from function
signatures, so a retrier or breaker can be built from a single value and
standard configurations can be shared between the app and the tests.

``Settings`` gathers the service-level knobs that come from the environment.
It is the only place that reads ``os.environ``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class RetryConfig:
    """
    Exponential backoff policy for transient upstream failures.

    Attributes:
        max_retries: Retries allowed after the first attempt. Defaults to 3,
            so an always-failing call is attempted 4 times in total.
        base_delay_seconds: Base of the exponential delay. Retry ``n`` waits
            ``base * 2**n`` seconds before jitter. Defaults to 1.0.
        max_delay_seconds: Upper bound on any single delay. Defaults to 10.0.
        jitter_factor: Fraction of the exponential delay added as uniform
            random jitter. Defaults to 0.25.

    Example:
        >>> config = RetryConfig(max_retries=5, base_delay_seconds=0.5)
        >>> retrier = BackoffRetrier(config)
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    jitter_factor: float = 0.25

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if self.base_delay_seconds < 0:
            raise ValueError(
                f"base_delay_seconds must be non-negative, got {self.base_delay_seconds}"
            )
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0 and 1, got {self.jitter_factor}")


@dataclass(frozen=True)
class BreakerConfig:
    """
    Tuning for a single named circuit breaker.

    Attributes:
        timeout_seconds: Per-call time budget. A call that exceeds it counts
            as a failure. Defaults to 10.0.
        error_threshold: Failure percentage (0-100) at or above which the
            breaker opens. Defaults to 50.
        reset_timeout_seconds: Time spent OPEN before a probe is allowed.
            Defaults to 30.0.
        volume_threshold: Minimum calls inside the rolling window before the
            error percentage is evaluated. Defaults to 10.
        rolling_window_seconds: Age after which a call outcome no longer
            counts toward the error percentage. Defaults to 10.0.
    """

    timeout_seconds: float = 10.0
    error_threshold: float = 50.0
    reset_timeout_seconds: float = 30.0
    volume_threshold: int = 10
    rolling_window_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if not 0.0 < self.error_threshold <= 100.0:
            raise ValueError(
                f"error_threshold must be in (0, 100], got {self.error_threshold}"
            )
        if self.reset_timeout_seconds < 0:
            raise ValueError(
                f"reset_timeout_seconds must be non-negative, got {self.reset_timeout_seconds}"
            )
        if self.volume_threshold < 1:
            raise ValueError(f"volume_threshold must be >= 1, got {self.volume_threshold}")
        if self.rolling_window_seconds <= 0:
            raise ValueError(
                f"rolling_window_seconds must be positive, got {self.rolling_window_seconds}"
            )


DEFAULT_RETRY_CONFIG = RetryConfig()
"""Default retry policy: 3 retries, 1s base, 10s cap, 25% jitter."""

DEFAULT_BREAKER_CONFIG = BreakerConfig()
"""Default breaker: 10s timeout, 50% errors over >=10 calls, 30s reset."""


@dataclass(frozen=True)
class Settings:
    """
    Service-level settings resolved from the environment.

    Attributes:
        provider: Upstream provider name, ``"openai"`` or ``"anthropic"``.
        model: Default model identifier sent upstream and mixed into the
            cache fingerprint.
        cache_dir: Directory holding the cache snapshot ``cache.json``.
        metrics_dir: Directory holding the ledger file ``metrics.json``.
        prompts_dir: Directory holding ``<name>.prompt.txt`` files.
        usd_per_token: Flat cost estimate applied to total tokens.
        max_question_tokens: Token ceiling enforced by the moderation pass.
        breaker_name: Name of the breaker guarding the upstream.
    """

    provider: str = "openai"
    model: str = "openai/gpt-3.5-turbo"
    cache_dir: Path = field(default_factory=lambda: Path("cache"))
    metrics_dir: Path = field(default_factory=lambda: Path("metrics"))
    prompts_dir: Path = field(default_factory=lambda: Path("prompts"))
    usd_per_token: float = 0.000001
    max_question_tokens: int = 200
    breaker_name: str = "llm-service"

    @property
    def cache_file(self) -> Path:
        return self.cache_dir / "cache.json"

    @property
    def metrics_file(self) -> Path:
        return self.metrics_dir / "metrics.json"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (``.env`` honoured)."""
        load_dotenv()
        env = os.environ
        return cls(
            provider=env.get("LLM_PROVIDER", "openai").lower().strip(),
            model=env.get("LLM_MODEL", cls.model),
            cache_dir=Path(env.get("CACHE_DIR", "cache")),
            metrics_dir=Path(env.get("METRICS_DIR", "metrics")),
            prompts_dir=Path(env.get("PROMPTS_DIR", "prompts")),
            usd_per_token=float(env.get("USD_PER_TOKEN", cls.usd_per_token)),
            max_question_tokens=int(env.get("MAX_QUESTION_TOKENS", cls.max_question_tokens)),
        )
