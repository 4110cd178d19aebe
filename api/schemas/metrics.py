"""
Pydantic schemas for the ``/metrics`` endpoints.

``MetricsSummary`` mirrors ``infrastructure.ledger.LedgerSummary`` with
camelCase wire names (``totalRequests``, ``avgLatency``, ...).
"""

from pydantic import Field

from api.schemas.assistant import CamelModel


class AttemptErrorOut(CamelModel):
    """Error details of a failed attempt."""

    message: str
    status: int | None = None


class AttemptRecordOut(CamelModel):
    """One ledger entry as exposed in ``recent``."""

    timestamp: str
    latency_ms: float
    success: bool
    tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0
    error: AttemptErrorOut | None = None
    confidence: float | None = None
    model: str | None = None
    question_snippet: str | None = None


class MetricsSummary(CamelModel):
    """Response body for ``GET /metrics``."""

    total_requests: int = Field(..., description="Total upstream attempt sequences recorded.")
    successes: int = Field(..., description="Number of successful requests.")
    failures: int = Field(..., description="Number of failed requests.")
    error_rate: float = Field(..., description="Error rate as a decimal (0-1).")
    avg_latency: float = Field(..., description="Average latency in milliseconds.")
    median_latency: float = Field(..., description="Median latency in milliseconds.")
    total_tokens: int = Field(..., description="Total tokens consumed across all requests.")
    total_prompt: int = Field(..., description="Total prompt tokens used.")
    total_completion: int = Field(..., description="Total completion tokens used.")
    total_cost: float = Field(..., description="Total estimated cost in USD.")
    avg_confidence: float | None = Field(
        None, description="Average confidence (0-1); null when no record has one."
    )
    insights: list[str] = Field(
        default_factory=list, description="Advisory insights derived from the aggregates."
    )
    recent: list[AttemptRecordOut] = Field(
        default_factory=list, description="Most recent records (up to 50), newest first."
    )


class BreakerStatus(CamelModel):
    """Snapshot of one circuit breaker, as returned by ``GET /metrics/breakers``."""

    name: str
    state: str
    window_calls: int
    window_error_pct: float
    error_threshold: float
    volume_threshold: int
    reset_timeout_seconds: float
    timeout_seconds: float
    last_transition_ago_seconds: float
    stats: dict[str, int]
