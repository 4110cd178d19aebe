"""
Pydantic schemas for the ``/assistant/query`` endpoint.

Wire format is camelCase (``recommendedActions``, ``latencyMs``); Python
attribute names are snake_case. Models accept either form on input.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryRequest(CamelModel):
    """Request body for ``POST /assistant/query``."""

    question: str = Field(
        ...,
        max_length=1000,
        description="Customer query or support ticket content that needs to be analyzed.",
        examples=["Can I send USDT on polygon to BNB chain?"],
    )

    @field_validator("question")
    @classmethod
    def question_must_not_be_empty(cls, v: str) -> str:
        """Validate that question is not empty or whitespace-only."""
        if not v.strip():
            raise ValueError("question must be a non-empty string")
        return v


class Action(CamelModel):
    """A recommended action the UI or agent can present or invoke."""

    type: str = Field(
        ...,
        description=(
            "Short identifier: 'reply', 'escalate', 'suggest_knowledge_base', "
            "'check_transaction', 'verify_address', 'monitor_network_status'."
        ),
    )
    payload: dict[str, Any] | None = Field(
        None, description="Contextual data needed to perform the action."
    )


class QueryMetrics(CamelModel):
    """Per-query usage metrics for monitoring and cost accounting."""

    tokens: int = Field(..., ge=0, description="Tokens consumed for the query/response.")
    latency_ms: float = Field(..., ge=0.0, description="Upstream latency in milliseconds.")
    estimated_usd: float = Field(..., ge=0.0, description="Estimated USD cost for this query.")


class QueryResponse(CamelModel):
    """Response body for ``POST /assistant/query``."""

    answer: str = Field(..., description="Analysis and recommended response for the query.")
    confidence: float = Field(
        ..., ge=0.0, le=1.0, description="Confidence score for the answer (0-1)."
    )
    recommended_actions: list[Action] = Field(
        default_factory=list, description="Recommended actions based on the query."
    )
    metrics: QueryMetrics = Field(..., description="Usage metrics for monitoring and billing.")
    timestamp: str | None = Field(
        None, description="ISO timestamp when the answer was generated."
    )


class HealthResponse(BaseModel):
    """Response body for ``GET /health``."""

    status: str = Field(..., description="Always 'ok' while the process serves requests.")
    timestamp: str = Field(..., description="Current server time (ISO-8601, UTC).")
    uptime: float = Field(..., description="Seconds since the process started.")
