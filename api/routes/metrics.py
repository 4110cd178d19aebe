"""
Metrics routes.

``GET /metrics``             — ledger summary with insights (JSON, camelCase).
``GET /metrics/prometheus``  — Prometheus text exposition of the telemetry counters.
``GET /metrics/breakers``    — status snapshot of every circuit breaker.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from api.deps import get_breaker_registry, get_metrics_ledger
from api.schemas.metrics import BreakerStatus, MetricsSummary
from infrastructure.circuit_breaker import BreakerRegistry
from infrastructure.ledger import MetricsLedger
from infrastructure.metrics import get_metrics_response

router = APIRouter(tags=["metrics"])

Ledger = Annotated[MetricsLedger, Depends(get_metrics_ledger)]
Breakers = Annotated[BreakerRegistry, Depends(get_breaker_registry)]


@router.get("/metrics", response_model=MetricsSummary)
def metrics_summary(ledger: Ledger) -> MetricsSummary:
    """Aggregated request counts, latency, token usage, cost and insights."""
    return MetricsSummary.model_validate(ledger.summarize().to_dict())


@router.get("/metrics/prometheus")
def prometheus_metrics() -> Response:
    """Prometheus metrics endpoint (text exposition format)."""
    body, content_type = get_metrics_response()
    return Response(content=body, media_type=content_type)


@router.get("/metrics/breakers", response_model=list[BreakerStatus])
def breaker_statuses(breakers: Breakers) -> list[BreakerStatus]:
    """Current state and counters of every circuit breaker."""
    return [BreakerStatus.model_validate(s) for s in breakers.statuses()]
