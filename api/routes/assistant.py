"""
Assistant route — one-shot support answers through the execution core.

``POST /assistant/query`` pipeline:
    1. Moderation — token ceiling, trimming, PII masking.
    2. Load the ``customer-support`` system prompt.
    3. ``RequestExecutor.run`` — cache, breaker, retries, ledger. The masked
       question keys the cache; the upstream sees it in ``<user-query>`` tags.
    4. Map ``ExecutionError`` kinds to HTTP status codes.

Error mapping:
    400 — moderation rejected the question.
    429 — upstream rate limit persisted through every retry.
    503 — upstream unavailable, or the circuit breaker is open.
    500 — anything else (timeouts, malformed upstream output, missing prompt).
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_request_executor, get_settings
from api.schemas.assistant import QueryRequest, QueryResponse
from core.config import Settings
from core.moderation import ModerationError, moderate, wrap_user_query
from infrastructure.executor import (
    PUBLIC_MESSAGES,
    ExecutionError,
    ExecutionKind,
    RequestExecutor,
)
from ingestion.prompts import PromptNotFoundError, load_prompt

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assistant"])

Executor = Annotated[RequestExecutor, Depends(get_request_executor)]
AppSettings = Annotated[Settings, Depends(get_settings)]

SYSTEM_PROMPT_NAME = "customer-support"

_STATUS_BY_KIND: dict[ExecutionKind, int] = {
    ExecutionKind.RATE_LIMITED: 429,
    ExecutionKind.UNAVAILABLE: 503,
    ExecutionKind.FAILED: 500,
}


def _http_error(exc: ExecutionError) -> HTTPException:
    """Translate a classified execution failure into an HTTPException."""
    detail: dict[str, object] = {"reason": exc.kind.value, "message": str(exc)}
    headers: dict[str, str] | None = None
    if exc.reset_in_seconds is not None:
        detail["reset_in_seconds"] = round(exc.reset_in_seconds, 1)
        headers = {"Retry-After": str(max(1, round(exc.reset_in_seconds)))}
    return HTTPException(status_code=_STATUS_BY_KIND[exc.kind], detail=detail, headers=headers)


@router.post("/assistant/query", response_model=QueryResponse, status_code=201)
async def process_query(
    body: QueryRequest,
    executor: Executor,
    settings: AppSettings,
) -> QueryResponse:
    """
    Answer a customer support question.

    Returns:
        QueryResponse with answer, confidence, recommended actions and usage metrics.

    Raises:
        HTTPException 400: Question rejected by moderation.
        HTTPException 429: Upstream rate limit.
        HTTPException 503: Upstream unavailable or circuit open.
        HTTPException 500: Any other processing failure.
    """
    try:
        question = moderate(body.question, max_tokens=settings.max_question_tokens)
    except ModerationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        system_prompt = load_prompt(SYSTEM_PROMPT_NAME, settings.prompts_dir)
    except PromptNotFoundError as exc:
        logger.error("assistant: %s", exc)
        raise HTTPException(
            status_code=500,
            detail={"reason": "failed", "message": PUBLIC_MESSAGES[ExecutionKind.FAILED]},
        ) from exc

    try:
        result = await executor.run(
            question, system_prompt=system_prompt, user_content=wrap_user_query(question)
        )
    except ExecutionError as exc:
        raise _http_error(exc) from exc

    return QueryResponse.model_validate(result)
