"""
Upstream completion providers — OpenAI-compatible and Anthropic implementations.

Implements the ``CompletionProvider`` protocol from core using the async
OpenAI and Anthropic SDKs. Lives in ingestion/ because it performs network
I/O (core/ must remain pure).

The default upstream is OpenRouter, reached through the OpenAI SDK with a
custom ``base_url``. SDK-level retries are disabled: retries belong to
``infrastructure.retry.BackoffRetrier`` so the breaker sees one outcome per
attempt sequence.

Every failure is raised as ``core.errors.UpstreamError`` carrying the HTTP
status (when there is one) and an ``ErrorKind``.

Usage::

    provider = create_completion_provider()  # reads LLM_PROVIDER env var
    response = await provider.complete(request)
"""

import json
import os
import time
from typing import Any

import anthropic
import openai
from dotenv import load_dotenv

from core.errors import ErrorKind, UpstreamError
from core.generation.base import CompletionRequest, CompletionResponse, Message

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def parse_json_content(raw: str | None) -> dict[str, Any]:
    """Decode the completion text as a JSON object.

    Empty content decodes to ``{}``.

    Raises:
        UpstreamError: ``MALFORMED`` if the text is not a JSON object.
    """
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise UpstreamError(
            f"completion is not valid JSON: {exc}", kind=ErrorKind.MALFORMED
        ) from exc
    if not isinstance(data, dict):
        raise UpstreamError(
            f"completion JSON is a {type(data).__name__}, expected an object",
            kind=ErrorKind.MALFORMED,
        )
    return data


class OpenAICompletionProvider:
    """
    Completion provider backed by an OpenAI-compatible chat completions API.

    Reads ``OPENAI_ROUTER_API_KEY`` (then ``OPENAI_API_KEY``) and
    ``OPENAI_BASE_URL`` from the environment. Defaults to OpenRouter.

    Satisfies the ``CompletionProvider`` protocol.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        if client is not None:
            self._client = client
            return
        load_dotenv()
        resolved_key = (
            api_key
            or os.environ.get("OPENAI_ROUTER_API_KEY", "")
            or os.environ.get("OPENAI_API_KEY", "")
        )
        if not resolved_key:
            raise ValueError(
                "OPENAI_ROUTER_API_KEY must be set in the environment or passed explicitly"
            )
        self._client = openai.AsyncOpenAI(
            api_key=resolved_key,
            base_url=base_url or os.environ.get("OPENAI_BASE_URL", OPENROUTER_BASE_URL),
            max_retries=0,
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Complete via the chat completions API.

        Args:
            request: Completion request with messages, model and sampling settings.

        Returns:
            CompletionResponse with decoded JSON content and usage metadata.

        Raises:
            UpstreamError: If the API call fails or the content is not a JSON object.
        """
        messages = [{"role": m.role, "content": m.content} for m in request.messages]
        start = time.perf_counter()
        try:
            response = await self._client.chat.completions.create(
                model=request.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
        except openai.APIStatusError as exc:
            raise UpstreamError(
                f"OpenAI completion failed: {exc}", status=exc.status_code
            ) from exc
        except openai.APIConnectionError as exc:
            raise UpstreamError(
                f"OpenAI connection failed: {exc}", kind=ErrorKind.UNAVAILABLE
            ) from exc
        except openai.OpenAIError as exc:
            raise UpstreamError(f"OpenAI completion failed: {exc}") from exc

        if not response.choices:
            raise UpstreamError("completion has no choices", kind=ErrorKind.MALFORMED)

        usage = response.usage
        return CompletionResponse(
            content=parse_json_content(response.choices[0].message.content),
            model=response.model or request.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            latency_ms=round((time.perf_counter() - start) * 1000, 1),
        )


class AnthropicCompletionProvider:
    """
    Completion provider backed by Anthropic's Messages API.

    Reads ``ANTHROPIC_API_KEY`` from the environment.

    Satisfies the ``CompletionProvider`` protocol.

    Note: Anthropic's API separates system prompt from messages.
    System messages are extracted and passed as the ``system`` parameter.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        client: Any = None,
    ) -> None:
        if client is not None:
            self._client = client
            return
        load_dotenv()
        resolved_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not resolved_key:
            raise ValueError(
                "ANTHROPIC_API_KEY must be set in the environment or passed explicitly"
            )
        self._client = anthropic.AsyncAnthropic(api_key=resolved_key, max_retries=0)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Complete via the Anthropic Messages API.

        Args:
            request: Completion request with messages, model and sampling settings.

        Returns:
            CompletionResponse with decoded JSON content and usage metadata.

        Raises:
            UpstreamError: If the API call fails or the content is not a JSON object.
        """
        system_text, conversation = _split_system_messages(request.messages)
        kwargs: dict = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in conversation],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if system_text:
            kwargs["system"] = system_text

        start = time.perf_counter()
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise UpstreamError(
                f"Anthropic completion failed: {exc}", status=exc.status_code
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise UpstreamError(
                f"Anthropic connection failed: {exc}", kind=ErrorKind.UNAVAILABLE
            ) from exc
        except anthropic.AnthropicError as exc:
            raise UpstreamError(f"Anthropic completion failed: {exc}") from exc

        # Anthropic returns content as a list of blocks
        text = "".join(block.text for block in response.content if block.type == "text")
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens

        return CompletionResponse(
            content=parse_json_content(text),
            model=response.model or request.model,
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            latency_ms=round((time.perf_counter() - start) * 1000, 1),
        )


def _split_system_messages(
    messages: tuple[Message, ...],
) -> tuple[str, tuple[Message, ...]]:
    """Separate system messages from conversation messages.

    Args:
        messages: Full message tuple including system messages.

    Returns:
        Tuple of (system_text, remaining_messages).
    """
    system_parts: list[str] = []
    conversation: list[Message] = []

    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
        else:
            conversation.append(msg)

    return "\n\n".join(system_parts), tuple(conversation)


def create_completion_provider(
    provider: str | None = None,
    *,
    api_key: str | None = None,
) -> OpenAICompletionProvider | AnthropicCompletionProvider:
    """Factory: create a completion provider based on configuration.

    Reads ``LLM_PROVIDER`` from the environment if *provider* is not
    specified. Defaults to ``"openai"`` (OpenRouter) if the env var is unset.

    Args:
        provider: Provider name — ``"openai"`` or ``"anthropic"``.
        api_key: Optional API key override. Reads from env if omitted.

    Returns:
        A concrete provider satisfying ``CompletionProvider``.

    Raises:
        ValueError: If provider name is not recognized.
    """
    load_dotenv()
    resolved_provider = (provider or os.environ.get("LLM_PROVIDER", "openai")).lower().strip()

    if resolved_provider == "openai":
        return OpenAICompletionProvider(api_key=api_key)

    if resolved_provider == "anthropic":
        return AnthropicCompletionProvider(api_key=api_key)

    raise ValueError(
        f"Unknown LLM_PROVIDER: {resolved_provider!r}. Supported values: 'openai', 'anthropic'."
    )
