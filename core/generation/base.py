"""
Completion provider protocol for the request-execution core.

Defines the contract every upstream completion implementation must satisfy.
This module is pure — no I/O, no network calls, no side effects.
Concrete implementations (OpenAI-compatible, Anthropic) live in ingestion/.

Structural typing: any class with an async ``complete`` of the right
signature satisfies the protocol without inheriting from it.
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Message:
    """A single message in a one-shot completion request.

    Attributes:
        role: One of ``"system"``, ``"user"``, or ``"assistant"``.
        content: The text content of the message.
    """

    role: str
    content: str

    def __post_init__(self) -> None:
        """Validate that role is one of the allowed values."""
        allowed = {"system", "user", "assistant"}
        if self.role not in allowed:
            raise ValueError(f"role must be one of {allowed}, got {self.role!r}")
        if not self.content:
            raise ValueError("content must be a non-empty string")


@dataclass(frozen=True)
class CompletionRequest:
    """Request to complete a list of messages.

    Attributes:
        messages: Ordered messages (system prompt first, then the question).
            Must contain at least one message.
        model: Model identifier sent upstream.
        temperature: Sampling temperature, between 0.0 and 2.0.
        max_tokens: Maximum tokens in the completion. Must be positive.
    """

    messages: tuple[Message, ...]
    model: str
    temperature: float = 0.7
    max_tokens: int = 250

    def __post_init__(self) -> None:
        """Validate request parameters."""
        if not self.messages:
            raise ValueError("messages must contain at least one Message")
        if not self.model:
            raise ValueError("model must be a non-empty string")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature must be between 0.0 and 2.0, got {self.temperature}")
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be a positive integer, got {self.max_tokens}")


@dataclass(frozen=True)
class CompletionResponse:
    """Parsed response from a completion provider.

    Attributes:
        content: The completion decoded as a JSON object.
        model: Model identifier reported by the upstream.
        prompt_tokens: Input tokens consumed.
        completion_tokens: Output tokens generated.
        total_tokens: Total tokens billed.
        latency_ms: Wall-clock duration of the successful attempt sequence.
    """

    content: dict[str, Any]
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0


@runtime_checkable
class CompletionProvider(Protocol):
    """
    Protocol for upstream completion providers.

    Implementations raise ``core.errors.UpstreamError`` on failure, with a
    ``kind`` of rate-limited, unavailable, malformed or unknown.
    """

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """
        Complete the given messages.

        Args:
            request: A ``CompletionRequest`` with messages and model settings.

        Returns:
            A ``CompletionResponse`` with the decoded JSON content and usage.

        Raises:
            UpstreamError: If the upstream call fails or returns malformed JSON.
        """
        ...
