"""
Moderation pass applied to user questions before they reach the core.

Two steps, both deterministic:

1. Token ceiling — questions longer than ``max_tokens`` (counted with the
   tiktoken ``cl100k_base`` encoding) are rejected.
2. PII masking — emails, phone numbers, private keys and wallet addresses
   are replaced by ``[REDACTED-<type>-<length>]`` markers.

The masked text is wrapped in ``<user-query>`` tags so the system prompt can
refer to it unambiguously.
"""

import functools
import re

import tiktoken

DEFAULT_MAX_TOKENS = 200

# Order matters: private keys are masked before wallet addresses so a 64-char
# hex key is never partially matched as something shorter.
PII_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("phone", re.compile(r"\b\+?\(?[0-9]{3}\)?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4,6}\b")),
    (
        "privateKey",
        re.compile(r"\b([0-9a-fA-F]{64}|[5KL][1-9A-HJ-NP-Za-km-z]{50,51})\b"),
    ),
    (
        "walletAddress",
        re.compile(r"\b(0x[a-fA-F0-9]{40}|[13][a-km-zA-HJ-NP-Z1-9]{25,34})\b"),
    ),
)


class ModerationError(ValueError):
    """Raised when a question is empty or exceeds the token ceiling."""


@functools.lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Number of ``cl100k_base`` tokens in *text*."""
    return len(_encoding().encode(text))


def mask_pii(text: str) -> str:
    """
    Replace PII matches with length-preserving redaction markers.

    Example:
        >>> mask_pii("mail me at a@b.io")
        'mail me at [REDACTED-email-6]'
    """
    for label, pattern in PII_PATTERNS:
        text = pattern.sub(lambda m, label=label: f"[REDACTED-{label}-{len(m.group(0))}]", text)
    return text


def wrap_user_query(text: str) -> str:
    """Wrap moderated text in the ``<user-query>`` tags the system prompt refers to."""
    return f"<user-query>{text}</user-query>"


def moderate(raw_text: str, *, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
    """
    Validate, trim and mask a raw user question.

    Args:
        raw_text: The question exactly as received.
        max_tokens: Token ceiling. Defaults to 200.

    Returns:
        The trimmed question with PII masked, without the ``<user-query>`` tags.

    Raises:
        ModerationError: If the question is empty or longer than ``max_tokens``.
    """
    if not raw_text or not raw_text.strip():
        raise ModerationError("Question is required")

    tokens = count_tokens(raw_text)
    if tokens > max_tokens:
        raise ModerationError(
            f"Question is too long. Maximum {max_tokens} tokens allowed, got {tokens}"
        )

    return mask_pii(raw_text.strip())


def sanitize(raw_text: str, *, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
    """
    Validate, mask and wrap a raw user question.

    Returns:
        ``<user-query>{masked}</user-query>``

    Raises:
        ModerationError: See ``moderate``.
    """
    return wrap_user_query(moderate(raw_text, max_tokens=max_tokens))
