"""Cost estimation for completion calls.

The upstream bills per token at a rate that depends on the routed model, and
the exact rate is not reported back. A flat per-token estimate is applied to
the total token count instead; it is configurable through ``Settings``.

This module is core/ pure: no I/O, no network, no env vars.
"""

from __future__ import annotations

DEFAULT_USD_PER_TOKEN = 0.000001


def estimate_cost(total_tokens: int, usd_per_token: float = DEFAULT_USD_PER_TOKEN) -> float:
    """Estimate the USD cost of a completion.

    Args:
        total_tokens:  Prompt + completion tokens billed for the call.
        usd_per_token: Flat rate applied to every token.

    Returns:
        Cost in USD, rounded to 8 decimal places.

    Raises:
        ValueError: If total_tokens or usd_per_token are negative.
    """
    if total_tokens < 0:
        raise ValueError(f"total_tokens must be >= 0, got {total_tokens}")
    if usd_per_token < 0:
        raise ValueError(f"usd_per_token must be >= 0, got {usd_per_token}")
    return round(total_tokens * usd_per_token, 8)
