"""Backoff schedule shared by the presence feed adapters."""

from __future__ import annotations


def backoff_delay(attempt: int, *, initial_s: float, max_s: float) -> float:
    """Exponential backoff delay for the *attempt*-th consecutive failure (1-based)."""
    if attempt <= 1:
        return min(initial_s, max_s)
    return min(initial_s * (2 ** (attempt - 1)), max_s)
