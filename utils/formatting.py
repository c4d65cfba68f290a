"""
Formatting Helpers
==================
Short human-readable numbers for log lines and LLM prompts.

    format_mcap(1_250_000)  -> "1.2M"
    format_age(created_ms)  -> "42m" / "5h" / "3d"
"""

from utils.timeutil import now_ms


def format_mcap(value: float) -> str:
    """Compact dollar-ish number: 1.2B, 3.4M, 5.6K, 789."""
    n = value or 0
    if n >= 1_000_000_000:
        return f"{n / 1_000_000_000:.1f}B"
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return f"{n:.0f}"


def format_age(created_at_ms: int, now: int | None = None) -> str:
    """How long ago a pair was created, rounded down to minutes/hours/days."""
    diff = (now if now is not None else now_ms()) - (created_at_ms or 0)
    minutes = max(diff, 0) // 60_000
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h"
    return f"{hours // 24}d"
