"""Exponential backoff with optional jitter."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from task_recovery.recovery.models import RetryPolicy

_JITTER_FRACTION = 0.25


def backoff(
    attempt: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Return the wait in milliseconds after a failed ``attempt``.

    ``min(initial * multiplier ** (attempt - 1), max)`` plus, when jitter is
    enabled, a uniform draw from ``[0, capped / 4]``.

    Args:
        attempt: 1-based number of the attempt that just failed. Values
            below 1 are clamped to 1.
        policy: Backoff parameters.
        rng: Random source for jitter; defaults to the ``random`` module.

    Returns:
        A non-negative duration in milliseconds.
    """
    attempt = max(attempt, 1)
    try:
        base = policy.initial_backoff_ms * policy.backoff_multiplier ** (attempt - 1)
    except OverflowError:
        base = policy.max_backoff_ms
    capped = min(base, policy.max_backoff_ms)
    if not policy.jitter_enabled:
        return capped
    source = rng if rng is not None else random
    return capped + source.uniform(0.0, capped * _JITTER_FRACTION)
