"""Keyword-based classification of operation failures.

The class decides how the orchestrator reacts to a failed attempt:
transient errors may be retried straight away, intermittent errors wait
out the backoff, and permanent errors stop the run.
"""

from __future__ import annotations

import subprocess
from enum import StrEnum


class ErrorClass(StrEnum):
    """Retry-relevant class of an operation failure."""

    TRANSIENT = "transient"
    INTERMITTENT = "intermittent"
    PERMANENT = "permanent"


# Checked in order; the first vocabulary with a match wins.
_VOCABULARIES: tuple[tuple[ErrorClass, tuple[str, ...]], ...] = (
    (
        ErrorClass.TRANSIENT,
        ("timeout", "connection refused", "network", "temporary"),
    ),
    (
        ErrorClass.INTERMITTENT,
        ("rate limit", "too many requests", "service unavailable"),
    ),
    (
        ErrorClass.PERMANENT,
        ("not found", "forbidden", "unauthorized", "invalid"),
    ),
)


def classify(error_text: str) -> ErrorClass:
    """Classify an error message by case-insensitive keyword match.

    Args:
        error_text: Error message or captured command output.

    Returns:
        The matching class; unmatched text is ``INTERMITTENT`` so it stays
        eligible for a backoff retry.
    """
    lowered = (error_text or "").lower()
    for error_class, keywords in _VOCABULARIES:
        if any(keyword in lowered for keyword in keywords):
            return error_class
    return ErrorClass.INTERMITTENT


def classify_exception(exc: BaseException) -> ErrorClass:
    """Classify a raised exception; timeouts are always transient."""
    if isinstance(exc, (TimeoutError, subprocess.TimeoutExpired)):
        return ErrorClass.TRANSIENT
    return classify(str(exc))
