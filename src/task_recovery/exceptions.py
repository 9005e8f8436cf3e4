"""Centralized exception hierarchy for the task-recovery package.

All domain-specific exceptions inherit from ``TaskRecoveryError`` so
callers can catch the entire family with a single ``except`` clause.
Errors raised by a retried operation are *not* part of this family; the
orchestrator classifies and contains those.
"""

from __future__ import annotations


class TaskRecoveryError(Exception):
    """Base exception for all task-recovery errors."""


# ---------------------------------------------------------------------------
# Persisted state errors
# ---------------------------------------------------------------------------


class StateStoreError(TaskRecoveryError):
    """Base exception for reading or writing persisted state."""


class CircuitStateError(StateStoreError):
    """Raised when a circuit record cannot be read or written."""


class FailedTaskStoreError(StateStoreError):
    """Raised when the failed-task log cannot be appended to."""


class RecoveryLogError(StateStoreError):
    """Raised when a recovery event cannot be appended to the log."""


# ---------------------------------------------------------------------------
# Circuit errors
# ---------------------------------------------------------------------------


class CircuitLockTimeoutError(TaskRecoveryError):
    """Raised when a per-circuit lock is not acquired within its timeout."""

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.1f}s waiting for lock on {key!r}")


class InvalidCircuitIdError(TaskRecoveryError, ValueError):
    """Raised when a circuit id cannot be used as a storage key."""


# ---------------------------------------------------------------------------
# Redrive / orchestration errors
# ---------------------------------------------------------------------------


class FailedTaskNotFoundError(TaskRecoveryError, KeyError):
    """Raised when redriving a task id that has no pending entry."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class RetryCancelledError(TaskRecoveryError):
    """Raised when a retry sequence is cancelled between attempts."""

    def __init__(self, task_id: str, attempts: int) -> None:
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(f"Retry of {task_id!r} cancelled after {attempts} attempt(s)")


# ---------------------------------------------------------------------------
# Operation errors
# ---------------------------------------------------------------------------


class OperationError(TaskRecoveryError):
    """Raised by an operation adapter when the wrapped operation fails."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class OperationTimeoutError(OperationError, TimeoutError):
    """Raised when an operation exceeds its caller-supplied timeout."""
