"""Models used by recovery orchestration."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from task_recovery.recovery.classifier import ErrorClass

if TYPE_CHECKING:
    from task_recovery.config import RetrySettings

_MAX_DETAILS_CHARS = 4000


def _utc_now() -> str:
    return datetime.now(tz=UTC).isoformat()


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class RetryPolicy(BaseModel):
    """Retry policy for one retry run. Backoff values are in milliseconds."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1)
    initial_backoff_ms: float = Field(default=1000.0, gt=0.0)
    max_backoff_ms: float = Field(default=30000.0, gt=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_enabled: bool = True
    transient_immediate_retry: Literal["first_attempt", "every_attempt"] = (
        "first_attempt"
    )

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Build a policy from the ``retry`` config section."""
        return cls(
            max_retries=settings.max_retries,
            initial_backoff_ms=settings.initial_backoff_ms,
            max_backoff_ms=settings.max_backoff_ms,
            backoff_multiplier=settings.backoff_multiplier,
            jitter_enabled=settings.jitter_enabled,
            transient_immediate_retry=settings.transient_immediate_retry,
        )

    def retries_immediately(self, error_class: ErrorClass, attempt: int) -> bool:
        """Whether a failure on ``attempt`` skips the backoff sleep."""
        if error_class is not ErrorClass.TRANSIENT:
            return False
        if self.transient_immediate_retry == "every_attempt":
            return True
        return attempt == 1


# ---------------------------------------------------------------------------
# Recovery events
# ---------------------------------------------------------------------------


class RecoveryEventType(StrEnum):
    """Terminal outcomes recorded in the recovery log."""

    SUCCESS = "success"
    CIRCUIT_TRIPPED = "circuit_tripped"
    PERMANENT_FAILURE = "permanent_failure"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class RecoveryEvent(BaseModel):
    """A single append-only entry in the recovery log."""

    timestamp: str = Field(default_factory=_utc_now, description="ISO-8601 UTC.")
    task_id: str
    event_type: RecoveryEventType
    attempts: int = Field(default=0, ge=0)
    details: str = ""

    @field_validator("details")
    @classmethod
    def _truncate_details(cls, value: str) -> str:
        return value[:_MAX_DETAILS_CHARS]


class RecoverySummary(BaseModel):
    """Aggregate counts over the recovery log."""

    total_events: int = Field(default=0, ge=0)
    success: int = Field(default=0, ge=0)
    circuit_tripped: int = Field(default=0, ge=0)
    permanent_failure: int = Field(default=0, ge=0)
    max_retries_exceeded: int = Field(default=0, ge=0)
    pending_redrive: int = Field(default=0, ge=0)


class CircuitMetric(BaseModel):
    """Circuit open/close transition appended to the metrics log."""

    timestamp: str = Field(default_factory=_utc_now)
    metric: Literal["circuit_breaker_open", "circuit_breaker_closed"]
    circuit_id: str


# ---------------------------------------------------------------------------
# Failed tasks
# ---------------------------------------------------------------------------


class FailedTaskStatus(StrEnum):
    """Status of a failed-task log entry.

    ``failed`` entries ended on a permanent error, ``recoverable`` entries
    ran out of budget or were blocked by an open circuit, and ``resolved``
    marks a later successful redrive.
    """

    FAILED = "failed"
    RECOVERABLE = "recoverable"
    RESOLVED = "resolved"


class FailedTask(BaseModel):
    """A task that exhausted automatic retries, stored for redrive."""

    task_id: str
    command: str = Field(default="", description="Operation descriptor for redrive.")
    attempts: int = Field(default=0, ge=0)
    timestamp: str = Field(default_factory=_utc_now)
    status: FailedTaskStatus = FailedTaskStatus.RECOVERABLE
    reason: RecoveryEventType = RecoveryEventType.MAX_RETRIES_EXCEEDED
    last_error: str = ""

    @field_validator("last_error")
    @classmethod
    def _truncate_error(cls, value: str) -> str:
        return value[:_MAX_DETAILS_CHARS]

    @property
    def is_pending(self) -> bool:
        """Whether this entry still awaits redrive."""
        return self.status is not FailedTaskStatus.RESOLVED


# ---------------------------------------------------------------------------
# Retry outcomes
# ---------------------------------------------------------------------------


class RetrySuccess(BaseModel):
    """The operation eventually succeeded."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    task_id: str
    attempts: int = Field(ge=1)
    output: Any = None

    @property
    def ok(self) -> bool:
        return True


class RetryExhausted(BaseModel):
    """The retry run ended without success; ``failed_task`` has been stored."""

    task_id: str
    attempts: int = Field(ge=0)
    reason: RecoveryEventType
    error_class: ErrorClass | None = None
    last_error: str = ""
    failed_task: FailedTask

    @property
    def ok(self) -> bool:
        return False


RetryOutcome = RetrySuccess | RetryExhausted
