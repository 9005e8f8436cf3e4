"""Recovery orchestration exports."""

from task_recovery.recovery.backoff import backoff
from task_recovery.recovery.classifier import ErrorClass, classify, classify_exception
from task_recovery.recovery.failed_tasks import FailedTaskStore
from task_recovery.recovery.models import (
    CircuitMetric,
    FailedTask,
    FailedTaskStatus,
    RecoveryEvent,
    RecoveryEventType,
    RecoverySummary,
    RetryExhausted,
    RetryOutcome,
    RetryPolicy,
    RetrySuccess,
)
from task_recovery.recovery.orchestrator import RetryOrchestrator
from task_recovery.recovery.redrive import RedriveResult, redrive
from task_recovery.recovery.stats import CircuitMetricLog, StatisticsRecorder

__all__ = [
    "CircuitMetric",
    "CircuitMetricLog",
    "ErrorClass",
    "FailedTask",
    "FailedTaskStatus",
    "FailedTaskStore",
    "RecoveryEvent",
    "RecoveryEventType",
    "RecoverySummary",
    "RedriveResult",
    "RetryExhausted",
    "RetryOrchestrator",
    "RetryOutcome",
    "RetryPolicy",
    "RetrySuccess",
    "StatisticsRecorder",
    "backoff",
    "classify",
    "classify_exception",
    "redrive",
]
