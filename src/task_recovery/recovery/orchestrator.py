"""Retry orchestration: circuit check, classify, back off, record outcome."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from task_recovery.circuit import CheckResult, CircuitBreakerManager
from task_recovery.exceptions import RetryCancelledError
from task_recovery.logging import bind_task_context
from task_recovery.recovery.backoff import backoff
from task_recovery.recovery.classifier import ErrorClass, classify_exception
from task_recovery.recovery.failed_tasks import FailedTaskStore
from task_recovery.recovery.models import (
    FailedTask,
    FailedTaskStatus,
    RecoveryEventType,
    RetryExhausted,
    RetryOutcome,
    RetryPolicy,
    RetrySuccess,
)
from task_recovery.recovery.stats import CircuitMetricLog, StatisticsRecorder

if TYPE_CHECKING:
    import random
    import threading

    from task_recovery.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Operation = Callable[[], Any]


class RetryOrchestrator:
    """Runs one operation under a retry policy and a persistent circuit.

    The circuit is keyed by task id. Every terminal outcome is appended to
    the recovery log, and every unsuccessful one is also stored as a
    failed task so it can be redriven later.
    """

    def __init__(
        self,
        circuits: CircuitBreakerManager,
        failed_tasks: FailedTaskStore,
        recorder: StatisticsRecorder,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.circuits = circuits
        self.failed_tasks = failed_tasks
        self.recorder = recorder
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryOrchestrator:
        """Build an orchestrator and its stores from config settings."""
        storage = settings.storage
        failed_tasks = FailedTaskStore(storage.failed_tasks_file)
        return cls(
            circuits=CircuitBreakerManager.from_settings(
                settings, metrics=CircuitMetricLog(storage.metrics_file)
            ),
            failed_tasks=failed_tasks,
            recorder=StatisticsRecorder(storage.recovery_log_file, failed_tasks),
            policy=RetryPolicy.from_settings(settings.retry),
        )

    def retry(
        self,
        task_id: str,
        operation: Operation,
        policy: RetryPolicy | None = None,
        command: str = "",
        cancel_event: threading.Event | None = None,
    ) -> RetryOutcome:
        """Run ``operation`` until it succeeds or the policy gives up.

        Args:
            task_id: Task identifier; also the circuit id.
            operation: Zero-argument callable. Returning is success and the
                return value becomes ``RetrySuccess.output``; raising any
                ``Exception`` is a failed attempt.
            policy: Overrides the orchestrator's policy for this run.
            command: Descriptor stored with a failed task for redrive.
            cancel_event: Checked before every attempt and every sleep.

        Returns:
            ``RetrySuccess`` or ``RetryExhausted``. Exhaustion has already
            been stored in the failed-task log.

        Raises:
            RetryCancelledError: If ``cancel_event`` is set between attempts.
            TaskRecoveryError: If circuit, log, or store state cannot be
                read or written.
        """
        active = policy or self.policy
        last_error = ""
        last_class: ErrorClass | None = None

        with bind_task_context(task_id):
            for attempt in range(1, active.max_retries + 1):
                self._raise_if_cancelled(task_id, attempt - 1, cancel_event)

                if self.circuits.check(task_id) is CheckResult.BLOCKED:
                    logger.warning("retry_blocked_by_circuit", attempt=attempt)
                    return self._exhaust(
                        task_id,
                        command,
                        attempts=attempt - 1,
                        reason=RecoveryEventType.CIRCUIT_TRIPPED,
                        status=FailedTaskStatus.RECOVERABLE,
                        error_class=last_class,
                        last_error=last_error or "circuit open",
                    )

                try:
                    output = operation()
                except Exception as exc:
                    last_error = str(exc)
                    last_class = classify_exception(exc)
                else:
                    self.circuits.record_success(task_id)
                    self.recorder.emit(task_id, RecoveryEventType.SUCCESS, attempt)
                    logger.info("retry_succeeded", attempts=attempt)
                    return RetrySuccess(task_id=task_id, attempts=attempt, output=output)

                self.circuits.record_failure(task_id)
                logger.warning(
                    "retry_attempt_failed",
                    attempt=attempt,
                    max_retries=active.max_retries,
                    error_class=last_class.value,
                    error=last_error,
                )

                if last_class is ErrorClass.PERMANENT:
                    return self._exhaust(
                        task_id,
                        command,
                        attempts=attempt,
                        reason=RecoveryEventType.PERMANENT_FAILURE,
                        status=FailedTaskStatus.FAILED,
                        error_class=last_class,
                        last_error=last_error,
                    )

                if active.retries_immediately(last_class, attempt):
                    logger.debug("retry_immediate", attempt=attempt)
                    continue

                if attempt < active.max_retries:
                    self._raise_if_cancelled(task_id, attempt, cancel_event)
                    delay_ms = backoff(attempt, active, self._rng)
                    logger.debug(
                        "retry_backoff", attempt=attempt, delay_ms=round(delay_ms, 1)
                    )
                    self._sleep(delay_ms / 1000.0)

            return self._exhaust(
                task_id,
                command,
                attempts=active.max_retries,
                reason=RecoveryEventType.MAX_RETRIES_EXCEEDED,
                status=FailedTaskStatus.RECOVERABLE,
                error_class=last_class,
                last_error=last_error,
            )

    @staticmethod
    def _raise_if_cancelled(
        task_id: str,
        attempts: int,
        cancel_event: threading.Event | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("retry_cancelled", attempts=attempts)
            raise RetryCancelledError(task_id, attempts)

    def _exhaust(
        self,
        task_id: str,
        command: str,
        *,
        attempts: int,
        reason: RecoveryEventType,
        status: FailedTaskStatus,
        error_class: ErrorClass | None,
        last_error: str,
    ) -> RetryExhausted:
        failed = self.failed_tasks.store(
            FailedTask(
                task_id=task_id,
                command=command,
                attempts=attempts,
                status=status,
                reason=reason,
                last_error=last_error,
            )
        )
        self.recorder.emit(task_id, reason, attempts, details=last_error)
        logger.error("retry_exhausted", reason=reason.value, attempts=attempts)
        return RetryExhausted(
            task_id=task_id,
            attempts=attempts,
            reason=reason,
            error_class=error_class,
            last_error=last_error,
            failed_task=failed,
        )
