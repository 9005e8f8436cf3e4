"""Append-only JSONL logs of recovery outcomes and circuit transitions.

Every recovery outcome (success, circuit trip, permanent failure, retry
exhaustion) is appended as one JSON line and flushed immediately, so the
log survives a crash mid-run. Summaries are computed on read and never
rewrite the log.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

import structlog

from task_recovery.exceptions import RecoveryLogError
from task_recovery.persistence import append_line, iter_lines
from task_recovery.recovery.models import (
    CircuitMetric,
    RecoveryEvent,
    RecoveryEventType,
    RecoverySummary,
)

if TYPE_CHECKING:
    from pathlib import Path

    from task_recovery.recovery.failed_tasks import FailedTaskStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class StatisticsRecorder:
    """Writer and aggregator for the recovery event log.

    Attributes:
        path: Path to the ``recovery-log.jsonl`` file.
    """

    def __init__(self, path: Path, failed_tasks: FailedTaskStore | None = None) -> None:
        """Initialize the recorder.

        Args:
            path: Path to the JSONL log file (created on first write).
            failed_tasks: Store consulted for the pending-redrive count.
        """
        self.path = path
        self._failed_tasks = failed_tasks

    def record(self, event: RecoveryEvent) -> RecoveryEvent:
        """Append a single event to the log.

        Raises:
            RecoveryLogError: If the event cannot be written.
        """
        try:
            append_line(self.path, event)
        except OSError as exc:
            raise RecoveryLogError(f"Cannot append to {self.path}") from exc

        logger.debug(
            "recovery_event_logged",
            event_type=event.event_type.value,
            task_id=event.task_id,
            attempts=event.attempts,
        )
        return event

    def emit(
        self,
        task_id: str,
        event_type: RecoveryEventType,
        attempts: int,
        details: str = "",
    ) -> RecoveryEvent:
        """Build and record an event in one call."""
        return self.record(
            RecoveryEvent(
                task_id=task_id,
                event_type=event_type,
                attempts=attempts,
                details=details,
            )
        )

    def read_events(self) -> list[RecoveryEvent]:
        """Read all events from the log, in the order they were written."""
        return list(iter_lines(self.path, RecoveryEvent))

    def summarize(self) -> RecoverySummary:
        """Count events by type plus tasks currently pending redrive."""
        events = self.read_events()
        counts = Counter(event.event_type for event in events)
        pending = self._failed_tasks.pending_count() if self._failed_tasks else 0
        return RecoverySummary(
            total_events=len(events),
            success=counts[RecoveryEventType.SUCCESS],
            circuit_tripped=counts[RecoveryEventType.CIRCUIT_TRIPPED],
            permanent_failure=counts[RecoveryEventType.PERMANENT_FAILURE],
            max_retries_exceeded=counts[RecoveryEventType.MAX_RETRIES_EXCEEDED],
            pending_redrive=pending,
        )


class CircuitMetricLog:
    """Append-only log of circuit open/close transitions."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record(self, metric: str, circuit_id: str) -> CircuitMetric:
        entry = CircuitMetric(metric=metric, circuit_id=circuit_id)  # type: ignore[arg-type]
        try:
            append_line(self.path, entry)
        except OSError as exc:
            raise RecoveryLogError(f"Cannot append to {self.path}") from exc
        return entry

    def read(self) -> list[CircuitMetric]:
        return list(iter_lines(self.path, CircuitMetric))
