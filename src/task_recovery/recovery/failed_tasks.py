"""Log-structured store of tasks that exhausted automatic retries.

Entries are only ever appended. The current status of a task is the latest
entry for its ``task_id``; a successful redrive appends a ``resolved``
entry rather than rewriting the file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from task_recovery.exceptions import FailedTaskNotFoundError, FailedTaskStoreError
from task_recovery.persistence import append_line, iter_lines
from task_recovery.recovery.models import FailedTask, FailedTaskStatus

if TYPE_CHECKING:
    from pathlib import Path

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class FailedTaskStore:
    """Durable failed-task queue backing manual redrive.

    Attributes:
        path: Path to the ``failed-tasks.jsonl`` file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def store(self, task: FailedTask) -> FailedTask:
        """Append a failed-task entry.

        Raises:
            FailedTaskStoreError: If the entry cannot be written.
        """
        try:
            append_line(self.path, task)
        except OSError as exc:
            raise FailedTaskStoreError(f"Cannot append to {self.path}") from exc

        logger.info(
            "failed_task_stored",
            task_id=task.task_id,
            status=task.status.value,
            attempts=task.attempts,
        )
        return task

    def resolve(self, task_id: str) -> FailedTask:
        """Mark a pending task as resolved.

        Raises:
            FailedTaskNotFoundError: If the task has no pending entry.
            FailedTaskStoreError: If the entry cannot be written.
        """
        current = self.latest(task_id)
        if current is None or not current.is_pending:
            raise FailedTaskNotFoundError(f"No pending failed task {task_id!r}")
        return self.store(
            FailedTask(
                task_id=task_id,
                command=current.command,
                attempts=current.attempts,
                status=FailedTaskStatus.RESOLVED,
                reason=current.reason,
            )
        )

    def entries(self) -> list[FailedTask]:
        """Every entry in the log, oldest first."""
        return list(iter_lines(self.path, FailedTask))

    def latest(self, task_id: str) -> FailedTask | None:
        """The most recent entry for ``task_id``, or ``None``."""
        found: FailedTask | None = None
        for entry in iter_lines(self.path, FailedTask):
            if entry.task_id == task_id:
                found = entry
        return found

    def list(self) -> list[FailedTask]:
        """Current entry of every unresolved task, in first-seen order."""
        current: dict[str, FailedTask] = {}
        for entry in iter_lines(self.path, FailedTask):
            current[entry.task_id] = entry
        return [task for task in current.values() if task.is_pending]

    def pending_count(self) -> int:
        return len(self.list())
