"""Manual re-execution of tasks held in the failed-task store."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from task_recovery.exceptions import FailedTaskNotFoundError
from task_recovery.operations import ShellOperation
from task_recovery.recovery.models import (
    FailedTask,
    RetryExhausted,
    RetryPolicy,
    RetrySuccess,
)

if TYPE_CHECKING:
    import threading

    from task_recovery.recovery.failed_tasks import FailedTaskStore
    from task_recovery.recovery.orchestrator import RetryOrchestrator

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

OperationFactory = Callable[[str], Callable[[], Any]]


class RedriveResult(BaseModel):
    """Outcome of redriving one failed task."""

    task_id: str
    recovered: bool
    outcome: RetrySuccess | RetryExhausted


def redrive(
    orchestrator: RetryOrchestrator,
    store: FailedTaskStore,
    task_id: str | None = None,
    operation_factory: OperationFactory = ShellOperation,
    cancel_event: threading.Event | None = None,
) -> list[RedriveResult]:
    """Give pending failed tasks one more attempt each.

    Each task gets a single attempt through the orchestrator, so the
    circuit is still consulted. A recovered task is marked resolved; a
    task that fails again already has a fresh entry from the orchestrator.

    Args:
        orchestrator: Orchestrator that runs the attempt.
        store: Failed-task store to read from and resolve into.
        task_id: Only redrive this task; ``None`` redrives every pending one.
        operation_factory: Builds the operation from the stored command.
        cancel_event: Stops the redrive between tasks when set.

    Returns:
        One result per redriven task, in store order.

    Raises:
        FailedTaskNotFoundError: If ``task_id`` has no pending entry.
    """
    if task_id is None:
        pending = store.list()
    else:
        current = store.latest(task_id)
        if current is None or not current.is_pending:
            raise FailedTaskNotFoundError(f"No pending failed task {task_id!r}")
        pending = [current]

    if not pending:
        logger.info("redrive_nothing_pending")
        return []

    policy = orchestrator.policy.model_copy(update={"max_retries": 1})
    results: list[RedriveResult] = []
    for task in pending:
        results.append(
            _redrive_one(orchestrator, store, task, policy, operation_factory, cancel_event)
        )

    logger.info(
        "redrive_complete",
        total=len(results),
        recovered=sum(1 for result in results if result.recovered),
    )
    return results


def _redrive_one(
    orchestrator: RetryOrchestrator,
    store: FailedTaskStore,
    task: FailedTask,
    policy: RetryPolicy,
    operation_factory: OperationFactory,
    cancel_event: threading.Event | None,
) -> RedriveResult:
    logger.info("redrive_started", task_id=task.task_id, command=task.command)
    outcome = orchestrator.retry(
        task.task_id,
        operation_factory(task.command),
        policy=policy,
        command=task.command,
        cancel_event=cancel_event,
    )
    if outcome.ok:
        store.resolve(task.task_id)
    return RedriveResult(task_id=task.task_id, recovered=outcome.ok, outcome=outcome)
