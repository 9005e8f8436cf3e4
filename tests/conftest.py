"""Shared pytest fixtures for the task-recovery test suite."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from task_recovery.circuit import CircuitBreakerManager
from task_recovery.recovery import (
    CircuitMetricLog,
    FailedTaskStore,
    RetryOrchestrator,
    RetryPolicy,
    StatisticsRecorder,
)

if TYPE_CHECKING:
    from pathlib import Path


# ---------------------------------------------------------------------------
# Logging isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging() -> None:
    """Drop handlers a previous test (or CLI invocation) left on the root logger."""
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep stand-in that records requested durations instead of waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def storage_dir(tmp_path: Path) -> Path:
    """Create and return a temporary storage directory."""
    directory = tmp_path / "task-recovery"
    directory.mkdir()
    return directory


@pytest.fixture()
def metrics(storage_dir: Path) -> CircuitMetricLog:
    return CircuitMetricLog(storage_dir / "metrics.jsonl")


@pytest.fixture()
def circuits(
    storage_dir: Path,
    clock: FakeClock,
    metrics: CircuitMetricLog,
) -> CircuitBreakerManager:
    return CircuitBreakerManager(
        storage_dir / "circuits",
        failure_threshold=3,
        half_open_after_seconds=60.0,
        success_threshold=2,
        lock_timeout_seconds=1.0,
        clock=clock,
        metrics=metrics,
    )


@pytest.fixture()
def failed_tasks(storage_dir: Path) -> FailedTaskStore:
    return FailedTaskStore(storage_dir / "failed-tasks.jsonl")


@pytest.fixture()
def recorder(storage_dir: Path, failed_tasks: FailedTaskStore) -> StatisticsRecorder:
    return StatisticsRecorder(storage_dir / "recovery-log.jsonl", failed_tasks)


@pytest.fixture()
def policy() -> RetryPolicy:
    """Deterministic policy: no jitter, 100 ms doubling up to 1 s."""
    return RetryPolicy(
        max_retries=3,
        initial_backoff_ms=100.0,
        max_backoff_ms=1000.0,
        backoff_multiplier=2.0,
        jitter_enabled=False,
    )


@pytest.fixture()
def orchestrator(
    circuits: CircuitBreakerManager,
    failed_tasks: FailedTaskStore,
    recorder: StatisticsRecorder,
    policy: RetryPolicy,
    recording_sleep: RecordingSleep,
) -> RetryOrchestrator:
    return RetryOrchestrator(
        circuits,
        failed_tasks,
        recorder,
        policy=policy,
        sleep=recording_sleep,
    )


@pytest.fixture()
def config_file(storage_dir: Path, tmp_path: Path) -> Path:
    """YAML config pointing storage at the temp dir with millisecond backoff."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "retry:\n"
        "  max_retries: 2\n"
        "  initial_backoff_ms: 1\n"
        "  max_backoff_ms: 1\n"
        "  jitter_enabled: false\n"
        "circuit_breaker:\n"
        "  failure_threshold: 5\n"
        "  lock_timeout_seconds: 1.0\n"
        "storage:\n"
        f"  directory: {storage_dir}\n"
        "logging:\n"
        "  level: WARNING\n",
        encoding="utf-8",
    )
    return path
