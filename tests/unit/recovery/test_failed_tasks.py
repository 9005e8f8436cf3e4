"""Unit tests for the failed-task store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from task_recovery.exceptions import FailedTaskNotFoundError, FailedTaskStoreError
from task_recovery.recovery import (
    FailedTask,
    FailedTaskStatus,
    FailedTaskStore,
    RecoveryEventType,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestStore:
    def test_empty_store(self, failed_tasks: FailedTaskStore) -> None:
        assert failed_tasks.entries() == []
        assert failed_tasks.list() == []
        assert failed_tasks.pending_count() == 0
        assert failed_tasks.latest("missing") is None

    def test_store_appends_one_line(self, failed_tasks: FailedTaskStore) -> None:
        failed_tasks.store(FailedTask(task_id="a", command="run.sh", attempts=3))
        failed_tasks.store(FailedTask(task_id="b", command="other.sh", attempts=1))

        assert len(failed_tasks.path.read_text().splitlines()) == 2
        assert [t.task_id for t in failed_tasks.list()] == ["a", "b"]

    def test_latest_entry_wins(self, failed_tasks: FailedTaskStore) -> None:
        failed_tasks.store(FailedTask(task_id="a", attempts=3))
        failed_tasks.store(
            FailedTask(
                task_id="a",
                attempts=1,
                status=FailedTaskStatus.FAILED,
                reason=RecoveryEventType.PERMANENT_FAILURE,
            )
        )
        pending = failed_tasks.list()
        assert len(pending) == 1
        assert pending[0].status is FailedTaskStatus.FAILED
        assert failed_tasks.latest("a") == pending[0]

    def test_first_seen_order_is_kept(self, failed_tasks: FailedTaskStore) -> None:
        for task_id in ("a", "b", "a"):
            failed_tasks.store(FailedTask(task_id=task_id))
        assert [t.task_id for t in failed_tasks.list()] == ["a", "b"]

    def test_write_failure_raises(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_append(*args: Any, **kwargs: Any) -> None:
            raise OSError("read-only")

        monkeypatch.setattr(
            "task_recovery.recovery.failed_tasks.append_line", broken_append
        )
        store = FailedTaskStore(tmp_path / "failed-tasks.jsonl")
        with pytest.raises(FailedTaskStoreError):
            store.store(FailedTask(task_id="a"))


class TestResolve:
    def test_resolve_appends_resolved_entry(self, failed_tasks: FailedTaskStore) -> None:
        failed_tasks.store(FailedTask(task_id="a", command="run.sh", attempts=3))
        resolved = failed_tasks.resolve("a")

        assert resolved.status is FailedTaskStatus.RESOLVED
        assert resolved.command == "run.sh"
        assert failed_tasks.list() == []
        assert len(failed_tasks.entries()) == 2

    def test_resolve_unknown_raises(self, failed_tasks: FailedTaskStore) -> None:
        with pytest.raises(FailedTaskNotFoundError):
            failed_tasks.resolve("missing")

    def test_resolve_twice_raises(self, failed_tasks: FailedTaskStore) -> None:
        failed_tasks.store(FailedTask(task_id="a"))
        failed_tasks.resolve("a")
        with pytest.raises(FailedTaskNotFoundError):
            failed_tasks.resolve("a")

    def test_failing_again_after_resolve_is_pending(
        self, failed_tasks: FailedTaskStore
    ) -> None:
        failed_tasks.store(FailedTask(task_id="a"))
        failed_tasks.resolve("a")
        failed_tasks.store(FailedTask(task_id="a", attempts=1))
        assert failed_tasks.pending_count() == 1


class TestTornLog:
    def test_undecodable_line_does_not_hide_pending_tasks(
        self, failed_tasks: FailedTaskStore
    ) -> None:
        failed_tasks.store(FailedTask(task_id="a", command="run.sh"))
        with failed_tasks.path.open("ab") as f:
            f.write(b'{"task_id": "\xff\xfe\n')
        failed_tasks.store(FailedTask(task_id="b", command="other.sh"))

        assert [t.task_id for t in failed_tasks.list()] == ["a", "b"]
        assert failed_tasks.pending_count() == 2
