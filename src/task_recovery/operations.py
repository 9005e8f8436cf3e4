"""Shell command adapter for the retry orchestrator.

A ``ShellOperation`` is a zero-argument callable: it returns the combined
stdout/stderr on exit status 0 and raises otherwise, carrying the output as
the error text so the classifier can inspect it.
"""

from __future__ import annotations

import subprocess

import structlog

from task_recovery.exceptions import OperationError, OperationTimeoutError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class ShellOperation:
    """Run a shell command as one retryable attempt.

    Attributes:
        command: Command line passed to the shell.
        timeout: Optional per-attempt timeout in seconds.
    """

    def __init__(self, command: str, timeout: float | None = None) -> None:
        self.command = command
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"ShellOperation({self.command!r}, timeout={self.timeout!r})"

    def __call__(self) -> str:
        """Run the command once.

        Returns:
            Combined stdout and stderr.

        Raises:
            OperationTimeoutError: If the command outlives ``timeout``.
            OperationError: If the command exits non-zero or cannot start.
        """
        try:
            completed = subprocess.run(  # noqa: S602
                self.command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            msg = f"timeout: command exceeded {self.timeout}s"
            raise OperationTimeoutError(msg) from exc
        except OSError as exc:
            raise OperationError(f"Cannot start command: {exc}") from exc

        output = completed.stdout or ""
        if completed.returncode != 0:
            logger.debug(
                "shell_operation_failed",
                command=self.command,
                exit_code=completed.returncode,
            )
            raise OperationError(
                output.strip() or f"Command exited with status {completed.returncode}",
                exit_code=completed.returncode,
            )
        return output
