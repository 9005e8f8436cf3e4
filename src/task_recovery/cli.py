"""Typer CLI entry point for task-recovery."""

from __future__ import annotations

import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from task_recovery import __version__
from task_recovery.circuit import CheckResult, CircuitBreakerManager, CircuitState
from task_recovery.config import Settings, format_validation_error
from task_recovery.exceptions import (
    FailedTaskNotFoundError,
    InvalidCircuitIdError,
    RetryCancelledError,
    TaskRecoveryError,
)
from task_recovery.logging import configure_logging
from task_recovery.operations import ShellOperation
from task_recovery.recovery import (
    CircuitMetricLog,
    FailedTaskStore,
    RetryOrchestrator,
    StatisticsRecorder,
    redrive,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="task-recovery",
    help="Retry shell tasks with persistent circuit breakers and redrive.",
    no_args_is_help=True,
)
circuit_app = typer.Typer(help="Inspect and drive per-task circuit breakers.")

app.add_typer(circuit_app, name="circuit")

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config YAML file."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose logging."),
]

_STATE_STYLES = {
    CircuitState.CLOSED: "green",
    CircuitState.HALF_OPEN: "yellow",
    CircuitState.OPEN: "red",
}


# ---------------------------------------------------------------------------
# Signal handling for graceful Ctrl+C
# ---------------------------------------------------------------------------

_cancel_event = threading.Event()
_interrupt_count = 0


def _handle_sigint(signum: int, frame: Any) -> None:
    """Handle Ctrl+C gracefully: first press cancels retries, second exits."""
    global _interrupt_count
    _interrupt_count += 1

    if _interrupt_count == 1:
        _cancel_event.set()
        err_console.print(
            "\n[yellow]Interrupt received. Stopping after the current attempt...[/yellow]"
        )
        err_console.print("[yellow]Press Ctrl+C again to exit immediately.[/yellow]")
    else:
        err_console.print("\n[red]Forced exit.[/red]")
        sys.exit(130)


@contextmanager
def _interruptible() -> Iterator[threading.Event]:
    """Install the SIGINT handler for the duration of a retrying command."""
    global _interrupt_count
    _interrupt_count = 0
    _cancel_event.clear()
    original_handler = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, _handle_sigint)
    try:
        yield _cancel_event
    finally:
        signal.signal(signal.SIGINT, original_handler)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    verbose: bool = False,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and configure logging from them."""
    from pydantic import ValidationError

    if verbose:
        overrides["logging"] = {"level": "DEBUG"}

    try:
        settings = Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc

    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
    )
    return settings


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Map domain errors to messages and exit codes."""
    try:
        yield
    except RetryCancelledError as exc:
        err_console.print(f"[yellow]Cancelled:[/yellow] {exc}")
        raise typer.Exit(code=130) from exc
    except (FailedTaskNotFoundError, InvalidCircuitIdError) as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    except TaskRecoveryError as exc:
        logger.error("infrastructure_error", error=str(exc), exc_type=type(exc).__name__)
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=2) from exc


def _circuits(settings: Settings) -> CircuitBreakerManager:
    return CircuitBreakerManager.from_settings(
        settings, metrics=CircuitMetricLog(settings.storage.metrics_file)
    )


def _format_epoch(value: float | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Version callback
# ---------------------------------------------------------------------------


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]task-recovery[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Task-recovery global options."""


# ---------------------------------------------------------------------------
# Retry commands
# ---------------------------------------------------------------------------


@app.command()
def retry(
    task_id: Annotated[str, typer.Argument(help="Task identifier (also the circuit id).")],
    command: Annotated[str, typer.Argument(help="Shell command to run.")],
    max_retries: Annotated[
        int | None,
        typer.Option("--max-retries", "-n", help="Override retry.max_retries."),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Per-attempt timeout in seconds."),
    ] = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run COMMAND with retries, backoff and circuit breaking."""
    overrides: dict[str, Any] = {}
    retry_overrides: dict[str, Any] = {}
    if max_retries is not None:
        retry_overrides["max_retries"] = max_retries
    if timeout is not None:
        retry_overrides["operation_timeout_seconds"] = timeout
    if retry_overrides:
        overrides["retry"] = retry_overrides

    settings = _load_settings(config, verbose, **overrides)
    if not settings.retry.enabled:
        err_console.print("[yellow]Retry is disabled (retry.enabled = false).[/yellow]")
        return

    operation = ShellOperation(command, timeout=settings.retry.operation_timeout_seconds)
    with _handle_errors(), _interruptible() as cancel_event:
        orchestrator = RetryOrchestrator.from_settings(settings)
        outcome = orchestrator.retry(
            task_id, operation, command=command, cancel_event=cancel_event
        )

    if outcome.ok:
        if outcome.output:
            console.print(outcome.output, end="", markup=False, highlight=False)
        console.print(
            f"[green]Succeeded:[/green] {task_id} after {outcome.attempts} attempt(s)"
        )
        return

    err_console.print(
        f"[red]Failed:[/red] {task_id} ({outcome.reason.value}, "
        f"{outcome.attempts} attempt(s))"
    )
    if outcome.last_error:
        err_console.print(outcome.last_error, style="dim", markup=False)
    err_console.print(
        f"Stored as failed task [cyan]{outcome.failed_task.task_id}[/cyan]. "
        f"Redrive with: [bold]task-recovery redrive {task_id}[/bold]"
    )
    raise typer.Exit(code=1)


@app.command(name="redrive")
def redrive_command(
    task_id: Annotated[
        str,
        typer.Argument(help="Failed task id to redrive, or 'all'."),
    ] = "all",
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Give pending failed tasks one more attempt."""
    settings = _load_settings(config, verbose)
    if not settings.retry.enabled:
        err_console.print("[yellow]Retry is disabled (retry.enabled = false).[/yellow]")
        return

    timeout = settings.retry.operation_timeout_seconds
    with _handle_errors(), _interruptible() as cancel_event:
        orchestrator = RetryOrchestrator.from_settings(settings)
        results = redrive(
            orchestrator,
            orchestrator.failed_tasks,
            task_id=None if task_id == "all" else task_id,
            operation_factory=lambda command: ShellOperation(command, timeout=timeout),
            cancel_event=cancel_event,
        )

    if not results:
        console.print("[dim]No failed tasks to redrive.[/dim]")
        return

    table = Table(title="Redrive Results", show_lines=True)
    table.add_column("Task", style="cyan")
    table.add_column("Result")
    table.add_column("Reason")
    table.add_column("Error")
    for result in results:
        outcome = result.outcome
        if result.recovered:
            table.add_row(result.task_id, "[green]recovered[/green]", "-", "")
        else:
            table.add_row(
                result.task_id,
                "[red]failed[/red]",
                outcome.reason.value,
                escape(outcome.last_error[:80]),
            )
    console.print(table)

    if not all(result.recovered for result in results):
        raise typer.Exit(code=1)


@app.command()
def failed(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """List failed tasks awaiting redrive."""
    settings = _load_settings(config, verbose)
    with _handle_errors():
        tasks = FailedTaskStore(settings.storage.failed_tasks_file).list()

    if not tasks:
        console.print("[dim]No failed tasks.[/dim]")
        return

    table = Table(title="Failed Tasks", show_lines=True)
    table.add_column("Task", style="cyan")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Attempts", justify="right")
    table.add_column("Command")
    for task in tasks:
        table.add_row(
            task.task_id,
            task.status.value,
            task.reason.value,
            str(task.attempts),
            escape(task.command),
        )
    console.print(table)


@app.command()
def stats(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show aggregate recovery statistics."""
    settings = _load_settings(config, verbose)
    storage = settings.storage
    with _handle_errors():
        summary = StatisticsRecorder(
            storage.recovery_log_file, FailedTaskStore(storage.failed_tasks_file)
        ).summarize()

    table = Table(title="Recovery Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Total events", str(summary.total_events))
    table.add_row("Successes", str(summary.success))
    table.add_row("Circuit trips", str(summary.circuit_tripped))
    table.add_row("Permanent failures", str(summary.permanent_failure))
    table.add_row("Max retries exceeded", str(summary.max_retries_exceeded))
    table.add_row("Pending redrive", str(summary.pending_redrive))
    console.print(table)


# ---------------------------------------------------------------------------
# Circuit commands
# ---------------------------------------------------------------------------


@circuit_app.command("check")
def circuit_check(
    circuit_id: Annotated[str, typer.Argument(help="Circuit id.")],
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Exit 0 if an attempt is allowed now, 1 if the circuit blocks it."""
    settings = _load_settings(config, verbose)
    with _handle_errors():
        result = _circuits(settings).check(circuit_id)

    if result is CheckResult.BLOCKED:
        console.print(f"[red]{result.value}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]{result.value}[/green]")


@circuit_app.command("record-failure")
def circuit_record_failure(
    circuit_id: Annotated[str, typer.Argument(help="Circuit id.")],
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Record a failed attempt against a circuit."""
    settings = _load_settings(config, verbose)
    with _handle_errors():
        circuit = _circuits(settings).record_failure(circuit_id)
    style = _STATE_STYLES[circuit.state]
    console.print(
        f"{circuit_id}: [{style}]{circuit.state.value}[/{style}] "
        f"(failures: {circuit.failure_count})"
    )


@circuit_app.command("record-success")
def circuit_record_success(
    circuit_id: Annotated[str, typer.Argument(help="Circuit id.")],
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Record a successful attempt against a circuit."""
    settings = _load_settings(config, verbose)
    with _handle_errors():
        circuit = _circuits(settings).record_success(circuit_id)
    style = _STATE_STYLES[circuit.state]
    console.print(
        f"{circuit_id}: [{style}]{circuit.state.value}[/{style}] "
        f"(successes: {circuit.success_count})"
    )


@circuit_app.command("reset")
def circuit_reset(
    circuit_id: Annotated[str, typer.Argument(help="Circuit id.")],
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Force a circuit back to CLOSED."""
    settings = _load_settings(config, verbose)
    with _handle_errors():
        _circuits(settings).reset(circuit_id)
    console.print(f"{circuit_id}: [green]CLOSED[/green] (reset)")


@circuit_app.command("stats")
def circuit_stats(
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show every known circuit and its state."""
    settings = _load_settings(config, verbose)
    with _handle_errors():
        manager = _circuits(settings)
        circuits = manager.stats()
        summary = manager.summary()

    table = Table(title="Circuit Breakers", show_lines=True)
    table.add_column("Circuit", style="cyan")
    table.add_column("State")
    table.add_column("Failures", justify="right")
    table.add_column("Successes", justify="right")
    table.add_column("Last Failure")
    table.add_column("Opened At")
    for circuit in circuits:
        style = _STATE_STYLES[circuit.state]
        table.add_row(
            circuit.circuit_id,
            f"[{style}]{circuit.state.value}[/{style}]",
            str(circuit.failure_count),
            str(circuit.success_count),
            _format_epoch(circuit.last_failure_time),
            _format_epoch(circuit.opened_at),
        )
    console.print(table)
    console.print(
        f"Closed: {summary.closed}  Half-open: {summary.half_open}  "
        f"Open: {summary.open}  "
        f"[dim](threshold {summary.failure_threshold}, "
        f"half-open after {summary.half_open_after_seconds:g}s, "
        f"success threshold {summary.success_threshold})[/dim]"
    )


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
