"""Persistent per-circuit breaker state machine.

Each circuit (usually one per task id) is stored as its own JSON record and
guarded by its own lock file, so independent tasks never contend and each
short-lived process reads, mutates, and durably writes only the circuit it
touches.

States:
- CLOSED: attempts pass; consecutive failures are counted.
- OPEN: attempts are blocked until ``half_open_after_seconds`` elapse.
- HALF_OPEN: attempts pass; ``success_threshold`` successes close the
  circuit and any failure reopens it.
"""

from __future__ import annotations

import re
import time
from collections import Counter
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, Field, ValidationError

from task_recovery.exceptions import CircuitStateError, InvalidCircuitIdError
from task_recovery.locking import key_lock
from task_recovery.persistence import atomic_write

if TYPE_CHECKING:
    from contextlib import AbstractContextManager
    from pathlib import Path

    from task_recovery.config import Settings
    from task_recovery.recovery.stats import CircuitMetricLog

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.:@+=-]*$")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CheckResult(StrEnum):
    """Answer of :meth:`CircuitBreakerManager.check`."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"


class Circuit(BaseModel):
    """Persisted state of one circuit. Timestamps are epoch seconds."""

    circuit_id: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    last_failure_time: float | None = None
    opened_at: float | None = None
    last_state_change: float | None = None


class CircuitSummary(BaseModel):
    """Counts of known circuits by state, with the active thresholds."""

    closed: int = 0
    half_open: int = 0
    open: int = 0
    failure_threshold: int
    half_open_after_seconds: float
    success_threshold: int

    @property
    def total(self) -> int:
        return self.closed + self.half_open + self.open


class CircuitBreakerManager:
    """Owns one breaker state machine per circuit id, persisted on disk.

    Attributes:
        directory: Directory holding ``<circuit_id>.json`` records.
        failure_threshold: Consecutive CLOSED failures that open the circuit.
        half_open_after_seconds: Time an OPEN circuit waits before probing.
        success_threshold: HALF_OPEN successes needed to close the circuit.
        lock_timeout_seconds: Bounded wait for a circuit's lock.
    """

    def __init__(
        self,
        directory: Path,
        failure_threshold: int = 3,
        half_open_after_seconds: float = 60.0,
        success_threshold: int = 2,
        lock_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
        metrics: CircuitMetricLog | None = None,
    ) -> None:
        self.directory = directory
        self.failure_threshold = failure_threshold
        self.half_open_after_seconds = half_open_after_seconds
        self.success_threshold = success_threshold
        self.lock_timeout_seconds = lock_timeout_seconds
        self._clock = clock
        self._metrics = metrics

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        metrics: CircuitMetricLog | None = None,
    ) -> CircuitBreakerManager:
        """Build a manager from the ``circuit_breaker`` and ``storage`` sections."""
        cb = settings.circuit_breaker
        return cls(
            directory=settings.storage.circuits_dir,
            failure_threshold=cb.failure_threshold,
            half_open_after_seconds=cb.half_open_after_seconds,
            success_threshold=cb.success_threshold,
            lock_timeout_seconds=cb.lock_timeout_seconds,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def check(self, circuit_id: str) -> CheckResult:
        """Decide whether an attempt may run now.

        An OPEN circuit whose wait has elapsed moves to HALF_OPEN here and
        the transition is persisted; otherwise this is read-only.
        """
        with self._locked(circuit_id):
            circuit = self._load(circuit_id)

            if circuit.state is CircuitState.CLOSED:
                return CheckResult.ALLOWED

            if circuit.state is CircuitState.HALF_OPEN:
                return CheckResult.ALLOWED

            now = self._clock()
            elapsed = now - circuit.opened_at if circuit.opened_at is not None else None
            if elapsed is None or elapsed >= self.half_open_after_seconds:
                circuit.state = CircuitState.HALF_OPEN
                circuit.success_count = 0
                circuit.last_state_change = now
                self._save(circuit)
                logger.info("circuit_half_open", circuit_id=circuit_id)
                return CheckResult.ALLOWED

            logger.debug(
                "circuit_blocked",
                circuit_id=circuit_id,
                elapsed_seconds=round(elapsed, 3),
                half_open_after_seconds=self.half_open_after_seconds,
            )
            return CheckResult.BLOCKED

    def record_failure(self, circuit_id: str) -> Circuit:
        """Record a failed attempt and persist the resulting state."""
        with self._locked(circuit_id):
            circuit = self._load(circuit_id)
            now = self._clock()
            circuit.failure_count += 1
            circuit.last_failure_time = now

            opened = False
            if circuit.state is CircuitState.HALF_OPEN:
                logger.warning("circuit_reopened", circuit_id=circuit_id)
                self._open(circuit, now)
                opened = True
            elif (
                circuit.state is CircuitState.CLOSED
                and circuit.failure_count >= self.failure_threshold
            ):
                logger.warning(
                    "circuit_opened",
                    circuit_id=circuit_id,
                    failure_count=circuit.failure_count,
                )
                self._open(circuit, now)
                opened = True
            else:
                logger.debug(
                    "circuit_failure_recorded",
                    circuit_id=circuit_id,
                    state=circuit.state.value,
                    failure_count=circuit.failure_count,
                    failure_threshold=self.failure_threshold,
                )

            self._save(circuit)
            if opened:
                self._emit_metric("circuit_breaker_open", circuit_id)
            return circuit

    def record_success(self, circuit_id: str) -> Circuit:
        """Record a successful attempt and persist the resulting state."""
        with self._locked(circuit_id):
            circuit = self._load(circuit_id)

            if circuit.state is CircuitState.OPEN:
                # Only reachable when another process reopened the circuit
                # between our check and this call.
                logger.info("circuit_success_ignored_while_open", circuit_id=circuit_id)
                return circuit

            closed = False
            circuit.failure_count = 0
            if circuit.state is CircuitState.HALF_OPEN:
                circuit.success_count += 1
                if circuit.success_count >= self.success_threshold:
                    logger.info(
                        "circuit_closed",
                        circuit_id=circuit_id,
                        success_count=circuit.success_count,
                    )
                    self._close(circuit, self._clock())
                    closed = True

            self._save(circuit)
            if closed:
                self._emit_metric("circuit_breaker_closed", circuit_id)
            return circuit

    def reset(self, circuit_id: str) -> Circuit:
        """Force a circuit back to a fresh CLOSED record."""
        with self._locked(circuit_id):
            circuit = Circuit(circuit_id=circuit_id, last_state_change=self._clock())
            self._save(circuit)
        logger.info("circuit_reset", circuit_id=circuit_id)
        return circuit

    def get(self, circuit_id: str) -> Circuit:
        """Return the stored state of a circuit without modifying anything."""
        self._validate_id(circuit_id)
        return self._load(circuit_id)

    def stats(self) -> list[Circuit]:
        """Return every known circuit, sorted by id. Never transitions state."""
        if not self.directory.exists():
            return []
        return [
            self._read(path)
            for path in sorted(self.directory.glob("*.json"))
        ]

    def summary(self) -> CircuitSummary:
        """Count known circuits by state."""
        counts = Counter(circuit.state for circuit in self.stats())
        return CircuitSummary(
            closed=counts[CircuitState.CLOSED],
            half_open=counts[CircuitState.HALF_OPEN],
            open=counts[CircuitState.OPEN],
            failure_threshold=self.failure_threshold,
            half_open_after_seconds=self.half_open_after_seconds,
            success_threshold=self.success_threshold,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _open(self, circuit: Circuit, now: float) -> None:
        circuit.state = CircuitState.OPEN
        circuit.opened_at = now
        circuit.success_count = 0
        circuit.last_state_change = now

    def _close(self, circuit: Circuit, now: float) -> None:
        circuit.state = CircuitState.CLOSED
        circuit.failure_count = 0
        circuit.success_count = 0
        circuit.opened_at = None
        circuit.last_state_change = now

    def _emit_metric(self, metric: str, circuit_id: str) -> None:
        if self._metrics is not None:
            self._metrics.record(metric, circuit_id)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_id(circuit_id: str) -> None:
        if not _SAFE_ID.match(circuit_id or ""):
            raise InvalidCircuitIdError(
                f"Circuit id {circuit_id!r} is not a safe file name"
            )

    def _path(self, circuit_id: str) -> Path:
        return self.directory / f"{circuit_id}.json"

    def _locked(self, circuit_id: str) -> AbstractContextManager[None]:
        self._validate_id(circuit_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CircuitStateError(
                f"Cannot create circuit directory {self.directory}"
            ) from exc
        return key_lock(
            self.directory / f"{circuit_id}.lock",
            timeout=self.lock_timeout_seconds,
        )

    def _load(self, circuit_id: str) -> Circuit:
        path = self._path(circuit_id)
        if not path.exists():
            return Circuit(circuit_id=circuit_id, last_state_change=self._clock())
        return self._read(path)

    @staticmethod
    def _read(path: Path) -> Circuit:
        try:
            return Circuit.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            raise CircuitStateError(f"Cannot read circuit record {path}") from exc

    def _save(self, circuit: Circuit) -> None:
        try:
            atomic_write(
                self._path(circuit.circuit_id),
                circuit.model_dump_json(indent=2).encode("utf-8"),
            )
        except OSError as exc:
            raise CircuitStateError(
                f"Cannot write circuit record for {circuit.circuit_id!r}"
            ) from exc
