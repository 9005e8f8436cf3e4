"""Unit tests for task_recovery.config - Settings loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from task_recovery.config import (
    CircuitBreakerSettings,
    LoggingSettings,
    RetrySettings,
    Settings,
    StorageSettings,
    format_validation_error,
)

# ---- Sub-model defaults ------------------------------------------------------


class TestRetrySettings:
    """RetrySettings defaults and constraints."""

    def test_default_values(self) -> None:
        s = RetrySettings()
        assert s.enabled is True
        assert s.max_retries == 3
        assert s.initial_backoff_ms == 1000
        assert s.max_backoff_ms == 30000
        assert s.backoff_multiplier == 2.0
        assert s.jitter_enabled is True
        assert s.transient_immediate_retry == "first_attempt"
        assert s.operation_timeout_seconds is None

    def test_zero_max_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetrySettings(max_retries=0)

    def test_multiplier_below_one_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetrySettings(backoff_multiplier=0.5)

    def test_max_backoff_below_initial_rejected(self) -> None:
        with pytest.raises(ValidationError, match="max_backoff_ms"):
            RetrySettings(initial_backoff_ms=5000, max_backoff_ms=1000)

    def test_unknown_immediate_retry_mode_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RetrySettings(transient_immediate_retry="never")  # type: ignore[arg-type]


class TestCircuitBreakerSettings:
    def test_default_values(self) -> None:
        s = CircuitBreakerSettings()
        assert s.failure_threshold == 3
        assert s.half_open_after_seconds == 60.0
        assert s.success_threshold == 2
        assert s.lock_timeout_seconds == 5.0

    def test_zero_threshold_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CircuitBreakerSettings(failure_threshold=0)


class TestStorageSettings:
    def test_home_is_expanded(self) -> None:
        s = StorageSettings()
        assert "~" not in str(s.directory)
        assert s.directory == Path("~/.task-recovery").expanduser()

    def test_derived_paths(self, tmp_path: Path) -> None:
        s = StorageSettings(directory=tmp_path)
        assert s.circuits_dir == tmp_path / "circuits"
        assert s.failed_tasks_file == tmp_path / "failed-tasks.jsonl"
        assert s.recovery_log_file == tmp_path / "recovery-log.jsonl"
        assert s.metrics_file == tmp_path / "metrics.jsonl"


class TestLoggingSettings:
    def test_invalid_format_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LoggingSettings(format="xml")  # type: ignore[arg-type]


# ---- Layered resolution --------------------------------------------------------


class TestSettingsLoad:
    """Settings.load merges YAML, env and overrides."""

    def test_yaml_file_is_read(self, tmp_path: Path) -> None:
        config = tmp_path / "custom.yaml"
        config.write_text("retry:\n  max_retries: 7\n")
        settings = Settings.load(config_path=config)
        assert settings.retry.max_retries == 7
        assert settings.retry.initial_backoff_ms == 1000

    def test_env_overrides_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config = tmp_path / "custom.yaml"
        config.write_text("circuit_breaker:\n  failure_threshold: 4\n")
        monkeypatch.setenv("TASK_RECOVERY_CIRCUIT_BREAKER__FAILURE_THRESHOLD", "9")
        settings = Settings.load(config_path=config)
        assert settings.circuit_breaker.failure_threshold == 9

    def test_overrides_win(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config = tmp_path / "custom.yaml"
        config.write_text("retry:\n  max_retries: 7\n")
        monkeypatch.setenv("TASK_RECOVERY_RETRY__MAX_RETRIES", "8")
        settings = Settings.load(config_path=config, retry={"max_retries": 2})
        assert settings.retry.max_retries == 2

    def test_invalid_yaml_value_raises(self, tmp_path: Path) -> None:
        config = tmp_path / "custom.yaml"
        config.write_text("retry:\n  max_retries: -1\n")
        with pytest.raises(ValidationError):
            Settings.load(config_path=config)

    def test_config_path_override_is_cleared(self, tmp_path: Path) -> None:
        config = tmp_path / "custom.yaml"
        config.write_text("retry:\n  max_retries: 7\n")
        Settings.load(config_path=config)
        assert Settings._config_path_override is None


class TestFormatValidationError:
    def test_lists_location_and_message(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            Settings(retry={"max_retries": 0})
        message = format_validation_error(exc_info.value)
        assert "retry -> max_retries" in message
