"""Configuration with 4-layer resolution: defaults -> YAML -> env -> CLI.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``TASK_RECOVERY_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields
(e.g. ``TASK_RECOVERY_CIRCUIT_BREAKER__FAILURE_THRESHOLD=5``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class RetrySettings(BaseModel):
    """Retry / backoff configuration."""

    enabled: bool = Field(
        default=True,
        description="When false, retry and redrive commands do nothing.",
    )
    max_retries: int = Field(default=3, ge=1, le=100)
    initial_backoff_ms: float = Field(default=1000.0, gt=0.0)
    max_backoff_ms: float = Field(default=30000.0, gt=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_enabled: bool = True
    transient_immediate_retry: Literal["first_attempt", "every_attempt"] = Field(
        default="first_attempt",
        description="Which transient failures are retried without a backoff sleep.",
    )
    operation_timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Per-attempt timeout for shell operations.",
    )

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> RetrySettings:
        if self.max_backoff_ms < self.initial_backoff_ms:
            msg = "max_backoff_ms must be >= initial_backoff_ms"
            raise ValueError(msg)
        return self


class CircuitBreakerSettings(BaseModel):
    """Per-task circuit breaker configuration."""

    failure_threshold: int = Field(default=3, ge=1, le=100)
    half_open_after_seconds: float = Field(default=60.0, ge=0.0)
    success_threshold: int = Field(default=2, ge=1, le=100)
    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Bounded wait for the per-circuit lock.",
    )


class StorageSettings(BaseModel):
    """Locations of persisted circuit, failed-task, and event state."""

    directory: Path = Path("~/.task-recovery")

    @field_validator("directory")
    @classmethod
    def _expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def circuits_dir(self) -> Path:
        """Directory holding one JSON record per circuit."""
        return self.directory / "circuits"

    @property
    def failed_tasks_file(self) -> Path:
        """Append-only JSONL log of failed tasks."""
        return self.directory / "failed-tasks.jsonl"

    @property
    def recovery_log_file(self) -> Path:
        """Append-only JSONL log of recovery events."""
        return self.directory / "recovery-log.jsonl"

    @property
    def metrics_file(self) -> Path:
        """Append-only JSONL log of circuit open/close transitions."""
        return self.directory / "metrics.jsonl"


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (4-layer resolution)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Top-level application settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``config.yaml`` or ``--config`` path)
        3. Environment variables (prefixed ``TASK_RECOVERY_``)
        4. CLI overrides (applied programmatically after loading)
    """

    model_config = SettingsConfigDict(
        env_prefix="TASK_RECOVERY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(
        default_factory=CircuitBreakerSettings
    )
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings (CLI) > env_settings > dotenv (.env) > yaml > defaults

        Args:
            settings_cls: The settings class.
            init_settings: Init / programmatic overrides.
            env_settings: Environment variable source.
            dotenv_settings: Dotenv file source (.env).
            file_secret_settings: Secret file source (unused).

        Returns:
            Ordered tuple of settings sources (first = highest priority).
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "config.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and CLI overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value CLI overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            return cls(**overrides)
        finally:
            cls._config_path_override = None


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message.

    Args:
        exc: The validation error to format.

    Returns:
        A multi-line string with each error on its own line.
    """
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
