"""Storage, concurrency, backend and logging configuration models."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class AnalyticsConfig(BaseModel):
    """Configuration for the analytics store."""

    enabled: bool = Field(
        default=True,
        description="Record metrics. When disabled, nothing is recorded or persisted.",
    )
    storage_path: Path = Field(
        default=Path.home() / ".arbiter" / "analytics",
        description="Directory holding the three metric logs",
    )
    max_entries_per_key: int = Field(
        default=10_000,
        ge=1,
        description="Ring-buffer capacity per sub-agent or operation",
    )
    retention_days: int = Field(
        default=30,
        ge=1,
        description="Entries older than this are pruned by the retention sweep",
    )
    persist_on_record: bool = Field(
        default=True,
        description="Flush dirty streams automatically once flush_every records "
        "are pending. Disable for batch loads and call persist() explicitly.",
    )
    flush_every: int = Field(
        default=100,
        ge=1,
        description="Pending records that trigger an inline flush of the dirty streams",
    )
    flush_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Period of the service's background flush of dirty streams",
    )


class ConcurrencyConfig(BaseModel):
    """Admission control for concurrent tasks."""

    max_concurrent_tasks: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Tasks admitted at once. Requests beyond this are rejected, not queued.",
    )


class BackendConfig(BaseModel):
    """Configuration for the HTTP sub-agent backend."""

    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of an OpenAI-compatible chat completions API",
    )
    model: str = Field(
        default="anthropic/claude-3.5-sonnet",
        description="Model identifier sent with each request",
    )
    api_key_env: str = Field(
        default="OPENROUTER_API_KEY",
        description="Environment variable holding the API key",
    )
    timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="HTTP request timeout",
    )
    max_tokens: int = Field(
        default=4000,
        ge=1,
        description="Maximum tokens requested per completion",
    )
    temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="Output format: json for structured, console for human-readable, "
        "both for console to stderr and a log file",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )
    max_file_size_mb: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Maximum log file size before rotation (MB)",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of rotated log files to keep",
    )

    @model_validator(mode="after")
    def _validate_file_path(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("file_path is required when format='both'")
        return self
