"""Configuration management for the Reflex work queue."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Logging Configuration
    log_to_file: bool = Field(default=True, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Max size per log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )
    log_file_prefix: str = Field(
        default="reflex_queue", description="Prefix for log file names (set per container)"
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Default Redis connection URL"
    )
    redis_queue_url: str | None = Field(
        default=None, description="Redis URL dedicated to queues (falls back to redis_url)"
    )
    redis_pool_size: int = Field(default=10, ge=1, description="Max pooled Redis connections")
    redis_pool_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Seconds to wait for a free pooled connection"
    )
    redis_socket_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Redis socket read/connect timeout"
    )

    # Queue storage
    queue_default_ttl_seconds: int = Field(
        default=3 * 24 * 60 * 60,
        ge=0,
        description="Expiry refreshed on every queue write (0 disables expiry)",
    )
    queue_dead_letter_key: str = Field(
        default="queue:dead_letter", description="Redis key of the dead-letter list"
    )
    queue_dead_letter_ttl_seconds: int = Field(
        default=3 * 24 * 60 * 60, ge=0, description="Expiry of the dead-letter list"
    )
    queue_strict_admission: bool = Field(
        default=False,
        description="Check queue length and push in one server-side script (hard ceiling)",
    )

    # Stage workers
    queue_workers_per_stage: int = Field(default=2, ge=0, description="Workers per stage queue")
    queue_idle_poll_seconds: float = Field(
        default=5.0, ge=0, description="Sleep between polls when a queue is empty"
    )
    queue_error_backoff_seconds: float = Field(
        default=5.0, ge=0, description="Sleep after a failed batch round"
    )
    queue_error_backoff_max_seconds: float = Field(
        default=30.0, ge=0, description="Sleep once consecutive errors reach the limit"
    )
    queue_max_consecutive_errors: int = Field(
        default=3, ge=1, description="Consecutive errors before the long back-off applies"
    )
    queue_drain_timeout_seconds: float = Field(
        default=30.0, ge=0, description="Seconds to wait for in-flight batches on shutdown"
    )

    # Queue monitor
    queue_monitor_interval_seconds: float = Field(
        default=30.0, gt=0, description="Seconds between queue depth reports"
    )
    queue_monitor_silent_reports: int = Field(
        default=5, ge=0, description="Unchanged reports skipped before logging anyway"
    )
    queue_monitor_depth_delta: int = Field(
        default=10, ge=0, description="Depth change that forces a report to be logged"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalise the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def log_file_path(self) -> str:
        """Get the full log file path."""
        return f"{self.log_directory}/{self.log_file_prefix}.log"

    @property
    def queue_redis_url(self) -> str:
        """Get the Redis URL used for queue lists."""
        return self.redis_queue_url or self.redis_url

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
