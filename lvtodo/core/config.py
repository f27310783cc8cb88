"""Configuration management for lvtodo."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="data/lvtodo.db", description="Path to the SQLite document store")

    # Push Gateway Configuration
    push_gateway_url: str | None = Field(
        default=None, description="Base URL of the push/email notification gateway (e.g., http://push:8080)"
    )
    push_gateway_api_key: str | None = Field(default=None, description="Push gateway API key (optional)")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Sweep trigger endpoints
    sweep_trigger_token: str | None = Field(
        default=None, description="Shared token for POST /internal/sweeps/* (endpoints disabled when unset)"
    )

    # Scheduler Configuration
    enable_scheduler: bool = Field(default=True, description="Run the deadline sweeps inside the API process")
    reminder_sweep_interval_minutes: int = Field(default=5, description="Interval between reminder sweeps")
    overdue_sweep_interval_minutes: int = Field(default=60, description="Interval between overdue sweeps")

    # Group Configuration
    invite_code_max_attempts: int = Field(
        default=10, description="How many fresh invite codes to try before giving up on group creation"
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Rate Limiting
    MAX_REQUESTS_PER_MINUTE: int = 60

    # Task rewards
    EASY_TASK_POINTS: int = 10
    HARD_TASK_POINTS: int = 25
    EASY_TASK_XP: int = 15
    HARD_TASK_XP: int = 40
    LATE_PENALTY_MULTIPLIER: float = 0.5

    # Levels
    XP_PER_LEVEL: int = 100
    MAX_LEVEL: int = 100

    # Reminder thresholds (fraction of the task's time still remaining)
    REMINDER_THRESHOLDS: tuple[float, ...] = (0.8, 0.5, 0.3, 0.05)
    MIN_REMINDER_WINDOW: float = 0.01

    # Wishes
    WISH_APPROVAL_QUORUM: int = 2

    # Groups
    INVITE_CODE_LENGTH: int = 6
    INVITE_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

    # Cache TTLs
    CACHE_TTL_LEADERBOARD_SECONDS: int = 60  # 1 minute for leaderboard cache

    # Scheduler job lock (skip overlapping sweeps)
    JOB_LOCK_TTL_SECONDS: int = 600

    # Pagination Defaults
    SWEEP_PAGE_SIZE: int = 200

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool
    REDIS_INVALIDATION_QUEUE_MAXLEN: int = 1000  # Max items in Redis invalidation queue

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100  # Max items in dead letter queue


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
