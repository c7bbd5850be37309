"""Application configuration management."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/calsync.db"

    # Logging
    log_level: str = "info"

    # Scheduling
    sync_interval_minutes: int = 15

    # Feed fetching
    feed_timeout_seconds: float = 30.0
    feed_user_agent: str = "Calendar-Sync-App/1.0"

    # Destination writes
    max_concurrent_writes: int = 5
    transient_retry_attempts: int = 3
    transient_backoff_seconds: float = 1.0

    # Timezone used when a sync config has none
    default_timezone: str = "UTC"

    # Google Calendar
    calendar_sync_tag: str = "calsyncManaged"
    busy_label: str = "Busy"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
