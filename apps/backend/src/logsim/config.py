from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080
    environment: Literal["development", "production", "testing"] = "development"
    log_level: str = "info"
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    # IANA zone cron expressions are evaluated in ("UTC", "Europe/Moscow", ...)
    timezone: str = "UTC"
    tick_interval_seconds: float = 1.0
    # Timed scenarios emit one batch per interval until their duration ends
    batch_interval_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Log generation
    # ------------------------------------------------------------------
    log_buffer_size: int = 50_000
    max_log_count: int = 10_000
    log_pace_ms: int = 0  # artificial delay between generated entries

    # ------------------------------------------------------------------
    # History retention
    # ------------------------------------------------------------------
    scenario_history_size: int = 200
    schedule_history_size: int = 100
    default_executions_limit: int = 10

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    # When set, schedules and chains are snapshotted as JSON under this dir
    data_dir: Optional[Path] = None

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
