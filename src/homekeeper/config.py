"""Engine settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment variables with HOMEKEEPER_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="HOMEKEEPER_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"
    timezone: str = "UTC"

    # --- Storage ---
    store_backend: str = "redis"  # "redis" or "memory"
    redis_url: str = "redis://localhost:6379/0"
    storage_key_prefix: str = "homekeeper_"

    # --- Scheduling ---
    immediate_delay_seconds: int = 2
    task_reminder_min_lead_hours: int = 24

    # --- Engagement ---
    analytics_max_records: int = 1000
    exploration_rate: float = 0.3
    default_report_days: int = 30

    # --- Frequency optimizer ---
    low_response_rate: float = 0.3
    high_response_rate: float = 0.7
    weekly_limit_floor: int = 1
    weekly_limit_ceiling: int = 5
    optimizer_weekday: int = 6  # Sunday (Monday == 0)
    optimizer_hour: int = 9
    optimizer_report_days: int = 7


@lru_cache
def get_settings() -> Settings:
    """Get cached engine settings."""
    return Settings()
