"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models.enums import ViolationClock


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "SLA Escalation Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # Supabase Configuration
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None  # For admin operations

    # Table names
    records_table: str = "records"
    steps_table: str = "activities"
    workflows_table: str = "workflows"
    action_logs_table: str = "sla_action_logs"

    # CORS Settings (for Frontend)
    cors_origins: str = "http://localhost:3000"

    # Business calendar (one fixed UTC offset for all computations)
    business_timezone_offset_hours: int = 7
    business_start_hour: int = 8
    business_end_hour: int = 17
    saturday_end_hour: int = 12

    # SLA defaults
    default_sla_hours: int = 24
    remaining_hours_floor: float = -999.0
    violation_clock: ViolationClock = ViolationClock.WALL_CLOCK

    # Escalation egress
    escalation_timeout_seconds: float = 10.0

    # Scheduler Settings
    enable_scheduler: bool = True

    # Only ONE worker should run the sweep in multi-worker deployments.
    # Set RUN_SCHEDULER=true on only ONE container/worker to prevent duplicate escalations
    run_scheduler: bool = False
    sweep_interval_minutes: int = 5
    sweep_concurrency: int = 4

    # Job Monitoring
    job_failure_alert_threshold: int = 2
    ops_alert_webhook_url: Optional[str] = None

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def supabase_configured(self) -> bool:
        """Check if the backing store is configured."""
        return bool(self.supabase_url and (self.supabase_service_role_key or self.supabase_anon_key))


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
