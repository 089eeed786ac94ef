"""
Tool Telemetry Rollups
Centralized Configuration Management

Pydantic settings with environment variable support for the store, logging,
retention/rollup windows and the scheduled job.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="tool_telemetry", alias="database", description="Database name")
    user: str = Field(default="telemetry", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full async database URL (overrides host/port, e.g. sqlite+aiosqlite:///telemetry.db)",
    )

    @property
    def async_url(self) -> str:
        """Async database URL - uses DATABASE_URL if set, otherwise asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"

    @property
    def is_sqlite(self) -> bool:
        return self.async_url.startswith("sqlite")


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class AnalyticsSettings(BaseSettings):
    """Rollup, retention and read-window configuration"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    retention_days: int = Field(default=90, ge=1, description="Raw download events older than this are compacted")
    mau_window_days: int = Field(default=30, ge=1, description="Trailing window for MAU snapshots")
    dashboard_window_days: int = Field(default=30, ge=1, description="Window for 30-day download reads")
    sparkline_days: int = Field(default=14, ge=2, description="Sparkline window (today excluded)")
    top_tools_limit: int = Field(default=20, ge=1, description="Default size of top tools lists")
    top_tools_per_backend: int = Field(default=5, ge=1, description="Top tools listed per backend type")
    trending_tools_limit: int = Field(default=6, ge=1, description="Default size of the trending tools list")
    backfill_days: int = Field(default=90, ge=1, description="Default number of days to backfill")
    backend_type_separator: str = Field(default=":", min_length=1, description="Separator between backend type and name")
    unknown_backend_type: str = Field(default="unknown", description="Backend type for events without backend")


class SchedulerSettings(BaseSettings):
    """Scheduled job configuration"""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    task_retries: int = Field(default=2, ge=0, description="Retries per scheduled task")
    task_retry_delay_seconds: int = Field(default=60, ge=0, description="Delay between task retries")
    flow_retries: int = Field(default=1, ge=0, description="Retries for the whole daily flow")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="tool-telemetry-rollups", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience function for accessing settings
settings = get_settings()
