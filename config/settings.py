"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )

    # ===================
    # SYNC LOCK
    # ===================
    sync_lock_ttl_seconds: int = Field(
        default=120,
        ge=10,
        le=3600,
        description="Seconds before a held sync lock is considered stale"
    )

    # ===================
    # PROGRESS STREAMING
    # ===================
    progress_keepalive_seconds: float = Field(
        default=30,
        gt=0,
        le=300,
        description="Idle seconds before a keepalive is sent to subscribers"
    )
    progress_subscription_timeout_seconds: float = Field(
        default=120,
        gt=0,
        le=3600,
        description="Hard lifetime of one progress subscription"
    )
    progress_queue_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Buffered events per subscriber before events are dropped"
    )

    # ===================
    # GOOGLE SHEETS
    # ===================
    sheets_base_url: str = Field(
        default="https://docs.google.com/spreadsheets/d",
        description="Base URL of the spreadsheet visualization endpoint"
    )
    sheets_fetch_timeout_seconds: float = Field(
        default=30,
        gt=0,
        le=300,
        description="HTTP timeout for one sheet fetch"
    )

    # ===================
    # AUTO SYNC
    # ===================
    auto_sync_enabled: bool = Field(
        default=False,
        description="Run every active source on a fixed interval"
    )
    auto_sync_interval_minutes: int = Field(
        default=5,
        ge=1,
        le=1440,
        description="Minutes between scheduled sync passes"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
