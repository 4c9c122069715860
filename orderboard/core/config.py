"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: Uses the in-memory mock backend (no credentials needed)
    - STAGING / PRODUCTION: Uses the hosted Supabase backend

The ENV_MODE variable controls which backend is instantiated, enabling
switching between local testing and a deployment without code changes.

Usage:
    from orderboard.core.config import get_settings

    settings = get_settings()
    if settings.use_real_services:
        missing = settings.validate_backend_config()
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing at startup."""


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with the mock backend
        PRODUCTION: Live environment backed by Supabase
        STAGING: Pre-production environment backed by Supabase
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    The Supabase anon key is a public client key but should still be kept
    out of version control.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Order Status Board",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins"
    )

    # ==========================================================================
    # SUPABASE BACKEND
    # ==========================================================================

    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (https://<ref>.supabase.co)"
    )
    supabase_anon_key: Optional[str] = Field(
        default=None,
        description="Supabase anon (public) API key"
    )
    backend_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single backend request"
    )

    # ==========================================================================
    # QUERY CACHE
    # ==========================================================================

    query_retry: int = Field(
        default=3,
        ge=0,
        description="Retries for a failed query before the error is surfaced"
    )
    query_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for exponential retry backoff"
    )
    query_max_retry_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound for a single retry delay"
    )
    query_gc_time_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Seconds an unwatched query key stays cached after its last use"
    )

    # ==========================================================================
    # DISPLAY PAGE
    # ==========================================================================

    display_refetch_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How often a mounted display polls the orders of its store"
    )
    display_stale_after_seconds: int = Field(
        default=30,
        ge=0,
        description="Elapsed seconds after which displayed data is marked stale"
    )
    display_timezone: str = Field(
        default="Asia/Jakarta",
        description="Timezone used to print order times on the display"
    )

    # ==========================================================================
    # SESSION COOKIES
    # ==========================================================================

    session_cookie_name: str = Field(
        default="orderboard_access_token",
        description="Cookie holding the access token"
    )
    refresh_cookie_name: str = Field(
        default="orderboard_refresh_token",
        description="Cookie holding the refresh token"
    )
    session_cookie_secure: bool = Field(
        default=False,
        description="Only send session cookies over HTTPS"
    )
    session_max_age_seconds: int = Field(
        default=7 * 24 * 3600,
        description="Lifetime of the session cookies"
    )

    # ==========================================================================
    # MOCK BACKEND (development only)
    # ==========================================================================

    mock_failure_rate: float = Field(
        default=0.0,
        ge=0,
        le=1,
        description="Probability of a simulated backend failure"
    )
    mock_admin_email: str = Field(
        default="admin@example.com",
        description="Seeded admin account for the mock backend"
    )
    mock_admin_password: str = Field(
        default="admin123",
        description="Password of the seeded admin account"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().rstrip("/")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def use_real_services(self) -> bool:
        """Check if the hosted backend should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def cors_origins_list(self) -> list[str]:
        """Get allowed CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_backend_config(self) -> list[str]:
        """
        List the backend settings that are required but missing.

        Returns:
            List of missing environment variable names (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.supabase_url:
                missing.append("SUPABASE_URL")
            if not self.supabase_anon_key:
                missing.append("SUPABASE_ANON_KEY")

        return missing

    def require_backend_config(self) -> None:
        """
        Fail fast when the hosted backend cannot be reached.

        Raises:
            ConfigurationError: If SUPABASE_URL or SUPABASE_ANON_KEY is absent
        """
        missing = self.validate_backend_config()
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} required in {self.env_mode.value} mode. "
                "Set them in your .env file or environment variables."
            )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once per process so every module sees the same
    configuration.

    Returns:
        Settings: Configured application settings
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured application logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-32s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logging.getLogger("orderboard")
