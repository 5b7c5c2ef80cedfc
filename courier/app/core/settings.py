"""
Application settings with validation using pydantic-settings.
Validates all required environment variables at startup.
"""
import socket
from decimal import Decimal
from urllib.parse import quote_plus
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _resolve_db_host(host: str) -> str:
    """Resolve DB host to IP so asyncpg avoids getaddrinfo in asyncio context (e.g. in Docker)."""
    if not host or host in ("localhost", "127.0.0.1"):
        return host
    try:
        return socket.gethostbyname(host)
    except socket.gaierror:
        return host


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    DB_USER: str = Field(..., description="PostgreSQL username")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database name")
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: str = Field(default="5432", description="PostgreSQL port")

    # Database pool configuration
    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=40, description="Database max overflow connections")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Database connection recycle time (seconds)")

    # Security configuration
    ADMIN_API_KEY: Optional[str] = Field(default=None, description="Key for staff/dispatcher routes (required in production)")

    # CORS configuration
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated list of allowed CORS origins")

    # Environment
    ENVIRONMENT: str = Field(default="production", description="Environment: development or production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Dispatch policy
    RIDER_COMMISSION_RATE: Decimal = Field(
        default=Decimal("0.70"),
        description="Rider share of the delivery fee, frozen on the assignment at assign time",
    )
    CLAIM_LOCK_TIMEOUT_MS: int = Field(default=250, description="PostgreSQL lock_timeout for rider claims")
    RELEASE_RETRY_ATTEMPTS: int = Field(default=4, description="Attempts for the compensating rider release")
    RELEASE_RETRY_BACKOFF_SECONDS: float = Field(default=0.5, description="Base backoff between release attempts")
    RECONCILE_INTERVAL_SECONDS: int = Field(default=300, description="Stuck-rider reconciliation period")

    # Tracking
    TRACKING_BASE_URL: str = Field(
        default="https://app.warehousepos.com/track",
        description="Public tracking link prefix",
    )
    TRACKING_CODE_MAX_ATTEMPTS: int = Field(default=5, description="Retries when a tracking code collides")

    # Messaging gateways
    SMS_GATEWAY_URL: Optional[str] = Field(default=None, description="SMS gateway endpoint")
    WHATSAPP_GATEWAY_URL: Optional[str] = Field(default=None, description="WhatsApp gateway endpoint")
    MESSAGING_API_KEY: Optional[str] = Field(default=None, description="Bearer token for the messaging gateways")
    MESSAGING_TIMEOUT_SECONDS: float = Field(default=20.0, description="Per-send gateway timeout")
    NOTIFY_PREFER_WHATSAPP: bool = Field(default=True, description="Try WhatsApp before SMS")
    DEFAULT_COUNTRY: str = Field(default="GH", description="Country passed to the transport when unknown")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        if v not in ("development", "production"):
            raise ValueError("ENVIRONMENT must be 'development' or 'production'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("RIDER_COMMISSION_RATE")
    @classmethod
    def validate_commission_rate(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 1:
            raise ValueError("RIDER_COMMISSION_RATE must be between 0 and 1")
        return v

    def validate_production_settings(self) -> list[str]:
        """
        Validate that all required settings are present in production.
        Returns list of missing settings.
        """
        errors = []

        if self.ENVIRONMENT == "production":
            if not self.ADMIN_API_KEY:
                errors.append("ADMIN_API_KEY is required in production")
            if not self.ALLOWED_ORIGINS:
                errors.append("ALLOWED_ORIGINS is required in production")
            if not self.SMS_GATEWAY_URL:
                errors.append("SMS_GATEWAY_URL is required in production")

        return errors

    @property
    def db_url(self) -> str:
        """Get database URL. Resolve host to IP so connections work in Docker/async context."""
        host = _resolve_db_host(self.DB_HOST)
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{host}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
        # Validate production settings
        errors = _settings.validate_production_settings()
        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)
    return _settings
