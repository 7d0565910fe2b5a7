"""
Financial Sync - Configuration Management

Centralized configuration for environment variables and deployment settings.
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== LEDGER DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL for the sales ledger (postgresql+asyncpg://...)"
    )
    DATABASE_POOL_SIZE: int = Field(default=5)
    DATABASE_MAX_OVERFLOW: int = Field(default=10)

    # ==================== PRACTICE-MANAGEMENT STORE ====================
    FM_URL: str = Field(
        default="",
        description="Base URL of the practice-management Data API (e.g. https://host/fmi/data/v1)"
    )
    FM_DATABASE: str = Field(default="", description="Practice-management database name")
    FM_USER: str = Field(default="")
    FM_PASSWORD: str = Field(default="")
    FM_LAYOUT: str = Field(
        default="dapiRecords",
        description="Layout holding billable time entries"
    )
    FM_PAGE_SIZE: int = Field(default=500, description="Records requested per _find page")
    FM_TIMEOUT_SECONDS: float = Field(default=30.0)

    # ==================== SYNC ENGINE ====================
    SYNC_WRITE_CONCURRENCY: int = Field(
        default=5,
        description="Maximum concurrent ledger writes per batch"
    )
    SYNC_PERIOD_DELAY_SECONDS: float = Field(
        default=1.0,
        description="Pause between periods in multi-period runs"
    )
    SYNC_TRACKING_DIR: str = Field(
        default="data/sync_tracking",
        description="Directory holding pending-sync plans"
    )

    # ==================== INTERNAL AUTH ====================
    INTERNAL_API_KEY: str = Field(default="")
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated list of additional keys (for rotation)"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(default="Financial Sync API")
    API_VERSION: str = Field(default="1.0.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def internal_api_keys(self) -> List[str]:
        keys = []
        if self.INTERNAL_API_KEY:
            keys.append(self.INTERNAL_API_KEY.strip())
        keys.extend(k.strip() for k in self.INTERNAL_API_KEYS.split(",") if k.strip())
        return keys

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL:
            errors.append("DATABASE_URL is required")

        for name in ("FM_URL", "FM_DATABASE", "FM_USER", "FM_PASSWORD"):
            if not getattr(self, name):
                errors.append(f"{name} is required")

        if self.SYNC_WRITE_CONCURRENCY < 1:
            errors.append("SYNC_WRITE_CONCURRENCY must be at least 1")

        if self.is_production:
            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")
            if self.DEBUG:
                errors.append("DEBUG should be False in production")
            if not self.internal_api_keys:
                errors.append("INTERNAL_API_KEY is required in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
    }

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    if not settings.SENTRY_DSN:
        status["warnings"].append("Error tracking disabled")
    if not settings.internal_api_keys:
        status["warnings"].append("Internal API keys not configured - sync endpoints will reject requests")

    return status
