"""
Orderdesk Core - Configuration Management

Centralized configuration for environment variables, CORS, and the
ingestion engine (currencies, exchange-rate caching, upstream timeouts,
order-number locking).
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

from utils.encryption import is_encryption_configured

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (postgresql+asyncpg://...)"
    )
    POSTGRES_HOST: str = Field(default="")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_DB: str = Field(default="orderdesk")
    POSTGRES_USER: str = Field(default="")
    POSTGRES_PASSWORD: str = Field(default="")
    POSTGRES_SSLMODE: str = Field(default="")

    # ==================== SECRETS ====================
    ENCRYPTION_KEY: str = Field(
        default="",
        description="Fernet key used for stored storefront access tokens"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== CURRENCIES ====================
    PRIMARY_CURRENCY: str = Field(
        default="USD",
        description="Settlement currency of totalAmount"
    )
    SECONDARY_CURRENCY: str = Field(
        default="EGP",
        description="Currency of catalog prices and originalAmount"
    )

    # ==================== EXCHANGE RATES ====================
    EXCHANGE_RATE_API_URL: str = Field(
        default="https://api.exchangerate-api.com/v4/latest",
        description="Base URL; the base currency code is appended"
    )
    EXCHANGE_RATE_CACHE_MINUTES: int = Field(
        default=10,
        description="How long a fetched rate is served without refetching"
    )
    EXCHANGE_RATE_STALE_TOLERANCE_HOURS: int = Field(
        default=24,
        description="How long a cached rate may be served when upstream fails"
    )
    EXCHANGE_RATE_TIMEOUT_SECONDS: float = Field(default=5.0)

    # ==================== EXTERNAL SOURCES ====================
    SOURCE_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout for storefront and bank API calls"
    )
    SHOPIFY_API_VERSION: str = Field(default="2025-10")
    MERCURY_API_URL: str = Field(default="https://api.mercury.com/api/v1")
    MERCURY_API_KEY: str = Field(
        default="",
        description="Bank API key"
    )
    MERCURY_ACCOUNT_ID: str = Field(default="")

    # ==================== INGESTION ENGINE ====================
    SEQUENCER_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Attempts to take the order-number lock before failing"
    )
    SEQUENCER_LOCK_TIMEOUT_MS: int = Field(default=5000)
    STAGING_REQUIRE_CATALOG_MATCH: bool = Field(
        default=True,
        description="Keep staged orders queued when their line items do not match the catalog"
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
    API_TITLE: str = Field(default="Orderdesk Back Office API")
    API_VERSION: str = Field(default="1.0.0")

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.

        Development also allows the local frontend ports.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return sorted(all_origins)

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL and not self.POSTGRES_HOST:
            errors.append("DATABASE_URL is required")

        if not self.ENCRYPTION_KEY:
            errors.append("ENCRYPTION_KEY is required")

        if self.PRIMARY_CURRENCY == self.SECONDARY_CURRENCY:
            errors.append("PRIMARY_CURRENCY and SECONDARY_CURRENCY must differ")

        if self.is_production:
            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if "localhost" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot point to localhost in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors

    def get_database_url(self) -> str:
        """Get the appropriate database URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            ssl = f"?ssl={self.POSTGRES_SSLMODE}" if self.POSTGRES_SSLMODE else ""
            return (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}{ssl}"
            )

        raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Currencies: {settings.PRIMARY_CURRENCY}/{settings.SECONDARY_CURRENCY}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
            "X-User-Id",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

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

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
        ("ENCRYPTION_KEY", settings.ENCRYPTION_KEY, "Stored storefront tokens cannot be decrypted"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(f"{name} not set: {warning}")

    if settings.ENCRYPTION_KEY and not is_encryption_configured():
        status["warnings"].append("ENCRYPTION_KEY is not a valid Fernet key: stores cannot be connected")

    errors = settings.validate_production_config()
    if errors and settings.is_production:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
