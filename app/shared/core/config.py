from functools import lru_cache
from threading import Lock
import json
from typing import Annotated, Optional
import structlog
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator, model_validator

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    # Do not generate security-sensitive secrets at runtime.
    # Require explicit configuration via environment / .env for all non-test runs.
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the Menurai billing service.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "Menurai Billing"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    # Used by alembic migrations against managed Postgres.
    DB_SSL_MODE: str = "require"
    DB_SSL_CA_CERT_PATH: Optional[str] = None

    # Caller authentication (HS256 bearer tokens issued by the identity provider)
    BILLING_JWT_SECRET: Optional[str] = None
    BILLING_JWT_AUDIENCE: str = "authenticated"

    # Razorpay gateway
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    RAZORPAY_TIMEOUT_SECONDS: float = 15.0
    # Number of billing cycles a subscription is created for.
    RAZORPAY_SUBSCRIPTION_TOTAL_COUNT: int = 120

    # Subscription lifecycle
    BILLING_ALLOWED_PLAN_IDS: Annotated[list[str], NoDecode] = []
    BILLING_TOMBSTONE_GRACE_SECONDS: int = 900
    BILLING_WEBHOOK_SIGNATURE_HEADER: str = "X-Signature"

    # Security
    CORS_ORIGINS: list[str] = []  # Empty by default - restricted in prod

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @field_validator("BILLING_ALLOWED_PLAN_IDS", mode="before")
    @classmethod
    def _split_plan_ids(cls, value: object) -> object:
        # Accept "plan_a,plan_b" in addition to a JSON list.
        if not isinstance(value, str):
            return value
        if value.strip().startswith("["):
            return json.loads(value)
        return [part.strip() for part in value.split(",") if part.strip()]

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """
        Centralized validation orchestrator.
        Groups validation by concern for clarity and specificity.
        """
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )
        if self.TESTING:
            return self

        self._validate_core_secrets()
        self._validate_database_config()
        self._validate_billing_config()

        return self

    def _validate_core_secrets(self) -> None:
        """Validates the bearer-token signing secret."""
        if self.ENVIRONMENT not in {ENV_PRODUCTION, ENV_STAGING}:
            return
        if not self.BILLING_JWT_SECRET or len(self.BILLING_JWT_SECRET) < 32:
            raise ValueError(
                "BILLING_JWT_SECRET must be set to a secure value (>= 32 chars)."
            )

    def _validate_database_config(self) -> None:
        if self.is_production and not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is required in production.")

    def _validate_billing_config(self) -> None:
        """Validates Razorpay credentials and lifecycle guardrails."""
        if self.RAZORPAY_TIMEOUT_SECONDS <= 0:
            raise ValueError("RAZORPAY_TIMEOUT_SECONDS must be > 0.")
        if self.RAZORPAY_TIMEOUT_SECONDS > 60:
            raise ValueError("RAZORPAY_TIMEOUT_SECONDS must be <= 60.")
        if self.RAZORPAY_SUBSCRIPTION_TOTAL_COUNT < 1:
            raise ValueError("RAZORPAY_SUBSCRIPTION_TOTAL_COUNT must be >= 1.")
        if self.BILLING_TOMBSTONE_GRACE_SECONDS < 0:
            raise ValueError("BILLING_TOMBSTONE_GRACE_SECONDS must be >= 0.")
        if not self.BILLING_WEBHOOK_SIGNATURE_HEADER.strip():
            raise ValueError("BILLING_WEBHOOK_SIGNATURE_HEADER must not be empty.")

        if self.is_production:
            if not self.RAZORPAY_KEY_ID or self.RAZORPAY_KEY_ID.startswith(
                "rzp_test"
            ):
                raise ValueError(
                    "RAZORPAY_KEY_ID must be a live key (rzp_live_...) in production."
                )
            if not self.RAZORPAY_KEY_SECRET:
                raise ValueError("RAZORPAY_KEY_SECRET is required in production.")
            if not self.RAZORPAY_WEBHOOK_SECRET:
                raise ValueError("RAZORPAY_WEBHOOK_SECRET is required in production.")
            if not self.RAZORPAY_API_URL.lower().startswith("https://"):
                raise ValueError("RAZORPAY_API_URL must use https://.")
            if not self.BILLING_ALLOWED_PLAN_IDS:
                raise ValueError("BILLING_ALLOWED_PLAN_IDS must not be empty in production.")

    @property
    def is_production(self) -> bool:
        """
        True only when ENVIRONMENT is explicitly set to 'production'.
        This is used for high-security gates and billing enforcement.
        """
        return self.ENVIRONMENT == ENV_PRODUCTION

