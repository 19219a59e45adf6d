"""Application settings loaded from environment variables.

Environment Configuration:
    DC_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)
    DC_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (stream token replay guard, worker broker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration (required in staging/prod):
    SUPABASE_JWKS_URL: Full URL to Supabase JWKS endpoint
    SUPABASE_ISSUER: Expected JWT issuer (trailing slash stripped)
    SUPABASE_AUDIENCES: Comma-separated list of allowed audiences
    STREAM_TOKEN_SIGNING_KEY: Base64 HS256 key for /stream/* tokens

Web Push Configuration:
    VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY: Application server keypair
    VAPID_CONTACT_EMAIL: Contact address used in the VAPID "sub" claim

Realtime Tuning:
    LIVE_LOCATION_DEFAULT_MINUTES / LIVE_LOCATION_MAX_MINUTES
    PRESENCE_STALE_SECONDS
    REALTIME_QUEUE_SIZE
    STREAM_KEEPALIVE_SECONDS
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Development-only stream signing key (32 bytes, base64). Never valid in staging/prod.
DEV_STREAM_TOKEN_SIGNING_KEY = "ZG9uYXRlY29ubmVjdC1kZXYtc3RyZWFtLWtleS0wMDAwMDA="


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - SUPABASE_* and STREAM_TOKEN_SIGNING_KEY are required in staging and prod
    - DC_INTERNAL_SECRET is required in staging and prod
    """

    dc_env: Environment = Field(default=Environment.LOCAL, alias="DC_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    dc_internal_secret: str | None = Field(default=None, alias="DC_INTERNAL_SECRET")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Supabase auth settings
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Stream tokens for /stream/* (browser EventSource cannot send the session bearer)
    stream_token_signing_key: str | None = Field(default=None, alias="STREAM_TOKEN_SIGNING_KEY")
    stream_base_url: str | None = Field(default=None, alias="STREAM_BASE_URL")
    stream_cors_origins: str | None = Field(default=None, alias="STREAM_CORS_ORIGINS")

    # Web Push
    vapid_public_key: str | None = Field(default=None, alias="VAPID_PUBLIC_KEY")
    vapid_private_key: str | None = Field(default=None, alias="VAPID_PRIVATE_KEY")
    vapid_contact_email: str = Field(
        default="support@donateconnect.app", alias="VAPID_CONTACT_EMAIL"
    )
    push_ttl_seconds: int = Field(default=86400, ge=0, alias="PUSH_TTL_SECONDS")

    # Realtime tuning
    live_location_default_minutes: int = Field(
        default=60, ge=1, alias="LIVE_LOCATION_DEFAULT_MINUTES"
    )
    live_location_max_minutes: int = Field(default=480, ge=1, alias="LIVE_LOCATION_MAX_MINUTES")
    presence_stale_seconds: int = Field(default=90, ge=1, alias="PRESENCE_STALE_SECONDS")
    realtime_queue_size: int = Field(default=256, ge=1, alias="REALTIME_QUEUE_SIZE")
    stream_keepalive_seconds: float = Field(default=15.0, gt=0, alias="STREAM_KEEPALIVE_SECONDS")
    sweep_interval_seconds: int = Field(default=60, ge=1, alias="SWEEP_INTERVAL_SECONDS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for deployed environments."""
        if self.live_location_default_minutes > self.live_location_max_minutes:
            raise ValueError(
                "LIVE_LOCATION_DEFAULT_MINUTES must not exceed LIVE_LOCATION_MAX_MINUTES"
            )

        if self.dc_env not in (Environment.STAGING, Environment.PROD):
            return self

        missing = []
        if not self.supabase_jwks_url:
            missing.append("SUPABASE_JWKS_URL")
        if not self.supabase_issuer:
            missing.append("SUPABASE_ISSUER")
        if not self.supabase_audiences:
            missing.append("SUPABASE_AUDIENCES")
        if not self.dc_internal_secret:
            missing.append("DC_INTERNAL_SECRET")
        if not self.stream_token_signing_key:
            missing.append("STREAM_TOKEN_SIGNING_KEY")

        if missing:
            raise ValueError(
                f"Missing required settings for DC_ENV={self.dc_env.value}: {', '.join(missing)}"
            )

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.dc_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.supabase_audiences:
            return [a.strip() for a in self.supabase_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.supabase_issuer:
            return self.supabase_issuer.rstrip("/")
        return None

    @property
    def effective_stream_token_signing_key(self) -> str:
        """Return the configured stream key, or the dev key outside staging/prod."""
        return self.stream_token_signing_key or DEV_STREAM_TOKEN_SIGNING_KEY

    @property
    def effective_stream_base_url(self) -> str:
        """Return the public base URL browsers use for /stream/*."""
        return (self.stream_base_url or "").rstrip("/")

    @property
    def stream_cors_origin_list(self) -> list[str]:
        """Parse comma-separated browser origins allowed on /stream/*."""
        if self.stream_cors_origins:
            return [o.strip().rstrip("/") for o in self.stream_cors_origins.split(",") if o.strip()]
        return []

    @property
    def push_configured(self) -> bool:
        """Whether both VAPID keys are present."""
        return bool(self.vapid_public_key and self.vapid_private_key)

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
