"""Application settings loaded from environment variables.

Environment Configuration:
    COMPANION_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: PostgreSQL connection string (required)

Auth Configuration (required in all environments):
    SUPABASE_JWKS_URL: Full URL to Supabase JWKS endpoint
    SUPABASE_ISSUER: Expected JWT issuer (trailing slash stripped)
    SUPABASE_AUDIENCES: Comma-separated list of allowed audiences

Storage Configuration (required in staging/prod):
    SUPABASE_URL: Supabase project URL
    SUPABASE_SERVICE_KEY: Service role key used for audio uploads
    AUDIO_BUCKET: Bucket holding recorded audio messages

Realtime Configuration:
    REDIS_URL: Optional. When set, feed events fan out through Redis pub/sub
        so that several API processes share one feed.
    STREAM_KEEPALIVE_S: Interval between SSE keepalive comments.

Relay Configuration:
    WEBHOOK_TIMEOUT_S: Timeout for the outbound call to a profile's webhook.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


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
    - SUPABASE_JWKS_URL, SUPABASE_ISSUER, SUPABASE_AUDIENCES are required in all environments
    - SUPABASE_URL and SUPABASE_SERVICE_KEY are required in staging and prod only
    """

    companion_env: Environment = Field(default=Environment.LOCAL, alias="COMPANION_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Supabase auth settings (required in all environments)
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Supabase Storage settings
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    audio_bucket: str = Field(default="chat-audio", alias="AUDIO_BUCKET")

    # Realtime
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    stream_keepalive_s: float = Field(default=15.0, alias="STREAM_KEEPALIVE_S")

    # Message limits
    max_message_chars: int = Field(default=4000, alias="MAX_MESSAGE_CHARS")
    max_audio_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_AUDIO_BYTES")  # 10 MB

    # Outbound webhook relay
    webhook_timeout_s: float = Field(default=30.0, alias="WEBHOOK_TIMEOUT_S")

    # CORS for the inbound webhook endpoints (/functions/*)
    cors_allowed_origins: str = Field(default="*", alias="CORS_ALLOWED_ORIGINS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the current environment."""
        missing_auth = []
        if not self.supabase_jwks_url:
            missing_auth.append("SUPABASE_JWKS_URL")
        if not self.supabase_issuer:
            missing_auth.append("SUPABASE_ISSUER")
        if not self.supabase_audiences:
            missing_auth.append("SUPABASE_AUDIENCES")

        if missing_auth:
            raise ValueError(
                f"Missing required Supabase auth settings: {', '.join(missing_auth)}. "
                "Set these environment variables or add them to .env."
            )

        if self.companion_env in (Environment.STAGING, Environment.PROD):
            missing_storage = []
            if not self.supabase_url:
                missing_storage.append("SUPABASE_URL")
            if not self.supabase_service_key:
                missing_storage.append("SUPABASE_SERVICE_KEY")
            if missing_storage:
                raise ValueError(
                    f"{', '.join(missing_storage)} required for "
                    f"COMPANION_ENV={self.companion_env.value}"
                )

        if self.max_message_chars < 1:
            raise ValueError("MAX_MESSAGE_CHARS must be >= 1")
        if self.max_audio_bytes < 1:
            raise ValueError("MAX_AUDIO_BYTES must be >= 1")

        return self

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
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]


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
