"""Tests for application settings validation."""

import pytest
from pydantic import ValidationError

from companion.config import Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "COMPANION_ENV": "test",
        "SUPABASE_JWKS_URL": "http://localhost:54321/auth/v1/.well-known/jwks.json",
        "SUPABASE_ISSUER": "http://localhost:54321/auth/v1/",
        "SUPABASE_AUDIENCES": "authenticated, anon ,",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestSettingsDefaults:
    def test_defaults(self):
        s = _make_settings()
        assert s.companion_env == Environment.TEST
        assert s.redis_url is None
        assert s.webhook_timeout_s == 30.0
        assert s.stream_keepalive_s == 15.0
        assert s.cors_origin_list == ["*"]

    def test_issuer_trailing_slash_stripped(self):
        assert _make_settings().normalized_issuer == "http://localhost:54321/auth/v1"

    def test_audiences_parsed(self):
        assert _make_settings().audience_list == ["authenticated", "anon"]


class TestSettingsValidation:
    def test_missing_auth_settings_rejected(self):
        with pytest.raises(ValidationError, match="SUPABASE_JWKS_URL"):
            _make_settings(SUPABASE_JWKS_URL=None)

    def test_prod_requires_storage_settings(self):
        with pytest.raises(ValidationError, match="SUPABASE_SERVICE_KEY"):
            _make_settings(COMPANION_ENV="prod", SUPABASE_URL="https://x.supabase.co")

    def test_prod_with_storage_settings_accepted(self):
        s = _make_settings(
            COMPANION_ENV="prod",
            SUPABASE_URL="https://x.supabase.co",
            SUPABASE_SERVICE_KEY="service-key",
        )
        assert s.companion_env == Environment.PROD

    @pytest.mark.parametrize("field", ["MAX_MESSAGE_CHARS", "MAX_AUDIO_BYTES"])
    def test_zero_limits_rejected(self, field):
        with pytest.raises(ValidationError, match=field):
            _make_settings(**{field: 0})
