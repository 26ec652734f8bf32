"""Tests for settings validation and the fail-fast configuration path."""

from __future__ import annotations

import pytest

from src.salesboard.config import Environment, Settings, load_settings
from src.salesboard.core.errors import ConfigurationError
from src.salesboard.main import create_app


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No platform variables and no .env file in the working directory."""
    for name in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "DASHBOARD_TIMEZONE", "ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestLoadSettings:
    def test_missing_url_and_key_are_both_named(self, clean_env):
        with pytest.raises(ConfigurationError) as excinfo:
            load_settings()

        message = excinfo.value.message
        assert "SUPABASE_URL is required but not set" in message
        assert "SUPABASE_ANON_KEY is required but not set" in message

    def test_missing_key_alone(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://abc.supabase.co")

        with pytest.raises(ConfigurationError, match="SUPABASE_ANON_KEY"):
            load_settings()

    def test_reads_environment(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://abc.supabase.co/")
        clean_env.setenv("SUPABASE_ANON_KEY", " anon-key ")
        clean_env.setenv("ENVIRONMENT", "production")

        settings = load_settings()

        assert settings.SUPABASE_URL == "https://abc.supabase.co"
        assert settings.SUPABASE_ANON_KEY == "anon-key"
        assert settings.ENVIRONMENT == Environment.production
        assert settings.DASHBOARD_INCLUDE_ZERO_TOTALS is False

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("SUPABASE_URL=http://localhost:54321\nSUPABASE_ANON_KEY=local-key\n")

        assert load_settings().SUPABASE_URL == "http://localhost:54321"

    def test_create_app_fails_fast_without_config(self, clean_env):
        with pytest.raises(ConfigurationError):
            create_app()


class TestValidators:
    @pytest.mark.parametrize("url", ["abc.supabase.co", "ftp://abc.supabase.co", "https://"])
    def test_rejects_malformed_url(self, url):
        with pytest.raises(ValueError):
            Settings(SUPABASE_URL=url, SUPABASE_ANON_KEY="k", _env_file=None)

    @pytest.mark.parametrize("key", ["", "   ", "changeme", "your-anon-key"])
    def test_rejects_empty_or_placeholder_key(self, key):
        with pytest.raises(ValueError):
            Settings(SUPABASE_URL="https://abc.supabase.co", SUPABASE_ANON_KEY=key, _env_file=None)

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ValueError):
            Settings(
                SUPABASE_URL="https://abc.supabase.co",
                SUPABASE_ANON_KEY="k",
                DASHBOARD_TIMEZONE="Mars/Olympus_Mons",
                _env_file=None,
            )

    def test_timezone_property(self, settings):
        assert settings.timezone.key == "UTC"

    def test_session_cookie_name_is_not_a_platform_token_name(self, settings):
        assert settings.SESSION_COOKIE_NAME == "salesboard_session"
