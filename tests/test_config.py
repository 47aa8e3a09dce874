"""Settings validation and logging configuration tests."""

import pytest
from pydantic import ValidationError

from nanobanana.core.config import Settings, configure_logging


def test_missing_gemini_key_fails_outside_tests(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(ValidationError, match="GEMINI_API_KEY"):
        Settings(APP_ENV="production", _env_file=None)


def test_gemini_key_requirement_can_be_disabled(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    settings = Settings(APP_ENV="production", REQUIRE_GEMINI_KEY=False, _env_file=None)

    assert settings.gemini_api_key == ""


def test_environment_variables_are_loaded(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")

    settings = Settings(APP_ENV="production", _env_file=None)
    config = settings.gemini_config()

    assert config.api_key == "env-key"
    assert config.timeout_seconds == 30
    assert settings.cors_origins_list == ["https://a.example", "https://b.example"]


def test_defaults():
    settings = Settings(APP_ENV="test", _env_file=None)

    assert settings.db_pool_size == 20
    assert settings.provider_name == "nanobanana"
    assert settings.default_style == "nanobanana"
    assert settings.image_cache_max_age == 31536000
    assert settings.gemini_timeout_seconds == 120


@pytest.mark.parametrize("app_env", ["production", "development"])
def test_configure_logging(app_env):
    configure_logging(Settings(APP_ENV=app_env, LOG_LEVEL="warning", GEMINI_API_KEY="k"))
