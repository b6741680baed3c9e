import pytest

from app.config import Settings, settings
from app.db import session


def test_pool_tuning_comes_from_settings():
    assert session.POOL_SIZE == settings.DB_POOL_SIZE
    assert session.MAX_OVERFLOW == settings.DB_MAX_OVERFLOW
    assert session.POOL_TIMEOUT == settings.DB_POOL_TIMEOUT
    assert session.POOL_RECYCLE == settings.DB_POOL_RECYCLE


def test_pool_tuning_is_read_from_environment(monkeypatch):
    monkeypatch.setenv("DB_POOL_SIZE", "3")
    monkeypatch.setenv("DB_POOL_RECYCLE", "60")

    configured = Settings()

    assert configured.DB_POOL_SIZE == 3
    assert configured.DB_POOL_RECYCLE == 60


def test_production_rejects_half_configured_cloudflare():
    with pytest.raises(ValueError, match="must be set together"):
        Settings(APP_ENV="production", CLOUDFLARE_API_TOKEN="cf-token", CLOUDFLARE_ACCOUNT_ID="")


def test_development_only_warns_on_half_configured_cloudflare():
    with pytest.warns(UserWarning, match="automatic DNS setup stays disabled"):
        configured = Settings(APP_ENV="development", CLOUDFLARE_API_TOKEN="cf-token", CLOUDFLARE_ACCOUNT_ID="")

    assert configured.is_production is False
