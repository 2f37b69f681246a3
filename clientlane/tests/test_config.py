"""Tests for configuration validation."""

import logging
from types import SimpleNamespace

import pytest

from clientlane.core.config import Settings, validate_config


def make_settings(**overrides):
    defaults = dict(
        ENV="development",
        CONFIG_STRICT=False,
        DATABASE_URL="sqlite+pysqlite:///./clientlane.db",
        JWT_SECRET="a-long-random-secret",
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET="whsec_123",
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def test_complete_config_passes(caplog):
    with caplog.at_level(logging.WARNING, logger="clientlane"):
        assert validate_config(settings_obj=make_settings()) is True
    assert not caplog.records


def test_missing_keys_warn_when_not_strict(caplog):
    settings = make_settings(STRIPE_SECRET_KEY=None, STRIPE_WEBHOOK_SECRET="")
    with caplog.at_level(logging.WARNING, logger="clientlane"):
        assert validate_config(settings_obj=settings) is True
    assert "STRIPE_SECRET_KEY" in caplog.text
    assert "STRIPE_WEBHOOK_SECRET" in caplog.text
    assert "sk_test" not in caplog.text


def test_missing_keys_raise_when_strict():
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        validate_config(strict=True, settings_obj=make_settings(DATABASE_URL=""))


def test_default_jwt_secret_rejected_in_production():
    settings = make_settings(ENV="production", JWT_SECRET=Settings.model_fields["JWT_SECRET"].default)
    with pytest.raises(RuntimeError, match="JWT_SECRET"):
        validate_config(strict=True, settings_obj=settings)


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("MAGIC_LINK_TTL_HOURS", "48")
    monkeypatch.setenv("CORS_ORIGINS", "https://app.clientlane.io, https://clientlane.io")
    cfg = Settings(_env_file=None)
    assert cfg.MAGIC_LINK_TTL_HOURS == 48
    assert cfg.cors_origins() == ["https://app.clientlane.io", "https://clientlane.io"]
