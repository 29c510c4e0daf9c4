# tests/test_config.py
"""Tests for settings validation and risky-config warnings"""
import logging

import pytest
from pydantic import ValidationError

from relaybot.config import Settings, validate_or_warn, warn_on_risky_config


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.app_env == "dev"
        assert s.session_backend == "memory"
        assert s.telegram_mode == "polling"
        assert s.serialize_per_sender is True
        assert s.enable_dev_endpoints is False
        assert s.telegram_enabled is False

    def test_invalid_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(session_backend="redis", _env_file=None)

    def test_env_variables_are_read(self, monkeypatch):
        monkeypatch.setenv("SESSION_BACKEND", "file")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        s = Settings(_env_file=None)
        assert s.session_backend == "file"
        assert s.telegram_enabled is True


class TestProductionValidation:
    def test_non_prod_requires_nothing(self):
        assert Settings(_env_file=None).validate_required_for_production() == []

    def test_prod_requires_token(self):
        s = Settings(app_env="prod", session_backend="file", _env_file=None)
        assert s.validate_required_for_production() == ["telegram_bot_token"]

    def test_prod_postgres_and_webhook_requirements(self):
        s = Settings(
            app_env="prod",
            session_backend="postgres",
            telegram_mode="webhook",
            telegram_bot_token="123:abc",
            _env_file=None,
        )
        assert s.validate_required_for_production() == [
            "database_url",
            "telegram_webhook_url",
            "telegram_webhook_secret",
        ]

    def test_validate_or_warn_fails_hard_in_prod(self):
        with pytest.raises(RuntimeError, match="telegram_bot_token"):
            validate_or_warn(Settings(app_env="prod", _env_file=None))


class TestRiskyConfigWarnings:
    def test_clean_dev_config(self):
        assert warn_on_risky_config(Settings(_env_file=None)) == []

    def test_memory_backend_outside_dev(self):
        warnings = warn_on_risky_config(Settings(app_env="staging", _env_file=None))
        assert any("session_backend=memory" in w for w in warnings)

    def test_unauthenticated_webhook(self):
        warnings = warn_on_risky_config(Settings(telegram_mode="webhook", _env_file=None))
        assert any("telegram_webhook_secret" in w for w in warnings)

    def test_serialization_disabled(self):
        warnings = warn_on_risky_config(Settings(serialize_per_sender=False, _env_file=None))
        assert any("serialize_per_sender=False" in w for w in warnings)

    def test_session_ttl_without_postgres(self):
        warnings = warn_on_risky_config(Settings(session_ttl_seconds=3600, _env_file=None))
        assert any("session_ttl_seconds is ignored" in w for w in warnings)
        assert warn_on_risky_config(Settings(
            session_ttl_seconds=3600, session_backend="postgres", database_url="postgresql://localhost/bot", _env_file=None,
        )) == []

    def test_warnings_are_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="relaybot.config"):
            validate_or_warn(Settings(app_env="staging", _env_file=None))
        assert any("[config]" in r.getMessage() for r in caplog.records)


class TestFieldValidation:
    def test_log_level_is_normalized(self):
        assert Settings(log_level="debug", _env_file=None).log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(log_level="chatty", _env_file=None)

    def test_webhook_url_must_be_https(self):
        with pytest.raises(ValidationError):
            Settings(telegram_webhook_url="http://bot.example.com/webhooks/telegram", _env_file=None)
        s = Settings(telegram_webhook_url="https://bot.example.com/webhooks/telegram", _env_file=None)
        assert s.telegram_webhook_url.startswith("https://")

    def test_pool_bounds(self):
        with pytest.raises(ValidationError):
            Settings(pg_pool_min=5, pg_pool_max=2, _env_file=None)

    def test_negative_session_ttl_rejected(self):
        with pytest.raises(ValidationError):
            Settings(session_ttl_seconds=-1, _env_file=None)

    def test_session_table_must_be_identifier(self):
        with pytest.raises(ValidationError):
            Settings(session_table="sessions; DROP TABLE users", _env_file=None)
