"""
Tests for settings loading and SSM parameter resolution.
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from feedwatch.alerts.config import (
    DEFAULT_PROBABILITY_FEED_URL,
    Settings,
    _resolve_ssm_params,
    load_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    # Keep a developer's .env and shell out of the tests.
    monkeypatch.chdir(tmp_path)
    for key in (
        "APP_ENV",
        "DISCORD_WEBHOOK_URL",
        "DISCORD_WEBHOOK_URL_SSM_PARAM",
        "DATABASE_URL",
        "DATABASE_URL_SSM_PARAM",
        "POLL_INTERVAL_SECONDS",
        "STATE_BACKEND",
    ):
        monkeypatch.delenv(key, raising=False)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.discord_webhook_url is None
        assert settings.probability_feed_url == DEFAULT_PROBABILITY_FEED_URL
        assert settings.poll_interval_seconds == 900
        assert settings.heightened_poll_interval_seconds == 120
        assert settings.spike_max_global_level == 2
        assert settings.commute_alert_ceiling == 4
        assert settings.state_backend == "file"
        assert settings.state_file == "state.json"

    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.example/hook")
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "60")
        monkeypatch.setenv("ENABLE_COMMUTE_MONITOR", "false")

        settings = Settings()
        assert settings.discord_webhook_url.get_secret_value() == "https://discord.example/hook"
        assert settings.poll_interval_seconds == 60
        assert settings.enable_commute_monitor is False

    def test_webhook_is_masked(self, monkeypatch) -> None:
        monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.example/secret-token")
        assert "secret-token" not in repr(Settings())

    def test_reads_dotenv_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("STATE_FILE=/var/lib/feedwatch/state.json\n")
        assert Settings().state_file == "/var/lib/feedwatch/state.json"

    def test_invalid_backend_rejected(self, monkeypatch) -> None:
        monkeypatch.setenv("STATE_BACKEND", "redis")
        with pytest.raises(ValidationError):
            Settings()


class TestLoadSettings:
    def test_local_skips_ssm(self) -> None:
        with patch("feedwatch.alerts.config.boto3.client") as mock_client:
            load_settings()
        mock_client.assert_not_called()

    def test_cached(self) -> None:
        assert load_settings() is load_settings()

    def test_non_local_resolves_ssm(self, monkeypatch) -> None:
        monkeypatch.setenv("APP_ENV", "prod")
        monkeypatch.setenv("DISCORD_WEBHOOK_URL_SSM_PARAM", "/feedwatch/prod/webhook")
        # Registered so the resolved value is removed again after the test.
        monkeypatch.setenv("DISCORD_WEBHOOK_URL", "unresolved")

        mock_ssm = MagicMock()
        mock_ssm.get_parameters.return_value = {
            "Parameters": [
                {"Name": "/feedwatch/prod/webhook", "Value": "https://discord.example/resolved"}
            ]
        }
        with patch("feedwatch.alerts.config.boto3.client", return_value=mock_ssm):
            settings = load_settings()

        mock_ssm.get_parameters.assert_called_once_with(
            Names=["/feedwatch/prod/webhook"], WithDecryption=True
        )
        assert (
            settings.discord_webhook_url.get_secret_value()
            == "https://discord.example/resolved"
        )


class TestResolveSsmParams:
    def test_no_params_no_client(self) -> None:
        with patch("feedwatch.alerts.config.boto3.client") as mock_client:
            _resolve_ssm_params()
        mock_client.assert_not_called()

    def test_unresolved_param_leaves_env_alone(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL_SSM_PARAM", "/feedwatch/prod/missing")
        mock_ssm = MagicMock()
        mock_ssm.get_parameters.return_value = {"Parameters": []}

        with patch("feedwatch.alerts.config.boto3.client", return_value=mock_ssm):
            _resolve_ssm_params()

        assert "DATABASE_URL" not in os.environ
