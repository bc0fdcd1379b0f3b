"""
Configuration loader for the feed monitors.

Uses Pydantic Settings for environment variable (and ``.env``) parsing.
Outside local development, variables with an ``_SSM_PARAM`` suffix are
resolved from AWS Systems Manager Parameter Store first, so the webhook URL
and database DSN never need to live in plain environment variables.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

import boto3
from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SPIKE_FEED_URL = "https://www.pizzint.watch/api/dashboard-data?nocache=1"
DEFAULT_PROBABILITY_FEED_URL = "https://www.pizzint.watch/api/neh-index/doomsday"
DEFAULT_COMMUTE_FEED_URL = "https://www.pizzint.watch/api/commute-index"


class Settings(BaseSettings):
    """Monitor configuration loaded from environment variables.

    A missing ``discord_webhook_url`` is valid: notifications degrade to a
    logged no-op.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    discord_webhook_url: SecretStr | None = None

    spike_feed_url: str = DEFAULT_SPIKE_FEED_URL
    probability_feed_url: str = DEFAULT_PROBABILITY_FEED_URL
    commute_feed_url: str = DEFAULT_COMMUTE_FEED_URL

    # Scheduling
    poll_interval_seconds: float = 15 * 60
    heightened_poll_interval_seconds: float = 2 * 60
    http_timeout_seconds: float = 10.0

    # Spike monitor gate: notify only while the global level is at or below this.
    spike_max_global_level: int = 2
    # Commute monitor: alert when the level is at or below this.
    commute_alert_ceiling: int = 4

    # Persistence
    state_backend: Literal["file", "postgres"] = "file"
    state_file: str = "state.json"
    database_url: SecretStr | None = None

    # Feature flags
    enable_spike_monitor: bool = True
    enable_probability_monitor: bool = True
    enable_commute_monitor: bool = True

    log_level: str = "INFO"
    aws_region: str = "us-east-1"


def _resolve_ssm_params() -> None:
    """Scan environment variables for ``*_SSM_PARAM`` suffixes and replace
    them with the actual secret values fetched from AWS SSM Parameter Store.

    For example, if ``DISCORD_WEBHOOK_URL_SSM_PARAM=/feedwatch/prod/webhook``
    is set, this function fetches that parameter and injects
    ``DISCORD_WEBHOOK_URL=<resolved_value>`` into the environment.
    """
    ssm_suffix = "_SSM_PARAM"
    params_to_resolve: dict[str, str] = {}

    for key, value in os.environ.items():
        if key.endswith(ssm_suffix):
            target_key = key[: -len(ssm_suffix)]
            params_to_resolve[target_key] = value

    if not params_to_resolve:
        return

    ssm = boto3.client("ssm", region_name=os.environ.get("AWS_REGION", "us-east-1"))

    # Batch fetch in groups of 10 (SSM API limit)
    param_names = list(params_to_resolve.values())
    for i in range(0, len(param_names), 10):
        batch = param_names[i : i + 10]
        response = ssm.get_parameters(Names=batch, WithDecryption=True)
        resolved = {p["Name"]: p["Value"] for p in response["Parameters"]}

        for target_key, param_name in params_to_resolve.items():
            if param_name in resolved:
                os.environ[target_key] = resolved[param_name]


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache application settings.

    1. Check ``APP_ENV`` environment variable.
    2. If not ``local``, resolve SSM parameters into the environment.
    3. Construct and return the ``Settings`` object.
    """
    app_env = os.environ.get("APP_ENV", "local")
    if app_env != "local":
        _resolve_ssm_params()

    return Settings()
