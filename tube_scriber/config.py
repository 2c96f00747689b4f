"""
Configuration loaded from environment variables (and an optional .env file).

The Telegram token is the only required secret; without it the bot does not
start its messaging side and only serves the health endpoints.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationMissing

DEFAULT_HUB_URL = "https://pubsubhubbub.appspot.com/subscribe"


class Settings(BaseSettings):
    """Bot configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Telegram
    telegram_token: str | None = None

    # Webhook server
    host: str = "http://localhost"
    listen_host: str = "0.0.0.0"
    port: int = 5050
    listener_path: str = "/youtube/notifications"
    callback_url: str | None = None

    # Hub
    hub_url: str = DEFAULT_HUB_URL
    hub_secret: str | None = None
    hub_lease_seconds: int | None = None

    # Storage
    db_path: str = "./data/tube_scriber.db"
    delivery_retention_days: float = 7.0

    # Outbound HTTP (resolver and hub)
    request_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "info"
    log_format: Literal["json", "text"] = "json"

    @field_validator("listener_path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @property
    def hub_callback_url(self) -> str:
        """Public URL the hub calls back on."""
        if self.callback_url:
            return self.callback_url
        return f"{self.host.rstrip('/')}:{self.port}{self.listener_path}"

    @property
    def delivery_retention(self) -> timedelta:
        """How long delivered notifications are remembered for redelivery checks."""
        return timedelta(days=self.delivery_retention_days)

    def require_token(self) -> str:
        if not self.telegram_token:
            raise ConfigurationMissing("TELEGRAM_TOKEN is not set")
        return self.telegram_token
