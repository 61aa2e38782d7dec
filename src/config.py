"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


@dataclass(frozen=True)
class NtfyAuth:
    """Credentials for the ntfy server.

    ``scheme`` is ``"basic"`` (username/password) or ``"bearer"`` (token).
    """

    scheme: str
    username: str = ""
    password: str = ""
    token: str = ""


class Settings(BaseSettings):
    """ntfy-fetch configuration. All values come from environment variables."""

    # ntfy gateway
    ntfy_url: str = Field(default="")
    ntfy_topic: str = Field(default="")
    ntfy_username: str = Field(default="")
    ntfy_password: str = Field(default="")
    ntfy_token: str = Field(default="")
    notification_timeout_seconds: float = Field(default=10.0, gt=0)
    notification_bulk_delay_seconds: float = Field(default=0.1, ge=0)
    startup_notification: bool = Field(default=True)

    # Cron task scheduler
    scheduler_timezone: str = Field(default="Pacific/Rarotonga")

    # Plugins
    plugins_config_path: Path = Field(default=Path("config/plugins.json"))

    # Event store
    events_path: Path = Field(default=Path("data/scheduled-events.json"))
    event_max_retries: int = Field(default=3, ge=1)
    event_retention_hours: float = Field(default=48, gt=0)
    event_cleanup_interval_hours: float = Field(default=24, gt=0)
    event_save_debounce_seconds: float = Field(default=1.0, ge=0)

    # Event scheduler
    event_check_interval_seconds: float = Field(default=60, gt=0)
    event_schedule_horizon_hours: float = Field(default=6, gt=0)
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0)

    # Admin API
    admin_enabled: bool = Field(default=False)
    admin_host: str = Field(default="127.0.0.1")
    admin_port: int = Field(default=8080)
    admin_token: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_ntfy_auth(self) -> NtfyAuth | None:
        """Resolve ntfy credentials. A token wins over username/password."""
        if self.ntfy_token.strip():
            return NtfyAuth(scheme="bearer", token=self.ntfy_token.strip())
        if self.ntfy_username and self.ntfy_password:
            return NtfyAuth(
                scheme="basic",
                username=self.ntfy_username,
                password=self.ntfy_password,
            )
        return None

    def missing_required(self) -> list[str]:
        """Return the names of required settings that are empty."""
        missing = []
        if not self.ntfy_url.strip():
            missing.append("NTFY_URL")
        if not self.ntfy_topic.strip():
            missing.append("NTFY_TOPIC")
        return missing
