"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Chronotab configuration. All values come from ``CHRONOTAB_*`` env vars."""

    # Storage
    database_path: Path = Field(default=Path("data/chronotab.db"))

    # Scheduling (empty timezone = host local zone)
    timezone: str = Field(default="")
    tombstone_retention_days: int = Field(default=30)
    missed_check_default: bool = Field(default=True)

    # Messaging server
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=8765)
    server_secret: str = Field(default="")

    # Notifications
    default_notification_channel: str = Field(default="log")
    telegram_bot_token: str = Field(default="")
    telegram_chat_id: str = Field(default="")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="CHRONOTAB_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
    )

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

    def get_timezone(self) -> ZoneInfo | None:
        """Return the configured ZoneInfo, or None for the host's local zone."""
        if not self.timezone.strip():
            return None
        from zoneinfo import ZoneInfo

        return ZoneInfo(self.timezone.strip())


settings = Settings()
