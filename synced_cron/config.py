"""Scheduler settings loaded from environment variables."""

import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Shorter TTLs could expire a record before a competing process tries to claim it.
MIN_RETENTION_SECONDS = 300

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """SyncedCron configuration. Values come from ``SYNCED_CRON_*`` env vars."""

    # Logging
    log: bool = Field(default=True)
    log_level: str = Field(default="INFO")
    logger: Callable[[dict[str, Any]], Any] | None = Field(default=None, exclude=True)

    # Run ledger
    store_name: str = Field(default="cron_history")
    database_path: Path = Field(default=Path("data/synced_cron.db"))

    # Retention (seconds). None or 0 keeps history forever.
    retention_seconds: int | None = Field(default=172800)
    expiry_interval_seconds: int = Field(default=60, gt=0)

    # Schedule evaluation
    time_mode: Literal["local", "utc"] = Field(default="local")
    timezone: str = Field(default="")

    model_config = SettingsConfigDict(
        env_prefix="SYNCED_CRON_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        extra="forbid",
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

    @field_validator("store_name")
    @classmethod
    def _check_store_name(cls, value: str) -> str:
        if not _IDENTIFIER.match(value):
            msg = f"store_name must be a plain SQL identifier, got {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level: {value}"
            raise ValueError(msg)
        return level

    def effective_retention(self) -> int | None:
        """Return the TTL to enforce, or None when expiry is off or below the floor."""
        if not self.retention_seconds:
            return None
        if self.retention_seconds < MIN_RETENTION_SECONDS:
            return None
        return self.retention_seconds

    def merged(self, **options: Any) -> "Settings":
        """Return a new validated Settings with *options* applied on top of this one."""
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(options)
        return type(self)(**values)


settings = Settings()
