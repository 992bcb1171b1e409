"""tokentop runtime settings via environment / .env file."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Paths ---
    TOKENTOP_CONFIG_PATH: Path = Path("~/.config/tokentop/config.json")
    TOKENTOP_PLUGINS_DIR: Path = Path("~/.config/tokentop/plugins")
    TOKENTOP_REMOTE_PLUGINS_DIR: Path = Path("~/.local/share/tokentop/plugins")

    # --- Logging ---
    TOKENTOP_LOG_LEVEL: str = "WARNING"

    # --- Plugin host ---
    HOOK_TIMEOUT_SECONDS: float = 5.0
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_COOLDOWN_SECONDS: float = 60.0

    # --- Notifications ---
    NOTIFICATION_DEDUP_WINDOW_SECONDS: float = 300.0
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # --- Remote plugins ---
    PACKAGE_INDEX_URL: str = "https://pypi.org/pypi"

    @field_validator("TOKENTOP_LOG_LEVEL", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        level = str(v).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v!r}")
        return level

    @field_validator("CIRCUIT_FAILURE_THRESHOLD")
    @classmethod
    def _positive_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("CIRCUIT_FAILURE_THRESHOLD must be at least 1")
        return v

    @field_validator(
        "HOOK_TIMEOUT_SECONDS",
        "CIRCUIT_COOLDOWN_SECONDS",
        "NOTIFICATION_DEDUP_WINDOW_SECONDS",
        "NOTIFICATION_TIMEOUT_SECONDS",
    )
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("durations must not be negative")
        return v

    @field_validator("PACKAGE_INDEX_URL")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def config_path(self) -> Path:
        return self.TOKENTOP_CONFIG_PATH.expanduser()

    @property
    def plugins_dir(self) -> Path:
        return self.TOKENTOP_PLUGINS_DIR.expanduser()

    @property
    def remote_plugins_dir(self) -> Path:
        return self.TOKENTOP_REMOTE_PLUGINS_DIR.expanduser()


settings = Settings()
