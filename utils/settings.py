"""Application settings read from the environment.

`main.py` calls `load_dotenv()` before `Settings.from_env()`, so values may
come from a `.env` file during local development.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

READ_MODES = ("raw", "json", "redirect")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the image host.

    Attributes:
        database_dir: Directory holding the SQLite file (DATABASE_DIR).
        reset_database_on_startup: Wipe the database file on first use.
        tg_bot_token: Bot token for the external file API.
        tg_chat_id: Chat that stores uploaded files.
        tg_api_base: Base URL of the bot API.
        gateway_timeout: Timeout in seconds for every outbound gateway call.
        public_base_url: Prefix for local reference URLs; empty keeps them relative.
        read_mode: Default response mode of the read endpoint.
        admin_username: Gallery administrator login.
        admin_password: Gallery administrator password.
        login_max_attempts: Failed logins allowed per client within the window.
        login_window_seconds: Length of the login rate-limit window.
        log_level: Root logging level name.
    """

    database_dir: Optional[str] = None
    reset_database_on_startup: bool = False
    tg_bot_token: Optional[str] = None
    tg_chat_id: Optional[str] = None
    tg_api_base: str = "https://api.telegram.org"
    gateway_timeout: float = 10.0
    public_base_url: str = ""
    read_mode: str = "raw"
    admin_username: str = "admin"
    admin_password: str = "password"
    login_max_attempts: int = 5
    login_window_seconds: int = 15 * 60
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        read_mode = (os.getenv("READ_MODE") or "raw").strip().lower()
        if read_mode not in READ_MODES:
            raise RuntimeError(f"READ_MODE must be one of {', '.join(READ_MODES)}, got {read_mode!r}")

        return cls(
            database_dir=os.getenv("DATABASE_DIR"),
            reset_database_on_startup=_env_bool("DATABASE_RESET_ON_STARTUP"),
            tg_bot_token=os.getenv("TG_BOT_TOKEN") or None,
            tg_chat_id=os.getenv("TG_CHAT_ID") or None,
            tg_api_base=(os.getenv("TG_API_BASE") or "https://api.telegram.org").rstrip("/"),
            gateway_timeout=_env_float("GATEWAY_TIMEOUT_SECONDS", 10.0),
            public_base_url=(os.getenv("PUBLIC_BASE_URL") or "").rstrip("/"),
            read_mode=read_mode,
            admin_username=os.getenv("ADMIN_USERNAME") or "admin",
            admin_password=os.getenv("ADMIN_PASSWORD") or "password",
            login_max_attempts=_env_int("LOGIN_MAX_ATTEMPTS", 5),
            login_window_seconds=_env_int("LOGIN_WINDOW_SECONDS", 15 * 60),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
