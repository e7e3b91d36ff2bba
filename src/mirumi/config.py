# src/mirumi/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- Nothing is required at import time; a missing database path only means the
  user has to run `/db init` or `/db open` first.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "MIRUMI"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path | None) -> Path | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths ----
    data_dir: Path
    default_db_path: Path
    db_path: Path | None  # opened at startup when set

    # ---- Timer ----
    tick_interval_seconds: float
    title_max_chars: int

    # ---- Console ----
    console_title: bool  # mirror the countdown into the terminal title

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "Mirumi").strip() or "Mirumi"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/mirumi")) or Path(".local/mirumi")
        default_db_path = data_dir / "storage" / "mirumi.db"
        db_path = _env_path(_k("DB_PATH"), None)

        tick_interval_seconds = max(0.01, _env_float(_k("TICK_INTERVAL_SECONDS"), 1.0))
        title_max_chars = max(1, _env_int(_k("TITLE_MAX_CHARS"), 12))

        console_title = _env_bool(_k("CONSOLE_TITLE"), True)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            default_db_path=default_db_path,
            db_path=db_path,
            tick_interval_seconds=tick_interval_seconds,
            title_max_chars=title_max_chars,
            console_title=console_title,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Load .env (once) and build the settings object on first use."""
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings.from_env()
    return _SETTINGS
