# src/chronos_tasks/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets or remote identity required at import time.
- Every timing knob of the data layer (debounce delays, tick, undo TTL) lives here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "CHRONOS"

REMOTE_MODES = ("none", "memory")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


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


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Remote identity / store ----
    owner_id: str | None
    remote_mode: str

    # ---- Scheduling knobs (seconds) ----
    save_debounce_seconds: float
    sync_debounce_seconds: float
    timer_tick_seconds: float

    # ---- Undo ----
    undo_max_size: int
    undo_ttl_seconds: float

    # ---- Validation limits ----
    title_max_length: int
    console_enabled: bool

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "chronos").strip() or "chronos"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/chronos"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "chronos.sqlite3")

        owner_id = _env(_k("OWNER_ID"), "").strip() or None
        remote_mode = _env(_k("REMOTE_MODE"), "none").strip().lower()
        if remote_mode not in REMOTE_MODES:
            remote_mode = "none"

        # Sync delay is never shorter than the save delay.
        save_debounce_seconds = max(0.0, _env_float(_k("SAVE_DEBOUNCE_SECONDS"), 0.5))
        sync_debounce_seconds = max(
            save_debounce_seconds, _env_float(_k("SYNC_DEBOUNCE_SECONDS"), 1.0)
        )
        timer_tick_seconds = max(0.05, _env_float(_k("TIMER_TICK_SECONDS"), 1.0))

        undo_max_size = max(1, _env_int(_k("UNDO_MAX_SIZE"), 20))
        undo_ttl_seconds = max(1.0, _env_float(_k("UNDO_TTL_SECONDS"), 30.0))

        title_max_length = max(1, _env_int(_k("TITLE_MAX_LENGTH"), 200))
        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            owner_id=owner_id,
            remote_mode=remote_mode,
            save_debounce_seconds=save_debounce_seconds,
            sync_debounce_seconds=sync_debounce_seconds,
            timer_tick_seconds=timer_tick_seconds,
            undo_max_size=undo_max_size,
            undo_ttl_seconds=undo_ttl_seconds,
            title_max_length=title_max_length,
            console_enabled=console_enabled,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
