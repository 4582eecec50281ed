from __future__ import annotations

import os
from dataclasses import dataclass

from tradelog.config.paths import default_db_path


def _env_int(name: str, default: int) -> int:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_text(name: str, default: str) -> str:
    raw = str(os.getenv(name, "") or "").strip()
    return raw or default


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    log_level: str
    default_profile: str
    default_account_id: str
    match_window_minutes: int


def get_settings() -> Settings:
    db_default = f"sqlite:///{default_db_path().as_posix()}"
    return Settings(
        app_env=_env_text("APP_ENV", "development"),
        database_url=_env_text("DATABASE_URL", db_default),
        log_level=_env_text("LOG_LEVEL", "INFO").upper(),
        default_profile=_env_text("TRADELOG_DEFAULT_PROFILE", "tradovate"),
        default_account_id=_env_text("TRADELOG_DEFAULT_ACCOUNT", "main-account"),
        match_window_minutes=_env_int("TRADELOG_MATCH_WINDOW_MINUTES", 60),
    )
