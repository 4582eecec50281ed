"""Path helpers for local-first storage."""

from __future__ import annotations

import os
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[3]
SRC_DIR = ROOT_DIR / "src"
DEFAULT_DATA_DIR = ROOT_DIR / "data"

DATA_DIR = Path(os.getenv("TRADELOG_DATA_DIR", "") or DEFAULT_DATA_DIR).expanduser()
IMPORTS_DIR = DATA_DIR / "imports"
BACKUP_DIR = DATA_DIR / "backups"


def ensure_data_dirs() -> None:
    for directory in (DATA_DIR, IMPORTS_DIR, BACKUP_DIR):
        directory.mkdir(parents=True, exist_ok=True)


def default_db_path() -> Path:
    return DATA_DIR / "tradelog.db"
