"""
config.py
Settings loaded from the environment (and a local .env file when present).
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

APP_NAME = "Abonementus"
DB_FILE_NAME = "abonementus_bd.sqlite"

# Planned lifetime of a subscription, counted from its start date
SUBSCRIPTION_DAYS = 30


def _default_data_dir() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        base = home / "Library" / "Application Support"
    elif os.name == "nt":
        base = Path(os.getenv("APPDATA", home / "AppData" / "Roaming"))
    else:
        base = Path(os.getenv("XDG_DATA_HOME", home / ".local" / "share"))
    return base / APP_NAME


@dataclass(frozen=True)
class Settings:
    db_file: Path
    export_dir: Path
    log_level: str = "INFO"
    fetch_timeout: float = 10.0
    enforce_foreign_keys: bool = True


def load_settings() -> Settings:
    db_file = os.getenv("ABONEMENTUS_DB")
    export_dir = os.getenv("ABONEMENTUS_EXPORT_DIR")
    return Settings(
        db_file=Path(db_file) if db_file else _default_data_dir() / DB_FILE_NAME,
        export_dir=Path(export_dir) if export_dir else Path.home() / "Documents",
        log_level=os.getenv("ABONEMENTUS_LOG_LEVEL", "INFO").upper(),
        fetch_timeout=float(os.getenv("ABONEMENTUS_FETCH_TIMEOUT", "10")),
    )
