"""
backup.py
Export the database as a dated zip archive.
"""

from __future__ import annotations

import logging
import sqlite3
import tempfile
import zipfile
from datetime import date
from pathlib import Path

from db import Store

logger = logging.getLogger(__name__)


def archive_name(day: date) -> str:
    return f"AbonementusDB{day.strftime('%d%m%Y')}.zip"


def export_database(store: Store, export_dir: Path | str, day: date | None = None) -> bool:
    """
    Write AbonementusDB<ddMMyyyy>.zip with a snapshot of the database into
    export_dir, replacing an archive made earlier the same day.
    """
    target = Path(export_dir) / archive_name(day or date.today())
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory() as tmp:
            snapshot = Path(tmp) / store.db_file.name
            store.backup_to(snapshot)
            with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                zf.write(snapshot, arcname=store.db_file.name)
    except (OSError, sqlite3.Error, zipfile.BadZipFile):
        logger.exception("Backup to %s failed", target)
        return False
    logger.info("Backup completed -> %s", target)
    return True
