from __future__ import annotations

import sqlite3
import zipfile
from datetime import date

from backup import archive_name, export_database
from models import Client

DAY = date(2026, 10, 18)


def test_archive_name():
    assert archive_name(DAY) == "AbonementusDB18102026.zip"


def test_export_writes_snapshot(store, registry, tmp_path):
    registry.create_client(Client(id=None, first_name="Anna"))
    export_dir = tmp_path / "exports"

    assert export_database(store, export_dir, day=DAY)

    archive = export_dir / "AbonementusDB18102026.zip"
    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == [store.db_file.name]
        zf.extract(store.db_file.name, tmp_path / "restored")

    restored = sqlite3.connect(tmp_path / "restored" / store.db_file.name)
    try:
        assert restored.execute("SELECT first_name FROM clients").fetchall() == [("Anna",)]
    finally:
        restored.close()


def test_export_overwrites_same_day_archive(store, tmp_path):
    archive = tmp_path / archive_name(DAY)
    archive.write_bytes(b"stale")

    assert export_database(store, tmp_path, day=DAY)
    assert zipfile.is_zipfile(archive)


def test_export_failure_returns_false(store, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")

    assert not export_database(store, blocker, day=DAY)
