"""
db.py
SQLite store: one shared connection, table creation and additive migrations.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class StoreUnavailable(sqlite3.Error):
    """Raised when the database file could not be opened."""


def is_missing_column(exc: Exception) -> bool:
    message = str(exc)
    return isinstance(exc, sqlite3.OperationalError) and (
        "no such column" in message or "has no column named" in message
    )


class Store:
    """
    Wraps a single sqlite3 connection shared by every manager.

    Each statement runs in autocommit mode; nothing spans more than one
    statement, so multi-step operations can leave partial state behind.
    """

    def __init__(self, db_file: Path | str, enforce_foreign_keys: bool = True):
        self.db_file = Path(db_file)
        self.enforce_foreign_keys = enforce_foreign_keys
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._open()

    def _open(self) -> None:
        try:
            self.db_file.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_file, check_same_thread=False, isolation_level=None)
            conn.row_factory = sqlite3.Row
            self.conn = conn
            logger.info("Connected to database at %s", self.db_file)
        except (OSError, sqlite3.Error):
            logger.exception("Failed to connect to database at %s", self.db_file)
            self.conn = None

    @property
    def available(self) -> bool:
        return self.conn is not None

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StoreUnavailable("database connection unavailable")
        return self.conn

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    # ---------- statement helpers ----------

    def execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the last inserted rowid."""
        with self._lock:
            cur = self._connection().execute(sql, params)
            return cur.lastrowid

    def execute_count(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        with self._lock:
            cur = self._connection().execute(sql, params)
            return cur.rowcount

    def executemany(self, sql: str, seq_of_params: list[tuple]) -> None:
        with self._lock:
            self._connection().executemany(sql, seq_of_params)

    def fetch_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            cur = self._connection().execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._connection().execute(sql, params)
            return cur.fetchall()

    def scalar(self, sql: str, params: tuple = ()):
        row = self.fetch_one(sql, params)
        return row[0] if row is not None else None

    def run_with_migration(self, func, *args, **kwargs):
        """
        Call func; if it trips over a column the schema does not have yet,
        migrate once and call it again. A second failure propagates.
        """
        try:
            return func(*args, **kwargs)
        except sqlite3.OperationalError as exc:
            if not is_missing_column(exc):
                raise
            logger.warning("Schema mismatch (%s), running migration and retrying", exc)
            self.migrate()
            return func(*args, **kwargs)

    # ---------- schema ----------

    def table_exists(self, name: str) -> bool:
        row = self.fetch_one("SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (name,))
        return row is not None

    def columns(self, table: str) -> list[str]:
        return [str(r["name"]) for r in self.fetch_all(f"PRAGMA table_info({table})")]

    def verify_foreign_keys(self) -> bool:
        if self.enforce_foreign_keys:
            self.execute("PRAGMA foreign_keys = ON")
        enabled = self.scalar("PRAGMA foreign_keys") == 1
        if enabled:
            logger.info("Foreign key constraints enabled")
        else:
            logger.warning("Foreign key constraints are disabled, cascades fall back to manual cleanup")
        return enabled

    def _create_tables(self) -> None:
        self.execute(
            """
            CREATE TABLE IF NOT EXISTS clients (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                first_name TEXT NOT NULL,
                last_name TEXT,
                phone TEXT,
                telegram TEXT,
                email TEXT,
                additional_info TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        self.execute(
            """
            CREATE TABLE IF NOT EXISTS subscriptions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_id INTEGER NOT NULL,
                lesson_count INTEGER NOT NULL,
                total_price REAL NOT NULL,
                created_at TEXT NOT NULL,
                closed_at TEXT,
                completed_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY(client_id) REFERENCES clients(id) ON DELETE CASCADE
            )
            """
        )

        self.execute(
            """
            CREATE TABLE IF NOT EXISTS lessons (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_id INTEGER NOT NULL,
                subscription_id INTEGER,
                number INTEGER NOT NULL DEFAULT 1,
                price REAL NOT NULL,
                created_at TEXT NOT NULL,
                conducted_at TEXT,
                is_completed INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY(client_id) REFERENCES clients(id) ON DELETE CASCADE,
                FOREIGN KEY(subscription_id) REFERENCES subscriptions(id) ON DELETE CASCADE
            )
            """
        )

        self.execute(
            """
            CREATE TABLE IF NOT EXISTS income_categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE
            )
            """
        )

        self.execute(
            """
            CREATE TABLE IF NOT EXISTS extra_incomes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category_id INTEGER NOT NULL,
                amount REAL NOT NULL,
                received_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(category_id) REFERENCES income_categories(id) ON DELETE CASCADE
            )
            """
        )

    def migrate(self) -> None:
        """
        Additive migrations for databases created by older versions:
        - lessons.number (default 1, backfilled 1..N in insertion order)
        - subscriptions.completed_at
        """
        if not self.table_exists("lessons"):
            logger.info("Lessons table does not exist yet, skipping migration")
            return

        if "number" not in self.columns("lessons"):
            logger.info("Adding number column to lessons table")
            self.execute("ALTER TABLE lessons ADD COLUMN number INTEGER DEFAULT 1")
            # one sequence over the whole table, not per subscription; older
            # databases were numbered this way and their rows keep it
            rows = self.fetch_all("SELECT id FROM lessons ORDER BY id ASC")
            self.executemany(
                "UPDATE lessons SET number = ? WHERE id = ?",
                [(n, r["id"]) for n, r in enumerate(rows, start=1)],
            )
            logger.info("Numbered %d existing lessons", len(rows))

        if self.table_exists("subscriptions") and "completed_at" not in self.columns("subscriptions"):
            logger.info("Adding completed_at column to subscriptions table")
            self.execute("ALTER TABLE subscriptions ADD COLUMN completed_at TEXT")

    def init_schema(self) -> bool:
        """
        Initialize the database.
        - Enable foreign keys
        - Create tables
        - Run migrations for existing databases
        Returns False when the store is unusable.
        """
        if not self.available:
            logger.error("No database connection available for table creation")
            return False
        try:
            self.verify_foreign_keys()
            self._create_tables()
            self.migrate()
        except sqlite3.Error:
            logger.exception("Error creating tables")
            return False
        logger.info("All tables created/verified")
        return True

    def backup_to(self, target: Path | str) -> None:
        """Copy a consistent snapshot of the database into target."""
        dest = sqlite3.connect(target)
        try:
            with self._lock:
                self._connection().backup(dest)
        finally:
            dest.close()


def open_store(db_file: Path | str, enforce_foreign_keys: bool = True) -> Store:
    store = Store(db_file, enforce_foreign_keys=enforce_foreign_keys)
    store.init_schema()
    return store
