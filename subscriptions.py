"""
subscriptions.py
Subscription lifecycle: creation together with its lessons, deletion with
cascade verification, and the orphaned-lesson sweep run before every fetch.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

import events
from config import SUBSCRIPTION_DAYS
from db import Store, is_missing_column
from models import Lesson, Subscription
from result import Result
from utils import add_days, as_datetime, now, to_iso

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_SQL = """
    SELECT s.*,
        (SELECT COUNT(*) FROM lessons l WHERE l.subscription_id = s.id AND l.is_completed = 1)
            AS completed_lessons_count
    FROM subscriptions s
"""


class SubscriptionManager:
    def __init__(self, store: Store, bus: events.EventBus):
        self.store = store
        self.bus = bus
        self.subscriptions: list[Subscription] = []

    # ---------- reads ----------

    def _load_subscriptions(self) -> list[Subscription]:
        rows = self.store.fetch_all(SUBSCRIPTIONS_SQL + " ORDER BY s.created_at DESC, s.id DESC")
        return [Subscription.from_row(r, r["completed_lessons_count"]) for r in rows]

    def fetch_subscriptions(self) -> Result:
        """Sweep orphaned lessons, then return every subscription with its progress."""
        cleanup = self.cleanup_orphaned_lessons()
        if not cleanup.ok:
            logger.warning("Orphan cleanup failed before fetch: %s", cleanup.error)
        try:
            self.subscriptions = self.store.run_with_migration(self._load_subscriptions)
        except sqlite3.Error as exc:
            logger.error("Error fetching subscriptions: %s", exc)
            return Result.fail(exc, [])
        return Result.success(self.subscriptions)

    def active_subscriptions(self) -> Result:
        fetched = self.fetch_subscriptions()
        if not fetched.ok:
            return fetched
        return Result.success([s for s in fetched.value if s.is_active])

    def subscriptions_for_client(self, client_id: int) -> Result:
        fetched = self.fetch_subscriptions()
        if not fetched.ok:
            return fetched
        return Result.success([s for s in fetched.value if s.client_id == client_id])

    def get_subscription(self, subscription_id: int) -> Result:
        try:
            row = self.store.run_with_migration(
                self.store.fetch_one, SUBSCRIPTIONS_SQL + " WHERE s.id = ?", (subscription_id,)
            )
        except sqlite3.Error as exc:
            logger.error("Error fetching subscription %s: %s", subscription_id, exc)
            return Result.fail(exc)
        if row is None:
            return Result.success(None)
        return Result.success(Subscription.from_row(row, row["completed_lessons_count"]))

    def lessons_for(self, subscription_id: int) -> Result:
        try:
            rows = self.store.run_with_migration(
                self.store.fetch_all,
                "SELECT * FROM lessons WHERE subscription_id = ? ORDER BY number ASC, id ASC",
                (subscription_id,),
            )
        except sqlite3.Error as exc:
            logger.error("Error fetching lessons for subscription %s: %s", subscription_id, exc)
            return Result.fail(exc, [])
        return Result.success([Lesson.from_row(r) for r in rows])

    # ---------- create ----------

    def _insert_with_lessons(self, client_id: int, lesson_count: int, total_price: float, start: datetime) -> int:
        closed_at = add_days(start, SUBSCRIPTION_DAYS)
        subscription_id = self.store.execute(
            """
            INSERT INTO subscriptions(client_id, lesson_count, total_price, created_at, closed_at, is_active)
            VALUES(?,?,?,?,?,1)
            """,
            (client_id, lesson_count, total_price, to_iso(start), to_iso(closed_at)),
        )

        lesson_price = total_price / lesson_count
        logger.info(
            "Creating %d lessons for subscription %s with price %s each", lesson_count, subscription_id, lesson_price
        )
        try:
            self.store.executemany(
                """
                INSERT INTO lessons(client_id, subscription_id, number, price, created_at, conducted_at, is_completed)
                VALUES(?,?,?,?,?,NULL,0)
                """,
                [(client_id, subscription_id, n, lesson_price, to_iso(start)) for n in range(1, lesson_count + 1)],
            )
        except sqlite3.OperationalError as exc:
            if is_missing_column(exc):
                # the retry inserts a fresh subscription; drop this attempt
                self._delete_rows(subscription_id)
            raise
        return subscription_id

    def create_subscription(
        self, client_id: int, lesson_count: int, total_price: float, start_date: datetime | None = None
    ) -> Result:
        """
        Create a subscription and its lesson_count lessons numbered 1..N,
        each priced total_price / lesson_count.
        """
        if lesson_count <= 0 or total_price <= 0:
            logger.error(
                "Refusing subscription with lesson_count=%s total_price=%s for client %s",
                lesson_count,
                total_price,
                client_id,
            )
            return Result.fail("lesson count and total price must be positive")

        start = as_datetime(start_date) if start_date is not None else now()
        try:
            subscription_id = self.store.run_with_migration(
                self._insert_with_lessons, client_id, lesson_count, total_price, start
            )
        except sqlite3.IntegrityError as exc:
            logger.error("Constraint violation creating subscription for client %s: %s", client_id, exc)
            self.store.verify_foreign_keys()
            return Result.fail(exc)
        except sqlite3.Error as exc:
            logger.error("Error creating subscription for client %s: %s", client_id, exc)
            return Result.fail(exc)

        logger.info("Created subscription %s with %d lessons", subscription_id, lesson_count)
        created = self.get_subscription(subscription_id)
        self.bus.emit(events.SUBSCRIPTION_CREATED)
        return created

    # ---------- delete ----------

    def _delete_rows(self, subscription_id: int) -> int:
        self.store.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
        remaining = self.store.scalar("SELECT COUNT(*) FROM lessons WHERE subscription_id = ?", (subscription_id,))
        if remaining:
            logger.warning(
                "%d lessons still exist for deleted subscription %s, cascade did not run; force deleting",
                remaining,
                subscription_id,
            )
            self.store.execute("DELETE FROM lessons WHERE subscription_id = ?", (subscription_id,))
        return remaining

    def delete_subscription(self, subscription_id: int) -> Result:
        """Delete a subscription and make sure none of its lessons survive."""
        try:
            count = self.store.scalar("SELECT COUNT(*) FROM lessons WHERE subscription_id = ?", (subscription_id,))
            logger.info("Deleting subscription %s with %d lessons", subscription_id, count)
            forced = self._delete_rows(subscription_id)
        except sqlite3.IntegrityError as exc:
            logger.error("Constraint violation deleting subscription %s: %s", subscription_id, exc)
            self.store.verify_foreign_keys()
            return Result.fail(exc)
        except sqlite3.Error as exc:
            logger.error("Error deleting subscription %s: %s", subscription_id, exc)
            return Result.fail(exc)

        if not forced:
            logger.info("Cascade removed all lessons of subscription %s", subscription_id)
        self.subscriptions = [s for s in self.subscriptions if s.id != subscription_id]
        self.bus.emit(events.SUBSCRIPTION_DELETED, subscription_id)
        return Result.success(subscription_id)

    # ---------- reconciliation ----------

    def cleanup_orphaned_lessons(self) -> Result:
        """Delete lessons whose subscription no longer exists. Returns how many went."""
        try:
            lessons = self.store.fetch_all(
                "SELECT id, subscription_id FROM lessons WHERE subscription_id IS NOT NULL"
            )
            orphaned = 0
            for lesson in lessons:
                exists = self.store.scalar(
                    "SELECT COUNT(*) FROM subscriptions WHERE id = ?", (lesson["subscription_id"],)
                )
                if not exists:
                    logger.warning(
                        "Lesson %s references missing subscription %s, deleting",
                        lesson["id"],
                        lesson["subscription_id"],
                    )
                    self.store.execute("DELETE FROM lessons WHERE id = ?", (lesson["id"],))
                    orphaned += 1
        except sqlite3.Error as exc:
            logger.error("Error cleaning up orphaned lessons: %s", exc)
            return Result.fail(exc, 0)

        if orphaned:
            logger.info("Cleaned up %d orphaned lessons", orphaned)
        return Result.success(orphaned)
