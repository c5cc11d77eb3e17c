"""
lessons.py
Lesson completion: numbering of single lessons, complete/uncomplete and the
subscription status changes they drive.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime

import events
from db import Store
from models import Lesson
from result import Result
from utils import as_datetime, now, to_iso

logger = logging.getLogger(__name__)


class LessonEngine:
    def __init__(self, store: Store, bus: events.EventBus):
        self.store = store
        self.bus = bus
        self.lessons: list[Lesson] = []

    # ---------- reads ----------

    def _load_lessons(self, where: str = "", params: tuple = ()) -> list[Lesson]:
        rows = self.store.fetch_all(f"SELECT * FROM lessons {where} ORDER BY created_at DESC, id DESC", params)
        return [Lesson.from_row(r) for r in rows]

    def fetch_lessons(self) -> Result:
        try:
            self.lessons = self.store.run_with_migration(self._load_lessons)
        except sqlite3.Error as exc:
            logger.error("Error fetching lessons: %s", exc)
            return Result.fail(exc, [])
        logger.debug("Fetched %d lessons", len(self.lessons))
        return Result.success(self.lessons)

    def completed_lessons(self) -> Result:
        fetched = self.fetch_lessons()
        return replace(fetched, value=[l for l in fetched.value if l.is_completed])

    def pending_lessons(self) -> Result:
        fetched = self.fetch_lessons()
        return replace(fetched, value=[l for l in fetched.value if not l.is_completed])

    def lessons_for_client(self, client_id: int) -> Result:
        try:
            lessons = self.store.run_with_migration(self._load_lessons, "WHERE client_id = ?", (client_id,))
        except sqlite3.Error as exc:
            logger.error("Error fetching lessons for client %s: %s", client_id, exc)
            return Result.fail(exc, [])
        return Result.success(lessons)

    def get_lesson(self, lesson_id: int) -> Result:
        try:
            row = self.store.fetch_one("SELECT * FROM lessons WHERE id = ?", (lesson_id,))
        except sqlite3.Error as exc:
            logger.error("Error fetching lesson %s: %s", lesson_id, exc)
            return Result.fail(exc)
        return Result.success(Lesson.from_row(row) if row else None)

    def next_lesson_number(self, client_id: int) -> int:
        """Single lessons are numbered per client, independent of subscriptions."""
        current = self.store.scalar(
            "SELECT MAX(number) FROM lessons WHERE client_id = ? AND subscription_id IS NULL", (client_id,)
        )
        return (current or 0) + 1

    # ---------- create / delete ----------

    def create_standalone_lesson(self, client_id: int, price: float, conducted_at: datetime | None = None) -> Result:
        """
        A lesson given with a date is recorded as already conducted on that
        date; without one it is created pending as of now.
        """
        if price <= 0:
            logger.error("Refusing lesson with price=%s for client %s", price, client_id)
            return Result.fail("lesson price must be positive")

        conducted = as_datetime(conducted_at) if conducted_at is not None else None
        created = conducted or now()
        try:
            number = self.store.run_with_migration(self.next_lesson_number, client_id)
            lesson_id = self.store.execute(
                """
                INSERT INTO lessons(client_id, subscription_id, number, price, created_at, conducted_at, is_completed)
                VALUES(?,NULL,?,?,?,?,?)
                """,
                (client_id, number, price, to_iso(created), to_iso(conducted), int(conducted is not None)),
            )
        except sqlite3.Error as exc:
            logger.error("Error creating lesson for client %s: %s", client_id, exc)
            return Result.fail(exc)

        logger.info("Lesson %s created for client %s with number %d", lesson_id, client_id, number)
        lesson = Lesson(
            id=lesson_id,
            client_id=client_id,
            subscription_id=None,
            number=number,
            price=price,
            created_at=created,
            conducted_at=conducted,
            is_completed=conducted is not None,
        )
        self.bus.emit(events.LESSON_CREATED)
        return Result.success(lesson)

    def delete_lesson(self, lesson_id: int) -> Result:
        try:
            self.store.execute("DELETE FROM lessons WHERE id = ?", (lesson_id,))
        except sqlite3.Error as exc:
            logger.error("Error deleting lesson %s: %s", lesson_id, exc)
            return Result.fail(exc)
        self.lessons = [l for l in self.lessons if l.id != lesson_id]
        return Result.success(lesson_id)

    # ---------- completion ----------

    def _all_completed(self, subscription_id: int) -> bool:
        pending = self.store.scalar(
            "SELECT COUNT(*) FROM lessons WHERE subscription_id = ? AND is_completed = 0", (subscription_id,)
        )
        return pending == 0

    def complete_lesson(self, lesson: Lesson) -> Result:
        """Mark a lesson conducted now; finish its subscription when nothing is left."""
        stamp = now()
        try:
            self.store.execute(
                "UPDATE lessons SET conducted_at = ?, is_completed = 1 WHERE id = ?", (to_iso(stamp), lesson.id)
            )
            logger.info("Lesson %s marked as completed", lesson.id)

            if lesson.subscription_id is not None and self._all_completed(lesson.subscription_id):
                logger.info("All lessons completed for subscription %s, finishing it", lesson.subscription_id)
                self.store.run_with_migration(
                    self.store.execute,
                    "UPDATE subscriptions SET is_active = 0, completed_at = ? WHERE id = ?",
                    (to_iso(stamp), lesson.subscription_id),
                )
                self.bus.emit(events.SUBSCRIPTION_STATUS_CHANGED, lesson.subscription_id)
        except sqlite3.Error as exc:
            logger.error("Error completing lesson %s: %s", lesson.id, exc)
            return Result.fail(exc)
        return Result.success(replace(lesson, is_completed=True, conducted_at=stamp))

    def uncomplete_lesson(self, lesson: Lesson) -> Result:
        """Mark a lesson pending again; reopen its subscription if it was finished."""
        try:
            self.store.execute(
                "UPDATE lessons SET conducted_at = NULL, is_completed = 0 WHERE id = ?", (lesson.id,)
            )
            logger.info("Lesson %s marked as pending", lesson.id)

            if lesson.subscription_id is not None and not self._all_completed(lesson.subscription_id):
                self.store.run_with_migration(
                    self.store.execute,
                    "UPDATE subscriptions SET is_active = 1, completed_at = NULL WHERE id = ?",
                    (lesson.subscription_id,),
                )
                self.bus.emit(events.SUBSCRIPTION_STATUS_CHANGED, lesson.subscription_id)
        except sqlite3.Error as exc:
            logger.error("Error uncompleting lesson %s: %s", lesson.id, exc)
            return Result.fail(exc)
        return Result.success(replace(lesson, is_completed=False, conducted_at=None))

    def update_conducted_at(self, lesson_id: int, conducted_at: datetime) -> Result:
        """Correct when a lesson took place. Completion state is left alone."""
        stamp = as_datetime(conducted_at)
        try:
            self.store.execute("UPDATE lessons SET conducted_at = ? WHERE id = ?", (to_iso(stamp), lesson_id))
        except sqlite3.Error as exc:
            logger.error("Error updating conducted date of lesson %s: %s", lesson_id, exc)
            return Result.fail(exc)
        logger.info("Lesson %s conducted date set to %s", lesson_id, stamp)
        return Result.success(stamp)
