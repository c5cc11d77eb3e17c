"""
income.py
Income totals (current month, pending, monthly history) and the ledger of
extra income outside lessons.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd

import events
from db import Store
from models import ExtraIncome, IncomeCategory
from result import Result
from utils import as_datetime, now, now_iso, parse_dt, same_month, to_iso

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = ["year", "month", "lesson_amount", "extra_amount"]


@dataclass(frozen=True)
class MonthIncome:
    year: int
    month: int
    lesson_amount: float
    extra_amount: float

    @property
    def total(self) -> float:
        return self.lesson_amount + self.extra_amount


@dataclass(frozen=True)
class YearIncome:
    year: int
    months: list[MonthIncome] = field(default_factory=list)

    @property
    def lesson_total(self) -> float:
        return sum(m.lesson_amount for m in self.months)

    @property
    def extra_total(self) -> float:
        return sum(m.extra_amount for m in self.months)

    @property
    def total(self) -> float:
        return self.lesson_total + self.extra_total


class IncomeAggregator:
    def __init__(self, store: Store):
        self.store = store

    def completed_amount_for_current_month(self, ref: datetime | None = None) -> Result:
        """Completed lessons conducted this month (created date when never stamped)."""
        ref = ref or now()
        try:
            rows = self.store.fetch_all(
                "SELECT price, created_at, conducted_at FROM lessons WHERE is_completed = 1"
            )
        except sqlite3.Error as exc:
            logger.error("Error computing completed amount: %s", exc)
            return Result.fail(exc, 0.0)
        total = sum(
            r["price"] for r in rows if same_month(parse_dt(r["conducted_at"]) or parse_dt(r["created_at"]), ref)
        )
        logger.debug("Completed amount for %d-%02d: %s", ref.year, ref.month, total)
        return Result.success(float(total))

    def pending_amount(self) -> Result:
        try:
            total = self.store.scalar("SELECT COALESCE(SUM(price), 0) FROM lessons WHERE is_completed = 0")
        except sqlite3.Error as exc:
            logger.error("Error computing pending amount: %s", exc)
            return Result.fail(exc, 0.0)
        return Result.success(float(total))

    def extra_income_for_current_month(self, ref: datetime | None = None) -> Result:
        ref = ref or now()
        try:
            rows = self.store.fetch_all("SELECT amount, received_at FROM extra_incomes")
        except sqlite3.Error as exc:
            logger.error("Error computing extra income: %s", exc)
            return Result.fail(exc, 0.0)
        return Result.success(float(sum(r["amount"] for r in rows if same_month(parse_dt(r["received_at"]), ref))))

    def monthly_history_frame(self) -> pd.DataFrame:
        """
        One row per (year, month) with lesson and extra income, newest first.
        Completed lessons without a conducted date are left out.
        """
        lessons = self.store.fetch_all(
            """
            SELECT conducted_at AS at, price AS amount FROM lessons
            WHERE is_completed = 1 AND conducted_at IS NOT NULL
            """
        )
        extras = self.store.fetch_all("SELECT received_at AS at, amount FROM extra_incomes")

        records = [{"at": r["at"], "kind": "lesson_amount", "amount": r["amount"]} for r in lessons]
        records += [{"at": r["at"], "kind": "extra_amount", "amount": r["amount"]} for r in extras]
        if not records:
            return pd.DataFrame(columns=HISTORY_COLUMNS)

        df = pd.DataFrame(records)
        df["at"] = pd.to_datetime(df["at"], format="ISO8601")
        df["year"] = df["at"].dt.year
        df["month"] = df["at"].dt.month

        history = df.pivot_table(index=["year", "month"], columns="kind", values="amount", aggfunc="sum", fill_value=0.0)
        history = history.reindex(columns=["lesson_amount", "extra_amount"], fill_value=0.0).reset_index()
        history.columns.name = None
        return history.sort_values(["year", "month"], ascending=False, ignore_index=True)[HISTORY_COLUMNS]

    def monthly_history(self) -> Result:
        try:
            df = self.monthly_history_frame()
        except sqlite3.Error as exc:
            logger.error("Error building income history: %s", exc)
            return Result.fail(exc, [])

        years: dict[int, list[MonthIncome]] = {}
        for row in df.itertuples(index=False):
            month = MonthIncome(
                year=int(row.year),
                month=int(row.month),
                lesson_amount=float(row.lesson_amount),
                extra_amount=float(row.extra_amount),
            )
            years.setdefault(month.year, []).append(month)
        # frame is already newest first, so months keep descending order
        return Result.success([YearIncome(year=y, months=m) for y, m in years.items()])


class ExtraIncomeLedger:
    def __init__(self, store: Store, bus: events.EventBus):
        self.store = store
        self.bus = bus

    # ---------- categories ----------

    def list_categories(self) -> Result:
        try:
            rows = self.store.fetch_all("SELECT id, name FROM income_categories ORDER BY name")
        except sqlite3.Error as exc:
            logger.error("Error fetching categories: %s", exc)
            return Result.fail(exc, [])
        return Result.success([IncomeCategory(id=r["id"], name=r["name"]) for r in rows])

    def create_category(self, name: str) -> Result:
        name = (name or "").strip()
        if not name:
            return Result.fail("category name is required")
        try:
            category_id = self.store.execute("INSERT INTO income_categories(name) VALUES(?)", (name,))
        except sqlite3.Error as exc:
            logger.error("Error creating category %r: %s", name, exc)
            return Result.fail(exc)
        self.bus.emit(events.EXTRA_INCOME_CHANGED)
        return Result.success(IncomeCategory(id=category_id, name=name))

    def delete_category(self, category_id: int) -> Result:
        """Delete a category together with its incomes."""
        try:
            self.store.execute("DELETE FROM income_categories WHERE id = ?", (category_id,))
            self.store.execute("DELETE FROM extra_incomes WHERE category_id = ?", (category_id,))
        except sqlite3.Error as exc:
            logger.error("Error deleting category %s: %s", category_id, exc)
            return Result.fail(exc)
        self.bus.emit(events.EXTRA_INCOME_CHANGED)
        return Result.success(category_id)

    # ---------- incomes ----------

    def list_incomes(self) -> Result:
        try:
            rows = self.store.fetch_all("SELECT * FROM extra_incomes ORDER BY received_at DESC, id DESC")
        except sqlite3.Error as exc:
            logger.error("Error fetching extra incomes: %s", exc)
            return Result.fail(exc, [])
        return Result.success([ExtraIncome.from_row(r) for r in rows])

    def create_income(self, category_id: int, amount: float, received_at: datetime) -> Result:
        stamp = now()
        received = as_datetime(received_at)
        try:
            income_id = self.store.execute(
                """
                INSERT INTO extra_incomes(category_id, amount, received_at, created_at, updated_at)
                VALUES(?,?,?,?,?)
                """,
                (category_id, amount, to_iso(received), to_iso(stamp), to_iso(stamp)),
            )
        except sqlite3.Error as exc:
            logger.error("Error creating extra income: %s", exc)
            return Result.fail(exc)
        self.bus.emit(events.EXTRA_INCOME_CHANGED)
        return Result.success(
            ExtraIncome(
                id=income_id,
                category_id=category_id,
                amount=amount,
                received_at=received,
                created_at=stamp,
                updated_at=stamp,
            )
        )

    def update_income(self, income_id: int, category_id: int, amount: float, received_at: datetime) -> Result:
        try:
            self.store.execute(
                "UPDATE extra_incomes SET category_id=?, amount=?, received_at=?, updated_at=? WHERE id=?",
                (category_id, amount, to_iso(as_datetime(received_at)), now_iso(), income_id),
            )
        except sqlite3.Error as exc:
            logger.error("Error updating extra income %s: %s", income_id, exc)
            return Result.fail(exc)
        self.bus.emit(events.EXTRA_INCOME_CHANGED)
        return Result.success(income_id)

    def delete_income(self, income_id: int) -> Result:
        try:
            self.store.execute("DELETE FROM extra_incomes WHERE id = ?", (income_id,))
        except sqlite3.Error as exc:
            logger.error("Error deleting extra income %s: %s", income_id, exc)
            return Result.fail(exc)
        self.bus.emit(events.EXTRA_INCOME_CHANGED)
        return Result.success(income_id)
