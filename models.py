"""
models.py
Lightweight domain records (dataclasses) and subscription status derivation.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime

from utils import parse_dt

STATUS_ACTIVE = "Active"
STATUS_EXPIRED = "Expired"
STATUS_FINISHED = "Finished"


@dataclass(frozen=True)
class Client:
    id: int | None
    first_name: str
    last_name: str | None = None
    phone: str | None = None
    telegram: str | None = None
    email: str | None = None
    additional_info: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        if self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.first_name

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Client":
        return cls(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            phone=row["phone"],
            telegram=row["telegram"],
            email=row["email"],
            additional_info=row["additional_info"],
            created_at=parse_dt(row["created_at"]),
            updated_at=parse_dt(row["updated_at"]),
        )


@dataclass(frozen=True)
class Subscription:
    id: int
    client_id: int
    lesson_count: int
    total_price: float
    created_at: datetime
    closed_at: datetime | None  # planned expiry: start + 30 days
    is_active: bool
    completed_at: datetime | None = None  # set when the last lesson completes
    completed_lessons_count: int = 0

    def is_expired_at(self, now: datetime) -> bool:
        return self.closed_at is not None and self.closed_at < now

    @property
    def is_expired(self) -> bool:
        return self.is_expired_at(datetime.now())

    @property
    def status_tag(self) -> str:
        # Finished wins over Expired: time passing alone never finishes a subscription
        if not self.is_active:
            return STATUS_FINISHED
        if self.is_expired:
            return STATUS_EXPIRED
        return STATUS_ACTIVE

    @property
    def progress_description(self) -> str:
        return f"{self.completed_lessons_count}/{self.lesson_count}"

    @classmethod
    def from_row(cls, row: sqlite3.Row, completed_lessons_count: int = 0) -> "Subscription":
        return cls(
            id=row["id"],
            client_id=row["client_id"],
            lesson_count=row["lesson_count"],
            total_price=row["total_price"],
            created_at=parse_dt(row["created_at"]),
            closed_at=parse_dt(row["closed_at"]),
            is_active=bool(row["is_active"]),
            completed_at=parse_dt(row["completed_at"]) if "completed_at" in row.keys() else None,
            completed_lessons_count=completed_lessons_count,
        )


@dataclass(frozen=True)
class Lesson:
    id: int
    client_id: int
    subscription_id: int | None  # None: standalone lesson
    number: int
    price: float
    created_at: datetime
    conducted_at: datetime | None
    is_completed: bool

    @property
    def is_standalone(self) -> bool:
        return self.subscription_id is None

    @property
    def income_date(self) -> datetime:
        return self.conducted_at or self.created_at

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Lesson":
        return cls(
            id=row["id"],
            client_id=row["client_id"],
            subscription_id=row["subscription_id"],
            number=row["number"] if "number" in row.keys() and row["number"] is not None else 1,
            price=row["price"],
            created_at=parse_dt(row["created_at"]),
            conducted_at=parse_dt(row["conducted_at"]),
            is_completed=bool(row["is_completed"]),
        )


@dataclass(frozen=True)
class IncomeCategory:
    id: int
    name: str


@dataclass(frozen=True)
class ExtraIncome:
    id: int
    category_id: int
    amount: float
    received_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ExtraIncome":
        return cls(
            id=row["id"],
            category_id=row["category_id"],
            amount=row["amount"],
            received_at=parse_dt(row["received_at"]),
            created_at=parse_dt(row["created_at"]),
            updated_at=parse_dt(row["updated_at"]),
        )
