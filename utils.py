"""
utils.py
Dates, input validation, CSV exports, sample data.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pandas as pd

# Date bounds accepted by the input forms
MAX_FUTURE_MONTHS = 1
MAX_PAST_YEARS = 2


def now() -> datetime:
    return datetime.now().replace(microsecond=0)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat(timespec="seconds")


def now_iso() -> str:
    return to_iso(now())


def parse_dt(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def as_datetime(value: date | datetime) -> datetime:
    """Widen a date picked in a form to midnight of that day."""
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def add_days(start: datetime, days: int) -> datetime:
    return start + timedelta(days=days)


def add_months(start: datetime, months: int) -> datetime:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return start.replace(year=y, month=m, day=day)


def same_month(value: datetime | None, ref: datetime) -> bool:
    return value is not None and value.year == ref.year and value.month == ref.month


def clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ---------- validation (done by the forms before calling the core) ----------

def _validate_date_bounds(value: datetime, label: str, ref: datetime) -> list[str]:
    errors: list[str] = []
    if value > add_months(ref, MAX_FUTURE_MONTHS):
        errors.append(f"{label} cannot be more than a month in the future.")
    if value < add_months(ref, -12 * MAX_PAST_YEARS):
        errors.append(f"{label} cannot be more than 2 years in the past.")
    return errors


def validate_client_inputs(first_name: str) -> list[str]:
    errors: list[str] = []
    if not (first_name or "").strip():
        errors.append("First name is required.")
    return errors


def validate_subscription_inputs(client_id, lesson_count, total_price, start_date: datetime) -> list[str]:
    errors: list[str] = []
    if client_id is None:
        errors.append("Select a client.")
    try:
        if int(lesson_count) <= 0:
            errors.append("Lesson count must be greater than zero.")
    except (TypeError, ValueError):
        errors.append("Lesson count must be a whole number.")
    try:
        if float(total_price) <= 0:
            errors.append("Total price must be greater than zero.")
    except (TypeError, ValueError):
        errors.append("Total price must be numeric.")
    errors.extend(_validate_date_bounds(as_datetime(start_date), "Start date", now()))
    return errors


def validate_lesson_inputs(client_id, price, lesson_date: datetime | None) -> list[str]:
    errors: list[str] = []
    if client_id is None:
        errors.append("Select a client.")
    try:
        if float(price) <= 0:
            errors.append("Price must be greater than zero.")
    except (TypeError, ValueError):
        errors.append("Price must be numeric.")
    if lesson_date is not None:
        errors.extend(_validate_date_bounds(as_datetime(lesson_date), "Lesson date", now()))
    return errors


def validate_income_inputs(category_id, amount) -> list[str]:
    errors: list[str] = []
    if category_id is None:
        errors.append("Select a category.")
    try:
        if float(amount) <= 0:
            errors.append("Amount must be greater than zero.")
    except (TypeError, ValueError):
        errors.append("Amount must be numeric.")
    return errors


# ---------- exports ----------

def records_to_frame(records, columns: list[str]) -> pd.DataFrame:
    df = pd.DataFrame([vars(r) for r in records])
    if df.empty:
        return pd.DataFrame(columns=columns)
    return df[columns]


def clients_to_csv_bytes(clients) -> bytes:
    df = records_to_frame(
        clients,
        ["id", "first_name", "last_name", "phone", "telegram", "email", "additional_info", "created_at", "updated_at"],
    )
    return df.to_csv(index=False).encode("utf-8")


def lessons_to_csv_bytes(lessons) -> bytes:
    df = records_to_frame(
        lessons,
        ["id", "client_id", "subscription_id", "number", "price", "created_at", "conducted_at", "is_completed"],
    )
    return df.to_csv(index=False).encode("utf-8")


def insert_sample_data(registry, subscriptions, lessons) -> None:
    """
    Insert 2 clients, one subscription and a couple of single lessons
    (safe to run multiple times: adds new rows each time).
    """
    from models import Client

    today = now()

    anna = registry.create_client(Client(id=None, first_name="Anna", last_name="Petrova", phone="+79000000001")).value
    ivan = registry.create_client(Client(id=None, first_name="Ivan", telegram="@ivan")).value
    if anna is None or ivan is None:
        return

    created = subscriptions.create_subscription(anna.id, 4, 4000.0, start_date=today - timedelta(days=7))
    if created.ok:
        first = subscriptions.lessons_for(created.value.id).value[0]
        lessons.complete_lesson(first)

    lessons.create_standalone_lesson(ivan.id, 1500.0, conducted_at=today - timedelta(days=2))
    lessons.create_standalone_lesson(ivan.id, 1500.0)
