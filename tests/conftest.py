from __future__ import annotations

import pytest

import events
from clients import ClientRegistry
from db import open_store
from income import ExtraIncomeLedger, IncomeAggregator
from lessons import LessonEngine
from models import Client
from subscriptions import SubscriptionManager

ALL_EVENTS = [
    events.CLIENTS_CHANGED,
    events.LESSON_CREATED,
    events.SUBSCRIPTION_CREATED,
    events.SUBSCRIPTION_DELETED,
    events.SUBSCRIPTION_STATUS_CHANGED,
    events.EXTRA_INCOME_CHANGED,
]


@pytest.fixture
def store(tmp_path):
    s = open_store(tmp_path / "test.sqlite")
    yield s
    s.close()


@pytest.fixture
def loose_store(tmp_path):
    """A store whose foreign keys are not enforced, so cascades never fire."""
    s = open_store(tmp_path / "loose.sqlite", enforce_foreign_keys=False)
    yield s
    s.close()


@pytest.fixture
def bus():
    return events.EventBus()


@pytest.fixture
def emitted(bus):
    seen: list[tuple] = []
    for name in ALL_EVENTS:
        bus.subscribe(name, lambda *args, _name=name: seen.append((_name, *args)))
    return seen


@pytest.fixture
def registry(store, bus):
    r = ClientRegistry(store, bus, fetch_timeout=5.0)
    yield r
    r.shutdown()


@pytest.fixture
def subscriptions(store, bus):
    return SubscriptionManager(store, bus)


@pytest.fixture
def lessons(store, bus):
    return LessonEngine(store, bus)


@pytest.fixture
def income(store):
    return IncomeAggregator(store)


@pytest.fixture
def ledger(store, bus):
    return ExtraIncomeLedger(store, bus)


@pytest.fixture
def client(registry):
    return registry.create_client(Client(id=None, first_name="Anna", last_name="Petrova")).value


@pytest.fixture
def other_client(registry):
    return registry.create_client(Client(id=None, first_name="Ivan")).value


@pytest.fixture
def add_lesson(store):
    """Insert a lesson row directly, bypassing the engine."""

    def _add(client_id, price, created_at, conducted_at=None, is_completed=False, subscription_id=None, number=1):
        return store.execute(
            """
            INSERT INTO lessons(client_id, subscription_id, number, price, created_at, conducted_at, is_completed)
            VALUES(?,?,?,?,?,?,?)
            """,
            (client_id, subscription_id, number, price, created_at, conducted_at, int(is_completed)),
        )

    return _add
