from __future__ import annotations

import random
from datetime import datetime, timedelta

import pytest

import events

START = datetime(2026, 10, 1, 9, 0)


def test_standalone_numbering_per_client(lessons, client, other_client):
    numbers = [lessons.create_standalone_lesson(client.id, 1000.0).value.number for _ in range(3)]
    other = lessons.create_standalone_lesson(other_client.id, 1000.0).value

    assert numbers == [1, 2, 3]
    assert other.number == 1


def test_subscription_lessons_do_not_shift_standalone_numbering(lessons, subscriptions, client):
    subscriptions.create_subscription(client.id, 5, 5000.0)

    assert lessons.create_standalone_lesson(client.id, 800.0).value.number == 1


def test_numbering_continues_after_gap(lessons, client):
    first = lessons.create_standalone_lesson(client.id, 500.0).value
    lessons.create_standalone_lesson(client.id, 500.0)
    lessons.delete_lesson(first.id)

    assert lessons.create_standalone_lesson(client.id, 500.0).value.number == 3


def test_lesson_with_date_is_created_completed(lessons, store, client, emitted):
    conducted = datetime(2026, 9, 20, 17, 30)

    lesson = lessons.create_standalone_lesson(client.id, 1500.0, conducted_at=conducted).value

    assert lesson.is_completed
    assert lesson.conducted_at == conducted
    assert lesson.created_at == conducted
    row = store.fetch_one("SELECT * FROM lessons WHERE id = ?", (lesson.id,))
    assert row["is_completed"] == 1
    assert row["created_at"] == conducted.isoformat()
    assert row["subscription_id"] is None
    assert (events.LESSON_CREATED,) in emitted


def test_lesson_without_date_is_pending(lessons, client):
    lesson = lessons.create_standalone_lesson(client.id, 1500.0).value

    assert not lesson.is_completed
    assert lesson.conducted_at is None
    assert lesson.created_at is not None


def test_lesson_with_non_positive_price_is_refused(lessons, store, client):
    assert not lessons.create_standalone_lesson(client.id, 0.0).ok
    assert store.scalar("SELECT COUNT(*) FROM lessons") == 0


def test_complete_and_uncomplete_standalone(lessons, client):
    lesson = lessons.create_standalone_lesson(client.id, 1000.0).value

    completed = lessons.complete_lesson(lesson).value
    assert completed.is_completed
    assert lessons.get_lesson(lesson.id).value.conducted_at is not None

    lessons.uncomplete_lesson(completed)
    reloaded = lessons.get_lesson(lesson.id).value
    assert not reloaded.is_completed
    assert reloaded.conducted_at is None


def test_completing_every_lesson_finishes_subscription(lessons, subscriptions, client, emitted):
    sub = subscriptions.create_subscription(client.id, 3, 3000.0).value
    items = subscriptions.lessons_for(sub.id).value

    for lesson in items[:-1]:
        lessons.complete_lesson(lesson)
        assert subscriptions.get_subscription(sub.id).value.is_active

    lessons.complete_lesson(items[-1])

    finished = subscriptions.get_subscription(sub.id).value
    assert not finished.is_active
    assert finished.completed_at is not None
    assert finished.closed_at == sub.closed_at
    assert (events.SUBSCRIPTION_STATUS_CHANGED, sub.id) in emitted


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_finish_is_independent_of_completion_order(lessons, subscriptions, client, seed):
    sub = subscriptions.create_subscription(client.id, 6, 6000.0).value
    items = subscriptions.lessons_for(sub.id).value
    random.Random(seed).shuffle(items)

    for lesson in items:
        lessons.complete_lesson(lesson)
    assert not subscriptions.get_subscription(sub.id).value.is_active

    lessons.uncomplete_lesson(random.Random(seed).choice(items))
    reopened = subscriptions.get_subscription(sub.id).value
    assert reopened.is_active
    assert reopened.completed_at is None


def test_completing_twice_is_harmless(lessons, subscriptions, client):
    sub = subscriptions.create_subscription(client.id, 2, 2000.0).value
    first, second = subscriptions.lessons_for(sub.id).value

    lessons.complete_lesson(first)
    lessons.complete_lesson(first)
    assert subscriptions.get_subscription(sub.id).value.is_active

    lessons.complete_lesson(second)
    lessons.complete_lesson(second)
    assert not subscriptions.get_subscription(sub.id).value.is_active


def test_uncomplete_on_unfinished_subscription_keeps_it_active(lessons, subscriptions, client):
    sub = subscriptions.create_subscription(client.id, 3, 3000.0).value
    first = subscriptions.lessons_for(sub.id).value[0]

    lessons.complete_lesson(first)
    lessons.uncomplete_lesson(first)

    assert subscriptions.get_subscription(sub.id).value.is_active


def test_update_conducted_at_keeps_state(lessons, subscriptions, client):
    sub = subscriptions.create_subscription(client.id, 1, 1000.0).value
    lesson = subscriptions.lessons_for(sub.id).value[0]
    lessons.complete_lesson(lesson)
    corrected = datetime(2026, 8, 3, 12, 0)

    assert lessons.update_conducted_at(lesson.id, corrected).ok

    reloaded = lessons.get_lesson(lesson.id).value
    assert reloaded.conducted_at == corrected
    assert reloaded.is_completed
    assert not subscriptions.get_subscription(sub.id).value.is_active


def test_fetch_splits_completed_and_pending(lessons, client):
    lessons.create_standalone_lesson(client.id, 100.0, conducted_at=START)
    lessons.create_standalone_lesson(client.id, 200.0)

    assert [l.price for l in lessons.completed_lessons().value] == [100.0]
    assert [l.price for l in lessons.pending_lessons().value] == [200.0]
    assert len(lessons.lessons_for_client(client.id).value) == 2


def test_end_to_end_subscription_scenario(registry, subscriptions, lessons, store):
    from models import Client

    client = registry.create_client(Client(id=None, first_name="Maria")).value
    sub = subscriptions.create_subscription(client.id, 4, 4000.0, start_date=START).value

    items = subscriptions.lessons_for(sub.id).value
    assert [l.number for l in items] == [1, 2, 3, 4]
    assert [l.price for l in items] == [1000.0] * 4
    assert sub.is_active
    assert sub.closed_at == START + timedelta(days=30)

    for lesson in items:
        lessons.complete_lesson(lesson)
    assert not subscriptions.get_subscription(sub.id).value.is_active

    lessons.uncomplete_lesson(items[1])
    assert subscriptions.get_subscription(sub.id).value.is_active
