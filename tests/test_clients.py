from __future__ import annotations

import threading
from dataclasses import replace

import events
from clients import ClientRegistry
from models import Client


def test_full_name():
    assert Client(id=1, first_name="Anna").full_name == "Anna"
    assert Client(id=1, first_name="Anna", last_name="Petrova").full_name == "Anna Petrova"


def test_create_assigns_id_and_timestamps(registry, emitted):
    created = registry.create_client(
        Client(id=None, first_name="  Anna ", last_name="", phone=" +7900 ", email="   ")
    ).value

    assert created.id is not None
    assert created.first_name == "Anna"
    assert created.last_name is None
    assert created.phone == "+7900"
    assert created.email is None
    assert created.created_at == created.updated_at
    assert (events.CLIENTS_CHANGED,) in emitted

    stored = registry.get_client(created.id).value
    assert stored == created


def test_update_persists_fields(registry, client):
    result = registry.update_client(replace(client, phone="123", telegram="@anna"))

    assert result.ok
    stored = registry.get_client(client.id).value
    assert (stored.phone, stored.telegram) == ("123", "@anna")
    assert stored.updated_at >= client.updated_at


def test_update_of_missing_client_is_not_an_error(registry):
    assert registry.update_client(Client(id=4040, first_name="Ghost")).ok
    assert registry.delete_client(4040).ok


def test_list_clients_sorted_by_name(registry):
    for name in ["Zoe", "Adam", "Mila"]:
        registry.create_client(Client(id=None, first_name=name))

    assert [c.first_name for c in registry.list_clients().value] == ["Adam", "Mila", "Zoe"]


def test_delete_cascades_to_subscriptions_and_lessons(registry, subscriptions, lessons, store, client, other_client):
    subscriptions.create_subscription(client.id, 3, 3000.0)
    lessons.create_standalone_lesson(client.id, 500.0)
    lessons.create_standalone_lesson(other_client.id, 500.0)

    assert registry.delete_client(client.id).ok

    assert registry.get_client(client.id).value is None
    assert store.scalar("SELECT COUNT(*) FROM subscriptions WHERE client_id = ?", (client.id,)) == 0
    assert store.scalar("SELECT COUNT(*) FROM lessons WHERE client_id = ?", (client.id,)) == 0
    assert store.scalar("SELECT COUNT(*) FROM lessons WHERE client_id = ?", (other_client.id,)) == 1


def test_background_fetch_delivers_result(registry, client):
    received = []

    future = registry.fetch_clients(on_done=received.append)
    result = future.result(timeout=5)

    assert result.ok
    assert [c.id for c in result.value] == [client.id]
    assert received == [result]
    assert registry.clients == result.value
    assert not registry.is_loading


def test_changes_trigger_background_refresh(registry):
    registry.refresh_on_changes()

    created = registry.create_client(Client(id=None, first_name="Anna")).value
    assert registry.current_fetch is not None
    registry.current_fetch.result(timeout=5)
    assert [c.id for c in registry.clients] == [created.id]

    registry.delete_client(created.id)
    registry.current_fetch.result(timeout=5)
    assert registry.clients == []


def test_fetch_is_skipped_while_loading(registry):
    registry.is_loading = True

    assert registry.fetch_clients() is None


def wait_until(predicate, attempts=100, step=0.02):
    pause = threading.Event()
    for _ in range(attempts):
        if predicate():
            return True
        pause.wait(step)
    return predicate()


def test_loading_flag_is_cleared_by_timeout(store, bus):
    release = threading.Event()
    registry = ClientRegistry(store, bus, fetch_timeout=0.05)
    original = registry.list_clients

    def slow_list():
        release.wait(5)
        return original()

    registry.list_clients = slow_list
    future = registry.fetch_clients()
    try:
        assert wait_until(lambda: not registry.is_loading)
        assert not future.done()
    finally:
        release.set()
        assert future.result(timeout=5).ok
        registry.shutdown()


def test_timed_out_fetch_leaves_newer_loading_flag_alone(store, bus):
    gates = [threading.Event(), threading.Event()]
    pending = iter(gates)
    registry = ClientRegistry(store, bus, fetch_timeout=0.05)
    original = registry.list_clients

    def slow_list():
        next(pending).wait(5)
        return original()

    registry.list_clients = slow_list
    first = registry.fetch_clients()
    second = None
    try:
        assert wait_until(lambda: not registry.is_loading)
        registry.fetch_timeout = 5
        second = registry.fetch_clients()
        assert second is not None
        assert registry.current_fetch is second

        gates[0].set()
        assert first.result(timeout=5).ok
        assert not second.done()
        assert registry.is_loading

        gates[1].set()
        assert second.result(timeout=5).ok
        assert not registry.is_loading
    finally:
        for gate in gates:
            gate.set()
        registry.shutdown()


def test_unavailable_store_yields_empty_list(tmp_path, bus):
    from db import Store

    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    registry = ClientRegistry(Store(blocker / "db.sqlite"), bus)

    result = registry.fetch_clients().result(timeout=5)

    assert not result.ok
    assert result.value == []
    registry.shutdown()
