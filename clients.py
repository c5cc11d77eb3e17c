"""
clients.py
Client registry: CRUD over clients plus a background list fetch for the screens.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace

import events
from db import Store
from models import Client
from result import Result
from utils import clean_optional, now, to_iso

logger = logging.getLogger(__name__)


class ClientRegistry:
    def __init__(self, store: Store, bus: events.EventBus, fetch_timeout: float = 10.0):
        self.store = store
        self.bus = bus
        self.fetch_timeout = fetch_timeout
        self.clients: list[Client] = []
        self.is_loading = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="client-fetch")
        self._timer: threading.Timer | None = None
        self._generation = 0
        self.current_fetch: Future | None = None

    def list_clients(self) -> Result:
        try:
            rows = self.store.fetch_all("SELECT * FROM clients ORDER BY first_name, last_name, id")
        except sqlite3.Error as exc:
            logger.error("Error fetching clients: %s", exc)
            return Result.fail(exc, [])
        return Result.success([Client.from_row(r) for r in rows])

    def get_client(self, client_id: int) -> Result:
        try:
            row = self.store.fetch_one("SELECT * FROM clients WHERE id = ?", (client_id,))
        except sqlite3.Error as exc:
            logger.error("Error fetching client %s: %s", client_id, exc)
            return Result.fail(exc)
        return Result.success(Client.from_row(row) if row else None)

    # ---------- background fetch ----------

    def fetch_clients(self, on_done=None) -> Future | None:
        """
        Load the client list on the worker thread. is_loading stays set until
        the query returns or fetch_timeout elapses, whichever comes first;
        the timeout only clears the flag, the query keeps running.
        """
        if self.is_loading:
            logger.info("Client fetch already in progress, skipping")
            return None

        self._generation += 1
        generation = self._generation
        self.is_loading = True
        timer = threading.Timer(self.fetch_timeout, self._loading_timed_out, args=(generation,))
        timer.daemon = True
        timer.start()
        self._timer = timer

        def _load() -> Result:
            result = self.list_clients()
            timer.cancel()
            if result.ok:
                self.clients = result.value
                logger.info("Fetched %d clients", len(self.clients))
            # a newer fetch owns the flag once this one has timed out
            if generation == self._generation:
                self.is_loading = False
            if on_done is not None:
                on_done(result)
            return result

        self.current_fetch = self._executor.submit(_load)
        return self.current_fetch

    def refresh_on_changes(self) -> None:
        """Re-run the background fetch whenever a client is added, edited or removed."""
        self.bus.subscribe(events.CLIENTS_CHANGED, self._refresh)

    def _refresh(self) -> None:
        self.fetch_clients()

    def _loading_timed_out(self, generation: int) -> None:
        if generation == self._generation and self.is_loading:
            logger.warning("Client loading timeout reached, clearing loading flag")
            self.is_loading = False

    def shutdown(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._executor.shutdown(wait=True)

    # ---------- mutations ----------

    def create_client(self, client: Client) -> Result:
        stamp = now()
        created = replace(
            client,
            first_name=client.first_name.strip(),
            last_name=clean_optional(client.last_name),
            phone=clean_optional(client.phone),
            telegram=clean_optional(client.telegram),
            email=clean_optional(client.email),
            additional_info=clean_optional(client.additional_info),
            created_at=stamp,
            updated_at=stamp,
        )
        try:
            new_id = self.store.execute(
                """
                INSERT INTO clients(first_name, last_name, phone, telegram, email, additional_info, created_at, updated_at)
                VALUES(?,?,?,?,?,?,?,?)
                """,
                (
                    created.first_name,
                    created.last_name,
                    created.phone,
                    created.telegram,
                    created.email,
                    created.additional_info,
                    to_iso(stamp),
                    to_iso(stamp),
                ),
            )
        except sqlite3.Error as exc:
            logger.error("Error adding client: %s", exc)
            return Result.fail(exc)

        created = replace(created, id=new_id)
        self.bus.emit(events.CLIENTS_CHANGED)
        return Result.success(created)

    def update_client(self, client: Client) -> Result:
        stamp = now()
        try:
            changed = self.store.execute_count(
                """
                UPDATE clients SET first_name=?, last_name=?, phone=?, telegram=?, email=?,
                    additional_info=?, updated_at=?
                WHERE id=?
                """,
                (
                    client.first_name.strip(),
                    clean_optional(client.last_name),
                    clean_optional(client.phone),
                    clean_optional(client.telegram),
                    clean_optional(client.email),
                    clean_optional(client.additional_info),
                    to_iso(stamp),
                    client.id,
                ),
            )
        except sqlite3.Error as exc:
            logger.error("Error updating client %s: %s", client.id, exc)
            return Result.fail(exc)

        if changed == 0:
            logger.warning("Update of client %s matched no rows", client.id)
        self.bus.emit(events.CLIENTS_CHANGED)
        return Result.success(replace(client, updated_at=stamp))

    def delete_client(self, client_id: int) -> Result:
        """Delete a client; subscriptions and lessons go with it."""
        try:
            changed = self.store.execute_count("DELETE FROM clients WHERE id = ?", (client_id,))
            # cascade fallback for stores without foreign key enforcement
            self.store.execute("DELETE FROM lessons WHERE client_id = ?", (client_id,))
            self.store.execute("DELETE FROM subscriptions WHERE client_id = ?", (client_id,))
        except sqlite3.Error as exc:
            logger.error("Error deleting client %s: %s", client_id, exc)
            return Result.fail(exc)

        if changed == 0:
            logger.warning("Delete of client %s matched no rows", client_id)
        self.clients = [c for c in self.clients if c.id != client_id]
        self.bus.emit(events.CLIENTS_CHANGED)
        return Result.success(client_id)
