"""
events.py
Observer registry used by the managers to tell the screens what changed.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)

CLIENTS_CHANGED = "clients_changed"
LESSON_CREATED = "lesson_created"
SUBSCRIPTION_CREATED = "subscription_created"
SUBSCRIPTION_DELETED = "subscription_deleted"
SUBSCRIPTION_STATUS_CHANGED = "subscription_status_changed"
EXTRA_INCOME_CHANGED = "extra_income_changed"


class EventBus:
    """
    Handlers run synchronously, in the order they subscribed.
    A failing handler is logged and does not stop delivery to the rest.
    """

    def __init__(self):
        self._handlers: dict[str, list[Callable]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event: str, handler: Callable) -> Callable:
        with self._lock:
            self._handlers[event].append(handler)
        return handler

    def unsubscribe(self, event: str, handler: Callable) -> None:
        with self._lock:
            if handler in self._handlers[event]:
                self._handlers[event].remove(handler)

    def emit(self, event: str, *args) -> int:
        with self._lock:
            handlers = list(self._handlers[event])
        delivered = 0
        for handler in handlers:
            try:
                handler(*args)
                delivered += 1
            except Exception:
                logger.exception("Handler %r failed for event %s", handler, event)
        return delivered
