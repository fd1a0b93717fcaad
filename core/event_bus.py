"""Lightweight publish/subscribe bus for storage change notifications."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List

from core.events import StorageChange

LOGGER = logging.getLogger(__name__)

Subscriber = Callable[[StorageChange], None]


class EventBus:
    """Fan out storage changes to every registered handler."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> None:
        """Register a handler invoked for every published change."""

        self._subscribers.append(handler)

    def unsubscribe(self, handler: Subscriber) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def publish(self, change: StorageChange) -> None:
        """Deliver ``change`` to the subscribers registered right now."""

        LOGGER.debug("storage change area=%s keys=%s", change.area, sorted(change.changes))
        for handler in list(self._subscribers):
            handler(change)

    def subscribers(self) -> Iterable[Subscriber]:
        """Expose current subscribers for tests and debugging."""

        return tuple(self._subscribers)
