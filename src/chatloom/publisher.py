"""Coalescing broadcast of session snapshots to observers."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class StatePublisher(Generic[T]):
    """Delivers the latest published value to listeners, coalesced.

    ``publish(value, interval)`` records *value* as the latest and makes
    sure a delivery happens at most *interval* seconds later. Values
    published before that delivery fires replace each other; only the
    latest one is delivered. A shorter interval pulls an already
    scheduled delivery forward, never back.

    Without a running event loop, ``publish`` delivers immediately.

    A listener that raises is logged and unsubscribed; other listeners
    and the publisher are unaffected.
    """

    def __init__(self):
        self._listeners: dict[int, Listener] = {}
        self._next_key = 0
        self._latest: T | None = None
        self._pending = False
        self._handle: asyncio.TimerHandle | None = None
        self._deadline: float | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def subscribe(self, listener: Listener, current: T) -> Callable[[], None]:
        """Register *listener* and hand it *current* synchronously."""
        if not callable(listener):
            raise TypeError("Listener must be callable")
        key = self._next_key
        self._next_key += 1
        self._listeners[key] = listener
        self._deliver(key, listener, current)

        def unsubscribe() -> None:
            self._listeners.pop(key, None)

        return unsubscribe

    def publish(self, value: T, interval: float) -> None:
        self._latest = value
        self._pending = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return

        if self._handle is not None and self._loop is not loop:
            # Scheduled on a loop that has since stopped; it will never fire.
            self._handle.cancel()
            self._handle = None
        deadline = loop.time() + interval
        if self._handle is not None and self._deadline <= deadline:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._deadline = deadline
        self._loop = loop
        self._handle = loop.call_later(interval, self.flush)

    def flush(self) -> None:
        """Deliver the pending value now, if there is one."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._deadline = None
        if not self._pending:
            return
        value = self._latest
        self._pending = False
        self._latest = None
        for key, listener in list(self._listeners.items()):
            self._deliver(key, listener, value)

    def close(self) -> None:
        """Drop any scheduled delivery without running it."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._deadline = None
        self._pending = False
        self._latest = None

    def _deliver(self, key: int, listener: Listener, value: T) -> None:
        try:
            listener(value)
        except Exception:
            logger.exception("Error in state listener, removing it")
            self._listeners.pop(key, None)

    def __len__(self) -> int:
        return len(self._listeners)
