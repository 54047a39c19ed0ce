"""
Thread-safe broadcast channels.

Publishers run on watchdog threads, timer threads and the event loop, so each
subscriber gets its own bounded queue.Queue fed with put_nowait. A subscriber
that stops draining fills its queue and is dropped; publishing never blocks.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from typing import Generic, TypeVar

__all__ = ['Broadcaster', 'Subscription']

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_QUEUE_SIZE = 1000


class Subscription(Generic[T]):
    """One subscriber's view of a Broadcaster."""

    def __init__(
        self,
        broadcaster: Broadcaster[T],
        predicate: Callable[[T], bool] | None,
        maxsize: int,
    ) -> None:
        self._broadcaster = broadcaster
        self.predicate = predicate
        self.queue: queue.Queue[T] = queue.Queue(maxsize=maxsize)
        self.closed = False

    def get(self, timeout: float | None = None) -> T:
        """Block until an item arrives. Raises queue.Empty on timeout."""
        return self.queue.get(timeout=timeout)

    def drain(self) -> list[T]:
        """Return every queued item without blocking."""
        items: list[T] = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    def __iter__(self) -> Iterator[T]:
        while not self.closed:
            try:
                yield self.queue.get(timeout=0.25)
            except queue.Empty:
                continue

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Broadcaster(Generic[T]):
    """Fan-out channel with optional current-value replay.

    With replay_current=True a new subscriber immediately receives the most
    recently published item (current-value semantics).
    """

    def __init__(self, name: str, replay_current: bool = False) -> None:
        self.name = name
        self.replay_current = replay_current
        self._lock = threading.Lock()
        self._subscribers: list[Subscription[T]] = []
        self._current: T | None = None
        self._has_current = False

    @property
    def current(self) -> T | None:
        with self._lock:
            return self._current

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        predicate: Callable[[T], bool] | None = None,
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> Subscription[T]:
        """Register a subscriber, optionally filtered by `predicate`."""
        subscription = Subscription(self, predicate, maxsize)
        with self._lock:
            self._subscribers.append(subscription)
            if self.replay_current and self._has_current:
                current = self._current
                if predicate is None or predicate(current):  # type: ignore[arg-type]
                    subscription.queue.put_nowait(current)  # type: ignore[arg-type]
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> None:
        with self._lock:
            subscription.closed = True
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, item: T) -> None:
        """Deliver `item` to every matching subscriber without blocking."""
        with self._lock:
            self._current = item
            self._has_current = True
            dead: list[Subscription[T]] = []
            for subscription in self._subscribers:
                if subscription.predicate is not None and not subscription.predicate(item):
                    continue
                try:
                    subscription.queue.put_nowait(item)
                except queue.Full:
                    dead.append(subscription)
            for subscription in dead:
                subscription.closed = True
                self._subscribers.remove(subscription)
                logger.warning(f'Dropped slow subscriber on {self.name} channel')
