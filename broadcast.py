"""
Publish/subscribe channel for full-state snapshots.

The store publishes a snapshot after every committed mutation of tasks, the completion map or
settings. Subscribers (local file, remote sync, other in-memory views) receive the whole state
and replace theirs; there is no merging and the last write wins.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict[str, Any], Any], None]


class StateBroadcaster:
    """Fan a snapshot out to every subscriber, in subscription order."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback(snapshot, source). Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, snapshot: dict[str, Any], source: Any = None) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot, source)
            except Exception:
                # One failing view must not stop the others from receiving the commit.
                logger.exception("Snapshot subscriber %r failed", callback)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
