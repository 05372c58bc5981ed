"""
Notification channel between the collector and the cleanup daemon.

Weakref callbacks put ready handles here. They may run on any thread, in
the middle of any allocation, so the channel is a queue.SimpleQueue: its
put() is reentrant and never takes a lock that the interrupted code might
already hold.

Besides handles the channel carries two control items: DrainMarker, which
tells run_cleanup_now() that everything queued before it has been consumed,
and STOP, which ends the daemon loop.
"""
from __future__ import annotations

import queue
import threading
from typing import Any, Optional, Tuple


class DrainMarker:
    """Placed behind the ready handles; set once a consumer reaches it."""

    __slots__ = ("_event",)

    def __init__(self):
        self._event = threading.Event()

    def reached(self) -> None:
        self._event.set()

    def is_reached(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class _Stop:
    __slots__ = ()

    def __repr__(self) -> str:
        return "STOP"


STOP = _Stop()


class NotificationChannel:
    """Multi-producer queue of ready handles and control items."""

    def __init__(self):
        self._queue: "queue.SimpleQueue[Any]" = queue.SimpleQueue()

    def put(self, item: Any) -> None:
        self._queue.put(item)

    def get(self, timeout: Optional[float] = None) -> Any:
        """Block until an item is available.

        Raises:
            queue.Empty: If timeout expires first
        """
        return self._queue.get(timeout=timeout)

    def try_pop(self) -> Tuple[bool, Any]:
        """Non-blocking get; returns (False, None) when empty."""
        try:
            return True, self._queue.get_nowait()
        except queue.Empty:
            return False, None

    def pending(self) -> int:
        """Approximate number of queued items (readiness signal)."""
        return self._queue.qsize()

    def is_empty(self) -> bool:
        return self._queue.empty()
