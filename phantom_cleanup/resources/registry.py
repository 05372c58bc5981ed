"""
Registry of pending cleanup handles.

The registry is the only thing keeping each PhantomHandle alive between
registration and firing. A handle is removed exactly once; whichever
consumer wins the removal is the only one allowed to run it.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

from .types import NO_PAYLOAD, HandleInfo, PhantomHandle
from phantom_cleanup.logging.logger import get_logger, is_verbose_logging

logger = get_logger(__name__)


class HandleRegistry:
    """Identity-keyed map of pending handles guarded by a single lock."""

    def __init__(self):
        self._handles: Dict[PhantomHandle, HandleInfo] = {}
        self._lock = threading.Lock()

    def add(self, handle: PhantomHandle, info: HandleInfo) -> None:
        with self._lock:
            self._handles[handle] = info
        if is_verbose_logging():
            logger.debug("Registered %s (payload=%s)", handle.handle_id, info.payload_type)

    def remove(self, handle: PhantomHandle) -> bool:
        """
        Take a handle out of the registry.

        Returns:
            bool: True for the single caller that actually removed it
        """
        with self._lock:
            removed = self._handles.pop(handle, None) is not None
        if not removed:
            logger.debug("Handle %s was already removed", handle.handle_id)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._handles

    def snapshot(self) -> List[HandleInfo]:
        """Get information about all pending handles."""
        with self._lock:
            return list(self._handles.values())


class PayloadLocks:
    """
    Mutual exclusion keyed by payload identity.

    Cleanups sharing one payload object never run concurrently, whichever
    thread fires them. Locks exist only while some firing holds or waits for
    them. The firing handle keeps the payload alive, so its id() is stable
    for the duration.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, List[Any]] = {}  # id(payload) -> [lock, users]

    @contextmanager
    def hold(self, payload: Any) -> Iterator[None]:
        if payload is NO_PAYLOAD or payload is None:
            yield
            return

        key = id(payload)
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)
