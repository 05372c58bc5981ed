"""
Cleanup daemon thread.

A single daemon thread blocks on the notification channel for the lifetime
of the process and hands every item to the manager. It is an infinite
consumer: nothing a cleanup action raises ends the loop, only the STOP item
does.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

from .channel import STOP, NotificationChannel
from phantom_cleanup.config import MAX_PRIORITY, MIN_PRIORITY, NORM_PRIORITY
from phantom_cleanup.errors import InvalidPriorityError
from phantom_cleanup.events.exception_chain import ExceptionChain
from phantom_cleanup.logging.logger import get_logger

logger = get_logger(__name__)


def validate_priority(priority: Any) -> int:
    """Return priority if it is an int in MIN_PRIORITY..MAX_PRIORITY.

    Raises:
        InvalidPriorityError: Otherwise
    """
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidPriorityError(f"priority must be an int, got {type(priority).__name__}")
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise InvalidPriorityError(
            f"priority {priority} outside {MIN_PRIORITY}..{MAX_PRIORITY}"
        )
    return priority


class CleanupDaemon:
    """
    Background consumer of the notification channel.

    Priority has no functional effect: below NORM_PRIORITY the daemon yields
    the GIL after every item so application threads get scheduled first.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        process: Callable[[Any], None],
        chain: ExceptionChain,
        name: str = "phantom_cleanup-daemon",
        priority: int = MIN_PRIORITY,
    ):
        self._channel = channel
        self._process = process
        self._chain = chain
        self._name = name
        self._priority = validate_priority(priority)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._items_processed = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    def set_priority(self, priority: int) -> None:
        self._priority = validate_priority(priority)
        logger.debug("[DAEMON] %s priority set to %d", self._name, self._priority)

    @property
    def items_processed(self) -> int:
        return self._items_processed

    def start(self) -> None:
        """Start the daemon thread (no-op if already running)."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def is_alive(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def is_current_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Ask the loop to exit and wait for it.

        Items queued before the stop request are still processed.

        Returns:
            bool: True if the thread is no longer running
        """
        with self._lock:
            thread = self._thread
        if thread is None or not thread.is_alive():
            return True
        self._channel.put(STOP)
        if thread is not threading.current_thread():
            thread.join(timeout)
        return not thread.is_alive()

    def _run(self) -> None:
        logger.info("[DAEMON] %s started (priority=%d)", self._name, self._priority)
        while True:
            try:
                item = self._channel.get()
                if item is STOP:
                    break
                self._process(item)
                self._items_processed += 1
            except BaseException as exc:
                # SystemExit raised by a cleanup action must not end the daemon
                try:
                    self._chain.dispatch(exc)
                except BaseException:
                    logger.exception("[DAEMON] %s failed to dispatch %r", self._name, exc)

            if self._priority < NORM_PRIORITY:
                time.sleep(0)
        logger.info("[DAEMON] %s stopped after %d items", self._name, self._items_processed)
