"""
Exception handler chain for failures surfaced by the cleanup daemon.

Every exception raised by a cleanup action, by an auto-close resource or by
the daemon loop itself is dispatched here. Handlers run in the order they
were added. A handler that raises ends the dispatch of that one event:
the handlers after it never see it, even when it raised SystemExit or
KeyboardInterrupt.
"""
from __future__ import annotations

import threading
from typing import Callable, List

from phantom_cleanup.errors import NullArgumentError
from phantom_cleanup.logging.logger import get_logger

logger = get_logger(__name__)

ExceptionHandler = Callable[[BaseException], None]


class ExceptionChain:
    """
    Ordered, append-only list of exception handlers.

    The empty chain is a no-op apart from a debug log line.
    """

    def __init__(self):
        self._handlers: List[ExceptionHandler] = []
        self._lock = threading.Lock()

    def add_handler(self, handler: ExceptionHandler) -> None:
        """
        Append a handler after all previously added ones.

        Raises:
            NullArgumentError: If handler is None
            TypeError: If handler is not callable
        """
        if handler is None:
            raise NullArgumentError("handler")
        if not callable(handler):
            raise TypeError("handler must be callable")
        with self._lock:
            self._handlers.append(handler)
        logger.debug("Exception handler added: %r (chain length=%d)", handler, len(self._handlers))

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def dispatch(self, exc: BaseException) -> bool:
        """
        Deliver an exception to every handler in order.

        Args:
            exc: The exception, passed to handlers unwrapped

        Returns:
            bool: False if a handler raised and truncated the chain
        """
        with self._lock:
            handlers = list(self._handlers)

        if not handlers:
            logger.debug("Unhandled cleanup failure: %r", exc, exc_info=exc)
            return True

        for index, handler in enumerate(handlers):
            try:
                handler(exc)
            except BaseException as handler_exc:
                logger.error(
                    "Exception handler %d/%d (%r) failed on %r: %s; "
                    "remaining handlers skipped",
                    index + 1, len(handlers), handler, exc, handler_exc,
                    exc_info=True,
                )
                return False
        return True
