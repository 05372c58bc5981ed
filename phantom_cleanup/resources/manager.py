"""
Cleanup manager: registration API, firing and drains.

Owners register a cleanup action and a payload. Each registration becomes a
PhantomHandle held by the registry; when the interpreter reclaims the owner
the handle's weakref callback puts it on the notification channel and the
daemon thread runs the action. Failures go to the exception chain.
"""
from __future__ import annotations

import functools
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

import psutil

from .leak_heuristic import LeakHeuristic
from .registry import HandleRegistry, PayloadLocks
from .types import NO_PAYLOAD, HandleInfo, PhantomHandle
from phantom_cleanup.config import CleanupConfig
from phantom_cleanup.errors import (
    LeakSuspectedError,
    NullArgumentError,
    SelfReferenceError,
    UnreferenceableOwnerError,
)
from phantom_cleanup.events.exception_chain import ExceptionChain, ExceptionHandler
from phantom_cleanup.lifecycle import ShutdownCoordinator
from phantom_cleanup.logging.logger import get_logger, is_verbose_logging
from phantom_cleanup.threading.channel import STOP, DrainMarker, NotificationChannel
from phantom_cleanup.threading.daemon import CleanupDaemon
from phantom_cleanup.threading.stall_detector import ActionStallDetector
from phantom_cleanup.utils.backoff import poll_until

logger = get_logger(__name__)


def _close_in_order(resources: Sequence[Any], chain: ExceptionChain) -> None:
    """Close every resource, first to last; failures go to the chain."""
    for resource in resources:
        try:
            resource.close()
        except BaseException as exc:
            chain.dispatch(exc)


class CleanupManager:
    """
    Registry, daemon and exception chain for one process.

    Thread-safe: registration only takes the registry lock briefly and never
    blocks on I/O. Cleanup actions run on the daemon thread, one at a time,
    except during drains, which fire ready handles on the calling thread.
    Cleanups sharing a payload object never run concurrently.
    """

    def __init__(
        self,
        config: Optional[CleanupConfig] = None,
        channel: Optional[NotificationChannel] = None,
        heuristic: Optional[LeakHeuristic] = None,
        chain: Optional[ExceptionChain] = None,
        autostart: bool = True,
    ):
        """
        Initialize the CleanupManager.

        Args:
            config: Tuning values (defaults to CleanupConfig())
            channel: Notification channel to use; tests inject their own
            heuristic: Leak check applied to payloads
            chain: Exception chain shared with other components
            autostart: Start the daemon thread immediately
        """
        self.config = config or CleanupConfig()
        self._channel = channel or NotificationChannel()
        self._heuristic = heuristic or LeakHeuristic()
        self._chain = chain or ExceptionChain()
        self._registry = HandleRegistry()
        self._payload_locks = PayloadLocks()
        self._stall_detector = ActionStallDetector(self.config.stall_threshold_ms)
        self._logger = logger
        self._shutdown = False

        self._stats_lock = threading.Lock()
        self._stats = {"registered": 0, "fired": 0, "failed": 0, "rejected": 0}

        self._daemon = CleanupDaemon(
            self._channel,
            self.process_item,
            self._chain,
            name=self.config.daemon_name,
            priority=self.config.priority,
        )
        self._exit = ShutdownCoordinator(
            self,
            rounds=self.config.exit_rounds,
            wait_s=self.config.exit_wait_s,
        )

        if autostart:
            self._daemon.start()
        if self.config.run_on_exit:
            self._exit.set_enabled(True)

        self._logger.info("CleanupManager initialized (daemon=%s)", self.config.daemon_name)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        owner: Any,
        action: Callable[..., None],
        payload: Any = NO_PAYLOAD,
    ) -> str:
        """
        Run ``action`` once ``owner`` has been reclaimed.

        Call this at the end of the owner's construction. The payload holds
        everything the cleanup needs and must not reference the owner; the
        action must not capture it either (closures are not inspected).
        Each call creates an independent registration.

        Args:
            owner: Object whose reclamation triggers the cleanup
            action: Called as action(payload), or action() without payload
            payload: Data for the cleanup; None is passed through as None

        Returns:
            str: Handle id, for logs and diagnostics

        Raises:
            NullArgumentError: If owner or action is None
            TypeError: If action is not callable
            SelfReferenceError: If payload is the owner
            LeakSuspectedError: If the payload's type implies a reference to the owner
            UnreferenceableOwnerError: If the owner cannot be weak-referenced
            RuntimeError: If the manager is shut down
        """
        if self._shutdown:
            raise RuntimeError("Cannot register cleanups after shutdown")
        if owner is None:
            self._count("rejected")
            raise NullArgumentError("owner")
        if action is None:
            self._count("rejected")
            raise NullArgumentError("action")
        if not callable(action):
            self._count("rejected")
            raise TypeError("action must be callable")

        if payload is owner:
            self._count("rejected")
            self._logger.debug("Rejected payload of %s: payload is the owner", type(owner).__name__)
            raise SelfReferenceError("payload must not be the owner itself")

        if payload is not NO_PAYLOAD and payload is not None:
            reason = self._heuristic.explain(type(owner), type(payload))
            if reason is not None:
                self._count("rejected")
                self._logger.debug("Rejected payload of %s: %s", type(owner).__name__, reason)
                raise LeakSuspectedError(type(owner), type(payload), reason)

        try:
            handle = PhantomHandle(owner, self._on_owner_reclaimed, action=action, payload=payload)
        except TypeError as e:
            self._count("rejected")
            raise UnreferenceableOwnerError(
                f"{type(owner).__name__} objects cannot be weak-referenced"
            ) from e

        self._registry.add(handle, HandleInfo.for_handle(handle, payload))
        self._count("registered")
        return handle.handle_id

    def register_auto_close(self, owner: Any, *resources: Any) -> str:
        """
        Close ``resources`` once ``owner`` has been reclaimed.

        Resources are closed in the order given, so list them in the opposite
        order of their creation. A failing close() is sent to the exception
        chain and the remaining resources are still closed.

        Raises:
            NullArgumentError: If any resource is None
            SelfReferenceError: If any resource is the owner
            TypeError: If a resource has no callable close()
        """
        for resource in resources:
            if resource is None:
                self._count("rejected")
                raise NullArgumentError("resources")
            if resource is owner:
                self._count("rejected")
                raise SelfReferenceError("the owner cannot be one of its own auto-close resources")
            if not callable(getattr(resource, "close", None)):
                self._count("rejected")
                raise TypeError(f"{type(resource).__name__} has no close() method")

        action = functools.partial(_close_in_order, chain=self._chain)
        return self.register(owner, action, tuple(resources))

    def _on_owner_reclaimed(self, handle: PhantomHandle) -> None:
        # Runs inside the interpreter's weakref callback, on whatever thread
        # dropped the owner: no locks, no logging.
        handle.mark_ready()
        self._channel.put(handle)

    # ------------------------------------------------------------------
    # Exception handling
    # ------------------------------------------------------------------

    @property
    def exception_chain(self) -> ExceptionChain:
        return self._chain

    def add_exception_handler(self, handler: ExceptionHandler) -> None:
        """Append a handler for every failure raised during cleanup."""
        self._chain.add_handler(handler)

    def handle_exception(self, exc: BaseException) -> bool:
        """Route an exception through the chain (used by cleanup helpers)."""
        return self._chain.dispatch(exc)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def process_item(self, item: Any) -> bool:
        """
        Consume one item taken off the notification channel.

        Returns:
            bool: True if a cleanup action ran
        """
        if isinstance(item, DrainMarker):
            item.reached()
            return False
        if not isinstance(item, PhantomHandle):
            self._logger.warning("Ignoring unexpected channel item %r", item)
            return False
        if not self._registry.remove(item):
            return False
        self._fire(item)
        return True

    def _fire(self, handle: PhantomHandle) -> None:
        payload = handle.payload
        if is_verbose_logging():
            self._logger.debug("Firing %s", handle.handle_id)

        self._stall_detector.enter_section(handle.handle_id)
        try:
            with self._payload_locks.hold(payload):
                handle.fire()
        except BaseException as exc:
            # SystemExit or KeyboardInterrupt must not abort a drain either
            self._count("failed")
            self._logger.debug("Cleanup %s raised %r", handle.handle_id, exc)
            self._chain.dispatch(exc)
        finally:
            self._stall_detector.exit_section(handle.handle_id)
            self._count("fired")

    def drain_ready(self) -> int:
        """
        Fire every handle already on the channel, on the calling thread.

        Does not force a collection and does not wait.

        Returns:
            int: Number of cleanup actions run
        """
        fired = 0
        while True:
            ok, item = self._channel.try_pop()
            if not ok:
                break
            if item is STOP:
                # belongs to the daemon; hand it back and stop here
                self._channel.put(STOP)
                break
            if self.process_item(item):
                fired += 1
        return fired

    def run_cleanup_now(self) -> bool:
        """
        Wait until every handle that is ready now has fired.

        Handles becoming ready after the call are not waited for, and no
        collection is forced. The wait is bounded by the drain settings in
        the config.

        Returns:
            bool: False if the daemon did not get there in time
        """
        if self._daemon.is_current_thread() or not self._daemon.is_alive():
            self.drain_ready()
            return True

        marker = DrainMarker()
        self._channel.put(marker)
        cfg = self.config
        done = poll_until(
            marker.is_reached,
            max_attempts=cfg.drain_max_attempts,
            delay=cfg.drain_initial_delay_ms / 1000.0,
            backoff=cfg.drain_backoff,
            max_delay=cfg.drain_max_delay_ms / 1000.0,
            wait=marker.wait,
        )
        if not done:
            self._logger.warning(
                "run_cleanup_now() gave up waiting for the daemon (%d items still queued)",
                self._channel.pending(),
            )
            self._stall_detector.check_active_sections()
        return done

    # ------------------------------------------------------------------
    # Daemon / lifecycle
    # ------------------------------------------------------------------

    @property
    def daemon(self) -> CleanupDaemon:
        return self._daemon

    @property
    def exit_coordinator(self) -> ShutdownCoordinator:
        return self._exit

    def set_priority(self, priority: int) -> None:
        """Adjust the daemon's scheduling priority (MIN_PRIORITY..MAX_PRIORITY).

        Raises:
            InvalidPriorityError: If priority is out of range or not an int
        """
        self._daemon.set_priority(priority)
        self.config.priority = priority

    def set_run_on_exit(self, enabled: bool) -> None:
        """Toggle the best-effort drain at interpreter exit."""
        self._exit.set_enabled(enabled)
        self.config.run_on_exit = bool(enabled)

    def is_shutdown(self) -> bool:
        return self._shutdown

    def shutdown(self) -> None:
        """
        Stop the daemon thread.

        Pending registrations stay registered but nothing fires them any more.
        The process-wide manager is never shut down implicitly.
        """
        if self._shutdown:
            return
        self._shutdown = True
        self._exit.set_enabled(False)
        if not self._daemon.stop(timeout=self.config.join_timeout_s):
            self._logger.warning("[DAEMON] %s did not stop within %.1fs",
                                 self._daemon.name, self.config.join_timeout_s)
        self._logger.info("CleanupManager shut down (%d cleanups still pending)",
                          len(self._registry))

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def pending_count(self) -> int:
        """Number of registrations whose cleanup has not fired yet."""
        return len(self._registry)

    def get_pending(self) -> List[HandleInfo]:
        """Get information about all pending registrations."""
        return self._registry.snapshot()

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get cleanup manager statistics."""
        with self._stats_lock:
            stats: Dict[str, Any] = dict(self._stats)

        stats.update({
            'pending': len(self._registry),
            'ready': self._channel.pending(),
            'exception_handlers': self._chain.handler_count,
            'daemon_alive': self._daemon.is_alive(),
            'priority': self._daemon.priority,
            'run_on_exit': self._exit.enabled,
            'stalls': self._stall_detector.stall_count,
        })

        try:
            stats['rss_bytes'] = psutil.Process().memory_info().rss
        except psutil.Error as e:
            self._logger.debug("Could not read process memory: %s", e)
            stats['rss_bytes'] = None
        return stats
