"""
Exit-time drain for the cleanup subsystem.

Off by default. When enabled, an atexit hook gives pending cleanups a last
chance to run: it forces a collection, waits briefly for the weakref
callbacks to queue their handles, then fires whatever is ready on the
exiting thread. Best-effort only; owners still reachable at exit (module
globals, reference cycles the collector cannot break) are not cleaned up.
"""
from __future__ import annotations

import atexit
import gc
import threading
import time
from typing import TYPE_CHECKING, Callable

from phantom_cleanup.logging.logger import get_logger

if TYPE_CHECKING:
    from phantom_cleanup.resources.manager import CleanupManager

logger = get_logger(__name__)


class ShutdownCoordinator:
    """Installs, removes and runs the one-shot exit hook for a manager."""

    def __init__(
        self,
        manager: "CleanupManager",
        rounds: int = 5,
        wait_s: float = 0.05,
        collect: Callable[[], object] = gc.collect,
        sleep: Callable[[float], object] = time.sleep,
    ):
        self._manager = manager
        self._rounds = max(1, int(rounds))
        self._wait_s = max(0.0, float(wait_s))
        self._collect = collect
        self._sleep = sleep
        self._lock = threading.Lock()
        self._enabled = False
        self._installed = False
        self._ran = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def has_run(self) -> bool:
        return self._ran

    def set_enabled(self, enabled: bool) -> None:
        """Install or remove the exit hook. Repeated calls are harmless."""
        enabled = bool(enabled)
        with self._lock:
            if enabled and not self._installed:
                atexit.register(self.run_at_exit)
                self._installed = True
                logger.debug("Exit drain installed")
            elif not enabled and self._installed:
                atexit.unregister(self.run_at_exit)
                self._installed = False
                logger.debug("Exit drain removed")
            self._enabled = enabled

    def run_at_exit(self) -> int:
        """
        Drain ready cleanups in bounded rounds. Runs at most once.

        Each round collects, waits, then drains. Stops early once nothing is
        pending, or when a round after the first fires nothing.

        Returns:
            int: Number of cleanup actions run
        """
        with self._lock:
            if self._ran:
                return 0
            self._ran = True

        total = 0
        rounds_run = 0
        for round_no in range(1, self._rounds + 1):
            rounds_run = round_no
            self._collect()
            if self._wait_s:
                self._sleep(self._wait_s)
            fired = self._manager.drain_ready()
            total += fired
            if self._manager.pending_count() == 0:
                break
            if fired == 0 and round_no > 1:
                break

        remaining = self._manager.pending_count()
        if remaining:
            logger.info("Exit drain ran %d cleanups in %d rounds, %d left pending",
                        total, rounds_run, remaining)
        else:
            logger.debug("Exit drain ran %d cleanups in %d rounds", total, rounds_run)
        return total
