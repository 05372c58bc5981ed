"""
Stall detection for cleanup actions.

Cleanup actions run one at a time on the daemon thread, so a slow action
delays every cleanup queued behind it. Reporting is gated behind the
PHANTOM_CLEANUP_PERF_METRICS environment variable.
"""
import threading
import time
from typing import Dict, List, Optional, Tuple

from phantom_cleanup.logging.logger import get_logger, is_perf_metrics_enabled

logger = get_logger(__name__)


class ActionStallDetector:
    """Tracks running cleanup actions and reports those exceeding a threshold.

    Usage:
        detector = ActionStallDetector(stall_threshold_ms=100.0)

        detector.enter_section(handle.handle_id)
        handle.fire()
        detector.exit_section(handle.handle_id)
    """

    def __init__(self, stall_threshold_ms: float = 100.0):
        """Initialize stall detector.

        Args:
            stall_threshold_ms: Threshold in milliseconds for stall detection
        """
        self._threshold_ms = stall_threshold_ms
        self._lock = threading.Lock()
        self._active_sections: Dict[str, Dict[int, float]] = {}
        self._stall_count = 0

    @property
    def stall_count(self) -> int:
        return self._stall_count

    def enter_section(self, section_name: str, thread_id: Optional[int] = None) -> None:
        """Mark the start of a cleanup action."""
        if not is_perf_metrics_enabled():
            return

        if thread_id is None:
            thread_id = threading.get_ident()

        with self._lock:
            self._active_sections.setdefault(section_name, {})[thread_id] = time.monotonic()

    def exit_section(self, section_name: str, thread_id: Optional[int] = None) -> Optional[float]:
        """Mark the end of a cleanup action and report it if it stalled.

        Returns:
            Elapsed milliseconds, or None if the section was not tracked
        """
        if not is_perf_metrics_enabled():
            return None

        if thread_id is None:
            thread_id = threading.get_ident()

        with self._lock:
            threads = self._active_sections.get(section_name)
            if not threads or thread_id not in threads:
                return None
            start_time = threads.pop(thread_id)
            if not threads:
                del self._active_sections[section_name]
            elapsed_ms = (time.monotonic() - start_time) * 1000.0
            if elapsed_ms > self._threshold_ms:
                self._stall_count += 1

        if elapsed_ms > self._threshold_ms:
            logger.warning("[PERF] [CLEANUP STALL] %s ran for %.2fms (thread=%d, threshold=%.2fms)",
                           section_name, elapsed_ms, thread_id, self._threshold_ms)
        return elapsed_ms

    def check_active_sections(self) -> List[Tuple[str, float]]:
        """Report actions still running past the threshold (possible deadlock).

        Returns:
            List of (section_name, elapsed_ms) for stalled sections
        """
        if not is_perf_metrics_enabled():
            return []

        now = time.monotonic()
        stalled: List[Tuple[str, float]] = []
        with self._lock:
            for section_name, threads in self._active_sections.items():
                for thread_id, start_time in threads.items():
                    elapsed_ms = (now - start_time) * 1000.0
                    if elapsed_ms > self._threshold_ms:
                        stalled.append((section_name, elapsed_ms))
                        logger.warning("[PERF] [CLEANUP STALL] %s still running after %.2fms (thread=%d)",
                                       section_name, elapsed_ms, thread_id)
        return stalled
