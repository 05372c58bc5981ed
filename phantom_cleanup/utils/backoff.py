"""
Bounded polling with exponential backoff.

Used wherever the cleanup subsystem waits for something it cannot block on
directly (the manual drain waiting for the daemon to reach its marker).
Timing is always passed in so callers and tests control it.
"""
import time
from typing import Callable, Optional

from phantom_cleanup.logging.logger import get_logger

logger = get_logger(__name__)


def poll_until(
    predicate: Callable[[], bool],
    max_attempts: int = 40,
    delay: float = 0.001,
    backoff: float = 2.0,
    max_delay: float = 0.25,
    wait: Optional[Callable[[float], object]] = None,
) -> bool:
    """
    Check ``predicate`` until it holds or the attempts run out.

    Args:
        predicate: Condition to wait for
        max_attempts: Maximum number of checks after the first one
        delay: Initial delay between checks in seconds
        backoff: Multiplier for delay after each check
        max_delay: Upper bound for a single delay
        wait: Called with the delay between checks (defaults to time.sleep);
            an Event.wait works too and returns early when set

    Returns:
        bool: True if predicate held, False if the attempts were exhausted

    Example:
        marker = DrainMarker()
        poll_until(marker.is_reached, wait=marker.wait)
    """
    sleep = wait or time.sleep
    current_delay = delay

    if predicate():
        return True
    for _ in range(max_attempts):
        sleep(current_delay)
        if predicate():
            return True
        current_delay = min(current_delay * backoff, max_delay)

    logger.debug("poll_until gave up after %d attempts", max_attempts)
    return False
