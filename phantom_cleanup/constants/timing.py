"""Timing constants for the cleanup daemon.

Values are in milliseconds unless the name says otherwise. CleanupConfig
reads its defaults from here so tuning happens in one place.
"""

# =============================================================================
# Manual Drain (run_cleanup_now)
# =============================================================================

DRAIN_INITIAL_DELAY_MS = 1
"""First wait between checks while run_cleanup_now() polls the drain marker."""

DRAIN_MAX_DELAY_MS = 250
"""Upper bound for a single backoff step."""

DRAIN_BACKOFF_FACTOR = 2.0
"""Multiplier applied to the delay after every unsuccessful check."""

DRAIN_MAX_ATTEMPTS = 40
"""Checks before run_cleanup_now() gives up (roughly 9 seconds in total)."""

# =============================================================================
# Exit Drain (set_run_on_exit)
# =============================================================================

EXIT_ROUNDS = 5
"""Collect/wait/drain rounds performed by the exit hook before giving up."""

EXIT_WAIT_MS = 50
"""Pause after each forced collection so weakref callbacks can land."""

# =============================================================================
# Daemon
# =============================================================================

DAEMON_JOIN_TIMEOUT_MS = 2000
"""How long shutdown() waits for the daemon thread to exit."""

STALL_THRESHOLD_MS = 100
"""A cleanup action running longer than this is reported as stalled."""
