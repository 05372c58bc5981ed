"""
Runtime configuration for the cleanup daemon.

Provides one dataclass holding every tunable of the subsystem: daemon
naming and priority, exit-hook rounds, manual-drain backoff bounds and the
slow-action threshold. Defaults come from constants/timing.py and can be
overridden through PHANTOM_CLEANUP_* environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from phantom_cleanup.constants.timing import (
    DAEMON_JOIN_TIMEOUT_MS,
    DRAIN_BACKOFF_FACTOR,
    DRAIN_INITIAL_DELAY_MS,
    DRAIN_MAX_ATTEMPTS,
    DRAIN_MAX_DELAY_MS,
    EXIT_ROUNDS,
    EXIT_WAIT_MS,
    STALL_THRESHOLD_MS,
)
from phantom_cleanup.logging.logger import get_logger

logger = get_logger(__name__)

# Daemon priority scale; only scheduling fairness depends on it.
MIN_PRIORITY = 1
NORM_PRIORITY = 5
MAX_PRIORITY = 10

ENV_PREFIX = "PHANTOM_CLEANUP_"


def to_bool(value: Any, default: bool = False) -> bool:
    """Normalize an environment/config value to bool.

    Accepts common string forms ("true", "1", "yes", "on") as True and
    ("false", "0", "no", "off") as False. Anything else yields the default.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("true", "1", "yes", "on"):
            return True
        if v in ("false", "0", "no", "off"):
            return False
        return default
    if value is None:
        return default
    return bool(value)


@dataclass
class CleanupConfig:
    """Tuning configuration for one CleanupManager."""

    # Daemon
    daemon_name: str = "phantom_cleanup-daemon"
    priority: int = MIN_PRIORITY
    join_timeout_ms: int = DAEMON_JOIN_TIMEOUT_MS

    # Exit drain
    run_on_exit: bool = False
    exit_rounds: int = EXIT_ROUNDS
    exit_wait_ms: int = EXIT_WAIT_MS

    # Manual drain backoff
    drain_initial_delay_ms: float = DRAIN_INITIAL_DELAY_MS
    drain_max_delay_ms: float = DRAIN_MAX_DELAY_MS
    drain_backoff: float = DRAIN_BACKOFF_FACTOR
    drain_max_attempts: int = DRAIN_MAX_ATTEMPTS

    # Telemetry
    stall_threshold_ms: float = STALL_THRESHOLD_MS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CleanupConfig":
        """
        Build a config from PHANTOM_CLEANUP_* environment variables.

        Unparseable values are logged and the default is kept.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            CleanupConfig with overrides applied
        """
        env = os.environ if environ is None else environ
        config = cls()

        raw = env.get(f"{ENV_PREFIX}RUN_ON_EXIT")
        if raw is not None:
            config.run_on_exit = to_bool(raw, config.run_on_exit)

        for key, attr in (
            ("PRIORITY", "priority"),
            ("EXIT_ROUNDS", "exit_rounds"),
            ("EXIT_WAIT_MS", "exit_wait_ms"),
            ("DRAIN_MAX_ATTEMPTS", "drain_max_attempts"),
        ):
            raw = env.get(f"{ENV_PREFIX}{key}")
            if raw is None:
                continue
            try:
                setattr(config, attr, int(raw))
            except ValueError:
                logger.warning("Ignoring %s%s=%r (not an integer)", ENV_PREFIX, key, raw)

        raw = env.get(f"{ENV_PREFIX}STALL_THRESHOLD_MS")
        if raw is not None:
            try:
                config.stall_threshold_ms = float(raw)
            except ValueError:
                logger.warning("Ignoring %sSTALL_THRESHOLD_MS=%r (not a number)", ENV_PREFIX, raw)

        if not MIN_PRIORITY <= config.priority <= MAX_PRIORITY:
            logger.warning(
                "Ignoring %sPRIORITY=%d (expected %d..%d)",
                ENV_PREFIX, config.priority, MIN_PRIORITY, MAX_PRIORITY,
            )
            config.priority = MIN_PRIORITY
        return config

    @property
    def exit_wait_s(self) -> float:
        return self.exit_wait_ms / 1000.0

    @property
    def join_timeout_s(self) -> float:
        return self.join_timeout_ms / 1000.0
