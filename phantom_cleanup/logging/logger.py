"""
Centralized logging configuration for phantom_cleanup.

The library itself only calls get_logger(); applications that want the
cleanup daemon's diagnostics on disk call setup_logging() once at startup.
Uses a rotating file handler with logs stored in a logs/ directory and
colored console output in debug mode.
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


_VERBOSE: bool = False
_PERF_METRICS_ENABLED: bool = True
_BASE_DIR: Path = Path.cwd()
_INSTALLED_HANDLERS: list = []

_env_perf = os.getenv("PHANTOM_CLEANUP_PERF_METRICS")
if _env_perf is not None:
    if _env_perf.strip().lower() in ("0", "false", "off", "no"):
        _PERF_METRICS_ENABLED = False
    elif _env_perf.strip().lower() in ("1", "true", "on", "yes"):
        _PERF_METRICS_ENABLED = True


LOG_FORMAT = '%(asctime)s - %(name)-30s - %(levelname)-8s - %(message)s'


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output."""

    COLORS = {
        'DEBUG': '\033[36m',       # Cyan
        'INFO': '\033[32m',        # Green
        'WARNING': '\033[33m',     # Yellow
        'ERROR': '\033[31m',       # Red
        'CRITICAL': '\033[35m',    # Magenta
    }
    DAEMON_COLOR = '\033[38;5;135m'   # Purple for [DAEMON] lifecycle lines
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        original_levelname = record.levelname

        if '[DAEMON]' in str(record.msg):
            color = self.DAEMON_COLOR
        else:
            color = self.COLORS.get(record.levelname)

        if color is None:
            return super().format(record)

        record.levelname = f"{self.BOLD}{color}{record.levelname}{self.RESET}"
        try:
            message = super().format(record)
        finally:
            record.levelname = original_levelname
        return f"{color}{message}{self.RESET}"


def get_log_dir() -> Path:
    """Return the directory used for log files.

    setup_logging() updates the base directory when an explicit log_dir is
    passed, so the returned path always matches the active file handler.
    """
    return _BASE_DIR / "logs"


def _teardown_handlers() -> None:
    """Flush, close and detach every handler installed by setup_logging()."""
    root_logger = logging.getLogger()
    for handler in list(_INSTALLED_HANDLERS):
        try:
            handler.flush()
        except Exception:
            pass
        try:
            handler.close()
        except Exception:
            pass
        root_logger.removeHandler(handler)
    _INSTALLED_HANDLERS.clear()


def setup_logging(
    debug: bool = False,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """
    Configure application logging with file rotation.

    Safe to call more than once: handlers from a previous call are torn down
    first so file descriptors are not duplicated.

    Args:
        debug: If True, set log level to DEBUG and enable console output.
        verbose: Enables per-handle debug lines from the registry and
            daemon. Verbose mode also implies debug-level logging.
        log_dir: Directory for the log file. Defaults to ./logs.

    Returns:
        Path of the active log file.
    """
    global _VERBOSE, _BASE_DIR

    debug_enabled = debug or verbose
    _teardown_handlers()

    if log_dir is not None:
        _BASE_DIR = Path(log_dir).parent
        target_dir = Path(log_dir)
    else:
        target_dir = get_log_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_file = target_dir / "phantom_cleanup.log"

    level = logging.DEBUG if debug_enabled else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # 1MB max, keep 5 backups
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(file_handler)
    _INSTALLED_HANDLERS.append(file_handler)

    if debug_enabled:
        console_handler = logging.StreamHandler(sys.stdout)
        if sys.stdout.isatty():
            console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt='%H:%M:%S'))
        else:
            console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
        console_handler.setLevel(level)
        root_logger.addHandler(console_handler)
        _INSTALLED_HANDLERS.append(console_handler)

    _VERBOSE = bool(verbose)

    root_logger.info(
        "phantom_cleanup logging initialized (debug=%s, verbose=%s)",
        debug_enabled,
        _VERBOSE,
    )
    return log_file


_SHORT_NAME_OVERRIDES = {
    "phantom_cleanup.resources.manager": "cleanup.manager",
    "phantom_cleanup.resources.registry": "cleanup.registry",
    "phantom_cleanup.resources.leak_heuristic": "cleanup.leaks",
    "phantom_cleanup.threading.daemon": "cleanup.daemon",
    "phantom_cleanup.threading.stall_detector": "cleanup.stall",
    "phantom_cleanup.events.exception_chain": "cleanup.exceptions",
    "phantom_cleanup.lifecycle": "cleanup.lifecycle",
}


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with optional short-name overrides for noisy modules."""
    actual = _SHORT_NAME_OVERRIDES.get(name, name)
    return logging.getLogger(actual)


def is_verbose_logging() -> bool:
    """Return True when verbose debug logging is enabled globally."""

    return _VERBOSE


def is_perf_metrics_enabled() -> bool:
    """Return True when slow-cleanup telemetry is enabled globally."""

    return _PERF_METRICS_ENABLED
