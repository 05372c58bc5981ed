"""Logging helpers for phantom_cleanup."""

from .logger import get_logger, setup_logging, is_verbose_logging, is_perf_metrics_enabled

__all__ = ['get_logger', 'setup_logging', 'is_verbose_logging', 'is_perf_metrics_enabled']
