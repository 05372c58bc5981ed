"""Reclamation-triggered cleanup actions run on a background daemon thread."""

from phantom_cleanup.api import (
    Cleanup,
    add_exception_handler,
    get_cleanup_manager,
    register,
    register_auto_close,
    run_cleanup_now,
    set_priority,
    set_run_on_exit,
)
from phantom_cleanup.config import MAX_PRIORITY, MIN_PRIORITY, NORM_PRIORITY, CleanupConfig
from phantom_cleanup.errors import (
    CleanupError,
    InvalidPriorityError,
    LeakSuspectedError,
    NullArgumentError,
    SelfReferenceError,
    UnreferenceableOwnerError,
)
from phantom_cleanup.resources.manager import CleanupManager
from phantom_cleanup.resources.types import NO_PAYLOAD

__version__ = "1.0.0"

__all__ = [
    'Cleanup', 'CleanupManager', 'CleanupConfig', 'NO_PAYLOAD',
    'register', 'register_auto_close', 'add_exception_handler',
    'set_run_on_exit', 'set_priority', 'run_cleanup_now', 'get_cleanup_manager',
    'MIN_PRIORITY', 'NORM_PRIORITY', 'MAX_PRIORITY',
    'CleanupError', 'NullArgumentError', 'SelfReferenceError', 'LeakSuspectedError',
    'InvalidPriorityError', 'UnreferenceableOwnerError',
]
