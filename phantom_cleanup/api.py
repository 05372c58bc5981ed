"""
Process-wide cleanup API.

One CleanupManager per process, created on first use with settings from
the PHANTOM_CLEANUP_* environment variables. Module-level functions forward
to it; the Cleanup mixin gives owner classes a short way to register.

Usage:
    class TempDir(Cleanup):
        def __init__(self):
            self.path = tempfile.mkdtemp()
            self.register_cleanup(shutil.rmtree, self.path)
"""
from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from phantom_cleanup.config import CleanupConfig
from phantom_cleanup.events.exception_chain import ExceptionHandler
from phantom_cleanup.resources.manager import CleanupManager
from phantom_cleanup.resources.types import NO_PAYLOAD

_manager: Optional[CleanupManager] = None
_manager_lock = threading.Lock()


def get_cleanup_manager() -> CleanupManager:
    """Return the process-wide manager, starting it on first call."""
    global _manager
    if _manager is None:
        with _manager_lock:
            if _manager is None:
                _manager = CleanupManager(config=CleanupConfig.from_env())
    return _manager


def register(owner: Any, action: Callable[..., None], payload: Any = NO_PAYLOAD) -> str:
    """Run ``action(payload)`` once ``owner`` has been reclaimed.

    See CleanupManager.register for the rules the payload must follow.
    """
    return get_cleanup_manager().register(owner, action, payload)


def register_auto_close(owner: Any, *resources: Any) -> str:
    """Close ``resources`` in the given order once ``owner`` has been reclaimed."""
    return get_cleanup_manager().register_auto_close(owner, *resources)


def add_exception_handler(handler: ExceptionHandler) -> None:
    get_cleanup_manager().add_exception_handler(handler)


def set_run_on_exit(enabled: bool) -> None:
    get_cleanup_manager().set_run_on_exit(enabled)


def set_priority(priority: int) -> None:
    get_cleanup_manager().set_priority(priority)


def run_cleanup_now() -> bool:
    """Block until every cleanup that is ready now has run.

    Does not force a collection; call gc.collect() first when needed.
    """
    return get_cleanup_manager().run_cleanup_now()


class Cleanup:
    """
    Mixin for classes that register their own cleanups.

    Call the register methods last in __init__, once the state the payload
    is built from exists. The payload must not be ``self`` or anything
    holding it (bound methods and lambdas included).
    """

    __slots__ = ()

    def register_cleanup(self, action: Callable[..., None], payload: Any = NO_PAYLOAD) -> str:
        return get_cleanup_manager().register(self, action, payload)

    def register_auto_close(self, *resources: Any) -> str:
        return get_cleanup_manager().register_auto_close(self, *resources)
