"""
Exception types raised by the cleanup registration API.

Registration errors are raised synchronously to the registering thread and
leave the registry untouched. Failures raised by cleanup actions or by
exception handlers are never wrapped in these types: actions' exceptions
reach the exception chain as-is, handler failures are logged.
"""
from __future__ import annotations

from typing import Optional


class CleanupError(Exception):
    """Base class for every error raised by phantom_cleanup."""


class NullArgumentError(CleanupError, TypeError):
    """A required argument (owner, action, resource, handler) was None."""

    def __init__(self, argument: str):
        super().__init__(f"'{argument}' must not be None")
        self.argument = argument


class SelfReferenceError(CleanupError, ValueError):
    """The payload (or an auto-close resource) is the owner itself."""


class LeakSuspectedError(CleanupError, ValueError):
    """The payload's type structurally implies a reference back to the owner."""

    def __init__(self, owner_type: type, payload_type: type, reason: Optional[str] = None):
        message = (
            f"payload of type {payload_type.__qualname__} would keep its "
            f"{owner_type.__qualname__} owner alive"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.owner_type = owner_type
        self.payload_type = payload_type
        self.reason = reason


class InvalidPriorityError(CleanupError, ValueError):
    """Daemon priority outside MIN_PRIORITY..MAX_PRIORITY."""


class UnreferenceableOwnerError(CleanupError, TypeError):
    """The owner's type does not support weak references."""
