"""
Handle and bookkeeping types for the cleanup registry.

A PhantomHandle is the interpreter-observable side of one registration: a
weak reference to the owner whose callback fires once the owner has been
reclaimed, carrying the cleanup action and its payload.
"""
from __future__ import annotations

import time
import uuid
import weakref
from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional


class _NoPayload:
    """Sentinel type for registrations made without a payload."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "NO_PAYLOAD"

    def __reduce__(self):
        return "NO_PAYLOAD"


NO_PAYLOAD = _NoPayload()


class HandleState(Enum):
    """Lifecycle of a PhantomHandle."""
    PENDING = auto()   # registered, owner possibly still reachable
    READY = auto()     # owner reclaimed, handle delivered to the channel
    FIRED = auto()     # action executed, handle out of the registry (terminal)


class PhantomHandle(weakref.ref):
    """
    Weak reference to an owner plus the cleanup it triggers.

    Holds no strong reference to the owner. Compared and hashed by identity,
    so it stays usable as a dict key after the owner is gone.

    Something else must keep the handle itself alive (the registry does):
    a weakref that is reclaimed before its referent never calls back.
    """

    __slots__ = ("handle_id", "state", "owner_type", "created_at", "_action", "_payload")

    def __new__(
        cls,
        owner: Any,
        callback: Optional[Callable[["PhantomHandle"], None]] = None,
        *,
        action: Callable[..., None],
        payload: Any = NO_PAYLOAD,
    ) -> "PhantomHandle":
        self = weakref.ref.__new__(cls, owner, callback)
        owner_type = type(owner)
        self.handle_id = f"{owner_type.__name__.lower()}_{uuid.uuid4().hex[:8]}"
        self.state = HandleState.PENDING
        self.owner_type = f"{owner_type.__module__}.{owner_type.__qualname__}"
        self.created_at = time.time()
        self._action = action
        self._payload = payload
        return self

    def __init__(self, owner, callback=None, **_kwargs):
        super().__init__(owner, callback)

    __eq__ = object.__eq__
    __ne__ = object.__ne__
    __hash__ = object.__hash__

    def __repr__(self) -> str:
        return f"<PhantomHandle {self.handle_id} {self.state.name} owner={self.owner_type}>"

    @property
    def payload(self) -> Any:
        """The registered payload (NO_PAYLOAD once fired)."""
        return NO_PAYLOAD if self.state is HandleState.FIRED else self._payload

    @property
    def has_payload(self) -> bool:
        return self._payload is not NO_PAYLOAD

    def mark_ready(self) -> None:
        if self.state is HandleState.PENDING:
            self.state = HandleState.READY

    def fire(self) -> None:
        """
        Run the action once and drop the references to action and payload.

        Raises:
            RuntimeError: If the handle already fired
            Exception: Whatever the action raises
        """
        if self.state is HandleState.FIRED:
            raise RuntimeError(f"{self.handle_id} already fired")
        action, payload = self._action, self._payload
        self._action = None
        self._payload = NO_PAYLOAD
        try:
            if payload is NO_PAYLOAD:
                action()
            else:
                action(payload)
        finally:
            self.state = HandleState.FIRED


@dataclass
class HandleInfo:
    """Bookkeeping row the registry keeps for each pending handle."""
    handle_id: str
    owner_type: str
    payload_type: Optional[str] = None
    registered_at: float = field(default_factory=time.time)

    @classmethod
    def for_handle(cls, handle: PhantomHandle, payload: Any) -> "HandleInfo":
        payload_type = None
        if payload is not NO_PAYLOAD:
            tp = type(payload)
            payload_type = f"{tp.__module__}.{tp.__qualname__}"
        return cls(
            handle_id=handle.handle_id,
            owner_type=handle.owner_type,
            payload_type=payload_type,
            registered_at=handle.created_at,
        )

    @property
    def age_s(self) -> float:
        return time.time() - self.registered_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert the info to a dictionary."""
        result = asdict(self)
        result['age_s'] = self.age_s
        return result
