"""Cleanup registrations: handles, registry, leak heuristic and manager."""

from .manager import CleanupManager
from .types import NO_PAYLOAD, HandleInfo, HandleState, PhantomHandle
from .leak_heuristic import LeakHeuristic, TypeDescriptor, default_leak_predicate

__all__ = [
    'CleanupManager', 'NO_PAYLOAD', 'HandleInfo', 'HandleState', 'PhantomHandle',
    'LeakHeuristic', 'TypeDescriptor', 'default_leak_predicate',
]
