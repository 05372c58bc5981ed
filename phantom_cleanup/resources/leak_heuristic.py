"""
Static check that a payload does not obviously reference its owner.

A payload that holds the owner keeps it reachable forever, so its cleanup
can never run. Only the declared shape of the payload's type is inspected;
indirect reference chains are not detected.
"""
from __future__ import annotations

import threading
import types
import weakref
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, Tuple

from phantom_cleanup.logging.logger import get_logger

logger = get_logger(__name__)

# Objects the interpreter creates around code: they carry frames, closures
# or a bound __self__ and are the usual way an owner leaks into a payload.
_SYNTHETIC_TYPES = frozenset({
    types.FunctionType,
    types.MethodType,
    types.GeneratorType,
    types.CoroutineType,
    types.AsyncGeneratorType,
    types.FrameType,
    types.CellType,
})

_LOCALS = "<locals>"


def _captures_enclosing_scope(tp: type) -> bool:
    """True when any function defined in the class body closes over outer names."""
    for member in vars(tp).values():
        if isinstance(member, (staticmethod, classmethod)):
            member = member.__func__
        elif isinstance(member, property):
            member = member.fget
        code = getattr(member, "__code__", None)
        if code is None:
            continue
        # __class__ is the implicit cell behind zero-argument super()
        if any(name != "__class__" for name in code.co_freevars):
            return True
    return False


@dataclass(frozen=True)
class TypeDescriptor:
    """Structural facts about one type, computed once and cached."""
    module: str
    qualname: str
    enclosing: Optional[str]
    is_local: bool
    is_nested: bool
    captures_scope: bool
    is_synthetic: bool
    lineage: FrozenSet[Tuple[str, str]]

    @classmethod
    def from_type(cls, tp: type) -> "TypeDescriptor":
        module = getattr(tp, "__module__", "") or ""
        qualname = getattr(tp, "__qualname__", tp.__name__)

        scope = qualname.split(".")[:-1]
        is_local = bool(scope) and scope[-1] == _LOCALS
        is_nested = bool(scope) and scope[-1] != _LOCALS
        # "Owner.method.<locals>.Local" -> enclosing class "Owner"
        while scope and scope[-1] == _LOCALS:
            scope = scope[:-2]
        enclosing = ".".join(scope) or None

        lineage = frozenset(
            (getattr(base, "__module__", "") or "", base.__qualname__)
            for base in getattr(tp, "__mro__", (tp,))
        )
        return cls(
            module=module,
            qualname=qualname,
            enclosing=enclosing,
            is_local=is_local,
            is_nested=is_nested,
            captures_scope=_captures_enclosing_scope(tp),
            is_synthetic=tp in _SYNTHETIC_TYPES,
            lineage=lineage,
        )

    @property
    def enclosing_key(self) -> Optional[Tuple[str, str]]:
        if self.enclosing is None:
            return None
        return (self.module, self.enclosing)


LeakPredicate = Callable[[TypeDescriptor, TypeDescriptor], Optional[str]]


def default_leak_predicate(owner: TypeDescriptor, payload: TypeDescriptor) -> Optional[str]:
    """
    Return why ``payload`` is suspect for ``owner``, or None.

    Flags:
    - interpreter-made objects (functions, lambdas, bound methods, generators)
    - classes declared inside one of the owner class's methods
    - classes nested in the owner class whose methods close over an outer scope

    A class nested in the owner's body without such closures, or a top-level
    class, passes.
    """
    if payload.is_synthetic:
        return f"{payload.qualname} objects can capture the owner (closure, frame or bound self)"

    encloses = payload.enclosing_key is not None and payload.enclosing_key in owner.lineage
    if not encloses:
        return None
    if payload.is_local:
        return f"{payload.qualname} is declared inside a method of {payload.enclosing}"
    if payload.is_nested and payload.captures_scope:
        return f"{payload.qualname} is nested in {payload.enclosing} and closes over an enclosing scope"
    return None


class LeakHeuristic:
    """
    Pluggable leak check over cached type descriptors.

    Descriptors are cached per type in a WeakKeyDictionary so that local
    classes are not kept alive by the cache.
    """

    def __init__(self, predicate: Optional[LeakPredicate] = None):
        self._predicate = predicate or default_leak_predicate
        self._cache: "weakref.WeakKeyDictionary[type, TypeDescriptor]" = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def describe(self, tp: type) -> TypeDescriptor:
        with self._lock:
            descriptor = self._cache.get(tp)
        if descriptor is not None:
            return descriptor

        descriptor = TypeDescriptor.from_type(tp)
        try:
            with self._lock:
                self._cache[tp] = descriptor
        except TypeError:
            # type objects that cannot be weak-referenced are simply not cached
            pass
        return descriptor

    def explain(self, owner_type: type, payload_type: type) -> Optional[str]:
        """Return the reason payload_type is suspect for owner_type, or None."""
        return self._predicate(self.describe(owner_type), self.describe(payload_type))

    def is_suspect(self, owner_type: type, payload_type: type) -> bool:
        return self.explain(owner_type, payload_type) is not None

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)
