"""
Snapshot codecs: convert an entity's live state to and from snapshot values.

A codec must satisfy two rules:
1. snapshot() is a pure read and returns plain, structurally comparable data
2. restore(snapshot) is idempotent and never records history itself - the
   Rewindable wraps every restore in its suppression guard
"""
import copy
from typing import Any, Callable, Dict, Iterable, Protocol, Tuple, runtime_checkable


@runtime_checkable
class SnapshotCodec(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


class AttributeCodec:
    """Snapshot = {name: value} for a fixed set of attributes on a target.

    Values are deep-copied both ways so later in-place mutation of the live
    object can never alter a recorded entry.
    """

    def __init__(self, target: Any, names: Iterable[str]):
        self._target = target
        self._names: Tuple[str, ...] = tuple(names)

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def snapshot(self) -> Dict[str, Any]:
        return {name: copy.deepcopy(getattr(self._target, name)) for name in self._names}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            if name in self._names:
                setattr(self._target, name, copy.deepcopy(value))


class AccessorCodec:
    """Custom get/set pair, for state that isn't a plain set of attributes."""

    def __init__(self, get: Callable[[], Any], set: Callable[[Any], None]):
        self._get = get
        self._set = set

    def snapshot(self) -> Any:
        return self._get()

    def restore(self, snapshot: Any) -> None:
        self._set(snapshot)


class HostCodec:
    """Delegates to a host object that implements snapshot()/restore() itself."""

    def __init__(self, host: Any):
        self._host = host

    def snapshot(self) -> Any:
        return self._host.snapshot()

    def restore(self, snapshot: Any) -> None:
        self._host.restore(snapshot)


def implements_codec(obj: Any) -> bool:
    return callable(getattr(obj, 'snapshot', None)) and callable(getattr(obj, 'restore', None))
