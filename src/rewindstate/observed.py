"""
Setter instrumentation for observed properties.

Every property a Rewindable auto-records must route its writes through an
interceptable accessor. Declare such properties with observed():

    class Tile:
        x = observed(0)
        label = observed("")

Writes store the value on the instance and then notify the instance's
Rewindable (if one is attached) that the property changed. There is no
polling fallback: a property that isn't declared observed() cannot appear
in the `observe` option.
"""
import copy
from typing import Any, Optional

_MISSING = object()

# Attribute name under which an attached Rewindable is stored on its host
REWINDABLE_ATTR = '__rewindable__'


class ObservedProperty:
    """Data descriptor that reports writes to the host's Rewindable."""

    def __init__(self, default: Any = _MISSING):
        self._default = default
        self.name: Optional[str] = None
        self._slot: Optional[str] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self._slot = f'_observed_{name}'

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        try:
            return instance.__dict__[self._slot]
        except KeyError:
            if self._default is _MISSING:
                raise AttributeError(f"{type(instance).__name__} has no value for '{self.name}'") from None
            # Mutable defaults must not be shared between instances
            value = copy.deepcopy(self._default)
            instance.__dict__[self._slot] = value
            return value

    def __set__(self, instance: Any, value: Any) -> None:
        instance.__dict__[self._slot] = value
        rewindable = instance.__dict__.get(REWINDABLE_ATTR)
        if rewindable is not None:
            rewindable.notify_changed(self.name)


def observed(default: Any = _MISSING) -> Any:
    """Declare an auto-recordable property (see module docstring)."""
    return ObservedProperty(default)


def is_observed(cls: type, name: str) -> bool:
    return isinstance(getattr(cls, name, None), ObservedProperty)
