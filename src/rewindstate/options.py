"""
Per-entity rewind configuration.

RewindOptions is attached when an entity is constructed and validated
immediately - a bad option fails fast instead of surfacing on first undo.
Options may be given as a RewindOptions instance or as a plain mapping:

    Rewindable(tile, {
        'observe': ['x', 'y'],
        'coalesce': ['drag'],
        'debounce': {'x': 50},
    })
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from rewindstate.config import get_default_model
from rewindstate.errors import InvalidConfiguration
from rewindstate.history_store import UndoModel


class BubbleMode(str, Enum):
    NEVER = "never"
    ON_END = "on_end"
    ALWAYS = "always"

    @classmethod
    def coerce(cls, value: Any) -> 'BubbleMode':
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidConfiguration(f"Invalid bubble mode: {value!r} (use one of: {valid})") from None


DEFAULT_UNDO_KEYS: Tuple[str, ...] = ("Ctrl+Z", "Meta+Z")
DEFAULT_REDO_KEYS: Tuple[str, ...] = ("Ctrl+Y", "Ctrl+Shift+Z", "Shift+Meta+Z")

DEFAULT_BUBBLE_SETTLE_MS = 300


@dataclass(frozen=True)
class KeyBindings:
    """Key combos that map to undo/redo.

    Combos are matched as already-normalized strings ("Ctrl+Shift+Z");
    turning raw key events into combos is the input layer's job.
    """
    undo: Tuple[str, ...] = DEFAULT_UNDO_KEYS
    redo: Tuple[str, ...] = DEFAULT_REDO_KEYS

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'KeyBindings':
        """Custom keys replace the defaults per action; missing actions keep defaults."""
        unknown = set(data) - {'undo', 'redo'}
        if unknown:
            raise InvalidConfiguration(f"Unknown key binding action(s): {sorted(unknown)}")
        bindings = cls()
        for action in ('undo', 'redo'):
            if action in data:
                combos = data[action]
                if isinstance(combos, str):
                    combos = [combos]
                bindings = replace(bindings, **{action: tuple(combos)})
        overlap = set(bindings.undo) & set(bindings.redo)
        if overlap:
            raise InvalidConfiguration(f"Key combo(s) bound to both undo and redo: {sorted(overlap)}")
        return bindings

    def action_for(self, combo: str) -> Optional[str]:
        """'undo', 'redo' or None."""
        if combo in self.undo:
            return 'undo'
        if combo in self.redo:
            return 'redo'
        return None


@dataclass(frozen=True)
class RewindOptions:
    """Configuration for one Rewindable.

    Attributes:
        model: Undo model (linear or history); None uses the process default
        observe: Observed property names, auto-recorded on write
        coalesce: Action (method) names whose repeated calls merge into one entry
        debounce: Quiet window in ms per property/action name (0/None = synchronous)
        bubble_mode: Composite only - how child recordings reach this entity
        bubble_settle: Composite only - settle window in ms for on_end bubbling
        keys: Undo/redo key bindings
    """
    model: Optional[UndoModel] = None
    observe: Tuple[str, ...] = ()
    coalesce: Tuple[str, ...] = ()
    debounce: Dict[str, Optional[float]] = field(default_factory=dict)
    bubble_mode: Optional[BubbleMode] = None
    bubble_settle: float = DEFAULT_BUBBLE_SETTLE_MS
    keys: KeyBindings = field(default_factory=KeyBindings)

    # Mapping keys accepted by from_mapping(), including camelCase aliases
    _ALIASES = {
        'model': 'model',
        'observe': 'observe',
        'coalesce': 'coalesce',
        'debounce': 'debounce',
        'bubble_mode': 'bubble_mode',
        'bubbleMode': 'bubble_mode',
        'bubble_settle': 'bubble_settle',
        'bubbleSettle': 'bubble_settle',
        'keys': 'keys',
    }

    def __post_init__(self):
        model = self.model if self.model is not None else get_default_model()
        object.__setattr__(self, 'model', UndoModel.coerce(model))
        for name in ('observe', 'coalesce'):
            value = getattr(self, name)
            if isinstance(value, str):
                raise InvalidConfiguration(f"'{name}' must be a list of names, got string {value!r}")
            object.__setattr__(self, name, tuple(value))
        if self.bubble_mode is not None:
            object.__setattr__(self, 'bubble_mode', BubbleMode.coerce(self.bubble_mode))
        if isinstance(self.keys, Mapping):
            object.__setattr__(self, 'keys', KeyBindings.from_mapping(self.keys))
        object.__setattr__(self, 'debounce', dict(self.debounce))
        self._validate()

    def _validate(self) -> None:
        for name in ('observe', 'coalesce'):
            values = getattr(self, name)
            dupes = {v for v in values if values.count(v) > 1}
            if dupes:
                raise InvalidConfiguration(f"Duplicate '{name}' entries: {sorted(dupes)}")

        conflicting = set(self.observe) & set(self.coalesce)
        if conflicting:
            raise InvalidConfiguration(
                f"Names can't be both observed and coalesced: {sorted(conflicting)}"
            )

        known = set(self.observe) | set(self.coalesce)
        for name, delay in self.debounce.items():
            if name not in known:
                raise InvalidConfiguration(
                    f"Debounce given for '{name}', which is neither observed nor coalesced"
                )
            if delay is not None and (isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0):
                raise InvalidConfiguration(f"Debounce for '{name}' must be a non-negative number, got {delay!r}")

        if isinstance(self.bubble_settle, bool) or not isinstance(self.bubble_settle, (int, float)) or self.bubble_settle < 0:
            raise InvalidConfiguration(f"bubble_settle must be a non-negative number, got {self.bubble_settle!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'RewindOptions':
        """Build options from a plain mapping, rejecting unknown option names."""
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            target = cls._ALIASES.get(key)
            if target is None:
                raise InvalidConfiguration(f"Unknown rewind option: {key!r}")
            if target in kwargs:
                raise InvalidConfiguration(f"Option '{target}' given more than once")
            kwargs[target] = value
        return cls(**kwargs)

    @classmethod
    def coerce(cls, value: Union['RewindOptions', Mapping[str, Any], None]) -> 'RewindOptions':
        if value is None:
            return cls()
        if isinstance(value, RewindOptions):
            return value
        if isinstance(value, Mapping):
            return cls.from_mapping(value)
        raise InvalidConfiguration(f"Rewind options must be RewindOptions or a mapping, got {type(value).__name__}")

    def debounce_for(self, name: str) -> Optional[float]:
        """Quiet window for name in ms, or None for synchronous recording."""
        delay = self.debounce.get(name)
        return delay if delay else None
