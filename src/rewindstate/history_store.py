"""
HistoryStore: ordered sequence of history entries plus a current index.

The entry at `index` is always the entity's currently materialized state.
Entries are never mutated once pushed - the store only appends, truncates,
replaces its top entry (coalescing) or swaps in a whole new sequence.

Undo models:
- LINEAR: recording while rewound discards the redo entries (classic stack)
- HISTORY: recording never discards; the state being recorded from is
  re-appended at the end and the new entry follows it
"""
import logging
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from rewindstate.errors import InvalidConfiguration
from rewindstate.reconciler import reconcile

logger = logging.getLogger(__name__)


class UndoModel(str, Enum):
    LINEAR = "linear"
    HISTORY = "history"

    @classmethod
    def coerce(cls, value: Any) -> 'UndoModel':
        """Accept an UndoModel or its string value."""
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidConfiguration(f"Invalid undo model: {value!r} (use one of: {valid})") from None


class _AtBoundary:
    """Sentinel returned when navigation has no entry in that direction."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "AT_BOUNDARY"


AT_BOUNDARY = _AtBoundary()


def entries_equal(a: Any, b: Any) -> bool:
    """Structural equality between two history entries.

    Sequences are compared element-wise regardless of list/tuple flavor so a
    child history captured as a tuple equals the live list it came from.
    """
    if a is b:
        return True
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(entries_equal(x, y) for x, y in zip(a, b))
    return a == b


class HistoryStore:
    """Entries + index for one Rewindable. Owned exclusively by that entity."""

    def __init__(
        self,
        model: Any = UndoModel.LINEAR,
        entries: Optional[Iterable[Any]] = None,
        index: Optional[int] = None,
    ):
        self._model = UndoModel.coerce(model)
        self._entries: List[Any] = []
        self._index = -1
        if entries is not None:
            self.load(entries, index)

    # === Read access ===

    @property
    def model(self) -> UndoModel:
        return self._model

    @model.setter
    def model(self, value: Any) -> None:
        self._model = UndoModel.coerce(value)

    @property
    def index(self) -> int:
        return self._index

    @property
    def entries(self) -> Tuple[Any, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def current(self) -> Optional[Any]:
        """Entry at index, or None when the store is empty."""
        return self._entries[self._index] if self._index >= 0 else None

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    def peek(self, offset: int) -> Any:
        """Entry at index+offset without moving, or AT_BOUNDARY."""
        target = self._index + offset
        if self._index < 0 or target < 0 or target >= len(self._entries):
            return AT_BOUNDARY
        return self._entries[target]

    # === Mutation ===

    def push(self, entry: Any) -> bool:
        """Append entry and make it current.

        Returns:
            False (nothing pushed) if entry deep-equals the current entry.
        """
        if self._index >= 0 and entries_equal(entry, self._entries[self._index]):
            logger.debug("State unchanged, not recording")
            return False

        at_end = self._index == len(self._entries) - 1
        if not at_end:
            if self._model is UndoModel.LINEAR:
                del self._entries[self._index + 1:]
            else:
                # Keep the future; continue the timeline from the current state
                self._entries.append(self._entries[self._index])

        self._entries.append(entry)
        self._index = len(self._entries) - 1
        return True

    def replace_top(self, entry: Any) -> bool:
        """Replace the current entry in place (coalesced gesture).

        A gesture that ends where it started collapses: the top entry is
        removed instead of leaving two equal entries behind.

        Returns:
            False if entry deep-equals the current entry.
        """
        if self._index < 0:
            return self.push(entry)
        if entries_equal(entry, self._entries[self._index]):
            return False
        if self._model is UndoModel.LINEAR:
            del self._entries[self._index + 1:]
        if self._index > 0 and entries_equal(entry, self._entries[self._index - 1]):
            del self._entries[self._index]
            self._index -= 1
            logger.debug("Gesture returned to previous state, collapsing top entry")
            return True
        self._entries[self._index] = entry
        return True

    def undo(self) -> Any:
        if not self.can_undo:
            return AT_BOUNDARY
        self._index -= 1
        return self._entries[self._index]

    def redo(self) -> Any:
        if not self.can_redo:
            return AT_BOUNDARY
        self._index += 1
        return self._entries[self._index]

    def _normalize(self, index: int) -> int:
        """Negative indices count from the end, as for sequences."""
        return index + len(self._entries) if index < 0 else index

    def travel(self, index: int) -> Any:
        """Jump to an absolute index. Negative indices count from the end."""
        normalized = self._normalize(index)
        if normalized < 0 or normalized >= len(self._entries):
            raise IndexError(f"Invalid index {index}. Unable to travel to state.")
        self._index = normalized
        return self._entries[normalized]

    def drop(self, index: int) -> None:
        """Remove one entry; the index keeps pointing at the same entry.

        Negative indices count from the end.
        """
        normalized = self._normalize(index)
        if normalized < 0 or normalized >= len(self._entries):
            raise IndexError(f"Invalid index {index}. Unable to drop state from history.")
        del self._entries[normalized]
        if self._index > normalized or self._index >= len(self._entries):
            self._index -= 1

    def load(self, entries: Iterable[Any], index: Optional[int] = None) -> None:
        """Replace the whole sequence.

        Index defaults to the last entry; negative indices count from the
        end. Out-of-range indices are clamped, so a non-empty sequence
        always has a current entry.
        """
        self._entries = list(entries)
        if not self._entries:
            self._index = -1
            return
        if index is None:
            index = len(self._entries) - 1
        self._index = max(0, min(self._normalize(index), len(self._entries) - 1))

    def merge(self, entries: Sequence[Any]) -> None:
        """Fold another sequence into this one and move to the merged end."""
        merged = reconcile(self._entries, entries)
        self.load(merged)

    def clear(self) -> None:
        self._entries = []
        self._index = -1
