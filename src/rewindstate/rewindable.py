"""
Rewindable: the history-awareness capability of one entity.

A Rewindable is composed onto a host object rather than mixed into its
class. It owns the entity's HistoryStore, its Recorder and its snapshot
codec, and exposes record/undo/redo on top of them:

    class Counter:
        count = observed(0)

    counter = Counter()
    rw = Rewindable(counter, {'observe': ['count']})
    counter.count = 5      # recorded
    rw.undo()              # counter.count == 0
    rw.redo()              # counter.count == 5

Lifecycle:
- Constructed: history is seeded from `history`/`index`, or a baseline entry
  is recorded from the host's current state
- Alive: entries accumulate through the Recorder
- destroy(): timers cancelled, listeners dropped, coalesced methods unwrapped
"""
from contextlib import contextmanager
from dataclasses import dataclass
import functools
import logging
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Tuple, Union, Mapping
import uuid

from rewindstate.codec import AttributeCodec, HostCodec, SnapshotCodec, implements_codec
from rewindstate.config import get_default_scheduler
from rewindstate.errors import InvalidConfiguration, RestoreFailed
from rewindstate.history_store import AT_BOUNDARY, HistoryStore, entries_equal
from rewindstate.observed import REWINDABLE_ATTR, is_observed
from rewindstate.options import RewindOptions
from rewindstate.recorder import Recorder
from rewindstate.scheduler import Scheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedEvent:
    """Emitted after every successful push (or coalesced replace)."""
    entity_id: str
    index: int


def get_rewindable(handle: Any) -> Optional['Rewindable']:
    """Rewindable attached to a host object (or the handle itself if it is one)."""
    if isinstance(handle, Rewindable):
        return handle
    host_dict = getattr(handle, '__dict__', None)
    if host_dict is None:
        return None
    return host_dict.get(REWINDABLE_ATTR)


class Rewindable:
    """History engine handle for a leaf entity.

    Args:
        host: Object whose state is tracked. Observed properties must be
              declared with observed() on its class.
        options: RewindOptions or mapping; defaults to the host class's
                 `rewind_options` attribute, then to empty options
        rewind_id: Unique id (generated when omitted)
        codec: Explicit snapshot codec. Without one, observed properties are
               snapshotted, else the host's own snapshot()/restore() is used
        scheduler: Timer source for debounce windows (process default otherwise)
        history: Initial history entries
        index: Initial index into `history` (defaults to the last entry)
        record_baseline: Record the current state when starting empty
    """

    _is_composite = False

    def __init__(
        self,
        host: Any,
        options: Union[RewindOptions, Mapping[str, Any], None] = None,
        *,
        rewind_id: Optional[str] = None,
        codec: Optional[SnapshotCodec] = None,
        scheduler: Optional[Scheduler] = None,
        history: Optional[Iterable[Any]] = None,
        index: Optional[int] = None,
        record_baseline: bool = True,
    ):
        if options is None:
            options = getattr(type(host), 'rewind_options', None)
        self.options = RewindOptions.coerce(options)
        self.host = host
        self._rewind_id = rewind_id or uuid.uuid4().hex[:12]
        self._scheduler = scheduler or get_default_scheduler()

        self._validate_host()
        self._codec = codec if codec is not None else self._default_codec()

        self._store = HistoryStore(self.options.model)
        self._recorder = Recorder(
            capture=self.capture,
            store=self._store,
            options=self.options,
            scheduler=self._scheduler,
            on_pushed=self._on_pushed,
            label=self._rewind_id,
        )

        self._on_recorded_callbacks: List[Callable[[RecordedEvent], None]] = []
        self._on_history_changed_callbacks: List[Callable[[], None]] = []
        self._wrapped_methods: Dict[str, Any] = {}
        self._destroyed = False

        self._attach()

        history = list(history) if history is not None else []
        if history:
            self._store.load(history, index)
            self._apply(self._store.current())
            logger.debug(f"Seeded {self.rewind_id} with {len(history)} entries (index={self._store.index})")
        elif record_baseline:
            self.record()

    # ========== SETUP ==========

    def _validate_host(self) -> None:
        host_type = type(self.host)
        for name in self.options.observe:
            if not is_observed(host_type, name):
                raise InvalidConfiguration(
                    f"'{name}' is not an instrumented property of {host_type.__name__}; "
                    f"declare it with observed()"
                )
        for name in self.options.coalesce:
            if not callable(getattr(self.host, name, None)):
                raise InvalidConfiguration(f"{host_type.__name__} has no method '{name}' to coalesce")
        if self.options.bubble_mode is not None and not self._is_composite:
            raise InvalidConfiguration("bubble_mode only applies to composites")

    def _default_codec(self) -> Optional[SnapshotCodec]:
        if self.options.observe:
            return AttributeCodec(self.host, self.options.observe)
        if implements_codec(self.host):
            return HostCodec(self.host)
        raise InvalidConfiguration(
            f"{type(self.host).__name__} has no snapshot source: "
            f"observe some properties, implement snapshot()/restore(), or pass a codec"
        )

    def _attach(self) -> None:
        if get_rewindable(self.host) is not None:
            raise InvalidConfiguration(f"{type(self.host).__name__} instance already has a Rewindable attached")
        self.host.__dict__[REWINDABLE_ATTR] = self

        # Coalesced actions are wrapped per instance
        for name in self.options.coalesce:
            original = getattr(self.host, name)
            self._wrapped_methods[name] = original
            setattr(self.host, name, self._make_coalesced(name, original))

    def _make_coalesced(self, name: str, method: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(method)
        def coalesced(*args: Any, **kwargs: Any) -> Any:
            return self._recorder.coalesce(name, method, *args, **kwargs)
        return coalesced

    # ========== STATE ACCESS ==========

    @property
    def rewind_id(self) -> str:
        return self._rewind_id

    @rewind_id.setter
    def rewind_id(self, value: str) -> None:
        self._rewind_id = value
        self._recorder.label = value

    @property
    def history_store(self) -> HistoryStore:
        return self._store

    @property
    def recorder(self) -> Recorder:
        return self._recorder

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def history(self) -> Tuple[Any, ...]:
        return self._store.entries

    @property
    def history_length(self) -> int:
        return len(self._store)

    @property
    def current_index(self) -> int:
        return self._store.index

    @property
    def can_undo(self) -> bool:
        return self._store.can_undo

    @property
    def can_redo(self) -> bool:
        return self._store.can_redo

    @property
    def is_composite(self) -> bool:
        return self._is_composite

    def capture(self) -> Any:
        """Entry describing the current live state (not recorded)."""
        return self._codec.snapshot()

    @property
    def snapshot(self) -> Any:
        return self.capture()

    @snapshot.setter
    def snapshot(self, entry: Any) -> None:
        """Apply an entry to the live state without recording it."""
        self._apply(entry)

    # ========== RECORDING ==========

    def record(self) -> bool:
        """Record the current state. Returns True if history grew or changed."""
        return self._recorder.record()

    def notify_changed(self, name: str) -> None:
        """Called by observed() setters on the host."""
        if name in self.options.observe:
            self._recorder.notify_changed(name)

    @contextmanager
    def suspended(self) -> Generator[None, None, None]:
        """Block auto-recording (e.g. while bulk-loading state)."""
        with self._recorder.suspended():
            yield

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        """Context manager for changes that should be a single undo step.

        Example:
            with tile_rw.atomic():
                tile.x = 10
                tile.y = 20
            # one entry recorded here
        """
        with self._recorder.atomic():
            yield

    # ========== NAVIGATION ==========

    def undo(self) -> bool:
        """Step back one entry.

        Returns:
            True if the entity moved, False at the oldest entry.

        Raises:
            RestoreFailed: the previous entry could not be applied; the
                entity and its index are unchanged.
        """
        return self._navigate(-1, "UNDO")

    def redo(self) -> bool:
        """Step forward one entry. See undo()."""
        return self._navigate(1, "REDO")

    def _navigate(self, offset: int, tag: str) -> bool:
        # Pending debounced writes become entries before we move away from them
        self._recorder.flush_pending()
        target = self._store.peek(offset)
        if target is AT_BOUNDARY:
            logger.debug(f"⏱️ {tag}: {self.rewind_id} at boundary (index={self._store.index})")
            return False

        self._apply(target)
        if offset < 0:
            self._store.undo()
        else:
            self._store.redo()
        self._recorder.end_gesture()
        logger.info(f"⏱️ {tag}: {self.rewind_id} -> index {self._store.index}/{len(self._store) - 1}")
        self._fire_history_changed()
        return True

    def travel(self, index: int) -> bool:
        """Jump to an absolute history index (negative counts from the end).

        Raises:
            IndexError: index out of range
            RestoreFailed: see undo()
        """
        length = len(self._store)
        normalized = index + length if index < 0 else index
        if normalized < 0 or normalized >= length:
            raise IndexError(f"Invalid index {index}. Unable to travel to state.")
        if normalized == self._store.index:
            return False

        self._recorder.flush_pending()
        self._apply(self._store.entries[normalized])
        self._store.travel(normalized)
        self._recorder.end_gesture()
        logger.info(f"⏱️ TRAVEL: {self.rewind_id} -> index {normalized}")
        self._fire_history_changed()
        return True

    def drop(self, index: int) -> None:
        """Remove one entry from history.

        If the current entry is dropped, the entity is re-materialized to
        whatever entry the index lands on.
        """
        before = self._store.current()
        self._store.drop(index)
        after = self._store.current()
        if after is not None and not entries_equal(before, after):
            self._apply(after)
        self._recorder.end_gesture()
        self._fire_history_changed()

    def load_history(self, entries: Iterable[Any], index: Optional[int] = None) -> None:
        """Replace the whole history and materialize the entry at index.

        Raises:
            RestoreFailed: the entry could not be applied; the previous history is kept
        """
        old_entries, old_index = self._store.entries, self._store.index
        self._recorder.cancel_pending()
        self._store.load(entries, index)
        current = self._store.current()
        if current is not None:
            try:
                self._apply(current)
            except RestoreFailed:
                self._store.load(old_entries, old_index)
                raise
        self._recorder.end_gesture()
        self._fire_history_changed()

    def merge_history(self, entries: Iterable[Any]) -> None:
        """Fold an independently grown history into this one.

        The merged sequence keeps the common prefix and the other history's
        suffix; the entity moves to the merged end.
        """
        old_entries, old_index = self._store.entries, self._store.index
        self._recorder.cancel_pending()
        self._store.merge(list(entries))
        current = self._store.current()
        if current is not None:
            try:
                self._apply(current)
            except RestoreFailed:
                self._store.load(old_entries, old_index)
                raise
        self._recorder.end_gesture()
        self._fire_history_changed()

    # ========== RESTORE ==========

    def _apply(self, entry: Any) -> None:
        """Materialize entry with auto-recording suppressed.

        On failure the previous live state is put back and RestoreFailed raised.
        """
        self._recorder.cancel_pending()
        previous = self.capture()
        with self._recorder.suspended():
            try:
                self._restore_entry(entry)
            except RestoreFailed:
                raise
            except Exception as e:
                self._rollback(previous)
                raise RestoreFailed(f"Could not restore {self.rewind_id}: {e}", entity_id=self.rewind_id) from e

    def _restore_entry(self, entry: Any) -> None:
        self._codec.restore(entry)

    def _rollback(self, previous: Any) -> None:
        try:
            self._restore_entry(previous)
        except Exception:
            logger.exception(f"⏱️ RESTORE: Rollback failed for {self.rewind_id}")

    @property
    def restoring(self) -> bool:
        return self._recorder.suppressed

    # ========== KEY BINDINGS ==========

    def handle_key(self, combo: str) -> bool:
        """Dispatch a normalized key combo ("Ctrl+Z") to undo/redo.

        Returns:
            True if the combo is bound to undo or redo.
        """
        action = self.options.keys.action_for(combo)
        if action == 'undo':
            self.undo()
        elif action == 'redo':
            self.redo()
        return action is not None

    # ========== EVENTS ==========

    def on_recorded(self, callback: Callable[[RecordedEvent], None]) -> None:
        """Subscribe to recorded events (entity id + new index)."""
        if callback not in self._on_recorded_callbacks:
            self._on_recorded_callbacks.append(callback)

    def off_recorded(self, callback: Callable[[RecordedEvent], None]) -> None:
        if callback in self._on_recorded_callbacks:
            self._on_recorded_callbacks.remove(callback)

    def on_history_changed(self, callback: Callable[[], None]) -> None:
        """Subscribe to any history change (record, undo, redo, travel, drop)."""
        if callback not in self._on_history_changed_callbacks:
            self._on_history_changed_callbacks.append(callback)

    def off_history_changed(self, callback: Callable[[], None]) -> None:
        if callback in self._on_history_changed_callbacks:
            self._on_history_changed_callbacks.remove(callback)

    def _on_pushed(self) -> None:
        event = RecordedEvent(entity_id=self.rewind_id, index=self._store.index)
        for callback in list(self._on_recorded_callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Error in recorded callback: {e}")
        self._fire_history_changed()

    def _fire_history_changed(self) -> None:
        for callback in list(self._on_history_changed_callbacks):
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in history_changed callback: {e}")

    # ========== TEARDOWN ==========

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Cancel timers, drop listeners and detach from the host."""
        if self._destroyed:
            return
        self._recorder.cancel_pending()
        for name in self._wrapped_methods:
            self.host.__dict__.pop(name, None)
        self._wrapped_methods.clear()
        self.host.__dict__.pop(REWINDABLE_ATTR, None)
        self._on_recorded_callbacks.clear()
        self._on_history_changed_callbacks.clear()
        self._store.clear()
        self._destroyed = True
        logger.debug(f"Destroyed Rewindable {self.rewind_id}")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.rewind_id!r}, index={self._store.index}, "
            f"length={len(self._store)})"
        )
