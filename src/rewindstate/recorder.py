"""
Recorder: decides when a new history entry is pushed.

Three triggers:
- record(): explicit, always pushes immediately
- notify_changed(name): an observed property was written; records now, or
  after the property's debounce window (trailing edge, rescheduled on every
  write)
- coalesce(name, fn): a coalesced action ran; the first call of a gesture
  pushes, later calls replace the top entry until the next explicit record()

Two guards:
- suspended(): restore in progress, every auto-record trigger is ignored
- gesture depth: inside a coalesced action or atomic() block, observed
  writes are ignored - the enclosing gesture records once when it ends

Auto-record paths never raise: they run from setters and timer callbacks
where no caller can handle an exception. Failures are logged instead.
"""
from contextlib import contextmanager
import logging
from typing import Any, Callable, Dict, Generator, Optional

from rewindstate.history_store import HistoryStore
from rewindstate.options import RewindOptions
from rewindstate.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class Recorder:
    """Recording policy for one Rewindable.

    Args:
        capture: Builds the entry for the entity's current state
        store: The entity's history store
        options: Validated rewind options
        scheduler: Timer source for debounce windows
        on_pushed: Called after every push/replace that changed history
        label: Entity id, for log messages
    """

    def __init__(
        self,
        capture: Callable[[], Any],
        store: HistoryStore,
        options: RewindOptions,
        scheduler: Scheduler,
        on_pushed: Callable[[], None],
        label: str = "",
    ):
        self._capture = capture
        self._store = store
        self._options = options
        self._scheduler = scheduler
        self._on_pushed = on_pushed
        self.label = label

        self._suppress_depth = 0
        self._gesture_depth = 0
        # True once a coalesced gesture has pushed its entry; reset by record()
        self._coalescing = False
        self._pending: Dict[str, TimerHandle] = {}
        self._pending_fns: Dict[str, Callable[[], None]] = {}

    # === State ===

    @property
    def suppressed(self) -> bool:
        return self._suppress_depth > 0

    @property
    def in_gesture(self) -> bool:
        return self._gesture_depth > 0

    @property
    def coalescing(self) -> bool:
        return self._coalescing

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @contextmanager
    def suspended(self) -> Generator[None, None, None]:
        """Ignore auto-record triggers for the duration of the block."""
        self._suppress_depth += 1
        try:
            yield
        finally:
            self._suppress_depth -= 1

    def end_gesture(self) -> None:
        """Forget the current coalesced gesture (next coalesced call pushes)."""
        self._coalescing = False

    # === Triggers ===

    def record(self) -> bool:
        """Push the current state now.

        Pending debounced records are flushed first so the explicit entry is
        ordered after any in-flight mutation.

        Returns:
            True if history changed.
        """
        if self.suppressed:
            logger.debug(f"⏱️ RECORD: Skipping record for {self.label} (restore in progress)")
            return False
        if self.in_gesture:
            logger.debug(f"⏱️ RECORD: Deferring record for {self.label} to end of gesture")
            return False

        self.flush_pending()
        self._coalescing = False
        return self._push(self._capture(), replace=False)

    def notify_changed(self, name: str) -> None:
        """Observed property `name` was written."""
        if self.suppressed or self.in_gesture:
            return
        delay = self._options.debounce_for(name)
        if delay is None:
            self._run_safely(name, self._auto_record)
        else:
            self._schedule(name, delay, self._auto_record)

    def coalesce(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a coalesced action and fold its result into the current gesture."""
        self._gesture_depth += 1
        try:
            result = fn(*args, **kwargs)
        finally:
            self._gesture_depth -= 1

        if self._gesture_depth == 0 and not self.suppressed:
            delay = self._options.debounce_for(name)
            if delay is None:
                self._run_safely(name, self._coalesce_record)
            else:
                self._schedule(name, delay, self._coalesce_record)
        return result

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        """Group changes into a single undo step.

        Observed writes inside the block don't record; the outermost block
        records once on exit. Nested blocks are supported.
        """
        self._gesture_depth += 1
        try:
            yield
        finally:
            self._gesture_depth -= 1
        if self._gesture_depth == 0:
            self.record()

    # === Timers ===

    def flush_pending(self) -> None:
        """Run pending debounced records now instead of at their deadline."""
        for name in list(self._pending):
            handle = self._pending.pop(name)
            fn = self._pending_fns.pop(name)
            handle.cancel()
            self._run_safely(name, fn)

    def cancel_pending(self) -> None:
        """Drop pending debounced records without running them."""
        if self._pending:
            logger.debug(f"⏱️ RECORD: Cancelling {len(self._pending)} pending record(s) for {self.label}")
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        self._pending_fns.clear()

    def _schedule(self, name: str, delay: float, fn: Callable[[], None]) -> None:
        previous = self._pending.pop(name, None)
        if previous is not None:
            previous.cancel()
        self._pending_fns.pop(name, None)

        fired = []

        def fire() -> None:
            fired.append(True)
            self._pending.pop(name, None)
            self._pending_fns.pop(name, None)
            self._run_safely(name, fn)

        handle = self._scheduler.call_later(delay, fire)
        # Schedulers without a running loop fire synchronously
        if not fired:
            self._pending[name] = handle
            self._pending_fns[name] = fn

    # === Internals ===

    def _auto_record(self) -> None:
        if self.suppressed:
            return
        # A standalone property change is its own undo step
        self._coalescing = False
        self._push(self._capture(), replace=False)

    def _coalesce_record(self) -> None:
        if self.suppressed:
            return
        length = len(self._store)
        changed = self._push(self._capture(), replace=self._coalescing)
        if changed:
            # A collapsed gesture leaves nothing to coalesce into
            self._coalescing = len(self._store) >= length

    def _push(self, entry: Any, replace: bool) -> bool:
        if entry is None:
            logger.info(f"⏱️ RECORD: State is empty, not recording ({self.label})")
            return False
        changed = self._store.replace_top(entry) if replace else self._store.push(entry)
        if changed:
            verb = "Coalesced" if replace else "Recorded"
            logger.debug(f"⏱️ RECORD: {verb} entry for {self.label} (index={self._store.index}, length={len(self._store)})")
            self._on_pushed()
        return changed

    def _run_safely(self, name: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            logger.exception(f"⏱️ RECORD: Auto-record '{name}' failed for {self.label}")
