"""
Composite entities: Rewindables that own a changing set of child Rewindables.

CompositeManager
    Engine-owned arena of children: child id -> handle, plus an explicit
    order list. Children are never discovered by scanning external state.
    Builds CompositeEntry values and reconciles the live children against
    one on undo/redo.

BubbleController
    Forwards child "recorded" events to the parent's recorder according to
    the composite's bubble mode (never / on_end / always).

RewindableComposite
    Rewindable whose history entries are CompositeEntry values. Its own
    observed properties, if any, ride along in CompositeEntry.local.

Restore is all-or-nothing: children are created first, existing children
updated second (rolled back on failure), removals happen only once nothing
else can fail.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from rewindstate.codec import AttributeCodec, HostCodec, SnapshotCodec, implements_codec
from rewindstate.config import get_default_scheduler
from rewindstate.errors import InvalidConfiguration, RestoreFailed
from rewindstate.history_store import UndoModel, entries_equal
from rewindstate.options import BubbleMode, RewindOptions
from rewindstate.reconciler import reconcile
from rewindstate.rewindable import RecordedEvent, Rewindable, get_rewindable
from rewindstate.scheduler import Scheduler, TimerHandle
from rewindstate.snapshot_model import ChildRecord, CompositeEntry

logger = logging.getLogger(__name__)

# create_child(initial_state, child_type) -> handle
CreateChild = Callable[[Any, str], Any]
# remove_child(handle) -> None
RemoveChild = Callable[[Any], None]
# history_lookup(child_id) -> newest recorded history for that child, or None
HistoryLookup = Callable[[str], Optional[Tuple[Any, ...]]]


def child_type_of(handle: Any) -> str:
    """Type key recorded for a child so the factory can rebuild it."""
    rewindable = get_rewindable(handle)
    target = rewindable.host if rewindable is not None and handle is rewindable else handle
    cls = type(target)
    return f"{cls.__module__}.{cls.__qualname__}"


def _require_rewindable(handle: Any) -> Rewindable:
    rewindable = get_rewindable(handle)
    if rewindable is None:
        raise TypeError(f"Child {handle!r} has no Rewindable attached")
    return rewindable


class CompositeManager:
    """Child map + order for one composite. Owned exclusively by that composite.

    Args:
        create_child: Collaborator factory used to re-create removed children
        remove_child: Collaborator teardown hook for children leaving the topology
        label: Owner id, for log and error messages
    """

    def __init__(
        self,
        create_child: Optional[CreateChild] = None,
        remove_child: Optional[RemoveChild] = None,
        label: str = "",
    ):
        self._create_child = create_child
        self._remove_child = remove_child
        self.label = label
        self._children: Dict[str, Any] = {}
        self._order: List[str] = []
        # Owner hooks fired when a child enters/leaves the arena
        self.on_attach: Optional[Callable[[str, Rewindable], None]] = None
        self.on_detach: Optional[Callable[[str, Rewindable], None]] = None

    # === Arena access ===

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(self._order)

    @property
    def handles(self) -> List[Any]:
        return [self._children[cid] for cid in self._order]

    def get(self, child_id: str) -> Optional[Any]:
        return self._children.get(child_id)

    def position_of(self, child_id: str) -> int:
        return self._order.index(child_id)

    def __contains__(self, child_id: object) -> bool:
        return child_id in self._children

    def __len__(self) -> int:
        return len(self._order)

    # === Arena mutation ===

    def add(self, child_id: str, handle: Any, position: Optional[int] = None) -> None:
        if child_id in self._children:
            raise ValueError(f"Child id {child_id!r} already present in {self.label}")
        rewindable = _require_rewindable(handle)
        rewindable.rewind_id = child_id
        self._children[child_id] = handle
        if position is None or position >= len(self._order):
            self._order.append(child_id)
        else:
            self._order.insert(max(0, position), child_id)
        if self.on_attach is not None:
            self.on_attach(child_id, rewindable)

    def remove(self, child_id: str) -> Any:
        """Detach a child from the arena and return its handle (no teardown)."""
        handle = self._children.pop(child_id)
        self._order.remove(child_id)
        rewindable = get_rewindable(handle)
        if self.on_detach is not None and rewindable is not None:
            self.on_detach(child_id, rewindable)
        return handle

    def move(self, child_id: str, position: int) -> None:
        self._order.remove(child_id)
        self._order.insert(max(0, min(position, len(self._order))), child_id)

    @property
    def can_create(self) -> bool:
        return self._create_child is not None

    def create(self, initial_state: Any = None, child_type: Optional[str] = None) -> Any:
        """Build a new child handle through the create_child hook (not added to the arena)."""
        if self._create_child is None:
            raise InvalidConfiguration(f"{self.label} has no create_child hook")
        return self._create_child(initial_state, child_type)

    def teardown(self, handle: Any) -> None:
        """Run the collaborator teardown hook and destroy the child's Rewindable."""
        rewindable = get_rewindable(handle)
        if self._remove_child is not None:
            try:
                self._remove_child(handle)
            except Exception:
                logger.exception(f"⏱️ RESTORE: remove_child hook failed in {self.label}")
        if rewindable is not None:
            rewindable.destroy()

    def clear(self) -> List[Any]:
        """Release every child reference; returns the released handles."""
        handles = self.handles
        for child_id in list(self._order):
            self.remove(child_id)
        return handles

    # === Entries ===

    def snapshot_children(self) -> Tuple[Tuple[str, ChildRecord], ...]:
        records = []
        for position, child_id in enumerate(self._order):
            handle = self._children[child_id]
            rewindable = _require_rewindable(handle)
            records.append((
                child_id,
                ChildRecord(
                    child_type=child_type_of(handle),
                    position=position,
                    snapshot=rewindable.history_store.current(),
                    history=rewindable.history,
                    index=rewindable.current_index,
                ),
            ))
        return tuple(records)

    def restore_children(
        self,
        entry: CompositeEntry,
        history_lookup: Optional[HistoryLookup] = None,
        merge: bool = False,
    ) -> None:
        """Make the live children match entry.

        Args:
            entry: Target composite entry
            history_lookup: Newest recorded history per child id, used to fold
                            independently grown histories back in (merge=True)
            merge: Reconcile child histories instead of overwriting them

        Raises:
            RestoreFailed: a child could not be created or restored; the live
                topology is unchanged
        """
        live = set(self._order)
        to_create = [(cid, rec) for cid, rec in entry if cid not in live]
        to_update = [
            (cid, rec) for cid, rec in entry
            if cid in live and self._needs_restore(cid, rec)
        ]
        to_remove = [cid for cid in self._order if cid not in entry]

        # PHASE 1: create missing children (nothing live touched yet)
        created: Dict[str, Any] = {}
        try:
            for child_id, record in to_create:
                created[child_id] = self._create(child_id, record, history_lookup, merge)
        except Exception as e:
            for handle in created.values():
                self.teardown(handle)
            raise RestoreFailed(
                f"Could not re-create child {child_id!r} of {self.label}: {e}", entity_id=self.label
            ) from e

        # PHASE 2: restore existing children whose timeline differs
        previous: Dict[str, Tuple[Tuple[Any, ...], int]] = {}
        try:
            for child_id, record in to_update:
                rewindable = _require_rewindable(self._children[child_id])
                previous[child_id] = (rewindable.history, rewindable.current_index)
                live_history = rewindable.history if merge else None
                history, index = self._resolve_history(record, live_history, merge)
                rewindable.load_history(history, index)
        except Exception as e:
            for restored_id, (history, index) in previous.items():
                try:
                    _require_rewindable(self._children[restored_id]).load_history(history, index)
                except Exception:
                    logger.exception(f"⏱️ RESTORE: Rollback of child {restored_id!r} failed in {self.label}")
            for handle in created.values():
                self.teardown(handle)
            raise RestoreFailed(
                f"Could not restore child {child_id!r} of {self.label}: {e}", entity_id=self.label
            ) from e

        # PHASE 3: tear down children absent from the target
        for child_id in to_remove:
            self.teardown(self.remove(child_id))

        # PHASE 4: insert new children and apply the recorded order
        for child_id, handle in created.items():
            self._children[child_id] = handle
            if self.on_attach is not None:
                self.on_attach(child_id, _require_rewindable(handle))
        self._order = [cid for cid, _ in sorted(entry, key=lambda item: item[1].position)]

        if to_create or to_update or to_remove:
            logger.debug(
                f"⏱️ RESTORE: {self.label} children created={[c for c, _ in to_create]} "
                f"updated={[c for c, _ in to_update]} removed={to_remove}"
            )

    def _needs_restore(self, child_id: str, record: ChildRecord) -> bool:
        rewindable = _require_rewindable(self._children[child_id])
        return (
            rewindable.current_index != record.index
            or not entries_equal(rewindable.history, record.history)
        )

    def _create(
        self,
        child_id: str,
        record: ChildRecord,
        history_lookup: Optional[HistoryLookup],
        merge: bool,
    ) -> Any:
        if not self.can_create:
            raise RestoreFailed(f"{self.label} has no create_child hook to re-create {child_id!r}")
        handle = self.create(record.snapshot, record.child_type)
        try:
            rewindable = _require_rewindable(handle)
            rewindable.rewind_id = child_id
            latest = history_lookup(child_id) if (merge and history_lookup is not None) else None
            history, index = self._resolve_history(record, latest, merge)
            rewindable.load_history(history, index)
        except Exception:
            self.teardown(handle)
            raise
        return handle

    def _resolve_history(
        self,
        record: ChildRecord,
        other: Optional[Tuple[Any, ...]],
        merge: bool,
    ) -> Tuple[List[Any], int]:
        """History/index to load for a child.

        With merge, an independently grown history is folded in, as long as
        the merged timeline still has the recorded snapshot at the recorded
        index - otherwise the recorded history is used as-is.
        """
        history = list(record.history)
        if not merge or other is None or entries_equal(other, history):
            return history, record.index
        merged = reconcile(history, other)
        if 0 <= record.index < len(merged) and entries_equal(merged[record.index], record.snapshot):
            return merged, record.index
        logger.debug(f"⏱️ RESTORE: Merged history diverges at index {record.index}, using recorded history")
        return history, record.index


class BubbleController:
    """Propagates child recordings into the parent's history.

    - never: child recordings stay local
    - on_end: parent records once after `settle_ms` without child recordings
    - always: parent records synchronously for every child recording
    """

    def __init__(
        self,
        parent: 'RewindableComposite',
        mode: Union[BubbleMode, str],
        settle_ms: float,
        scheduler: Scheduler,
    ):
        self._parent = parent
        self._mode = BubbleMode.coerce(mode)
        self.settle_ms = settle_ms
        self._scheduler = scheduler
        self._pending: Optional[TimerHandle] = None
        self._watched: List[Rewindable] = []

    @property
    def mode(self) -> BubbleMode:
        return self._mode

    @mode.setter
    def mode(self, value: Union[BubbleMode, str]) -> None:
        self._mode = BubbleMode.coerce(value)
        if self._mode is not BubbleMode.ON_END:
            self.cancel()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def watch(self, child: Rewindable) -> None:
        child.on_recorded(self._on_child_recorded)
        if child not in self._watched:
            self._watched.append(child)

    def unwatch(self, child: Rewindable) -> None:
        child.off_recorded(self._on_child_recorded)
        if child in self._watched:
            self._watched.remove(child)

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def release(self) -> None:
        """Cancel the settle timer and stop listening to every child."""
        self.cancel()
        for child in list(self._watched):
            self.unwatch(child)

    def _on_child_recorded(self, event: RecordedEvent) -> None:
        if self._mode is BubbleMode.NEVER or self._parent.restoring:
            return
        if self._mode is BubbleMode.ALWAYS:
            logger.debug(f"⏱️ BUBBLE: {event.entity_id} -> {self._parent.rewind_id} (always)")
            self._parent.record()
            return

        self.cancel()
        fired = []

        def settle() -> None:
            fired.append(True)
            self._pending = None
            logger.debug(f"⏱️ BUBBLE: children of {self._parent.rewind_id} settled, recording")
            self._record_parent()

        handle = self._scheduler.call_later(self.settle_ms, settle)
        if not fired:
            self._pending = handle

    def flush(self) -> None:
        """Record a still-settling child change now instead of at the deadline."""
        if self._pending is None:
            return
        self.cancel()
        logger.debug(f"⏱️ BUBBLE: Flushing settle timer of {self._parent.rewind_id}")
        self._record_parent()

    def _record_parent(self) -> None:
        try:
            self._parent.record()
        except Exception:
            logger.exception(f"⏱️ BUBBLE: Settle record failed for {self._parent.rewind_id}")


class RewindableComposite(Rewindable):
    """Rewindable for entities that own child Rewindables.

    Args:
        host: Object owning the children
        options: As for Rewindable, plus bubble_mode / bubble_settle
        create_child: Collaborator factory `(initial_state, child_type) -> handle`;
                      the handle must carry a Rewindable
        remove_child: Collaborator teardown hook `(handle) -> None`
        children: Initial children, as handles or (child_id, handle) pairs
        **kwargs: Forwarded to Rewindable (rewind_id, codec, scheduler, history, index)

    Example:
        board_rw = RewindableComposite(board, {'bubble_mode': 'always'},
                                       create_child=make_tile, remove_child=drop_tile)
        board_rw.spawn({'x': 0})
        board_rw.undo()   # tile removed again
    """

    _is_composite = True

    def __init__(
        self,
        host: Any,
        options: Union[RewindOptions, Mapping[str, Any], None] = None,
        *,
        create_child: Optional[CreateChild] = None,
        remove_child: Optional[RemoveChild] = None,
        children: Optional[Iterable[Any]] = None,
        scheduler: Optional[Scheduler] = None,
        record_baseline: bool = True,
        **kwargs: Any,
    ):
        if options is None:
            options = getattr(type(host), 'rewind_options', None)
        options = RewindOptions.coerce(options)
        scheduler = scheduler or get_default_scheduler()

        # Arena and bubbling must exist before the base class captures or restores
        self._manager = CompositeManager(create_child, remove_child, label=kwargs.get("rewind_id") or "")
        self._bubble = BubbleController(
            self, options.bubble_mode or BubbleMode.NEVER, options.bubble_settle, scheduler
        )
        self._manager.on_attach = lambda child_id, child: self._bubble.watch(child)
        self._manager.on_detach = lambda child_id, child: self._bubble.unwatch(child)

        super().__init__(host, options, scheduler=scheduler, record_baseline=False, **kwargs)
        self._manager.label = self.rewind_id

        for child in children or ():
            if isinstance(child, tuple):
                child_id, handle = child
                self.add_child(handle, child_id=child_id, record=False)
            else:
                self.add_child(child, record=False)

        if record_baseline and len(self._store) == 0:
            self.record()

    @property
    def rewind_id(self) -> str:
        return self._rewind_id

    @rewind_id.setter
    def rewind_id(self, value: str) -> None:
        Rewindable.rewind_id.fset(self, value)
        self._manager.label = value

    # ========== CONFIGURATION ==========

    def _default_codec(self) -> Optional[SnapshotCodec]:
        # Local state is optional for composites
        if self.options.observe:
            return AttributeCodec(self.host, self.options.observe)
        if implements_codec(self.host):
            return HostCodec(self.host)
        return None

    @property
    def bubble_mode(self) -> BubbleMode:
        return self._bubble.mode

    @bubble_mode.setter
    def bubble_mode(self, mode: Union[BubbleMode, str]) -> None:
        self._bubble.mode = mode

    @property
    def bubble(self) -> BubbleController:
        return self._bubble

    @property
    def manager(self) -> CompositeManager:
        return self._manager

    # ========== CHILDREN ==========

    @property
    def children(self) -> List[Any]:
        """Child handles in position order."""
        return self._manager.handles

    @property
    def child_ids(self) -> Tuple[str, ...]:
        return self._manager.ids

    def child(self, child_id: str) -> Optional[Any]:
        return self._manager.get(child_id)

    def add_child(
        self,
        handle: Any,
        child_id: Optional[str] = None,
        position: Optional[int] = None,
        record: bool = True,
    ) -> str:
        """Adopt an existing child. Returns its id."""
        rewindable = _require_rewindable(handle)
        child_id = child_id or rewindable.rewind_id
        self._manager.add(child_id, handle, position)
        if record:
            self.record()
        return child_id

    def spawn(
        self,
        initial_state: Any = None,
        child_type: Optional[str] = None,
        position: Optional[int] = None,
    ) -> Any:
        """Create a child through the create_child hook, add it and record."""
        handle = self._manager.create(initial_state, child_type)
        self.add_child(handle, position=position)
        return handle

    def delete(self, child_id: str) -> Any:
        """Remove a child (teardown hook + destroy) and record. Undo re-creates it."""
        handle = self._manager.remove(child_id)
        self._manager.teardown(handle)
        self.record()
        return handle

    def move_child(self, child_id: str, position: int) -> None:
        """Reorder a child and record."""
        self._manager.move(child_id, position)
        self.record()

    # ========== NAVIGATION ==========

    def _navigate(self, offset: int, tag: str) -> bool:
        # Settling child changes become an entry before we move away from them
        self._bubble.flush()
        return super()._navigate(offset, tag)

    def travel(self, index: int) -> bool:
        self._bubble.flush()
        return super().travel(index)

    # ========== ENTRIES ==========

    def capture(self) -> CompositeEntry:
        local = self._codec.snapshot() if self._codec is not None else None
        return CompositeEntry(children=self._manager.snapshot_children(), local=local)

    def _restore_entry(self, entry: Any) -> None:
        if not isinstance(entry, CompositeEntry):
            raise TypeError(f"Composite {self.rewind_id} can't restore {type(entry).__name__}")

        previous_local = self._codec.snapshot() if self._codec is not None else None
        if self._codec is not None and entry.local is not None:
            self._codec.restore(entry.local)
        try:
            self._manager.restore_children(
                entry,
                history_lookup=self._latest_child_history,
                merge=self.options.model is UndoModel.HISTORY,
            )
        except RestoreFailed:
            if self._codec is not None and previous_local is not None:
                self._codec.restore(previous_local)
            raise

    def _latest_child_history(self, child_id: str) -> Optional[Tuple[Any, ...]]:
        """Newest history recorded for child_id anywhere in this timeline."""
        for entry in reversed(self._store.entries):
            if isinstance(entry, CompositeEntry):
                record = entry.get(child_id)
                if record is not None:
                    return record.history
        return None

    # ========== TEARDOWN ==========

    def destroy(self) -> None:
        """Cancel timers, stop bubbling and destroy every child (cascade)."""
        if self._destroyed:
            return
        self._bubble.release()
        for handle in self._manager.clear():
            child = get_rewindable(handle)
            if child is not None:
                child.destroy()
        super().destroy()
