"""
Undo/redo history for trees of stateful entities.

Every entity that opts in gets a Rewindable: an ordered history of
snapshots plus a current index. Entities that own children (composites)
record their complete child topology, so undoing a deletion re-creates
the deleted child with its own history intact.

Key Features:
- Linear (truncating) or history (non-destructive) undo models
- Auto-recording of observed properties, with per-property debounce
- Coalesced actions: a burst of calls (e.g. a drag) becomes one undo step
- Composite entities with never / on_end / always bubbling of child changes
- Atomic restore: a failed undo leaves the entity exactly as it was

Quick Start:
    >>> from rewindstate import Rewindable, observed
    >>>
    >>> class Tile:
    ...     x = observed(0)
    ...     y = observed(0)
    >>>
    >>> tile = Tile()
    >>> rw = Rewindable(tile, {'observe': ['x', 'y']})
    >>> tile.x = 10
    >>> rw.undo()
    True
    >>> tile.x
    0

Modules:
    - history_store: Entries + index, undo models
    - reconciler: Common-prefix merge of divergent histories
    - snapshot_model: Composite entry dataclasses
    - codec: Snapshot codecs (attributes, accessors, host-provided)
    - observed: Setter instrumentation for auto-recorded properties
    - scheduler: Timer sources for debounce and bubble settling
    - options: Per-entity configuration
    - config: Process-wide defaults
    - recorder: When entries are pushed
    - rewindable: Leaf entity handle
    - composite: Child-owning entities and bubbling
"""

__version__ = "0.1.0"

from rewindstate.errors import (
    InvalidConfiguration,
    ReconciliationAmbiguous,
    RestoreFailed,
    RewindError,
)
from rewindstate.history_store import AT_BOUNDARY, HistoryStore, UndoModel, entries_equal
from rewindstate.reconciler import common_prefix_length, reconcile
from rewindstate.snapshot_model import ChildRecord, CompositeEntry
from rewindstate.codec import AccessorCodec, AttributeCodec, HostCodec, SnapshotCodec
from rewindstate.observed import observed, is_observed
from rewindstate.scheduler import AsyncioScheduler, ManualScheduler, Scheduler
from rewindstate.config import (
    get_default_model,
    get_default_scheduler,
    set_default_model,
    set_default_scheduler,
)
from rewindstate.options import BubbleMode, KeyBindings, RewindOptions
from rewindstate.recorder import Recorder
from rewindstate.rewindable import RecordedEvent, Rewindable, get_rewindable
from rewindstate.composite import (
    BubbleController,
    CompositeManager,
    RewindableComposite,
    child_type_of,
)

__all__ = [
    # Errors
    'RewindError',
    'RestoreFailed',
    'InvalidConfiguration',
    'ReconciliationAmbiguous',
    # History
    'AT_BOUNDARY',
    'HistoryStore',
    'UndoModel',
    'entries_equal',
    'reconcile',
    'common_prefix_length',
    'ChildRecord',
    'CompositeEntry',
    # Codecs and instrumentation
    'SnapshotCodec',
    'AttributeCodec',
    'AccessorCodec',
    'HostCodec',
    'observed',
    'is_observed',
    # Scheduling and configuration
    'Scheduler',
    'AsyncioScheduler',
    'ManualScheduler',
    'set_default_scheduler',
    'get_default_scheduler',
    'set_default_model',
    'get_default_model',
    'BubbleMode',
    'KeyBindings',
    'RewindOptions',
    # Entities
    'Recorder',
    'RecordedEvent',
    'Rewindable',
    'RewindableComposite',
    'CompositeManager',
    'BubbleController',
    'get_rewindable',
    'child_type_of',
]
