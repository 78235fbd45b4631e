"""
Process-wide defaults for the rewind engine.

Entities pick these up when they are constructed without an explicit
scheduler or undo model. Tests reset them through the setters.
"""
from typing import Any, Optional

from rewindstate.history_store import UndoModel
from rewindstate.scheduler import AsyncioScheduler, Scheduler

_default_scheduler: Optional[Scheduler] = None
_default_model: UndoModel = UndoModel.LINEAR


def set_default_scheduler(scheduler: Optional[Scheduler]) -> None:
    """Set the scheduler used for debounce/settle timers.

    Args:
        scheduler: Scheduler instance, or None to restore the asyncio default
    """
    global _default_scheduler
    _default_scheduler = scheduler


def get_default_scheduler() -> Scheduler:
    """Get the default scheduler, creating the asyncio one on first use."""
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = AsyncioScheduler()
    return _default_scheduler


def set_default_model(model: Any) -> None:
    """Set the undo model used when options don't name one."""
    global _default_model
    _default_model = UndoModel.coerce(model)


def get_default_model() -> UndoModel:
    return _default_model
