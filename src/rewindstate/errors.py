"""
Error kinds raised by the rewind engine.

Boundary hits (undo with nothing to undo) are not errors: the store returns
the AT_BOUNDARY sentinel and entities return False. Everything here is either
raised to the direct caller of undo/redo/construction or, for
ReconciliationAmbiguous, used as a warning tag in log output.
"""
from typing import Optional


class RewindError(Exception):
    """Base class for rewind engine errors."""


class RestoreFailed(RewindError):
    """A history entry could not be applied to an entity.

    The entity is left at its pre-restore materialized state and its history
    index is unchanged. The original exception is chained as __cause__.
    """

    def __init__(self, message: str, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity_id = entity_id


class InvalidConfiguration(RewindError, ValueError):
    """Unknown option, bad option value or conflicting observe/coalesce entries."""


class ReconciliationAmbiguous(UserWarning):
    """Two histories shared no common prefix; the second one was kept."""
