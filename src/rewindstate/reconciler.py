"""
Reconciler: fold two divergent history sequences into one.

Used when a child that was detached and re-created has a history that grew
independently of the one its parent recorded. The merge keeps the longest
common prefix and appends the second sequence's unique suffix:

    reconcile([A, B, C], [A, B, D, E]) -> [A, B, D, E]

Divergence past the prefix is linearized, not kept as a branch. With no
common prefix at all the second sequence wins outright and the first one is
dropped - logged as a warning since undo steps may be lost.
"""
import logging
from typing import Any, List, Sequence

from rewindstate.errors import ReconciliationAmbiguous

logger = logging.getLogger(__name__)


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(_same(x, y) for x, y in zip(a, b))
    return a is b or a == b


def common_prefix_length(a: Sequence[Any], b: Sequence[Any]) -> int:
    """Largest k such that a[:k] and b[:k] are pairwise equal."""
    k = 0
    for x, y in zip(a, b):
        if not _same(x, y):
            break
        k += 1
    return k


def reconcile(a: Sequence[Any], b: Sequence[Any]) -> List[Any]:
    """Merge two entry sequences by common-prefix matching.

    Args:
        a: Sequence to keep the shared prefix from (e.g. the recorded history)
        b: Sequence whose suffix wins after the prefix (e.g. the newer history)

    Returns:
        a[:k] + b[k:] where k is the common prefix length; list(b) when k == 0.
    """
    k = common_prefix_length(a, b)
    if k == 0:
        if a and b:
            logger.warning(
                f"{ReconciliationAmbiguous.__name__}: no common prefix, "
                f"keeping second history ({len(b)} entries), discarding {len(a)}"
            )
        elif a:
            logger.warning(
                f"{ReconciliationAmbiguous.__name__}: second history is empty, "
                f"discarding {len(a)} entries"
            )
        return list(b)
    return list(a[:k]) + list(b[k:])
