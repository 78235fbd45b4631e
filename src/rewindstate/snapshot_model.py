"""
History entry dataclasses for composite (child-owning) entities.

A leaf entity's history entry is simply the snapshot value its codec
produced. A composite entity's entry is a CompositeEntry: the complete,
reconstructable topology of its children at one point in time, plus the
composite's own local snapshot if it observes any properties itself.

Design Philosophy: Correct by Construction
- Immutable entries (frozen dataclasses, tuples instead of lists)
- Children referenced by id only - never by object
- Structural equality, so the history store can suppress no-change records
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple


@dataclass(frozen=True)
class ChildRecord:
    """Immutable record of one child inside a composite entry.

    Captures the child's own timeline (history + index) so a child that was
    destroyed can be re-created exactly as it was. `snapshot` is always
    `history[index]`, kept separately for cheap comparisons and as the
    initial state handed to the create_child collaborator.
    """
    child_type: str
    position: int
    snapshot: Any
    history: Tuple[Any, ...]
    index: int


@dataclass(frozen=True)
class CompositeEntry:
    """Immutable snapshot of a composite's children at a point in time.

    Ordered by position - iteration order is the visual order.
    """
    children: Tuple[Tuple[str, ChildRecord], ...] = ()
    local: Any = None

    def __post_init__(self):
        # Normalize to tuples so list input still compares/behaves immutably
        object.__setattr__(self, 'children', tuple((cid, rec) for cid, rec in self.children))

    def __iter__(self) -> Iterator[Tuple[str, ChildRecord]]:
        return iter(self.children)

    def __len__(self) -> int:
        return len(self.children)

    def __contains__(self, child_id: object) -> bool:
        return any(cid == child_id for cid, _ in self.children)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(cid for cid, _ in self.children)

    def get(self, child_id: str) -> Optional[ChildRecord]:
        """Record for child_id, or None if the child is absent at this point."""
        for cid, record in self.children:
            if cid == child_id:
                return record
        return None

    def to_dict(self) -> Dict:
        """Export to JSON-serializable dict (snapshots must be plain data)."""
        return {
            'local': self.local,
            'children': [
                {
                    'id': cid,
                    'type': rec.child_type,
                    'position': rec.position,
                    'snapshot': rec.snapshot,
                    'history': list(rec.history),
                    'index': rec.index,
                }
                for cid, rec in self.children
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CompositeEntry':
        """Import from dict (e.g., produced by to_dict)."""
        children = tuple(
            (
                child['id'],
                ChildRecord(
                    child_type=child['type'],
                    position=child['position'],
                    snapshot=child['snapshot'],
                    history=tuple(child['history']),
                    index=child['index'],
                ),
            )
            for child in data['children']
        )
        return cls(children=children, local=data.get('local'))
