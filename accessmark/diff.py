"""
Snapshot Diff - Classify every annotation between two snapshots.

Every link id present in either snapshot lands in exactly one class:

- added:     only in current
- removed:   only in previous
- updated:   in both, payload differs (wins when order/container also differ)
- moved:     in both, same payload, different order or container
- unchanged: in both, nothing differs

Payloads are compared by value. Output tuples are sorted by link id, so the
same two snapshots always give the same result.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from .snapshot import PageSnapshot, SnapshotEntry

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MOVED = "moved"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class DiffResult:
    """
    Immutable classification of two snapshots.

    Attributes:
        from_snapshot: snapshot_id of the previous snapshot
        to_snapshot: snapshot_id of the current snapshot
        added/removed/moved/updated/unchanged: Sorted link ids per class
        previous/current: The compared snapshots (not part of equality)
    """

    from_snapshot: str
    to_snapshot: str
    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    moved: Tuple[str, ...] = ()
    updated: Tuple[str, ...] = ()
    unchanged: Tuple[str, ...] = ()
    previous: Optional[PageSnapshot] = field(default=None, compare=False, repr=False)
    current: Optional[PageSnapshot] = field(default=None, compare=False, repr=False)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.moved or self.updated)

    def classification(self) -> Dict[str, ChangeKind]:
        """Map of link id -> class."""
        result: Dict[str, ChangeKind] = {}
        for change in ChangeKind:
            for link_id in getattr(self, change.value):
                result[link_id] = change
        return result

    def entry(self, link_id: str) -> Optional[SnapshotEntry]:
        """Current entry of a link, or its previous entry when removed."""
        if self.current is not None and link_id in self.current.entries:
            return self.current.entries[link_id]
        if self.previous is not None:
            return self.previous.entries.get(link_id)
        return None

    def summary(self) -> Dict[str, int]:
        return {change.value: len(getattr(self, change.value)) for change in ChangeKind}


def classify(previous: Optional[SnapshotEntry], current: Optional[SnapshotEntry]) -> ChangeKind:
    """Classify one link given its previous and current entries."""
    if previous is None and current is None:
        raise ValueError("At least one entry is required")
    if previous is None:
        return ChangeKind.ADDED
    if current is None:
        return ChangeKind.REMOVED
    # Kind never changes for a link; a mismatch is treated as new content
    if previous.payload != current.payload or previous.kind != current.kind:
        return ChangeKind.UPDATED
    if previous.order != current.order or previous.container_id != current.container_id:
        return ChangeKind.MOVED
    return ChangeKind.UNCHANGED


def diff_snapshots(previous: PageSnapshot, current: PageSnapshot) -> DiffResult:
    """
    Compute the diff between two snapshots.

    Args:
        previous: Baseline snapshot
        current: Freshly captured snapshot

    Returns:
        DiffResult with every link id of either snapshot classified once
    """
    buckets: Dict[ChangeKind, list] = {change: [] for change in ChangeKind}
    for link_id in sorted(set(previous.entries) | set(current.entries)):
        change = classify(previous.entries.get(link_id), current.entries.get(link_id))
        buckets[change].append(link_id)

    result = DiffResult(
        from_snapshot=previous.snapshot_id,
        to_snapshot=current.snapshot_id,
        added=tuple(buckets[ChangeKind.ADDED]),
        removed=tuple(buckets[ChangeKind.REMOVED]),
        moved=tuple(buckets[ChangeKind.MOVED]),
        updated=tuple(buckets[ChangeKind.UPDATED]),
        unchanged=tuple(buckets[ChangeKind.UNCHANGED]),
        previous=previous,
        current=current,
    )
    logger.debug(f"Diff {previous.snapshot_id[:12]} -> {current.snapshot_id[:12]}: {result.summary()}")
    return result
