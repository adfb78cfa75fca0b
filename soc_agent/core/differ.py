# soc_agent/core/differ.py
"""
Snapshot Differ - Compare two snapshots of one category by identity key
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional, Tuple

from soc_agent.schemas.snapshots import SnapshotSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotDiff:
    """Items added, removed and changed between two snapshots"""
    added: Tuple[Any, ...] = ()
    removed: Tuple[Any, ...] = ()
    changed: Tuple[Tuple[Any, Any], ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def index_by_identity(snapshot: Optional[SnapshotSet]) -> Dict[Hashable, Any]:
    """Index items by identity key; a duplicate key keeps the later item"""
    index: Dict[Hashable, Any] = {}
    if snapshot is None:
        return index
    for item in snapshot.items:
        key = item.identity_key
        if key in index:
            logger.warning(f"⚠️ Duplicate identity key in {snapshot.category} snapshot: {key!r} (keeping later item)")
        index[key] = item
    return index


def diff(previous: Optional[SnapshotSet], current: SnapshotSet) -> SnapshotDiff:
    """Compare ``current`` against ``previous``; ``previous=None`` is a baseline"""
    old = index_by_identity(previous)
    new = index_by_identity(current)

    added = []
    changed = []
    for key, item in new.items():
        before = old.get(key)
        if before is None:
            added.append(item)
        elif before.content_key != item.content_key:
            changed.append((before, item))

    removed = [item for key, item in old.items() if key not in new]

    return SnapshotDiff(added=tuple(added), removed=tuple(removed), changed=tuple(changed))
