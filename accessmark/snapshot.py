"""
Page Snapshot - Point-in-time capture of annotation state.

A snapshot freezes every live annotation of a page together with the order
lists that place it. It is a diff baseline only: node data on the page stays
authoritative, and a lost or corrupt baseline just makes the next diff report
everything as added.

Rules:
- snapshot_id is deterministic from content (same state -> same id)
- generated_at is informational only, not part of the content hash
- Snapshots are immutable after creation
- Orphaned list entries are left out (they are pruned, not captured)
- The stored baseline is split into one page key per kind
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .annotations.models import AnnotationKind
from .annotations.store import AnnotationRecordStore
from .host import HostPage
from .links.registry import LinkRegistry
from .ordering.order_lists import OrderListManager
from .settings import DEFAULT_SETTINGS, PluginSettings

logger = logging.getLogger(__name__)


def snapshot_dataset(kind: AnnotationKind) -> str:
    return f"{AnnotationKind(kind).value}Annotations"


@dataclass(frozen=True)
class SnapshotEntry:
    """
    One annotation as captured.

    Attributes:
        link_id: Stable link id
        kind: Annotation kind
        container_id: Id of the container whose list holds the link
        order: Position in that list
        payload: Payload as plain JSON data, compared by value
        node_id: Node bound at capture time (informational, not compared)
    """

    link_id: str
    kind: AnnotationKind
    container_id: str
    order: int
    payload: Dict[str, Any]
    node_id: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link_id": self.link_id,
            "kind": self.kind.value,
            "container_id": self.container_id,
            "order": self.order,
            "payload": self.payload,
            "node_id": self.node_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotEntry":
        return cls(
            link_id=data["link_id"],
            kind=AnnotationKind(data["kind"]),
            container_id=data["container_id"],
            order=int(data["order"]),
            payload=dict(data.get("payload") or {}),
            node_id=data.get("node_id"),
        )


@dataclass(frozen=True)
class PageSnapshot:
    """
    Immutable capture of a page's annotations.

    Attributes:
        snapshot_id: SHA256 of the canonical content
        generated_at: ISO-8601 UTC timestamp (informational only)
        entries: Captured annotations keyed by link id
        lists: Order lists keyed by (container_id, kind)
    """

    snapshot_id: str
    generated_at: str
    entries: Dict[str, SnapshotEntry]
    lists: Dict[Tuple[str, AnnotationKind], Tuple[str, ...]]

    @property
    def link_ids(self) -> List[str]:
        return sorted(self.entries)

    def get(self, link_id: str) -> Optional[SnapshotEntry]:
        return self.entries.get(link_id)

    def of_kind(self, kind: AnnotationKind) -> "PageSnapshot":
        """Sub-snapshot holding only one kind."""
        kind = AnnotationKind(kind)
        return build_snapshot(
            (entry for entry in self.entries.values() if entry.kind is kind),
            {key: ids for key, ids in self.lists.items() if key[1] is kind},
            generated_at=self.generated_at,
        )

    def content(self) -> Dict[str, Any]:
        """Canonical, JSON-ready content (everything but ids and timestamps)."""
        return {
            "entries": [self.entries[link_id].to_dict() for link_id in sorted(self.entries)],
            "lists": [
                {"container_id": container_id, "kind": kind.value, "link_ids": list(link_ids)}
                for (container_id, kind), link_ids in sorted(
                    self.lists.items(), key=lambda item: (item[0][0], item[0][1].value)
                )
            ],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "generated_at": self.generated_at,
            **self.content(),
        }


def _compute_snapshot_id(content: Dict[str, Any]) -> str:
    # node_id is volatile across host sessions, keep it out of the hash
    hashable = {
        "entries": [
            {k: v for k, v in entry.items() if k != "node_id"} for entry in content["entries"]
        ],
        "lists": content["lists"],
    }
    canonical_json = json.dumps(hashable, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def build_snapshot(
    entries: Iterable[SnapshotEntry],
    lists: Optional[Dict[Tuple[str, AnnotationKind], Iterable[str]]] = None,
    generated_at: Optional[str] = None,
) -> PageSnapshot:
    """
    Create a snapshot from entries and lists.

    Raises:
        ValueError: If two entries share a link id
    """
    by_link: Dict[str, SnapshotEntry] = {}
    for entry in entries:
        if entry.link_id in by_link:
            raise ValueError(f"Duplicate link id in snapshot: {entry.link_id}")
        by_link[entry.link_id] = entry

    frozen_lists = {
        (container_id, AnnotationKind(kind)): tuple(link_ids)
        for (container_id, kind), link_ids in (lists or {}).items()
    }

    draft = PageSnapshot(snapshot_id="-", generated_at="-", entries=by_link, lists=frozen_lists)
    return PageSnapshot(
        snapshot_id=_compute_snapshot_id(draft.content()),
        generated_at=generated_at or datetime.now(timezone.utc).isoformat(),
        entries=by_link,
        lists=frozen_lists,
    )


def empty_snapshot() -> PageSnapshot:
    return build_snapshot([])


def capture_snapshot(
    page: HostPage,
    store: AnnotationRecordStore,
    order_lists: OrderListManager,
    registry: LinkRegistry,
) -> PageSnapshot:
    """
    Capture the live annotation state of a page.

    Walks every order list, resolves each link through the registry and reads
    its record. Entries take their order from list position.

    Args:
        page: Page to capture
        store: Record store for reading payloads
        order_lists: Order lists of the page
        registry: Link registry of the page

    Returns:
        Immutable PageSnapshot
    """
    entries: List[SnapshotEntry] = []
    lists: Dict[Tuple[str, AnnotationKind], List[str]] = {}

    for container, kind, link_ids in order_lists.iter_lists():
        captured = []
        for position, link_id in enumerate(link_ids):
            node = registry.resolve(link_id, container)
            record = store.get(node, kind) if node is not None else None
            if record is None or record.link_id != link_id:
                logger.debug(f"Skipping unresolved {kind.value} link {link_id} during capture")
                continue
            captured.append(link_id)
            entries.append(SnapshotEntry(
                link_id=link_id,
                kind=kind,
                container_id=container.id,
                order=position,
                payload=record.payload.model_dump(mode="json"),
                node_id=node.id,
            ))
        if captured:
            lists[(container.id, kind)] = captured

    return build_snapshot(entries, lists)


# =============================================================================
# Stored baseline
# =============================================================================

def snapshot_from_dict(data: Dict[str, Any]) -> PageSnapshot:
    """Rebuild a snapshot from to_dict() output. The id is recomputed."""
    entries = [SnapshotEntry.from_dict(entry) for entry in data.get("entries", [])]
    lists = {
        (item["container_id"], AnnotationKind(item["kind"])): item["link_ids"]
        for item in data.get("lists", [])
    }
    return build_snapshot(entries, lists, generated_at=data.get("generated_at"))


def load_snapshot(page: HostPage, settings: PluginSettings = DEFAULT_SETTINGS) -> PageSnapshot:
    """
    Read the stored baseline of a page.

    A missing kind contributes nothing. Unreadable data is logged and treated
    as missing, so the next diff redraws everything of that kind.
    """
    entries: List[SnapshotEntry] = []
    lists: Dict[Tuple[str, AnnotationKind], Iterable[str]] = {}
    generated_at = None

    for kind in AnnotationKind:
        raw = page.get_plugin_data(settings.key(snapshot_dataset(kind)))
        if not raw:
            continue
        try:
            part = snapshot_from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable {kind.value} baseline on page {page.id}: {e}")
            continue
        entries.extend(part.entries.values())
        lists.update(part.lists)
        generated_at = generated_at or part.generated_at

    return build_snapshot(entries, lists, generated_at=generated_at)


def save_snapshot(
    page: HostPage,
    snapshot: PageSnapshot,
    settings: PluginSettings = DEFAULT_SETTINGS,
) -> None:
    """Replace the stored baseline of a page with snapshot."""
    for kind in AnnotationKind:
        part = snapshot.of_kind(kind)
        value = json.dumps(part.to_dict(), sort_keys=True) if part.entries else ""
        page.set_plugin_data(settings.key(snapshot_dataset(kind)), value)
    logger.debug(f"Saved snapshot {snapshot.snapshot_id[:12]} on page {page.id}")
