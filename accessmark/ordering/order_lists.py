"""
Order List Manager - Per-Container Tab and Reading Order

One order list exists per (container, kind): a JSON array of link ids on the
container node. List position IS the semantic order (tab order for keystops,
reading order for headings), independent of z-order.

Rules:
- Every mutation ends with a renumber: record `order` == list position,
  0-based, contiguous, no gaps, no duplicates
- Lists are created on first insert and deleted when emptied
- Moving past the end clamps to append; negative indices clamp to 0
- An entry lives in the list of the container its node sits under; reconcile()
  moves entries after the host reparents, copies or restores nodes
- Mutations are transactional: if any step raises, every private data value
  on the page is restored to what it was before the transaction began
- No awaits in here. Callers finish all mutation before their first
  suspension point.
"""

import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from ..annotations.models import AnnotationKind
from ..annotations.store import AnnotationRecordStore
from ..errors import AnnotationNotFoundError, DuplicateOrderError
from ..host import HostNode, find_top_container
from ..links.registry import LinkRegistry

logger = logging.getLogger(__name__)


def list_dataset(kind: AnnotationKind) -> str:
    return f"{AnnotationKind(kind).value}List"


def _clamp(index: int, upper: int) -> int:
    return max(0, min(index, upper))


class OrderListManager:
    """
    Maintains order lists for every container of one page.

    Args:
        registry: Link registry of the page. The manager attaches itself so
            that registry pruning removes orphans from every list.
        store: Record store used to write `order` onto records
    """

    def __init__(self, registry: LinkRegistry, store: AnnotationRecordStore):
        self.registry = registry
        self.store = store
        self.page = registry.page
        self.settings = store.settings
        self._depth = 0
        registry.attach_order_lists(self)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, container: HostNode, kind: AnnotationKind) -> List[str]:
        """Link ids of one list, in order. Missing list -> []."""
        raw = container.get_plugin_data(self.settings.key(list_dataset(kind)))
        if not raw:
            return []
        link_ids = json.loads(raw)
        if not isinstance(link_ids, list):
            raise ValueError(f"Invalid {AnnotationKind(kind).value} list on container {container.id}")
        return [str(link_id) for link_id in link_ids]

    def containers(self, kind: Optional[AnnotationKind] = None) -> List[HostNode]:
        """Containers of the page that hold a list (of kind, or of any kind)."""
        kinds = [AnnotationKind(kind)] if kind is not None else list(AnnotationKind)
        return [
            child for child in self.page.children
            if any(child.get_plugin_data(self.settings.key(list_dataset(k))) for k in kinds)
        ]

    def iter_lists(
        self, container: Optional[HostNode] = None
    ) -> Iterator[Tuple[HostNode, AnnotationKind, List[str]]]:
        """Yield (container, kind, link_ids) for every non-empty list."""
        scope = [container] if container is not None else self.containers()
        for node in scope:
            for kind in AnnotationKind:
                link_ids = self.get(node, kind)
                if link_ids:
                    yield node, kind, link_ids

    def locate(self, link_id: str) -> Optional[Tuple[HostNode, AnnotationKind, int]]:
        """Find the list holding link_id: (container, kind, index), or None."""
        for container, kind, link_ids in self.iter_lists():
            if link_id in link_ids:
                return container, kind, link_ids.index(link_id)
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def insert(
        self,
        container: HostNode,
        kind: AnnotationKind,
        link_id: str,
        at_index: Optional[int] = None,
    ) -> int:
        """
        Insert a link into a list.

        Args:
            container: Container node owning the list
            kind: Annotation kind of the list
            link_id: Link to insert
            at_index: Position (default: append). Clamped to [0, len].

        Returns:
            The order assigned to link_id. A link already in the list keeps
            its position.
        """
        with self.transaction():
            link_ids = self.get(container, kind)
            if link_id in link_ids:
                logger.debug(f"Link {link_id} already in {AnnotationKind(kind).value} list of {container.id}")
                return link_ids.index(link_id)

            index = len(link_ids) if at_index is None else _clamp(at_index, len(link_ids))
            link_ids.insert(index, link_id)
            self._write_list(container, kind, link_ids)
            self.renumber(container, kind)
        return index

    def remove(self, container: HostNode, kind: AnnotationKind, link_id: str) -> None:
        """Remove a link from a list. Absent links are ignored."""
        with self.transaction():
            link_ids = self.get(container, kind)
            if link_id not in link_ids:
                return
            link_ids = [existing for existing in link_ids if existing != link_id]
            self._write_list(container, kind, link_ids)
            self.renumber(container, kind)

    def move(self, container: HostNode, kind: AnnotationKind, link_id: str, to_index: int) -> int:
        """
        Move a link to a new position.

        Returns:
            The new order of link_id

        Raises:
            AnnotationNotFoundError: If link_id is not in the list
        """
        with self.transaction():
            link_ids = self.get(container, kind)
            if link_id not in link_ids:
                raise AnnotationNotFoundError(link_id)
            link_ids.remove(link_id)
            index = _clamp(to_index, len(link_ids))
            link_ids.insert(index, link_id)
            self._write_list(container, kind, link_ids)
            self.renumber(container, kind)
        return index

    def renumber(self, container: HostNode, kind: AnnotationKind) -> None:
        """
        Reassign every record's order to its list position.

        Duplicate list entries are collapsed (first occurrence wins) before
        numbering. Links without a live node keep their slot until pruned.
        """
        kind = AnnotationKind(kind)
        with self.transaction():
            link_ids = list(dict.fromkeys(self.get(container, kind)))
            self._write_list(container, kind, link_ids)
            for position, link_id in enumerate(link_ids):
                node = self.registry.resolve(link_id, container)
                if node is None:
                    continue
                self.store.set_order(node, kind, position)

    def discard(self, link_id: str) -> int:
        """
        Remove a link from every list of the page.

        Returns:
            Number of lists it was removed from
        """
        removed = 0
        with self.transaction():
            for container, kind, link_ids in list(self.iter_lists()):
                if link_id in link_ids:
                    self.remove(container, kind, link_id)
                    removed += 1
        return removed

    def verify(self, container: HostNode, kind: AnnotationKind) -> bool:
        """
        Check a list for duplicate or inconsistent orders and heal it.

        Returns:
            True if a repair (renumber) was needed
        """
        kind = AnnotationKind(kind)
        link_ids = self.get(container, kind)
        problems = []
        if len(set(link_ids)) != len(link_ids):
            problems.append("list has repeated entries")

        claimed: Dict[int, str] = {}
        for position, link_id in enumerate(link_ids):
            node = self.registry.resolve(link_id, container)
            record = self.store.get(node, kind) if node is not None else None
            if record is None:
                continue
            if record.order in claimed:
                problems.append(f"{claimed[record.order]} and {link_id} both claim {record.order}")
            claimed.setdefault(record.order, link_id)
            if record.order != position:
                problems.append(f"{link_id} stores {record.order} at position {position}")

        if not problems:
            return False

        error = DuplicateOrderError(container.id, kind.value, "; ".join(problems))
        logger.warning(f"{error} - renumbering")
        self.renumber(container, kind)
        return True

    def verify_all(self) -> int:
        """Verify every list of the page. Returns the number repaired."""
        repaired = 0
        for container, kind, _link_ids in list(self.iter_lists()):
            if self.verify(container, kind):
                repaired += 1
        return repaired

    def reconcile(self) -> int:
        """
        Bring list membership back in line with where annotated nodes live.

        Host edits change membership behind our back:
        1. A node moved under another container: its entry moves to that
           container's list and the record's container follows.
        2. A container duplicated with its list: the copy's entries point at
           nodes of the original and are dropped from the copy.
        3. A node restored by undo after its entry was pruned: the live
           record is registered again and appended to its container's list.

        Orphaned entries are left in place for prune().

        Returns:
            Number of entries moved, dropped or added
        """
        changed = 0
        with self.transaction():
            relocate: List[Tuple[HostNode, HostNode, AnnotationKind, str]] = []
            for container, kind, link_ids in list(self.iter_lists()):
                keep = []
                for link_id in link_ids:
                    node = self.registry.resolve(link_id, container)
                    home = find_top_container(node) if node is not None else None
                    if home is None or home is container:
                        keep.append(link_id)
                    else:
                        relocate.append((container, home, kind, link_id))
                if len(keep) != len(link_ids):
                    self._write_list(container, kind, keep)
                    self.renumber(container, kind)
                    changed += len(link_ids) - len(keep)

            for source, home, kind, link_id in relocate:
                if link_id in self.get(home, kind):
                    logger.warning(f"Dropped copied {kind.value} link {link_id} from container {source.id}")
                    continue
                self.insert(home, kind, link_id)
                logger.warning(f"Moved {kind.value} link {link_id} from container {source.id} to {home.id}")

            listed = {link_id for _container, _kind, link_ids in self.iter_lists() for link_id in link_ids}
            for node in list(self.page.walk()):
                container = find_top_container(node)
                if container is None:
                    continue
                for record in self.store.records_for(node):
                    if record.link_id in listed:
                        continue
                    link_id = self.registry.register(record)
                    self.insert(container, record.kind, link_id)
                    listed.add(link_id)
                    changed += 1
                    logger.warning(f"Relisted {record.kind.value} link {link_id} on node {node.id}")

            for container, kind, link_ids in list(self.iter_lists()):
                for link_id in link_ids:
                    node = self.registry.resolve(link_id, container)
                    record = self.store.get(node, kind) if node is not None else None
                    if record is None or record.link_id != link_id or record.container_id == container.id:
                        continue
                    self.store.set(node, kind, record.payload, container_id=container.id)
        return changed

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self):
        """
        Context manager for all-or-nothing mutation of page data.

        Nested transactions join the outermost one. On exception the private
        data of every node on the page is restored and the error re-raised.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        saved = self._capture()
        self._depth = 1
        try:
            yield
        except Exception:
            self._restore(saved)
            logger.warning(f"Rolled back order list changes on page {self.page.id}")
            raise
        finally:
            self._depth = 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write_list(self, container: HostNode, kind: AnnotationKind, link_ids: List[str]) -> None:
        value = json.dumps(link_ids) if link_ids else ""
        container.set_plugin_data(self.settings.key(list_dataset(kind)), value)

    def _capture(self) -> List[Tuple[HostNode, Dict[str, str]]]:
        return [
            (node, {key: node.get_plugin_data(key) for key in node.get_plugin_data_keys()})
            for node in self.page.walk()
        ]

    def _restore(self, saved: List[Tuple[HostNode, Dict[str, str]]]) -> None:
        for node, data in saved:
            for key in node.get_plugin_data_keys():
                if key not in data:
                    node.set_plugin_data(key, "")
            for key, value in data.items():
                node.set_plugin_data(key, value)
