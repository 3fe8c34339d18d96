"""
Link Registry - stable link ids to live host nodes.

Host node ids are recycled after deletion and copied verbatim on duplicate,
so they cannot key anything that must outlive an edit. Every annotation
instead carries a link id generated by us. The registry maps link ids to the
node that currently carries them:

1. A cached binding is trusted only after checking that the node is still
   live, still on this page, and still carries that link id.
2. Otherwise the container subtree (then the whole page) is scanned for a
   node whose private data carries the link id, and the hit is cached.
3. No hit means the link is orphaned. Orphans are collected over a full
   page scan and pruned in one batch.
"""

import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from ..annotations.models import AnnotationKind, AnnotationRecord, new_link_id
from ..annotations.store import AnnotationRecordStore
from ..errors import OrphanedLinkError
from ..host import HostNode, HostPage, find_page

if TYPE_CHECKING:
    from ..ordering.order_lists import OrderListManager

logger = logging.getLogger(__name__)


class LinkRegistry:
    """
    Resolve-and-cache table from link id to live node, scoped to one page.

    The cache is an optimization only. Node data on the page is the truth,
    so a fresh registry over the same page resolves exactly the same links.
    """

    def __init__(self, page: HostPage, store: AnnotationRecordStore):
        """
        Initialize registry.

        Args:
            page: Page whose nodes carry the links
            store: Record store used to read link data from nodes
        """
        self.page = page
        self.document = page.document
        self.store = store
        # link_id -> node id
        self._bindings: Dict[str, str] = {}
        self._order_lists: Optional["OrderListManager"] = None

    def attach_order_lists(self, order_lists: "OrderListManager") -> None:
        """Order lists that prune() removes orphaned links from."""
        self._order_lists = order_lists

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    def register(self, record: AnnotationRecord) -> str:
        """
        Bind a record's link id to its node.

        A fresh link id is generated (and written to the node) when the
        record has none or when its id is already bound to another live node,
        which happens when the host copied the data onto a duplicate.

        Returns:
            The link id now bound to record.node_id

        Raises:
            OrphanedLinkError: If record.node_id is not a live node
        """
        node = self.document.get_node_by_id(record.node_id)
        if node is None or node.removed:
            raise OrphanedLinkError(record.link_id)

        link_id = record.link_id
        owner = self._bound_node(link_id) if link_id else None
        if not link_id or (owner is not None and owner is not node):
            link_id = new_link_id()
            self.store.relink(node, record.kind, link_id)
            logger.info(f"Issued new link {link_id} for {record.kind.value} on node {node.id}")

        self._bindings[link_id] = node.id
        return link_id

    def resolve(self, link_id: str, container: Optional[HostNode] = None) -> Optional[HostNode]:
        """
        Find the live node carrying link_id.

        Args:
            link_id: Link to resolve
            container: Subtree to scan first when there is no valid binding

        Returns:
            The node, or None when the link is orphaned
        """
        node = self._bound_node(link_id)
        if node is not None:
            return node
        self._bindings.pop(link_id, None)

        scopes: List[HostNode] = []
        if container is not None and not container.removed and container is not self.page:
            scopes.append(container)
        scopes.append(self.page)

        for scope in scopes:
            for candidate in scope.walk():
                if self.store.kind_for_link(candidate, link_id) is not None:
                    self._bindings[link_id] = candidate.id
                    return candidate

        logger.debug(f"Link {link_id} has no live node")
        return None

    def resolve_or_raise(self, link_id: str, container: Optional[HostNode] = None) -> HostNode:
        """
        Resolve a link, raising if it is orphaned.

        Raises:
            OrphanedLinkError: If no live node carries link_id
        """
        node = self.resolve(link_id, container)
        if node is None:
            raise OrphanedLinkError(link_id)
        return node

    def rebind(self, link_id: str, node: HostNode) -> None:
        """
        Point link_id at a different live node.

        Raises:
            OrphanedLinkError: If node does not carry link_id
        """
        if node.removed or self.store.kind_for_link(node, link_id) is None:
            raise OrphanedLinkError(link_id)
        self._bindings[link_id] = node.id

    def forget(self, link_id: str) -> None:
        """Drop a cached binding."""
        self._bindings.pop(link_id, None)

    def bound_links(self) -> List[str]:
        return sorted(self._bindings)

    # ------------------------------------------------------------------
    # Orphans and duplicates
    # ------------------------------------------------------------------

    def collect_orphans(self, container: Optional[HostNode] = None) -> List[str]:
        """
        Scan order lists for links without a live node.

        Args:
            container: Restrict the scan to one container (default: whole page)

        Returns:
            Orphaned link ids in discovery order, without duplicates
        """
        if self._order_lists is None:
            return []

        orphans: "OrderedDict[str, None]" = OrderedDict()
        for list_container, _kind, link_ids in self._order_lists.iter_lists(container):
            for link_id in link_ids:
                if link_id in orphans:
                    continue
                if self.resolve(link_id, list_container) is None:
                    orphans[link_id] = None
        return list(orphans)

    def prune(self, stale_link_ids: Iterable[str]) -> int:
        """
        Remove orphaned links in one batch.

        Each link that still does not resolve is dropped from every order
        list (which renumbers them) and from the binding cache. Links that
        resolve again are left alone.

        Args:
            stale_link_ids: Candidate orphans, usually from collect_orphans()

        Returns:
            Number of orphans removed
        """
        removed = 0
        for link_id in dict.fromkeys(stale_link_ids):
            if self.resolve(link_id) is not None:
                continue
            if self._order_lists is not None:
                self._order_lists.discard(link_id)
            self._bindings.pop(link_id, None)
            removed += 1

        if removed:
            logger.warning(f"Pruned {removed} orphaned link(s) on page {self.page.id}")
        return removed

    def reconcile_duplicates(self, container: Optional[HostNode] = None) -> int:
        """
        Strip annotation data the host copied onto duplicated nodes.

        For every link id carried by more than one node, the bound node (or
        the first in document order) keeps it; each copy loses that record.

        Returns:
            Number of copies stripped
        """
        scope = container if container is not None else self.page
        carriers: "OrderedDict[Tuple[AnnotationKind, str], List[HostNode]]" = OrderedDict()
        for node in scope.walk():
            for kind in AnnotationKind:
                link_id = self.store.link_id_of(node, kind)
                if link_id:
                    carriers.setdefault((kind, link_id), []).append(node)

        stripped = 0
        for (kind, link_id), nodes in carriers.items():
            if len(nodes) < 2:
                continue
            bound = self._bound_node(link_id)
            keeper = bound if bound in nodes else nodes[0]
            for node in nodes:
                if node is not keeper:
                    self.store.remove(node, kind)
                    stripped += 1
            self._bindings[link_id] = keeper.id

        if stripped:
            logger.warning(f"Stripped {stripped} copied annotation(s) from duplicated nodes")
        return stripped

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bound_node(self, link_id: str) -> Optional[HostNode]:
        node_id = self._bindings.get(link_id)
        if node_id is None:
            return None
        node = self.document.get_node_by_id(node_id)
        if node is None or node.removed:
            return None
        # Ids are recycled: the node holding this id may be a stranger
        if self.store.kind_for_link(node, link_id) is None:
            return None
        if find_page(node) is not self.page:
            return None
        return node
