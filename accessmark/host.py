"""
Host document model.

In-memory implementation of the document contract the annotation core
consumes: a tree of nodes, each with a private key/value data bucket, plus a
"notify user" primitive and an asynchronous font loader.

It reproduces the host behaviors that make node identifiers unfit as stable
keys:
- Identifiers of removed nodes are recycled (lowest freed id first)
- Duplicating a node copies its private data verbatim, annotation ids included

The annotation core only ever talks to these methods, so any real host
adapter exposing the same surface can be swapped in.
"""

import asyncio
import heapq
import logging
from typing import Callable, Dict, Iterator, List, Optional, Sequence

logger = logging.getLogger(__name__)

PAGE_NODE_TYPE = "PAGE"


class HostNode:
    """A node of the host document tree."""

    def __init__(self, document: "HostDocument", node_id: str, name: str, node_type: str):
        self.document = document
        self.id = node_id
        self.name = name
        self.node_type = node_type
        self.parent: Optional["HostNode"] = None
        self.children: List["HostNode"] = []
        self.removed = False
        self._plugin_data: Dict[str, str] = {}

    def __repr__(self) -> str:
        return f"<{self.node_type} {self.id} {self.name!r}>"

    # Private data bucket

    def get_plugin_data(self, key: str) -> str:
        """Return stored value for key, or an empty string when unset."""
        return self._plugin_data.get(key, "")

    def set_plugin_data(self, key: str, value: str) -> None:
        """Store a value. Setting an empty string deletes the key."""
        if not isinstance(value, str):
            raise TypeError(f"Plugin data values must be strings, got {type(value).__name__}")
        if value == "":
            self._plugin_data.pop(key, None)
        else:
            self._plugin_data[key] = value

    def get_plugin_data_keys(self) -> List[str]:
        return sorted(self._plugin_data)

    # Tree

    def append_child(self, child: "HostNode") -> "HostNode":
        return self.insert_child(len(self.children), child)

    def insert_child(self, index: int, child: "HostNode") -> "HostNode":
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.insert(index, child)
        return child

    def create_child(self, name: str, node_type: str = "RECTANGLE") -> "HostNode":
        """Create a node and append it as the last child."""
        return self.append_child(self.document.create_node(name, node_type))

    def remove(self) -> None:
        """Detach this node and its subtree. Their ids become reusable."""
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None
        for node in list(self.walk()):
            self.document._release(node)

    def clone(self) -> "HostNode":
        """
        Duplicate this subtree next to the original.

        The copies get fresh ids but carry the private data verbatim.
        """
        copy = self._copy_subtree()
        if self.parent is not None:
            index = self.parent.children.index(self)
            self.parent.insert_child(index + 1, copy)
        return copy

    def _copy_subtree(self) -> "HostNode":
        copy = self.document.create_node(self.name, self.node_type)
        copy._plugin_data = dict(self._plugin_data)
        for child in self.children:
            copy.append_child(child._copy_subtree())
        return copy

    def walk(self) -> Iterator["HostNode"]:
        """Yield this node then every descendant, depth-first in child order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find_all(self, predicate: Callable[["HostNode"], bool]) -> List["HostNode"]:
        """Descendants (excluding self) matching predicate, in document order."""
        return [node for node in self.walk() if node is not self and predicate(node)]


class HostPage(HostNode):
    """A page. Holds the current selection and page-level data."""

    def __init__(self, document: "HostDocument", node_id: str, name: str):
        super().__init__(document, node_id, name, PAGE_NODE_TYPE)
        self.selection: List[HostNode] = []


class HostDocument:
    """
    Document root: allocates node ids and owns host primitives.

    Args:
        available_fonts: Font families installed in the host. None means all
            requested fonts are available.
    """

    def __init__(self, available_fonts: Optional[Sequence[str]] = None):
        self._nodes: Dict[str, HostNode] = {}
        self._free_ids: List[int] = []
        self._next_id = 1
        self.pages: List[HostPage] = []
        self.notifications: List[str] = []
        self.available_fonts = None if available_fonts is None else set(available_fonts)

    def _allocate_id(self) -> str:
        if self._free_ids:
            number = heapq.heappop(self._free_ids)
        else:
            number = self._next_id
            self._next_id += 1
        return f"0:{number}"

    def _release(self, node: HostNode) -> None:
        if self._nodes.get(node.id) is node:
            del self._nodes[node.id]
            heapq.heappush(self._free_ids, int(node.id.split(":")[1]))
        node.removed = True

    def create_page(self, name: str = "Page 1") -> HostPage:
        page = HostPage(self, self._allocate_id(), name)
        self._nodes[page.id] = page
        self.pages.append(page)
        return page

    def create_node(self, name: str, node_type: str = "RECTANGLE") -> HostNode:
        node = HostNode(self, self._allocate_id(), name, node_type)
        self._nodes[node.id] = node
        return node

    def get_node_by_id(self, node_id: str) -> Optional[HostNode]:
        """Return the live node currently holding this id, or None."""
        return self._nodes.get(node_id)

    def notify(self, message: str) -> None:
        """Show a toast to the user."""
        self.notifications.append(message)

    async def load_font_async(self, fonts: Sequence[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """
        Load the first available font of an ordered list.

        This is a suspension point: control returns to the event loop.
        """
        await asyncio.sleep(0)
        for font in fonts:
            if self.available_fonts is None or font["family"] in self.available_fonts:
                return dict(font)
        logger.warning("None of the requested typefaces are available")
        return None


def find_top_container(node: HostNode) -> Optional[HostNode]:
    """
    Walk up to the direct child of the page that contains node.

    A node sitting directly on the page is its own container. Returns None
    for pages and detached nodes.
    """
    if node.node_type == PAGE_NODE_TYPE:
        return None
    current = node
    while current.parent is not None and current.parent.node_type != PAGE_NODE_TYPE:
        current = current.parent
    if current.parent is None:
        return None
    return current


def find_page(node: HostNode) -> Optional[HostPage]:
    current = node
    while current is not None and current.node_type != PAGE_NODE_TYPE:
        current = current.parent
    return current


def sort_by_document_order(page: HostNode, nodes: Sequence[HostNode]) -> List[HostNode]:
    """Sort nodes by their depth-first position in page."""
    position = {node.id: index for index, node in enumerate(page.walk())}
    return sorted(nodes, key=lambda n: position.get(n.id, len(position)))
