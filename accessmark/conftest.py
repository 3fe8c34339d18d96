"""
Pytest fixtures shared by the annotation test suite.
"""

from typing import Optional

import pytest

from accessmark.annotations.models import AnnotationKind, default_payload
from accessmark.annotations.store import AnnotationRecordStore
from accessmark.host import HostDocument, HostNode, find_top_container
from accessmark.links.registry import LinkRegistry
from accessmark.ordering.order_lists import OrderListManager


@pytest.fixture
def document():
    """Host document with every typeface available."""
    return HostDocument()


@pytest.fixture
def page(document):
    return document.create_page("Page 1")


@pytest.fixture
def frame(page):
    """Top-level container on the page."""
    return page.create_child("Checkout", "FRAME")


@pytest.fixture
def store():
    return AnnotationRecordStore()


@pytest.fixture
def registry(page, store):
    return LinkRegistry(page, store)


@pytest.fixture
def order_lists(registry, store):
    return OrderListManager(registry, store)


@pytest.fixture
def annotate(store, registry, order_lists):
    """
    Annotate a node the way add-stop does: write the record, register the
    link and append it to its container's list. Returns the link id.
    """

    def _annotate(node: HostNode, kind: AnnotationKind = AnnotationKind.KEYSTOP, payload: Optional[dict] = None) -> str:
        container = find_top_container(node)
        record = store.set(node, kind, payload if payload is not None else default_payload(kind), container_id=container.id)
        link_id = registry.register(record)
        order_lists.insert(container, kind, link_id)
        return link_id

    return _annotate
