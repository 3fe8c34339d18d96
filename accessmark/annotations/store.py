"""
Annotation Record Store - Node-Backed JSON Records

Purpose: Read and write the accessibility payload attached to a single node.

Each record lives in the node's private data bucket under a versioned,
per-kind key. A second per-kind key carries only the link id, which is what
the link registry scans for. Bundles are derived from the records present on
a node and rewritten whenever those change.

Rules:
- set() is idempotent for the same (node, kind, payload)
- remove() on an absent record is a no-op
- Corrupt record data fails LOUDLY
"""

import json
import logging
from itertools import combinations
from typing import Any, List, Optional

from ..constants import DATASET_BUNDLE
from ..errors import InvalidPayloadError
from ..host import HostNode, find_top_container
from ..settings import DEFAULT_SETTINGS, PluginSettings
from .models import (
    AnnotationKind,
    AnnotationRecord,
    Bundle,
    new_link_id,
    parse_payload,
)

logger = logging.getLogger(__name__)


def node_data_dataset(kind: AnnotationKind) -> str:
    return f"{AnnotationKind(kind).value}NodeData"


def link_dataset(kind: AnnotationKind) -> str:
    kind = AnnotationKind(kind)
    # Keystop links predate the per-kind naming
    if kind is AnnotationKind.KEYSTOP:
        return "linkId"
    return f"{kind.value}LinkId"


class AnnotationRecordStore:
    """
    Reads and writes annotation records on host nodes.

    The host's node data is authoritative. This store keeps no state of its
    own beyond the settings that name its keys.
    """

    def __init__(self, settings: PluginSettings = DEFAULT_SETTINGS):
        self.settings = settings

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, node: HostNode, kind: Optional[AnnotationKind] = None) -> Optional[AnnotationRecord]:
        """
        Read the record of one kind from a node.

        Args:
            node: Host node
            kind: Kind to read. When omitted, the first kind present is
                returned (keystop, label, heading).

        Returns:
            The record, or None when the node carries none
        """
        if kind is None:
            records = self.records_for(node)
            return records[0] if records else None

        raw = node.get_plugin_data(self.settings.key(node_data_dataset(kind)))
        if not raw:
            return None
        return self._decode(node, AnnotationKind(kind), raw)

    def records_for(self, node: HostNode) -> List[AnnotationRecord]:
        """All records on a node, one per kind present, in kind order."""
        records = []
        for kind in AnnotationKind:
            record = self.get(node, kind)
            if record is not None:
                records.append(record)
        return records

    def link_id_of(self, node: HostNode, kind: AnnotationKind) -> Optional[str]:
        """Link id stored on a node for a kind, if any."""
        raw = node.get_plugin_data(self.settings.key(link_dataset(kind)))
        if not raw:
            return None
        try:
            return json.loads(raw).get("id")
        except (ValueError, AttributeError) as e:
            raise ValueError(f"Invalid link data on node {node.id}: {e}") from e

    def kind_for_link(self, node: HostNode, link_id: str) -> Optional[AnnotationKind]:
        """Kind under which node carries link_id, or None."""
        for kind in AnnotationKind:
            if self.link_id_of(node, kind) == link_id:
                return kind
        return None

    def bundles_for(self, node: HostNode) -> List[Bundle]:
        raw = node.get_plugin_data(self.settings.key(DATASET_BUNDLE))
        if not raw:
            return []
        return [Bundle.model_validate(entry) for entry in json.loads(raw)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(
        self,
        node: HostNode,
        kind: AnnotationKind,
        payload: Any,
        link_id: Optional[str] = None,
        container_id: Optional[str] = None,
        order: Optional[int] = None,
    ) -> AnnotationRecord:
        """
        Create or update the record of one kind on a node.

        An existing record keeps its link id, container and order unless
        they are passed explicitly. Writing the same values again changes
        nothing.

        Args:
            node: Host node to annotate
            kind: Annotation kind
            payload: Payload model or dict for kind
            link_id: Link id for a new record (generated when omitted)
            container_id: Container override
            order: Order override

        Returns:
            The stored record

        Raises:
            InvalidPayloadError: If payload does not fit kind
        """
        kind = AnnotationKind(kind)
        payload = parse_payload(kind, payload)
        existing = self.get(node, kind)

        if existing is not None:
            record = existing.model_copy(update={
                "payload": payload,
                "container_id": container_id if container_id is not None else existing.container_id,
                "order": order if order is not None else existing.order,
                "node_id": node.id,
            })
            if record == existing:
                return existing
        else:
            if container_id is None:
                container = find_top_container(node)
                container_id = container.id if container is not None else None
            record = AnnotationRecord(
                link_id=link_id or new_link_id(),
                node_id=node.id,
                container_id=container_id,
                kind=kind,
                payload=payload,
                order=order or 0,
            )

        self._write(node, record)
        if existing is None:
            self._sync_bundles(node)
        return record

    def set_order(self, node: HostNode, kind: AnnotationKind, order: int) -> Optional[AnnotationRecord]:
        """Write only the order field. Returns the record, or None if absent."""
        record = self.get(node, kind)
        if record is None:
            return None
        if record.order == order:
            return record
        record = record.model_copy(update={"order": order})
        self._write(node, record)
        return record

    def relink(self, node: HostNode, kind: AnnotationKind, link_id: str) -> AnnotationRecord:
        """
        Give an existing record a new link id.

        Raises:
            KeyError: If the node has no record of this kind
        """
        record = self.get(node, kind)
        if record is None:
            raise KeyError(f"Node {node.id} has no {AnnotationKind(kind).value} record")
        record = record.model_copy(update={"link_id": link_id, "node_id": node.id})
        self._write(node, record)
        self._sync_bundles(node)
        return record

    def remove(self, node: HostNode, kind: AnnotationKind) -> None:
        """Delete the record of one kind. Absent records are ignored."""
        kind = AnnotationKind(kind)
        if not node.get_plugin_data(self.settings.key(node_data_dataset(kind))) and \
                not node.get_plugin_data(self.settings.key(link_dataset(kind))):
            return

        node.set_plugin_data(self.settings.key(node_data_dataset(kind)), "")
        node.set_plugin_data(self.settings.key(link_dataset(kind)), "")
        self._sync_bundles(node)
        logger.debug(f"Removed {kind.value} record from node {node.id}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, node: HostNode, record: AnnotationRecord) -> None:
        data = {
            "linkId": record.link_id,
            "kind": record.kind.value,
            "containerId": record.container_id,
            "order": record.order,
            "payload": record.payload.model_dump(mode="json"),
        }
        node.set_plugin_data(
            self.settings.key(node_data_dataset(record.kind)),
            json.dumps(data, sort_keys=True),
        )
        node.set_plugin_data(
            self.settings.key(link_dataset(record.kind)),
            json.dumps({"id": record.link_id, "role": "node"}, sort_keys=True),
        )

    def _decode(self, node: HostNode, kind: AnnotationKind, raw: str) -> AnnotationRecord:
        # LOUD validation during read
        try:
            data = json.loads(raw)
            return AnnotationRecord(
                link_id=data["linkId"],
                node_id=node.id,
                container_id=data.get("containerId"),
                kind=kind,
                payload=parse_payload(kind, data.get("payload")),
                order=data.get("order", 0),
            )
        except (KeyError, ValueError, TypeError, InvalidPayloadError) as e:
            raise ValueError(f"Invalid {kind.value} record on node {node.id}: {e}") from e

    def _sync_bundles(self, node: HostNode) -> None:
        records = self.records_for(node)
        bundles = [
            Bundle(
                first_link_id=a.link_id,
                first_kind=a.kind,
                second_link_id=b.link_id,
                second_kind=b.kind,
            )
            for a, b in combinations(records, 2)
        ]
        value = json.dumps([b.model_dump(mode="json") for b in bundles], sort_keys=True) if bundles else ""
        node.set_plugin_data(self.settings.key(DATASET_BUNDLE), value)
