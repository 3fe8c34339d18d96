"""
Annotation commands - UI actions applied to one page.

AnnotationSession is the composition root: it owns the record store, link
registry, order lists, repaint coordinator and messenger of a page, and
dispatches UI messages to handlers.

Every command runs in two phases:
1. Synchronous mutation inside one transaction: repair host edits
   (duplicated nodes, reparented or restored nodes), run the handler,
   verify the lists. If it raises, page data is restored untouched.
2. Awaited phase: font load, then orphan prune, snapshot capture, diff,
   repaint and baseline save.

Commands are serialized with an asyncio.Lock, so a command that is suspended
in phase 2 cannot be overtaken by the next one. Phase 1 never awaits.

Rules:
- Commands are processed in receipt order
- AnnotationError becomes an error CommandResult (toast + log line)
- A malformed message is an InvalidPayloadError like any other
- Anything else propagates: corrupt data fails loudly
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .annotations.models import (
    AnnotationKind,
    KeyToken,
    KeystopPayload,
    default_payload,
    parse_payload,
)
from .annotations.store import AnnotationRecordStore
from .constants import TYPEFACES
from .diff import DiffResult, diff_snapshots
from .errors import (
    AnnotationError,
    AnnotationNotFoundError,
    InvalidPayloadError,
    UnresolvedCommandError,
)
from .host import HostNode, HostPage, find_page, find_top_container, sort_by_document_order
from .links.registry import LinkRegistry
from .messenger import CommandResult, Messenger
from .ordering.order_lists import OrderListManager
from .repaint import BadgePainter, RepaintCoordinator, RepaintReport
from .settings import DEFAULT_SETTINGS, PluginOptions, PluginSettings, read_options, write_options
from .snapshot import PageSnapshot, capture_snapshot, load_snapshot, save_snapshot

logger = logging.getLogger(__name__)

NO_SELECTION_MESSAGE = "A layer must be selected"
NOT_FOUND_MESSAGE = "Annotation not found"


class UIMessage(BaseModel):
    """Message sent from the UI surface to the core."""

    model_config = ConfigDict(extra="forbid")

    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class AnnotationSession:
    """
    Annotation state and command dispatch for one page.

    Args:
        page: Page being annotated
        settings: Plugin settings (key namespace, debug flag)
        painter: Badge painter (default: RecordingPainter)
    """

    def __init__(
        self,
        page: HostPage,
        settings: PluginSettings = DEFAULT_SETTINGS,
        painter: Optional[BadgePainter] = None,
    ):
        self.page = page
        self.document = page.document
        self.settings = settings
        self.store = AnnotationRecordStore(settings)
        self.registry = LinkRegistry(page, self.store)
        self.order_lists = OrderListManager(self.registry, self.store)
        self.repaint = RepaintCoordinator(self.registry, painter)
        self.messenger = Messenger(settings, page)

        self.last_diff: Optional[DiffResult] = None
        self.last_repaint: Optional[RepaintReport] = None
        self._lock = asyncio.Lock()
        self._handlers: Dict[str, Callable[[Dict[str, Any]], CommandResult]] = {
            "add-stop": self._add_stop,
            "reorder-stop": self._reorder_stop,
            "remove-stop": self._remove_stop,
            "update-stop-payload": self._update_stop_payload,
            "set-key": self._set_key,
            "remove-key": self._remove_key,
            "set-view-context": self._set_view_context,
            "refresh": self._refresh,
        }

    @property
    def actions(self) -> Tuple[str, ...]:
        return tuple(self._handlers)

    @property
    def painter(self) -> BadgePainter:
        return self.repaint.painter

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, message: Any) -> CommandResult:
        """
        Run one UI message to completion and report the outcome.

        Args:
            message: UIMessage or its dict form

        Returns:
            CommandResult (also reported through the Messenger)
        """
        async with self._lock:
            self.messenger.set_context(self.page)
            try:
                message = _parse_message(message)
                self.messenger.set_context(self.page, message.action)
                result = await self._run(message)
            except AnnotationNotFoundError as e:
                result = CommandResult.error(log_message=str(e), toast_message=NOT_FOUND_MESSAGE)
            except UnresolvedCommandError as e:
                logger.warning(str(e))
                result = CommandResult.error(log_message=str(e), toast_message=f"Unknown action: {e.action}")
            except AnnotationError as e:
                result = CommandResult.error(log_message=str(e), toast_message=str(e))

            self.messenger.report(result)
            return result

    async def _run(self, message: UIMessage) -> CommandResult:
        handler = self._handlers.get(message.action)
        if handler is None:
            raise UnresolvedCommandError(message.action)

        with self.order_lists.transaction():
            self._heal()
            result = handler(message.payload)
            self.order_lists.verify_all()

        await self._refresh_canvas()
        return result

    async def _refresh_canvas(self) -> None:
        font = await self.document.load_font_async(TYPEFACES)

        with self.order_lists.transaction():
            self._heal()
            orphans = self.registry.collect_orphans()
            if orphans:
                self.registry.prune(orphans)

        previous = load_snapshot(self.page, self.settings)
        current = capture_snapshot(self.page, self.store, self.order_lists, self.registry)
        diff = diff_snapshots(previous, current)
        self.last_repaint = self.repaint.apply(diff, font)
        save_snapshot(self.page, current, self.settings)
        self.last_diff = diff

    def _heal(self) -> None:
        # Host edits since the last command: duplicates, reparenting, undo
        self.registry.reconcile_duplicates()
        self.order_lists.reconcile()

    def snapshot(self) -> PageSnapshot:
        """Capture the live state without touching the stored baseline."""
        return capture_snapshot(self.page, self.store, self.order_lists, self.registry)

    # ------------------------------------------------------------------
    # Handlers (synchronous mutation phase)
    # ------------------------------------------------------------------

    def _add_stop(self, payload: Dict[str, Any]) -> CommandResult:
        kind = _kind_of(payload)
        data = payload.get("payload")
        annotation = parse_payload(kind, data) if data is not None else default_payload(kind)

        selection = [
            node for node in self.page.selection
            if not node.removed and find_page(node) is self.page
        ]
        if not selection:
            return CommandResult.error(log_message="Selection is empty", toast_message=NO_SELECTION_MESSAGE)

        added = []
        for node in sort_by_document_order(self.page, selection):
            if self.store.get(node, kind) is not None:
                logger.debug(f"Node {node.id} already has a {kind.value} annotation")
                continue
            container = find_top_container(node)
            if container is None:
                continue
            record = self.store.set(node, kind, annotation, container_id=container.id)
            link_id = self.registry.register(record)
            self.order_lists.insert(container, kind, link_id)
            added.append(link_id)

        if not added:
            return CommandResult.success(log_message=f"Selected layers already have {kind.value} annotations")
        return CommandResult.success(log_message=f"Added {len(added)} {kind.value} annotation(s)")

    def _reorder_stop(self, payload: Dict[str, Any]) -> CommandResult:
        link_id, container, kind, _node = self._locate(payload)
        to_index = payload.get("toIndex")
        if isinstance(to_index, bool) or not isinstance(to_index, int):
            raise InvalidPayloadError("reorder-stop", "toIndex must be an integer")

        order = self.order_lists.move(container, kind, link_id, to_index)
        return CommandResult.success(log_message=f"Moved {kind.value} {link_id} to position {order}")

    def _remove_stop(self, payload: Dict[str, Any]) -> CommandResult:
        link_id, container, kind, node = self._locate(payload, require_node=False)
        if node is not None:
            self.store.remove(node, kind)
        self.order_lists.remove(container, kind, link_id)
        self.registry.forget(link_id)
        return CommandResult.success(log_message=f"Removed {kind.value} {link_id}")

    def _update_stop_payload(self, payload: Dict[str, Any]) -> CommandResult:
        link_id, _container, kind, node = self._locate(payload)
        if "payload" not in payload:
            raise InvalidPayloadError(kind.value, "payload is required")

        self.store.set(node, kind, payload["payload"])
        return CommandResult.success(log_message=f"Updated {kind.value} {link_id}")

    def _set_key(self, payload: Dict[str, Any]) -> CommandResult:
        return self._edit_keys(payload, add=True)

    def _remove_key(self, payload: Dict[str, Any]) -> CommandResult:
        return self._edit_keys(payload, add=False)

    def _edit_keys(self, payload: Dict[str, Any], add: bool) -> CommandResult:
        link_id, _container, kind, node = self._locate(payload)
        if kind is not AnnotationKind.KEYSTOP:
            raise InvalidPayloadError(kind.value, "only keystops carry keys")
        try:
            key = KeyToken(payload.get("key"))
        except ValueError:
            raise InvalidPayloadError(kind.value, f"unknown key '{payload.get('key')}'") from None

        current: KeystopPayload = self.store.get(node, kind).payload
        keys = [k for k in current.keys if k is not key]
        if add:
            keys.append(key)
        self.store.set(node, kind, {**current.model_dump(), "keys": keys})

        verb = "Added" if add else "Removed"
        return CommandResult.success(log_message=f"{verb} key {key.value} on {link_id}")

    def _set_view_context(self, payload: Dict[str, Any]) -> CommandResult:
        options = read_options(self.page, self.settings)
        try:
            options = PluginOptions.model_validate({**options.model_dump(by_alias=True), **payload})
        except ValidationError as e:
            reasons = "; ".join(err["msg"] for err in e.errors())
            raise InvalidPayloadError("options", reasons) from e

        write_options(self.page, options, self.settings)
        return CommandResult.success(log_message=f"View set to {options.current_view}")

    def _refresh(self, payload: Dict[str, Any]) -> CommandResult:
        return CommandResult.success(log_message="Annotations refreshed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _locate(
        self, payload: Dict[str, Any], require_node: bool = True
    ) -> Tuple[str, HostNode, AnnotationKind, Optional[HostNode]]:
        link_id = payload.get("linkId")
        if not link_id or not isinstance(link_id, str):
            raise InvalidPayloadError("command", "linkId is required")

        location = self.order_lists.locate(link_id)
        if location is None:
            raise AnnotationNotFoundError(link_id)
        container, kind, _index = location

        node = self.registry.resolve(link_id, container)
        if node is None and require_node:
            raise AnnotationNotFoundError(link_id)
        return link_id, container, kind, node


def _parse_message(message: Any) -> UIMessage:
    if isinstance(message, UIMessage):
        return message
    try:
        return UIMessage.model_validate(message)
    except ValidationError as e:
        reasons = "; ".join(err["msg"] for err in e.errors())
        raise InvalidPayloadError("message", reasons) from e


def _kind_of(payload: Dict[str, Any]) -> AnnotationKind:
    try:
        return AnnotationKind(payload.get("kind"))
    except ValueError:
        raise InvalidPayloadError("add-stop", f"unknown kind '{payload.get('kind')}'") from None
