"""
Repaint Coordinator - Turn a diff into badge drawing directives.

Directive order:
1. remove-badge for every removed link (so a swap never double-draws)
2. draw-badge / redraw-badge / move-badge for added, updated and moved links,
   ascending by order; ties broken by (container, kind, order, link id)

Unchanged links produce nothing.

Drawing itself belongs to a BadgePainter. A directive whose node cannot be
resolved at apply time (deleted in the same tick) is skipped and logged; the
rest of the batch still runs.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .annotations.models import AnnotationKind, parse_payload, payload_text
from .constants import COLORS
from .diff import DiffResult
from .host import HostNode
from .links.registry import LinkRegistry

logger = logging.getLogger(__name__)


class RepaintAction(str, Enum):
    REMOVE = "remove-badge"
    DRAW = "draw-badge"
    REDRAW = "redraw-badge"
    MOVE = "move-badge"


@dataclass(frozen=True)
class RepaintDirective:
    """One badge operation."""

    action: RepaintAction
    link_id: str
    kind: AnnotationKind
    container_id: str
    order: int
    text: str = ""
    color: str = ""

    def sort_key(self) -> Tuple[int, str, str, str]:
        return (self.order, self.container_id, self.kind.value, self.link_id)


@dataclass(frozen=True)
class RepaintReport:
    """Outcome of applying a batch of directives."""

    applied: Tuple[RepaintDirective, ...] = ()
    skipped: Tuple[RepaintDirective, ...] = ()


class BadgePainter(ABC):
    """Draws and removes annotation badges on the canvas."""

    @abstractmethod
    def remove_badge(self, directive: RepaintDirective) -> None:
        """Remove the badge of directive.link_id, if drawn."""

    @abstractmethod
    def draw_badge(self, directive: RepaintDirective, node: HostNode, font: Optional[Dict[str, str]]) -> None:
        """Draw a new badge for node."""

    @abstractmethod
    def redraw_badge(self, directive: RepaintDirective, node: HostNode, font: Optional[Dict[str, str]]) -> None:
        """Replace the content of an existing badge."""

    @abstractmethod
    def move_badge(self, directive: RepaintDirective, node: HostNode) -> None:
        """Reposition an existing badge."""


class RecordingPainter(BadgePainter):
    """
    Painter that records calls instead of drawing.

    `badges` holds what would be on the canvas, keyed by link id.
    """

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.badges: Dict[str, Dict[str, Any]] = {}

    def remove_badge(self, directive: RepaintDirective) -> None:
        self.calls.append((directive.action.value, directive.link_id))
        self.badges.pop(directive.link_id, None)

    def draw_badge(self, directive: RepaintDirective, node: HostNode, font: Optional[Dict[str, str]]) -> None:
        self.calls.append((directive.action.value, directive.link_id))
        self.badges[directive.link_id] = self._badge(directive, node, font)

    def redraw_badge(self, directive: RepaintDirective, node: HostNode, font: Optional[Dict[str, str]]) -> None:
        self.calls.append((directive.action.value, directive.link_id))
        self.badges[directive.link_id] = self._badge(directive, node, font)

    def move_badge(self, directive: RepaintDirective, node: HostNode) -> None:
        self.calls.append((directive.action.value, directive.link_id))
        badge = self.badges.setdefault(directive.link_id, self._badge(directive, node, None))
        badge.update(node_id=node.id, order=directive.order, container_id=directive.container_id, text=directive.text)

    @staticmethod
    def _badge(directive: RepaintDirective, node: HostNode, font: Optional[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "node_id": node.id,
            "kind": directive.kind.value,
            "container_id": directive.container_id,
            "order": directive.order,
            "text": directive.text,
            "color": directive.color,
            "font": font,
        }


_ACTIONS = {
    "added": RepaintAction.DRAW,
    "updated": RepaintAction.REDRAW,
    "moved": RepaintAction.MOVE,
}


def plan_repaint(diff: DiffResult) -> List[RepaintDirective]:
    """
    Build the ordered directive list for a diff.

    Args:
        diff: Result of diff_snapshots()

    Returns:
        Removals first, then draws/redraws/moves ascending by order
    """
    removals = []
    for link_id in diff.removed:
        entry = diff.entry(link_id)
        removals.append(RepaintDirective(
            action=RepaintAction.REMOVE,
            link_id=link_id,
            kind=entry.kind,
            container_id=entry.container_id,
            order=entry.order,
        ))

    paints = []
    for change, action in _ACTIONS.items():
        for link_id in getattr(diff, change):
            entry = diff.entry(link_id)
            payload = parse_payload(entry.kind, entry.payload)
            paints.append(RepaintDirective(
                action=action,
                link_id=link_id,
                kind=entry.kind,
                container_id=entry.container_id,
                order=entry.order,
                text=_badge_text(entry.kind, entry.order, payload_text(payload)),
                color=COLORS[entry.kind.value],
            ))

    return sorted(removals, key=RepaintDirective.sort_key) + sorted(paints, key=RepaintDirective.sort_key)


def _badge_text(kind: AnnotationKind, order: int, text: str) -> str:
    # Keystop badges lead with their 1-based tab position
    if kind is AnnotationKind.KEYSTOP:
        return f"{order + 1} {text}"
    return text


class RepaintCoordinator:
    """
    Applies repaint plans through a painter.

    Args:
        registry: Link registry used to resolve directive targets
        painter: Badge painter (default: RecordingPainter)
    """

    def __init__(self, registry: LinkRegistry, painter: Optional[BadgePainter] = None):
        self.registry = registry
        self.painter = painter if painter is not None else RecordingPainter()

    def apply(self, diff: DiffResult, font: Optional[Dict[str, str]] = None) -> RepaintReport:
        """
        Execute every directive of a diff in order.

        Args:
            diff: Diff to repaint
            font: Loaded typeface for badge text

        Returns:
            RepaintReport listing applied and skipped directives
        """
        applied = []
        skipped = []

        for directive in plan_repaint(diff):
            if directive.action is RepaintAction.REMOVE:
                self.painter.remove_badge(directive)
                applied.append(directive)
                continue

            node = self.registry.resolve(directive.link_id)
            if node is None:
                logger.warning(f"Skipping {directive.action.value} for {directive.link_id}: node no longer exists")
                skipped.append(directive)
                continue

            if directive.action is RepaintAction.DRAW:
                self.painter.draw_badge(directive, node, font)
            elif directive.action is RepaintAction.REDRAW:
                self.painter.redraw_badge(directive, node, font)
            else:
                self.painter.move_badge(directive, node)
            applied.append(directive)

        if skipped:
            logger.warning(f"Repaint skipped {len(skipped)} of {len(applied) + len(skipped)} directive(s)")
        return RepaintReport(applied=tuple(applied), skipped=tuple(skipped))
