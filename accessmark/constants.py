"""
Static configuration tables.

These tables are configuration data, not behavior. They are built once at
import time and never mutated.

Key layout:
-----------
Every private-data key is namespaced as

    <identifier>.<dataset>-<schemaVersion>

The identifier and schema version scope each dataset so that data written by
other plugins sharing the same node never collides with ours, and so that a
future schema can be added next to the current one without breaking older
saved files.

Changing a dataset name breaks data retrieval in every saved file. Treat the
names like table names in a database schema.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

DEFAULT_PLUGIN_IDENTIFIER = "com.accessmark.plugin"
DEFAULT_PLUGIN_NAME = "Accessmark"

# Bump only for breaking layout changes; additive changes keep the version.
SCHEMA_VERSION = "001"

# Page-level datasets
DATASET_OPTIONS = "options"
PAGE_DATASETS: Tuple[str, ...] = (
    DATASET_OPTIONS,
    "keystopAnnotations",
    "labelAnnotations",
    "headingAnnotations",
)

# Container-level datasets
CONTAINER_DATASETS: Tuple[str, ...] = (
    "keystopList",
    "labelList",
    "headingList",
)

# Node-level datasets
DATASET_BUNDLE = "bundle"
NODE_DATASETS: Tuple[str, ...] = (
    DATASET_BUNDLE,
    "keystopNodeData",
    "labelNodeData",
    "headingNodeData",
    "linkId",  # keystop link key, legacy name kept for older files
    "labelLinkId",
    "headingLinkId",
)


def data_key(
    dataset: str,
    identifier: str = DEFAULT_PLUGIN_IDENTIFIER,
    schema_version: str = SCHEMA_VERSION,
) -> str:
    """
    Build a namespaced private-data key.

    Args:
        dataset: Dataset name (e.g. "keystopList")
        identifier: Plugin identifier namespace
        schema_version: Schema version suffix

    Returns:
        Key of the form "<identifier>.<dataset>-<schemaVersion>"
    """
    if not dataset:
        raise ValueError("dataset is required")
    return f"{identifier}.{dataset}-{schema_version}"


@dataclass(frozen=True)
class DropdownOption:
    """One entry of a UI dropdown. Dividers carry no text and are disabled."""

    value: str
    text: Optional[str]
    disabled: bool = False

    @property
    def is_divider(self) -> bool:
        return self.value.startswith("divider--")


KEY_OPTS: Tuple[DropdownOption, ...] = (
    DropdownOption("no-key", "Add key…", disabled=True),
    DropdownOption("divider--01", None, disabled=True),
    DropdownOption("arrows-left-right", "Arrow keys (left/right)"),
    DropdownOption("arrows-up-down", "Arrow keys (up/down)"),
    DropdownOption("enter", "Enter"),
    DropdownOption("divider--02", None, disabled=True),
    DropdownOption("space", "Space"),
    DropdownOption("divider--03", None, disabled=True),
    DropdownOption("escape", "Escape"),
)

ROLE_OPTS: Tuple[DropdownOption, ...] = (
    DropdownOption("no-role", "None"),
    DropdownOption("divider--01", None, disabled=True),
    DropdownOption("image", "Image"),
    DropdownOption("image-decorative", "Image (decorative)"),
    DropdownOption("divider--02", None, disabled=True),
    DropdownOption("button", "Button"),
    DropdownOption("checkbox", "Checkbox"),
    DropdownOption("link", "Link"),
    DropdownOption("menuitem", "Menu item"),
    DropdownOption("menuitemcheckbox", "Menu item (checkbox)"),
    DropdownOption("menuitemradio", "Menu item (radio)"),
    DropdownOption("option", "Option"),
    DropdownOption("progressbar", "Progress bar"),
    DropdownOption("radio", "Radio"),
    DropdownOption("searchbox", "Search box"),
    DropdownOption("slider", "Slider"),
    DropdownOption("switch", "Switch"),
    DropdownOption("tab", "Tab"),
    DropdownOption("tabpanel", "Tab panel"),
    DropdownOption("textbox", "Textbox"),
    DropdownOption("divider--03", None, disabled=True),
    DropdownOption("combobox", "Combobox"),
    DropdownOption("listbox", "Listbox"),
    DropdownOption("menu", "Menu"),
    DropdownOption("radiogroup", "Radio group"),
    DropdownOption("tablist", "Tab list"),
)

LEVEL_OPTS: Tuple[DropdownOption, ...] = (
    DropdownOption("no-level", "None  (iOS/Android)"),
    DropdownOption("divider--01", None, disabled=True),
    DropdownOption("1", "1"),
    DropdownOption("2", "2"),
    DropdownOption("3", "3"),
    DropdownOption("4", "4"),
    DropdownOption("5", "5"),
    DropdownOption("6", "6"),
)


def selectable_values(options: Tuple[DropdownOption, ...]) -> Tuple[str, ...]:
    """Values a user can actually pick (no dividers, no disabled placeholders)."""
    return tuple(opt.value for opt in options if not (opt.disabled or opt.is_divider))


ROLE_VALUES: Tuple[str, ...] = selectable_values(ROLE_OPTS)

# Badge colors per annotation kind (hex)
COLORS: Dict[str, str] = {
    "keystop": "#c8006a",
    "label": "#0066bf",
    "heading": "#bc3600",
}

# Ordered by priority; the first available typeface is loaded before drawing.
TYPEFACES: Tuple[Dict[str, str], ...] = (
    {"family": "Inconsolata", "style": "Bold"},
    {"family": "Helvetica Neue", "style": "Regular"},
    {"family": "Inter", "style": "Regular"},
    {"family": "Roboto", "style": "Regular"},
    {"family": "Verdana", "style": "Regular"},
)

VIEW_CONTEXTS: Tuple[str, ...] = (
    "general",
    "a11y-keyboard",
    "a11y-labels",
    "a11y-headings",
)
