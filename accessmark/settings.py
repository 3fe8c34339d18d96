"""
Plugin settings and per-page options.

PluginSettings are process-wide and read once from the environment.
PluginOptions are user preferences persisted on the page (options dataset).
"""

import json
import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    DATASET_OPTIONS,
    DEFAULT_PLUGIN_IDENTIFIER,
    DEFAULT_PLUGIN_NAME,
    SCHEMA_VERSION,
    data_key,
)

ENV_IDENTIFIER = "ACCESSMARK_IDENTIFIER"
ENV_NAME = "ACCESSMARK_NAME"
ENV_MODE = "ACCESSMARK_ENV"


class PluginSettings(BaseModel):
    """
    Process-wide plugin configuration.

    `debug` is the build-mode flag: when False, Messenger log lines are
    suppressed. Nothing else depends on it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    identifier: str = DEFAULT_PLUGIN_IDENTIFIER
    name: str = DEFAULT_PLUGIN_NAME
    schema_version: str = SCHEMA_VERSION
    debug: bool = False

    def key(self, dataset: str) -> str:
        """Namespaced private-data key for a dataset."""
        return data_key(dataset, self.identifier, self.schema_version)


def load_settings(environ: Optional[dict] = None) -> PluginSettings:
    """
    Build settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        PluginSettings with overrides applied
    """
    env = os.environ if environ is None else environ

    return PluginSettings(
        identifier=env.get(ENV_IDENTIFIER) or DEFAULT_PLUGIN_IDENTIFIER,
        name=env.get(ENV_NAME) or DEFAULT_PLUGIN_NAME,
        debug=(env.get(ENV_MODE, "").lower() == "development"),
    )


DEFAULT_SETTINGS = PluginSettings()


ViewContext = Literal["general", "a11y-keyboard", "a11y-labels", "a11y-headings"]


class PluginOptions(BaseModel):
    """User preferences persisted on the page."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    current_view: ViewContext = Field(default="general", alias="currentView")
    is_mercado_mode: bool = Field(default=False, alias="isMercadoMode")


def read_options(page, settings: PluginSettings = DEFAULT_SETTINGS) -> PluginOptions:
    """Read the options dataset from a page, falling back to defaults."""
    raw = page.get_plugin_data(settings.key(DATASET_OPTIONS))
    if not raw:
        return PluginOptions()
    return PluginOptions.model_validate(json.loads(raw))


def write_options(
    page,
    options: PluginOptions,
    settings: PluginSettings = DEFAULT_SETTINGS,
) -> None:
    """Persist options on a page."""
    page.set_plugin_data(
        settings.key(DATASET_OPTIONS),
        json.dumps(options.model_dump(by_alias=True), sort_keys=True),
    )
