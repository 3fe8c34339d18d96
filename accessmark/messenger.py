"""
Messenger - paired log line and user notification for command outcomes.

Log lines are observational and only emitted when the build-mode `debug`
flag is on. Toasts need a page context; without one the toast degrades to an
error log line (always emitted) instead of raising.
"""

import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import MissingContextError
from .host import HostPage
from .settings import DEFAULT_SETTINGS, PluginSettings

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "Invoked"

Status = Literal["success", "error"]


class CommandResult(BaseModel):
    """Outcome of a command, sent back to the UI."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    status: Status
    log_message: Optional[str] = Field(default=None, alias="logMessage")
    toast_message: Optional[str] = Field(default=None, alias="toastMessage")

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, log_message: Optional[str] = None, toast_message: Optional[str] = None) -> "CommandResult":
        return cls(status="success", log_message=log_message, toast_message=toast_message)

    @classmethod
    def error(cls, log_message: Optional[str] = None, toast_message: Optional[str] = None) -> "CommandResult":
        return cls(status="error", log_message=log_message, toast_message=toast_message)


class Messenger:
    """
    Reports outcomes for one page.

    The only state carried between calls is the context: the page toasts are
    shown on and the action name used in log prefixes.
    """

    def __init__(self, settings: PluginSettings = DEFAULT_SETTINGS, page: Optional[HostPage] = None):
        self.settings = settings
        self.page = page
        self.action: Optional[str] = None

    def set_context(self, page: Optional[HostPage], action: Optional[str] = None) -> None:
        self.page = page
        self.action = action

    def log(self, message: str, level: int = logging.INFO) -> bool:
        """
        Emit a prefixed log line when debug is on.

        Returns:
            True if the line was emitted
        """
        if not self.settings.debug:
            return False
        logger.log(level, f"{self._prefix()} {message}")
        return True

    def toast(self, message: str) -> bool:
        """
        Show a notification on the current page.

        Returns:
            True if delivered, False if there was no page context
        """
        if self.page is None or self.page.removed:
            error = MissingContextError(message)
            logger.error(f"{self._prefix()} {error}")
            return False
        self.page.document.notify(message)
        return True

    def report(self, result: CommandResult) -> None:
        """Log and toast a command result. Never raises for missing context."""
        level = logging.INFO if result.ok else logging.ERROR
        if result.log_message:
            self.log(result.log_message, level)
        if result.toast_message:
            self.toast(result.toast_message)

    def _prefix(self) -> str:
        page_id = self.page.id if self.page is not None else "-"
        return f"[{self.settings.name}] page {page_id} {self.action or DEFAULT_ACTION}:"
