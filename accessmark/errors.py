"""
Annotation error types.

All errors inherit from AnnotationError for easy catching.
Errors are explicit and provide actionable messages.

Data-integrity errors (OrphanedLinkError, DuplicateOrderError) are healed
locally by prune/renumber. Context and protocol errors are surfaced to the
user through the Messenger.
"""


class AnnotationError(Exception):
    """Base exception for all annotation failures."""
    pass


class OrphanedLinkError(AnnotationError):
    """Raised when a linkId cannot be resolved to a live node."""

    def __init__(self, link_id: str):
        self.link_id = link_id
        super().__init__(f"Link does not resolve to a live node: {link_id}")


class DuplicateOrderError(AnnotationError):
    """Raised when two entries of one order list claim the same position."""

    def __init__(self, container_id: str, kind: str, detail: str):
        self.container_id = container_id
        self.kind = kind
        self.detail = detail
        super().__init__(
            f"Duplicate order in {kind} list of container {container_id}: {detail}"
        )


class MissingContextError(AnnotationError):
    """Raised when no page context is available for a user notification."""

    def __init__(self, message: str):
        self.undelivered = message
        super().__init__(f"No page context to display: {message}")


class UnresolvedCommandError(AnnotationError):
    """Raised when the UI sends an action the core does not recognize."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unrecognized action: {action}")


class InvalidPayloadError(AnnotationError):
    """Raised when an annotation payload does not fit its kind."""

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Invalid {kind} payload: {reason}")


class AnnotationNotFoundError(AnnotationError):
    """Raised when a command references an annotation that does not exist."""

    def __init__(self, link_id: str):
        self.link_id = link_id
        super().__init__(f"Annotation not found: {link_id}")
