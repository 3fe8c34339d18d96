"""
Annotation records: kinds, payloads and the node-backed record store.
"""

from .models import (
    AnnotationKind,
    AnnotationPayload,
    AnnotationRecord,
    Bundle,
    HeadingPayload,
    KeyToken,
    KeystopPayload,
    LabelPayload,
    default_payload,
    new_link_id,
    parse_payload,
    payload_text,
)
from .store import AnnotationRecordStore

__all__ = [
    # Models
    "AnnotationKind",
    "AnnotationPayload",
    "AnnotationRecord",
    "Bundle",
    "HeadingPayload",
    "KeyToken",
    "KeystopPayload",
    "LabelPayload",
    "default_payload",
    "new_link_id",
    "parse_payload",
    "payload_text",
    # Store
    "AnnotationRecordStore",
]
