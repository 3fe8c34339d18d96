"""
Annotation Data Models

Kinds are a closed set. Each kind has exactly one payload model, and the
payload union is discriminated on its `kind` field, so every place that
interprets a payload matches on the model type rather than on free-form
strings. Adding a kind means adding an enum member and a payload model.

Records are immutable values. Stores produce new records on every change.
"""

import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from ..constants import KEY_OPTS, ROLE_OPTS, ROLE_VALUES
from ..errors import InvalidPayloadError


class AnnotationKind(str, Enum):
    """Annotation kinds. Immutable on a record once created."""

    KEYSTOP = "keystop"  # Keyboard stop, ordered by tab order
    LABEL = "label"  # Accessible name and role
    HEADING = "heading"  # Heading level, ordered by reading order


class KeyToken(str, Enum):
    """Key actions a keystop can document."""

    ARROWS_LEFT_RIGHT = "arrows-left-right"
    ARROWS_UP_DOWN = "arrows-up-down"
    ENTER = "enter"
    SPACE = "space"
    ESCAPE = "escape"


def new_link_id() -> str:
    """Fresh globally-unique link identifier, independent of host node ids."""
    return str(uuid.uuid4())


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class KeystopPayload(BaseModel):
    """Ordered key actions plus an optional free-text description."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["keystop"] = "keystop"
    keys: Tuple[KeyToken, ...] = ()
    description: Optional[str] = None

    @field_validator("keys")
    @classmethod
    def _dedupe_keys(cls, keys: Tuple[KeyToken, ...]) -> Tuple[KeyToken, ...]:
        seen = []
        for key in keys:
            if key not in seen:
                seen.append(key)
        return tuple(seen)

    @field_validator("description")
    @classmethod
    def _clean_description(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class LabelPayload(BaseModel):
    """ARIA role token plus optional custom label text."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["label"] = "label"
    role: str = "no-role"
    label: Optional[str] = None
    alt: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _known_role(cls, role: str) -> str:
        if role not in ROLE_VALUES:
            raise ValueError(f"unknown role '{role}'")
        return role

    @field_validator("label", "alt")
    @classmethod
    def _clean_text(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


class HeadingPayload(BaseModel):
    """Heading level 1-6, or "none" for platforms without levels."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["heading"] = "heading"
    level: Union[Literal["none"], int] = "none"
    text: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        if value is None or value in ("none", "no-level"):
            return "none"
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return value

    @field_validator("level")
    @classmethod
    def _level_range(cls, value: Union[str, int]) -> Union[str, int]:
        if value != "none" and not 1 <= value <= 6:
            raise ValueError(f"heading level must be 1-6, got {value}")
        return value

    @field_validator("text")
    @classmethod
    def _clean_text(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)


AnnotationPayload = Annotated[
    Union[KeystopPayload, LabelPayload, HeadingPayload],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter = TypeAdapter(AnnotationPayload)


def default_payload(kind: AnnotationKind) -> AnnotationPayload:
    """Empty payload for a kind."""
    kind = AnnotationKind(kind)
    if kind is AnnotationKind.KEYSTOP:
        return KeystopPayload()
    if kind is AnnotationKind.LABEL:
        return LabelPayload()
    if kind is AnnotationKind.HEADING:
        return HeadingPayload()
    raise InvalidPayloadError(str(kind), "no payload model for kind")


def parse_payload(kind: AnnotationKind, data: Any) -> AnnotationPayload:
    """
    Validate payload data against the model for kind.

    Args:
        kind: Annotation kind the payload must belong to
        data: Payload model or plain dict (the `kind` field may be omitted)

    Returns:
        Validated payload model

    Raises:
        InvalidPayloadError: If data does not fit the kind
    """
    kind = AnnotationKind(kind)
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidPayloadError(kind.value, "payload must be an object")

    declared = data.get("kind", kind.value)
    if declared != kind.value:
        raise InvalidPayloadError(kind.value, f"payload declares kind '{declared}'")

    try:
        return _PAYLOAD_ADAPTER.validate_python({**data, "kind": kind.value})
    except ValidationError as e:
        reasons = "; ".join(err["msg"] for err in e.errors())
        raise InvalidPayloadError(kind.value, reasons) from e


def payload_text(payload: AnnotationPayload) -> str:
    """Human-readable badge text for a payload."""
    if isinstance(payload, KeystopPayload):
        names = {opt.value: opt.text for opt in KEY_OPTS}
        keys = ", ".join(names[key.value] for key in payload.keys)
        return keys or (payload.description or "Keystop")
    if isinstance(payload, LabelPayload):
        names = {opt.value: opt.text for opt in ROLE_OPTS}
        return payload.label or names[payload.role]
    if isinstance(payload, HeadingPayload):
        if payload.level == "none":
            return payload.text or "Heading"
        return f"H{payload.level}"
    raise InvalidPayloadError(type(payload).__name__, "unknown payload model")


class AnnotationRecord(BaseModel):
    """
    One annotation on one node.

    `node_id` is only the node currently bound to the link; it is never used
    as a key. `link_id` and `kind` never change after creation.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    link_id: str
    node_id: str
    container_id: Optional[str] = None
    kind: AnnotationKind
    payload: AnnotationPayload
    order: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "AnnotationRecord":
        if self.payload.kind != self.kind.value:
            raise ValueError(
                f"payload kind '{self.payload.kind}' does not match record kind '{self.kind.value}'"
            )
        return self


class Bundle(BaseModel):
    """
    Two annotations of different kinds sharing one node.

    Purely associative: it lives and dies with its two members.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    first_link_id: str
    first_kind: AnnotationKind
    second_link_id: str
    second_kind: AnnotationKind

    @model_validator(mode="after")
    def _distinct_kinds(self) -> "Bundle":
        if self.first_kind == self.second_kind:
            raise ValueError("bundle members must be of different kinds")
        return self

    @property
    def link_ids(self) -> Tuple[str, str]:
        return (self.first_link_id, self.second_link_id)

    def involves(self, link_id: str) -> bool:
        return link_id in self.link_ids
